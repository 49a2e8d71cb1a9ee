"""Shared typed models.

This module defines immutable data models used by fetch, parse,
enrich, and store layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Literal, Union

from core.constants import DEFAULT_CONFIDENCE

RegionCode = Literal["NSW", "VIC", "QLD", "WA", "SA", "TAS", "ACT", "NT"]
SUPPORTED_REGIONS: tuple[RegionCode, ...] = ("NSW", "VIC", "QLD", "WA", "SA", "TAS", "ACT", "NT")

PropertyCategory = Literal["house", "unit", "townhouse", "vacant_land", "commercial", "other"]
SUPPORTED_CATEGORIES: tuple[PropertyCategory, ...] = (
    "house",
    "unit",
    "townhouse",
    "vacant_land",
    "commercial",
    "other",
)

QualityTier = Literal["individual", "listing", "aggregated", "estimated"]
SUPPORTED_QUALITY_TIERS: tuple[QualityTier, ...] = (
    "individual",
    "listing",
    "aggregated",
    "estimated",
)

PayloadShape = Literal["delimited_text", "workbook"]
SourceKind = Literal["sales_csv", "rental_workbook"]
SUPPORTED_SOURCE_KINDS: tuple[SourceKind, ...] = ("sales_csv", "rental_workbook")

RunStatus = Literal["running", "completed", "failed"]


def utc_now() -> datetime:
    """Return the current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PropertyKey:
    """Natural key identifying one real-world property across sources."""

    address: str
    suburb: str
    region: RegionCode
    postcode: str


@dataclass(frozen=True)
class PropertyRecord:
    """Canonical observed property record.

    Attributes:
        address: Street address free text.
        suburb: Locality name.
        region: First-level administrative division code.
        postcode: Postal code.
        category: Canonical property category.
        source_id: Pipeline that produced the record.
        quality_tier: Coarse provenance classification.
        confidence: Uncertainty multiplier in [0, 1].
        bedrooms: Optional bedroom count, possibly estimated.
        bathrooms: Optional bathroom count.
        land_area_sqm: Optional land area in square metres.
        sale_price: Optional positive sale price in whole dollars.
        sale_date: Optional sale date (contract date when known).
        contract_date: Optional contract exchange date.
        settlement_date: Optional settlement date.
        weekly_rent: Optional weekly rent in whole dollars.
        rental_yield: Optional gross yield percentage.
        is_rental_estimated: True when weekly rent came from a rental median.
        external_id: Optional source-native identifier.
        last_updated: Timestamp of the observation.
    """

    address: str
    suburb: str
    region: RegionCode
    postcode: str
    category: PropertyCategory
    source_id: str
    quality_tier: QualityTier
    confidence: float = DEFAULT_CONFIDENCE
    bedrooms: int | None = None
    bathrooms: int | None = None
    land_area_sqm: Decimal | None = None
    sale_price: int | None = None
    sale_date: date | None = None
    contract_date: date | None = None
    settlement_date: date | None = None
    weekly_rent: int | None = None
    rental_yield: Decimal | None = None
    is_rental_estimated: bool = False
    external_id: str | None = None
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> PropertyKey:
        """Natural key of this record."""
        return PropertyKey(
            address=self.address,
            suburb=self.suburb,
            region=self.region,
            postcode=self.postcode,
        )


@dataclass(frozen=True)
class RentalMedian:
    """Aggregate weekly rent statistic for one postcode and bedroom count."""

    region: RegionCode
    postcode: str
    bedrooms: int
    period: date
    median_weekly_rent: int
    source_id: str
    sample_size: int | None = None
    suburb: str | None = None


@dataclass(frozen=True)
class SalesEvent:
    """Immutable observation of a property changing hands."""

    key: PropertyKey
    sale_price: int
    sale_date: date
    source_id: str
    contract_date: date | None = None
    settlement_date: date | None = None


@dataclass(frozen=True)
class SkippedRow:
    """A single input row that could not be mapped.

    Attributes:
        row_number: One-based row number within the payload (or sheet).
        reason: Human-readable reason the row was rejected.
        raw_excerpt: Optional truncated excerpt of the raw row.
    """

    row_number: int
    reason: str
    raw_excerpt: str | None = None


ParseResult = Union[PropertyRecord, SkippedRow]
RentalParseResult = Union[RentalMedian, SkippedRow]


@dataclass(frozen=True)
class RawPayload:
    """Complete fetched payload ready to parse.

    The payload lives on disk in scratch space owned by the fetch scope;
    parsers stream it from ``path``.

    Attributes:
        source_id: Source that produced the payload.
        shape: Payload shape tag selecting the parser family.
        path: File holding the payload (extracted member for ZIP feeds).
        origin_url: URL the payload was retrieved from.
        fetched_at: UTC fetch completion time.
        byte_size: Size of the payload file in bytes.
        archive_member: Archive member name when extracted from a ZIP.
    """

    source_id: str
    shape: PayloadShape
    path: Path
    origin_url: str
    fetched_at: datetime
    byte_size: int
    archive_member: str | None = None


@dataclass(frozen=True)
class WriteStats:
    """Outcome counts for one written batch."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    def __add__(self, other: WriteStats) -> WriteStats:
        return WriteStats(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
        )


@dataclass(frozen=True)
class RunCounts:
    """Aggregated counts recorded on an ingestion run.

    Attributes:
        fetched: Parse results consumed (records plus rejected rows).
        inserted: New records stored.
        updated: Existing records replaced or upserted.
        skipped: Incoming records retained out in favour of stored ones.
        rejected: Rows the parser could not map.
    """

    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    rejected: int = 0

    def with_write_stats(self, stats: WriteStats) -> RunCounts:
        """Return counts with one batch outcome added."""
        return RunCounts(
            fetched=self.fetched,
            inserted=self.inserted + stats.inserted,
            updated=self.updated + stats.updated,
            skipped=self.skipped + stats.skipped,
            rejected=self.rejected,
        )


@dataclass(frozen=True)
class IngestionRun:
    """Audited execution of one source through the pipeline."""

    run_id: int
    source_id: str
    status: RunStatus
    started_at: datetime
    counts: RunCounts = field(default_factory=RunCounts)
    completed_at: datetime | None = None
    error_message: str | None = None
