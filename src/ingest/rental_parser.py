"""Rental bond workbook parser.

This module reads median weekly rents from a rental bond workbook with
one sheet per reporting period. Sheets are loaded one at a time with
pandas; the header row is located by column aliases because published
workbooks carry title rows above the table. Workbooks that break rows
down by dwelling type contribute only their all-dwellings ``Total`` rows,
so each (postcode, bedrooms, period) key yields one median.
"""

from __future__ import annotations

import zipfile
from datetime import date, datetime
from typing import Any, Generator, Sequence

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from core.constants import RAW_EXCERPT_LENGTH, WORKBOOK_HEADER_SCAN_ROWS
from core.errors import ParseError
from core.logging_config import get_logger
from core.sources import SourceConfig
from core.types import RawPayload, RentalMedian, RentalParseResult, SkippedRow
from ingest.field_mapping import parse_bedroom_label, parse_whole_number

_LOGGER = get_logger(__name__)

POSTCODE_ALIASES = ("postcode", "post code", "postcodes")
BEDROOM_ALIASES = ("bedrooms", "number of bedrooms", "bedroom", "beds")
RENT_ALIASES = ("median weekly rent", "median rent", "weekly rent", "median")
SAMPLE_SIZE_ALIASES = ("new bonds lodged", "bonds lodged", "new bonds", "count", "sample size")
SUBURB_ALIASES = ("suburb", "locality")
DWELLING_TYPE_ALIASES = ("dwelling types", "dwelling type")
ALL_DWELLINGS_LABEL = "total"
SUPPRESSED_VALUES = ("-", "s", "n/a", "na", "*")
_PERIOD_FORMATS = ("%b %Y", "%B %Y", "%Y-%m", "%Y-%m-%d")


def parse_rental_rows(
    payload: RawPayload, source: SourceConfig
) -> Generator[RentalParseResult, None, None]:
    """Lazily parse a rental bond workbook payload.

    Args:
        payload: Workbook payload.
        source: Source descriptor supplying the region.

    Yields:
        One ``RentalMedian`` or ``SkippedRow`` per data row of every usable sheet.

    Raises:
        ParseError: If the workbook is corrupt or has no usable sheet.
    """
    fallback_period = source.period or payload.fetched_at.date()
    workbook = _open_workbook(payload, source)
    with workbook:
        usable_sheets = 0
        for sheet_name in workbook.sheet_names:
            frame = _read_sheet(workbook, sheet_name, source)
            header_index = find_header_row(frame)
            if header_index is None:
                _LOGGER.info(
                    "sheet_ignored",
                    source_id=source.source_id,
                    sheet=sheet_name,
                    reason="no recognisable header row",
                )
                continue
            usable_sheets += 1
            period = parse_sheet_period(str(sheet_name), fallback_period)
            columns = _column_positions(frame.iloc[header_index].tolist())
            for row_index in range(header_index + 1, len(frame)):
                values = frame.iloc[row_index].tolist()
                if all(_is_blank(value) for value in values):
                    continue
                yield _map_row(values, columns, period, row_index + 1, str(sheet_name), source)
    if usable_sheets == 0:
        raise ParseError(
            f"Rental workbook for source '{source.source_id}' has no usable sheet: no header "
            "row with postcode, bedroom and rent columns was found. Check the feed URL."
        )


def find_header_row(frame: pd.DataFrame) -> int | None:
    """Return the index of the first row naming postcode, bedroom and rent columns."""
    for row_index in range(min(WORKBOOK_HEADER_SCAN_ROWS, len(frame))):
        labels = [_normalize_label(value) for value in frame.iloc[row_index].tolist()]
        if all(
            _find_alias(labels, aliases) is not None
            for aliases in (POSTCODE_ALIASES, BEDROOM_ALIASES, RENT_ALIASES)
        ):
            return row_index
    return None


def parse_sheet_period(sheet_name: str, fallback_period: date) -> date:
    """Parse a reporting period from a sheet name.

    Args:
        sheet_name: Sheet name such as ``Dec 2024`` or ``2024-12``.
        fallback_period: Configured source period, else the fetch date.

    Returns:
        First day of the named month, or of the fallback month when the
        sheet name is not a period.
    """
    text = " ".join(sheet_name.split())
    for period_format in _PERIOD_FORMATS:
        try:
            parsed = datetime.strptime(text, period_format)
        except ValueError:
            continue
        return date(parsed.year, parsed.month, 1)
    return fallback_period.replace(day=1)


def _open_workbook(payload: RawPayload, source: SourceConfig) -> pd.ExcelFile:
    try:
        return pd.ExcelFile(payload.path, engine="openpyxl")
    except (ValueError, KeyError, OSError, zipfile.BadZipFile, InvalidFileException) as error:
        raise ParseError(
            f"Rental workbook for source '{source.source_id}' is corrupt or not an .xlsx "
            f"file: {error}. Check archive_member and the feed URL."
        ) from error


def _read_sheet(workbook: pd.ExcelFile, sheet_name: Any, source: SourceConfig) -> pd.DataFrame:
    try:
        return workbook.parse(sheet_name, header=None, dtype=object)
    except (ValueError, KeyError, zipfile.BadZipFile) as error:
        raise ParseError(
            f"Cannot read sheet '{sheet_name}' of rental workbook for source "
            f"'{source.source_id}': {error}."
        ) from error


def _column_positions(header_values: Sequence[Any]) -> dict[str, int | None]:
    labels = [_normalize_label(value) for value in header_values]
    return {
        "postcode": _find_alias(labels, POSTCODE_ALIASES),
        "bedrooms": _find_alias(labels, BEDROOM_ALIASES),
        "rent": _find_alias(labels, RENT_ALIASES),
        "sample_size": _find_alias(labels, SAMPLE_SIZE_ALIASES),
        "suburb": _find_alias(labels, SUBURB_ALIASES),
        "dwelling_type": _find_alias(labels, DWELLING_TYPE_ALIASES),
    }


def _find_alias(labels: Sequence[str], aliases: Sequence[str]) -> int | None:
    """Find a column by exact alias first, then by alias prefix."""
    for alias in aliases:
        if alias in labels:
            return labels.index(alias)
    for alias in aliases:
        for position, label in enumerate(labels):
            if label.startswith(alias):
                return position
    return None


def _map_row(
    values: Sequence[Any],
    columns: dict[str, int | None],
    period: date,
    row_number: int,
    sheet_name: str,
    source: SourceConfig,
) -> RentalParseResult:
    def skipped(reason: str) -> SkippedRow:
        excerpt = ",".join("" if _is_blank(value) else str(value) for value in values)
        return SkippedRow(
            row_number=row_number,
            reason=f"sheet '{sheet_name}': {reason}",
            raw_excerpt=excerpt[:RAW_EXCERPT_LENGTH],
        )

    raw_dwelling_type = _cell(values, columns["dwelling_type"])
    if not _is_blank(raw_dwelling_type):
        dwelling_type = " ".join(str(raw_dwelling_type).split())
        if dwelling_type.lower() != ALL_DWELLINGS_LABEL:
            return skipped(f"dwelling type {dwelling_type!r} is not the all-dwellings total")
    raw_postcode = _cell(values, columns["postcode"])
    if _is_blank(raw_postcode):
        return skipped("missing required field 'postcode'")
    postcode = _postcode_text(raw_postcode)
    if postcode is None:
        return skipped(f"out-of-range value for 'postcode': {raw_postcode!r}")
    raw_bedrooms = _cell(values, columns["bedrooms"])
    bedrooms = None if _is_blank(raw_bedrooms) else parse_bedroom_label(raw_bedrooms)
    if bedrooms is None:
        return skipped(f"unknown bedroom label {raw_bedrooms!r}")
    raw_rent = _cell(values, columns["rent"])
    if _is_blank(raw_rent):
        return skipped("missing required field 'median weekly rent'")
    if str(raw_rent).strip().lower() in SUPPRESSED_VALUES:
        return skipped(f"suppressed rent value {raw_rent!r}")
    median_rent = parse_whole_number(raw_rent)
    if median_rent is None:
        return skipped(f"unparseable value for 'median weekly rent': {raw_rent!r}")
    if median_rent <= 0:
        return skipped(f"out-of-range value for 'median weekly rent': {raw_rent!r}")
    raw_sample = _cell(values, columns["sample_size"])
    raw_suburb = _cell(values, columns["suburb"])
    return RentalMedian(
        region=source.region,
        postcode=postcode,
        bedrooms=bedrooms,
        period=period,
        median_weekly_rent=median_rent,
        source_id=source.source_id,
        sample_size=None if _is_blank(raw_sample) else parse_whole_number(raw_sample),
        suburb=None if _is_blank(raw_suburb) else " ".join(str(raw_suburb).split()),
    )


def _postcode_text(raw_value: Any) -> str | None:
    whole_number = parse_whole_number(raw_value)
    if isinstance(raw_value, str):
        text = raw_value.strip()
        if not text.isdigit():
            return None
        whole_number = int(text)
    if whole_number is None or not 0 < whole_number <= 9999:
        return None
    return f"{whole_number:04d}"


def _cell(values: Sequence[Any], position: int | None) -> Any:
    if position is None or position >= len(values):
        return None
    return values[position]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return bool(pd.isna(value))


def _normalize_label(value: Any) -> str:
    if _is_blank(value):
        return ""
    return " ".join(str(value).lower().replace("\n", " ").split())
