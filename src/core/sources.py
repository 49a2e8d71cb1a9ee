"""Source descriptors and the optional YAML source matrix.

This module defines the tagged source descriptor that selects how a
feed is fetched, parsed, and written. Built-in NSW sources come from
runtime config; a YAML matrix can override them or add new feeds.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path
from typing import Mapping, Sequence, cast

from core.config import PropflowConfig
from core.constants import (
    DEFAULT_ARCHIVE_MEMBER,
    DEFAULT_CONFIDENCE,
    NSW_RENTALS_SOURCE_ID,
    NSW_SALES_CONFIDENCE,
    NSW_SALES_SOURCE_ID,
)
from core.errors import PropflowConfigError, PropflowDependencyError
from core.s3_uri import parse_s3_uri
from core.types import (
    SUPPORTED_QUALITY_TIERS,
    SUPPORTED_REGIONS,
    SUPPORTED_SOURCE_KINDS,
    QualityTier,
    RegionCode,
    SourceKind,
)

_SUPPORTED_URL_SCHEMES = ("http://", "https://", "s3://", "file://")
_SOURCE_FIELDS = frozenset(
    {
        "source_id",
        "kind",
        "url",
        "archive_member",
        "region",
        "timeout_seconds",
        "max_retries",
        "quality_tier",
        "confidence",
        "enabled",
        "period",
    }
)


@dataclass(frozen=True)
class SourceConfig:
    """Descriptor for one named ingestion source.

    Attributes:
        source_id: Stable source identifier recorded on every row.
        kind: Source family tag selecting parser and writer.
        url: ``http(s)://``, ``s3://`` or ``file://`` location of the feed.
        region: Region code stamped on parsed records.
        timeout_seconds: Per-request download timeout.
        max_retries: Retries allowed for transient fetch failures.
        archive_member: Exact name or glob of the ZIP member to extract.
        quality_tier: Tier assigned to parsed property records.
        confidence: Starting confidence for parsed property records.
        enabled: Whether the source runs when no names are requested.
        period: Reporting period for workbook sheets whose names are not
            months; the first day of the fetch month is used when unset.
    """

    source_id: str
    kind: SourceKind
    url: str
    region: RegionCode
    timeout_seconds: float
    max_retries: int
    archive_member: str | None = None
    quality_tier: QualityTier = "individual"
    confidence: float = DEFAULT_CONFIDENCE
    enabled: bool = True
    period: date | None = None


def build_sources(config: PropflowConfig) -> tuple[SourceConfig, ...]:
    """Build the configured source list.

    Args:
        config: Runtime configuration.

    Returns:
        Built-in sources merged with the optional YAML source matrix.

    Raises:
        PropflowConfigError: If the source matrix is invalid.
    """
    sources = {source.source_id: source for source in _builtin_sources(config)}
    if config.sources_file is not None:
        for entry in load_source_matrix(config.sources_file):
            source_id = _required_string(entry, "source_id", "source entry")
            sources[source_id] = _build_source(entry, sources.get(source_id), config)
    return tuple(sources.values())


def select_sources(
    sources: Sequence[SourceConfig],
    requested_ids: Sequence[str],
) -> tuple[SourceConfig, ...]:
    """Select sources by id, or all enabled sources when none requested.

    Args:
        sources: Configured sources.
        requested_ids: Source ids from the CLI, possibly empty.

    Returns:
        Selected sources in request order.

    Raises:
        PropflowConfigError: If a requested id is not configured.
    """
    if not requested_ids:
        return tuple(source for source in sources if source.enabled)
    by_id = {source.source_id: source for source in sources}
    unknown_ids = [source_id for source_id in requested_ids if source_id not in by_id]
    if unknown_ids:
        raise PropflowConfigError(
            f"Unknown source(s): {', '.join(unknown_ids)}. "
            f"Configured sources: {', '.join(by_id) or 'none'}."
        )
    return tuple(by_id[source_id] for source_id in dict.fromkeys(requested_ids))


def load_source_matrix(matrix_path: Path) -> tuple[Mapping[str, object], ...]:
    """Load source entries from a YAML source matrix.

    Args:
        matrix_path: YAML file path.

    Returns:
        Raw source entry mappings.

    Raises:
        PropflowDependencyError: If PyYAML is unavailable.
        PropflowConfigError: If file is missing or has an invalid shape.
    """
    payload = _load_yaml_payload(matrix_path)
    root_mapping = _expect_mapping(payload, "source matrix root")
    raw_version = root_mapping.get("version")
    if raw_version != 1:
        raise PropflowConfigError(
            f"Unsupported source matrix version {raw_version!r} in {matrix_path}. Use version: 1."
        )
    raw_sources = root_mapping.get("sources")
    if not isinstance(raw_sources, Sequence) or isinstance(raw_sources, (str, bytes)):
        raise PropflowConfigError(
            f"Source matrix {matrix_path} must define 'sources' as a list of entries."
        )
    return tuple(
        _expect_mapping(item, f"source entry #{index + 1}")
        for index, item in enumerate(raw_sources)
    )


def _builtin_sources(config: PropflowConfig) -> tuple[SourceConfig, ...]:
    return (
        SourceConfig(
            source_id=NSW_SALES_SOURCE_ID,
            kind="sales_csv",
            url=config.nsw_sales_url,
            region="NSW",
            timeout_seconds=config.fetch_timeout_seconds,
            max_retries=config.fetch_max_retries,
            archive_member=DEFAULT_ARCHIVE_MEMBER,
            quality_tier="individual",
            confidence=NSW_SALES_CONFIDENCE,
        ),
        SourceConfig(
            source_id=NSW_RENTALS_SOURCE_ID,
            kind="rental_workbook",
            url=config.nsw_rentals_url,
            region="NSW",
            timeout_seconds=config.fetch_timeout_seconds,
            max_retries=config.fetch_max_retries,
            quality_tier="aggregated",
        ),
    )


def _build_source(
    entry: Mapping[str, object],
    base: SourceConfig | None,
    config: PropflowConfig,
) -> SourceConfig:
    """Build one source from a matrix entry, overlaying a built-in if present."""
    context = f"source '{entry.get('source_id')}'"
    unknown_keys = sorted(entry.keys() - _SOURCE_FIELDS)
    if unknown_keys:
        raise PropflowConfigError(
            f"Invalid {context}: unknown field(s) {', '.join(unknown_keys)}. "
            f"Allowed: {', '.join(sorted(_SOURCE_FIELDS))}."
        )
    if base is None:
        base = SourceConfig(
            source_id=_required_string(entry, "source_id", context),
            kind=_parse_kind(_required_string(entry, "kind", context), context),
            url=_required_string(entry, "url", context),
            region="NSW",
            timeout_seconds=config.fetch_timeout_seconds,
            max_retries=config.fetch_max_retries,
        )
    overrides: dict[str, object] = {}
    if "kind" in entry:
        overrides["kind"] = _parse_kind(_required_string(entry, "kind", context), context)
    if "url" in entry:
        overrides["url"] = _required_string(entry, "url", context)
    if "archive_member" in entry:
        overrides["archive_member"] = _required_string(entry, "archive_member", context)
    if "region" in entry:
        overrides["region"] = _parse_region(_required_string(entry, "region", context), context)
    if "quality_tier" in entry:
        overrides["quality_tier"] = _parse_tier(
            _required_string(entry, "quality_tier", context), context
        )
    if "timeout_seconds" in entry:
        overrides["timeout_seconds"] = _required_number(entry, "timeout_seconds", context)
    if "max_retries" in entry:
        overrides["max_retries"] = int(_required_number(entry, "max_retries", context))
    if "confidence" in entry:
        overrides["confidence"] = _parse_confidence(
            _required_number(entry, "confidence", context), context
        )
    if "enabled" in entry:
        raw_enabled = entry["enabled"]
        if not isinstance(raw_enabled, bool):
            raise PropflowConfigError(f"Invalid {context}: field 'enabled' must be true or false.")
        overrides["enabled"] = raw_enabled
    if "period" in entry:
        overrides["period"] = _parse_period(entry["period"], context)
    source = replace(base, **overrides)
    _validate_url(source.url, context)
    return source


def _load_yaml_payload(matrix_path: Path) -> object:
    try:
        import yaml
    except ImportError as error:  # pragma: no cover - dependency failure
        raise PropflowDependencyError(
            "YAML source matrix support requires PyYAML. Install with 'pip install pyyaml'."
        ) from error
    matrix_file = matrix_path.expanduser().resolve()
    if not matrix_file.exists():
        raise PropflowConfigError(
            f"Source matrix file does not exist at {matrix_file}. "
            "Unset PROPFLOW_SOURCES_FILE or point it at a YAML file."
        )
    try:
        payload = cast(object, yaml.safe_load(matrix_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise PropflowConfigError(
            f"Failed to read source matrix at {matrix_file}: {error}. Check file permissions."
        ) from error
    except yaml.YAMLError as error:
        raise PropflowConfigError(
            f"Failed to parse YAML source matrix at {matrix_file}: {error}. Fix YAML syntax."
        ) from error
    if payload is None:
        raise PropflowConfigError(
            f"Source matrix at {matrix_file} is empty. Define 'version' and 'sources'."
        )
    return payload


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise PropflowConfigError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise PropflowConfigError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _required_string(entry: Mapping[str, object], field_name: str, context: str) -> str:
    value = entry.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise PropflowConfigError(
            f"Invalid {context}: field '{field_name}' must be a non-empty string."
        )
    return value.strip()


def _required_number(entry: Mapping[str, object], field_name: str, context: str) -> float:
    value = entry.get(field_name)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise PropflowConfigError(
            f"Invalid {context}: field '{field_name}' must be a non-negative number."
        )
    return float(value)


def _parse_kind(raw_kind: str, context: str) -> SourceKind:
    if raw_kind in SUPPORTED_SOURCE_KINDS:
        return cast(SourceKind, raw_kind)
    raise PropflowConfigError(
        f"Invalid {context}: unsupported kind '{raw_kind}'. "
        f"Use one of: {', '.join(SUPPORTED_SOURCE_KINDS)}."
    )


def _parse_region(raw_region: str, context: str) -> RegionCode:
    region = raw_region.upper()
    if region in SUPPORTED_REGIONS:
        return cast(RegionCode, region)
    raise PropflowConfigError(
        f"Invalid {context}: unsupported region '{raw_region}'. "
        f"Use one of: {', '.join(SUPPORTED_REGIONS)}."
    )


def _parse_tier(raw_tier: str, context: str) -> QualityTier:
    if raw_tier in SUPPORTED_QUALITY_TIERS:
        return cast(QualityTier, raw_tier)
    raise PropflowConfigError(
        f"Invalid {context}: unsupported quality_tier '{raw_tier}'. "
        f"Use one of: {', '.join(SUPPORTED_QUALITY_TIERS)}."
    )


def _parse_confidence(value: float, context: str) -> float:
    if value > 1.0:
        raise PropflowConfigError(f"Invalid {context}: confidence must be within [0, 1].")
    return value


def _parse_period(raw_period: object, context: str) -> date:
    if isinstance(raw_period, datetime):
        raw_period = raw_period.date()
    if isinstance(raw_period, date):
        return raw_period.replace(day=1)
    if isinstance(raw_period, str):
        for period_format in ("%Y-%m", "%Y-%m-%d"):
            try:
                return datetime.strptime(raw_period.strip(), period_format).date().replace(day=1)
            except ValueError:
                continue
    raise PropflowConfigError(
        f"Invalid {context}: field 'period' must be a month such as 2024-12, got {raw_period!r}."
    )


def _validate_url(url: str, context: str) -> None:
    if not url.startswith(_SUPPORTED_URL_SCHEMES):
        raise PropflowConfigError(
            f"Invalid {context}: url '{url}' must start with one of "
            f"{', '.join(_SUPPORTED_URL_SCHEMES)}."
        )
    if url.startswith("s3://"):
        parse_s3_uri(url)
