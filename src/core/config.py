"""Runtime configuration model for propflow.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_DATABASE_URL,
    DEFAULT_FETCH_BACKOFF_SECONDS,
    DEFAULT_FETCH_MAX_RETRIES,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_LIMIT_RECORDS,
    DEFAULT_LOG_FORMAT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MAX_WORKERS,
    DEFAULT_NSW_RENTALS_URL,
    DEFAULT_NSW_SALES_URL,
    DEFAULT_TEMP_DIR,
    DEFAULT_WRITE_BATCH_SIZE,
    SUPPORTED_LOG_FORMATS,
)
from core.errors import PropflowConfigError

_SUPPORTED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class PropflowConfig:
    """Validated runtime configuration.

    Attributes:
        database_url: SQLAlchemy connection string for the store.
        temp_dir: Working directory for temporary fetch artifacts.
        limit_records: Record cap per source for test runs (0 = unlimited).
        log_level: Log verbosity level name.
        log_format: Log renderer, ``json`` or ``console``.
        nsw_sales_url: Feed URL for the NSW property sales archive.
        nsw_rentals_url: Feed URL for the NSW rental bond workbook.
        fetch_timeout_seconds: Default per-request download timeout.
        fetch_max_retries: Default retry budget for transient fetch failures.
        fetch_backoff_seconds: Base delay for exponential retry backoff.
        write_batch_size: Records per write transaction.
        max_workers: Sources run concurrently.
        sources_file: Optional YAML source matrix overriding built-ins.
    """

    database_url: str = DEFAULT_DATABASE_URL
    temp_dir: Path = DEFAULT_TEMP_DIR
    limit_records: int = DEFAULT_LIMIT_RECORDS
    log_level: str = DEFAULT_LOG_LEVEL
    log_format: str = DEFAULT_LOG_FORMAT
    nsw_sales_url: str = DEFAULT_NSW_SALES_URL
    nsw_rentals_url: str = DEFAULT_NSW_RENTALS_URL
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    fetch_max_retries: int = DEFAULT_FETCH_MAX_RETRIES
    fetch_backoff_seconds: float = DEFAULT_FETCH_BACKOFF_SECONDS
    write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS
    sources_file: Path | None = None

    @classmethod
    def from_env(cls) -> "PropflowConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            PropflowConfigError: If environment values are invalid.
        """
        sources_file_value = os.getenv("PROPFLOW_SOURCES_FILE")
        return cls(
            database_url=os.getenv("PROPFLOW_DATABASE_URL", DEFAULT_DATABASE_URL),
            temp_dir=Path(os.getenv("PROPFLOW_TEMP_DIR", str(DEFAULT_TEMP_DIR))).expanduser(),
            limit_records=_parse_int(
                "PROPFLOW_LIMIT_RECORDS", DEFAULT_LIMIT_RECORDS, minimum=0
            ),
            log_level=parse_log_level(os.getenv("PROPFLOW_LOG_LEVEL", DEFAULT_LOG_LEVEL)),
            log_format=_parse_log_format(os.getenv("PROPFLOW_LOG_FORMAT", DEFAULT_LOG_FORMAT)),
            nsw_sales_url=os.getenv("PROPFLOW_NSW_SALES_URL", DEFAULT_NSW_SALES_URL),
            nsw_rentals_url=os.getenv("PROPFLOW_NSW_RENTALS_URL", DEFAULT_NSW_RENTALS_URL),
            fetch_timeout_seconds=_parse_float(
                "PROPFLOW_FETCH_TIMEOUT_SECONDS", DEFAULT_FETCH_TIMEOUT_SECONDS
            ),
            fetch_max_retries=_parse_int(
                "PROPFLOW_FETCH_MAX_RETRIES", DEFAULT_FETCH_MAX_RETRIES, minimum=0
            ),
            fetch_backoff_seconds=_parse_float(
                "PROPFLOW_FETCH_BACKOFF_SECONDS", DEFAULT_FETCH_BACKOFF_SECONDS
            ),
            write_batch_size=_parse_int(
                "PROPFLOW_WRITE_BATCH_SIZE", DEFAULT_WRITE_BATCH_SIZE, minimum=1
            ),
            max_workers=_parse_int("PROPFLOW_MAX_WORKERS", DEFAULT_MAX_WORKERS, minimum=1),
            sources_file=Path(sources_file_value).expanduser() if sources_file_value else None,
        )


def parse_log_level(raw_value: str) -> str:
    """Normalize and validate a log level name.

    Args:
        raw_value: Level name in any case.

    Returns:
        Upper-case level name.

    Raises:
        PropflowConfigError: If level name is unknown.
    """
    level = raw_value.strip().upper()
    if level not in _SUPPORTED_LOG_LEVELS:
        raise PropflowConfigError(
            f"Invalid log level '{raw_value}'. "
            f"Choose one of: {', '.join(_SUPPORTED_LOG_LEVELS)}."
        )
    return level


def _parse_log_format(raw_value: str) -> str:
    log_format = raw_value.strip().lower()
    if log_format not in SUPPORTED_LOG_FORMATS:
        raise PropflowConfigError(
            f"Invalid PROPFLOW_LOG_FORMAT value '{raw_value}'. "
            f"Choose one of: {', '.join(SUPPORTED_LOG_FORMATS)}."
        )
    return log_format


def _parse_int(env_name: str, default_value: int, minimum: int) -> int:
    """Parse an integer environment value.

    Args:
        env_name: Environment variable name.
        default_value: Value used when the variable is unset.
        minimum: Smallest accepted value.

    Returns:
        Parsed integer.

    Raises:
        PropflowConfigError: If value is not an integer or below minimum.
    """
    raw_value = os.getenv(env_name)
    if raw_value is None or not raw_value.strip():
        return default_value
    try:
        parsed_value = int(raw_value)
    except ValueError as error:
        raise PropflowConfigError(
            f"Invalid {env_name} value: expected integer, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if parsed_value < minimum:
        raise PropflowConfigError(
            f"Invalid {env_name} value {parsed_value}: must be >= {minimum}."
        )
    return parsed_value


def _parse_float(env_name: str, default_value: float) -> float:
    """Parse a non-negative float environment value."""
    raw_value = os.getenv(env_name)
    if raw_value is None or not raw_value.strip():
        return default_value
    try:
        parsed_value = float(raw_value)
    except ValueError as error:
        raise PropflowConfigError(
            f"Invalid {env_name} value: expected number, got '{raw_value}'. "
            f"Set {env_name} to a numeric value."
        ) from error
    if parsed_value < 0:
        raise PropflowConfigError(f"Invalid {env_name} value {parsed_value}: must be >= 0.")
    return parsed_value
