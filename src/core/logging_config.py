"""Structured logging configuration.

This module initializes structlog with a stable structured format.
Modules call ``get_logger`` at import time; the CLI calls
``configure_logging`` once to apply level and renderer.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from core.constants import DEFAULT_LOG_FORMAT, DEFAULT_LOG_LEVEL


def configure_logging(level: str = DEFAULT_LOG_LEVEL, log_format: str = DEFAULT_LOG_FORMAT) -> None:
    """Configure structlog processors and level filtering.

    Args:
        level: Log level name, e.g. ``INFO``.
        log_format: ``json`` for machine-readable lines, ``console`` for humans.
    """
    renderers: list[Any]
    if log_format == "console":
        renderers = [structlog.dev.ConsoleRenderer()]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_level_number(level)),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:
    """Return a module logger instance.

    Args:
        name: Logger name, usually __name__.

    Returns:
        A structlog logger accepting structured keyword fields.
    """
    return structlog.get_logger(name)


def _stderr_logger(*args: Any) -> Any:
    """Build a print logger bound to the current stderr stream."""
    return structlog.PrintLogger(file=sys.stderr)


def _level_number(level: str) -> int:
    level_number = logging.getLevelName(level.upper())
    if isinstance(level_number, int):
        return level_number
    return logging.INFO
