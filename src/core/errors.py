"""Propflow exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each pipeline stage raises a specific error type so run records can
state exactly which stage failed.
"""

from __future__ import annotations


class PropflowError(Exception):
    """Base exception for all propflow failures."""


class PropflowConfigError(PropflowError):
    """Raised for invalid runtime configuration or source matrix files."""


class PropflowDependencyError(PropflowError):
    """Raised when an optional runtime dependency is missing."""


class FetchError(PropflowError):
    """Raised when a source payload cannot be retrieved or extracted."""


class ParseError(PropflowError):
    """Raised when a payload is structurally unreadable."""


class WriteError(PropflowError):
    """Raised when the store rejects or cannot apply a batch."""


class RunStateError(PropflowError):
    """Raised for illegal ingestion run lifecycle transitions."""


class RunConflictError(RunStateError):
    """Raised when a source already has a run in progress."""


class IngestCancelledError(PropflowError):
    """Raised when a source run is cancelled mid-stream."""
