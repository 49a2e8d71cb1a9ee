"""Multi-source ingestion orchestration.

This module runs selected sources on a thread pool, records one
ingestion run per source, and isolates failures so one source never
stops the others.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.engine import Engine

from core.config import PropflowConfig
from core.errors import IngestCancelledError, PropflowError, RunConflictError
from core.logging_config import get_logger
from core.sources import SourceConfig, build_sources, select_sources
from core.types import IngestionRun, RunCounts, RunStatus
from ingest.pipeline import SourcePipelineRunner
from store.database import create_store_engine, ensure_schema
from store.run_registry import IngestionRunRegistry

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class SourceOutcome:
    """Result of one source invocation.

    Attributes:
        source_id: Source identifier.
        status: Final run status.
        counts: Counts reached by the run.
        run_id: Recorded run id, absent when the run could not start.
        error_message: Failure reason for failed outcomes.
    """

    source_id: str
    status: RunStatus
    counts: RunCounts
    run_id: int | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        """True when the run completed."""
        return self.status == "completed"


def run_ingestion(
    config: PropflowConfig,
    requested_ids: Sequence[str] = (),
    cancel_event: threading.Event | None = None,
) -> tuple[SourceOutcome, ...]:
    """Ingest the requested sources, or every enabled source.

    Args:
        config: Runtime configuration.
        requested_ids: Source ids to run; empty means all enabled sources.
        cancel_event: Optional shared cancellation signal.

    Returns:
        One outcome per selected source in selection order.

    Raises:
        PropflowConfigError: If configuration or source selection is invalid.
        WriteError: If the store schema cannot be prepared.
    """
    sources = select_sources(build_sources(config), requested_ids)
    engine = create_store_engine(config.database_url)
    try:
        ensure_schema(engine)
        return run_sources(sources, config, engine, cancel_event)
    finally:
        engine.dispose()


def run_sources(
    sources: Sequence[SourceConfig],
    config: PropflowConfig,
    engine: Engine,
    cancel_event: threading.Event | None = None,
) -> tuple[SourceOutcome, ...]:
    """Run sources concurrently with per-source failure isolation.

    Args:
        sources: Sources to run.
        config: Runtime configuration.
        engine: Store engine with schema in place.
        cancel_event: Optional shared cancellation signal.

    Returns:
        One outcome per source in input order.
    """
    registry = IngestionRunRegistry(engine)
    worker_count = max(1, min(config.max_workers, len(sources) or 1))
    _LOGGER.info(
        "ingestion_started",
        sources=[source.source_id for source in sources],
        max_workers=worker_count,
    )
    with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="propflow") as pool:
        futures = [
            pool.submit(_run_source, source, config, engine, registry, cancel_event)
            for source in sources
        ]
        outcomes = tuple(future.result() for future in futures)
    _LOGGER.info(
        "ingestion_finished",
        completed=sum(1 for outcome in outcomes if outcome.succeeded),
        failed=sum(1 for outcome in outcomes if not outcome.succeeded),
    )
    return outcomes


def _run_source(
    source: SourceConfig,
    config: PropflowConfig,
    engine: Engine,
    registry: IngestionRunRegistry,
    cancel_event: threading.Event | None,
) -> SourceOutcome:
    """Run one source and record its outcome without raising."""
    try:
        run = registry.start_run(source.source_id)
    except RunConflictError as error:
        _LOGGER.warning("run_conflict", source_id=source.source_id, error=str(error))
        return SourceOutcome(
            source_id=source.source_id,
            status="failed",
            counts=RunCounts(),
            error_message=str(error),
        )
    except PropflowError as error:
        _LOGGER.error("run_start_failed", source_id=source.source_id, error=str(error))
        return SourceOutcome(
            source_id=source.source_id,
            status="failed",
            counts=RunCounts(),
            error_message=str(error),
        )
    runner = SourcePipelineRunner(source, config, engine, cancel_event=cancel_event)
    try:
        counts = runner.run()
    except IngestCancelledError as error:
        return _record_failure(registry, run, runner.counts, f"cancelled: {error}")
    except PropflowError as error:
        return _record_failure(registry, run, runner.counts, str(error))
    except Exception as error:
        _LOGGER.exception("run_crashed", source_id=source.source_id, run_id=run.run_id)
        return _record_failure(
            registry, run, runner.counts, f"unexpected {type(error).__name__}: {error}"
        )
    try:
        finished = registry.complete_run(run, counts)
    except PropflowError as error:
        _LOGGER.error("run_record_failed", source_id=source.source_id, error=str(error))
        return SourceOutcome(
            source_id=source.source_id,
            status="failed",
            counts=counts,
            run_id=run.run_id,
            error_message=str(error),
        )
    _LOGGER.info(
        "run_completed",
        source_id=source.source_id,
        run_id=run.run_id,
        fetched=counts.fetched,
        inserted=counts.inserted,
        updated=counts.updated,
        skipped=counts.skipped,
        rejected=counts.rejected,
    )
    return _outcome_from_run(finished)


def _record_failure(
    registry: IngestionRunRegistry,
    run: IngestionRun,
    counts: RunCounts,
    error_message: str,
) -> SourceOutcome:
    _LOGGER.error(
        "run_failed",
        source_id=run.source_id,
        run_id=run.run_id,
        error=error_message,
        fetched=counts.fetched,
    )
    try:
        finished = registry.fail_run(run, counts, error_message)
    except PropflowError as error:
        _LOGGER.error("run_record_failed", source_id=run.source_id, error=str(error))
        return SourceOutcome(
            source_id=run.source_id,
            status="failed",
            counts=counts,
            run_id=run.run_id,
            error_message=error_message,
        )
    return _outcome_from_run(finished)


def _outcome_from_run(run: IngestionRun) -> SourceOutcome:
    return SourceOutcome(
        source_id=run.source_id,
        status=run.status,
        counts=run.counts,
        run_id=run.run_id,
        error_message=run.error_message,
    )
