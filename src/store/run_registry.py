"""Ingestion run lifecycle registry.

This module records one audited run per source invocation. Runs move
``idle -> running -> {completed, failed}``; a source with a run still
``running`` cannot start another.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import RunConflictError, RunStateError, WriteError
from core.logging_config import get_logger
from core.types import IngestionRun, RunCounts, RunStatus, utc_now
from store.schema import INGESTION_RUNS

_LOGGER = get_logger(__name__)

ALLOWED_STATE_TRANSITIONS: dict[str, tuple[RunStatus, ...]] = {
    "idle": ("running",),
    "running": ("completed", "failed"),
    "completed": (),
    "failed": (),
}


def validate_transition(current: str, next_state: RunStatus) -> None:
    """Validate one run transition against allowed state machine edges."""
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise RunStateError(
            f"Invalid ingestion run transition {current!r} -> {next_state!r}. "
            f"Allowed: {', '.join(allowed_states) or 'none'}."
        )


class IngestionRunRegistry:
    """Persistent lifecycle registry for ingestion runs."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def start_run(self, source_id: str) -> IngestionRun:
        """Record a new ``running`` run for a source.

        Raises:
            RunConflictError: If the source already has a running run.
            WriteError: If the store rejects the write.
        """
        validate_transition("idle", "running")
        started_at = utc_now()
        try:
            with self._engine.begin() as connection:
                active_run_id = connection.execute(
                    select(INGESTION_RUNS.c.id)
                    .where(
                        INGESTION_RUNS.c.source_id == source_id,
                        INGESTION_RUNS.c.status == "running",
                    )
                    .with_for_update()
                ).scalar()
                if active_run_id is not None:
                    raise RunConflictError(
                        f"Source '{source_id}' already has run {active_run_id} in progress. "
                        "Wait for it to finish, or if its process died run "
                        f"'propflow runs --fail {active_run_id}' before retrying."
                    )
                run_id = connection.execute(
                    INGESTION_RUNS.insert()
                    .values(source_id=source_id, status="running", started_at=started_at)
                    .returning(INGESTION_RUNS.c.id)
                ).scalar_one()
        except IntegrityError as error:
            raise RunConflictError(
                f"Source '{source_id}' started another run concurrently. Retry once it finishes."
            ) from error
        except SQLAlchemyError as error:
            raise WriteError(
                f"Failed to start ingestion run for '{source_id}': {error}."
            ) from error
        _LOGGER.info("run_started", source_id=source_id, run_id=run_id)
        return IngestionRun(
            run_id=run_id, source_id=source_id, status="running", started_at=started_at
        )

    def complete_run(self, run: IngestionRun, counts: RunCounts) -> IngestionRun:
        """Mark a running run ``completed`` with its final counts."""
        return self._finish(run, "completed", counts, None)

    def fail_run(self, run: IngestionRun, counts: RunCounts, error_message: str) -> IngestionRun:
        """Mark a running run ``failed`` with counts reached before the failure."""
        return self._finish(run, "failed", counts, error_message)

    def mark_failed(self, run_id: int, error_message: str) -> IngestionRun:
        """Fail a run left ``running`` by a process that died.

        Counts recorded so far are kept.

        Raises:
            RunStateError: If the run does not exist or is no longer running.
        """
        run = self.load_run(run_id)
        failed_run = self.fail_run(run, run.counts, error_message)
        _LOGGER.warning("run_marked_failed", source_id=run.source_id, run_id=run_id)
        return failed_run

    def load_run(self, run_id: int) -> IngestionRun:
        """Load one run by id.

        Raises:
            RunStateError: If no such run exists.
        """
        with self._engine.connect() as connection:
            row = connection.execute(
                select(INGESTION_RUNS).where(INGESTION_RUNS.c.id == run_id)
            ).first()
        if row is None:
            raise RunStateError(f"Ingestion run {run_id} does not exist.")
        return _run_from_row(row._mapping)

    def list_runs(self, source_id: str | None = None, limit: int = 20) -> tuple[IngestionRun, ...]:
        """List recent runs, newest first, optionally for one source."""
        query = select(INGESTION_RUNS).order_by(
            INGESTION_RUNS.c.started_at.desc(), INGESTION_RUNS.c.id.desc()
        )
        if source_id is not None:
            query = query.where(INGESTION_RUNS.c.source_id == source_id)
        with self._engine.connect() as connection:
            rows = connection.execute(query.limit(limit)).all()
        return tuple(_run_from_row(row._mapping) for row in rows)

    def _finish(
        self,
        run: IngestionRun,
        next_state: RunStatus,
        counts: RunCounts,
        error_message: str | None,
    ) -> IngestionRun:
        validate_transition(run.status, next_state)
        completed_at = utc_now()
        try:
            with self._engine.begin() as connection:
                result = connection.execute(
                    update(INGESTION_RUNS)
                    .where(
                        INGESTION_RUNS.c.id == run.run_id,
                        INGESTION_RUNS.c.status == "running",
                    )
                    .values(
                        status=next_state,
                        completed_at=completed_at,
                        records_fetched=counts.fetched,
                        records_inserted=counts.inserted,
                        records_updated=counts.updated,
                        records_skipped=counts.skipped,
                        records_rejected=counts.rejected,
                        error_message=error_message,
                    )
                )
                if result.rowcount == 0:
                    raise RunStateError(
                        f"Ingestion run {run.run_id} is not running in the store; "
                        "finished runs are never modified."
                    )
        except SQLAlchemyError as error:
            raise WriteError(
                f"Failed to record {next_state} state for run {run.run_id}: {error}."
            ) from error
        return IngestionRun(
            run_id=run.run_id,
            source_id=run.source_id,
            status=next_state,
            started_at=run.started_at,
            counts=counts,
            completed_at=completed_at,
            error_message=error_message,
        )


def _run_from_row(row: Any) -> IngestionRun:
    return IngestionRun(
        run_id=row["id"],
        source_id=row["source_id"],
        status=row["status"],
        started_at=row["started_at"],
        counts=RunCounts(
            fetched=row["records_fetched"],
            inserted=row["records_inserted"],
            updated=row["records_updated"],
            skipped=row["records_skipped"],
            rejected=row["records_rejected"],
        ),
        completed_at=row["completed_at"],
        error_message=row["error_message"],
    )
