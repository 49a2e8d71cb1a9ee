"""Per-source ingestion pipeline.

This module drives one source through fetch, parse, enrichment, and
batched writes. Parse results are pulled lazily from the payload file
and written in batches; cancellation is checked between batches. The
scratch directory holding the payload lives until the last batch.
"""

from __future__ import annotations

import threading
from contextlib import closing
from itertools import islice
from typing import Callable, Iterable, Iterator, Sequence, TypeVar

import requests
from sqlalchemy.engine import Engine

from core.config import PropflowConfig
from core.constants import MAX_LOGGED_SKIPPED_ROWS
from core.errors import IngestCancelledError, WriteError
from core.logging_config import get_logger
from core.sources import SourceConfig
from core.types import (
    PropertyRecord,
    RentalMedian,
    RunCounts,
    SkippedRow,
    SourceKind,
    WriteStats,
)
from ingest.fetcher import fetched_payload
from ingest.parser import parse_payload
from store.property_writer import write_properties
from store.rental_store import store_rental_lookup, write_rental_medians
from transforms.enrichment import enrich_records
from transforms.rental_matching import RentalLookup, memoized_rental_lookup

_LOGGER = get_logger(__name__)

_ItemT = TypeVar("_ItemT")
BatchWriter = Callable[[Engine, Sequence[object], RentalLookup], WriteStats]


def _write_property_batch(
    engine: Engine,
    items: Sequence[object],
    rental_lookup: RentalLookup,
) -> WriteStats:
    records = [_expect_type(item, PropertyRecord) for item in items]
    return write_properties(engine, list(enrich_records(records, rental_lookup)))


def _write_rental_batch(
    engine: Engine,
    items: Sequence[object],
    rental_lookup: RentalLookup,
) -> WriteStats:
    return write_rental_medians(engine, [_expect_type(item, RentalMedian) for item in items])


BATCH_WRITERS: dict[SourceKind, BatchWriter] = {
    "sales_csv": _write_property_batch,
    "rental_workbook": _write_rental_batch,
}


class SourcePipelineRunner:
    """Stateful runner for one source's pass through the pipeline."""

    def __init__(
        self,
        source: SourceConfig,
        config: PropflowConfig,
        engine: Engine,
        cancel_event: threading.Event | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._source = source
        self._config = config
        self._engine = engine
        self._cancel_event = cancel_event
        self._session = session
        self._rental_lookup = memoized_rental_lookup(store_rental_lookup(engine))
        self._counts = RunCounts()
        self._logged_skips = 0

    @property
    def counts(self) -> RunCounts:
        """Counts reached so far, including after a failure."""
        return self._counts

    def run(self) -> RunCounts:
        """Fetch, parse, enrich and write the source.

        Returns:
            Final run counts.

        Raises:
            FetchError: If the payload cannot be retrieved.
            ParseError: If the payload is structurally unreadable.
            WriteError: If a batch cannot be written.
            IngestCancelledError: If cancellation is requested.
        """
        with fetched_payload(
            self._source,
            self._config.temp_dir,
            self._config.fetch_backoff_seconds,
            session=self._session,
            cancel_event=self._cancel_event,
        ) as payload:
            with closing(parse_payload(payload, self._source)) as parsed:
                results: Iterable[object] = parsed
                if self._config.limit_records > 0:
                    results = islice(parsed, self._config.limit_records)
                self._write_batches(results)
        return self._counts

    def _write_batches(self, results: Iterable[object]) -> None:
        write_batch = BATCH_WRITERS[self._source.kind]
        for batch in _batched(results, self._config.write_batch_size):
            self._raise_if_cancelled()
            items = self._accept_batch(batch)
            stats = write_batch(self._engine, items, self._rental_lookup)
            self._counts = self._counts.with_write_stats(stats)
            _LOGGER.info(
                "batch_written",
                source_id=self._source.source_id,
                batch_size=len(batch),
                inserted=stats.inserted,
                updated=stats.updated,
                skipped=stats.skipped,
            )

    def _accept_batch(self, batch: Sequence[object]) -> list[object]:
        """Count a batch and separate rejected rows from writable items."""
        items: list[object] = []
        rejected = 0
        for result in batch:
            if isinstance(result, SkippedRow):
                rejected += 1
                self._log_skipped_row(result)
            else:
                items.append(result)
        self._counts = RunCounts(
            fetched=self._counts.fetched + len(batch),
            inserted=self._counts.inserted,
            updated=self._counts.updated,
            skipped=self._counts.skipped,
            rejected=self._counts.rejected + rejected,
        )
        return items

    def _log_skipped_row(self, skipped_row: SkippedRow) -> None:
        self._logged_skips += 1
        if self._logged_skips > MAX_LOGGED_SKIPPED_ROWS:
            return
        _LOGGER.warning(
            "row_skipped",
            source_id=self._source.source_id,
            row_number=skipped_row.row_number,
            reason=skipped_row.reason,
            raw_excerpt=skipped_row.raw_excerpt,
        )
        if self._logged_skips == MAX_LOGGED_SKIPPED_ROWS:
            _LOGGER.warning(
                "row_skip_logging_suppressed",
                source_id=self._source.source_id,
                limit=MAX_LOGGED_SKIPPED_ROWS,
            )

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise IngestCancelledError(
                f"Ingestion of source '{self._source.source_id}' was cancelled."
            )


def _batched(items: Iterable[_ItemT], batch_size: int) -> Iterator[list[_ItemT]]:
    iterator = iter(items)
    while True:
        batch = list(islice(iterator, batch_size))
        if not batch:
            return
        yield batch


def _expect_type(item: object, expected_type: type[_ItemT]) -> _ItemT:
    if not isinstance(item, expected_type):
        raise WriteError(
            f"Expected {expected_type.__name__} for this source kind, got "
            f"{type(item).__name__}. Check the source kind in the source matrix."
        )
    return item
