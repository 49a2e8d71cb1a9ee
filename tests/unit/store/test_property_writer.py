"""Unit tests for property reconciliation writes."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine

from core.errors import WriteError
from core.types import PropertyRecord, WriteStats
from feed_fixtures import sqlite_url
from store.database import create_store_engine, ensure_schema
from store.property_writer import (
    count_properties,
    load_property,
    load_sales_history,
    write_properties,
)


def _engine(tmp_path: Path) -> Engine:
    engine = create_store_engine(sqlite_url(tmp_path))
    ensure_schema(engine)
    return engine


def _record(**overrides) -> PropertyRecord:
    values = {
        "address": "10 Smith Street",
        "suburb": "Parramatta",
        "region": "NSW",
        "postcode": "2150",
        "category": "house",
        "source_id": "nsw_sales",
        "quality_tier": "individual",
        "confidence": 1.0,
        "bedrooms": 3,
        "sale_price": 750_000,
        "sale_date": date(2024, 11, 3),
    }
    values.update(overrides)
    return PropertyRecord(**values)


def test_new_key_is_inserted(tmp_path: Path) -> None:
    """The first record for a natural key should be inserted."""
    engine = _engine(tmp_path)

    stats = write_properties(engine, [_record()])

    assert stats == WriteStats(inserted=1)


def test_higher_quality_record_replaces_stored(tmp_path: Path) -> None:
    """Individual/0.8 (80) should replace estimated/0.5 (12.5)."""
    engine = _engine(tmp_path)
    write_properties(engine, [_record(quality_tier="estimated", confidence=0.5, sale_price=None)])

    stats = write_properties(engine, [_record(confidence=0.8, bedrooms=4)])

    assert stats == WriteStats(updated=1) and load_property(engine, _record().key).bedrooms == 4


def test_replacement_appends_sales_event(tmp_path: Path) -> None:
    """An accepted replacement with price and date should append a sales event."""
    engine = _engine(tmp_path)
    write_properties(engine, [_record(quality_tier="estimated", confidence=0.5, sale_price=None)])

    write_properties(engine, [_record(confidence=0.8, sale_price=810_000)])

    assert [event.sale_price for event in load_sales_history(engine, _record().key)] == [810_000]


def test_lower_quality_record_is_skipped(tmp_path: Path) -> None:
    """Listing/1.0 (90) should not replace individual/1.0 (100)."""
    engine = _engine(tmp_path)
    write_properties(engine, [_record()])

    stats = write_properties(engine, [_record(quality_tier="listing", bedrooms=5)])

    assert stats == WriteStats(skipped=1) and load_property(engine, _record().key).bedrooms == 3


def test_skipped_record_does_not_append_sales_event(tmp_path: Path) -> None:
    """Rejected records should leave sales history untouched."""
    engine = _engine(tmp_path)
    write_properties(engine, [_record()])

    write_properties(engine, [_record(quality_tier="listing", sale_price=900_000)])

    assert len(load_sales_history(engine, _record().key)) == 1


def test_rewriting_same_record_is_idempotent(tmp_path: Path) -> None:
    """Writing the same batch twice should not add rows."""
    engine = _engine(tmp_path)
    write_properties(engine, [_record()])

    write_properties(engine, [_record()])

    assert (count_properties(engine), len(load_sales_history(engine, _record().key))) == (1, 1)


def test_duplicate_keys_within_batch_reconcile(tmp_path: Path) -> None:
    """Two records with one key in a batch should insert then compare."""
    engine = _engine(tmp_path)

    stats = write_properties(engine, [_record(), _record(quality_tier="listing")])

    assert stats == WriteStats(inserted=1, skipped=1)


def test_store_failure_raises_write_error(tmp_path: Path) -> None:
    """Missing tables should surface as WriteError."""
    engine = create_store_engine(sqlite_url(tmp_path))

    with pytest.raises(WriteError):
        write_properties(engine, [_record()])

    assert True
