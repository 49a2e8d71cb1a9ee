"""Integration tests for multi-source ingestion."""

from __future__ import annotations

from pathlib import Path

from core.types import PropertyKey
from feed_fixtures import (
    build_test_config,
    rental_sheet,
    rental_source,
    sales_row,
    sales_source,
    write_rental_workbook,
    write_sales_archive,
)
from ingest.orchestrator import run_sources
from store.database import create_store_engine, ensure_schema
from store.property_writer import count_properties, load_property, load_sales_history
from store.run_registry import IngestionRunRegistry


def _sales_rows() -> list[dict[str, str]]:
    return [
        sales_row(Property_house_number="1", Purchase_price="650000"),
        sales_row(Property_house_number="2", Purchase_price="broken"),
        sales_row(Property_house_number="3", Purchase_price="820000"),
        sales_row(Property_house_number="5", Property_unit_number="4", Strata_lot_number="7"),
    ]


def test_ingesting_same_file_twice_is_idempotent(tmp_path: Path) -> None:
    """A second run over the same feed should not change the property count."""
    config = build_test_config(tmp_path)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    archive_path = write_sales_archive(tmp_path / "feeds", _sales_rows())
    source = sales_source(url=archive_path.resolve().as_uri())
    run_sources([source], config, engine)
    first_count = count_properties(engine)

    outcomes = run_sources([source], config, engine)

    assert (count_properties(engine), outcomes[0].counts.skipped) == (first_count, 3)


def test_second_run_does_not_duplicate_sales_events(tmp_path: Path) -> None:
    """Re-ingesting should not append identical sales events."""
    config = build_test_config(tmp_path)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    archive_path = write_sales_archive(tmp_path / "feeds", _sales_rows())
    source = sales_source(url=archive_path.resolve().as_uri())
    key = PropertyKey(address="1 Smith Street", suburb="Parramatta", region="NSW", postcode="2150")

    run_sources([source], config, engine)
    run_sources([source], config, engine)

    assert len(load_sales_history(engine, key)) == 1


def test_failed_source_does_not_stop_other_sources(tmp_path: Path) -> None:
    """A fetch failure in one source should leave the other to complete."""
    config = build_test_config(tmp_path)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    archive_path = write_sales_archive(tmp_path / "feeds", _sales_rows())
    broken = rental_source(url=(tmp_path / "feeds" / "absent.xlsx").resolve().as_uri())
    healthy = sales_source(url=archive_path.resolve().as_uri())

    outcomes = run_sources([broken, healthy], config, engine)

    assert [outcome.status for outcome in outcomes] == ["failed", "completed"]


def test_failed_run_is_recorded_with_reason(tmp_path: Path) -> None:
    """Failed runs should be persisted with their error message."""
    config = build_test_config(tmp_path)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    broken = rental_source(url=(tmp_path / "feeds" / "absent.xlsx").resolve().as_uri())

    run_sources([broken], config, engine)
    recorded = IngestionRunRegistry(engine).list_runs(source_id="nsw_rentals")[0]

    assert recorded.status == "failed" and "absent.xlsx" in recorded.error_message


def test_rentals_then_sales_produces_estimated_yield(tmp_path: Path) -> None:
    """Sales ingested after rentals should carry matched rent and yield."""
    config = build_test_config(tmp_path)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    workbook_path = write_rental_workbook(
        tmp_path / "feeds" / "rentals.xlsx",
        {
            "Dec 2024": rental_sheet(
                [
                    (2150, "Total", "3 Bedrooms", 480, 540, 60),
                    (2150, "Total", "4 or more Bedrooms", 560, 600, 40),
                ]
            )
        },
    )
    archive_path = write_sales_archive(tmp_path / "feeds", _sales_rows())
    run_sources([rental_source(url=workbook_path.resolve().as_uri())], config, engine)

    run_sources([sales_source(url=archive_path.resolve().as_uri())], config, engine)
    record = load_property(
        engine,
        PropertyKey(address="1 Smith Street", suburb="Parramatta", region="NSW", postcode="2150"),
    )

    assert (record.bedrooms, record.weekly_rent, record.is_rental_estimated) == (3, 540, True)


def test_run_counts_include_rejected_rows(tmp_path: Path) -> None:
    """Malformed rows should be counted as rejected, not dropped silently."""
    config = build_test_config(tmp_path)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    archive_path = write_sales_archive(tmp_path / "feeds", _sales_rows())

    outcomes = run_sources([sales_source(url=archive_path.resolve().as_uri())], config, engine)

    assert (outcomes[0].counts.inserted, outcomes[0].counts.rejected) == (3, 1)


def test_concurrent_sources_insert_shared_key_once(tmp_path: Path) -> None:
    """Two sources writing the same property in parallel should insert it once."""
    config = build_test_config(tmp_path, max_workers=2)
    engine = create_store_engine(config.database_url)
    ensure_schema(engine)
    rows = [sales_row(Property_house_number="12", Purchase_price="700000")]
    primary = write_sales_archive(tmp_path / "primary", rows)
    mirror = write_sales_archive(tmp_path / "mirror", rows)
    sources = [
        sales_source(url=primary.resolve().as_uri()),
        sales_source(source_id="nsw_sales_mirror", url=mirror.resolve().as_uri()),
    ]

    outcomes = run_sources(sources, config, engine)

    assert [outcome.status for outcome in outcomes] == ["completed", "completed"]
    assert count_properties(engine) == 1
    assert sum(outcome.counts.inserted for outcome in outcomes) == 1
