"""Unit tests for the sales CSV parser."""

from __future__ import annotations

import csv
from datetime import date
from pathlib import Path

import pytest

from core.errors import ParseError
from core.types import PropertyRecord, SkippedRow
from feed_fixtures import delimited_payload, sales_csv_bytes, sales_row, sales_source
from ingest.sales_parser import parse_sales_rows


def _parse_bytes(tmp_path: Path, content: bytes) -> list:
    payload = delimited_payload(tmp_path / "sales.csv", content)
    return list(parse_sales_rows(payload, sales_source()))


def _parse(tmp_path: Path, rows, header=None) -> list:
    content = sales_csv_bytes(rows) if header is None else sales_csv_bytes(rows, header)
    return _parse_bytes(tmp_path, content)


def test_malformed_row_is_skipped_without_aborting(tmp_path: Path) -> None:
    """One malformed row should yield one SkippedRow and keep the rest."""
    rows = [
        sales_row(Property_house_number="1"),
        sales_row(Property_house_number="2", Purchase_price="not-a-price"),
        sales_row(Property_house_number="3"),
    ]

    results = _parse(tmp_path, rows)

    assert [type(result) for result in results] == [PropertyRecord, SkippedRow, PropertyRecord]


def test_row_rejected_by_csv_reader_is_skipped(tmp_path: Path) -> None:
    """A field over the reader's size limit should skip only that row."""
    rows = [
        sales_row(Property_house_number="1"),
        sales_row(
            Property_house_number="2",
            Property_street_name="x" * (csv.field_size_limit() + 1),
        ),
        sales_row(Property_house_number="3"),
    ]

    results = _parse(tmp_path, rows)

    assert [type(result) for result in results] == [PropertyRecord, SkippedRow, PropertyRecord]
    assert results[1].row_number == 3 and "malformed CSV row" in results[1].reason
    assert results[2].address == "3 Smith Street"


def test_skipped_row_reports_row_number(tmp_path: Path) -> None:
    """Skipped rows should carry their line number in the file."""
    rows = [sales_row(), sales_row(Purchase_price="0")]

    results = _parse(tmp_path, rows)

    assert isinstance(results[1], SkippedRow) and results[1].row_number == 3


def test_missing_locality_is_skipped(tmp_path: Path) -> None:
    """Rows without a suburb cannot form a natural key."""
    results = _parse(tmp_path, [sales_row(Property_locality="")])

    assert isinstance(results[0], SkippedRow)


def test_contract_date_is_preferred_sale_date(tmp_path: Path) -> None:
    """Sale date should come from the contract date when present."""
    record = _parse(tmp_path, [sales_row()])[0]

    assert record.sale_date == date(2024, 11, 3)


def test_settlement_date_is_fallback_sale_date(tmp_path: Path) -> None:
    """Sale date should fall back to settlement date."""
    record = _parse(tmp_path, [sales_row(Contract_date="")])[0]

    assert record.sale_date == date(2024, 12, 1)


def test_record_takes_tier_and_confidence_from_source(tmp_path: Path) -> None:
    """Source defaults should stamp tier and confidence."""
    record = _parse(tmp_path, [sales_row()])[0]

    assert (record.quality_tier, record.confidence) == ("individual", 0.9)


def test_strata_residence_address_and_category(tmp_path: Path) -> None:
    """Strata residences should map to unit with a U/N address."""
    record = _parse(tmp_path, [sales_row(Property_unit_number="4", Strata_lot_number="12")])[0]

    assert (record.address, record.category) == ("4/10 Smith Street", "unit")


def test_missing_required_header_raises_parse_error(tmp_path: Path) -> None:
    """A payload without required columns is structurally unreadable."""
    header = [column for column in sales_row() if column != "Purchase price"]

    with pytest.raises(ParseError):
        _parse(tmp_path, [sales_row()], header=header)

    assert True


def test_invalid_encoding_raises_parse_error(tmp_path: Path) -> None:
    """Bytes that are not UTF-8 should raise ParseError."""
    content = sales_csv_bytes([sales_row()]) + b"\xff\xfe\xfa,broken\n"

    with pytest.raises(ParseError):
        _parse_bytes(tmp_path, content)

    assert True


def test_empty_payload_raises_parse_error(tmp_path: Path) -> None:
    """A payload with no header row cannot be parsed."""
    with pytest.raises(ParseError):
        _parse_bytes(tmp_path, b"")

    assert True


def test_missing_payload_file_raises_parse_error(tmp_path: Path) -> None:
    """A payload whose scratch file is gone should raise ParseError."""
    payload = delimited_payload(tmp_path / "sales.csv", sales_csv_bytes([sales_row()]))
    payload.path.unlink()

    with pytest.raises(ParseError):
        list(parse_sales_rows(payload, sales_source()))

    assert True
