"""Unit tests for field-level value mapping."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from ingest.field_mapping import (
    category_from_settlement_code,
    format_address,
    normalize_property_category,
    parse_bedroom_label,
    parse_feed_date,
    parse_land_area,
    parse_price,
)


def test_parse_price_strips_currency_formatting() -> None:
    """Dollar signs and thousands separators should be ignored."""
    assert parse_price("$750,000") == 750000


def test_parse_price_returns_none_for_text() -> None:
    """Non-numeric prices should not parse."""
    assert parse_price("POA") is None


def test_parse_feed_date_accepts_compact_format() -> None:
    """Compact YYYYMMDD dates should parse."""
    assert parse_feed_date("20241103") == date(2024, 11, 3)


def test_parse_feed_date_accepts_day_first_format() -> None:
    """Day-first slash dates should parse."""
    assert parse_feed_date("03/11/2024") == date(2024, 11, 3)


def test_format_address_prefixes_unit_number() -> None:
    """Unit numbers should render as a U/N prefix."""
    assert format_address("2", "10", "Smith  Street") == "2/10 Smith Street"


def test_format_address_without_numbers_keeps_street() -> None:
    """Addresses without numbers should be the street name."""
    assert format_address(None, None, "Smith Street") == "Smith Street"


def test_residence_with_strata_lot_is_unit() -> None:
    """Residences on a strata lot should map to unit."""
    assert category_from_settlement_code("R", "14") == "unit"


def test_residence_without_strata_lot_is_house() -> None:
    """Residences without a strata lot should map to house."""
    assert category_from_settlement_code("R", None) == "house"


def test_vacant_code_maps_to_vacant_land() -> None:
    """Code V should map to vacant land."""
    assert category_from_settlement_code("V", None) == "vacant_land"


def test_unmatched_category_maps_to_other() -> None:
    """Labels without any known keyword should map to other."""
    assert normalize_property_category("Marina berth") == "other"


def test_composite_category_uses_keywords() -> None:
    """Composite labels should match by keyword."""
    assert normalize_property_category("Residential - Townhouse") == "townhouse"


def test_parse_land_area_converts_hectares() -> None:
    """Hectare areas should convert to square metres."""
    assert parse_land_area("1.5", "H") == Decimal("15000.0")


def test_parse_bedroom_label_reads_open_ended_bucket() -> None:
    """Open-ended bedroom labels should take their lower bound."""
    assert parse_bedroom_label("4 or more Bedrooms") == 4


def test_parse_bedroom_label_maps_bedsitter_to_zero() -> None:
    """Bedsitters should have zero bedrooms."""
    assert parse_bedroom_label("Bedsitter") == 0


def test_parse_bedroom_label_rejects_total_row() -> None:
    """Total rows are not a bedroom count."""
    assert parse_bedroom_label("Total") is None
