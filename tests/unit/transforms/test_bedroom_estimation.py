"""Unit tests for bedroom estimation."""

from __future__ import annotations

import pytest

from core.types import PropertyRecord
from transforms.bedroom_estimation import apply_bedroom_estimate, estimate_bedrooms


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
        "sale_price": 550_000,
    }
    values.update(overrides)
    return PropertyRecord(**values)


@pytest.mark.parametrize(
    ("sale_price", "category", "expected"),
    [
        (399_999, "house", 2),
        (400_000, "house", 3),
        (700_000, "house", 3),
        (700_001, "house", 4),
        (449_999, "townhouse", 2),
        (749_999, "townhouse", 3),
        (750_000, "townhouse", 4),
        (349_999, "unit", 1),
        (599_999, "unit", 2),
        (600_000, "unit", 3),
        (300_000, "other", 2),
    ],
)
def test_estimate_bedrooms_uses_price_buckets(sale_price, category, expected) -> None:
    """Each category should bucket by its fixed thresholds."""
    assert estimate_bedrooms(sale_price, category) == expected


def test_estimate_bedrooms_without_price_uses_middle_bucket() -> None:
    """Missing prices should fall in the category's middle bucket."""
    assert estimate_bedrooms(None, "unit") == 2


@pytest.mark.parametrize("sale_price", [None, 300_000, 2_000_000])
def test_vacant_land_estimates_zero_bedrooms(sale_price) -> None:
    """Vacant land has no bedrooms at any price."""
    assert estimate_bedrooms(sale_price, "vacant_land") == 0


def test_commercial_uses_house_thresholds() -> None:
    """Commercial records should bucket like houses."""
    assert estimate_bedrooms(900_000, "commercial") == 4
    assert estimate_bedrooms(300_000, "commercial") == 2


@pytest.mark.parametrize(
    "category", ["house", "unit", "townhouse", "vacant_land", "commercial", "other"]
)
def test_every_category_receives_an_estimate(category) -> None:
    """Estimation should fill bedrooms for every category."""
    record = apply_bedroom_estimate(_record(category=category, sale_price=900_000))

    assert isinstance(record.bedrooms, int) and record.bedrooms >= 0


def test_estimate_is_deterministic() -> None:
    """The same record should always receive the same estimate."""
    record = _record()

    assert apply_bedroom_estimate(record) == apply_bedroom_estimate(record)


def test_present_bedrooms_are_not_overridden() -> None:
    """Known bedroom counts should be kept."""
    record = _record(bedrooms=5)

    assert apply_bedroom_estimate(record) is record


def test_estimate_reduces_confidence() -> None:
    """Estimated bedrooms should multiply confidence by 0.7."""
    record = apply_bedroom_estimate(_record(confidence=0.9))

    assert record.confidence == pytest.approx(0.63)
