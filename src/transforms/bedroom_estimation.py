"""Bedroom estimation from sale price and category.

Records without a bedroom count get a deterministic estimate from fixed
price thresholds per category. Vacant land always estimates to zero
bedrooms; commercial and other records use the house thresholds.
"""

from __future__ import annotations

from dataclasses import replace

from core.constants import ESTIMATED_BEDROOMS_CONFIDENCE_FACTOR
from core.types import PropertyCategory, PropertyRecord

# Ascending (upper price bound exclusive, bedrooms) pairs, then the top bucket.
_HOUSE_BUCKETS = ((400_000, 2), (700_001, 3))
_BEDROOM_THRESHOLDS: dict[PropertyCategory, tuple[tuple[tuple[int, int], ...], int]] = {
    "house": (_HOUSE_BUCKETS, 4),
    "townhouse": (((450_000, 2), (750_000, 3)), 4),
    "unit": (((350_000, 1), (600_000, 2)), 3),
    "vacant_land": ((), 0),
    "commercial": (_HOUSE_BUCKETS, 4),
    "other": (_HOUSE_BUCKETS, 4),
}
_MIDDLE_BUCKET: dict[PropertyCategory, int] = {
    "house": 3,
    "townhouse": 3,
    "unit": 2,
    "vacant_land": 0,
    "commercial": 3,
    "other": 3,
}


def estimate_bedrooms(sale_price: int | None, category: PropertyCategory) -> int:
    """Estimate a bedroom count from price and category.

    Args:
        sale_price: Optional sale price in whole dollars.
        category: Canonical property category.

    Returns:
        Estimated bedrooms; every category yields a count.
    """
    if sale_price is None or sale_price <= 0:
        return _MIDDLE_BUCKET[category]
    buckets, top_bucket = _BEDROOM_THRESHOLDS[category]
    for upper_bound, bedrooms in buckets:
        if sale_price < upper_bound:
            return bedrooms
    return top_bucket


def apply_bedroom_estimate(record: PropertyRecord) -> PropertyRecord:
    """Fill absent bedrooms with an estimate and lower confidence.

    A present bedroom count is never overridden.
    """
    if record.bedrooms is not None:
        return record
    return replace(
        record,
        bedrooms=estimate_bedrooms(record.sale_price, record.category),
        confidence=record.confidence * ESTIMATED_BEDROOMS_CONFIDENCE_FACTOR,
    )
