"""Rental median matching for property records.

Records without a weekly rent take the most recent rental median for
exactly their region, postcode and bedroom count. There is no fallback
to neighbouring postcodes or bedroom counts.
"""

from __future__ import annotations

import functools
from dataclasses import replace
from typing import Callable, Optional

from core.constants import MATCHED_RENT_CONFIDENCE_FACTOR
from core.types import PropertyRecord, RegionCode, RentalMedian

RentalLookup = Callable[[RegionCode, str, int], Optional[RentalMedian]]


def memoized_rental_lookup(lookup: RentalLookup) -> RentalLookup:
    """Wrap a read-only rental lookup with a per-run cache.

    Args:
        lookup: Lookup returning the most recent median for a key.

    Returns:
        Lookup that queries each (region, postcode, bedrooms) key once.
    """
    return functools.lru_cache(maxsize=None)(lookup)


def apply_rental_match(record: PropertyRecord, lookup: RentalLookup) -> PropertyRecord:
    """Attach a matched median weekly rent to a record.

    Args:
        record: Property record, possibly with estimated bedrooms.
        lookup: Read-only rental median lookup.

    Returns:
        The record with rent, estimated-rent flag and reduced confidence,
        or the record unchanged when rent is present, a key field is
        absent, or no median matches.
    """
    if record.weekly_rent is not None:
        return record
    if not record.postcode or record.bedrooms is None:
        return record
    median = lookup(record.region, record.postcode, record.bedrooms)
    if median is None:
        return record
    return replace(
        record,
        weekly_rent=median.median_weekly_rent,
        is_rental_estimated=True,
        confidence=record.confidence * MATCHED_RENT_CONFIDENCE_FACTOR,
    )
