"""Record enrichment composition.

Enrichment applies bedroom estimation, rental matching and yield
calculation in that order. Each step is pure and leaves values it does
not own untouched, so enriching an enriched record changes nothing.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from core.types import PropertyRecord
from transforms.bedroom_estimation import apply_bedroom_estimate
from transforms.rental_matching import RentalLookup, apply_rental_match
from transforms.yield_calculation import apply_yield


def enrich_record(record: PropertyRecord, rental_lookup: RentalLookup) -> PropertyRecord:
    """Apply all enrichment steps to one record."""
    with_bedrooms = apply_bedroom_estimate(record)
    with_rent = apply_rental_match(with_bedrooms, rental_lookup)
    return apply_yield(with_rent)


def enrich_records(
    records: Iterable[PropertyRecord],
    rental_lookup: RentalLookup,
) -> Iterator[PropertyRecord]:
    """Lazily enrich a stream of records.

    Args:
        records: Parsed property records.
        rental_lookup: Read-only rental median lookup, ideally memoised per run.

    Yields:
        Enriched records in input order.
    """
    for record in records:
        yield enrich_record(record, rental_lookup)
