"""Gross rental yield calculation."""

from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal

from core.constants import WEEKS_PER_YEAR, YIELD_QUANTUM
from core.types import PropertyRecord


def gross_yield(sale_price: int | None, weekly_rent: int | None) -> Decimal | None:
    """Compute gross yield percentage rounded half-up to two places.

    Args:
        sale_price: Sale price in whole dollars.
        weekly_rent: Weekly rent in whole dollars.

    Returns:
        ``weekly_rent * 52 / sale_price * 100``, or ``None`` when an input
        is absent or non-positive.
    """
    if sale_price is None or weekly_rent is None:
        return None
    if sale_price <= 0 or weekly_rent <= 0:
        return None
    annual_rent = Decimal(weekly_rent) * WEEKS_PER_YEAR
    percentage = annual_rent / Decimal(sale_price) * 100
    return percentage.quantize(YIELD_QUANTUM, rounding=ROUND_HALF_UP)


def apply_yield(record: PropertyRecord) -> PropertyRecord:
    """Set rental yield from sale price and weekly rent when both are known."""
    rental_yield = gross_yield(record.sale_price, record.weekly_rent)
    if rental_yield is None or rental_yield == record.rental_yield:
        return record
    return replace(record, rental_yield=rental_yield)
