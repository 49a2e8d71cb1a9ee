"""Field-level value mapping shared by source parsers.

This module converts raw source strings into canonical values: prices,
dates, addresses, bedroom labels, and property categories. Helpers
return ``None`` for unusable input and leave the row decision to the
calling parser.
"""

from __future__ import annotations

import math
import numbers
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from core.constants import SQUARE_METRES_PER_HECTARE
from core.types import PropertyCategory

_DATE_FORMATS = ("%d/%m/%Y", "%Y%m%d", "%Y-%m-%d", "%d-%m-%Y")
_CURRENCY_NOISE = re.compile(r"[$,\s]")
_BEDROOM_DIGITS = re.compile(r"(\d+)")

# Exact source strings, compared lower-cased.
_CATEGORY_VOCABULARY: dict[str, PropertyCategory] = {
    "house": "house",
    "residence": "house",
    "dwelling": "house",
    "cottage": "house",
    "unit": "unit",
    "apartment": "unit",
    "flat": "unit",
    "strata unit": "unit",
    "townhouse": "townhouse",
    "terrace": "townhouse",
    "villa": "townhouse",
    "vacant land": "vacant_land",
    "land": "vacant_land",
    "vacant": "vacant_land",
    "commercial": "commercial",
    "retail": "commercial",
    "office": "commercial",
    "industrial": "commercial",
}
# Keyword fallback for composite labels such as "Residential - House".
_CATEGORY_KEYWORDS: tuple[tuple[tuple[str, ...], PropertyCategory], ...] = (
    (("townhouse", "terrace", "villa"), "townhouse"),
    (("house", "dwelling", "residence"), "house"),
    (("unit", "apartment", "flat", "strata"), "unit"),
    (("vacant", "land"), "vacant_land"),
    (("commercial", "retail", "office", "industrial"), "commercial"),
)
_BEDSITTER_LABELS = ("bedsitter", "bedsit", "studio")


def parse_price(raw_value: str | None) -> int | None:
    """Parse a dollar amount like ``$750,000`` into whole dollars."""
    if raw_value is None:
        return None
    cleaned = _CURRENCY_NOISE.sub("", str(raw_value))
    if not cleaned:
        return None
    try:
        return int(Decimal(cleaned))
    except (InvalidOperation, ValueError, OverflowError):
        return None


def parse_feed_date(raw_value: str | None) -> date | None:
    """Parse a feed date in any of the supported formats."""
    if raw_value is None:
        return None
    text = str(raw_value).strip()
    if not text:
        return None
    for date_format in _DATE_FORMATS:
        try:
            return datetime.strptime(text, date_format).date()
        except ValueError:
            continue
    return None


def format_address(unit: str | None, house_number: str | None, street_name: str) -> str:
    """Build a street address from its components.

    Args:
        unit: Optional unit number.
        house_number: Optional house number.
        street_name: Street name including suffix.

    Returns:
        Address such as ``2/10 Smith Street`` with whitespace collapsed.
    """
    street = _collapse(street_name)
    unit_text = _collapse(unit or "")
    number_text = _collapse(house_number or "")
    if unit_text and number_text:
        number_text = f"{unit_text}/{number_text}"
    elif unit_text:
        number_text = unit_text
    return f"{number_text} {street}".strip()


def normalize_property_category(raw_value: str | None) -> PropertyCategory:
    """Map a source-native category label onto the canonical enumeration.

    Unrecognized labels map to ``other``; they are not errors.
    """
    if raw_value is None:
        return "other"
    label = _collapse(str(raw_value)).lower()
    if label in _CATEGORY_VOCABULARY:
        return _CATEGORY_VOCABULARY[label]
    for keywords, category in _CATEGORY_KEYWORDS:
        if any(keyword in label for keyword in keywords):
            return category
    return "other"


def category_from_settlement_code(code: str | None, strata_lot: str | None) -> PropertyCategory:
    """Infer category from a sales feed's nature-of-property code.

    ``R`` is a residence (a unit when a strata lot is recorded), ``V`` is
    vacant land and ``3`` is other. Longer labels go through the category
    vocabulary.
    """
    normalized_code = (code or "").strip().upper()
    if normalized_code == "R":
        return "unit" if (strata_lot or "").strip() else "house"
    if normalized_code == "V":
        return "vacant_land"
    if normalized_code == "3":
        return "other"
    return normalize_property_category(code)


def parse_land_area(raw_area: str | None, area_type: str | None) -> Decimal | None:
    """Convert an area in square metres (``M``) or hectares (``H``) to m²."""
    if raw_area is None or not str(raw_area).strip():
        return None
    try:
        area = Decimal(str(raw_area).strip())
    except InvalidOperation:
        return None
    if area <= 0:
        return None
    if (area_type or "").strip().upper() == "H":
        return area * SQUARE_METRES_PER_HECTARE
    return area


def parse_bedroom_label(raw_value: object) -> int | None:
    """Parse a bedroom label such as ``Bedsitter``, ``2 Bedrooms`` or ``4 or more``."""
    if raw_value is None:
        return None
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, numbers.Real):
        return int(raw_value) if raw_value >= 0 and float(raw_value).is_integer() else None
    label = str(raw_value).strip().lower()
    if not label:
        return None
    if label in _BEDSITTER_LABELS:
        return 0
    match = _BEDROOM_DIGITS.search(label)
    if match is None:
        return None
    return int(match.group(1))


def parse_whole_number(raw_value: object) -> int | None:
    """Parse a cell value into a non-negative whole number."""
    if raw_value is None or isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, numbers.Real):
        if not math.isfinite(raw_value) or raw_value < 0:
            return None
        return int(round(raw_value))
    return parse_price(str(raw_value))


def _collapse(text: str) -> str:
    return " ".join(text.split())
