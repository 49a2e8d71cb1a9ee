"""Delimited-text sales feed parser.

This module maps rows of the NSW property sales CSV onto canonical
property records. It streams the payload file one row at a time;
malformed rows, including rows the CSV reader itself rejects, become
``SkippedRow`` values and only structural problems with the payload
(header, encoding) raise ``ParseError``.
"""

from __future__ import annotations

import csv
from datetime import date
from typing import Generator, Iterator, Mapping

from core.constants import RAW_EXCERPT_LENGTH
from core.errors import ParseError
from core.sources import SourceConfig
from core.types import ParseResult, PropertyRecord, RawPayload, SkippedRow
from ingest.field_mapping import (
    category_from_settlement_code,
    format_address,
    parse_feed_date,
    parse_land_area,
    parse_price,
)

COLUMN_PROPERTY_ID = "Property ID"
COLUMN_UNIT_NUMBER = "Property unit number"
COLUMN_HOUSE_NUMBER = "Property house number"
COLUMN_STREET_NAME = "Property street name"
COLUMN_LOCALITY = "Property locality"
COLUMN_POSTCODE = "Property post code"
COLUMN_PURCHASE_PRICE = "Purchase price"
COLUMN_CONTRACT_DATE = "Contract date"
COLUMN_SETTLEMENT_DATE = "Settlement date"
COLUMN_NATURE = "Nature of property"
COLUMN_STRATA_LOT = "Strata lot number"
COLUMN_AREA = "Area"
COLUMN_AREA_TYPE = "Area type"

REQUIRED_SALES_COLUMNS = (
    COLUMN_STREET_NAME,
    COLUMN_LOCALITY,
    COLUMN_POSTCODE,
    COLUMN_PURCHASE_PRICE,
    COLUMN_SETTLEMENT_DATE,
)


class _RowRejected(Exception):
    """Internal signal carrying the reason a row cannot be mapped."""


def parse_sales_rows(
    payload: RawPayload, source: SourceConfig
) -> Generator[ParseResult, None, None]:
    """Lazily parse a sales CSV payload.

    Args:
        payload: Delimited-text payload.
        source: Source descriptor supplying region, tier and confidence.

    Yields:
        One ``PropertyRecord`` or ``SkippedRow`` per data row.

    Raises:
        ParseError: If the header is malformed or the encoding is unreadable.
    """
    try:
        with payload.path.open(encoding="utf-8-sig", newline="") as text_stream:
            reader = csv.reader(text_stream)
            header = _read_header(reader, source)
            yield from _parse_rows(reader, header, source)
    except OSError as error:
        raise ParseError(
            f"Cannot read sales feed for source '{source.source_id}' at {payload.path}: {error}."
        ) from error
    except UnicodeDecodeError as error:
        raise ParseError(
            f"Sales feed for source '{source.source_id}' is not valid UTF-8: {error}."
        ) from error
    except csv.Error as error:
        raise ParseError(
            f"Sales feed for source '{source.source_id}' is not valid CSV: {error}."
        ) from error


def _parse_rows(
    reader: Iterator[list[str]], header: list[str], source: SourceConfig
) -> Iterator[ParseResult]:
    row_number = 1
    while True:
        row_number += 1
        try:
            values = next(reader)
        except StopIteration:
            return
        except csv.Error as error:
            yield SkippedRow(row_number=row_number, reason=f"malformed CSV row: {error}")
            continue
        if not any(value.strip() for value in values):
            continue
        try:
            yield _map_row(dict(zip(header, values)), source)
        except _RowRejected as rejection:
            yield SkippedRow(
                row_number=row_number,
                reason=str(rejection),
                raw_excerpt=",".join(values)[:RAW_EXCERPT_LENGTH],
            )


def _read_header(reader: Iterator[list[str]], source: SourceConfig) -> list[str]:
    raw_header = next(reader, None)
    if raw_header is None:
        raise ParseError(f"Sales feed for source '{source.source_id}' is empty: no header row.")
    header = [column.strip() for column in raw_header]
    missing_columns = [column for column in REQUIRED_SALES_COLUMNS if column not in header]
    if missing_columns:
        raise ParseError(
            f"Sales feed for source '{source.source_id}' is missing required column(s): "
            f"{', '.join(missing_columns)}. Found: {', '.join(header)}."
        )
    return header


def _map_row(row: Mapping[str, str], source: SourceConfig) -> PropertyRecord:
    street_name = _required(row, COLUMN_STREET_NAME)
    suburb = " ".join(_required(row, COLUMN_LOCALITY).split())
    postcode = _required(row, COLUMN_POSTCODE)
    if not (postcode.isdigit() and len(postcode) == 4):
        raise _RowRejected(f"out-of-range value for '{COLUMN_POSTCODE}': {postcode!r}")
    sale_price = _sale_price(row)
    contract_date = _optional_date(row, COLUMN_CONTRACT_DATE)
    settlement_date = _optional_date(row, COLUMN_SETTLEMENT_DATE)
    return PropertyRecord(
        address=format_address(
            _optional(row, COLUMN_UNIT_NUMBER),
            _optional(row, COLUMN_HOUSE_NUMBER),
            street_name,
        ),
        suburb=suburb,
        region=source.region,
        postcode=postcode,
        category=category_from_settlement_code(
            _optional(row, COLUMN_NATURE), _optional(row, COLUMN_STRATA_LOT)
        ),
        source_id=source.source_id,
        quality_tier=source.quality_tier,
        confidence=source.confidence,
        land_area_sqm=parse_land_area(
            _optional(row, COLUMN_AREA), _optional(row, COLUMN_AREA_TYPE)
        ),
        sale_price=sale_price,
        sale_date=contract_date or settlement_date,
        contract_date=contract_date,
        settlement_date=settlement_date,
        external_id=_optional(row, COLUMN_PROPERTY_ID),
    )


def _sale_price(row: Mapping[str, str]) -> int:
    raw_price = _required(row, COLUMN_PURCHASE_PRICE)
    sale_price = parse_price(raw_price)
    if sale_price is None:
        raise _RowRejected(f"unparseable value for '{COLUMN_PURCHASE_PRICE}': {raw_price!r}")
    if sale_price <= 0:
        raise _RowRejected(f"out-of-range value for '{COLUMN_PURCHASE_PRICE}': {raw_price!r}")
    return sale_price


def _optional_date(row: Mapping[str, str], column: str) -> date | None:
    raw_value = _optional(row, column)
    if raw_value is None:
        return None
    parsed_date = parse_feed_date(raw_value)
    if parsed_date is None:
        raise _RowRejected(f"unparseable value for '{column}': {raw_value!r}")
    return parsed_date


def _required(row: Mapping[str, str], column: str) -> str:
    value = _optional(row, column)
    if value is None:
        raise _RowRejected(f"missing required field '{column}'")
    return value


def _optional(row: Mapping[str, str], column: str) -> str | None:
    value = row.get(column)
    if value is None or not value.strip():
        return None
    return value.strip()
