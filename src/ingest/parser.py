"""Parser dispatch by source kind.

This module selects the parser family for a source from its kind tag
and checks the payload shape matches before parsing.
"""

from __future__ import annotations

from typing import Callable, Generator, Union

from core.errors import ParseError
from core.sources import SourceConfig
from core.types import ParseResult, PayloadShape, RawPayload, RentalParseResult, SourceKind
from ingest.rental_parser import parse_rental_rows
from ingest.sales_parser import parse_sales_rows

ParseStream = Generator[Union[ParseResult, RentalParseResult], None, None]
SourceParser = Callable[[RawPayload, SourceConfig], ParseStream]

PARSERS: dict[SourceKind, SourceParser] = {
    "sales_csv": parse_sales_rows,
    "rental_workbook": parse_rental_rows,
}
EXPECTED_SHAPES: dict[SourceKind, PayloadShape] = {
    "sales_csv": "delimited_text",
    "rental_workbook": "workbook",
}


def parse_payload(
    payload: RawPayload,
    source: SourceConfig,
) -> ParseStream:
    """Parse a payload with the parser registered for the source kind.

    Args:
        payload: Fetched payload.
        source: Source descriptor.

    Returns:
        Lazy single-pass iterator of parse results.

    Raises:
        ParseError: If the payload shape does not match the source kind.
    """
    expected_shape = EXPECTED_SHAPES[source.kind]
    if payload.shape != expected_shape:
        raise ParseError(
            f"Source '{source.source_id}' of kind '{source.kind}' expects a "
            f"{expected_shape} payload, got {payload.shape}."
        )
    return PARSERS[source.kind](payload, source)
