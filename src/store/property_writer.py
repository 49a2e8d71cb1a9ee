"""Property record writer and reconciler.

This module writes batches of property records. Each record either
claims its natural key, replaces a stored record it outscores by the
replacement threshold, or is skipped. Accepted records with a sale
price and date append a sales event. A batch is one transaction.
"""

from __future__ import annotations

from typing import Any, Literal, Sequence

from sqlalchemy import and_, func, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import WriteError
from core.logging_config import get_logger
from core.types import PropertyKey, PropertyRecord, SalesEvent, WriteStats, utc_now
from store.database import dialect_insert
from store.schema import (
    NATURAL_KEY_COLUMNS,
    PROPERTIES,
    SALES_EVENT_KEY_COLUMNS,
    SALES_HISTORY,
)
from transforms.quality_scoring import quality_score, should_replace

_LOGGER = get_logger(__name__)

WriteOutcome = Literal["inserted", "updated", "skipped"]


def write_properties(engine: Engine, records: Sequence[PropertyRecord]) -> WriteStats:
    """Write one batch of property records in a single transaction.

    Args:
        engine: Store engine.
        records: Enriched records to reconcile.

    Returns:
        Inserted, updated and skipped counts for the batch.

    Raises:
        WriteError: If the store rejects the batch; nothing is committed.
    """
    counts = {"inserted": 0, "updated": 0, "skipped": 0}
    try:
        with engine.begin() as connection:
            for record in records:
                counts[reconcile_property(connection, record)] += 1
    except SQLAlchemyError as error:
        raise WriteError(
            f"Failed to write batch of {len(records)} property record(s): {error}."
        ) from error
    stats = WriteStats(**counts)
    _LOGGER.debug("property_batch_written", batch_size=len(records), **counts)
    return stats


def reconcile_property(connection: Connection, record: PropertyRecord) -> WriteOutcome:
    """Insert, replace or skip one record inside an open transaction.

    Args:
        connection: Connection with an open transaction.
        record: Incoming record.

    Returns:
        Write outcome for the record.
    """
    score = quality_score(record.quality_tier, record.confidence)
    values = _property_values(record, score)
    claim = (
        dialect_insert(connection, PROPERTIES)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(NATURAL_KEY_COLUMNS))
        .returning(PROPERTIES.c.id)
    )
    property_id = connection.execute(claim).scalar_one_or_none()
    if property_id is not None:
        _append_sales_event(connection, property_id, record)
        return "inserted"
    existing = connection.execute(
        select(PROPERTIES.c.id, PROPERTIES.c.quality_score)
        .where(_key_clause(record.key))
        .with_for_update()
    ).one()
    if not should_replace(score, existing.quality_score):
        return "skipped"
    connection.execute(update(PROPERTIES).where(PROPERTIES.c.id == existing.id).values(**values))
    _append_sales_event(connection, existing.id, record)
    return "updated"


def sales_event_for(record: PropertyRecord) -> SalesEvent | None:
    """Return the sales event a record carries, if it has a price and date."""
    if record.sale_price is None or record.sale_date is None:
        return None
    return SalesEvent(
        key=record.key,
        sale_price=record.sale_price,
        sale_date=record.sale_date,
        source_id=record.source_id,
        contract_date=record.contract_date,
        settlement_date=record.settlement_date,
    )


def load_property(engine: Engine, key: PropertyKey) -> PropertyRecord | None:
    """Load the stored record for a natural key."""
    with engine.connect() as connection:
        row = connection.execute(select(PROPERTIES).where(_key_clause(key))).first()
    if row is None:
        return None
    return _record_from_row(row._mapping)


def count_properties(engine: Engine) -> int:
    """Count stored property records."""
    with engine.connect() as connection:
        return int(connection.execute(select(func.count()).select_from(PROPERTIES)).scalar_one())


def load_sales_history(engine: Engine, key: PropertyKey) -> list[SalesEvent]:
    """Load sales events for one property ordered by sale date."""
    query = (
        select(SALES_HISTORY)
        .join(PROPERTIES, SALES_HISTORY.c.property_id == PROPERTIES.c.id)
        .where(_key_clause(key))
        .order_by(SALES_HISTORY.c.sale_date, SALES_HISTORY.c.id)
    )
    with engine.connect() as connection:
        rows = connection.execute(query).all()
    return [
        SalesEvent(
            key=key,
            sale_price=row.sale_price,
            sale_date=row.sale_date,
            source_id=row.source_id,
            contract_date=row.contract_date,
            settlement_date=row.settlement_date,
        )
        for row in rows
    ]


def _append_sales_event(connection: Connection, property_id: int, record: PropertyRecord) -> None:
    event = sales_event_for(record)
    if event is None:
        return
    connection.execute(
        dialect_insert(connection, SALES_HISTORY)
        .values(
            property_id=property_id,
            sale_price=event.sale_price,
            sale_date=event.sale_date,
            contract_date=event.contract_date,
            settlement_date=event.settlement_date,
            source_id=event.source_id,
            recorded_at=utc_now(),
        )
        .on_conflict_do_nothing(index_elements=list(SALES_EVENT_KEY_COLUMNS))
    )


def _key_clause(key: PropertyKey) -> Any:
    return and_(
        PROPERTIES.c.address == key.address,
        PROPERTIES.c.suburb == key.suburb,
        PROPERTIES.c.region == key.region,
        PROPERTIES.c.postcode == key.postcode,
    )


def _property_values(record: PropertyRecord, score: float) -> dict[str, Any]:
    return {
        "address": record.address,
        "suburb": record.suburb,
        "region": record.region,
        "postcode": record.postcode,
        "category": record.category,
        "bedrooms": record.bedrooms,
        "bathrooms": record.bathrooms,
        "land_area_sqm": record.land_area_sqm,
        "sale_price": record.sale_price,
        "sale_date": record.sale_date,
        "contract_date": record.contract_date,
        "settlement_date": record.settlement_date,
        "weekly_rent": record.weekly_rent,
        "rental_yield": record.rental_yield,
        "is_rental_estimated": record.is_rental_estimated,
        "quality_tier": record.quality_tier,
        "confidence": record.confidence,
        "quality_score": score,
        "source_id": record.source_id,
        "external_id": record.external_id,
        "last_updated": record.last_updated,
    }


def _record_from_row(row: Any) -> PropertyRecord:
    return PropertyRecord(
        address=row["address"],
        suburb=row["suburb"],
        region=row["region"],
        postcode=row["postcode"],
        category=row["category"],
        source_id=row["source_id"],
        quality_tier=row["quality_tier"],
        confidence=row["confidence"],
        bedrooms=row["bedrooms"],
        bathrooms=row["bathrooms"],
        land_area_sqm=row["land_area_sqm"],
        sale_price=row["sale_price"],
        sale_date=row["sale_date"],
        contract_date=row["contract_date"],
        settlement_date=row["settlement_date"],
        weekly_rent=row["weekly_rent"],
        rental_yield=row["rental_yield"],
        is_rental_estimated=row["is_rental_estimated"],
        external_id=row["external_id"],
        last_updated=row["last_updated"],
    )
