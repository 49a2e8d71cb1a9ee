"""Rental median storage and lookup.

Rental medians are upserted on (region, postcode, bedrooms, period,
source). Lookups return the most recent period for an exact key and
never write.
"""

from __future__ import annotations

import functools
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import WriteError
from core.logging_config import get_logger
from core.types import RegionCode, RentalMedian, WriteStats, utc_now
from store.database import dialect_insert
from store.schema import RENTAL_KEY_COLUMNS, RENTAL_MEDIANS
from transforms.rental_matching import RentalLookup

_LOGGER = get_logger(__name__)


def write_rental_medians(engine: Engine, medians: Sequence[RentalMedian]) -> WriteStats:
    """Upsert one batch of rental medians in a single transaction.

    Args:
        engine: Store engine.
        medians: Parsed rental medians.

    Returns:
        Counts of newly inserted and updated medians.

    Raises:
        WriteError: If the store rejects the batch; nothing is committed.
    """
    inserted = 0
    updated = 0
    try:
        with engine.begin() as connection:
            for median in medians:
                values = _median_values(median)
                claim = (
                    dialect_insert(connection, RENTAL_MEDIANS)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=list(RENTAL_KEY_COLUMNS))
                    .returning(RENTAL_MEDIANS.c.id)
                )
                if connection.execute(claim).scalar_one_or_none() is not None:
                    inserted += 1
                    continue
                connection.execute(
                    update(RENTAL_MEDIANS)
                    .where(
                        *(
                            RENTAL_MEDIANS.c[column] == values[column]
                            for column in RENTAL_KEY_COLUMNS
                        )
                    )
                    .values(
                        median_weekly_rent=values["median_weekly_rent"],
                        sample_size=values["sample_size"],
                        suburb=values["suburb"],
                        updated_at=values["updated_at"],
                    )
                )
                updated += 1
    except SQLAlchemyError as error:
        raise WriteError(
            f"Failed to write batch of {len(medians)} rental median(s): {error}."
        ) from error
    _LOGGER.debug(
        "rental_batch_written", batch_size=len(medians), inserted=inserted, updated=updated
    )
    return WriteStats(inserted=inserted, updated=updated)


def latest_rental_median(
    engine: Engine,
    region: RegionCode,
    postcode: str,
    bedrooms: int,
) -> RentalMedian | None:
    """Return the most recent rental median for an exact key.

    Args:
        engine: Store engine.
        region: Region code.
        postcode: Postcode.
        bedrooms: Bedroom count.

    Returns:
        Median with the latest period, or ``None`` when none is stored.
    """
    query = (
        select(RENTAL_MEDIANS)
        .where(
            RENTAL_MEDIANS.c.region == region,
            RENTAL_MEDIANS.c.postcode == postcode,
            RENTAL_MEDIANS.c.bedrooms == bedrooms,
        )
        .order_by(RENTAL_MEDIANS.c.period.desc(), RENTAL_MEDIANS.c.updated_at.desc())
        .limit(1)
    )
    with engine.connect() as connection:
        row = connection.execute(query).first()
    if row is None:
        return None
    return RentalMedian(
        region=row.region,
        postcode=row.postcode,
        bedrooms=row.bedrooms,
        period=row.period,
        median_weekly_rent=row.median_weekly_rent,
        source_id=row.source_id,
        sample_size=row.sample_size,
        suburb=row.suburb,
    )


def store_rental_lookup(engine: Engine) -> RentalLookup:
    """Bind ``latest_rental_median`` to an engine as a rental lookup."""
    return functools.partial(latest_rental_median, engine)


def _median_values(median: RentalMedian) -> dict[str, object]:
    return {
        "region": median.region,
        "postcode": median.postcode,
        "bedrooms": median.bedrooms,
        "period": median.period,
        "median_weekly_rent": median.median_weekly_rent,
        "sample_size": median.sample_size,
        "suburb": median.suburb,
        "source_id": median.source_id,
        "updated_at": utc_now(),
    }
