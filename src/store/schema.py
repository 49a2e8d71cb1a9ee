"""Relational store tables.

This module declares the SQLAlchemy Core tables shared by the property
writer, rental store and run registry.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# SQLite only auto-increments INTEGER primary keys.
_ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

METADATA = MetaData()

NATURAL_KEY_COLUMNS = ("address", "suburb", "region", "postcode")
RENTAL_KEY_COLUMNS = ("region", "postcode", "bedrooms", "period", "source_id")
SALES_EVENT_KEY_COLUMNS = ("property_id", "sale_date", "sale_price")

PROPERTIES = Table(
    "properties",
    METADATA,
    Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
    Column("address", String(255), nullable=False),
    Column("suburb", String(100), nullable=False),
    Column("region", String(8), nullable=False),
    Column("postcode", String(10), nullable=False),
    Column("category", String(32), nullable=False),
    Column("bedrooms", Integer),
    Column("bathrooms", Integer),
    Column("land_area_sqm", Numeric(14, 2)),
    Column("sale_price", BigInteger),
    Column("sale_date", Date),
    Column("contract_date", Date),
    Column("settlement_date", Date),
    Column("weekly_rent", Integer),
    Column("rental_yield", Numeric(8, 2)),
    Column("is_rental_estimated", Boolean, nullable=False, default=False),
    Column("quality_tier", String(16), nullable=False),
    Column("confidence", Float, nullable=False),
    Column("quality_score", Float, nullable=False),
    Column("source_id", String(64), nullable=False),
    Column("external_id", String(64)),
    Column("last_updated", DateTime(timezone=True), nullable=False),
    UniqueConstraint(*NATURAL_KEY_COLUMNS, name="uq_properties_natural_key"),
)

SALES_HISTORY = Table(
    "sales_history",
    METADATA,
    Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
    Column("property_id", _ID_TYPE, ForeignKey("properties.id"), nullable=False),
    Column("sale_price", BigInteger, nullable=False),
    Column("sale_date", Date, nullable=False),
    Column("contract_date", Date),
    Column("settlement_date", Date),
    Column("source_id", String(64), nullable=False),
    Column("recorded_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(*SALES_EVENT_KEY_COLUMNS, name="uq_sales_history_event"),
)

RENTAL_MEDIANS = Table(
    "rental_medians",
    METADATA,
    Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
    Column("region", String(8), nullable=False),
    Column("postcode", String(10), nullable=False),
    Column("bedrooms", Integer, nullable=False),
    Column("period", Date, nullable=False),
    Column("median_weekly_rent", Integer, nullable=False),
    Column("sample_size", Integer),
    Column("suburb", String(100)),
    Column("source_id", String(64), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(*RENTAL_KEY_COLUMNS, name="uq_rental_medians_key"),
)

INGESTION_RUNS = Table(
    "ingestion_runs",
    METADATA,
    Column("id", _ID_TYPE, primary_key=True, autoincrement=True),
    Column("source_id", String(64), nullable=False),
    Column("status", String(16), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("records_fetched", Integer, nullable=False, default=0),
    Column("records_inserted", Integer, nullable=False, default=0),
    Column("records_updated", Integer, nullable=False, default=0),
    Column("records_skipped", Integer, nullable=False, default=0),
    Column("records_rejected", Integer, nullable=False, default=0),
    Column("error_message", Text),
    UniqueConstraint("source_id", "started_at", name="uq_ingestion_runs_source_start"),
)

# At most one running run per source.
Index(
    "uq_ingestion_runs_one_running",
    INGESTION_RUNS.c.source_id,
    unique=True,
    postgresql_where=INGESTION_RUNS.c.status == "running",
    sqlite_where=INGESTION_RUNS.c.status == "running",
)
