"""Database engine and dialect helpers.

This module builds SQLAlchemy engines for PostgreSQL and SQLite and
provides the dialect-specific insert needed for conflict clauses.
SQLite transactions start with ``BEGIN IMMEDIATE`` so concurrent source
workers queue on the write lock instead of failing a lock upgrade.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Table, create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from core.errors import PropflowConfigError, WriteError
from core.logging_config import get_logger
from store.schema import METADATA

_LOGGER = get_logger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}
SQLITE_BUSY_TIMEOUT_MS = 30_000


def create_store_engine(database_url: str) -> Engine:
    """Create an engine for the configured database.

    Args:
        database_url: SQLAlchemy database URL.

    Returns:
        Engine with pre-ping enabled.

    Raises:
        PropflowConfigError: If the URL is malformed or the dialect unsupported.
    """
    try:
        if database_url.startswith("sqlite"):
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
            )
            _configure_sqlite_locking(engine)
        else:
            engine = create_engine(database_url, pool_pre_ping=True)
    except (ArgumentError, ImportError) as error:
        raise PropflowConfigError(
            f"Invalid database URL: {error}. Set PROPFLOW_DATABASE_URL to a "
            "postgresql+psycopg:// or sqlite:/// URL."
        ) from error
    if engine.dialect.name not in _DIALECT_INSERTS:
        raise PropflowConfigError(
            f"Unsupported database dialect '{engine.dialect.name}'. Use PostgreSQL or SQLite."
        )
    return engine


def ensure_schema(engine: Engine) -> None:
    """Create any missing store tables.

    Raises:
        WriteError: If the database is unreachable or rejects the DDL.
    """
    try:
        METADATA.create_all(engine)
    except SQLAlchemyError as error:
        raise WriteError(
            f"Failed to initialise store schema: {error}. Check PROPFLOW_DATABASE_URL "
            "and that the database is reachable."
        ) from error
    _LOGGER.debug("schema_ready", dialect=engine.dialect.name)


def dialect_insert(connection: Connection, table: Table) -> Any:
    """Return an insert construct supporting ``ON CONFLICT`` for the connection's dialect."""
    return _DIALECT_INSERTS[connection.dialect.name](table)


def _configure_sqlite_locking(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Hand transaction control to the begin hook below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
            cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")
