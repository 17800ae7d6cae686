"""
Async SQLAlchemy engine factory and declarative base.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O, and
``aiosqlite`` for local runs and tests.

SQLite takes its write lock lazily, which lets two transactions both read
an offer and then deadlock on the upgrade.  For SQLite URLs the engine
therefore issues ``BEGIN IMMEDIATE`` itself so writers queue up on the
database lock instead.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url, echo=echo, connect_args={"timeout": 30}
        )
        _serialize_sqlite_writers(engine)
        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
    )


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # take over BEGIN from the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
