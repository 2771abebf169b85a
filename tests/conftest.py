"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine, event

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB

from synergy.database.engine import get_session
from synergy.database.models import Base
from synergy.services import event_store

# Fixed clock shared by the engine tests
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Synergy tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` behind ``run_db``).
    pysqlite's implicit transaction handling is switched off so SAVEPOINTs
    nest inside the session transaction the way they do on PostgreSQL.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_event(db_engine: Engine):
    """Factory inserting an active event; returns its id.

    Defaults: guild 100, starts one day after :data:`NOW`, lasts two hours.
    Extra keyword arguments go straight to :func:`event_store.create_event`.
    """

    def _make(
        *,
        capacity: int = 0,
        keys: tuple[str, ...] = (),
        start: datetime | None = None,
        end: datetime | None = None,
        guild_id: int = 100,
        title: str = "Community Call",
        **options,
    ) -> int:
        start = start or NOW + timedelta(days=1)
        end = end or start + timedelta(hours=2)
        with get_session(db_engine) as session:
            event = event_store.create_event(
                session,
                guild_id=guild_id,
                title=title,
                start_date=start,
                end_date=end,
                created_by=1,
                capacity=capacity,
                access_keys=keys,
                **options,
            )
            return event.id

    return _make
