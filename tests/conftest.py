"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of ardor.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from ardor.database.models import Base  # noqa: E402
from ardor.errors import DuplicateMintError, IssuanceError  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


def make_sqlite_engine() -> Engine:
    """Create an in-memory SQLite engine with all Ardor tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by ``run_db``).
    """
    from sqlalchemy import event
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's implicit BEGIN breaks SAVEPOINT; let SQLAlchemy emit BEGIN.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_engine() -> Engine:
    return make_sqlite_engine()


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def config_cache(db_engine: Engine):
    """A ConfigCache loaded from the empty SQLite database (defaults only)."""
    from ardor.engine.cache import ConfigCache

    cache = ConfigCache(db_engine)
    cache.load_all()
    return cache


# ---------------------------------------------------------------------------
# Issuance fakes
# ---------------------------------------------------------------------------
class FakeBadgeIssuer:
    """Records calls; ``fail_levels`` raise IssuanceError, ``duplicate_levels``
    raise DuplicateMintError."""

    def __init__(self, *, fail_levels=(), duplicate_levels=(), delay: float = 0.0):
        self.calls: list[tuple[str, int]] = []
        self.fail_levels = set(fail_levels)
        self.duplicate_levels = set(duplicate_levels)
        self.delay = delay

    async def mint_badge(self, user_id: str, rank_level: int) -> str:
        import asyncio

        self.calls.append((user_id, rank_level))
        if self.delay:
            await asyncio.sleep(self.delay)
        if rank_level in self.duplicate_levels:
            raise DuplicateMintError("already minted")
        if rank_level in self.fail_levels:
            raise IssuanceError("badge service unavailable")
        return f"badge-{user_id}-{rank_level}"


class FakeArtifactIssuer:
    def __init__(self, *, fail: bool = False):
        self.calls: list[tuple[str, str]] = []
        self.fail = fail

    async def distribute_artifact(self, user_id: str, artifact_id: str) -> str:
        self.calls.append((user_id, artifact_id))
        if self.fail:
            raise IssuanceError("artifact service unavailable")
        return f"artifact-{artifact_id}"


@pytest.fixture
def badge_issuer():
    return FakeBadgeIssuer()


@pytest.fixture
def artifact_issuer():
    return FakeArtifactIssuer()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    import jwt

    from ardor.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": True},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def client():
    """Create a FastAPI TestClient with raise_server_exceptions=False."""
    from fastapi.testclient import TestClient

    from ardor.api.main import app

    return TestClient(app, raise_server_exceptions=False)
