"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of diamond_rails.api.deps which
# validates the secret at module-load time.
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

from diamond_rails.database.models import Base  # noqa: E402
from diamond_rails.database.seed import seed_system_state  # noqa: E402
from diamond_rails.services.journal_service import reset_append_counter  # noqa: E402
from diamond_rails.services.locks import RowLockRegistry  # noqa: E402

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
    """Create an in-memory SQLite engine with every ledger table and the
    system rows (sink and house wallets, burn sink, freeze flag).

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used by the worker jobs).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_system_state(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def locks() -> RowLockRegistry:
    """A private lock registry so tests never share held keys."""
    return RowLockRegistry()


@pytest.fixture(autouse=True)
def _reset_append_counter():
    reset_append_counter()
    yield
    reset_append_counter()


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_token(sub="99999", username="FixtureAdmin", is_admin=True)


def make_token(
    sub: str = "alice",
    username: str = "Fixture",
    is_admin: bool = False,
    is_system: bool = False,
) -> str:
    """Create a signed JWT.  Usable as a factory from any test module."""
    import jwt

    from diamond_rails.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin, "is_system": is_system},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def client(db_engine):
    """FastAPI TestClient bound to the in-memory engine and default config."""
    from fastapi.testclient import TestClient

    from diamond_rails.api.deps import get_config, get_engine
    from diamond_rails.api.main import app
    from diamond_rails.config import DEFAULT_CONFIG

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: DEFAULT_CONFIG
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
