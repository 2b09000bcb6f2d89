"""
diamond_rails.database.engine — Ledger Engine, Sessions & Async Bridge
======================================================================

Every ledger service is synchronous (SQLAlchemy + psycopg2).  The
periodic worker and any async caller go through :func:`run_db`, which
ships the call to ``asyncio.to_thread`` so a long audit never blocks the
event loop.

Usage::

    from diamond_rails.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + seed

    receipt = await run_db(ledger_service.mint, engine, owner, 10, source)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from diamond_rails.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` for the ledger database.

    *url* defaults to the ``DATABASE_URL`` env var.  PostgreSQL engines get
    a pool sized for short ledger transactions and tag their connections
    with ``application_name=diamond_rails`` so row-lock holders are easy to
    spot in ``pg_stat_activity``.  SQLite URLs (local runs) get the
    default pool.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            echo=False,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=10,
            pool_recycle=3600,
            connect_args={"application_name": "diamond_rails"},
        )
    logger.info("Ledger engine created → %s (%s)", engine.url.host or engine.url.database, engine.dialect.name)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables and seed the system wallets and singleton rows.

    Safe to call on every startup.  Seeding only inserts rows that do not
    exist yet; it never resets balances, counters or the freeze flag.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from diamond_rails.database.seed import seed_system_state

    seed_system_state(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` committed on clean exit, rolled back on error.

    Used by the maintenance paths (seeding, sweeps, audits) that do not go
    through the row-lock registry.  Objects stay loaded after commit so
    callers can build their result from them.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a synchronous service call on a worker thread (``asyncio.to_thread``)."""
    return await asyncio.to_thread(func, *args, **kwargs)
