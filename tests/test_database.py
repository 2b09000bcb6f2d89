"""
tests/test_database.py — Engine factory, schema init & system seed
===================================================================
"""

from __future__ import annotations

import asyncio
import os
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from diamond_rails.constants import BURN_SINK_ID, BURN_SINK_OWNER, HOUSE_POOL_OWNER, LEDGER_FREEZE_ID
from diamond_rails.database.engine import create_db_engine, init_db, run_db
from diamond_rails.database.models import BurnSink, LedgerFreeze, Wallet
from diamond_rails.database.seed import seed_system_state


class TestCreateEngine:
    def test_requires_database_url(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("DATABASE_URL", None)
            with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
                create_db_engine()

    def test_reads_env_url(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'env.db'}"
        with patch.dict(os.environ, {"DATABASE_URL": url}):
            engine = create_db_engine()
        assert engine.dialect.name == "sqlite"
        engine.dispose()


class TestInitDb:
    def test_creates_schema_and_system_rows(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        init_db(engine)

        with Session(engine) as session:
            owners = set(session.scalars(select(Wallet.owner_id)))
            assert owners == {BURN_SINK_OWNER, HOUSE_POOL_OWNER}
            assert session.get(BurnSink, BURN_SINK_ID).total_burned == 0
            assert session.get(LedgerFreeze, LEDGER_FREEZE_ID).is_frozen is False
        engine.dispose()

    def test_seed_is_idempotent(self, db_engine):
        with Session(db_engine) as session:
            session.get(BurnSink, BURN_SINK_ID).total_burned = 42
            session.commit()

        assert seed_system_state(db_engine) == 0

        with Session(db_engine) as session:
            assert session.scalar(select(func.count()).select_from(Wallet)) == 2
            assert session.get(BurnSink, BURN_SINK_ID).total_burned == 42


def test_run_db_forwards_arguments():
    def add(a, b, *, scale=1):
        return (a + b) * scale

    assert asyncio.run(run_db(add, 2, 3, scale=10)) == 50
