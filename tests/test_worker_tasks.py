"""
tests/test_worker_tasks.py — Periodic background jobs
======================================================

Job bodies are awaited directly; the sleep loops are exercised with a
tiny interval.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from diamond_rails.config import RailsConfig
from diamond_rails.constants import utcnow
from diamond_rails.database.models import (
    AnalyticsSnapshot,
    BurnIntegrityLog,
    JournalSource,
    ReconciliationLog,
)
from diamond_rails.services import escrow_service, ledger_service
from diamond_rails.worker.tasks import Job, PeriodicTasks


def _count(engine, model) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(model))


class TestJobBodies:
    def test_reconcile_once_persists_snapshot(self, db_engine):
        tasks = PeriodicTasks(db_engine)
        asyncio.run(tasks.reconcile_once())
        assert _count(db_engine, ReconciliationLog) == 1
        assert _count(db_engine, BurnIntegrityLog) == 0

    def test_every_tenth_audit_checks_burn_integrity(self, db_engine):
        tasks = PeriodicTasks(db_engine)

        async def _inner():
            for _ in range(10):
                await tasks.reconcile_once()

        asyncio.run(_inner())
        assert _count(db_engine, ReconciliationLog) == 10
        assert _count(db_engine, BurnIntegrityLog) == 1

    def test_sweep_escrow_once_refunds_expired(self, db_engine, locks):
        ledger_service.mint(db_engine, "alice", 50, JournalSource.ADMIN_GRANT, locks=locks)
        escrow_service.lock_stake(
            db_engine, "alice", "old", 20, expiry_minutes=1,
            now=utcnow() - timedelta(hours=1), locks=locks,
        )

        asyncio.run(PeriodicTasks(db_engine).sweep_escrow_once())

        assert escrow_service.get_escrow(db_engine, "old")["status"] == "EXPIRED"
        assert ledger_service.get_wallet(db_engine, "alice")["balance"] == 50

    def test_analytics_once_adds_weekly_every_seventh_run(self, db_engine):
        tasks = PeriodicTasks(db_engine)

        async def _inner():
            for _ in range(7):
                await tasks.analytics_once()

        asyncio.run(_inner())
        with Session(db_engine) as session:
            periods = list(session.scalars(select(AnalyticsSnapshot.period)))
        assert periods.count("daily") == 7
        assert periods.count("weekly") == 1

    def test_expire_streaks_once(self, db_engine):
        asyncio.run(PeriodicTasks(db_engine).expire_streaks_once())


class TestScheduling:
    def test_jobs_use_configured_intervals(self, db_engine):
        cfg = RailsConfig(audit_interval_seconds=7, escrow_sweep_interval_seconds=11)
        jobs = {job.name: job for job in PeriodicTasks(db_engine, cfg).jobs()}

        assert set(jobs) == {"reconciliation", "escrow_sweep", "streak_expiry", "analytics"}
        assert jobs["reconciliation"].interval == 7
        assert jobs["escrow_sweep"].interval == 11

    def test_loop_survives_failing_iteration(self, db_engine):
        tasks = PeriodicTasks(db_engine)
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        async def _inner():
            task = asyncio.create_task(tasks._loop(Job("flaky", 0.01, flaky)))
            await asyncio.sleep(0.2)
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        asyncio.run(_inner())
        assert len(calls) >= 2

    def test_start_and_stop(self, db_engine):
        tasks = PeriodicTasks(db_engine)

        async def _inner():
            with patch.object(PeriodicTasks, "jobs", return_value=[
                Job("noop", 3600, AsyncMock()),
            ]):
                tasks.start()
                tasks.start()
                assert len(tasks._tasks) == 1
                await tasks.stop()
            assert tasks._tasks == []

        asyncio.run(_inner())
