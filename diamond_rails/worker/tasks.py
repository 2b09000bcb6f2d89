"""
diamond_rails.worker.tasks — Periodic Background Jobs
=====================================================

Scheduled jobs that run as ``asyncio`` loops:

- **Reconciliation audit** — every ``audit_interval_seconds`` (60 s).
- **Burn integrity check** — alongside every tenth audit.
- **Escrow sweep** — every ``escrow_sweep_interval_seconds`` (5 min),
  refunds stakes past their expiry.
- **Streak expiry** — every ``streak_sweep_interval_seconds`` (hourly).
- **Analytics snapshot** — daily, plus a weekly snapshot every 7th run.

Each job ships its sync service call to a thread via ``run_db()``.  A
failing iteration is logged and the loop carries on.  The jobs run in the
worker process (``python -m diamond_rails.worker``) or inside the API
when ``RUN_SCHEDULER=1``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy import Engine

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig
from diamond_rails.database.engine import run_db
from diamond_rails.services import (
    escrow_service,
    reconciliation_service,
    streak_service,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Job:
    name: str
    interval: float
    run: Callable[[], Awaitable[None]]


class PeriodicTasks:
    """Owns the background loops for one engine."""

    def __init__(self, engine: Engine, cfg: RailsConfig | None = None) -> None:
        self.engine = engine
        self.cfg = cfg or DEFAULT_CONFIG
        self._tasks: list[asyncio.Task] = []
        self._audit_runs = 0
        self._analytics_runs = 0

    def jobs(self) -> list[Job]:
        return [
            Job("reconciliation", self.cfg.audit_interval_seconds, self.reconcile_once),
            Job("escrow_sweep", self.cfg.escrow_sweep_interval_seconds, self.sweep_escrow_once),
            Job("streak_expiry", self.cfg.streak_sweep_interval_seconds, self.expire_streaks_once),
            Job("analytics", self.cfg.analytics_interval_seconds, self.analytics_once),
        ]

    def start(self) -> None:
        """Start every loop on the running event loop."""
        if self._tasks:
            return
        for job in self.jobs():
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job:{job.name}"))
        logger.info("Started %d periodic job(s)", len(self._tasks))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Periodic jobs stopped")

    async def _loop(self, job: Job) -> None:
        while True:
            await asyncio.sleep(job.interval)
            try:
                await job.run()
            except Exception:
                logger.exception("%s task failed", job.name, extra={"task": job.name})

    # -------------------------------------------------------------------
    # Job bodies
    # -------------------------------------------------------------------
    async def reconcile_once(self) -> None:
        """Audit the ledger; every tenth run also checks the burn rate."""
        snapshot = await run_db(
            reconciliation_service.run_audit, self.engine, config=self.cfg, blocking=False,
        )
        if snapshot is not None:
            logger.info(
                "Reconciliation task complete: status=%s variance=%d",
                snapshot.status, snapshot.variance,
            )
        self._audit_runs += 1
        if self._audit_runs % 10 == 0:
            report = await run_db(
                reconciliation_service.burn_integrity_check, self.engine, config=self.cfg,
            )
            logger.info(
                "Burn integrity check: within_tolerance=%s ratio=%.5f",
                report["within_tolerance"], report["variance_ratio"],
            )

    async def sweep_escrow_once(self) -> None:
        result = await run_db(escrow_service.sweep_expired, self.engine, config=self.cfg)
        if result["checked"]:
            logger.info(
                "Escrow sweep complete: expired=%d skipped=%d",
                len(result["expired"]), len(result["skipped"]),
            )

    async def expire_streaks_once(self) -> None:
        result = await run_db(streak_service.expire_streaks, self.engine, config=self.cfg)
        logger.info("Streak expiry complete: reset=%d", result["reset"])

    async def analytics_once(self) -> None:
        self._analytics_runs += 1
        await run_db(streak_service.capture_analytics, self.engine, period="daily")
        if self._analytics_runs % 7 == 0:
            await run_db(streak_service.capture_analytics, self.engine, period="weekly")
