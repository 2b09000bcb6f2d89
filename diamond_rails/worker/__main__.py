"""
diamond_rails.worker.__main__ — Entry point for ``python -m diamond_rails.worker``
=================================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (economic tuning).
3. Create the SQLAlchemy engine, ensure tables exist and seed system rows.
4. Run one reconciliation audit so a corrupt ledger is frozen at boot.
5. Start the periodic jobs (blocking — runs the asyncio event loop).

Run with::

    uv run python -m diamond_rails.worker
"""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv

from diamond_rails.config import load_config
from diamond_rails.database.engine import create_db_engine, init_db
from diamond_rails.services.reconciliation_service import audit
from diamond_rails.worker.tasks import PeriodicTasks

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("diamond_rails")


async def _run(tasks: PeriodicTasks) -> None:
    tasks.start()
    try:
        await asyncio.Event().wait()
    finally:
        await tasks.stop()


def main() -> None:
    """Bootstrap and run the periodic worker."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Economic tuning.
    cfg = load_config(os.getenv("DIAMOND_RAILS_CONFIG", "config.yaml"))
    logger.info("Config loaded — burn rate %.2f", cfg.burn_rate)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Boot-time audit.
    snapshot = audit(engine, config=cfg)
    logger.info("Boot audit: %s (variance %d)", snapshot.status, snapshot.variance)

    # 5. Jobs.
    logger.info("Starting Diamond Rails worker…")
    try:
        asyncio.run(_run(PeriodicTasks(engine, cfg)))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
