"""
diamond_rails.database.seed — System State Seeder
==================================================

Creates the rows the ledger cannot run without:

- the burn-sink wallet (reserved owner ``…0000``)
- the house-pool wallet (reserved owner ``…0001``) that receives forfeited stakes
- the ``burn_sink`` aggregate singleton
- the ``ledger_freeze`` singleton (unfrozen)

Idempotent: existing rows are left untouched.  Services never recreate
these rows on their own; a missing one is reported as an infrastructure
fault so that a half-initialised database is noticed instead of papered
over.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from diamond_rails.constants import (
    BURN_SINK_ID,
    BURN_SINK_OWNER,
    HOUSE_POOL_OWNER,
    LEDGER_FREEZE_ID,
)
from diamond_rails.database.engine import get_session
from diamond_rails.database.models import BurnSink, LedgerFreeze, Wallet

logger = logging.getLogger(__name__)


def seed_system_state(engine: Engine) -> int:
    """Insert missing system rows.  Returns the number of rows created."""
    created = 0
    with get_session(engine) as session:
        for owner_id in (BURN_SINK_OWNER, HOUSE_POOL_OWNER):
            exists = session.scalar(select(Wallet.id).where(Wallet.owner_id == owner_id))
            if exists is None:
                session.add(Wallet(owner_id=owner_id, balance=0))
                created += 1

        if session.get(BurnSink, BURN_SINK_ID) is None:
            session.add(BurnSink(id=BURN_SINK_ID, total_burned=0))
            created += 1

        if session.get(LedgerFreeze, LEDGER_FREEZE_ID) is None:
            session.add(LedgerFreeze(id=LEDGER_FREEZE_ID, is_frozen=False))
            created += 1

    if created:
        logger.info("Seeded %d system row(s)", created)
    return created
