"""
diamond_rails.services.journal_service — Append-only transaction journal
========================================================================

The only code path that changes a wallet balance.  :func:`append_entry`
moves the balance and records the journal row in the caller's session,
so both commit (or roll back) together.

Journal rows are never updated or deleted: the ORM hooks in
:mod:`diamond_rails.database.models` raise ``JournalImmutableError`` and
the table carries a CHECK constraint on the balance equation.

The module also keeps the process-wide append counter that triggers the
opportunistic reconciliation audit every N appends.
"""

from __future__ import annotations

import logging
from threading import Lock

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from diamond_rails.database.models import Direction, JournalEntry, Wallet
from diamond_rails.engine.results import ErrorKind, LedgerAbort, fail

logger = logging.getLogger(__name__)


def append_entry(
    session: Session,
    wallet: Wallet,
    direction: Direction,
    amount: int,
    source: str,
    *,
    reference_id: str | None = None,
    reference_type: str | None = None,
    metadata: dict | None = None,
) -> JournalEntry:
    """Apply *amount* to *wallet* and append the matching journal row.

    The wallet must already be locked by the caller.  A debit larger than
    the balance aborts the unit with ``INSUFFICIENT_FUNDS``.
    """
    before = wallet.balance
    if direction is Direction.DEBIT:
        if before < amount:
            raise LedgerAbort(fail(
                ErrorKind.INSUFFICIENT_FUNDS,
                "Insufficient balance",
                owner_id=wallet.owner_id,
                current_balance=before,
                required_amount=amount,
                shortfall=amount - before,
            ))
        after = before - amount
    else:
        after = before + amount

    wallet.balance = after
    entry = JournalEntry(
        wallet_id=wallet.id,
        owner_id=wallet.owner_id,
        direction=direction,
        amount=amount,
        source=source,
        reference_id=reference_id,
        reference_type=reference_type,
        balance_before=before,
        balance_after=after,
        metadata_=metadata,
    )
    session.add(entry)
    session.flush()
    session.info["journal_appends"] = session.info.get("journal_appends", 0) + 1

    logger.debug(
        "Journal %s %s %d %s: %d → %d",
        entry.id, wallet.owner_id, amount, direction, before, after,
    )
    return entry


def list_entries(
    engine: Engine,
    owner_id: str,
    *,
    limit: int = 50,
    before_id: int | None = None,
) -> list[dict]:
    """Return a page of *owner_id*'s journal, newest first."""
    stmt = select(JournalEntry).where(JournalEntry.owner_id == owner_id)
    if before_id is not None:
        stmt = stmt.where(JournalEntry.id < before_id)
    stmt = stmt.order_by(JournalEntry.id.desc()).limit(limit)

    with Session(engine) as session:
        return [_entry_to_dict(e) for e in session.scalars(stmt)]


def _entry_to_dict(entry: JournalEntry) -> dict:
    return {
        "id": entry.id,
        "owner_id": entry.owner_id,
        "direction": entry.direction,
        "amount": entry.amount,
        "source": entry.source,
        "reference_id": entry.reference_id,
        "reference_type": entry.reference_type,
        "balance_before": entry.balance_before,
        "balance_after": entry.balance_after,
        "metadata": entry.metadata_,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


# ---------------------------------------------------------------------------
# Append counter for the opportunistic audit
# ---------------------------------------------------------------------------
class AppendCounter:
    """Counts committed appends and signals every *every* appends.  Thread-safe."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._count = 0

    def add(self, count: int, every: int) -> bool:
        if every <= 0:
            return False
        with self._lock:
            self._count += count
            if self._count < every:
                return False
            self._count %= every
            return True

    def reset(self) -> None:
        with self._lock:
            self._count = 0


_default_counter = AppendCounter()


def record_appends(count: int, every: int) -> bool:
    """Record *count* committed appends; True when an audit is due."""
    return _default_counter.add(count, every)


def reset_append_counter() -> None:
    _default_counter.reset()
