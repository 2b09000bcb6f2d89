"""
diamond_rails.services.unit_of_work — Atomic units with lock + freeze gates
===========================================================================

Every mutating operation runs through :func:`run_atomic`:

    1. Acquire the in-process row locks (non-blocking, sorted order).
    2. Open a session and read the persisted freeze flag.
    3. Run the work function; it locks DB rows ``FOR UPDATE NOWAIT``.
    4. Commit if the work returned a receipt; roll back on a
       :class:`Failure`, a :class:`LedgerAbort` or any exception.
    5. After commit, feed the journal-append counter that schedules the
       opportunistic reconciliation audit.

Busy locks (in-process or PostgreSQL ``55P03``) become ``RESOURCE_BUSY``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig
from diamond_rails.constants import BURN_SINK_ID, LEDGER_FREEZE_ID
from diamond_rails.database.models import BurnSink, LedgerFreeze, Wallet
from diamond_rails.engine.results import ErrorKind, Failure, LedgerAbort, fail
from diamond_rails.services.locks import ResourceBusy, RowLockRegistry, get_default_registry

logger = logging.getLogger(__name__)

T = TypeVar("T")

PG_LOCK_NOT_AVAILABLE = "55P03"


# ---------------------------------------------------------------------------
# Unit runner
# ---------------------------------------------------------------------------
def run_atomic(
    engine: Engine,
    keys: Iterable[str],
    work: Callable[[Session], T | Failure],
    *,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
    check_freeze: bool = True,
) -> T | Failure:
    registry = locks or get_default_registry()
    cfg = config or DEFAULT_CONFIG
    appended = 0
    try:
        with registry.hold(*keys), Session(engine, expire_on_commit=False) as session:
            try:
                if check_freeze:
                    frozen = frozen_failure(session)
                    if frozen is not None:
                        return frozen
                result = work(session)
                if isinstance(result, Failure):
                    session.rollback()
                    return result
                appended = session.info.get("journal_appends", 0)
                session.commit()
            except LedgerAbort as abort:
                session.rollback()
                return abort.failure
            except OperationalError as exc:
                session.rollback()
                if _is_lock_not_available(exc):
                    return fail(ErrorKind.RESOURCE_BUSY, "Row is locked by another transaction")
                raise
            except IntegrityError:
                session.rollback()
                pending = session.info.pop("pending_wallet", None)
                if pending is not None:
                    return fail(
                        ErrorKind.RESOURCE_BUSY,
                        "Wallet is being created concurrently",
                        owner_id=pending,
                    )
                raise
    except ResourceBusy as busy:
        return fail(ErrorKind.RESOURCE_BUSY, "Resource is locked, retry later", resource=busy.key)

    if appended:
        _after_appends(engine, appended, cfg)
    return result


def _is_lock_not_available(exc: OperationalError) -> bool:
    return getattr(exc.orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE


def _after_appends(engine: Engine, count: int, cfg: RailsConfig) -> None:
    from diamond_rails.services import journal_service, reconciliation_service

    if not journal_service.record_appends(count, cfg.audit_every_appends):
        return
    try:
        reconciliation_service.run_audit(engine, config=cfg, blocking=False)
    except Exception:
        # The unit already committed; the scheduled audit will retry.
        logger.exception("Opportunistic audit failed")


# ---------------------------------------------------------------------------
# Freeze gate
# ---------------------------------------------------------------------------
def load_freeze(
    session: Session, *, for_update: bool = False, shared: bool = False
) -> LedgerFreeze:
    """Read the freeze singleton; *shared* blocks a concurrent freeze until commit."""
    stmt = select(LedgerFreeze).where(LedgerFreeze.id == LEDGER_FREEZE_ID)
    if for_update:
        stmt = stmt.with_for_update()
    elif shared:
        stmt = stmt.with_for_update(read=True)
    row = session.scalar(stmt)
    if row is None:
        raise RuntimeError("ledger_freeze row is missing; run init_db() to seed system state")
    return row


def frozen_failure(session: Session) -> Failure | None:
    row = load_freeze(session, shared=True)
    if not row.is_frozen:
        return None
    return fail(
        ErrorKind.LEDGER_FROZEN,
        "Ledger is frozen pending integrity review",
        freeze_reason=row.freeze_reason,
        violation_type=row.violation_type,
    )


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------
def lock_wallets(session: Session, owner_ids: Iterable[str]) -> dict[str, Wallet]:
    """Lock existing wallets for *owner_ids* in owner order."""
    ids = sorted(set(owner_ids))
    stmt = (
        select(Wallet)
        .where(Wallet.owner_id.in_(ids))
        .order_by(Wallet.owner_id)
        .with_for_update(nowait=True)
    )
    return {wallet.owner_id: wallet for wallet in session.scalars(stmt)}


def require_wallet(wallets: dict[str, Wallet], owner_id: str) -> Wallet:
    wallet = wallets.get(owner_id)
    if wallet is None:
        raise LedgerAbort(fail(
            ErrorKind.WALLET_NOT_FOUND, "Wallet not found", owner_id=owner_id,
        ))
    return wallet


def ensure_wallet(
    session: Session, wallets: dict[str, Wallet], owner_id: str
) -> tuple[Wallet, bool]:
    """Return the locked wallet for *owner_id*, creating an empty one if needed."""
    wallet = wallets.get(owner_id)
    if wallet is not None:
        return wallet, False

    wallet = Wallet(owner_id=owner_id, balance=0, current_streak=0, longest_streak=0)
    session.add(wallet)
    session.info["pending_wallet"] = owner_id
    session.flush()
    session.info.pop("pending_wallet", None)
    wallets[owner_id] = wallet
    logger.info("Created wallet for %s", owner_id)
    return wallet, True


def require_system_wallet(wallets: dict[str, Wallet], owner_id: str) -> Wallet:
    wallet = wallets.get(owner_id)
    if wallet is None:
        raise RuntimeError(
            f"system wallet {owner_id} is missing; run init_db() to seed system state"
        )
    return wallet


def lock_burn_sink(session: Session) -> BurnSink:
    stmt = select(BurnSink).where(BurnSink.id == BURN_SINK_ID).with_for_update(nowait=True)
    sink = session.scalar(stmt)
    if sink is None:
        raise RuntimeError("burn_sink row is missing; run init_db() to seed system state")
    return sink
