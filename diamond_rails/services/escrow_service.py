"""
diamond_rails.services.escrow_service — Time-boxed wager stakes
===============================================================

State machine per session::

    LOCKED ──release──▶ RELEASED    stake + payout back to the owner
           ──forfeit──▶ FORFEITED   stake to the house pool
           ──cancel───▶ CANCELLED   stake refunded
           ──sweep────▶ EXPIRED     stake refunded once past expires_at

Terminal states never change again; resolving one returns
``ALREADY_RESOLVED``.  Every transition closes the session's RNG commits
so their seeds become revealable.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig
from diamond_rails.constants import HOUSE_POOL_OWNER, as_utc, utcnow
from diamond_rails.database.models import (
    Direction,
    EscrowEntry,
    EscrowStatus,
    JournalSource,
    RngCommit,
)
from diamond_rails.engine.results import (
    ErrorKind,
    EscrowReceipt,
    Failure,
    LedgerAbort,
    fail,
)
from diamond_rails.services import journal_service
from diamond_rails.services.ledger_service import validate_amount, validate_owner
from diamond_rails.services.locks import RowLockRegistry, escrow_key, wallet_key
from diamond_rails.services.unit_of_work import (
    ensure_wallet,
    lock_wallets,
    require_system_wallet,
    require_wallet,
    run_atomic,
)

logger = logging.getLogger(__name__)


def _receipt(entry: EscrowEntry, credited: int, journal_id=None, balance_after=None) -> EscrowReceipt:
    return EscrowReceipt(
        session_id=entry.session_id,
        owner_id=entry.owner_id,
        status=str(entry.status),
        stake=entry.stake_amount,
        potential_payout=entry.potential_payout,
        amount_credited=credited,
        expires_at=as_utc(entry.expires_at),
        journal_id=journal_id,
        balance_after=balance_after,
    )


def _lock_entry(session: Session, session_id: str) -> EscrowEntry:
    stmt = (
        select(EscrowEntry)
        .where(EscrowEntry.session_id == session_id)
        .with_for_update(nowait=True)
    )
    entry = session.scalar(stmt)
    if entry is None:
        raise LedgerAbort(fail(ErrorKind.NOT_FOUND, "Escrow session not found", session_id=session_id))
    if entry.status != EscrowStatus.LOCKED:
        raise LedgerAbort(fail(
            ErrorKind.ALREADY_RESOLVED,
            "Escrow session already resolved",
            session_id=session_id,
            status=str(entry.status),
        ))
    return entry


def _owner_of(engine: Engine, session_id: str) -> str | None:
    with Session(engine) as session:
        return session.scalar(
            select(EscrowEntry.owner_id).where(EscrowEntry.session_id == session_id)
        )


def _close_rng_session(session: Session, session_id: str, when: datetime) -> None:
    session.execute(
        update(RngCommit)
        .where(RngCommit.session_id == session_id, RngCommit.session_closed_at.is_(None))
        .values(session_closed_at=when)
    )


# ---------------------------------------------------------------------------
# Lock
# ---------------------------------------------------------------------------
def lock_stake(
    engine: Engine,
    owner_id: str,
    session_id: str,
    stake: int,
    *,
    game_mode: str = "ARCADE",
    payout_multiplier: float | None = None,
    expiry_minutes: int | None = None,
    metadata: dict | None = None,
    now: datetime | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> EscrowReceipt | Failure:
    """Debit *stake* from *owner_id* into escrow for *session_id*."""
    cfg = config or DEFAULT_CONFIG
    failure = validate_amount(stake) or validate_owner(owner_id)
    if failure:
        return failure
    multiplier = payout_multiplier if payout_multiplier is not None else cfg.escrow_payout_multiplier
    if multiplier < 1:
        return fail(ErrorKind.INVALID_AMOUNT, "Payout multiplier must be at least 1", multiplier=multiplier)
    created_at = now or utcnow()
    expires_at = created_at + timedelta(minutes=expiry_minutes or cfg.escrow_expiry_minutes)

    def work(session: Session) -> EscrowReceipt:
        existing = session.scalar(
            select(EscrowEntry.status).where(EscrowEntry.session_id == session_id)
        )
        if existing is not None:
            raise LedgerAbort(fail(
                ErrorKind.DUPLICATE_SESSION,
                "Escrow already exists for this session",
                session_id=session_id,
                status=str(existing),
            ))
        wallets = lock_wallets(session, [owner_id])
        wallet = require_wallet(wallets, owner_id)
        journal = journal_service.append_entry(
            session, wallet, Direction.DEBIT, stake, JournalSource.ARCADE_ESCROW,
            reference_id=session_id, reference_type="ESCROW",
            metadata={**(metadata or {}), "game_mode": game_mode},
        )
        entry = EscrowEntry(
            session_id=session_id,
            owner_id=owner_id,
            game_mode=game_mode,
            stake_amount=stake,
            potential_payout=math.floor(stake * multiplier) - stake,
            status=EscrowStatus.LOCKED,
            created_at=created_at,
            expires_at=expires_at,
            lock_journal_id=journal.id,
        )
        session.add(entry)
        try:
            session.flush()
        except IntegrityError:
            raise LedgerAbort(fail(
                ErrorKind.DUPLICATE_SESSION,
                "Escrow already exists for this session",
                session_id=session_id,
            ))
        return _receipt(entry, 0, journal.id, wallet.balance)

    keys = [wallet_key(owner_id), escrow_key(session_id)]
    result = run_atomic(engine, keys, work, locks=locks, config=cfg)
    if result.ok:
        logger.info("Escrow %s: locked %d from %s", session_id, stake, owner_id)
    return result


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------
def _resolve(
    engine: Engine,
    session_id: str,
    status: EscrowStatus,
    *,
    payout: int | None = None,
    resolution: dict | None = None,
    now: datetime | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> EscrowReceipt | Failure:
    owner_id = _owner_of(engine, session_id)
    if owner_id is None:
        return fail(ErrorKind.NOT_FOUND, "Escrow session not found", session_id=session_id)
    resolved_at = now or utcnow()

    def work(session: Session) -> EscrowReceipt:
        entry = _lock_entry(session, session_id)
        owners = [entry.owner_id, HOUSE_POOL_OWNER]
        wallets = lock_wallets(session, owners)

        if status is EscrowStatus.FORFEITED:
            target = require_system_wallet(wallets, HOUSE_POOL_OWNER)
            amount, source = entry.stake_amount, JournalSource.ARCADE_LOSS_POOL
        else:
            target, _ = ensure_wallet(session, wallets, entry.owner_id)
            if status is EscrowStatus.RELEASED:
                won = entry.potential_payout if payout is None else payout
                if won < 0 or won > entry.potential_payout:
                    raise LedgerAbort(fail(
                        ErrorKind.INVALID_AMOUNT,
                        "Payout must be between 0 and the potential payout",
                        payout=won,
                        potential_payout=entry.potential_payout,
                    ))
                amount, source = entry.stake_amount + won, JournalSource.ARCADE_WIN
            else:
                amount, source = entry.stake_amount, JournalSource.ARCADE_REFUND

        journal = journal_service.append_entry(
            session, target, Direction.CREDIT, amount, source,
            reference_id=session_id, reference_type="ESCROW",
            metadata={"status": str(status), **(resolution or {})},
        )
        entry.status = status
        entry.resolved_at = resolved_at
        entry.resolution = resolution
        entry.resolution_journal_id = journal.id
        _close_rng_session(session, session_id, resolved_at)
        session.flush()

        credited_to_owner = 0 if status is EscrowStatus.FORFEITED else amount
        owner_balance = wallets[entry.owner_id].balance if entry.owner_id in wallets else None
        return _receipt(entry, credited_to_owner, journal.id, owner_balance)

    keys = [escrow_key(session_id), wallet_key(owner_id), wallet_key(HOUSE_POOL_OWNER)]
    result = run_atomic(engine, keys, work, locks=locks, config=config)
    if result.ok:
        logger.info("Escrow %s: %s (%d credited)", session_id, status, result.amount_credited)
    return result


def release(
    engine: Engine,
    session_id: str,
    *,
    payout: int | None = None,
    result: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> EscrowReceipt | Failure:
    """Win: return the stake plus *payout* (default: the full potential payout)."""
    if payout is not None and (isinstance(payout, bool) or not isinstance(payout, int)):
        return fail(ErrorKind.INVALID_AMOUNT, "Payout must be an integer", payout=payout)
    return _resolve(
        engine, session_id, EscrowStatus.RELEASED,
        payout=payout, resolution=result, locks=locks, config=config,
    )


def forfeit(
    engine: Engine,
    session_id: str,
    *,
    result: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> EscrowReceipt | Failure:
    """Loss: move the stake to the house pool."""
    return _resolve(
        engine, session_id, EscrowStatus.FORFEITED,
        resolution=result, locks=locks, config=config,
    )


def cancel(
    engine: Engine,
    session_id: str,
    *,
    reason: str = "USER_CANCELLED",
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> EscrowReceipt | Failure:
    """Refund the stake without a game outcome."""
    return _resolve(
        engine, session_id, EscrowStatus.CANCELLED,
        resolution={"reason": reason}, locks=locks, config=config,
    )


def sweep_expired(
    engine: Engine,
    *,
    now: datetime | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> dict:
    """Refund every LOCKED entry past its expiry.

    Re-entrant: entries resolved or locked by a concurrent caller are
    skipped and picked up by the next sweep.
    """
    cutoff = now or utcnow()
    with Session(engine) as session:
        due = list(session.scalars(
            select(EscrowEntry.session_id)
            .where(EscrowEntry.status == EscrowStatus.LOCKED, EscrowEntry.expires_at < cutoff)
            .order_by(EscrowEntry.expires_at)
        ))

    expired: list[str] = []
    skipped: list[dict] = []
    for session_id in due:
        outcome = _resolve(
            engine, session_id, EscrowStatus.EXPIRED,
            resolution={"reason": "EXPIRED"}, now=cutoff, locks=locks, config=config,
        )
        if outcome.ok:
            expired.append(session_id)
        else:
            skipped.append({"session_id": session_id, "error": outcome.kind.value})

    if due:
        logger.info("Escrow sweep: %d expired, %d skipped", len(expired), len(skipped))
    return {"checked": len(due), "expired": expired, "skipped": skipped}


# ---------------------------------------------------------------------------
# Read-only view
# ---------------------------------------------------------------------------
def get_escrow(engine: Engine, session_id: str) -> dict | None:
    with Session(engine) as session:
        entry = session.scalar(select(EscrowEntry).where(EscrowEntry.session_id == session_id))
        if entry is None:
            return None
        return {
            "session_id": entry.session_id,
            "owner_id": entry.owner_id,
            "game_mode": entry.game_mode,
            "status": entry.status,
            "stake": entry.stake_amount,
            "potential_payout": entry.potential_payout,
            "created_at": as_utc(entry.created_at).isoformat(),
            "expires_at": as_utc(entry.expires_at).isoformat(),
            "resolved_at": as_utc(entry.resolved_at).isoformat() if entry.resolved_at else None,
            "resolution": entry.resolution,
        }
