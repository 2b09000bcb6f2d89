"""
diamond_rails.services.ledger_service — Mint, Burn & Transfer
=============================================================

The public balance operations.  Each one:

    1. Validates amount and source before touching any row.
    2. Runs as one atomic unit (:func:`run_atomic`): non-blocking wallet
       locks, freeze gate, wallet update + journal append, commit.
    3. Returns a :class:`LedgerReceipt` / :class:`TransferReceipt`, or a
       :class:`Failure` for expected business conditions.

Usage::

    from diamond_rails.services import ledger_service

    receipt = ledger_service.mint(engine, "user-1", 100, JournalSource.ADMIN_GRANT)
    if not receipt.ok:
        print(receipt.kind, receipt.details)
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from diamond_rails.config import RailsConfig
from diamond_rails.constants import SYSTEM_OWNERS
from diamond_rails.database.models import (
    BURN_SOURCES,
    MINT_SOURCES,
    Direction,
    JournalEntry,
    JournalSource,
    Wallet,
)
from diamond_rails.engine.results import (
    ErrorKind,
    Failure,
    LedgerAbort,
    LedgerReceipt,
    TransferReceipt,
    fail,
)
from diamond_rails.engine.streak import multiplier_for
from diamond_rails.services import journal_service
from diamond_rails.services.locks import RowLockRegistry, wallet_key
from diamond_rails.services.unit_of_work import (
    ensure_wallet,
    lock_wallets,
    require_wallet,
    run_atomic,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_amount(amount) -> Failure | None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return fail(ErrorKind.INVALID_AMOUNT, "Amount must be a positive integer", amount=amount)
    return None


def validate_source(source, allowed: frozenset, kind: str) -> Failure | None:
    try:
        parsed = JournalSource(source)
    except ValueError:
        parsed = None
    if parsed is None or parsed not in allowed:
        return fail(
            ErrorKind.INVALID_SOURCE,
            f"Invalid {kind} source",
            source=str(source),
            allowed=sorted(s.value for s in allowed),
        )
    return None


def validate_owner(owner_id: str) -> Failure | None:
    if owner_id in SYSTEM_OWNERS:
        return fail(
            ErrorKind.RESERVED_ACCOUNT,
            "System wallets cannot be used directly",
            owner_id=owner_id,
        )
    return None


def receipt_for(entry: JournalEntry, wallet: Wallet, created: bool = False) -> LedgerReceipt:
    return LedgerReceipt(
        owner_id=wallet.owner_id,
        wallet_id=wallet.id,
        direction=str(entry.direction),
        amount=entry.amount,
        source=str(entry.source),
        balance_before=entry.balance_before,
        balance_after=entry.balance_after,
        journal_id=entry.id,
        wallet_created=created,
    )


# ---------------------------------------------------------------------------
# Mint
# ---------------------------------------------------------------------------
def mint(
    engine: Engine,
    owner_id: str,
    amount: int,
    source: JournalSource | str,
    *,
    reference_id: str | None = None,
    reference_type: str | None = None,
    metadata: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> LedgerReceipt | Failure:
    """Credit *amount* new diamonds to *owner_id*, creating the wallet if needed."""
    failure = (
        validate_amount(amount)
        or validate_source(source, MINT_SOURCES, "credit")
        or validate_owner(owner_id)
    )
    if failure:
        return failure

    def work(session: Session) -> LedgerReceipt:
        wallets = lock_wallets(session, [owner_id])
        wallet, created = ensure_wallet(session, wallets, owner_id)
        entry = journal_service.append_entry(
            session, wallet, Direction.CREDIT, amount, JournalSource(source),
            reference_id=reference_id, reference_type=reference_type, metadata=metadata,
        )
        return receipt_for(entry, wallet, created)

    result = run_atomic(engine, [wallet_key(owner_id)], work, locks=locks, config=config)
    if result.ok:
        logger.info("Minted %d to %s (%s)", amount, owner_id, source)
    return result


# ---------------------------------------------------------------------------
# Burn
# ---------------------------------------------------------------------------
def burn(
    engine: Engine,
    owner_id: str,
    amount: int,
    source: JournalSource | str,
    *,
    reference_id: str | None = None,
    reference_type: str | None = None,
    metadata: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> LedgerReceipt | Failure:
    """Debit *amount* from *owner_id*.  Never overdraws."""
    failure = (
        validate_amount(amount)
        or validate_source(source, BURN_SOURCES, "debit")
        or validate_owner(owner_id)
    )
    if failure:
        return failure

    def work(session: Session) -> LedgerReceipt:
        wallets = lock_wallets(session, [owner_id])
        wallet = require_wallet(wallets, owner_id)
        entry = journal_service.append_entry(
            session, wallet, Direction.DEBIT, amount, JournalSource(source),
            reference_id=reference_id, reference_type=reference_type, metadata=metadata,
        )
        return receipt_for(entry, wallet)

    result = run_atomic(engine, [wallet_key(owner_id)], work, locks=locks, config=config)
    if result.ok:
        logger.info("Burned %d from %s (%s)", amount, owner_id, source)
    return result


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------
def transfer(
    engine: Engine,
    from_owner: str,
    to_owner: str,
    amount: int,
    *,
    metadata: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> TransferReceipt | Failure:
    """Move *amount* from one wallet to another in a single atomic unit.

    Both wallets are locked in owner order.  If the credit leg fails after
    the debit leg has been applied, the whole unit rolls back.
    """
    if from_owner == to_owner:
        return fail(ErrorKind.SELF_TRANSFER, "Cannot transfer to self", owner_id=from_owner)
    failure = validate_amount(amount) or validate_owner(from_owner)
    if failure:
        return failure

    def work(session: Session) -> TransferReceipt:
        wallets = lock_wallets(session, [from_owner, to_owner])
        sender = require_wallet(wallets, from_owner)
        debit = journal_service.append_entry(
            session, sender, Direction.DEBIT, amount, JournalSource.TRANSFER_OUT,
            reference_type="TRANSFER", reference_id=to_owner, metadata=metadata,
        )
        reserved = validate_owner(to_owner)
        if reserved:
            raise LedgerAbort(reserved)
        recipient, created = ensure_wallet(session, wallets, to_owner)
        credit = journal_service.append_entry(
            session, recipient, Direction.CREDIT, amount, JournalSource.TRANSFER_IN,
            reference_type="TRANSFER", reference_id=str(debit.id), metadata=metadata,
        )
        return TransferReceipt(
            from_owner=from_owner,
            to_owner=to_owner,
            amount=amount,
            debit=receipt_for(debit, sender),
            credit=receipt_for(credit, recipient, created),
        )

    keys = [wallet_key(from_owner), wallet_key(to_owner)]
    result = run_atomic(engine, keys, work, locks=locks, config=config)
    if result.ok:
        logger.info("Transferred %d from %s to %s", amount, from_owner, to_owner)
    return result


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------
def get_wallet(engine: Engine, owner_id: str) -> dict | None:
    """Return a wallet summary with its current streak multiplier, or None."""
    with Session(engine) as session:
        wallet = session.scalar(select(Wallet).where(Wallet.owner_id == owner_id))
        if wallet is None:
            return None
        streak = multiplier_for(wallet.current_streak)
        return {
            "owner_id": wallet.owner_id,
            "balance": wallet.balance,
            "currency": wallet.currency,
            "current_streak": wallet.current_streak,
            "longest_streak": wallet.longest_streak,
            "last_claim": wallet.last_claim.isoformat() if wallet.last_claim else None,
            "multiplier": streak.multiplier,
            "tier_label": streak.tier_label,
            "next_tier_days": streak.next_tier_days,
        }
