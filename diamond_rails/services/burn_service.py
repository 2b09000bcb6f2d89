"""
diamond_rails.services.burn_service — Settlement with burn
==========================================================

Every marketplace sale and wager settlement runs through
:func:`settle_with_burn`.  In one atomic unit it:

    1. Debits the payer (when there is one) for the gross amount.
    2. Credits the payee with the net amount.
    3. Credits the burn-sink wallet with the burned share (skipped when 0).
    4. Bumps the ``burn_sink`` aggregate and its category counter.
    5. Writes a ``burn_audit_log`` row linking the journal entries.

The sink wallet balance and ``burn_sink.total_burned`` therefore move
together; the reconciliation auditor cross-checks them.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig
from diamond_rails.constants import BURN_SINK_ID, BURN_SINK_OWNER, utcnow
from diamond_rails.database.models import (
    BurnAuditLog,
    BurnCategory,
    BurnSink,
    Direction,
    JournalSource,
    Wallet,
)
from diamond_rails.engine.burn import split_burn
from diamond_rails.engine.results import ErrorKind, Failure, SettlementReceipt, fail
from diamond_rails.services import journal_service
from diamond_rails.services.ledger_service import validate_amount, validate_owner
from diamond_rails.services.locks import RowLockRegistry, wallet_key
from diamond_rails.services.unit_of_work import (
    ensure_wallet,
    lock_burn_sink,
    lock_wallets,
    require_system_wallet,
    require_wallet,
    run_atomic,
)

logger = logging.getLogger(__name__)

# category → (payer debit, payee credit, sink credit)
_LEG_SOURCES: dict[BurnCategory, tuple[JournalSource, JournalSource, JournalSource]] = {
    BurnCategory.MARKETPLACE: (
        JournalSource.STORE_PURCHASE,
        JournalSource.MARKETPLACE_SALE,
        JournalSource.MARKETPLACE_BURN,
    ),
    BurnCategory.ARCADE: (
        JournalSource.ARCADE_STAKE,
        JournalSource.ARCADE_WIN,
        JournalSource.ARCADE_BURN,
    ),
    BurnCategory.OTHER: (
        JournalSource.TRANSFER_OUT,
        JournalSource.TRANSFER_IN,
        JournalSource.FEE_BURN,
    ),
}

_CATEGORY_COUNTERS = {
    BurnCategory.MARKETPLACE: "marketplace_burns",
    BurnCategory.ARCADE: "arcade_burns",
    BurnCategory.OTHER: "other_burns",
}


def settle_with_burn(
    engine: Engine,
    payer_id: str | None,
    payee_id: str,
    gross: int,
    *,
    category: BurnCategory | str = BurnCategory.MARKETPLACE,
    reference_id: str | None = None,
    reference_type: str | None = None,
    metadata: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> SettlementReceipt | Failure:
    """Settle *gross* from *payer_id* to *payee_id*, burning the configured share.

    With ``payer_id=None`` the gross is new issuance (e.g. a house-funded
    prize): only the payee and sink legs are written.
    """
    cfg = config or DEFAULT_CONFIG
    failure = validate_amount(gross) or validate_owner(payee_id)
    if failure:
        return failure
    if payer_id is not None:
        if payer_id == payee_id:
            return fail(
                ErrorKind.SELF_TRANSACTION, "Payer and payee must differ", owner_id=payer_id,
            )
        failure = validate_owner(payer_id)
        if failure:
            return failure
    try:
        category = BurnCategory(category)
    except ValueError:
        return fail(ErrorKind.INVALID_SOURCE, "Unknown burn category", category=str(category))

    split = split_burn(gross, cfg.burn_rate, cfg.min_burn_threshold)
    payer_source, payee_source, sink_source = _LEG_SOURCES[category]
    owners = [payee_id, BURN_SINK_OWNER] + ([payer_id] if payer_id is not None else [])

    def work(session: Session) -> SettlementReceipt:
        wallets = lock_wallets(session, owners)
        payer_entry_id = None
        if payer_id is not None:
            payer = require_wallet(wallets, payer_id)
            payer_entry = journal_service.append_entry(
                session, payer, Direction.DEBIT, gross, payer_source,
                reference_id=reference_id, reference_type=reference_type,
                metadata=metadata,
            )
            payer_entry_id = payer_entry.id

        payee, _ = ensure_wallet(session, wallets, payee_id)
        payee_entry = journal_service.append_entry(
            session, payee, Direction.CREDIT, split.net, payee_source,
            reference_id=reference_id, reference_type=reference_type,
            metadata={**(metadata or {}), "gross": gross, "burn": split.burn},
        )

        sink_entry_id = None
        if split.burn > 0:
            sink_wallet = require_system_wallet(wallets, BURN_SINK_OWNER)
            sink = lock_burn_sink(session)
            sink_entry = journal_service.append_entry(
                session, sink_wallet, Direction.CREDIT, split.burn, sink_source,
                reference_id=reference_id, reference_type=reference_type,
                metadata={"gross": gross, "payer_id": payer_id, "payee_id": payee_id},
            )
            sink_entry_id = sink_entry.id
            _bump_sink(sink, category, split.burn, sink_source)

        audit = BurnAuditLog(
            payer_id=payer_id,
            payee_id=payee_id,
            category=category,
            gross_amount=gross,
            burn_amount=split.burn,
            net_amount=split.net,
            burn_rate=cfg.burn_rate,
            payer_journal_id=payer_entry_id,
            payee_journal_id=payee_entry.id,
            sink_journal_id=sink_entry_id,
            reference_id=reference_id,
        )
        session.add(audit)
        session.flush()

        return SettlementReceipt(
            payer_id=payer_id,
            payee_id=payee_id,
            category=category.value,
            gross=gross,
            burn=split.burn,
            net=split.net,
            payer_journal_id=payer_entry_id,
            payee_journal_id=payee_entry.id,
            sink_journal_id=sink_entry_id,
            audit_id=audit.id,
        )

    keys = [wallet_key(owner) for owner in owners]
    result = run_atomic(engine, keys, work, locks=locks, config=cfg)
    if result.ok:
        logger.info(
            "Settled %d %s → %s (net %d, burned %d, %s)",
            gross, payer_id or "<issuance>", payee_id, split.net, split.burn, category,
        )
    return result


def _bump_sink(sink: BurnSink, category: BurnCategory, amount: int, source: JournalSource) -> None:
    counter = _CATEGORY_COUNTERS[category]
    setattr(sink, counter, getattr(sink, counter) + amount)
    sink.total_burned += amount
    sink.last_burn_at = utcnow()
    sink.last_burn_amount = amount
    sink.last_burn_source = source


# ---------------------------------------------------------------------------
# Read-only view
# ---------------------------------------------------------------------------
def get_burn_stats(engine: Engine) -> dict:
    """Return the sink aggregate alongside the sink wallet balance."""
    with Session(engine) as session:
        sink = session.get(BurnSink, BURN_SINK_ID)
        if sink is None:
            raise RuntimeError("burn_sink row is missing; run init_db() to seed system state")
        wallet_balance = session.scalar(
            select(Wallet.balance).where(Wallet.owner_id == BURN_SINK_OWNER)
        )
        return {
            "total_burned": sink.total_burned,
            "marketplace_burns": sink.marketplace_burns,
            "arcade_burns": sink.arcade_burns,
            "other_burns": sink.other_burns,
            "last_burn_at": sink.last_burn_at.isoformat() if sink.last_burn_at else None,
            "last_burn_amount": sink.last_burn_amount,
            "last_burn_source": sink.last_burn_source,
            "sink_wallet_balance": wallet_balance or 0,
        }
