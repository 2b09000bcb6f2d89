"""
diamond_rails.services.streak_service — Daily claims, streak rewards & analytics
================================================================================

- :func:`claim_daily_reward` — once per ``streak_min_claim_hours``; the
  streak continues if the previous claim is within
  ``streak_grace_hours``, otherwise it restarts at 1 with a comeback
  bonus.  The reward is minted in the same unit as the streak update.
- :func:`mint_with_streak_bonus` — mint a training/arena reward scaled by
  the owner's current streak multiplier.
- :func:`credit_rakeback` — return a streak-tiered share of a fee the
  owner paid elsewhere (swap, burn split), recorded in ``rakeback_ledger``.
- :func:`expire_streaks` — hourly sweep that zeroes lapsed streaks.
- :func:`capture_analytics` — daily/weekly economy snapshot.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session

from diamond_rails.config import DEFAULT_CONFIG, RailsConfig
from diamond_rails.constants import (
    BURN_SINK_ID,
    SYSTEM_OWNERS,
    as_utc,
    utcnow,
)
from diamond_rails.database.engine import get_session
from diamond_rails.database.models import (
    MINT_SOURCES,
    AnalyticsSnapshot,
    BurnSink,
    Direction,
    EscrowEntry,
    EscrowStatus,
    JournalSource,
    RakebackEntry,
    StreakMaintenanceLog,
    Wallet,
)
from diamond_rails.engine.results import (
    ClaimReceipt,
    ErrorKind,
    Failure,
    LedgerReceipt,
    RakebackReceipt,
    fail,
)
from diamond_rails.engine.streak import (
    STREAK_TIERS,
    apply_multiplier,
    milestone_multiplier,
    multiplier_for,
    rakeback_for,
    tier_for,
)
from diamond_rails.services import journal_service
from diamond_rails.services.ledger_service import (
    receipt_for,
    validate_amount,
    validate_owner,
    validate_source,
)
from diamond_rails.services.locks import RowLockRegistry, wallet_key
from diamond_rails.services.unit_of_work import (
    ensure_wallet,
    lock_wallets,
    require_wallet,
    run_atomic,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Daily claim
# ---------------------------------------------------------------------------
def claim_daily_reward(
    engine: Engine,
    owner_id: str,
    *,
    now: datetime | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> ClaimReceipt | Failure:
    cfg = config or DEFAULT_CONFIG
    failure = validate_owner(owner_id)
    if failure:
        return failure
    claimed_at = now or utcnow()

    def work(session: Session) -> ClaimReceipt | Failure:
        wallets = lock_wallets(session, [owner_id])
        wallet, _ = ensure_wallet(session, wallets, owner_id)
        last = as_utc(wallet.last_claim)

        broken = False
        if last is None:
            streak = 1
        else:
            hours = (claimed_at - last).total_seconds() / 3600
            if hours < cfg.streak_min_claim_hours:
                next_at = last + timedelta(hours=cfg.streak_min_claim_hours)
                return fail(
                    ErrorKind.CLAIM_TOO_SOON,
                    "Daily reward already claimed",
                    next_claim_at=next_at.isoformat(),
                    hours_remaining=round(cfg.streak_min_claim_hours - hours, 2),
                )
            if hours <= cfg.streak_grace_hours:
                streak = wallet.current_streak + 1
            else:
                streak = 1
                broken = wallet.current_streak > 0

        tier = multiplier_for(streak)
        comeback = cfg.comeback_bonus if broken else 0
        milestone = milestone_multiplier(streak)
        base = apply_multiplier(cfg.daily_base_reward, streak)
        reward = math.floor((base + comeback) * milestone)

        wallet.current_streak = streak
        wallet.longest_streak = max(wallet.longest_streak, streak)
        wallet.last_claim = claimed_at
        entry = journal_service.append_entry(
            session, wallet, Direction.CREDIT, reward, JournalSource.DAILY_CLAIM,
            reference_type="DAILY_CLAIM",
            metadata={
                "streak": streak,
                "multiplier": tier.multiplier,
                "milestone_multiplier": milestone,
                "comeback_bonus": comeback,
            },
        )
        return ClaimReceipt(
            owner_id=owner_id,
            reward=reward,
            base_reward=cfg.daily_base_reward,
            multiplier=tier.multiplier,
            tier_label=tier.tier_label,
            milestone_multiplier=milestone,
            comeback_bonus=comeback,
            streak=streak,
            longest_streak=wallet.longest_streak,
            streak_broken=broken,
            balance_after=entry.balance_after,
            journal_id=entry.id,
        )

    result = run_atomic(engine, [wallet_key(owner_id)], work, locks=locks, config=cfg)
    if result.ok:
        logger.info("Daily claim %s: +%d (streak %d)", owner_id, result.reward, result.streak)
    return result


def mint_with_streak_bonus(
    engine: Engine,
    owner_id: str,
    base_amount: int,
    *,
    source: JournalSource | str = JournalSource.SESSION_REWARD,
    metadata: dict | None = None,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> LedgerReceipt | Failure:
    """Mint ``floor(base_amount × streak multiplier)`` to *owner_id*.

    The streak is read under the same wallet lock as the credit.
    """
    failure = (
        validate_amount(base_amount)
        or validate_source(source, MINT_SOURCES, "credit")
        or validate_owner(owner_id)
    )
    if failure:
        return failure

    def work(session: Session) -> LedgerReceipt:
        wallets = lock_wallets(session, [owner_id])
        wallet, created = ensure_wallet(session, wallets, owner_id)
        tier = multiplier_for(wallet.current_streak)
        amount = apply_multiplier(base_amount, wallet.current_streak)
        entry = journal_service.append_entry(
            session, wallet, Direction.CREDIT, amount, JournalSource(source),
            metadata={
                **(metadata or {}),
                "base_amount": base_amount,
                "streak": wallet.current_streak,
                "multiplier": tier.multiplier,
            },
        )
        return receipt_for(entry, wallet, created)

    return run_atomic(engine, [wallet_key(owner_id)], work, locks=locks, config=config)


# ---------------------------------------------------------------------------
# Rakeback
# ---------------------------------------------------------------------------
def credit_rakeback(
    engine: Engine,
    owner_id: str,
    fee_source: str,
    fee_amount: int,
    *,
    locks: RowLockRegistry | None = None,
    config: RailsConfig | None = None,
) -> RakebackReceipt | Failure:
    """Credit ``floor(fee_amount × tier percent)`` back to *owner_id*.

    The tier comes from the streak read under the wallet lock.  A zero
    result (no tier, or a fee too small to round up to one diamond) is a
    successful receipt with ``amount == 0`` and nothing written.
    """
    failure = validate_amount(fee_amount) or validate_owner(owner_id)
    if failure:
        return failure
    if not fee_source or len(fee_source) > 50:
        return fail(ErrorKind.INVALID_SOURCE, "Fee source must be 1-50 characters", source=fee_source)

    def work(session: Session) -> RakebackReceipt:
        wallets = lock_wallets(session, [owner_id])
        wallet = require_wallet(wallets, owner_id)
        rb = rakeback_for(wallet.current_streak, fee_amount)
        receipt = {
            "owner_id": owner_id,
            "fee_source": fee_source,
            "fee_amount": fee_amount,
            "streak_days": rb.streak_days,
            "tier": rb.tier.name,
            "percent": str(rb.tier.percent),
            "amount": rb.amount,
        }
        if rb.amount == 0:
            return RakebackReceipt(**receipt, reason=rb.reason, balance_after=wallet.balance)

        entry = journal_service.append_entry(
            session, wallet, Direction.CREDIT, rb.amount, JournalSource.RAKEBACK,
            reference_type="RAKEBACK",
            metadata={"fee_source": fee_source, "fee_amount": fee_amount, "tier": rb.tier.name},
        )
        session.add(RakebackEntry(
            owner_id=owner_id,
            fee_source=fee_source,
            original_fee=fee_amount,
            streak_days=rb.streak_days,
            rakeback_tier=rb.tier.name,
            rakeback_percent=rb.tier.percent,
            rakeback_amount=rb.amount,
            journal_id=entry.id,
        ))
        return RakebackReceipt(**receipt, journal_id=entry.id, balance_after=entry.balance_after)

    result = run_atomic(engine, [wallet_key(owner_id)], work, locks=locks, config=config)
    if result.ok and result.amount:
        logger.info("Rakeback %s: +%d on %d %s fee (%s)", owner_id, result.amount, fee_amount, fee_source, result.tier)
    return result


# ---------------------------------------------------------------------------
# Streak expiry sweep
# ---------------------------------------------------------------------------
def expire_streaks(
    engine: Engine,
    *,
    now: datetime | None = None,
    config: RailsConfig | None = None,
) -> dict:
    """Zero every streak whose last claim is older than the grace window.

    Idempotent: already-zero streaks are not touched.  Balances are not
    affected, so this runs even while the ledger is frozen.
    """
    cfg = config or DEFAULT_CONFIG
    cutoff = (now or utcnow()) - timedelta(hours=cfg.streak_grace_hours)
    with get_session(engine) as session:
        affected = session.execute(
            update(Wallet)
            .where(
                Wallet.current_streak > 0,
                Wallet.last_claim.is_not(None),
                Wallet.last_claim < cutoff,
            )
            .values(current_streak=0)
        ).rowcount
        session.add(StreakMaintenanceLog(
            affected_count=affected,
            grace_period_hours=cfg.streak_grace_hours,
        ))

    if affected:
        logger.info("Streak sweep: reset %d lapsed streak(s)", affected)
    return {"reset": affected, "cutoff": cutoff.isoformat()}


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------
def capture_analytics(engine: Engine, *, period: str = "daily") -> dict:
    """Persist a snapshot of streak distribution and money supply."""
    with get_session(engine) as session:
        streaks = list(session.scalars(
            select(Wallet.current_streak).where(Wallet.owner_id.not_in(sorted(SYSTEM_OWNERS)))
        ))
        circulating = session.scalar(
            select(func.coalesce(func.sum(Wallet.balance), 0))
            .where(Wallet.owner_id.not_in(sorted(SYSTEM_OWNERS)))
        )
        sink = session.get(BurnSink, BURN_SINK_ID)
        escrow_total = session.scalar(
            select(func.coalesce(func.sum(EscrowEntry.stake_amount), 0))
            .where(EscrowEntry.status == EscrowStatus.LOCKED)
        )

        counts = Counter(tier_for(s).label for s in streaks)
        distribution = {tier.label: counts.get(tier.label, 0) for tier in STREAK_TIERS}
        active = [s for s in streaks if s > 0]
        snapshot = AnalyticsSnapshot(
            period=period,
            total_wallets=len(streaks),
            active_streaks=len(active),
            average_streak=round(sum(active) / len(active), 2) if active else 0.0,
            max_streak=max(streaks, default=0),
            tier_distribution=distribution,
            circulating_supply=circulating,
            total_burned=sink.total_burned if sink else 0,
            escrow_locked_total=escrow_total,
        )
        session.add(snapshot)
        session.flush()
        result = {
            "id": snapshot.id,
            "period": period,
            "total_wallets": snapshot.total_wallets,
            "active_streaks": snapshot.active_streaks,
            "average_streak": snapshot.average_streak,
            "max_streak": snapshot.max_streak,
            "tier_distribution": distribution,
            "circulating_supply": circulating,
            "total_burned": snapshot.total_burned,
            "escrow_locked_total": escrow_total,
        }

    logger.info("Captured %s analytics snapshot (%d wallets)", period, result["total_wallets"])
    return result
