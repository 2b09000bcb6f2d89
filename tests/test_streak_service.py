"""
tests/test_streak_service.py — Daily claims, streak rewards & analytics
========================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from diamond_rails.database.models import (
    AnalyticsSnapshot,
    JournalEntry,
    JournalSource,
    RakebackEntry,
    StreakMaintenanceLog,
    Wallet,
)
from diamond_rails.engine.results import ErrorKind
from diamond_rails.services import (
    escrow_service,
    ledger_service,
    reconciliation_service,
    streak_service,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


@pytest.fixture
def engine(db_engine):
    return db_engine


def _wallet(engine, owner_id: str) -> Wallet:
    with Session(engine) as session:
        return session.scalar(select(Wallet).where(Wallet.owner_id == owner_id))


def _set_streak(engine, owner_id: str, streak: int, last_claim: datetime) -> None:
    with Session(engine) as session:
        session.execute(
            update(Wallet)
            .where(Wallet.owner_id == owner_id)
            .values(current_streak=streak, longest_streak=streak, last_claim=last_claim)
        )
        session.commit()


class TestClaimDailyReward:
    def test_first_claim_starts_streak(self, engine, locks):
        receipt = streak_service.claim_daily_reward(engine, "alice", now=T0, locks=locks)

        assert receipt.ok
        assert receipt.streak == 1
        assert receipt.tier_label == "Warming"
        assert receipt.reward == 5  # floor(5 × 1.1)
        assert not receipt.streak_broken
        assert _wallet(engine, "alice").balance == 5

    def test_too_soon(self, engine, locks):
        streak_service.claim_daily_reward(engine, "alice", now=T0, locks=locks)
        result = streak_service.claim_daily_reward(
            engine, "alice", now=T0 + timedelta(hours=10), locks=locks,
        )

        assert result.kind is ErrorKind.CLAIM_TOO_SOON
        assert result.details["hours_remaining"] == 10.0
        assert _wallet(engine, "alice").balance == 5

    def test_next_day_continues_streak(self, engine, locks):
        streak_service.claim_daily_reward(engine, "alice", now=T0, locks=locks)
        receipt = streak_service.claim_daily_reward(
            engine, "alice", now=T0 + timedelta(hours=24), locks=locks,
        )

        assert receipt.streak == 2
        assert receipt.longest_streak == 2
        assert receipt.balance_after == 10

    def test_lapsed_streak_restarts_with_comeback_bonus(self, engine, locks):
        streak_service.claim_daily_reward(engine, "alice", now=T0, locks=locks)
        streak_service.claim_daily_reward(engine, "alice", now=T0 + timedelta(days=1), locks=locks)
        receipt = streak_service.claim_daily_reward(
            engine, "alice", now=T0 + timedelta(days=5), locks=locks,
        )

        assert receipt.streak == 1
        assert receipt.streak_broken
        assert receipt.comeback_bonus == 3
        assert receipt.reward == 8
        assert receipt.longest_streak == 2

    def test_milestone_multiplies_reward(self, engine, locks):
        ledger_service.mint(engine, "alice", 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 6, T0)

        receipt = streak_service.claim_daily_reward(
            engine, "alice", now=T0 + timedelta(hours=24), locks=locks,
        )

        assert receipt.streak == 7
        assert receipt.milestone_multiplier == 2.0
        # floor(5 × 1.5) = 7, doubled on the 7-day milestone
        assert receipt.reward == 14

    def test_reserved_owner(self, engine, locks):
        from diamond_rails.constants import HOUSE_POOL_OWNER

        result = streak_service.claim_daily_reward(engine, HOUSE_POOL_OWNER, locks=locks)
        assert result.kind is ErrorKind.RESERVED_ACCOUNT

    def test_frozen_ledger(self, engine, locks):
        reconciliation_service.freeze_ledger(engine, operator_id="ops", reason="drill")
        result = streak_service.claim_daily_reward(engine, "alice", now=T0, locks=locks)

        assert result.kind is ErrorKind.LEDGER_FROZEN
        assert _wallet(engine, "alice") is None


class TestMintWithStreakBonus:
    def test_scales_by_current_streak(self, engine, locks):
        ledger_service.mint(engine, "alice", 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 7, T0)

        receipt = streak_service.mint_with_streak_bonus(engine, "alice", 10, locks=locks)

        assert receipt.ok
        assert receipt.amount == 15
        assert receipt.source == "SESSION_REWARD"

    def test_new_wallet_gets_base_amount(self, engine, locks):
        receipt = streak_service.mint_with_streak_bonus(
            engine, "bob", 10, source=JournalSource.ARCADE_WIN, locks=locks,
        )
        assert receipt.amount == 10
        assert receipt.wallet_created

    def test_rejects_debit_source(self, engine, locks):
        result = streak_service.mint_with_streak_bonus(
            engine, "bob", 10, source=JournalSource.STORE_PURCHASE, locks=locks,
        )
        assert result.kind is ErrorKind.INVALID_SOURCE


class TestCreditRakeback:
    def test_credits_tier_share_and_records_it(self, engine, locks):
        ledger_service.mint(engine, "alice", 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 14, T0)

        receipt = streak_service.credit_rakeback(engine, "alice", "SWAP", 400, locks=locks)

        assert receipt.ok
        assert receipt.tier == "SILVER_RAKEBACK"
        assert receipt.percent == "2.50"
        assert receipt.amount == 10
        assert receipt.balance_after == 11
        assert receipt.reason is None
        with Session(engine) as session:
            [row] = session.scalars(select(RakebackEntry)).all()
            entry = session.get(JournalEntry, receipt.journal_id)
        assert row.rakeback_amount == 10
        assert row.original_fee == 400
        assert row.streak_days == 14
        assert row.journal_id == receipt.journal_id
        assert entry.source == JournalSource.RAKEBACK

    @pytest.mark.parametrize(
        ("streak", "fee", "reason"),
        [(3, 400, "NO_RAKEBACK_TIER"), (7, 50, "FEE_TOO_SMALL")],
    )
    def test_zero_share_writes_nothing(self, engine, locks, streak, fee, reason):
        ledger_service.mint(engine, "alice", 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", streak, T0)

        receipt = streak_service.credit_rakeback(engine, "alice", "BURN_SPLIT", fee, locks=locks)

        assert receipt.ok
        assert receipt.amount == 0
        assert receipt.reason == reason
        assert receipt.journal_id is None
        assert _wallet(engine, "alice").balance == 1
        with Session(engine) as session:
            assert session.scalar(select(RakebackEntry)) is None

    def test_missing_wallet(self, engine, locks):
        result = streak_service.credit_rakeback(engine, "ghost", "SWAP", 100, locks=locks)
        assert result.kind is ErrorKind.WALLET_NOT_FOUND

    @pytest.mark.parametrize("fee", [0, -5, True])
    def test_rejects_invalid_fee(self, engine, locks, fee):
        result = streak_service.credit_rakeback(engine, "alice", "SWAP", fee, locks=locks)
        assert result.kind is ErrorKind.INVALID_AMOUNT

    def test_rejects_blank_fee_source(self, engine, locks):
        result = streak_service.credit_rakeback(engine, "alice", "", 100, locks=locks)
        assert result.kind is ErrorKind.INVALID_SOURCE


class TestExpireStreaks:
    def test_resets_only_lapsed_streaks(self, engine, locks):
        for owner in ("alice", "bob"):
            ledger_service.mint(engine, owner, 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 4, T0)
        _set_streak(engine, "bob", 9, T0 + timedelta(hours=40))

        result = streak_service.expire_streaks(engine, now=T0 + timedelta(hours=50))

        assert result["reset"] == 1
        assert _wallet(engine, "alice").current_streak == 0
        assert _wallet(engine, "alice").longest_streak == 4
        assert _wallet(engine, "bob").current_streak == 9

    def test_is_idempotent_and_logged(self, engine, locks):
        ledger_service.mint(engine, "alice", 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 4, T0)
        now = T0 + timedelta(days=3)

        streak_service.expire_streaks(engine, now=now)
        second = streak_service.expire_streaks(engine, now=now)

        assert second["reset"] == 0
        with Session(engine) as session:
            runs = list(session.scalars(
                select(StreakMaintenanceLog.affected_count).order_by(StreakMaintenanceLog.id)
            ))
        assert runs == [1, 0]

    def test_runs_while_frozen(self, engine, locks):
        ledger_service.mint(engine, "alice", 1, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 4, T0)
        reconciliation_service.freeze_ledger(engine, operator_id="ops", reason="drill")

        assert streak_service.expire_streaks(engine, now=T0 + timedelta(days=3))["reset"] == 1


class TestCaptureAnalytics:
    def test_snapshot_contents(self, engine, locks):
        ledger_service.mint(engine, "alice", 100, JournalSource.BONUS, locks=locks)
        ledger_service.mint(engine, "bob", 50, JournalSource.BONUS, locks=locks)
        _set_streak(engine, "alice", 8, T0)
        _set_streak(engine, "bob", 2, T0)
        escrow_service.lock_stake(engine, "alice", "game-1", 20, locks=locks)

        result = streak_service.capture_analytics(engine, period="weekly")

        assert result["period"] == "weekly"
        assert result["total_wallets"] == 2
        assert result["active_streaks"] == 2
        assert result["average_streak"] == 5.0
        assert result["max_streak"] == 8
        assert result["tier_distribution"]["Hot"] == 1
        assert result["tier_distribution"]["Warming"] == 1
        assert result["tier_distribution"]["Legendary"] == 0
        assert result["circulating_supply"] == 130
        assert result["escrow_locked_total"] == 20
        with Session(engine) as session:
            assert session.get(AnalyticsSnapshot, result["id"]).period == "weekly"
