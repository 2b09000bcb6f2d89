"""
tests/test_swap_service.py — Fixed-rate currency swaps
=======================================================
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from diamond_rails.constants import BURN_SINK_OWNER
from diamond_rails.database.models import CurrencySwap, JournalEntry, JournalSource, Wallet
from diamond_rails.engine.results import ErrorKind
from diamond_rails.services import ledger_service, reconciliation_service, swap_service
from diamond_rails.services.locks import wallet_key


@pytest.fixture
def engine(db_engine):
    return db_engine


def _balance(engine, owner_id: str) -> int | None:
    with Session(engine) as session:
        return session.scalar(select(Wallet.balance).where(Wallet.owner_id == owner_id))


def _swap_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(CurrencySwap))


class TestIntoDiamonds:
    def test_credits_output_and_records_swap(self, engine, locks):
        receipt = swap_service.swap(engine, "alice", "XP", "DIAMOND", 10_000, reference_id="xp-1", locks=locks)

        assert receipt.ok
        assert receipt.fee_amount == 500
        assert receipt.output_amount == 95
        assert receipt.rate == "0.01"
        assert receipt.fee_percent == "5.00"
        assert receipt.balance_after == 95
        assert _balance(engine, "alice") == 95

        with Session(engine) as session:
            entry = session.get(JournalEntry, receipt.journal_id)
            record = session.get(CurrencySwap, receipt.swap_id)
        assert entry.source == JournalSource.SWAP_CREDIT
        assert entry.amount == 95
        assert entry.reference_type == "SWAP"
        assert record.input_amount == 10_000
        assert record.rate_applied == Decimal("0.01")
        assert record.journal_id == entry.id
        assert record.reference_id == "xp-1"

    def test_keeps_ledger_balanced(self, engine, locks):
        swap_service.swap(engine, "alice", "XP", "DIAMOND", 5_000, locks=locks)
        snapshot = reconciliation_service.audit(engine)
        assert snapshot.variance == 0
        assert snapshot.healthy


class TestOutOfDiamonds:
    def test_debits_input(self, engine, locks):
        ledger_service.mint(engine, "alice", 100, JournalSource.ADMIN_GRANT, locks=locks)

        receipt = swap_service.swap(engine, "alice", "DIAMOND", "ARENA_TICKET", 40, locks=locks)

        assert receipt.ok
        assert receipt.output_amount == 40
        assert receipt.fee_amount == 0
        assert receipt.balance_after == 60
        with Session(engine) as session:
            assert session.get(JournalEntry, receipt.journal_id).source == JournalSource.SWAP_DEBIT

    def test_insufficient_funds_writes_nothing(self, engine, locks):
        ledger_service.mint(engine, "alice", 15, JournalSource.ADMIN_GRANT, locks=locks)

        result = swap_service.swap(engine, "alice", "DIAMOND", "ARENA_TICKET", 20, locks=locks)

        assert result.kind is ErrorKind.INSUFFICIENT_FUNDS
        assert _balance(engine, "alice") == 15
        assert _swap_count(engine) == 0

    def test_missing_wallet(self, engine, locks):
        result = swap_service.swap(engine, "ghost", "DIAMOND", "ARENA_TICKET", 20, locks=locks)
        assert result.kind is ErrorKind.WALLET_NOT_FOUND


class TestLimits:
    def test_unknown_pair(self, engine, locks):
        result = swap_service.swap(engine, "alice", "DIAMOND", "XP", 100, locks=locks)
        assert result.kind is ErrorKind.SWAP_PAIR_NOT_FOUND

    def test_below_minimum(self, engine, locks):
        result = swap_service.swap(engine, "alice", "XP", "DIAMOND", 99, locks=locks)
        assert result.kind is ErrorKind.BELOW_MINIMUM
        assert result.details["min_amount"] == 100

    def test_above_maximum(self, engine, locks):
        result = swap_service.swap(engine, "alice", "XP", "DIAMOND", 100_001, locks=locks)
        assert result.kind is ErrorKind.ABOVE_MAXIMUM
        assert result.details["max_amount"] == 100_000

    def test_zero_output_after_fee_is_rejected(self, engine, locks):
        result = swap_service.swap(engine, "alice", "XP", "DIAMOND", 100, locks=locks)

        assert result.kind is ErrorKind.BELOW_MINIMUM
        assert result.details["output_amount"] == 0
        assert _balance(engine, "alice") is None
        assert _swap_count(engine) == 0

    @pytest.mark.parametrize("amount", [0, -10, 1.5, True])
    def test_invalid_amount(self, engine, locks, amount):
        result = swap_service.swap(engine, "alice", "XP", "DIAMOND", amount, locks=locks)
        assert result.kind is ErrorKind.INVALID_AMOUNT

    def test_reserved_owner(self, engine, locks):
        result = swap_service.swap(engine, BURN_SINK_OWNER, "XP", "DIAMOND", 1_000, locks=locks)
        assert result.kind is ErrorKind.RESERVED_ACCOUNT


class TestUnitOfWork:
    def test_busy_wallet(self, engine, locks):
        with locks.hold(wallet_key("alice")):
            result = swap_service.swap(engine, "alice", "XP", "DIAMOND", 1_000, locks=locks)
        assert result.kind is ErrorKind.RESOURCE_BUSY
        assert _swap_count(engine) == 0

    def test_frozen_ledger(self, engine, locks):
        reconciliation_service.freeze_ledger(engine, operator_id="ops", reason="drill")
        result = swap_service.swap(engine, "alice", "XP", "DIAMOND", 1_000, locks=locks)
        assert result.kind is ErrorKind.LEDGER_FROZEN


class TestViews:
    def test_list_rates(self):
        pairs = {(r["from_currency"], r["to_currency"]) for r in swap_service.list_rates()}
        assert pairs == {("XP", "DIAMOND"), ("DIAMOND", "ARENA_TICKET")}

    def test_list_swaps_newest_first(self, engine, locks):
        ledger_service.mint(engine, "alice", 50, JournalSource.ADMIN_GRANT, locks=locks)
        swap_service.swap(engine, "alice", "XP", "DIAMOND", 1_000, locks=locks)
        swap_service.swap(engine, "alice", "DIAMOND", "ARENA_TICKET", 10, locks=locks)
        swap_service.swap(engine, "bob", "XP", "DIAMOND", 1_000, locks=locks)

        rows = swap_service.list_swaps(engine, "alice")

        assert [r["to_currency"] for r in rows] == ["ARENA_TICKET", "DIAMOND"]
        assert Decimal(rows[1]["rate"]) == Decimal("0.01")
        assert rows[1]["output_amount"] == 9
