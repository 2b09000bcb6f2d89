"""
tests/test_swap_engine.py — Fixed-rate swap quotes
===================================================

Pure functions only; no database.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from diamond_rails.engine.swap import SWAP_RATES, quote, rate_for


class TestRateFor:
    def test_known_pairs(self):
        xp = rate_for("XP", "DIAMOND")
        assert xp.rate == Decimal("0.01")
        assert (xp.min_amount, xp.max_amount) == (100, 100_000)
        assert xp.fee_percent == Decimal("5.00")

        tickets = rate_for("DIAMOND", "ARENA_TICKET")
        assert tickets.rate == Decimal("1.00")
        assert (tickets.min_amount, tickets.max_amount) == (10, 10_000)
        assert tickets.fee_percent == 0

    def test_lookup_is_case_insensitive(self):
        assert rate_for("xp", "diamond") is SWAP_RATES[("XP", "DIAMOND")]

    @pytest.mark.parametrize(("src", "dst"), [("DIAMOND", "XP"), ("XP", "ARENA_TICKET"), ("GOLD", "DIAMOND")])
    def test_unknown_pair(self, src, dst):
        assert rate_for(src, dst) is None

    def test_to_dict_renders_decimals_as_strings(self):
        assert rate_for("XP", "DIAMOND").to_dict() == {
            "from_currency": "XP",
            "to_currency": "DIAMOND",
            "rate": "0.01",
            "min_amount": 100,
            "max_amount": 100_000,
            "fee_percent": "5.00",
        }


class TestQuote:
    @pytest.mark.parametrize(
        ("amount", "fee", "output"),
        [
            (100, 5, 0),
            (1_000, 50, 9),
            (10_000, 500, 95),
            (12_345, 617, 117),
            (100_000, 5_000, 950),
        ],
    )
    def test_xp_to_diamond_floors_fee_and_output(self, amount, fee, output):
        priced = quote(rate_for("XP", "DIAMOND"), amount)
        assert (priced.fee, priced.output) == (fee, output)

    def test_zero_fee_pair_is_one_to_one(self):
        priced = quote(rate_for("DIAMOND", "ARENA_TICKET"), 37)
        assert (priced.fee, priced.output) == (0, 37)

    def test_negative_amount(self):
        with pytest.raises(ValueError, match="non-negative"):
            quote(rate_for("XP", "DIAMOND"), -1)
