"""
diamond_rails.engine.swap — Fixed-rate currency swap quotes
============================================================

Diamonds are the only currency this ledger holds.  A narrow set of fixed
pairs lets other platform units be exchanged into or out of diamonds::

    pair                      rate   min    max      fee
    XP → DIAMOND              0.01   100    100 000  5 %
    DIAMOND → ARENA_TICKET    1.00   10     10 000   0 %

    fee    = floor(amount × fee_percent / 100)
    output = floor((amount − fee) × rate)

Pure functions; limits are checked by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from diamond_rails.constants import CURRENCY


@dataclass(frozen=True, slots=True)
class SwapRate:
    from_currency: str
    to_currency: str
    rate: Decimal
    min_amount: int
    max_amount: int | None
    fee_percent: Decimal

    def to_dict(self) -> dict:
        return {
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": str(self.rate),
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
            "fee_percent": str(self.fee_percent),
        }


@dataclass(frozen=True, slots=True)
class SwapQuote:
    rate: SwapRate
    amount: int
    fee: int
    output: int


SWAP_RATES: dict[tuple[str, str], SwapRate] = {
    ("XP", CURRENCY): SwapRate("XP", CURRENCY, Decimal("0.01"), 100, 100_000, Decimal("5.00")),
    (CURRENCY, "ARENA_TICKET"): SwapRate(
        CURRENCY, "ARENA_TICKET", Decimal("1.00"), 10, 10_000, Decimal("0.00"),
    ),
}


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def rate_for(from_currency: str, to_currency: str) -> SwapRate | None:
    return SWAP_RATES.get((from_currency.upper(), to_currency.upper()))


def quote(rate: SwapRate, amount: int) -> SwapQuote:
    """Price *amount* units of ``rate.from_currency``.

    Raises
    ------
    ValueError
        If *amount* is negative.
    """
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    fee = _floor(Decimal(amount) * rate.fee_percent / 100)
    output = _floor((amount - fee) * rate.rate)
    return SwapQuote(rate=rate, amount=amount, fee=fee, output=output)
