"""
diamond_rails.engine.burn — Settlement burn split
==================================================

A fixed share of every marketplace/wager settlement is destroyed::

    burn = floor(gross × rate)
    net  = gross − burn
    if burn < 1 and gross >= min_burn_threshold: burn = 1

``burn + net == gross`` always holds.  Decimal arithmetic keeps rates such
as 0.1 from picking up binary rounding error.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

DEFAULT_BURN_RATE = 0.25
DEFAULT_MIN_BURN_THRESHOLD = 4


@dataclass(frozen=True, slots=True)
class BurnSplit:
    gross: int
    burn: int
    net: int


def split_burn(
    gross: int,
    rate: float = DEFAULT_BURN_RATE,
    min_burn_threshold: int = DEFAULT_MIN_BURN_THRESHOLD,
) -> BurnSplit:
    """Split *gross* into the burned share and the net paid to the payee.

    Raises
    ------
    ValueError
        If *gross* is negative.
    """
    if gross < 0:
        raise ValueError(f"gross must be non-negative, got {gross}")

    burn = int((Decimal(gross) * Decimal(str(rate))).to_integral_value(rounding=ROUND_FLOOR))
    if burn < 1 and gross >= min_burn_threshold and rate > 0:
        burn = 1
    burn = min(burn, gross)
    return BurnSplit(gross=gross, burn=burn, net=gross - burn)


def implied_rate(gross_volume: int, burned: int) -> float | None:
    if gross_volume <= 0:
        return None
    return burned / gross_volume
