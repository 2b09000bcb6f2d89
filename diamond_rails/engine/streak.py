"""
diamond_rails.engine.streak — Streak tiers & multiplier lookup
===============================================================

Pure functions: no DB access, safe to call from any thread.

Tier table (highest tier whose ``min_days <= streak`` wins)::

    days     multiplier  label
    0        1.00        Cold
    1–2      1.10        Warming
    3–6      1.20        Warm
    7–13     1.50        Hot
    14–29    1.75        Blazing
    30+      2.00        Legendary

Daily-claim milestones multiply the claim reward on the exact day the
streak reaches them (7 → 2.0×, 14 → 2.5×, 30 → 3.0×, 100 → 5.0×).

Fee rakeback follows its own ladder: 7 d 1 %, 14 d 2.5 %, 21 d 4 %,
30 d 5 %.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal


@dataclass(frozen=True, slots=True)
class StreakTier:
    min_days: int
    max_days: int | None
    multiplier: float
    label: str


STREAK_TIERS: tuple[StreakTier, ...] = (
    StreakTier(0, 0, 1.00, "Cold"),
    StreakTier(1, 2, 1.10, "Warming"),
    StreakTier(3, 6, 1.20, "Warm"),
    StreakTier(7, 13, 1.50, "Hot"),
    StreakTier(14, 29, 1.75, "Blazing"),
    StreakTier(30, None, 2.00, "Legendary"),
)

MILESTONE_MULTIPLIERS: dict[int, float] = {
    7: 2.0,
    14: 2.5,
    30: 3.0,
    100: 5.0,
}


@dataclass(frozen=True, slots=True)
class StreakMultiplier:
    multiplier: float
    tier_label: str
    next_tier_days: int | None  # days until the next tier; None at the top


def tier_for(streak_days: int | None) -> StreakTier:
    days = max(streak_days or 0, 0)
    current = STREAK_TIERS[0]
    for tier in STREAK_TIERS:
        if tier.min_days <= days:
            current = tier
    return current


def multiplier_for(streak_days: int | None) -> StreakMultiplier:
    """Return the reward multiplier for *streak_days*.

    ``None`` and negative values are treated as 0.  Streaks beyond the top
    tier saturate at its multiplier.
    """
    days = max(streak_days or 0, 0)
    tier = tier_for(days)
    next_tier_days = None
    for candidate in STREAK_TIERS:
        if candidate.min_days > days:
            next_tier_days = candidate.min_days - days
            break
    return StreakMultiplier(
        multiplier=tier.multiplier,
        tier_label=tier.label,
        next_tier_days=next_tier_days,
    )


def apply_multiplier(base_amount: int, streak_days: int | None) -> int:
    """Floor of ``base_amount × multiplier``."""
    # round() first so 10 × 1.1 does not floor to 10
    return math.floor(round(base_amount * multiplier_for(streak_days).multiplier, 6))


def milestone_multiplier(streak_days: int) -> float:
    return MILESTONE_MULTIPLIERS.get(streak_days, 1.0)


# ---------------------------------------------------------------------------
# Rakeback
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RakebackTier:
    name: str
    min_days: int
    percent: Decimal


RAKEBACK_TIERS: tuple[RakebackTier, ...] = (
    RakebackTier("NO_RAKEBACK", 0, Decimal("0.00")),
    RakebackTier("BRONZE_RAKEBACK", 7, Decimal("1.00")),
    RakebackTier("SILVER_RAKEBACK", 14, Decimal("2.50")),
    RakebackTier("GOLD_RAKEBACK", 21, Decimal("4.00")),
    RakebackTier("LEGENDARY_RAKEBACK", 30, Decimal("5.00")),
)


@dataclass(frozen=True, slots=True)
class RakebackQuote:
    tier: RakebackTier
    streak_days: int
    fee: int
    amount: int
    reason: str | None  # why amount is 0, else None


def rakeback_for(streak_days: int | None, fee: int) -> RakebackQuote:
    """Share of a paid *fee* returned to an owner on a *streak_days* streak."""
    days = max(streak_days or 0, 0)
    tier = RAKEBACK_TIERS[0]
    for candidate in RAKEBACK_TIERS:
        if candidate.min_days <= days:
            tier = candidate
    if tier.percent == 0:
        return RakebackQuote(tier, days, fee, 0, "NO_RAKEBACK_TIER")

    amount = int((Decimal(fee) * tier.percent / 100).to_integral_value(rounding=ROUND_FLOOR))
    return RakebackQuote(tier, days, fee, amount, None if amount else "FEE_TOO_SMALL")
