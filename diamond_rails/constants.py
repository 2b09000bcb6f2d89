"""
diamond_rails.constants — Shared Constants & Helpers
=====================================================

Single source of truth for the reserved system owners and the UTC time
helpers.  Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Reserved owners
# ---------------------------------------------------------------------------
BURN_SINK_OWNER = "00000000-0000-0000-0000-000000000000"
HOUSE_POOL_OWNER = "00000000-0000-0000-0000-000000000001"

SYSTEM_OWNERS = frozenset({BURN_SINK_OWNER, HOUSE_POOL_OWNER})

CURRENCY = "DIAMOND"

# Singleton row ids
BURN_SINK_ID = 1
LEDGER_FREEZE_ID = 1


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps (SQLite drops tzinfo on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
