"""
diamond_rails.engine.results — Tagged operation results
========================================================

Every ledger, escrow, settlement and RNG operation returns either a
receipt (``ok is True``) or a :class:`Failure` (``ok is False``).
Expected business conditions — insufficient funds, a busy wallet, a
frozen ledger — are values, not exceptions.  Exceptions are reserved for
infrastructure faults.

Inside a unit of work, a :class:`LedgerAbort` carries a failure out of
nested helpers so the transaction rolls back; the unit converts it back
into the failure before returning.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import ClassVar


class ErrorKind(enum.StrEnum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_SOURCE = "INVALID_SOURCE"
    RESERVED_ACCOUNT = "RESERVED_ACCOUNT"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    RESOURCE_BUSY = "RESOURCE_BUSY"
    SELF_TRANSFER = "SELF_TRANSFER"
    SELF_TRANSACTION = "SELF_TRANSACTION"
    DUPLICATE_SESSION = "DUPLICATE_SESSION"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    NOT_FOUND = "NOT_FOUND"
    SEED_NOT_FOUND = "SEED_NOT_FOUND"
    SESSION_OPEN = "SESSION_OPEN"
    LEDGER_FROZEN = "LEDGER_FROZEN"
    CLAIM_TOO_SOON = "CLAIM_TOO_SOON"
    INVALID_RESOLUTION = "INVALID_RESOLUTION"
    NOT_FROZEN = "NOT_FROZEN"
    SWAP_PAIR_NOT_FOUND = "SWAP_PAIR_NOT_FOUND"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    ABOVE_MAXIMUM = "ABOVE_MAXIMUM"


RETRYABLE_KINDS = frozenset({ErrorKind.RESOURCE_BUSY})


@dataclass(frozen=True, slots=True)
class Failure:
    kind: ErrorKind
    message: str
    details: dict = field(default_factory=dict)

    ok: ClassVar[bool] = False

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            **self.details,
        }


def fail(kind: ErrorKind, message: str, **details) -> Failure:
    return Failure(kind=kind, message=message, details=details)


class LedgerAbort(Exception):
    """Unwinds a unit of work with a business failure."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class _Receipt:
    __slots__ = ()

    ok: ClassVar[bool] = True

    def to_dict(self) -> dict:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        return {"success": True, **payload}


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerReceipt(_Receipt):
    owner_id: str
    wallet_id: int
    direction: str
    amount: int
    source: str
    balance_before: int
    balance_after: int
    journal_id: int
    wallet_created: bool = False


@dataclass(frozen=True, slots=True)
class TransferReceipt(_Receipt):
    from_owner: str
    to_owner: str
    amount: int
    debit: LedgerReceipt
    credit: LedgerReceipt


@dataclass(frozen=True, slots=True)
class SettlementReceipt(_Receipt):
    payer_id: str | None
    payee_id: str
    category: str
    gross: int
    burn: int
    net: int
    payer_journal_id: int | None
    payee_journal_id: int
    sink_journal_id: int | None
    audit_id: int

    @property
    def journal_ids(self) -> list[int]:
        ids = [self.payer_journal_id, self.payee_journal_id, self.sink_journal_id]
        return [i for i in ids if i is not None]


@dataclass(frozen=True, slots=True)
class EscrowReceipt(_Receipt):
    session_id: str
    owner_id: str
    status: str
    stake: int
    potential_payout: int
    amount_credited: int
    expires_at: datetime
    journal_id: int | None = None
    balance_after: int | None = None


@dataclass(frozen=True, slots=True)
class ClaimReceipt(_Receipt):
    owner_id: str
    reward: int
    base_reward: int
    multiplier: float
    tier_label: str
    milestone_multiplier: float
    comeback_bonus: int
    streak: int
    longest_streak: int
    streak_broken: bool
    balance_after: int
    journal_id: int


@dataclass(frozen=True, slots=True)
class RngCommitReceipt(_Receipt):
    commit_id: str
    session_id: str
    server_seed_hash: str
    client_seed: str
    nonce: int
    roll_value: float


@dataclass(frozen=True, slots=True)
class RngReveal(_Receipt):
    commit_id: str
    session_id: str
    server_seed: str
    server_seed_hash: str
    client_seed: str
    nonce: int
    final_hash: str
    roll_value: float
    verified: bool


@dataclass(frozen=True, slots=True)
class SwapReceipt(_Receipt):
    swap_id: int
    owner_id: str
    from_currency: str
    to_currency: str
    input_amount: int
    rate: str
    fee_percent: str
    fee_amount: int
    output_amount: int
    journal_id: int
    balance_after: int


@dataclass(frozen=True, slots=True)
class RakebackReceipt(_Receipt):
    owner_id: str
    fee_source: str
    fee_amount: int
    streak_days: int
    tier: str
    percent: str
    amount: int
    reason: str | None = None
    journal_id: int | None = None
    balance_after: int | None = None


@dataclass(frozen=True, slots=True)
class FreezeStatus(_Receipt):
    is_frozen: bool
    frozen_at: datetime | None = None
    frozen_by: str | None = None
    freeze_reason: str | None = None
    violation_type: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_note: str | None = None
