"""
diamond_rails.database.models — SQLAlchemy 2.0 Data Models
===========================================================

Tables:
- wallets              — One balance per owner (plus streak state)
- journal_entries      — Append-only record of every balance change
- burn_sink            — Singleton aggregate of all burned diamonds
- burn_audit_log       — One row per settlement split
- escrow_entries       — Time-boxed wager stakes
- ledger_freeze        — Singleton freeze flag honoured by every mutation
- reconciliation_log   — Persisted audit snapshots
- burn_integrity_log   — Burn-rate drift checks
- rng_commits          — Provably-fair commit/reveal records
- currency_swaps       — Fixed-rate swaps touching the DIAMOND balance
- rakeback_ledger      — Streak-tiered fee rebates
- streak_maintenance_log — Streak-expiry sweep runs
- analytics_snapshots  — Periodic economy snapshots
- admin_log            — Append-only audit trail of integrity events
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from diamond_rails.constants import CURRENCY


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Diamond Rails ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Direction(enum.StrEnum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class JournalSource(enum.StrEnum):
    """Every reason a balance may change."""
    # Public mint sources
    DAILY_CLAIM = "DAILY_CLAIM"
    SESSION_REWARD = "SESSION_REWARD"
    ARCADE_WIN = "ARCADE_WIN"
    STORE_REFUND = "STORE_REFUND"
    ADMIN_GRANT = "ADMIN_GRANT"
    TRANSFER_IN = "TRANSFER_IN"
    BONUS = "BONUS"
    # Public burn sources
    ARCADE_STAKE = "ARCADE_STAKE"
    STORE_PURCHASE = "STORE_PURCHASE"
    ADMIN_REVOKE = "ADMIN_REVOKE"
    TRANSFER_OUT = "TRANSFER_OUT"
    # Internal: escrow and settlement legs
    ARCADE_ESCROW = "ARCADE_ESCROW"
    ARCADE_REFUND = "ARCADE_REFUND"
    ARCADE_LOSS_POOL = "ARCADE_LOSS_POOL"
    MARKETPLACE_SALE = "MARKETPLACE_SALE"
    MARKETPLACE_BURN = "MARKETPLACE_BURN"
    ARCADE_BURN = "ARCADE_BURN"
    FEE_BURN = "FEE_BURN"
    # Internal: currency swaps and rakeback
    SWAP_CREDIT = "SWAP_CREDIT"
    SWAP_DEBIT = "SWAP_DEBIT"
    RAKEBACK = "RAKEBACK"


MINT_SOURCES = frozenset({
    JournalSource.DAILY_CLAIM,
    JournalSource.SESSION_REWARD,
    JournalSource.ARCADE_WIN,
    JournalSource.STORE_REFUND,
    JournalSource.ADMIN_GRANT,
    JournalSource.TRANSFER_IN,
    JournalSource.BONUS,
})

BURN_SOURCES = frozenset({
    JournalSource.ARCADE_STAKE,
    JournalSource.STORE_PURCHASE,
    JournalSource.ADMIN_REVOKE,
    JournalSource.TRANSFER_OUT,
})


class BurnCategory(enum.StrEnum):
    MARKETPLACE = "MARKETPLACE"
    ARCADE = "ARCADE"
    OTHER = "OTHER"


class EscrowStatus(enum.StrEnum):
    LOCKED = "LOCKED"
    RELEASED = "RELEASED"
    FORFEITED = "FORFEITED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class HealthStatus(enum.StrEnum):
    BALANCED = "BALANCED"
    MINOR_VARIANCE = "MINOR_VARIANCE"
    CRITICAL = "CRITICAL"


class AdminActionType(enum.StrEnum):
    """Categories of entries recorded in admin_log."""
    LEDGER_FREEZE = "LEDGER_FREEZE"
    LEDGER_UNFREEZE = "LEDGER_UNFREEZE"
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"
    BURN_DRIFT = "BURN_DRIFT"


class JournalImmutableError(RuntimeError):
    """Raised when code attempts to modify or delete a journal entry."""


# ---------------------------------------------------------------------------
# Wallets — one row per owner
# ---------------------------------------------------------------------------
class Wallet(Base):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(16), nullable=False, default=CURRENCY)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_claim: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("current_streak >= 0", name="ck_wallets_streak_non_negative"),
        CheckConstraint("longest_streak >= 0", name="ck_wallets_longest_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Wallet owner={self.owner_id} balance={self.balance}>"


# ---------------------------------------------------------------------------
# JournalEntry — append-only balance history
# ---------------------------------------------------------------------------
class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("wallets.id", ondelete="RESTRICT"), nullable=False
    )
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_journal_amount_positive"),
        CheckConstraint("direction IN ('CREDIT', 'DEBIT')", name="ck_journal_direction"),
        CheckConstraint(
            "(direction = 'CREDIT' AND balance_after = balance_before + amount) OR "
            "(direction = 'DEBIT' AND balance_after = balance_before - amount)",
            name="ck_journal_balance_equation",
        ),
        Index("ix_journal_owner_time", "owner_id", "created_at"),
        Index("ix_journal_source_time", "source", "created_at"),
        Index("ix_journal_reference", "reference_type", "reference_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<JournalEntry id={self.id} owner={self.owner_id} "
            f"{self.direction} {self.amount} {self.source}>"
        )


@event.listens_for(JournalEntry, "before_update")
def _journal_no_update(mapper, connection, target):
    raise JournalImmutableError(f"journal entry {target.id} is append-only")


@event.listens_for(JournalEntry, "before_delete")
def _journal_no_delete(mapper, connection, target):
    raise JournalImmutableError(f"journal entry {target.id} cannot be deleted")


# ---------------------------------------------------------------------------
# BurnSink — singleton aggregate mirrored by the sink wallet
# ---------------------------------------------------------------------------
class BurnSink(Base):
    __tablename__ = "burn_sink"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    total_burned: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    marketplace_burns: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    arcade_burns: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    other_burns: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_burn_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_burn_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_burn_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_burn_sink_singleton"),
        CheckConstraint("total_burned >= 0", name="ck_burn_sink_non_negative"),
    )


class BurnAuditLog(Base):
    __tablename__ = "burn_audit_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    payer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payee_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    gross_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    burn_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    burn_rate: Mapped[float] = mapped_column(Float, nullable=False)
    payer_journal_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payee_journal_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sink_journal_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "burn_amount + net_amount = gross_amount", name="ck_burn_audit_split"
        ),
        Index("ix_burn_audit_category_time", "category", "created_at"),
    )


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------
class EscrowEntry(Base):
    __tablename__ = "escrow_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    game_mode: Mapped[str] = mapped_column(String(32), nullable=False, default="ARCADE")
    stake_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    potential_payout: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=EscrowStatus.LOCKED
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolution: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    lock_journal_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resolution_journal_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        CheckConstraint("stake_amount > 0", name="ck_escrow_stake_positive"),
        Index("ix_escrow_status_expiry", "status", "expires_at"),
        Index("ix_escrow_owner", "owner_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EscrowEntry session={self.session_id} status={self.status}>"


# ---------------------------------------------------------------------------
# Ledger freeze — singleton flag
# ---------------------------------------------------------------------------
class LedgerFreeze(Base):
    __tablename__ = "ledger_freeze"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    is_frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frozen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    frozen_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    freeze_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    violation_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_ledger_freeze_singleton"),
    )


# ---------------------------------------------------------------------------
# Reconciliation & integrity history
# ---------------------------------------------------------------------------
class ReconciliationLog(Base):
    __tablename__ = "reconciliation_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    total_credits: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_debits: Mapped[int] = mapped_column(BigInteger, nullable=False)
    net_minted: Mapped[int] = mapped_column(BigInteger, nullable=False)
    wallet_total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sink_balance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    allocated: Mapped[int] = mapped_column(BigInteger, nullable=False)
    variance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    burn_counter_total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    escrow_locked_total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    journal_violations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    drifted_wallets: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    sink_mismatch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    froze_ledger: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duration_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reconciled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_reconciliation_log_time", "reconciled_at"),
    )


class BurnIntegrityLog(Base):
    __tablename__ = "burn_integrity_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    settlement_count: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_volume: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expected_burn: Mapped[int] = mapped_column(BigInteger, nullable=False)
    recorded_burn: Mapped[int] = mapped_column(BigInteger, nullable=False)
    implied_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    variance_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    within_tolerance: Mapped[bool] = mapped_column(Boolean, nullable=False)
    froze_ledger: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    checked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Provably-fair RNG
# ---------------------------------------------------------------------------
class RngCommit(Base):
    __tablename__ = "rng_commits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    game_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    server_seed: Mapped[str] = mapped_column(String(64), nullable=False)
    server_seed_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    client_seed: Mapped[str] = mapped_column(String(128), nullable=False)
    nonce: Mapped[int] = mapped_column(Integer, nullable=False)
    final_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    roll_value: Mapped[float] = mapped_column(Float, nullable=False)
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    session_closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revealed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "nonce", name="uq_rng_session_nonce"),
        CheckConstraint("nonce >= 0", name="ck_rng_nonce_non_negative"),
    )


# ---------------------------------------------------------------------------
# Currency swaps & rakeback
# ---------------------------------------------------------------------------
class CurrencySwap(Base):
    __tablename__ = "currency_swaps"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    from_currency: Mapped[str] = mapped_column(String(20), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(20), nullable=False)
    input_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rate_applied: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    output_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    journal_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("input_amount > 0", name="ck_swap_input_positive"),
        CheckConstraint("output_amount > 0", name="ck_swap_output_positive"),
        Index("ix_swap_owner_time", "owner_id", "created_at"),
    )


class RakebackEntry(Base):
    __tablename__ = "rakeback_ledger"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    fee_source: Mapped[str] = mapped_column(String(50), nullable=False)
    original_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    streak_days: Mapped[int] = mapped_column(Integer, nullable=False)
    rakeback_tier: Mapped[str] = mapped_column(String(30), nullable=False)
    rakeback_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    rakeback_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    journal_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("rakeback_amount > 0", name="ck_rakeback_amount_positive"),
        Index("ix_rakeback_owner_time", "owner_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Streak maintenance & analytics
# ---------------------------------------------------------------------------
class StreakMaintenanceLog(Base):
    __tablename__ = "streak_maintenance_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    affected_count: Mapped[int] = mapped_column(Integer, nullable=False)
    grace_period_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AnalyticsSnapshot(Base):
    __tablename__ = "analytics_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    total_wallets: Mapped[int] = mapped_column(Integer, nullable=False)
    active_streaks: Mapped[int] = mapped_column(Integer, nullable=False)
    average_streak: Mapped[float] = mapped_column(Float, nullable=False)
    max_streak: Mapped[int] = mapped_column(Integer, nullable=False)
    tier_distribution: Mapped[dict] = mapped_column(JSONB, nullable=False)
    circulating_supply: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_burned: Mapped[int] = mapped_column(BigInteger, nullable=False)
    escrow_locked_total: Mapped[int] = mapped_column(BigInteger, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_analytics_period_time", "period", "captured_at"),
    )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
