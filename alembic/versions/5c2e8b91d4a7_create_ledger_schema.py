"""Create ledger schema and seed system rows

Revision ID: 5c2e8b91d4a7
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e8b91d4a7"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

BURN_SINK_OWNER = "00000000-0000-0000-0000-000000000000"
HOUSE_POOL_OWNER = "00000000-0000-0000-0000-000000000001"


def _ts(name: str, *, nullable: bool = True, default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if default else None,
    )


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    """Create every ledger table, then the system wallets and singletons."""
    wallets = op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(64), nullable=False, unique=True),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(16), nullable=False, server_default="DIAMOND"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        _ts("last_claim"),
        _ts("created_at", default=True),
        _ts("updated_at", default=True),
        sa.CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        sa.CheckConstraint("current_streak >= 0", name="ck_wallets_streak_non_negative"),
        sa.CheckConstraint("longest_streak >= 0", name="ck_wallets_longest_non_negative"),
    )

    op.create_table(
        "journal_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "wallet_id",
            sa.Integer(),
            sa.ForeignKey("wallets.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("balance_before", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _ts("created_at", default=True),
        sa.CheckConstraint("amount > 0", name="ck_journal_amount_positive"),
        sa.CheckConstraint("direction IN ('CREDIT', 'DEBIT')", name="ck_journal_direction"),
        sa.CheckConstraint(
            "(direction = 'CREDIT' AND balance_after = balance_before + amount) OR "
            "(direction = 'DEBIT' AND balance_after = balance_before - amount)",
            name="ck_journal_balance_equation",
        ),
    )
    op.create_index("ix_journal_owner_time", "journal_entries", ["owner_id", "created_at"])
    op.create_index("ix_journal_source_time", "journal_entries", ["source", "created_at"])
    op.create_index("ix_journal_reference", "journal_entries", ["reference_type", "reference_id"])

    # Journal rows are append-only at the database level too.
    if _is_postgres():
        op.execute(
            """
            CREATE OR REPLACE FUNCTION journal_entries_immutable() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'journal_entries is append-only';
            END;
            $$ LANGUAGE plpgsql;
            """
        )
        op.execute(
            """
            CREATE TRIGGER trg_journal_entries_immutable
            BEFORE UPDATE OR DELETE ON journal_entries
            FOR EACH ROW EXECUTE FUNCTION journal_entries_immutable();
            """
        )

    burn_sink = op.create_table(
        "burn_sink",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("total_burned", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("marketplace_burns", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("arcade_burns", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("other_burns", sa.BigInteger(), nullable=False, server_default="0"),
        _ts("last_burn_at"),
        sa.Column("last_burn_amount", sa.BigInteger(), nullable=True),
        sa.Column("last_burn_source", sa.String(32), nullable=True),
        _ts("updated_at", default=True),
        sa.CheckConstraint("id = 1", name="ck_burn_sink_singleton"),
        sa.CheckConstraint("total_burned >= 0", name="ck_burn_sink_non_negative"),
    )

    op.create_table(
        "burn_audit_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("payer_id", sa.String(64), nullable=True),
        sa.Column("payee_id", sa.String(64), nullable=False),
        sa.Column("category", sa.String(16), nullable=False),
        sa.Column("gross_amount", sa.BigInteger(), nullable=False),
        sa.Column("burn_amount", sa.BigInteger(), nullable=False),
        sa.Column("net_amount", sa.BigInteger(), nullable=False),
        sa.Column("burn_rate", sa.Float(), nullable=False),
        sa.Column("payer_journal_id", sa.BigInteger(), nullable=True),
        sa.Column("payee_journal_id", sa.BigInteger(), nullable=False),
        sa.Column("sink_journal_id", sa.BigInteger(), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        _ts("created_at", default=True),
        sa.CheckConstraint("burn_amount + net_amount = gross_amount", name="ck_burn_audit_split"),
    )
    op.create_index("ix_burn_audit_category_time", "burn_audit_log", ["category", "created_at"])

    op.create_table(
        "escrow_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(64), nullable=False, unique=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("game_mode", sa.String(32), nullable=False, server_default="ARCADE"),
        sa.Column("stake_amount", sa.BigInteger(), nullable=False),
        sa.Column("potential_payout", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(16), nullable=False, server_default="LOCKED"),
        _ts("created_at", nullable=False),
        _ts("expires_at", nullable=False),
        _ts("resolved_at"),
        sa.Column("resolution", postgresql.JSONB(), nullable=True),
        sa.Column("lock_journal_id", sa.BigInteger(), nullable=True),
        sa.Column("resolution_journal_id", sa.BigInteger(), nullable=True),
        sa.CheckConstraint("stake_amount > 0", name="ck_escrow_stake_positive"),
    )
    op.create_index("ix_escrow_status_expiry", "escrow_entries", ["status", "expires_at"])
    op.create_index("ix_escrow_owner", "escrow_entries", ["owner_id", "created_at"])

    ledger_freeze = op.create_table(
        "ledger_freeze",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("is_frozen", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("frozen_at"),
        sa.Column("frozen_by", sa.String(64), nullable=True),
        sa.Column("freeze_reason", sa.Text(), nullable=True),
        sa.Column("violation_type", sa.String(50), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        _ts("resolved_at"),
        sa.Column("resolved_by", sa.String(64), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.CheckConstraint("id = 1", name="ck_ledger_freeze_singleton"),
    )

    op.create_table(
        "reconciliation_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("total_credits", sa.BigInteger(), nullable=False),
        sa.Column("total_debits", sa.BigInteger(), nullable=False),
        sa.Column("net_minted", sa.BigInteger(), nullable=False),
        sa.Column("wallet_total", sa.BigInteger(), nullable=False),
        sa.Column("sink_balance", sa.BigInteger(), nullable=False),
        sa.Column("allocated", sa.BigInteger(), nullable=False),
        sa.Column("variance", sa.BigInteger(), nullable=False),
        sa.Column("burn_counter_total", sa.BigInteger(), nullable=False),
        sa.Column("escrow_locked_total", sa.BigInteger(), nullable=False),
        sa.Column("journal_violations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("drifted_wallets", postgresql.JSONB(), nullable=True),
        sa.Column("sink_mismatch", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("froze_ledger", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("duration_ms", sa.Float(), nullable=False, server_default="0"),
        _ts("reconciled_at", default=True),
    )
    op.create_index("ix_reconciliation_log_time", "reconciliation_log", ["reconciled_at"])

    op.create_table(
        "burn_integrity_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("settlement_count", sa.Integer(), nullable=False),
        sa.Column("gross_volume", sa.BigInteger(), nullable=False),
        sa.Column("expected_burn", sa.BigInteger(), nullable=False),
        sa.Column("recorded_burn", sa.BigInteger(), nullable=False),
        sa.Column("implied_rate", sa.Float(), nullable=True),
        sa.Column("variance_ratio", sa.Float(), nullable=False),
        sa.Column("within_tolerance", sa.Boolean(), nullable=False),
        sa.Column("froze_ledger", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("checked_at", default=True),
    )

    op.create_table(
        "rng_commits",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=True),
        sa.Column("game_mode", sa.String(32), nullable=True),
        sa.Column("server_seed", sa.String(64), nullable=False),
        sa.Column("server_seed_hash", sa.String(64), nullable=False),
        sa.Column("client_seed", sa.String(128), nullable=False),
        sa.Column("nonce", sa.Integer(), nullable=False),
        sa.Column("final_hash", sa.String(64), nullable=False),
        sa.Column("roll_value", sa.Float(), nullable=False),
        _ts("published_at", default=True),
        _ts("session_closed_at"),
        _ts("revealed_at"),
        sa.Column("verified", sa.Boolean(), nullable=True),
        sa.UniqueConstraint("session_id", "nonce", name="uq_rng_session_nonce"),
        sa.CheckConstraint("nonce >= 0", name="ck_rng_nonce_non_negative"),
    )

    op.create_table(
        "streak_maintenance_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("affected_count", sa.Integer(), nullable=False),
        sa.Column("grace_period_hours", sa.Integer(), nullable=False),
        _ts("run_at", default=True),
    )

    op.create_table(
        "analytics_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("total_wallets", sa.Integer(), nullable=False),
        sa.Column("active_streaks", sa.Integer(), nullable=False),
        sa.Column("average_streak", sa.Float(), nullable=False),
        sa.Column("max_streak", sa.Integer(), nullable=False),
        sa.Column("tier_distribution", postgresql.JSONB(), nullable=False),
        sa.Column("circulating_supply", sa.BigInteger(), nullable=False),
        sa.Column("total_burned", sa.BigInteger(), nullable=False),
        sa.Column("escrow_locked_total", sa.BigInteger(), nullable=False),
        _ts("captured_at", default=True),
    )
    op.create_index("ix_analytics_period_time", "analytics_snapshots", ["period", "captured_at"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _ts("timestamp", default=True),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"])

    op.bulk_insert(wallets, [
        {"owner_id": BURN_SINK_OWNER, "balance": 0},
        {"owner_id": HOUSE_POOL_OWNER, "balance": 0},
    ])
    op.bulk_insert(burn_sink, [{"id": 1, "total_burned": 0}])
    op.bulk_insert(ledger_freeze, [{"id": 1, "is_frozen": False}])


def downgrade() -> None:
    """Drop every ledger table."""
    for index, table in (
        ("ix_admin_log_target", "admin_log"),
        ("ix_admin_log_actor_time", "admin_log"),
        ("ix_analytics_period_time", "analytics_snapshots"),
        ("ix_reconciliation_log_time", "reconciliation_log"),
        ("ix_escrow_owner", "escrow_entries"),
        ("ix_escrow_status_expiry", "escrow_entries"),
        ("ix_burn_audit_category_time", "burn_audit_log"),
        ("ix_journal_reference", "journal_entries"),
        ("ix_journal_source_time", "journal_entries"),
        ("ix_journal_owner_time", "journal_entries"),
    ):
        op.drop_index(index, table_name=table)

    if _is_postgres():
        op.execute("DROP TRIGGER IF EXISTS trg_journal_entries_immutable ON journal_entries")
        op.execute("DROP FUNCTION IF EXISTS journal_entries_immutable()")

    for table in (
        "admin_log",
        "analytics_snapshots",
        "streak_maintenance_log",
        "rng_commits",
        "burn_integrity_log",
        "reconciliation_log",
        "ledger_freeze",
        "escrow_entries",
        "burn_audit_log",
        "burn_sink",
        "journal_entries",
        "wallets",
    ):
        op.drop_table(table)
