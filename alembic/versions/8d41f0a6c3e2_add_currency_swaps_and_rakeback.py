"""Add currency swap and rakeback ledgers

Revision ID: 8d41f0a6c3e2
Revises: 5c2e8b91d4a7
Create Date: 2026-10-18 14:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8d41f0a6c3e2"
down_revision: str | Sequence[str] | None = "5c2e8b91d4a7"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "currency_swaps",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("from_currency", sa.String(20), nullable=False),
        sa.Column("to_currency", sa.String(20), nullable=False),
        sa.Column("input_amount", sa.BigInteger(), nullable=False),
        sa.Column("rate_applied", sa.Numeric(10, 4), nullable=False),
        sa.Column("fee_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("fee_amount", sa.BigInteger(), nullable=False),
        sa.Column("output_amount", sa.BigInteger(), nullable=False),
        sa.Column("journal_id", sa.BigInteger(), nullable=False),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("input_amount > 0", name="ck_swap_input_positive"),
        sa.CheckConstraint("output_amount > 0", name="ck_swap_output_positive"),
    )
    op.create_index("ix_swap_owner_time", "currency_swaps", ["owner_id", "created_at"])

    op.create_table(
        "rakeback_ledger",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("fee_source", sa.String(50), nullable=False),
        sa.Column("original_fee", sa.BigInteger(), nullable=False),
        sa.Column("streak_days", sa.Integer(), nullable=False),
        sa.Column("rakeback_tier", sa.String(30), nullable=False),
        sa.Column("rakeback_percent", sa.Numeric(5, 2), nullable=False),
        sa.Column("rakeback_amount", sa.BigInteger(), nullable=False),
        sa.Column("journal_id", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("rakeback_amount > 0", name="ck_rakeback_amount_positive"),
    )
    op.create_index("ix_rakeback_owner_time", "rakeback_ledger", ["owner_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_rakeback_owner_time", table_name="rakeback_ledger")
    op.drop_table("rakeback_ledger")
    op.drop_index("ix_swap_owner_time", table_name="currency_swaps")
    op.drop_table("currency_swaps")
