"""Classified wallet transactions.

Revision ID: 001_transactions
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_transactions"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("signature", sa.String(100), nullable=False),
        sa.Column("wallet_address", sa.String(44), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("native_amount_lamports", sa.BigInteger(), nullable=False),
        sa.Column("fee_lamports", sa.BigInteger(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("counterparty_address", sa.String(44), nullable=True),
        sa.Column("is_internal_transfer", sa.Boolean(), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("signature", "wallet_address"),
    )
    op.create_index(
        "idx_transactions_wallet_block_time", "transactions", ["wallet_address", "block_time"]
    )
    op.create_index("idx_transactions_type", "transactions", ["type"])


def downgrade() -> None:
    op.drop_index("idx_transactions_type", table_name="transactions")
    op.drop_index("idx_transactions_wallet_block_time", table_name="transactions")
    op.drop_table("transactions")
