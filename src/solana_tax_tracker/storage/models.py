"""SQLAlchemy models for persistent storage.

This module defines the database schema for classified wallet
transactions. Ledger output is derived from this history and not stored.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TransactionModel(Base):
    """A transaction as classified from one own wallet's view.

    The same signature may appear once per own wallet it touches.
    """

    __tablename__ = "transactions"

    signature: Mapped[str] = mapped_column(String(100), primary_key=True, nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(44), primary_key=True, nullable=False)

    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    native_amount_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fee_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    counterparty_address: Mapped[str | None] = mapped_column(String(44), nullable=True)
    is_internal_transfer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # JSON-encoded swap/derivative details
    details: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_transactions_wallet_block_time", "wallet_address", "block_time"),
        Index("idx_transactions_type", "type"),
    )
