"""Repository pattern implementations for data access.

This module provides the idempotent transaction store used as the
ingestion sink, keyed on ``(signature, wallet_address)``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from solana_tax_tracker.storage.models import TransactionModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from solana_tax_tracker.classifier.models import ClassifiedTransaction
    from solana_tax_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = (
    "block_time",
    "type",
    "native_amount_lamports",
    "fee_lamports",
    "success",
    "counterparty_address",
    "is_internal_transfer",
    "details",
    "updated_at",
)


@dataclass
class TransactionDTO:
    """Data transfer object for classified transactions."""

    signature: str
    wallet_address: str
    block_time: datetime | None
    type: str
    native_amount_lamports: int
    fee_lamports: int
    success: bool
    counterparty_address: str | None = None
    is_internal_transfer: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TransactionModel) -> TransactionDTO:
        return cls(
            signature=model.signature,
            wallet_address=model.wallet_address,
            block_time=model.block_time,
            type=model.type,
            native_amount_lamports=model.native_amount_lamports,
            fee_lamports=model.fee_lamports,
            success=model.success,
            counterparty_address=model.counterparty_address,
            is_internal_transfer=model.is_internal_transfer,
            details=json.loads(model.details) if model.details else {},
            created_at=model.created_at,
        )

    @classmethod
    def from_classified(cls, tx: ClassifiedTransaction) -> TransactionDTO:
        data = tx.to_dict()
        details = {
            key: data[key]
            for key in ("swap_side", "asset_info", "derivative", "program_ids", "fee_payer")
            if data.get(key)
        }
        return cls(
            signature=tx.signature,
            wallet_address=tx.wallet_address,
            block_time=tx.timestamp,
            type=tx.type.value,
            native_amount_lamports=tx.native_amount_delta,
            fee_lamports=tx.fee_amount,
            success=tx.success,
            counterparty_address=tx.counterparty_address,
            is_internal_transfer=tx.is_internal_transfer,
            details=details,
        )

    def to_classified(self) -> ClassifiedTransaction:
        from solana_tax_tracker.classifier.models import ClassifiedTransaction

        block_time = self.block_time
        if block_time is not None and block_time.tzinfo is None:
            block_time = block_time.replace(tzinfo=UTC)
        return ClassifiedTransaction.from_dict(
            {
                "signature": self.signature,
                "wallet_address": self.wallet_address,
                "timestamp": block_time.isoformat() if block_time else None,
                "type": self.type,
                "native_amount_delta": self.native_amount_lamports,
                "fee_amount": self.fee_lamports,
                "success": self.success,
                "counterparty_address": self.counterparty_address,
                "is_internal_transfer": self.is_internal_transfer,
                **self.details,
            }
        )


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a sink write."""

    success: bool
    count: int = 0
    error: str | None = None


class TransactionSink(Protocol):
    """Idempotent destination for classified transaction batches."""

    async def upsert(self, transactions: Sequence[ClassifiedTransaction]) -> UpsertResult: ...


class TransactionRepository:
    """Repository for persisted classified transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, signature: str, wallet_address: str) -> TransactionDTO | None:
        result = await self.session.execute(
            select(TransactionModel).where(
                TransactionModel.signature == signature,
                TransactionModel.wallet_address == wallet_address,
            )
        )
        model = result.scalar_one_or_none()
        return TransactionDTO.from_model(model) if model else None

    async def list_for_wallet(self, wallet_address: str) -> list[TransactionDTO]:
        """All stored transactions of a wallet, oldest first."""
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.wallet_address == wallet_address)
            .order_by(TransactionModel.block_time.asc(), TransactionModel.signature.asc())
        )
        return [TransactionDTO.from_model(m) for m in result.scalars().all()]

    async def count_for_wallet(self, wallet_address: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TransactionModel).where(TransactionModel.wallet_address == wallet_address)
        )
        return int(result.scalar_one())

    async def upsert(self, dto: TransactionDTO) -> TransactionDTO:
        """Upsert by (signature, wallet_address) for idempotent ingestion."""
        await self.upsert_many([dto])
        return dto

    async def upsert_many(self, dtos: Sequence[TransactionDTO]) -> int:
        if not dtos:
            return 0
        now = datetime.now(UTC)
        rows = [
            {
                "signature": dto.signature,
                "wallet_address": dto.wallet_address,
                "block_time": dto.block_time,
                "type": dto.type,
                "native_amount_lamports": dto.native_amount_lamports,
                "fee_lamports": dto.fee_lamports,
                "success": dto.success,
                "counterparty_address": dto.counterparty_address,
                "is_internal_transfer": dto.is_internal_transfer,
                "details": json.dumps(dto.details, sort_keys=True) if dto.details else None,
                "created_at": now,
                "updated_at": now,
            }
            for dto in dtos
        ]

        dialect = self.session.get_bind().dialect.name
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert(TransactionModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["signature", "wallet_address"],
            set_={column: getattr(stmt.excluded, column) for column in _UPDATABLE_COLUMNS},
        )
        await self.session.execute(stmt)
        return len(rows)


class DatabaseTransactionSink:
    """Persists batches through the repository, one session per batch.

    Write failures are reported in the result rather than raised, so a
    failed batch never aborts ingestion of the rest of the wallet.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def upsert(self, transactions: Sequence[ClassifiedTransaction]) -> UpsertResult:
        dtos = [TransactionDTO.from_classified(tx) for tx in transactions]
        try:
            async with self._db.get_async_session() as session:
                count = await TransactionRepository(session).upsert_many(dtos)
        except Exception as e:
            logger.error("Failed to persist %d transactions: %s", len(dtos), e)
            return UpsertResult(success=False, error=str(e))
        return UpsertResult(success=True, count=count)

    async def load_wallet(self, wallet_address: str) -> list[ClassifiedTransaction]:
        """Stored history of a wallet, oldest first."""
        async with self._db.get_async_session() as session:
            dtos = await TransactionRepository(session).list_for_wallet(wallet_address)
        return [dto.to_classified() for dto in dtos]
