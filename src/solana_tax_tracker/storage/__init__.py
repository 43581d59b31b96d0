"""Storage layer - Database schemas, repositories and the transaction cache."""

from solana_tax_tracker.storage.cache import TransactionCache
from solana_tax_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from solana_tax_tracker.storage.models import Base, TransactionModel
from solana_tax_tracker.storage.repos import (
    DatabaseTransactionSink,
    TransactionDTO,
    TransactionRepository,
    TransactionSink,
    UpsertResult,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "DatabaseTransactionSink",
    "TransactionCache",
    "TransactionDTO",
    "TransactionModel",
    "TransactionRepository",
    "TransactionSink",
    "UpsertResult",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
