"""Data ingestion layer - Paginated, rate-limited Solana RPC fetching."""

from solana_tax_tracker.ingestor.backoff import (
    BackoffExecutor,
    IngestionError,
    NonRetryableApiError,
    RateLimiter,
    RateLimitError,
    RateLimitStatus,
    TransientNetworkError,
    ValidationError,
)
from solana_tax_tracker.ingestor.fetcher import TransactionDetailFetcher
from solana_tax_tracker.ingestor.models import (
    BatchProgress,
    FetchBatchResult,
    FetchFailure,
    RawTransaction,
    SignatureInfo,
    SignaturePage,
    WalletCursor,
    validate_wallet_address,
)
from solana_tax_tracker.ingestor.paginator import SignaturePaginator
from solana_tax_tracker.ingestor.rpc_client import RpcConnectionFactory, RpcError, SolanaRpcClient

__all__ = [
    "BackoffExecutor",
    "BatchProgress",
    "FetchBatchResult",
    "FetchFailure",
    "IngestionError",
    "NonRetryableApiError",
    "RateLimitError",
    "RateLimitStatus",
    "RateLimiter",
    "RawTransaction",
    "RpcConnectionFactory",
    "RpcError",
    "SignatureInfo",
    "SignaturePage",
    "SignaturePaginator",
    "SolanaRpcClient",
    "TransactionDetailFetcher",
    "TransientNetworkError",
    "ValidationError",
    "WalletCursor",
    "validate_wallet_address",
]
