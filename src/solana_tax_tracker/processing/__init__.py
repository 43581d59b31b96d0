"""Wallet processing - one-at-a-time queue over a user's wallets."""

from solana_tax_tracker.processing.wallet_queue import (
    WalletFailure,
    WalletProcessingQueue,
    WalletProcessingState,
    WalletQueueError,
    WalletState,
)

__all__ = [
    "WalletFailure",
    "WalletProcessingQueue",
    "WalletProcessingState",
    "WalletQueueError",
    "WalletState",
]
