"""Transaction classification - transfers, swaps, gas and derivative events."""

from solana_tax_tracker.classifier.classifier import TransactionClassifier, classify
from solana_tax_tracker.classifier.models import (
    AssetInfo,
    ClassifiedTransaction,
    DerivativeEvent,
    DerivativeEventType,
    SwapSide,
    TransactionType,
)

__all__ = [
    "AssetInfo",
    "ClassifiedTransaction",
    "DerivativeEvent",
    "DerivativeEventType",
    "SwapSide",
    "TransactionClassifier",
    "TransactionType",
    "classify",
]
