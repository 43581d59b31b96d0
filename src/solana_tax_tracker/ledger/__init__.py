"""Cost-basis ledger - FIFO tax lots and realized gains."""

from solana_tax_tracker.ledger.fifo import (
    FifoLedger,
    InsufficientLotsError,
    LedgerInputError,
    fifo_ledger,
)
from solana_tax_tracker.ledger.models import (
    ConsumedLot,
    HoldingPeriodPolicy,
    LedgerResult,
    Lot,
    RealizedEvent,
    ShortfallPolicy,
    Term,
)
from solana_tax_tracker.ledger.summary import TaxSummary, summarize

__all__ = [
    "ConsumedLot",
    "FifoLedger",
    "HoldingPeriodPolicy",
    "InsufficientLotsError",
    "LedgerInputError",
    "LedgerResult",
    "Lot",
    "RealizedEvent",
    "ShortfallPolicy",
    "TaxSummary",
    "Term",
    "fifo_ledger",
    "summarize",
]
