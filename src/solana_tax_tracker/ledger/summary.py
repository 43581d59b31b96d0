"""Report-level tax totals over a ledger run.

Rates are illustrative defaults, not tax advice.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from solana_tax_tracker.classifier.models import ClassifiedTransaction, TransactionType
from solana_tax_tracker.ledger.fifo import PriceOf, is_taxable
from solana_tax_tracker.ledger.models import LedgerResult, Term

DEFAULT_SHORT_TERM_RATE = Decimal("0.30")
DEFAULT_LONG_TERM_RATE = Decimal("0.15")


@dataclass(frozen=True)
class TaxSummary:
    """Aggregate figures for one user's wallet set."""

    total_trades: int
    total_volume_usd: Decimal
    realized_gains_usd: Decimal
    short_term_gain_usd: Decimal
    long_term_gain_usd: Decimal
    estimated_tax_usd: Decimal
    gas_fees_sol: Decimal
    internal_transfers: int

    def to_dict(self) -> dict[str, str | int]:
        return {
            "total_trades": self.total_trades,
            "total_volume_usd": str(self.total_volume_usd),
            "realized_gains_usd": str(self.realized_gains_usd),
            "short_term_gain_usd": str(self.short_term_gain_usd),
            "long_term_gain_usd": str(self.long_term_gain_usd),
            "estimated_tax_usd": str(self.estimated_tax_usd),
            "gas_fees_sol": str(self.gas_fees_sol),
            "internal_transfers": self.internal_transfers,
        }


def summarize(
    transactions: Sequence[ClassifiedTransaction],
    ledger_result: LedgerResult,
    price_of: PriceOf,
    *,
    short_term_rate: Decimal = DEFAULT_SHORT_TERM_RATE,
    long_term_rate: Decimal = DEFAULT_LONG_TERM_RATE,
    asset: str = "SOL",
) -> TaxSummary:
    """Compute report totals.

    Volume counts every taxable, non-zero native movement at its own
    timestamp's price. Fees are counted once per signature, and only
    where an own wallet paid them.
    """
    trades = [tx for tx in transactions if is_taxable(tx) and tx.native_amount_delta != 0]
    volume = Decimal(0)
    for tx in trades:
        if tx.timestamp is not None:
            volume += abs(tx.native_amount) * Decimal(str(price_of(tx.timestamp, asset)))

    fees_by_signature = {tx.signature: tx.fee for tx in transactions if tx.paid_fee}
    internal_transfers = sum(
        1 for tx in transactions if tx.is_internal_transfer or tx.type == TransactionType.INTERNAL_TRANSFER
    )

    short_term = sum(
        (e.gain_loss_usd for e in ledger_result.realized_events if e.term == Term.SHORT),
        Decimal(0),
    )
    long_term = sum(
        (e.gain_loss_usd for e in ledger_result.realized_events if e.term == Term.LONG),
        Decimal(0),
    )
    estimated_tax = max(short_term, Decimal(0)) * short_term_rate + max(long_term, Decimal(0)) * long_term_rate

    return TaxSummary(
        total_trades=len(trades),
        total_volume_usd=volume,
        realized_gains_usd=ledger_result.net_gain_loss,
        short_term_gain_usd=short_term,
        long_term_gain_usd=long_term,
        estimated_tax_usd=estimated_tax,
        gas_fees_sol=sum(fees_by_signature.values(), Decimal(0)),
        internal_transfers=internal_transfers,
    )
