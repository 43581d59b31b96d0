"""FIFO tax-lot accounting over classified transactions.

Acquisitions (positive native deltas) append lots priced at the time of
acquisition; disposals (negative deltas) consume lots oldest-first and
realize ``proceeds - cost_basis``. Internal transfers and gas are not
taxable events and are skipped.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal

from solana_tax_tracker.classifier.models import NATIVE_ASSET, ClassifiedTransaction, TransactionType
from solana_tax_tracker.ledger.models import (
    ConsumedLot,
    HoldingPeriodPolicy,
    LedgerResult,
    Lot,
    RealizedEvent,
    ShortfallPolicy,
    Term,
)

logger = logging.getLogger(__name__)

DEFAULT_LONG_TERM_DAYS = 365

PriceOf = Callable[[datetime, str], Decimal]
AssetOf = Callable[[ClassifiedTransaction], str]

NON_TAXABLE_TYPES = frozenset({TransactionType.GAS, TransactionType.INTERNAL_TRANSFER})


class LedgerInputError(Exception):
    """Raised for unordered, untimestamped or unpriceable input."""


class InsufficientLotsError(LedgerInputError):
    """Raised when a disposal exceeds open lots under the reject policy."""


def native_asset(_event: ClassifiedTransaction) -> str:
    return NATIVE_ASSET


def is_taxable(event: ClassifiedTransaction) -> bool:
    return not event.is_internal_transfer and event.type not in NON_TAXABLE_TYPES


class FifoLedger:
    """Deterministic FIFO cost-basis ledger.

    The ledger never reorders its input; callers sort events ascending by
    ``(timestamp, signature)``.

    Example:
        ```python
        ledger = FifoLedger(shortfall_policy=ShortfallPolicy.REJECT)
        result = ledger.process(events, price_of=lambda ts, asset: prices[(ts, asset)])
        print(result.net_gain_loss)
        ```
    """

    def __init__(
        self,
        *,
        shortfall_policy: ShortfallPolicy = ShortfallPolicy.ZERO_GAIN,
        holding_period_policy: HoldingPeriodPolicy = HoldingPeriodPolicy.EARLIEST_LOT,
        long_term_days: int = DEFAULT_LONG_TERM_DAYS,
    ) -> None:
        self._shortfall_policy = shortfall_policy
        self._holding_period_policy = holding_period_policy
        self._long_term = timedelta(days=long_term_days)

    def process(
        self,
        events: Iterable[ClassifiedTransaction],
        price_of: PriceOf,
        *,
        asset_of: AssetOf = native_asset,
    ) -> LedgerResult:
        """Run the ledger over time-ordered events.

        Args:
            events: Classified transactions in ascending time order.
            price_of: USD unit price of an asset at a timestamp.
            asset_of: Maps an event to the asset whose lots it moves.

        Returns:
            Realized events, remaining open lots and gain/loss totals.

        Raises:
            LedgerInputError: On non-monotonic or missing timestamps, or a
                missing price.
            InsufficientLotsError: On a shortfall under the reject policy.
        """
        holdings: dict[str, deque[Lot]] = {}
        result = LedgerResult()
        previous: datetime | None = None

        for event in events:
            if event.timestamp is None:
                raise LedgerInputError(f"Transaction {event.signature} has no timestamp")
            if previous is not None and event.timestamp < previous:
                raise LedgerInputError(
                    f"Transaction {event.signature} at {event.timestamp.isoformat()} "
                    f"precedes {previous.isoformat()}; input must be sorted ascending"
                )
            previous = event.timestamp

            if not is_taxable(event) or event.native_amount_delta == 0:
                continue

            asset = asset_of(event)
            price = self._price(price_of, event, asset)
            lots = holdings.setdefault(asset, deque())
            quantity = abs(event.native_amount)

            if event.native_amount_delta > 0:
                lots.append(
                    Lot(
                        asset=asset,
                        quantity=quantity,
                        unit_cost_usd=price,
                        acquired_at=event.timestamp,
                        source_signature=event.signature,
                    )
                )
                continue

            for realized in self._dispose(lots, event, asset, quantity, price):
                result.realized_events.append(realized)
                if realized.gain_loss_usd > 0:
                    result.total_gain += realized.gain_loss_usd
                else:
                    result.total_loss += -realized.gain_loss_usd

        for lots in holdings.values():
            result.open_lots.extend(replace(lot) for lot in lots)
        return result

    def _dispose(
        self,
        lots: deque[Lot],
        event: ClassifiedTransaction,
        asset: str,
        quantity: Decimal,
        price: Decimal,
    ) -> list[RealizedEvent]:
        assert event.timestamp is not None
        consumed: list[ConsumedLot] = []
        remaining = quantity

        while remaining > 0 and lots:
            lot = lots[0]
            take = min(lot.quantity, remaining)
            consumed.append(
                ConsumedLot(
                    quantity=take,
                    unit_cost_usd=lot.unit_cost_usd,
                    acquired_at=lot.acquired_at,
                    source_signature=lot.source_signature,
                )
            )
            lot.quantity -= take
            remaining -= take
            if lot.quantity == 0:
                lots.popleft()

        shortfall = remaining
        if shortfall > 0:
            if self._shortfall_policy == ShortfallPolicy.REJECT:
                raise InsufficientLotsError(
                    f"Disposal of {quantity} {asset} in {event.signature} exceeds open lots by {shortfall}"
                )
            logger.warning(
                "Disposal in %s exceeds open %s lots by %s; costing the shortfall at the sale price",
                event.signature,
                asset,
                shortfall,
            )
            consumed.append(
                ConsumedLot(
                    quantity=shortfall,
                    unit_cost_usd=price,
                    acquired_at=event.timestamp,
                    source_signature=None,
                )
            )

        if self._holding_period_policy == HoldingPeriodPolicy.PER_LOT:
            realized = []
            for part in consumed:
                uncovered = part.quantity if part.source_signature is None else Decimal(0)
                realized.append(self._realize(event, asset, (part,), price, uncovered))
            return realized
        return [self._realize(event, asset, tuple(consumed), price, shortfall)]

    def _realize(
        self,
        event: ClassifiedTransaction,
        asset: str,
        consumed: tuple[ConsumedLot, ...],
        price: Decimal,
        shortfall: Decimal,
    ) -> RealizedEvent:
        assert event.timestamp is not None
        quantity = sum((part.quantity for part in consumed), Decimal(0))
        cost_basis = sum((part.cost_basis_usd for part in consumed), Decimal(0))
        proceeds = quantity * price
        holding_period = event.timestamp - min(part.acquired_at for part in consumed)
        return RealizedEvent(
            asset=asset,
            signature=event.signature,
            disposed_at=event.timestamp,
            disposed_quantity=quantity,
            proceeds_usd=proceeds,
            cost_basis_usd=cost_basis,
            gain_loss_usd=proceeds - cost_basis,
            holding_period=holding_period,
            term=Term.LONG if holding_period >= self._long_term else Term.SHORT,
            consumed_lots=consumed,
            shortfall_quantity=shortfall,
        )

    @staticmethod
    def _price(price_of: PriceOf, event: ClassifiedTransaction, asset: str) -> Decimal:
        assert event.timestamp is not None
        try:
            price = price_of(event.timestamp, asset)
        except LookupError as e:
            raise LedgerInputError(f"No {asset} price for {event.signature} at {event.timestamp.isoformat()}") from e
        if price is None:
            raise LedgerInputError(f"No {asset} price for {event.signature} at {event.timestamp.isoformat()}")
        return Decimal(str(price))


def fifo_ledger(
    events: Iterable[ClassifiedTransaction],
    price_of: PriceOf,
    *,
    asset_of: AssetOf = native_asset,
    shortfall_policy: ShortfallPolicy = ShortfallPolicy.ZERO_GAIN,
    holding_period_policy: HoldingPeriodPolicy = HoldingPeriodPolicy.EARLIEST_LOT,
    long_term_days: int = DEFAULT_LONG_TERM_DAYS,
) -> LedgerResult:
    """Functional entry point around :class:`FifoLedger`."""
    ledger = FifoLedger(
        shortfall_policy=shortfall_policy,
        holding_period_policy=holding_period_policy,
        long_term_days=long_term_days,
    )
    return ledger.process(events, price_of, asset_of=asset_of)
