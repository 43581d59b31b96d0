"""Data models for cost-basis accounting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum


class ShortfallPolicy(str, Enum):
    """What to do when a disposal exceeds the open lots."""

    ZERO_GAIN = "zero_gain"
    REJECT = "reject"


class HoldingPeriodPolicy(str, Enum):
    """How holding periods are assigned to a disposal spanning several lots."""

    EARLIEST_LOT = "earliest_lot"
    PER_LOT = "per_lot"


class Term(str, Enum):
    SHORT = "short"
    LONG = "long"


@dataclass
class Lot:
    """An open acquisition, consumed from the front of its asset's queue."""

    asset: str
    quantity: Decimal
    unit_cost_usd: Decimal
    acquired_at: datetime
    source_signature: str

    @property
    def cost_basis_usd(self) -> Decimal:
        return self.quantity * self.unit_cost_usd


@dataclass(frozen=True)
class ConsumedLot:
    """The part of a lot consumed by one disposal.

    ``source_signature`` is None for quantity that no open lot covered.
    """

    quantity: Decimal
    unit_cost_usd: Decimal
    acquired_at: datetime
    source_signature: str | None

    @property
    def cost_basis_usd(self) -> Decimal:
        return self.quantity * self.unit_cost_usd


@dataclass(frozen=True)
class RealizedEvent:
    """A realized gain or loss. Events are only ever appended."""

    asset: str
    signature: str
    disposed_at: datetime
    disposed_quantity: Decimal
    proceeds_usd: Decimal
    cost_basis_usd: Decimal
    gain_loss_usd: Decimal
    holding_period: timedelta
    term: Term
    consumed_lots: tuple[ConsumedLot, ...] = ()
    shortfall_quantity: Decimal = Decimal(0)

    @property
    def holding_period_seconds(self) -> int:
        return int(self.holding_period.total_seconds())

    @property
    def is_long_term(self) -> bool:
        return self.term == Term.LONG


@dataclass
class LedgerResult:
    """Output of a ledger run."""

    realized_events: list[RealizedEvent] = field(default_factory=list)
    open_lots: list[Lot] = field(default_factory=list)
    total_gain: Decimal = Decimal(0)
    total_loss: Decimal = Decimal(0)

    @property
    def net_gain_loss(self) -> Decimal:
        return self.total_gain - self.total_loss

    def holdings(self) -> dict[str, Decimal]:
        """Remaining quantity per asset."""
        totals: dict[str, Decimal] = {}
        for lot in self.open_lots:
            totals[lot.asset] = totals.get(lot.asset, Decimal(0)) + lot.quantity
        return totals
