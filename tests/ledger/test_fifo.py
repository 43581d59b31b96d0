"""Tests for the FIFO cost-basis ledger."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from solana_tax_tracker.classifier.models import ClassifiedTransaction, TransactionType
from solana_tax_tracker.ledger.fifo import (
    FifoLedger,
    InsufficientLotsError,
    LedgerInputError,
    fifo_ledger,
)
from solana_tax_tracker.ledger.models import HoldingPeriodPolicy, ShortfallPolicy, Term

WALLET = "Vote111111111111111111111111111111111111111"
SOL = 1_000_000_000
T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _event(
    signature: str,
    at: datetime,
    sol: int | str,
    tx_type: TransactionType = TransactionType.TRANSFER,
) -> ClassifiedTransaction:
    return ClassifiedTransaction(
        signature=signature,
        wallet_address=WALLET,
        timestamp=at,
        type=tx_type,
        native_amount_delta=int(Decimal(str(sol)) * SOL),
        fee_amount=0,
        is_internal_transfer=tx_type == TransactionType.INTERNAL_TRANSFER,
    )


def _prices(table: dict[datetime, str]):
    def price_of(timestamp: datetime, asset: str) -> Decimal:
        assert asset == "SOL"
        return Decimal(table[timestamp])

    return price_of


class TestFifoConsumption:
    """Tests for lot creation and FIFO consumption."""

    def test_disposal_spans_two_lots(self) -> None:
        t1 = T0 + timedelta(days=1)
        t2 = T0 + timedelta(days=30)
        t3 = T0 + timedelta(days=367)
        events = [
            _event("lot1", T0, 10),
            _event("lot2", t1, 5),
            _event("sell", t2, -12),
            _event("lot3", t3, 3),
        ]
        prices = _prices({T0: "1", t1: "2", t2: "4", t3: "5"})

        result = FifoLedger().process(events, prices)

        assert len(result.realized_events) == 1
        realized = result.realized_events[0]
        assert realized.disposed_quantity == Decimal(12)
        assert realized.cost_basis_usd == Decimal(14)
        assert realized.proceeds_usd == Decimal(48)
        assert realized.gain_loss_usd == Decimal(34)
        assert realized.term == Term.SHORT
        assert realized.holding_period == timedelta(days=30)
        assert [lot.source_signature for lot in realized.consumed_lots] == ["lot1", "lot2"]
        assert [lot.quantity for lot in realized.consumed_lots] == [Decimal(10), Decimal(2)]
        assert [(lot.source_signature, lot.quantity) for lot in result.open_lots] == [
            ("lot2", Decimal(3)),
            ("lot3", Decimal(3)),
        ]
        assert result.total_gain == Decimal(34)
        assert result.total_loss == Decimal(0)
        assert result.holdings() == {"SOL": Decimal(6)}

    def test_long_term_disposal(self) -> None:
        t1 = T0 + timedelta(days=400)
        result = FifoLedger().process(
            [_event("buy", T0, 2), _event("sell", t1, -2)],
            _prices({T0: "10", t1: "30"}),
        )

        realized = result.realized_events[0]
        assert realized.term == Term.LONG
        assert realized.is_long_term is True
        assert realized.gain_loss_usd == Decimal(40)
        assert realized.holding_period_seconds == 400 * 86400

    def test_loss_is_recorded(self) -> None:
        t1 = T0 + timedelta(days=3)
        result = FifoLedger().process(
            [_event("buy", T0, 4), _event("sell", t1, -1)],
            _prices({T0: "100", t1: "60"}),
        )

        assert result.realized_events[0].gain_loss_usd == Decimal(-40)
        assert result.total_loss == Decimal(40)
        assert result.net_gain_loss == Decimal(-40)

    def test_conservation(self) -> None:
        times = [T0 + timedelta(hours=h) for h in range(6)]
        events = [
            _event("a", times[0], "1.5"),
            _event("b", times[1], "2.25"),
            _event("c", times[2], "-0.75"),
            _event("d", times[3], "3"),
            _event("e", times[4], "-4"),
            _event("f", times[5], "-1"),
        ]
        prices = _prices({t: "1" for t in times})

        result = FifoLedger().process(events, prices)

        acquired = Decimal("6.75")
        disposed = sum((e.disposed_quantity for e in result.realized_events), Decimal(0))
        remaining = sum((lot.quantity for lot in result.open_lots), Decimal(0))
        assert acquired == disposed + remaining
        for realized in result.realized_events:
            consumed = sum((lot.quantity for lot in realized.consumed_lots), Decimal(0))
            assert consumed == realized.disposed_quantity

    def test_zero_delta_events_are_ignored(self) -> None:
        result = FifoLedger().process([_event("noop", T0, 0)], _prices({}))
        assert result.realized_events == []
        assert result.open_lots == []


class TestNonTaxable:
    def test_internal_transfers_and_gas_are_skipped(self) -> None:
        t1 = T0 + timedelta(days=1)
        events = [
            _event("buy", T0, 5),
            _event("move", t1, -2, TransactionType.INTERNAL_TRANSFER),
            _event("fee", t1, "-0.000005", TransactionType.GAS),
        ]

        result = FifoLedger().process(events, _prices({T0: "1"}))

        assert result.realized_events == []
        assert result.holdings() == {"SOL": Decimal(5)}

    def test_flagged_internal_transfer_is_skipped(self) -> None:
        event = ClassifiedTransaction(
            signature="move",
            wallet_address=WALLET,
            timestamp=T0,
            type=TransactionType.TRANSFER,
            native_amount_delta=-SOL,
            fee_amount=0,
            is_internal_transfer=True,
        )

        result = FifoLedger().process([event], _prices({}))

        assert result.realized_events == []


class TestShortfall:
    """Tests for disposals exceeding open lots."""

    def test_zero_gain_policy_costs_shortfall_at_sale_price(self) -> None:
        t1 = T0 + timedelta(days=1)
        result = FifoLedger(shortfall_policy=ShortfallPolicy.ZERO_GAIN).process(
            [_event("buy", T0, 1), _event("sell", t1, -3)],
            _prices({T0: "2", t1: "5"}),
        )

        realized = result.realized_events[0]
        assert realized.disposed_quantity == Decimal(3)
        assert realized.shortfall_quantity == Decimal(2)
        assert realized.cost_basis_usd == Decimal(12)
        assert realized.gain_loss_usd == Decimal(3)
        assert realized.consumed_lots[-1].source_signature is None
        assert result.open_lots == []

    def test_reject_policy_raises(self) -> None:
        with pytest.raises(InsufficientLotsError):
            FifoLedger(shortfall_policy=ShortfallPolicy.REJECT).process(
                [_event("sell", T0, -1)],
                _prices({T0: "5"}),
            )


class TestHoldingPeriodPolicy:
    def test_per_lot_splits_disposal(self) -> None:
        t1 = T0 + timedelta(days=200)
        t2 = T0 + timedelta(days=400)
        result = FifoLedger(holding_period_policy=HoldingPeriodPolicy.PER_LOT).process(
            [_event("old", T0, 1), _event("new", t1, 1), _event("sell", t2, -2)],
            _prices({T0: "1", t1: "2", t2: "3"}),
        )

        assert [e.term for e in result.realized_events] == [Term.LONG, Term.SHORT]
        assert [e.gain_loss_usd for e in result.realized_events] == [Decimal(2), Decimal(1)]
        assert all(e.signature == "sell" for e in result.realized_events)


class TestInputValidation:
    def test_unsorted_input_is_rejected(self) -> None:
        t1 = T0 + timedelta(days=1)
        with pytest.raises(LedgerInputError):
            FifoLedger().process(
                [_event("late", t1, 1), _event("early", T0, 1)],
                _prices({T0: "1", t1: "1"}),
            )

    def test_missing_timestamp_is_rejected(self) -> None:
        event = ClassifiedTransaction(
            signature="x",
            wallet_address=WALLET,
            timestamp=None,
            type=TransactionType.TRANSFER,
            native_amount_delta=SOL,
            fee_amount=0,
        )
        with pytest.raises(LedgerInputError):
            FifoLedger().process([event], _prices({}))

    def test_missing_price_is_rejected(self) -> None:
        with pytest.raises(LedgerInputError):
            FifoLedger().process([_event("buy", T0, 1)], _prices({}))


def test_fifo_ledger_function_is_deterministic() -> None:
    t1 = T0 + timedelta(days=10)
    events = [_event("buy", T0, 3), _event("sell", t1, -1)]
    prices = _prices({T0: "7", t1: "9"})

    first = fifo_ledger(events, prices)
    second = fifo_ledger(events, prices)

    assert first == second
    assert first.realized_events[0].gain_loss_usd == Decimal(2)
