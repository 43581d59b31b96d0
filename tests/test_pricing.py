"""Tests for historical price resolution."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from solana_tax_tracker.classifier.models import ClassifiedTransaction, TransactionType
from solana_tax_tracker.pricing import PriceTable

WALLET = "Vote111111111111111111111111111111111111111"
T0 = datetime(2024, 5, 1, tzinfo=UTC)


class RecordingResolver:
    def __init__(self, price: float | Decimal = 150.25) -> None:
        self.price = price
        self.calls: list[tuple[datetime, str]] = []

    async def get_price(self, timestamp: datetime, asset: str) -> float | Decimal:
        self.calls.append((timestamp, asset))
        return self.price


def _tx(signature: str, at: datetime | None, lamports: int, tx_type=TransactionType.TRANSFER) -> ClassifiedTransaction:
    return ClassifiedTransaction(
        signature=signature,
        wallet_address=WALLET,
        timestamp=at,
        type=tx_type,
        native_amount_delta=lamports,
        fee_amount=0,
    )


class TestPriceTable:
    @pytest.mark.asyncio
    async def test_one_lookup_per_taxable_timestamp(self) -> None:
        t1 = T0 + timedelta(minutes=5)
        resolver = RecordingResolver()
        transactions = [
            _tx("a", T0, 10),
            _tx("b", T0, -3),
            _tx("c", t1, -2),
            _tx("move", t1 + timedelta(minutes=1), -1, TransactionType.INTERNAL_TRANSFER),
            _tx("fee", t1 + timedelta(minutes=2), -5000, TransactionType.GAS),
            _tx("noop", t1 + timedelta(minutes=3), 0),
            _tx("undated", None, 7),
        ]

        table = await PriceTable.resolve(resolver, transactions)

        assert resolver.calls == [(T0, "SOL"), (t1, "SOL")]
        assert len(table) == 2
        assert (T0, "SOL") in table

    @pytest.mark.asyncio
    async def test_prices_are_decimal(self) -> None:
        table = await PriceTable.resolve(RecordingResolver(150.25), [_tx("a", T0, 1)])

        price = table(T0, "SOL")
        assert isinstance(price, Decimal)
        assert price == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_custom_asset_mapping(self) -> None:
        resolver = RecordingResolver(1)
        await PriceTable.resolve(resolver, [_tx("a", T0, 1)], asset_of=lambda tx: "USDC")

        assert resolver.calls == [(T0, "USDC")]

    def test_missing_price_raises_key_error(self) -> None:
        table = PriceTable({(T0, "SOL"): Decimal(1)})
        with pytest.raises(KeyError):
            table(T0 + timedelta(seconds=1), "SOL")

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        resolver = RecordingResolver()
        table = await PriceTable.resolve(resolver, [])

        assert len(table) == 0
        assert resolver.calls == []
