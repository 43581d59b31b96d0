"""Historical price lookup interface.

The ledger is synchronous and pure, so prices for every taxable event are
resolved up front through an external :class:`PriceResolver` and handed to
the ledger as a plain lookup.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from solana_tax_tracker.classifier.models import ClassifiedTransaction
from solana_tax_tracker.ledger.fifo import AssetOf, is_taxable, native_asset

logger = logging.getLogger(__name__)

DEFAULT_PRICE_CONCURRENCY = 5


class PriceResolver(Protocol):
    """USD unit price of an asset at a point in time."""

    async def get_price(self, timestamp: datetime, asset: str) -> Decimal: ...


class PriceTable:
    """Resolved prices keyed by ``(timestamp, asset)``; callable as a ledger ``price_of``."""

    def __init__(self, prices: dict[tuple[datetime, str], Decimal] | None = None) -> None:
        self._prices = dict(prices or {})

    def __call__(self, timestamp: datetime, asset: str) -> Decimal:
        return self._prices[(timestamp, asset)]

    def __len__(self) -> int:
        return len(self._prices)

    def __contains__(self, key: object) -> bool:
        return key in self._prices

    @classmethod
    async def resolve(
        cls,
        resolver: PriceResolver,
        transactions: Iterable[ClassifiedTransaction],
        *,
        asset_of: AssetOf = native_asset,
        max_concurrency: int = DEFAULT_PRICE_CONCURRENCY,
    ) -> PriceTable:
        """Fetch one price per distinct (timestamp, asset) of the taxable events."""
        keys: dict[tuple[datetime, str], None] = {}
        for tx in transactions:
            if tx.timestamp is None or not is_taxable(tx) or tx.native_amount_delta == 0:
                continue
            keys.setdefault((tx.timestamp, asset_of(tx)), None)

        semaphore = asyncio.Semaphore(max_concurrency)

        async def fetch(key: tuple[datetime, str]) -> Decimal:
            async with semaphore:
                price = await resolver.get_price(*key)
                return Decimal(str(price))

        prices = await asyncio.gather(*(fetch(key) for key in keys))
        logger.debug("Resolved %d historical prices", len(prices))
        return cls(dict(zip(keys, prices, strict=True)))
