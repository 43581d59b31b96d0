"""Redis-backed TTL cache for wallet transaction data.

Entries are stored as JSON ``{"data": ..., "timestamp": epoch_seconds}``
and evicted on read once older than the TTL. Keys are scoped per wallet
(``{prefix}{wallet}``), per wallet history
(``{prefix}transactions_{wallet}``) and per transaction body
(``{prefix}tx_{signature}``).
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "solana_tx_"
DEFAULT_TTL_SECONDS = 24 * 3600


class TransactionCache:
    """Per-wallet cache of balances, classified histories and raw bodies.

    Redis failures are logged and treated as misses so that caching never
    breaks ingestion.
    """

    def __init__(
        self,
        redis: Redis | None,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        bypass: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._ttl = ttl_seconds
        self._bypass = bypass
        self._clock = clock

    @property
    def key_prefix(self) -> str:
        return self._prefix

    def wallet_key(self, wallet_address: str) -> str:
        return f"{self._prefix}{wallet_address}"

    def transactions_key(self, wallet_address: str) -> str:
        return f"{self._prefix}transactions_{wallet_address}"

    def transaction_key(self, signature: str) -> str:
        return f"{self._prefix}tx_{signature}"

    async def get(self, key: str) -> Any | None:
        """Return the cached data for a key, or None on miss or expiry."""
        if self._redis is None or self._bypass:
            return None
        try:
            raw = await self._redis.get(key)
        except Exception as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if raw is None:
            return None

        try:
            if isinstance(raw, bytes):
                raw = raw.decode()
            entry = json.loads(raw)
            data = entry["data"]
            stored_at = float(entry["timestamp"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding malformed cache entry %s: %s", key, e)
            await self.delete(key)
            return None

        if self._clock() - stored_at > self._ttl:
            logger.debug("Cache entry %s expired", key)
            await self.delete(key)
            return None
        return data

    async def set(self, key: str, data: Any) -> bool:
        """Store data under a key. Returns False if the write failed."""
        if self._redis is None:
            return False
        payload = json.dumps({"data": data, "timestamp": self._clock()})
        try:
            await self._redis.set(key, payload, ex=self._ttl)
        except Exception as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return False
        return True

    async def delete(self, key: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    async def clear_wallet(self, wallet_address: str) -> None:
        """Drop the balance and history entries of one wallet."""
        await self.delete(self.wallet_key(wallet_address))
        await self.delete(self.transactions_key(wallet_address))

    async def clear_all(self) -> int:
        """Drop every entry under this cache's prefix.

        Returns:
            Number of keys removed.
        """
        if self._redis is None:
            return 0
        removed = 0
        try:
            async for key in self._redis.scan_iter(match=f"{self._prefix}*"):
                await self._redis.delete(key)
                removed += 1
        except Exception as e:
            logger.warning("Cache clear failed for prefix %s: %s", self._prefix, e)
        logger.info("Cleared %d cached entries under %s", removed, self._prefix)
        return removed
