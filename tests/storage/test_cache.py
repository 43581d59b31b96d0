"""Tests for the Redis-backed transaction cache."""

from __future__ import annotations

import json

import pytest

from solana_tax_tracker.storage.cache import TransactionCache

WALLET = "Vote111111111111111111111111111111111111111"
OTHER = "Stake11111111111111111111111111111111111111"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(fake_redis, clock: FakeClock) -> TransactionCache:
    return TransactionCache(fake_redis, ttl_seconds=3600, clock=clock)


class TestKeys:
    def test_key_layout(self, cache: TransactionCache) -> None:
        assert cache.wallet_key(WALLET) == f"solana_tx_{WALLET}"
        assert cache.transactions_key(WALLET) == f"solana_tx_transactions_{WALLET}"
        assert cache.transaction_key("sig1") == "solana_tx_tx_sig1"


class TestGetSet:
    """Tests for TTL semantics."""

    @pytest.mark.asyncio
    async def test_roundtrip(self, cache: TransactionCache, fake_redis) -> None:
        assert await cache.set(cache.wallet_key(WALLET), {"balance_lamports": 42}) is True

        assert await cache.get(cache.wallet_key(WALLET)) == {"balance_lamports": 42}
        assert fake_redis.set_calls == [(cache.wallet_key(WALLET), 3600)]

    @pytest.mark.asyncio
    async def test_entry_format(self, cache: TransactionCache, fake_redis, clock: FakeClock) -> None:
        await cache.set("solana_tx_k", [1, 2])

        stored = json.loads(fake_redis.store["solana_tx_k"])
        assert stored == {"data": [1, 2], "timestamp": clock.now}

    @pytest.mark.asyncio
    async def test_fresh_entry_is_served(self, cache: TransactionCache, clock: FakeClock) -> None:
        await cache.set("solana_tx_k", "value")
        clock.now += 3599
        assert await cache.get("solana_tx_k") == "value"

    @pytest.mark.asyncio
    async def test_expired_entry_is_evicted(self, cache: TransactionCache, fake_redis, clock: FakeClock) -> None:
        await cache.set("solana_tx_k", "value")
        clock.now += 3601

        assert await cache.get("solana_tx_k") is None
        assert "solana_tx_k" not in fake_redis.store

    @pytest.mark.asyncio
    async def test_malformed_entry_is_evicted(self, cache: TransactionCache, fake_redis) -> None:
        fake_redis.store["solana_tx_k"] = b"not json"

        assert await cache.get("solana_tx_k") is None
        assert "solana_tx_k" not in fake_redis.store

    @pytest.mark.asyncio
    async def test_bypass_reads_miss(self, fake_redis, clock: FakeClock) -> None:
        cache = TransactionCache(fake_redis, bypass=True, clock=clock)
        await cache.set("solana_tx_k", "value")

        assert await cache.get("solana_tx_k") is None
        assert "solana_tx_k" in fake_redis.store

    @pytest.mark.asyncio
    async def test_redis_failure_is_a_miss(self, cache: TransactionCache, fake_redis) -> None:
        fake_redis.fail = True

        assert await cache.get("solana_tx_k") is None
        assert await cache.set("solana_tx_k", "value") is False

    @pytest.mark.asyncio
    async def test_without_redis(self) -> None:
        cache = TransactionCache(None)
        assert await cache.set("k", 1) is False
        assert await cache.get("k") is None
        assert await cache.clear_all() == 0


class TestClear:
    @pytest.mark.asyncio
    async def test_clear_wallet(self, cache: TransactionCache, fake_redis) -> None:
        await cache.set(cache.wallet_key(WALLET), {"balance_lamports": 1})
        await cache.set(cache.transactions_key(WALLET), [])
        await cache.set(cache.wallet_key(OTHER), {"balance_lamports": 2})

        await cache.clear_wallet(WALLET)

        assert set(fake_redis.store) == {cache.wallet_key(OTHER)}

    @pytest.mark.asyncio
    async def test_clear_all_only_touches_prefix(self, cache: TransactionCache, fake_redis) -> None:
        await cache.set(cache.wallet_key(WALLET), 1)
        await cache.set(cache.transaction_key("sig1"), {})
        fake_redis.store["unrelated"] = b"keep"

        assert await cache.clear_all() == 2
        assert set(fake_redis.store) == {"unrelated"}
