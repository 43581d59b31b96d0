"""Pytest configuration and fixtures."""

from __future__ import annotations

import fnmatch
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from solana_tax_tracker.ingestor.models import RawTransaction

DEFAULT_BLOCK_TIME = 1_700_000_000


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the cache uses."""

    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}
        self.fail = False
        self.set_calls: list[tuple[str, int | None]] = []

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def get(self, key: str) -> bytes | None:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str | bytes, ex: int | None = None) -> bool:
        self._check()
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.set_calls.append((key, ex))
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str | None = None) -> AsyncIterator[str]:
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Create an in-memory Redis double."""
    return FakeRedis()


@pytest.fixture
def make_raw_tx() -> Callable[..., RawTransaction]:
    """Factory for provider-shaped ``getTransaction`` bodies."""

    def _make(
        signature: str,
        *,
        keys: list[str],
        pre: list[int],
        post: list[int],
        fee: int = 5000,
        block_time: int | None = DEFAULT_BLOCK_TIME,
        logs: list[str] | None = None,
        program_indexes: list[int] | None = None,
        token_mints: list[str] | None = None,
        err: Any = None,
    ) -> RawTransaction:
        meta: dict[str, Any] = {
            "err": err,
            "fee": fee,
            "preBalances": pre,
            "postBalances": post,
            "logMessages": logs or [],
            "preTokenBalances": [{"mint": mint} for mint in token_mints or []],
            "postTokenBalances": [],
        }
        data: dict[str, Any] = {
            "slot": 250_000_000,
            "blockTime": block_time,
            "meta": meta,
            "transaction": {
                "signatures": [signature],
                "message": {
                    "accountKeys": keys,
                    "instructions": [{"programIdIndex": i} for i in program_indexes or []],
                },
            },
        }
        return RawTransaction(signature=signature, data=data)

    return _make
