"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from solana_tax_tracker.classifier.models import TransactionType
from solana_tax_tracker.config import Settings
from solana_tax_tracker.ingestor.backoff import NonRetryableApiError, ValidationError
from solana_tax_tracker.ingestor.models import SignatureInfo
from solana_tax_tracker.ledger.models import HoldingPeriodPolicy, ShortfallPolicy
from solana_tax_tracker.pipeline import Pipeline, PipelineState

WALLET_A = "Vote111111111111111111111111111111111111111"
WALLET_B = "Stake11111111111111111111111111111111111111"
EXTERNAL = "SysvarRent111111111111111111111111111111111"
SOL = 1_000_000_000

T0 = 1_700_000_000
T1 = T0 + 86_400
T2 = T0 + 2 * 86_400


class FakeChainClient:
    """In-memory Solana client with per-address histories (newest first)."""

    def __init__(self, histories: dict[str, list[str]], bodies: dict[str, dict[str, Any]]) -> None:
        self.histories = histories
        self.bodies = bodies
        self.listing_calls = 0
        self.fail_for: set[str] = set()
        self.closed = False

    async def get_signatures_for_address(
        self, address: str, *, limit: int, before: str | None = None
    ) -> list[SignatureInfo]:
        self.listing_calls += 1
        if address in self.fail_for:
            raise NonRetryableApiError("account not indexed")
        history = self.histories.get(address, [])
        start = history.index(before) + 1 if before is not None else 0
        return [SignatureInfo(signature=s) for s in history[start : start + limit]]

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        return self.bodies.get(signature)

    async def get_balance(self, address: str) -> int:
        return 0

    async def aclose(self) -> None:
        self.closed = True


class DictPriceResolver:
    def __init__(self, prices: dict[int, str]) -> None:
        self.prices = prices
        self.calls = 0

    async def get_price(self, timestamp: datetime, asset: str) -> Decimal:
        self.calls += 1
        return Decimal(self.prices[int(timestamp.timestamp())])


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    # Create nested mock objects
    redis = MagicMock()
    redis.url = "redis://localhost:6379"

    database = MagicMock()
    database.url = None

    rpc = MagicMock()
    rpc.rpc_url = "https://api.mainnet-beta.solana.com"
    rpc.fallback_rpc_url = None
    rpc.timeout_seconds = 30.0
    rpc.commitment = "confirmed"
    rpc.max_requests_per_second = 1000.0

    ingestion = MagicMock()
    ingestion.page_size = 50
    ingestion.max_signatures = 1000
    ingestion.max_empty_page_run = 3
    ingestion.detail_concurrency = 10
    ingestion.request_delay_seconds = 0.0
    ingestion.page_max_retries = 0
    ingestion.page_initial_delay_seconds = 0.0
    ingestion.detail_max_retries = 0
    ingestion.detail_initial_delay_seconds = 0.0
    ingestion.inter_wallet_delay_seconds = 0.0

    cache = MagicMock()
    cache.key_prefix = "solana_tx_"
    cache.ttl_seconds = 3600
    cache.bypass = False

    classifier = MagicMock()
    classifier.dust_threshold_lamports = 5000

    ledger = MagicMock()
    ledger.shortfall_policy = ShortfallPolicy.ZERO_GAIN
    ledger.holding_period_policy = HoldingPeriodPolicy.EARLIEST_LOT
    ledger.long_term_days = 365
    ledger.short_term_rate = Decimal("0.30")
    ledger.long_term_rate = Decimal("0.15")

    settings = MagicMock(spec=Settings)
    settings.redis = redis
    settings.database = database
    settings.rpc = rpc
    settings.ingestion = ingestion
    settings.cache = cache
    settings.classifier = classifier
    settings.ledger = ledger
    settings.get_logging_level.return_value = logging.INFO
    return settings


@pytest.fixture
def chain(make_raw_tx) -> FakeChainClient:
    """A receives 10 SOL, moves 4 SOL to B, then sends 5 SOL out."""
    bodies = [
        make_raw_tx("s1", keys=[EXTERNAL, WALLET_A], pre=[20 * SOL, 0], post=[10 * SOL, 10 * SOL], fee=0, block_time=T0),
        make_raw_tx("s2", keys=[WALLET_A, WALLET_B], pre=[10 * SOL, 0], post=[6 * SOL, 4 * SOL], fee=0, block_time=T1),
        make_raw_tx(
            "s3", keys=[WALLET_A, EXTERNAL], pre=[6 * SOL, 10 * SOL], post=[1 * SOL, 15 * SOL], fee=0, block_time=T2
        ),
    ]
    return FakeChainClient(
        {WALLET_A: ["s3", "s2", "s1"], WALLET_B: ["s2"]},
        {raw.signature: raw.data for raw in bodies},
    )


@pytest.fixture
def rpc_factory(chain: FakeChainClient):
    factory = MagicMock()
    factory.create_primary.return_value = chain
    factory.create_fallback.return_value = None
    return factory


@pytest.fixture
def resolver() -> DictPriceResolver:
    return DictPriceResolver({T0: "1", T1: "2", T2: "3"})


@pytest.fixture
def pipeline(mock_settings, fake_redis, rpc_factory, resolver) -> Pipeline:
    return Pipeline(mock_settings, price_resolver=resolver, redis=fake_redis, rpc_factory=rpc_factory)


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, pipeline: Pipeline) -> None:
        """Pipeline should start in stopped state."""
        assert pipeline.state == PipelineState.STOPPED
        assert pipeline.is_running is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, pipeline: Pipeline, chain: FakeChainClient, fake_redis) -> None:
        fake_redis.aclose = AsyncMock()

        await pipeline.start()
        assert pipeline.is_running
        assert pipeline.stats.started_at is not None
        assert pipeline.cache is not None

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED
        assert chain.closed is True
        fake_redis.aclose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, pipeline: Pipeline) -> None:
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError):
                await pipeline.start()
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_failed_start_sets_error_state(self, pipeline: Pipeline, rpc_factory) -> None:
        rpc_factory.create_primary.side_effect = RuntimeError("bad rpc url")

        with pytest.raises(RuntimeError, match="bad rpc url"):
            await pipeline.start()

        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.last_error == "bad rpc url"

    @pytest.mark.asyncio
    async def test_run_requires_running_pipeline(self, pipeline: Pipeline) -> None:
        with pytest.raises(RuntimeError):
            await pipeline.run([WALLET_A])


class TestPipelineRun:
    """End-to-end runs over the in-memory chain."""

    @pytest.mark.asyncio
    async def test_report_for_wallet_set(self, pipeline: Pipeline) -> None:
        async with pipeline:
            report = await pipeline.run([WALLET_A, WALLET_B, WALLET_A])

        assert report.wallets == [WALLET_A, WALLET_B]
        assert report.complete is True
        assert [(tx.signature, tx.wallet_address) for tx in report.transactions] == [
            ("s1", WALLET_A),
            ("s2", WALLET_A),
            ("s2", WALLET_B),
            ("s3", WALLET_A),
        ]
        internal = [tx for tx in report.transactions if tx.signature == "s2"]
        assert all(tx.type == TransactionType.INTERNAL_TRANSFER for tx in internal)

        assert len(report.ledger.realized_events) == 1
        assert report.ledger.realized_events[0].gain_loss_usd == Decimal(10)
        assert report.ledger.holdings() == {"SOL": Decimal(5)}

        assert report.summary.total_trades == 2
        assert report.summary.total_volume_usd == Decimal(25)
        assert report.summary.internal_transfers == 2
        assert report.summary.estimated_tax_usd == Decimal("3.00")

        assert pipeline.stats.runs == 1
        assert pipeline.stats.wallets_processed == 2
        assert pipeline.stats.transactions_ingested == 4

    @pytest.mark.asyncio
    async def test_second_run_is_served_from_cache(self, pipeline: Pipeline, chain: FakeChainClient) -> None:
        async with pipeline:
            first = await pipeline.run([WALLET_A, WALLET_B])
            listings = chain.listing_calls
            second = await pipeline.run([WALLET_A, WALLET_B])

        assert chain.listing_calls == listings
        assert second.transactions == first.transactions
        assert second.summary == first.summary

    @pytest.mark.asyncio
    async def test_growing_wallet_set_reuses_cache_with_new_internal_tags(self, pipeline: Pipeline) -> None:
        async with pipeline:
            alone = await pipeline.run([WALLET_A])
            together = await pipeline.run([WALLET_A, WALLET_B])

        assert len(alone.ledger.realized_events) == 2
        assert together.summary.internal_transfers == 2
        assert len(together.ledger.realized_events) == 1
        assert together.ledger.realized_events[0].gain_loss_usd == Decimal(10)

    @pytest.mark.asyncio
    async def test_failed_wallet_is_reported(self, pipeline: Pipeline, chain: FakeChainClient) -> None:
        chain.fail_for.add(WALLET_B)

        async with pipeline:
            report = await pipeline.run([WALLET_A, WALLET_B])

        assert report.complete is False
        assert [f.wallet_address for f in report.wallet_failures] == [WALLET_B]
        assert {tx.wallet_address for tx in report.transactions} == {WALLET_A}
        assert report.ledger.realized_events[0].gain_loss_usd == Decimal(10)
        assert pipeline.stats.wallets_failed == 1

    @pytest.mark.asyncio
    async def test_invalid_wallet_is_rejected(self, pipeline: Pipeline, chain: FakeChainClient) -> None:
        async with pipeline:
            with pytest.raises(ValidationError):
                await pipeline.run([WALLET_A, "not-a-wallet"])

        assert chain.listing_calls == 0
