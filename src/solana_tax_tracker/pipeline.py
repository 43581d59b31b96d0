"""Main pipeline orchestrator for Solana Tax Tracker.

This module provides the Pipeline class that wires together ingestion,
classification, persistence and the cost-basis ledger, and turns a user's
wallet set into a tax report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from solana_tax_tracker.classifier.classifier import TransactionClassifier
from solana_tax_tracker.classifier.models import ClassifiedTransaction
from solana_tax_tracker.config import Settings, get_settings
from solana_tax_tracker.ingestor.backoff import BackoffExecutor, RateLimiter, RateLimitStatus
from solana_tax_tracker.ingestor.fetcher import TransactionDetailFetcher
from solana_tax_tracker.ingestor.models import FetchFailure, validate_wallet_address
from solana_tax_tracker.ingestor.paginator import SignaturePaginator
from solana_tax_tracker.ingestor.rpc_client import RpcConnectionFactory, SolanaRpcClient
from solana_tax_tracker.ingestor.wallet_ingestor import ProgressCallback, WalletIngestion, WalletIngestor
from solana_tax_tracker.ledger.fifo import FifoLedger
from solana_tax_tracker.ledger.models import LedgerResult
from solana_tax_tracker.ledger.summary import TaxSummary, summarize
from solana_tax_tracker.pricing import PriceResolver, PriceTable
from solana_tax_tracker.processing.wallet_queue import WalletFailure, WalletProcessingQueue
from solana_tax_tracker.storage.cache import TransactionCache
from solana_tax_tracker.storage.database import DatabaseManager
from solana_tax_tracker.storage.repos import DatabaseTransactionSink

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from typing import Any

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "solana_tax_tracker"


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    runs: int = 0
    wallets_processed: int = 0
    wallets_failed: int = 0
    transactions_ingested: int = 0
    fetch_failures: int = 0
    rate_limit_events: int = 0
    last_error: str | None = None


@dataclass
class TaxReport:
    """Everything produced by one run over a wallet set."""

    wallets: list[str]
    transactions: list[ClassifiedTransaction]
    ledger: LedgerResult
    summary: TaxSummary
    fetch_failures: dict[str, list[FetchFailure]] = field(default_factory=dict)
    wallet_failures: list[WalletFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """True when every wallet and every transaction body was fetched."""
        return not self.wallet_failures and not any(self.fetch_failures.values())


class Pipeline:
    """Main pipeline orchestrator for the Solana Tax Tracker.

    Pipeline flow:
        Wallet Queue → Signature Paginator → Detail Fetcher → Classifier
        → Cache / Database → Price Resolver → FIFO Ledger → Tax Summary

    Example:
        ```python
        from solana_tax_tracker.config import get_settings
        from solana_tax_tracker.pipeline import Pipeline

        async with Pipeline(get_settings(), price_resolver=resolver) as pipeline:
            report = await pipeline.run([wallet_a, wallet_b])
            print(report.summary.to_dict())
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        price_resolver: PriceResolver,
        redis: Redis | None = None,
        rpc_factory: RpcConnectionFactory | None = None,
        create_schema: bool = False,
        on_rate_limit: Callable[[RateLimitStatus], None] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            price_resolver: Source of historical USD prices.
            redis: Redis client to use. Created from settings when omitted.
            rpc_factory: Factory for RPC clients. Built from settings when omitted.
            create_schema: Create database tables on start (development only;
                use alembic migrations otherwise).
            on_rate_limit: Called when requests start or stop being rate limited.
            on_progress: Called after each ingested batch.
        """
        self._settings = settings or get_settings()
        self._price_resolver = price_resolver
        self._create_schema = create_schema
        self._on_rate_limit = on_rate_limit
        self._on_progress = on_progress

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._redis: Redis | None = redis
        self._owns_redis = redis is None
        self._rpc_factory = rpc_factory

        # Components (initialized in start())
        self._db_manager: DatabaseManager | None = None
        self._cache: TransactionCache | None = None
        self._sink: DatabaseTransactionSink | None = None
        self._client: SolanaRpcClient | None = None
        self._fallback_client: SolanaRpcClient | None = None
        self._executor: BackoffExecutor | None = None
        self._fetcher: TransactionDetailFetcher | None = None
        self._classifier: TransactionClassifier | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def cache(self) -> TransactionCache | None:
        return self._cache

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logging.getLogger(PACKAGE_LOGGER).setLevel(self._settings.get_logging_level())
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline and release its connections."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")
        await self._cleanup()
        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if self._redis is None:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
        self._cache = TransactionCache(
            self._redis,
            key_prefix=settings.cache.key_prefix,
            ttl_seconds=settings.cache.ttl_seconds,
            bypass=settings.cache.bypass,
        )

        if settings.database.url:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)
            if self._create_schema:
                await self._db_manager.init_schema_async()
            self._sink = DatabaseTransactionSink(self._db_manager)
        else:
            logger.info("DATABASE_URL not set; transactions will not be persisted")

        logger.debug("Initializing Solana RPC clients...")
        if self._rpc_factory is None:
            self._rpc_factory = RpcConnectionFactory(
                settings.rpc.rpc_url,
                fallback_rpc_url=settings.rpc.fallback_rpc_url,
                timeout_seconds=settings.rpc.timeout_seconds,
                commitment=settings.rpc.commitment,
            )
        self._client = self._rpc_factory.create_primary()
        self._fallback_client = self._rpc_factory.create_fallback()

        self._executor = BackoffExecutor(
            rate_limiter=RateLimiter.per_second(settings.rpc.max_requests_per_second),
            max_retries=settings.ingestion.page_max_retries,
            initial_delay=settings.ingestion.page_initial_delay_seconds,
            on_status=self._handle_rate_limit_status,
        )
        self._fetcher = TransactionDetailFetcher(
            self._client,
            self._executor,
            cache=self._cache,
            max_concurrency=settings.ingestion.detail_concurrency,
            request_delay_seconds=settings.ingestion.request_delay_seconds,
            max_retries=settings.ingestion.detail_max_retries,
            initial_delay=settings.ingestion.detail_initial_delay_seconds,
        )
        self._classifier = TransactionClassifier(
            dust_threshold_lamports=settings.classifier.dust_threshold_lamports,
        )

    def _build_ingestor(self, *, since: datetime | None, until: datetime | None) -> WalletIngestor:
        assert self._client is not None
        assert self._executor is not None
        assert self._fetcher is not None
        assert self._classifier is not None
        ingestion = self._settings.ingestion
        paginator = SignaturePaginator(
            self._client,
            self._executor,
            fallback=self._fallback_client,
            max_signatures=ingestion.max_signatures,
            max_empty_page_run=ingestion.max_empty_page_run,
            max_retries=ingestion.page_max_retries,
            initial_delay=ingestion.page_initial_delay_seconds,
            since=since,
            until=until,
        )
        return WalletIngestor(
            paginator,
            self._fetcher,
            self._classifier,
            # A windowed history is partial and must not replace the cached full one.
            cache=self._cache if since is None and until is None else None,
            sink=self._sink,
            balance_client=self._client,
            page_size=ingestion.page_size,
            on_progress=self._on_progress,
        )

    async def _cleanup(self) -> None:
        """Clean up resources."""
        for client in (self._client, self._fallback_client):
            if client is not None:
                await client.aclose()
        self._client = None
        self._fallback_client = None

        # Close database connections
        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None
            self._sink = None

        # Close Redis connection
        if self._redis is not None and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    def _handle_rate_limit_status(self, status: RateLimitStatus) -> None:
        if status.is_limited:
            self._stats.rate_limit_events += 1
        if self._on_rate_limit is not None:
            self._on_rate_limit(status)

    async def run(
        self,
        wallets: Iterable[str],
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> TaxReport:
        """Ingest every wallet one at a time and compute the tax report.

        Transfers between wallets of the set are recognized as internal.
        A wallet that fails to ingest is reported in ``wallet_failures``;
        the ledger runs over the wallets that succeeded.

        Raises:
            RuntimeError: If the pipeline is not running.
            ValidationError: If any wallet address is invalid.
            LedgerInputError: If a price is missing or the ledger rejects the input.
        """
        if self._state != PipelineState.RUNNING:
            raise RuntimeError(f"Cannot run pipeline in state {self._state}")

        addresses = list(dict.fromkeys(validate_wallet_address(w) for w in wallets))
        own_wallets = frozenset(addresses)
        ingestor = self._build_ingestor(since=since, until=until)
        results: dict[str, WalletIngestion] = {}

        async def process_wallet(address: str) -> None:
            results[address] = await ingestor.ingest(address, own_wallets=own_wallets)

        queue = WalletProcessingQueue(
            process_wallet,
            inter_wallet_delay_seconds=self._settings.ingestion.inter_wallet_delay_seconds,
        )
        for address in addresses:
            queue.enqueue(address)
        await queue.wait_idle()

        self._stats.runs += 1
        self._stats.wallets_processed += len(results)
        self._stats.wallets_failed += len(queue.failures)
        for failure in queue.failures:
            self._stats.last_error = failure.error

        transactions = self._merge(results.values())
        fetch_failures = {address: result.failures for address, result in results.items()}
        self._stats.transactions_ingested += len(transactions)
        self._stats.fetch_failures += sum(len(f) for f in fetch_failures.values())

        prices = await PriceTable.resolve(self._price_resolver, transactions)
        ledger_settings = self._settings.ledger
        ledger = FifoLedger(
            shortfall_policy=ledger_settings.shortfall_policy,
            holding_period_policy=ledger_settings.holding_period_policy,
            long_term_days=ledger_settings.long_term_days,
        ).process(transactions, prices)
        summary = summarize(
            transactions,
            ledger,
            prices,
            short_term_rate=ledger_settings.short_term_rate,
            long_term_rate=ledger_settings.long_term_rate,
        )

        logger.info(
            "Report for %d wallets: %d transactions, %d realized events, net %s USD",
            len(addresses),
            len(transactions),
            len(ledger.realized_events),
            ledger.net_gain_loss,
        )
        return TaxReport(
            wallets=addresses,
            transactions=transactions,
            ledger=ledger,
            summary=summary,
            fetch_failures=fetch_failures,
            wallet_failures=queue.failures,
        )

    @staticmethod
    def _merge(results: Iterable[WalletIngestion]) -> list[ClassifiedTransaction]:
        merged: dict[tuple[str, str], ClassifiedTransaction] = {}
        for result in results:
            for tx in result.transactions:
                merged.setdefault((tx.signature, tx.wallet_address), tx)
        return sorted(merged.values(), key=lambda tx: tx.sort_key)

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
