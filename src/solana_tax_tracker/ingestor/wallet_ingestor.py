"""Incremental ingestion of one wallet's transaction history.

Pages of signatures are fetched sequentially, bodies are fetched with
bounded fan-out, and each batch is classified and handed to the sink
before the next page is requested. The complete history is then
de-duplicated, ordered by ``(timestamp, signature)`` and cached.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Collection
from dataclasses import dataclass, field

from solana_tax_tracker.classifier.classifier import TransactionClassifier, retag_internal
from solana_tax_tracker.classifier.models import ClassifiedTransaction
from solana_tax_tracker.ingestor.fetcher import TransactionDetailFetcher
from solana_tax_tracker.ingestor.models import (
    BatchProgress,
    FetchFailure,
    WalletCursor,
    validate_wallet_address,
)
from solana_tax_tracker.ingestor.paginator import DEFAULT_PAGE_SIZE, SignaturePaginator
from solana_tax_tracker.ingestor.rpc_client import SolanaRpcClient
from solana_tax_tracker.storage.cache import TransactionCache
from solana_tax_tracker.storage.repos import TransactionSink, UpsertResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, BatchProgress], None]


@dataclass
class IngestBatch:
    """One page worth of classified transactions."""

    index: int
    transactions: list[ClassifiedTransaction]
    failures: list[FetchFailure]
    cursor: WalletCursor
    progress: BatchProgress
    upsert_result: UpsertResult | None = None


@dataclass
class WalletIngestion:
    """Full result of ingesting one wallet."""

    wallet_address: str
    transactions: list[ClassifiedTransaction] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)
    sink_errors: list[str] = field(default_factory=list)
    from_cache: bool = False


class WalletIngestor:
    """Drives paginator, fetcher, classifier, cache and sink for a wallet.

    Example:
        ```python
        ingestor = WalletIngestor(paginator, fetcher, TransactionClassifier(), cache=cache)
        async for tx in ingestor.ingest_wallet(address, own_wallets={address, other}):
            print(tx.signature, tx.type)
        ```
    """

    def __init__(
        self,
        paginator: SignaturePaginator,
        fetcher: TransactionDetailFetcher,
        classifier: TransactionClassifier,
        *,
        cache: TransactionCache | None = None,
        sink: TransactionSink | None = None,
        balance_client: SolanaRpcClient | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._paginator = paginator
        self._fetcher = fetcher
        self._classifier = classifier
        self._cache = cache
        self._sink = sink
        self._balance_client = balance_client
        self._page_size = page_size
        self._on_progress = on_progress

    async def iter_batches(
        self,
        wallet_address: str,
        *,
        own_wallets: Collection[str] = (),
        cursor: WalletCursor | None = None,
    ) -> AsyncIterator[IngestBatch]:
        """Yield classified batches page by page, persisting each one.

        Raises:
            ValidationError: If the address is invalid (before any request).
            IngestionError: If a page request fails permanently; batches
                already yielded stay persisted.
        """
        address = validate_wallet_address(wallet_address)
        own = frozenset(own_wallets) | {address}
        if cursor is None:
            cursor = self._paginator.start(address, page_size=self._page_size)
        progress = BatchProgress(processed=cursor.signatures_seen)
        progress.total_estimate = self._estimate_total(progress.processed, cursor, done=cursor.exhausted)
        index = 0

        while True:
            page = await self._paginator.next_page(cursor)
            cursor = page.cursor

            if page.signatures:
                fetched = await self._fetcher.fetch_batch([s.signature for s in page.signatures])
                classified = [self._classifier.classify(raw, address, own) for raw in fetched.transactions]

                upsert_result = None
                if self._sink is not None and classified:
                    upsert_result = await self._sink.upsert(classified)
                    if not upsert_result.success:
                        logger.error("Sink rejected batch %d for %s: %s", index, address, upsert_result.error)

                progress.processed += len(page.signatures)
                progress.total_estimate = self._estimate_total(progress.processed, cursor, done=page.done)
                progress.current_batch_index = index
                progress.complete = page.done
                self._report(address, progress)

                yield IngestBatch(
                    index=index,
                    transactions=classified,
                    failures=fetched.failures,
                    cursor=cursor,
                    progress=progress,
                    upsert_result=upsert_result,
                )
                index += 1

            if page.done:
                break

        if not progress.complete:
            progress.complete = True
            progress.total_estimate = progress.processed
            self._report(address, progress)
        logger.info("Finished paging %s: %d signatures", address, progress.processed)

    async def ingest(
        self,
        wallet_address: str,
        *,
        own_wallets: Collection[str] = (),
        cursor: WalletCursor | None = None,
    ) -> WalletIngestion:
        """Ingest a wallet and return its ordered, de-duplicated history.

        A fresh run (no cursor) is served from the history cache when present;
        internal-transfer tags of cached entries follow ``own_wallets``.
        """
        address = validate_wallet_address(wallet_address)
        result = WalletIngestion(wallet_address=address)

        if cursor is None:
            cached = await self._load_cached_history(address, own_wallets)
            if cached is not None:
                result.transactions = cached
                result.from_cache = True
                logger.info("Serving %d cached transactions for %s", len(cached), address)
                return result

        by_signature: dict[str, ClassifiedTransaction] = {}
        async for batch in self.iter_batches(address, own_wallets=own_wallets, cursor=cursor):
            result.failures.extend(batch.failures)
            if batch.upsert_result is not None and not batch.upsert_result.success:
                result.sink_errors.append(batch.upsert_result.error or "unknown sink error")
            for tx in batch.transactions:
                if tx.timestamp is None:
                    logger.warning("Dropping %s for %s: no block time", tx.signature, address)
                    result.failures.append(
                        FetchFailure(signature=tx.signature, reason="missing block time", error_type="MissingBlockTime")
                    )
                    continue
                by_signature.setdefault(tx.signature, tx)

        result.transactions = sorted(by_signature.values(), key=lambda tx: tx.sort_key)
        if cursor is None and self._cache is not None:
            await self._cache.set(
                self._cache.transactions_key(address),
                [tx.to_dict() for tx in result.transactions],
            )
        return result

    async def ingest_wallet(
        self,
        wallet_address: str,
        *,
        own_wallets: Collection[str] = (),
        cursor: WalletCursor | None = None,
    ) -> AsyncIterator[ClassifiedTransaction]:
        """Stream a wallet's classified transactions in ascending order."""
        result = await self.ingest(wallet_address, own_wallets=own_wallets, cursor=cursor)
        for tx in result.transactions:
            yield tx

    async def fetch_balance(self, wallet_address: str) -> int | None:
        """Current native balance in lamports, cached per wallet."""
        address = validate_wallet_address(wallet_address)
        if self._cache is not None:
            cached = await self._cache.get(self._cache.wallet_key(address))
            if isinstance(cached, dict) and isinstance(cached.get("balance_lamports"), int):
                return cached["balance_lamports"]
        if self._balance_client is None:
            return None
        balance = await self._balance_client.get_balance(address)
        if self._cache is not None:
            await self._cache.set(self._cache.wallet_key(address), {"balance_lamports": balance})
        return balance

    def _estimate_total(self, processed: int, cursor: WalletCursor, *, done: bool) -> int:
        """Expected signature count: one more page while paging, capped."""
        if done:
            return processed
        return max(processed, min(processed + cursor.page_size, self._paginator.max_signatures))

    async def _load_cached_history(
        self, address: str, own_wallets: Collection[str]
    ) -> list[ClassifiedTransaction] | None:
        if self._cache is None:
            return None
        cached = await self._cache.get(self._cache.transactions_key(address))
        if not isinstance(cached, list):
            return None
        try:
            transactions = [ClassifiedTransaction.from_dict(item) for item in cached]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable cached history for %s: %s", address, e)
            return None
        own = frozenset(own_wallets) | {address}
        return sorted((retag_internal(tx, own) for tx in transactions), key=lambda tx: tx.sort_key)

    def _report(self, address: str, progress: BatchProgress) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(address, progress)
        except Exception as e:
            logger.warning("Progress callback failed: %s", e)
