"""Bounded-concurrency transaction detail fetching."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from solana_tax_tracker.ingestor.backoff import BackoffExecutor
from solana_tax_tracker.ingestor.models import FetchBatchResult, FetchFailure, RawTransaction
from solana_tax_tracker.ingestor.rpc_client import SolanaRpcClient
from solana_tax_tracker.storage.cache import TransactionCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_REQUEST_DELAY_SECONDS = 0.5
DEFAULT_DETAIL_MAX_RETRIES = 3
DEFAULT_DETAIL_INITIAL_DELAY_SECONDS = 1.0


class TransactionNotFoundError(Exception):
    """Raised when the node has no body for a signature."""


class TransactionDetailFetcher:
    """Resolves signatures to transaction bodies.

    Each signature is fetched independently; a permanent failure is
    recorded and never aborts the batch.
    """

    def __init__(
        self,
        client: SolanaRpcClient,
        executor: BackoffExecutor,
        *,
        cache: TransactionCache | None = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS,
        max_retries: int = DEFAULT_DETAIL_MAX_RETRIES,
        initial_delay: float = DEFAULT_DETAIL_INITIAL_DELAY_SECONDS,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: RPC client used for ``getTransaction``.
            executor: Shared backoff executor.
            cache: Optional cache of immutable transaction bodies.
            max_concurrency: Upper bound on in-flight requests.
            request_delay_seconds: Fixed pause after each network fetch.
            max_retries: Retry budget per signature.
            initial_delay: First backoff delay per signature.
        """
        self._client = client
        self._executor = executor
        self._cache = cache
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._request_delay = request_delay_seconds
        self._max_retries = max_retries
        self._initial_delay = initial_delay

    async def fetch_batch(self, signatures: Sequence[str]) -> FetchBatchResult:
        """Fetch bodies for a batch of signatures.

        Returns:
            Bodies in input order plus one failure record per signature
            that could not be fetched.
        """
        outcomes = await asyncio.gather(*(self._fetch_one(sig) for sig in signatures))

        result = FetchBatchResult()
        for outcome in outcomes:
            if isinstance(outcome, FetchFailure):
                result.failures.append(outcome)
            else:
                result.transactions.append(outcome)

        if result.failures:
            logger.warning(
                "Fetched %d/%d transactions; %d failed",
                len(result.transactions),
                len(signatures),
                len(result.failures),
            )
        return result

    async def _fetch_one(self, signature: str) -> RawTransaction | FetchFailure:
        cached = await self._get_cached(signature)
        if cached is not None:
            return cached

        async with self._semaphore:
            try:
                data = await self._executor.execute(
                    lambda: self._client.get_transaction(signature),
                    max_retries=self._max_retries,
                    initial_delay=self._initial_delay,
                    description=f"getTransaction {signature[:12]}",
                )
                if data is None:
                    raise TransactionNotFoundError(f"Transaction {signature} not found")
            except Exception as e:
                logger.warning("Giving up on transaction %s: %s", signature, e)
                return FetchFailure(signature=signature, reason=str(e), error_type=type(e).__name__)
            finally:
                if self._request_delay > 0:
                    await asyncio.sleep(self._request_delay)

        tx = RawTransaction(signature=signature, data=data)
        if self._cache is not None:
            await self._cache.set(self._cache.transaction_key(signature), data)
        return tx

    async def _get_cached(self, signature: str) -> RawTransaction | None:
        if self._cache is None:
            return None
        data = await self._cache.get(self._cache.transaction_key(signature))
        if not isinstance(data, dict):
            return None
        return RawTransaction(signature=signature, data=data)
