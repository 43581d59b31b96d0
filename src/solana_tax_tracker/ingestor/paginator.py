"""Cursor-based pagination over a wallet's signature history."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from solana_tax_tracker.ingestor.backoff import BackoffExecutor, NonRetryableApiError
from solana_tax_tracker.ingestor.models import (
    SignatureInfo,
    SignaturePage,
    WalletCursor,
    validate_wallet_address,
)
from solana_tax_tracker.ingestor.rpc_client import SolanaRpcClient

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_SIGNATURES = 5000
DEFAULT_MAX_EMPTY_PAGE_RUN = 3
DEFAULT_PAGE_MAX_RETRIES = 5
DEFAULT_PAGE_INITIAL_DELAY_SECONDS = 2.0


class SignaturePaginator:
    """Walks ``getSignaturesForAddress`` from newest to oldest.

    Pagination ends on an empty page, at the signature cap, when the
    history passes below ``since``, or after a run of pages that yield
    nothing new. Each call makes exactly one provider request (plus at most
    one fallback request).

    Example:
        ```python
        paginator = SignaturePaginator(primary, executor, fallback=public)
        cursor = paginator.start(address)
        while True:
            page = await paginator.next_page(cursor)
            cursor = page.cursor
            ...
            if page.done:
                break
        ```
    """

    def __init__(
        self,
        client: SolanaRpcClient,
        executor: BackoffExecutor,
        *,
        fallback: SolanaRpcClient | None = None,
        max_signatures: int = DEFAULT_MAX_SIGNATURES,
        max_empty_page_run: int = DEFAULT_MAX_EMPTY_PAGE_RUN,
        max_retries: int = DEFAULT_PAGE_MAX_RETRIES,
        initial_delay: float = DEFAULT_PAGE_INITIAL_DELAY_SECONDS,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> None:
        """Initialize the paginator.

        Args:
            client: Primary (provider) RPC client.
            executor: Shared backoff executor.
            fallback: Generic RPC client tried once when the primary fails.
            max_signatures: Cap on signatures collected per wallet.
            max_empty_page_run: Consecutive unproductive pages before stopping.
            max_retries: Retry budget for each page request.
            initial_delay: First backoff delay for page requests.
            since: Drop signatures older than this and stop once passed.
            until: Drop signatures newer than this.
        """
        self._client = client
        self._executor = executor
        self._fallback = fallback
        self._max_signatures = max_signatures
        self._max_empty_page_run = max_empty_page_run
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._since = since
        self._until = until

    @property
    def max_signatures(self) -> int:
        return self._max_signatures

    def start(self, wallet_address: str, *, page_size: int = DEFAULT_PAGE_SIZE) -> WalletCursor:
        """Create a fresh cursor for a wallet.

        Raises:
            ValidationError: If the address is not a valid public key.
        """
        return WalletCursor(wallet_address=validate_wallet_address(wallet_address), page_size=page_size)

    async def next_page(self, cursor: WalletCursor) -> SignaturePage:
        """Fetch the next page of signatures older than the cursor.

        Returns:
            The page, with an advanced cursor. ``done`` is True when no
            further pages should be requested.
        """
        if cursor.exhausted:
            return SignaturePage(signatures=[], cursor=cursor, done=True)

        remaining = self._max_signatures - cursor.signatures_seen
        if remaining <= 0:
            return SignaturePage(signatures=[], cursor=replace(cursor, exhausted=True), done=True)

        raw = await self._fetch(cursor.wallet_address, limit=cursor.page_size, before=cursor.before_signature)
        if not raw:
            logger.debug("Signature history exhausted for %s", cursor.wallet_address)
            return SignaturePage(signatures=[], cursor=replace(cursor, exhausted=True), done=True)

        oldest = raw[-1]
        progressed = oldest.signature != cursor.before_signature
        collected = [s for s in raw if self._in_window(s)]
        only_newer = bool(self._until) and all(self._newer_than_until(s) for s in raw)

        done = not progressed
        if self._since is not None and oldest.block_time is not None and oldest.block_time < self._since:
            done = True

        if collected or only_newer:
            empty_run = 0
        else:
            empty_run = cursor.empty_page_run + 1
            if empty_run >= self._max_empty_page_run:
                logger.info(
                    "Stopping pagination for %s after %d empty pages",
                    cursor.wallet_address,
                    empty_run,
                )
                done = True

        if len(collected) >= remaining:
            if len(collected) > remaining:
                logger.warning(
                    "Signature cap %d reached for %s; truncating history",
                    self._max_signatures,
                    cursor.wallet_address,
                )
            collected = collected[:remaining]
            done = True

        next_cursor = replace(
            cursor,
            before_signature=oldest.signature,
            signatures_seen=cursor.signatures_seen + len(collected),
            empty_page_run=empty_run,
            exhausted=done,
        )
        return SignaturePage(signatures=collected, cursor=next_cursor, done=done)

    async def _fetch(self, address: str, *, limit: int, before: str | None) -> list[SignatureInfo]:
        try:
            return await self._executor.execute(
                lambda: self._client.get_signatures_for_address(address, limit=limit, before=before),
                max_retries=self._max_retries,
                initial_delay=self._initial_delay,
                description="getSignaturesForAddress",
            )
        except NonRetryableApiError:
            raise
        except Exception as e:
            fallback = self._fallback
            if fallback is None:
                raise
            logger.warning("Primary signature listing failed for %s (%s); trying fallback RPC", address, e)
            return await self._executor.execute(
                lambda: fallback.get_signatures_for_address(address, limit=limit, before=before),
                max_retries=0,
                description="getSignaturesForAddress (fallback)",
            )

    def _in_window(self, info: SignatureInfo) -> bool:
        if info.block_time is None:
            return self._since is None and self._until is None
        if self._since is not None and info.block_time < self._since:
            return False
        return not self._newer_than_until(info)

    def _newer_than_until(self, info: SignatureInfo) -> bool:
        return self._until is not None and info.block_time is not None and info.block_time > self._until
