"""Serial processing queue for a user's wallets.

At most one wallet is ingested at a time. Every wallet is in exactly one
of four states: idle (never seen), queued, current or completed. A
wallet whose ingestion failed is still completed; the failure is
reported separately.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from solana_tax_tracker.ingestor.models import validate_wallet_address

logger = logging.getLogger(__name__)


class WalletState(str, Enum):
    """Lifecycle state of one wallet in the queue."""

    IDLE = "idle"
    QUEUED = "queued"
    CURRENT = "current"
    COMPLETED = "completed"


@dataclass(frozen=True)
class WalletProcessingState:
    """Snapshot of the queue."""

    current_wallet: str | None
    queued_wallets: tuple[str, ...]
    completed_wallets: tuple[str, ...]

    @property
    def is_idle(self) -> bool:
        return self.current_wallet is None and not self.queued_wallets


@dataclass(frozen=True)
class WalletFailure:
    """A wallet whose ingestion ended in an error or was interrupted."""

    wallet_address: str
    error: str
    error_type: str

    @property
    def interrupted(self) -> bool:
        return self.error_type == "CancelledError"


ProcessWallet = Callable[[str], Awaitable[None]]
StateCallback = Callable[[WalletProcessingState], None]
FailureCallback = Callable[[WalletFailure], None]


class WalletQueueError(Exception):
    """Raised on an invalid state transition."""


class WalletProcessingQueue:
    """Runs ``process_wallet`` for one wallet at a time, in enqueue order.

    Without ``process_wallet`` the queue is driven manually: the caller
    advances it with :meth:`complete`.

    Example:
        ```python
        queue = WalletProcessingQueue(ingest_one, inter_wallet_delay_seconds=2.0)
        for wallet in wallets:
            queue.enqueue(wallet)
        await queue.wait_idle()
        print(queue.failures)
        ```
    """

    def __init__(
        self,
        process_wallet: ProcessWallet | None = None,
        *,
        inter_wallet_delay_seconds: float = 0.0,
        on_state_change: StateCallback | None = None,
        on_wallet_failed: FailureCallback | None = None,
    ) -> None:
        self._process_wallet = process_wallet
        self._inter_wallet_delay = inter_wallet_delay_seconds
        self._on_state_change = on_state_change
        self._on_wallet_failed = on_wallet_failed

        self._current: str | None = None
        self._queued: deque[str] = deque()
        self._completed: list[str] = []
        self._failures: list[WalletFailure] = []
        self._task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> WalletProcessingState:
        return WalletProcessingState(
            current_wallet=self._current,
            queued_wallets=tuple(self._queued),
            completed_wallets=tuple(self._completed),
        )

    @property
    def failures(self) -> list[WalletFailure]:
        return list(self._failures)

    def state_of(self, wallet_address: str) -> WalletState:
        if wallet_address == self._current:
            return WalletState.CURRENT
        if wallet_address in self._queued:
            return WalletState.QUEUED
        if wallet_address in self._completed:
            return WalletState.COMPLETED
        return WalletState.IDLE

    def enqueue(self, wallet_address: str) -> WalletState:
        """Add a wallet. Current, queued and completed wallets are left as is.

        Raises:
            ValidationError: If the address is invalid.
        """
        address = validate_wallet_address(wallet_address)
        state = self.state_of(address)
        if state != WalletState.IDLE:
            logger.debug("Ignoring enqueue of %s wallet %s", state.value, address)
            return state

        if self._current is None:
            self._start(address)
        else:
            self._queued.append(address)
            self._notify()
        return self.state_of(address)

    def requeue(self, wallet_address: str) -> WalletState:
        """Explicitly process a completed wallet again."""
        address = validate_wallet_address(wallet_address)
        if address in self._completed:
            self._completed.remove(address)
            self._failures = [f for f in self._failures if f.wallet_address != address]
        return self.enqueue(address)

    def complete(self, wallet_address: str) -> None:
        """Mark the current wallet completed and start the next one.

        Only for queues driven manually; a queue with ``process_wallet``
        completes wallets itself. Completing an already completed wallet is
        a no-op.

        Raises:
            WalletQueueError: If the queue runs its own worker, or the
                wallet is not the current one.
        """
        if self._process_wallet is not None:
            raise WalletQueueError(f"Cannot complete {wallet_address} by hand: the queue processes wallets itself")
        self._advance(wallet_address)

    def _advance(self, wallet_address: str) -> None:
        if wallet_address in self._completed:
            return
        if wallet_address != self._current:
            raise WalletQueueError(f"Cannot complete {wallet_address}: it is not the current wallet")

        self._completed.append(wallet_address)
        self._current = None
        self._task = None
        logger.info("Wallet %s completed (%d queued)", wallet_address, len(self._queued))

        if self._queued:
            self._start(self._queued.popleft())
        else:
            self._idle.set()
            self._notify()

    async def wait_idle(self) -> None:
        """Wait until no wallet is current or queued."""
        await self._idle.wait()

    async def cancel(self) -> None:
        """Drop queued wallets and interrupt the current one."""
        self._queued.clear()
        current = self._current
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        # A task cancelled before it ever ran never reaches its own cleanup.
        if current is not None and self._current == current:
            self._record_failure(current, "cancelled", "CancelledError")
            self._advance(current)
        self._notify()

    def _start(self, wallet_address: str) -> None:
        self._current = wallet_address
        self._idle.clear()
        self._notify()
        if self._process_wallet is not None:
            delay = self._inter_wallet_delay if self._completed else 0.0
            self._task = asyncio.create_task(self._run(wallet_address, delay))

    async def _run(self, wallet_address: str, delay: float) -> None:
        assert self._process_wallet is not None
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            logger.info("Processing wallet %s", wallet_address)
            await self._process_wallet(wallet_address)
        except asyncio.CancelledError:
            logger.warning("Processing of wallet %s was interrupted", wallet_address)
            self._record_failure(wallet_address, "cancelled", "CancelledError")
            self._finish(wallet_address)
            raise
        except Exception as e:
            logger.error("Processing of wallet %s failed: %s", wallet_address, e)
            self._record_failure(wallet_address, str(e), type(e).__name__)
        self._finish(wallet_address)

    def _finish(self, wallet_address: str) -> None:
        if self._current == wallet_address:
            self._advance(wallet_address)

    def _record_failure(self, wallet_address: str, error: str, error_type: str) -> None:
        failure = WalletFailure(wallet_address=wallet_address, error=error, error_type=error_type)
        self._failures.append(failure)
        if self._on_wallet_failed is not None:
            try:
                self._on_wallet_failed(failure)
            except Exception as e:
                logger.warning("Wallet failure callback failed: %s", e)

    def _notify(self) -> None:
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(self.state)
        except Exception as e:
            logger.warning("Queue state callback failed: %s", e)
