"""Retry with exponential backoff and request spacing for provider calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_DELAY_SECONDS = 2.0
DEFAULT_MIN_REQUEST_INTERVAL_SECONDS = 0.5


class IngestionError(Exception):
    """Base exception for ingestion errors."""


class RateLimitError(IngestionError):
    """Raised when the provider throttles a request (HTTP 429 or equivalent)."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(IngestionError):
    """Raised for timeouts, connection resets and 5xx responses."""


class NonRetryableApiError(IngestionError):
    """Raised for requests the provider will never accept (bad method or params)."""


class ValidationError(IngestionError):
    """Raised when an input (such as a wallet address) is malformed."""


@dataclass(frozen=True)
class RateLimitStatus:
    """Observable throttling state, emitted on every rate-limit retry."""

    is_limited: bool
    retry_count: int
    max_retries: int
    retry_in_seconds: float
    total_delays: int


StatusCallback = Callable[[RateLimitStatus], None]


class RateLimiter:
    """Minimum-interval limiter shared by every caller of a provider."""

    def __init__(self, min_interval_seconds: float = DEFAULT_MIN_REQUEST_INTERVAL_SECONDS) -> None:
        self._min_interval = min_interval_seconds
        self._last_request_time = float("-inf")
        self._lock = asyncio.Lock()

    @classmethod
    def per_second(cls, max_requests_per_second: float) -> RateLimiter:
        return cls(1.0 / max_requests_per_second)

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class BackoffExecutor:
    """Run provider operations with classification-aware retries.

    Failures are handled by type:

    - ``NonRetryableApiError`` propagates immediately.
    - ``RateLimitError`` is retried with a doubling delay and reported to the
      status observer.
    - ``TransientNetworkError`` is retried with the same doubling delay.
    - Any other exception is retried once and thereafter treated as a
      transient network error.

    When the retry budget is spent the last error propagates; an unknown
    error that failed more than once is raised as ``TransientNetworkError``.

    Example:
        ```python
        executor = BackoffExecutor(rate_limiter=RateLimiter.per_second(2))
        page = await executor.execute(
            lambda: client.get_signatures_for_address(address, limit=50),
            max_retries=5,
            initial_delay=2.0,
        )
        ```
    """

    def __init__(
        self,
        *,
        rate_limiter: RateLimiter | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
        on_status: StatusCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            rate_limiter: Shared limiter acquired before every attempt.
            max_retries: Default retry budget (attempts = max_retries + 1).
            initial_delay: Default first backoff delay in seconds.
            on_status: Observer for rate-limit status events.
            sleep: Awaitable sleep, injectable for tests.
        """
        self._rate_limiter = rate_limiter
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._on_status = on_status
        self._sleep = sleep
        self._total_delays = 0

    @property
    def total_delays(self) -> int:
        """Number of rate-limit delays taken over the executor's lifetime."""
        return self._total_delays

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_retries: int | None = None,
        initial_delay: float | None = None,
        description: str = "request",
    ) -> T:
        """Execute an operation, retrying retryable failures.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            max_retries: Retry budget override.
            initial_delay: First backoff delay override, doubled per retry.
            description: Label used in log messages.

        Returns:
            The operation's result.

        Raises:
            NonRetryableApiError: Immediately, without retrying.
            Exception: The last error once retries are exhausted.
        """
        retries = self._max_retries if max_retries is None else max_retries
        delay = self._initial_delay if initial_delay is None else initial_delay
        unknown_failures = 0
        limited = False

        for attempt in range(retries + 1):
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire()
            try:
                result = await operation()
            except NonRetryableApiError:
                raise
            except RateLimitError as e:
                if attempt == retries:
                    raise
                wait = max(delay, e.retry_after or 0.0)
                limited = True
                self._total_delays += 1
                logger.warning(
                    "Rate limited on %s (attempt %d/%d), retrying in %.1fs",
                    description,
                    attempt + 1,
                    retries + 1,
                    wait,
                )
                self._emit(
                    RateLimitStatus(
                        is_limited=True,
                        retry_count=attempt + 1,
                        max_retries=retries,
                        retry_in_seconds=wait,
                        total_delays=self._total_delays,
                    )
                )
            except TransientNetworkError as e:
                if attempt == retries:
                    raise
                wait = delay
                logger.warning(
                    "Transient failure on %s (attempt %d/%d): %s. Retrying in %.1fs",
                    description,
                    attempt + 1,
                    retries + 1,
                    e,
                    wait,
                )
            except Exception as e:
                unknown_failures += 1
                if attempt == retries:
                    if unknown_failures > 1:
                        raise TransientNetworkError(str(e)) from e
                    raise
                wait = delay
                logger.warning(
                    "Unexpected failure on %s (attempt %d/%d): %r. Retrying in %.1fs",
                    description,
                    attempt + 1,
                    retries + 1,
                    e,
                    wait,
                )
            else:
                if limited:
                    self._emit(
                        RateLimitStatus(
                            is_limited=False,
                            retry_count=attempt,
                            max_retries=retries,
                            retry_in_seconds=0.0,
                            total_delays=self._total_delays,
                        )
                    )
                return result

            await self._sleep(wait)
            delay *= 2

        raise AssertionError("unreachable")

    def _emit(self, status: RateLimitStatus) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception as e:
            logger.warning("Rate limit status callback failed: %s", e)
