"""Solana JSON-RPC client over aiohttp.

This module provides a thin JSON-RPC 2.0 client for the handful of
methods ingestion needs:
- Signature listing (``getSignaturesForAddress``)
- Transaction bodies (``getTransaction``)
- Native balance (``getBalance``) and node health (``getHealth``)

Transport and protocol failures are mapped onto the ingestion error
taxonomy so the backoff executor can decide whether to retry.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import aiohttp

from solana_tax_tracker.ingestor.backoff import (
    IngestionError,
    NonRetryableApiError,
    RateLimitError,
    TransientNetworkError,
)
from solana_tax_tracker.ingestor.models import SignatureInfo

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_COMMITMENT = "confirmed"

RETRY_STATUS_CODES = (500, 502, 503, 504)

# JSON-RPC error codes
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
NODE_RATE_LIMITED = -32005
NON_RETRYABLE_RPC_CODES = (INVALID_REQUEST, METHOD_NOT_FOUND, INVALID_PARAMS)

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")


class RpcError(IngestionError):
    """Raised when the node returns a JSON-RPC error without a known class."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


def classify_rpc_error(error: Any) -> IngestionError:
    """Map a JSON-RPC ``error`` member onto the ingestion taxonomy."""
    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message", error))
    else:
        code = None
        message = str(error)

    lowered = message.lower()
    if code == NODE_RATE_LIMITED or any(marker in lowered for marker in RATE_LIMIT_MARKERS):
        return RateLimitError(f"RPC rate limited: {message}")
    if code in NON_RETRYABLE_RPC_CODES:
        return NonRetryableApiError(f"RPC rejected request ({code}): {message}")
    return RpcError(f"RPC error ({code}): {message}", code=code if isinstance(code, int) else None)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class SolanaRpcClient:
    """JSON-RPC client bound to one endpoint.

    Instances are cheap; resetting a connection means building a new client
    through :class:`RpcConnectionFactory` rather than mutating this one.

    Example:
        ```python
        client = SolanaRpcClient("https://api.mainnet-beta.solana.com")
        signatures = await client.get_signatures_for_address(address, limit=50)
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        commitment: str = DEFAULT_COMMITMENT,
        name: str = "primary",
    ) -> None:
        self._rpc_url = rpc_url
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._commitment = commitment
        self._ids = itertools.count(1)
        self.name = name

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """Issue one JSON-RPC request and return its ``result``.

        Raises:
            RateLimitError: HTTP 429 or a rate-limit RPC error.
            TransientNetworkError: Timeouts, connection failures and 5xx.
            NonRetryableApiError: Other 4xx and invalid request/method/params.
            RpcError: Any other JSON-RPC error.
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        session = self._get_session()
        try:
            async with session.post(self._rpc_url, json=payload, timeout=self._timeout) as response:
                if response.status == 429:
                    raise RateLimitError(
                        f"{method} throttled by {self.name} RPC (HTTP 429)",
                        retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                    )
                if response.status in RETRY_STATUS_CODES:
                    raise TransientNetworkError(f"{method} failed with HTTP {response.status}")
                if response.status >= 400:
                    text = await response.text()
                    raise NonRetryableApiError(f"{method} failed with HTTP {response.status}: {text[:200]}")
                body = await response.json(content_type=None)
        except (asyncio.TimeoutError, aiohttp.ClientConnectionError, aiohttp.ClientPayloadError) as e:
            raise TransientNetworkError(f"{method} transport failure: {e!r}") from e
        except ValueError as e:
            raise TransientNetworkError(f"{method} returned a non-JSON body") from e

        if not isinstance(body, dict):
            raise TransientNetworkError(f"{method} returned an unexpected body")
        if body.get("error") is not None:
            raise classify_rpc_error(body["error"])
        return body.get("result")

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int,
        before: str | None = None,
    ) -> list[SignatureInfo]:
        """List signatures for an address, newest first."""
        config: dict[str, Any] = {"limit": limit, "commitment": self._commitment}
        if before is not None:
            config["before"] = before
        result = await self.call("getSignaturesForAddress", [address, config])
        if not isinstance(result, list):
            return []
        return [SignatureInfo.from_rpc(item) for item in result if isinstance(item, dict) and "signature" in item]

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """Fetch one transaction body, or None if the node does not have it."""
        result = await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self._commitment,
                },
            ],
        )
        return result if isinstance(result, dict) else None

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        result = await self.call("getBalance", [address, {"commitment": self._commitment}])
        if isinstance(result, dict):
            result = result.get("value")
        return int(result or 0)

    async def get_health(self) -> bool:
        """Return True when the node reports itself healthy."""
        try:
            result = await self.call("getHealth")
        except IngestionError as e:
            logger.warning("Health check against %s RPC failed: %s", self.name, e)
            return False
        return result == "ok"


class RpcConnectionFactory:
    """Builds primary and fallback RPC clients.

    Components receive clients through this factory, so a connection reset
    is a new instance and never a shared mutable handle.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        commitment: str = DEFAULT_COMMITMENT,
    ) -> None:
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._timeout_seconds = timeout_seconds
        self._commitment = commitment

    @property
    def has_fallback(self) -> bool:
        return bool(self._fallback_rpc_url) and self._fallback_rpc_url != self._rpc_url

    def create_primary(self) -> SolanaRpcClient:
        return SolanaRpcClient(
            self._rpc_url,
            timeout_seconds=self._timeout_seconds,
            commitment=self._commitment,
            name="primary",
        )

    def create_fallback(self) -> SolanaRpcClient | None:
        if not self.has_fallback:
            return None
        assert self._fallback_rpc_url is not None
        return SolanaRpcClient(
            self._fallback_rpc_url,
            timeout_seconds=self._timeout_seconds,
            commitment=self._commitment,
            name="fallback",
        )
