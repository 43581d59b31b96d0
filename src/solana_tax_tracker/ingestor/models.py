"""Data models for wallet ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import base58

from solana_tax_tracker.ingestor.backoff import ValidationError

PUBLIC_KEY_LENGTH = 32


def validate_wallet_address(address: str) -> str:
    """Validate a base58 Solana public key.

    Returns:
        The stripped address.

    Raises:
        ValidationError: If the address is not a 32-byte base58 key.
    """
    if not isinstance(address, str):
        raise ValidationError(f"Wallet address must be a string, got {type(address).__name__}")
    candidate = address.strip()
    if len(candidate) < 32 or len(candidate) > 44:
        raise ValidationError(f"Invalid wallet address length: {candidate!r}")
    try:
        decoded = base58.b58decode(candidate)
    except ValueError as e:
        raise ValidationError(f"Wallet address is not valid base58: {candidate!r}") from e
    if len(decoded) != PUBLIC_KEY_LENGTH:
        raise ValidationError(f"Wallet address does not decode to a public key: {candidate!r}")
    return candidate


@dataclass(frozen=True)
class WalletCursor:
    """Pagination position for one wallet's signature history.

    ``before_signature`` only moves toward older history, and once
    ``exhausted`` is set no further pages are requested.
    """

    wallet_address: str
    before_signature: str | None = None
    page_size: int = 50
    exhausted: bool = False
    signatures_seen: int = 0
    empty_page_run: int = 0


@dataclass(frozen=True)
class SignatureInfo:
    """One entry from ``getSignaturesForAddress``."""

    signature: str
    slot: int | None = None
    block_time: datetime | None = None
    err: Any = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> SignatureInfo:
        block_time = data.get("blockTime")
        return cls(
            signature=str(data["signature"]),
            slot=data.get("slot"),
            block_time=datetime.fromtimestamp(block_time, tz=UTC) if block_time is not None else None,
            err=data.get("err"),
        )


@dataclass(frozen=True)
class SignaturePage:
    """A page of signatures with the advanced cursor."""

    signatures: list[SignatureInfo]
    cursor: WalletCursor
    done: bool


@dataclass(frozen=True)
class RawTransaction:
    """Provider-native ``getTransaction`` body.

    Accessors never raise: a missing or malformed field yields an empty
    default so downstream classification can degrade instead of failing.
    Both ``json`` and ``jsonParsed`` encodings are understood.
    """

    signature: str
    data: dict[str, Any]

    @property
    def _meta(self) -> dict[str, Any]:
        meta = self.data.get("meta")
        return meta if isinstance(meta, dict) else {}

    @property
    def _message(self) -> dict[str, Any]:
        tx = self.data.get("transaction")
        if not isinstance(tx, dict):
            return {}
        message = tx.get("message")
        return message if isinstance(message, dict) else {}

    @property
    def block_time(self) -> datetime | None:
        value = self.data.get("blockTime")
        if not isinstance(value, (int, float)):
            return None
        return datetime.fromtimestamp(value, tz=UTC)

    @property
    def slot(self) -> int | None:
        value = self.data.get("slot")
        return value if isinstance(value, int) else None

    @property
    def account_keys(self) -> list[str]:
        """Static account keys followed by v0 loaded addresses."""
        keys: list[str] = []
        raw_keys = self._message.get("accountKeys")
        if isinstance(raw_keys, list):
            for key in raw_keys:
                if isinstance(key, str):
                    keys.append(key)
                elif isinstance(key, dict) and isinstance(key.get("pubkey"), str):
                    keys.append(key["pubkey"])
                else:
                    keys.append("")
        loaded = self._meta.get("loadedAddresses")
        if isinstance(loaded, dict):
            for section in ("writable", "readonly"):
                values = loaded.get(section)
                if isinstance(values, list):
                    keys.extend(str(v) for v in values)
        return keys

    @property
    def pre_balances(self) -> list[int]:
        return _int_list(self._meta.get("preBalances"))

    @property
    def post_balances(self) -> list[int]:
        return _int_list(self._meta.get("postBalances"))

    @property
    def fee(self) -> int:
        fee = self._meta.get("fee")
        return fee if isinstance(fee, int) else 0

    @property
    def error(self) -> Any:
        return self._meta.get("err")

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def log_messages(self) -> list[str]:
        logs = self._meta.get("logMessages")
        if not isinstance(logs, list):
            return []
        return [line for line in logs if isinstance(line, str)]

    @property
    def program_ids(self) -> list[str]:
        """Program ids of top-level and inner instructions, in first-seen order."""
        keys = self.account_keys
        seen: dict[str, None] = {}
        instructions: list[Any] = []
        top_level = self._message.get("instructions")
        if isinstance(top_level, list):
            instructions.extend(top_level)
        inner = self._meta.get("innerInstructions")
        if isinstance(inner, list):
            for group in inner:
                if isinstance(group, dict) and isinstance(group.get("instructions"), list):
                    instructions.extend(group["instructions"])

        for ix in instructions:
            if not isinstance(ix, dict):
                continue
            program_id = ix.get("programId")
            if not isinstance(program_id, str):
                index = ix.get("programIdIndex")
                if not isinstance(index, int) or not 0 <= index < len(keys):
                    continue
                program_id = keys[index]
            seen.setdefault(program_id, None)
        return list(seen)

    @property
    def token_mints(self) -> list[str]:
        seen: dict[str, None] = {}
        for section in ("preTokenBalances", "postTokenBalances"):
            balances = self._meta.get(section)
            if not isinstance(balances, list):
                continue
            for entry in balances:
                if isinstance(entry, dict) and isinstance(entry.get("mint"), str):
                    seen.setdefault(entry["mint"], None)
        return list(seen)


def _int_list(value: Any) -> list[int]:
    if not isinstance(value, list):
        return []
    return [v if isinstance(v, int) else 0 for v in value]


@dataclass(frozen=True)
class FetchFailure:
    """A signature whose details could not be fetched."""

    signature: str
    reason: str
    error_type: str


@dataclass
class FetchBatchResult:
    """Fetched transaction bodies plus per-item failures."""

    transactions: list[RawTransaction] = field(default_factory=list)
    failures: list[FetchFailure] = field(default_factory=list)


@dataclass
class BatchProgress:
    """Progress of an incremental wallet ingestion.

    ``processed`` never decreases while the run is in progress.
    ``total_estimate`` counts one more page while paging continues (capped
    at the signature limit) and equals ``processed`` once complete.
    """

    total_estimate: int = 0
    processed: int = 0
    current_batch_index: int = 0
    complete: bool = False
