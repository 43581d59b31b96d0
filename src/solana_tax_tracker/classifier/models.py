"""Data models for classified transactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

LAMPORTS_PER_SOL = Decimal(1_000_000_000)
NATIVE_ASSET = "SOL"


class TransactionType(str, Enum):
    """Classification assigned to every transaction."""

    TRANSFER = "transfer"
    SWAP = "swap"
    INTERNAL_TRANSFER = "internal_transfer"
    GAS = "gas"
    DERIVATIVE = "derivative"
    UNKNOWN = "unknown"


class SwapSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class DerivativeEventType(str, Enum):
    """Perpetual-position event subtypes."""

    OPEN = "open"
    CLOSE = "close"
    INCREASE = "increase"
    DECREASE = "decrease"
    INSTANT_INCREASE = "instant-increase"
    INSTANT_DECREASE = "instant-decrease"
    LIQUIDATION = "liquidation"
    ADD_MARGIN = "add-margin"
    REMOVE_MARGIN = "remove-margin"
    FEE = "fee"


@dataclass(frozen=True)
class DerivativeEvent:
    """Fields parsed from a perpetual-position program's log lines."""

    kind: DerivativeEventType
    market: str = "Unknown Market"
    size: Decimal = Decimal(0)
    direction: str = "unknown"
    pnl: Decimal = Decimal(0)
    amount: Decimal = Decimal(0)

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind.value,
            "market": self.market,
            "size": str(self.size),
            "direction": self.direction,
            "pnl": str(self.pnl),
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DerivativeEvent:
        return cls(
            kind=DerivativeEventType(data["kind"]),
            market=str(data.get("market", "Unknown Market")),
            size=Decimal(str(data.get("size", "0"))),
            direction=str(data.get("direction", "unknown")),
            pnl=Decimal(str(data.get("pnl", "0"))),
            amount=Decimal(str(data.get("amount", "0"))),
        )


@dataclass(frozen=True)
class AssetInfo:
    """Best-effort description of the non-native asset in a transaction."""

    symbol: str
    mint: str | None = None
    venue: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"symbol": self.symbol, "mint": self.mint, "venue": self.venue}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AssetInfo:
        return cls(symbol=str(data["symbol"]), mint=data.get("mint"), venue=data.get("venue"))


@dataclass(frozen=True)
class ClassifiedTransaction:
    """A transaction seen from one own wallet.

    ``native_amount_delta`` and ``fee_amount`` are in lamports. The delta is
    the own wallet's post minus pre balance, so it already includes the fee
    when the wallet paid it.
    """

    signature: str
    wallet_address: str
    timestamp: datetime | None
    type: TransactionType
    native_amount_delta: int
    fee_amount: int
    success: bool = True
    counterparty_address: str | None = None
    is_internal_transfer: bool = False
    swap_side: SwapSide | None = None
    asset_info: AssetInfo | None = None
    derivative: DerivativeEvent | None = None
    program_ids: tuple[str, ...] = field(default_factory=tuple)
    fee_payer: str | None = None

    @property
    def native_amount(self) -> Decimal:
        """Native delta in SOL."""
        return Decimal(self.native_amount_delta) / LAMPORTS_PER_SOL

    @property
    def fee(self) -> Decimal:
        """Fee in SOL."""
        return Decimal(self.fee_amount) / LAMPORTS_PER_SOL

    @property
    def paid_fee(self) -> bool:
        """Whether this wallet paid the fee; without a known payer only gas rows count."""
        if self.fee_payer is not None:
            return self.fee_payer == self.wallet_address
        return self.type == TransactionType.GAS

    @property
    def sort_key(self) -> tuple[float, str]:
        ts = self.timestamp.timestamp() if self.timestamp is not None else float("-inf")
        return (ts, self.signature)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "wallet_address": self.wallet_address,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "type": self.type.value,
            "native_amount_delta": self.native_amount_delta,
            "fee_amount": self.fee_amount,
            "success": self.success,
            "counterparty_address": self.counterparty_address,
            "is_internal_transfer": self.is_internal_transfer,
            "swap_side": self.swap_side.value if self.swap_side else None,
            "asset_info": self.asset_info.to_dict() if self.asset_info else None,
            "derivative": self.derivative.to_dict() if self.derivative else None,
            "program_ids": list(self.program_ids),
            "fee_payer": self.fee_payer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClassifiedTransaction:
        timestamp = data.get("timestamp")
        parsed_ts = datetime.fromisoformat(timestamp) if timestamp else None
        if parsed_ts is not None and parsed_ts.tzinfo is None:
            parsed_ts = parsed_ts.replace(tzinfo=UTC)
        return cls(
            signature=data["signature"],
            wallet_address=data["wallet_address"],
            timestamp=parsed_ts,
            type=TransactionType(data["type"]),
            native_amount_delta=int(data["native_amount_delta"]),
            fee_amount=int(data.get("fee_amount", 0)),
            success=bool(data.get("success", True)),
            counterparty_address=data.get("counterparty_address"),
            is_internal_transfer=bool(data.get("is_internal_transfer", False)),
            swap_side=SwapSide(data["swap_side"]) if data.get("swap_side") else None,
            asset_info=AssetInfo.from_dict(data["asset_info"]) if data.get("asset_info") else None,
            derivative=DerivativeEvent.from_dict(data["derivative"]) if data.get("derivative") else None,
            program_ids=tuple(data.get("program_ids", ())),
            fee_payer=data.get("fee_payer"),
        )
