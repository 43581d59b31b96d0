"""Perpetual-position (derivative) detection and log parsing.

Everything here is a pure function of account keys and log lines and
never raises on malformed input.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation

from solana_tax_tracker.classifier.models import DerivativeEvent, DerivativeEventType

PERPS_PROGRAM_IDS = frozenset(
    {
        "PERP7Y6dh5AZgz9k9eieE7BcWegMGbUyiYKxHKNPGXE",
        "perpke6JybKfRDi7xYzUssvWvUyEJzqNDGT5T8kqvV9",
        "JPPooLEqRb2LuVYJx6mjSfJA7YWcqQz2iCfBdz7k9Cn",
    }
)

PERPS_LOG_KEYWORDS = (
    "perp",
    "position",
    "margin",
    "liquidate",
)

# Checked in order: "increaseposition" is a substring of "instantincreaseposition".
_KIND_KEYWORDS: tuple[tuple[DerivativeEventType, tuple[str, ...]], ...] = (
    (DerivativeEventType.INSTANT_INCREASE, ("instantincreaseposition", "instant_increase_position")),
    (DerivativeEventType.INSTANT_DECREASE, ("instantdecreaseposition", "instant_decrease_position")),
    (DerivativeEventType.INCREASE, ("increaseposition", "increase_position")),
    (DerivativeEventType.DECREASE, ("decreaseposition", "decrease_position")),
    (DerivativeEventType.LIQUIDATION, ("liquidate", "liquidation")),
    (DerivativeEventType.CLOSE, ("close_position", "closeposition", "close position")),
    (DerivativeEventType.OPEN, ("open_position", "openposition", "open position")),
    (DerivativeEventType.ADD_MARGIN, ("add_margin", "addmargin", "add margin")),
    (DerivativeEventType.REMOVE_MARGIN, ("remove_margin", "removemargin", "remove margin")),
)

_PNL_RE = re.compile(r"PnL:\s*([-+]?\d*\.?\d+)")
_SIZE_RE = re.compile(r"size:\s*(\d*\.?\d+)")
_AMOUNT_RE = re.compile(r"amount:\s*(\d*\.?\d+)")
_MARGIN_RE = re.compile(r"margin:\s*(\d*\.?\d+)")

UNKNOWN_MARKET = "Unknown Market"


def is_derivative_transaction(account_keys: Sequence[str], log_messages: Sequence[str]) -> bool:
    """True when a perps program is referenced or logs mention position keywords."""
    if any(key in PERPS_PROGRAM_IDS for key in account_keys):
        return True
    return any(keyword in line.lower() for line in log_messages for keyword in PERPS_LOG_KEYWORDS)


def parse_derivative_event(log_messages: Sequence[str]) -> DerivativeEvent | None:
    """Parse the event subtype and fields from perps log lines.

    Returns None when no subtype keyword is present.
    """
    lowered = [line.lower() for line in log_messages]

    for kind, keywords in _KIND_KEYWORDS:
        if not any(keyword in line for line in lowered for keyword in keywords):
            continue
        if kind == DerivativeEventType.LIQUIDATION:
            return DerivativeEvent(
                kind=kind,
                market=_extract_market(log_messages),
                amount=_extract_number(log_messages, "amount:", _AMOUNT_RE),
            )
        if kind == DerivativeEventType.CLOSE:
            return DerivativeEvent(
                kind=kind,
                market=_extract_market(log_messages),
                pnl=_extract_number(log_messages, "PnL:", _PNL_RE),
            )
        if kind in (DerivativeEventType.ADD_MARGIN, DerivativeEventType.REMOVE_MARGIN):
            return DerivativeEvent(kind=kind, amount=_extract_number(log_messages, "margin:", _MARGIN_RE))
        return DerivativeEvent(
            kind=kind,
            market=_extract_market(log_messages),
            size=_extract_number(log_messages, "size:", _SIZE_RE),
            direction=_extract_direction(log_messages),
        )

    if any("perp" in line for line in lowered):
        return DerivativeEvent(kind=DerivativeEventType.FEE)
    return None


def _extract_market(log_messages: Sequence[str]) -> str:
    for line in log_messages:
        if "market:" in line:
            market = line.split("market:", 1)[1].strip()
            return market or UNKNOWN_MARKET
    return UNKNOWN_MARKET


def _extract_direction(log_messages: Sequence[str]) -> str:
    for line in log_messages:
        if "direction:" in line:
            return "long" if "long" in line.lower() else "short"
    return "unknown"


def _extract_number(log_messages: Sequence[str], marker: str, pattern: re.Pattern[str]) -> Decimal:
    for line in log_messages:
        if marker not in line:
            continue
        match = pattern.search(line)
        if match is None:
            return Decimal(0)
        try:
            return Decimal(match.group(1))
        except InvalidOperation:
            return Decimal(0)
    return Decimal(0)
