"""Best-effort DEX venue and token resolution from account keys."""

from __future__ import annotations

from collections.abc import Iterable

from solana_tax_tracker.classifier.models import AssetInfo

DEX_PROGRAMS: dict[str, str] = {
    "9W959DqEETiGZocYWCQPaJ6sBmUzgfxXfqGeTEdp3aQP": "Orca",
    "whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc": "Orca Whirlpools",
    "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB": "Jupiter",
    "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4": "Jupiter",
    "srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX": "Serum",
    "RVKd61ztZW9GUwhRbbLoYVRE5Xf1B2tVscKqwZqXgEr": "Raydium",
    "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8": "Raydium AMM",
}

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

KNOWN_TOKENS: dict[str, str] = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    WRAPPED_SOL_MINT: "SOL",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So": "mSOL",
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": "BONK",
    "7i5KKsX2weiTkry7jA4ZwSuXGhs5eJBEjY8vVxR4pfRx": "JUNGLE",
    "kinXdEcpDQeHPEuQnqmUgtYykqKGVFq6CeVX5iAHJq6": "KIN",
}

UNKNOWN_TOKEN = "Unknown Token"


def resolve_venue(program_ids: Iterable[str]) -> str | None:
    """Name of the first known DEX program, if any."""
    for program_id in program_ids:
        venue = DEX_PROGRAMS.get(program_id)
        if venue is not None:
            return venue
    return None


def resolve_asset(mints: Iterable[str], account_keys: Iterable[str], *, venue: str | None = None) -> AssetInfo | None:
    """Identify the non-native asset traded in a swap.

    Token-balance mints are preferred over bare account keys; wrapped SOL
    is skipped since the native side is tracked separately. An unrecognized
    mint still yields an ``AssetInfo`` with a placeholder symbol.
    """
    candidates = [m for m in mints if m != WRAPPED_SOL_MINT]
    for mint in candidates:
        if mint in KNOWN_TOKENS:
            return AssetInfo(symbol=KNOWN_TOKENS[mint], mint=mint, venue=venue)

    for key in account_keys:
        if key != WRAPPED_SOL_MINT and key in KNOWN_TOKENS:
            return AssetInfo(symbol=KNOWN_TOKENS[key], mint=key, venue=venue)

    if candidates:
        return AssetInfo(symbol=UNKNOWN_TOKEN, mint=candidates[0], venue=venue)
    return None
