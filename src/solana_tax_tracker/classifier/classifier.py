"""Deterministic classification of raw transactions from a wallet's view.

Rules are applied in priority order:

1. Perpetual-position programs or log keywords with a parseable subtype
   -> ``derivative``.
2. Own-wallet native delta within the dust threshold -> ``gas``.
3. Negative delta with an account credited by the matching amount
   -> ``transfer`` (``internal_transfer`` when that account is an own wallet).
4. Positive delta with an account debited by the matching amount, likewise.
5. A known DEX program was invoked -> ``swap``.
6. Otherwise ``unknown``.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from dataclasses import replace

from solana_tax_tracker.classifier.assets import resolve_asset, resolve_venue
from solana_tax_tracker.classifier.models import ClassifiedTransaction, SwapSide, TransactionType
from solana_tax_tracker.classifier.perps import is_derivative_transaction, parse_derivative_event
from solana_tax_tracker.ingestor.models import RawTransaction

logger = logging.getLogger(__name__)

DEFAULT_DUST_THRESHOLD_LAMPORTS = 5000


class TransactionClassifier:
    """Classifier bound to a dust threshold.

    Example:
        ```python
        classifier = TransactionClassifier(dust_threshold_lamports=5000)
        classified = classifier.classify(raw_tx, wallet, own_wallets)
        ```
    """

    def __init__(self, *, dust_threshold_lamports: int = DEFAULT_DUST_THRESHOLD_LAMPORTS) -> None:
        self._dust_threshold = dust_threshold_lamports

    def classify(
        self,
        raw: RawTransaction,
        own_wallet_address: str,
        own_wallet_set: Collection[str],
    ) -> ClassifiedTransaction:
        """Classify a transaction. Never raises on malformed input."""
        try:
            return self._classify(raw, own_wallet_address, own_wallet_set)
        except Exception as e:
            logger.debug("Classification of %s degraded to unknown: %r", raw.signature, e)
            return ClassifiedTransaction(
                signature=raw.signature,
                wallet_address=own_wallet_address,
                timestamp=raw.block_time,
                type=TransactionType.UNKNOWN,
                native_amount_delta=0,
                fee_amount=raw.fee,
                success=raw.succeeded,
            )

    def _classify(
        self,
        raw: RawTransaction,
        own_wallet_address: str,
        own_wallet_set: Collection[str],
    ) -> ClassifiedTransaction:
        keys = raw.account_keys
        pre = raw.pre_balances
        post = raw.post_balances
        logs = raw.log_messages
        program_ids = tuple(raw.program_ids)

        own_indexes = [i for i, key in enumerate(keys) if key == own_wallet_address]
        balances_ok = bool(own_indexes) and len(pre) == len(post) and all(i < len(pre) for i in own_indexes)
        delta = sum(post[i] - pre[i] for i in own_indexes) if balances_ok else 0

        def build(tx_type: TransactionType, **extra: object) -> ClassifiedTransaction:
            return ClassifiedTransaction(
                signature=raw.signature,
                wallet_address=own_wallet_address,
                timestamp=raw.block_time,
                type=tx_type,
                native_amount_delta=delta,
                fee_amount=raw.fee,
                success=raw.succeeded,
                program_ids=program_ids,
                fee_payer=keys[0] if keys else None,
                **extra,  # type: ignore[arg-type]
            )

        if is_derivative_transaction(keys, logs):
            event = parse_derivative_event(logs)
            if event is not None:
                return build(TransactionType.DERIVATIVE, derivative=event)

        if not balances_ok:
            return build(TransactionType.UNKNOWN)

        if abs(delta) <= self._dust_threshold:
            return build(TransactionType.GAS)

        counterparty = _find_counterparty(keys, pre, post, own_indexes, delta, raw.fee)
        if counterparty is not None:
            internal = counterparty != own_wallet_address and counterparty in own_wallet_set
            return build(
                TransactionType.INTERNAL_TRANSFER if internal else TransactionType.TRANSFER,
                counterparty_address=counterparty,
                is_internal_transfer=internal,
            )

        venue = resolve_venue(program_ids) or resolve_venue(keys)
        if venue is not None:
            return build(
                TransactionType.SWAP,
                swap_side=SwapSide.BUY if delta < 0 else SwapSide.SELL,
                asset_info=resolve_asset(raw.token_mints, keys, venue=venue),
            )

        return build(TransactionType.UNKNOWN)


def _find_counterparty(
    keys: Sequence[str],
    pre: Sequence[int],
    post: Sequence[int],
    own_indexes: Sequence[int],
    delta: int,
    fee: int,
) -> str | None:
    """Find the account whose balance moved opposite to the wallet's.

    An outgoing delta includes the fee when the wallet paid it, so a
    credit equal to the delta net of the fee also matches.
    """
    amount = abs(delta)
    expected = {amount, amount - fee} if delta < 0 else {amount, amount + fee}
    own = set(own_indexes)
    for index, key in enumerate(keys):
        if index in own or index >= len(pre) or not key:
            continue
        change = post[index] - pre[index]
        if delta < 0 and change > 0 and change in expected:
            return key
        if delta > 0 and change < 0 and -change in expected:
            return key
    return None


def classify(
    raw: RawTransaction,
    own_wallet_address: str,
    own_wallet_set: Collection[str],
    *,
    dust_threshold_lamports: int = DEFAULT_DUST_THRESHOLD_LAMPORTS,
) -> ClassifiedTransaction:
    """Classify one transaction as seen from ``own_wallet_address``."""
    return TransactionClassifier(dust_threshold_lamports=dust_threshold_lamports).classify(
        raw, own_wallet_address, own_wallet_set
    )


def retag_internal(tx: ClassifiedTransaction, own_wallet_set: Collection[str]) -> ClassifiedTransaction:
    """Re-derive the internal-transfer tag of a transfer against an own-wallet set."""
    if tx.type not in (TransactionType.TRANSFER, TransactionType.INTERNAL_TRANSFER) or tx.counterparty_address is None:
        return tx
    internal = tx.counterparty_address != tx.wallet_address and tx.counterparty_address in own_wallet_set
    if internal == tx.is_internal_transfer and (tx.type == TransactionType.INTERNAL_TRANSFER) == internal:
        return tx
    return replace(
        tx,
        type=TransactionType.INTERNAL_TRANSFER if internal else TransactionType.TRANSFER,
        is_internal_transfer=internal,
    )
