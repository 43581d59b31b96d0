"""Tests for ingestor data models."""

from datetime import UTC, datetime

import pytest

from solana_tax_tracker.ingestor.backoff import ValidationError
from solana_tax_tracker.ingestor.models import (
    RawTransaction,
    SignatureInfo,
    WalletCursor,
    validate_wallet_address,
)

WALLET = "Vote111111111111111111111111111111111111111"
SYSTEM_PROGRAM = "11111111111111111111111111111111"


class TestValidateWalletAddress:
    """Tests for base58 public key validation."""

    def test_accepts_public_key(self) -> None:
        assert validate_wallet_address(WALLET) == WALLET

    def test_strips_whitespace(self) -> None:
        assert validate_wallet_address(f"  {WALLET}\n") == WALLET

    def test_accepts_32_char_key(self) -> None:
        assert validate_wallet_address(SYSTEM_PROGRAM) == SYSTEM_PROGRAM

    @pytest.mark.parametrize(
        "address",
        [
            "",
            "short",
            "0x1234567890abcdef1234567890abcdef12345678",
            "O" * 40,
            "1" * 44,
        ],
    )
    def test_rejects_invalid(self, address: str) -> None:
        with pytest.raises(ValidationError):
            validate_wallet_address(address)

    def test_rejects_non_string(self) -> None:
        with pytest.raises(ValidationError):
            validate_wallet_address(12345)  # type: ignore[arg-type]


class TestWalletCursor:
    def test_defaults(self) -> None:
        cursor = WalletCursor(wallet_address=WALLET)
        assert cursor.before_signature is None
        assert cursor.page_size == 50
        assert cursor.exhausted is False
        assert cursor.signatures_seen == 0

    def test_frozen(self) -> None:
        cursor = WalletCursor(wallet_address=WALLET)
        with pytest.raises(AttributeError):
            cursor.exhausted = True  # type: ignore[misc]


class TestSignatureInfo:
    def test_from_rpc(self) -> None:
        info = SignatureInfo.from_rpc(
            {"signature": "sig1", "slot": 42, "blockTime": 1_700_000_000, "err": None}
        )
        assert info.signature == "sig1"
        assert info.slot == 42
        assert info.block_time == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert info.err is None

    def test_from_rpc_without_block_time(self) -> None:
        info = SignatureInfo.from_rpc({"signature": "sig1"})
        assert info.block_time is None


class TestRawTransaction:
    """Tests for RawTransaction accessors."""

    def test_accessors(self, make_raw_tx) -> None:
        raw = make_raw_tx(
            "sig1",
            keys=[WALLET, SYSTEM_PROGRAM],
            pre=[10, 0],
            post=[4, 1],
            fee=5,
            logs=["Program log: hello"],
            program_indexes=[1],
            token_mints=["mintA"],
        )

        assert raw.account_keys == [WALLET, SYSTEM_PROGRAM]
        assert raw.pre_balances == [10, 0]
        assert raw.post_balances == [4, 1]
        assert raw.fee == 5
        assert raw.succeeded is True
        assert raw.log_messages == ["Program log: hello"]
        assert raw.program_ids == [SYSTEM_PROGRAM]
        assert raw.token_mints == ["mintA"]
        assert raw.block_time == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert raw.slot == 250_000_000

    def test_failed_transaction(self, make_raw_tx) -> None:
        raw = make_raw_tx("sig1", keys=[WALLET], pre=[10], post=[5], err={"InstructionError": [0, "Custom"]})
        assert raw.succeeded is False

    def test_malformed_body_degrades_to_defaults(self) -> None:
        raw = RawTransaction(signature="sig1", data={"meta": "garbage", "transaction": 7, "blockTime": "x"})

        assert raw.account_keys == []
        assert raw.pre_balances == []
        assert raw.fee == 0
        assert raw.block_time is None
        assert raw.log_messages == []
        assert raw.program_ids == []
        assert raw.succeeded is True

    def test_json_parsed_keys_and_loaded_addresses(self) -> None:
        raw = RawTransaction(
            signature="sig1",
            data={
                "meta": {
                    "loadedAddresses": {"writable": ["lutW"], "readonly": ["lutR"]},
                    "innerInstructions": [{"index": 0, "instructions": [{"programId": "inner"}]}],
                },
                "transaction": {
                    "message": {
                        "accountKeys": [{"pubkey": WALLET, "signer": True}, {"pubkey": "prog"}],
                        "instructions": [{"programId": "prog"}, {"programIdIndex": 99}],
                    }
                },
            },
        )

        assert raw.account_keys == [WALLET, "prog", "lutW", "lutR"]
        assert raw.program_ids == ["prog", "inner"]
