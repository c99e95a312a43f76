"""
Tests for wager_chain.abi calldata and log codecs.
"""
from __future__ import annotations

from eth_abi import encode

from wager_chain.abi import (
    TRANSFER_EVENT_TOPIC,
    decode_error_string,
    decode_escrow_call,
    encode_escrow_call,
    encode_owner_of,
    function_selector,
    parse_transfer_log,
)

from conftest import ESCROW, PLAYER, USDC, transfer_log


class TestSelectorsAndTopics:

    def test_erc20_transfer_selector(self):
        assert function_selector("transfer", ["address", "uint256"]).hex() == "a9059cbb"

    def test_transfer_topic(self):
        assert TRANSFER_EVENT_TOPIC == (
            "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
        )

    def test_owner_of_selector(self):
        assert encode_owner_of(1).startswith("0x6352211e")


class TestEscrowCalls:

    def test_join_game_round_trip(self):
        decoded = decode_escrow_call(encode_escrow_call("joinGame", "game-A"))
        assert decoded is not None
        assert decoded.name == "joinGame"
        assert decoded.args == ("game-A",)

    def test_create_game_addresses_are_lowercased(self):
        data = encode_escrow_call("createGame", "game-A", USDC, 5_000_000)
        decoded = decode_escrow_call(data)
        assert decoded.name == "createGame"
        assert decoded.args == ("game-A", USDC, 5_000_000)

    def test_resource_id_is_never_normalized(self):
        resource_id = "0xABCDEFabcdef0123456789ABCDEFabcdef012345"
        decoded = decode_escrow_call(encode_escrow_call("joinGame", resource_id))
        assert decoded.args[0] == resource_id

    def test_unknown_selector(self):
        transfer = "0xa9059cbb" + encode(["address", "uint256"], [ESCROW, 1]).hex()
        assert decode_escrow_call(transfer) is None

    def test_empty_and_malformed_input(self):
        assert decode_escrow_call(None) is None
        assert decode_escrow_call("0x") is None
        assert decode_escrow_call("0xzz") is None

    def test_truncated_arguments(self):
        data = encode_escrow_call("joinGame", "game-A")
        assert decode_escrow_call(data[:20]) is None


class TestTransferLogs:

    def test_parse(self):
        transfer = parse_transfer_log(transfer_log(PLAYER, ESCROW, 5_000_000, log_index=3))
        assert transfer.from_address == PLAYER
        assert transfer.to_address == ESCROW
        assert transfer.value == 5_000_000
        assert transfer.log_address == USDC
        assert transfer.log_index == 3
        assert transfer.summary() == {
            "from": PLAYER,
            "to": ESCROW,
            "value": "5000000",
            "logAddress": USDC,
        }

    def test_other_event_is_ignored(self):
        log = transfer_log(PLAYER, ESCROW, 1)
        log["topics"][0] = "0x" + "00" * 32
        assert parse_transfer_log(log) is None

    def test_too_few_topics(self):
        log = transfer_log(PLAYER, ESCROW, 1)
        log["topics"] = log["topics"][:2]
        assert parse_transfer_log(log) is None

    def test_empty_data(self):
        log = transfer_log(PLAYER, ESCROW, 1)
        log["data"] = "0x"
        assert parse_transfer_log(log) is None


class TestErrorString:

    def test_decode(self):
        data = "0x08c379a0" + encode(["string"], ["Game already exists"]).hex()
        assert decode_error_string(data) == "Game already exists"

    def test_not_error_data(self):
        assert decode_error_string("0x1234") is None
        assert decode_error_string(None) is None
