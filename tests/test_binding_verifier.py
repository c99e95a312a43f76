"""
Tests for wager_chain.binding_verifier.

Tests cover:
- Anti-replay: a join for one resource never verifies another
- Payer binding against the allowed set (fail closed)
- Native rail tolerance and exact token rail matching
- Short-circuit failures for receipt, destination, input and decode
- Non-authoritative PlayerJoined cross-check
"""
from __future__ import annotations

import logging

import pytest

from wager_chain.abi import PLAYER_JOINED_EVENT_TOPIC, encode_escrow_call, keccak_hex
from wager_chain.binding_verifier import ContractCallBindingVerifier
from wager_chain.exceptions import AllEndpointsFailedError
from wager_chain.logging_config import SECURITY_LOGGER_NAME
from wager_chain.results import (
    EventCrossCheck,
    FailureCode,
    PaymentRail,
    VerificationFailure,
    VerifiedBinding,
)
from wager_chain.wallets import AllowedPayerSet

from conftest import (
    ESCROW,
    PLAYER,
    STRANGER,
    TX_HASH,
    USDC,
    address_topic,
    make_receipt,
    make_tx,
    transfer_log,
)

FEE_UNITS = 5_000_000
ONE_HUNDREDTH_ETH = 10**16


@pytest.fixture
def verifier(settings, rpc):
    return ContractCallBindingVerifier(settings, rpc)


@pytest.fixture
def allowed():
    return AllowedPayerSet.build("1234", [PLAYER.upper().replace("0X", "0x")])


def join_input(resource_id: str = "game-A") -> str:
    return encode_escrow_call("joinGame", resource_id)


def player_joined_log(resource_id: str, player: str = PLAYER) -> dict:
    return {
        "address": ESCROW,
        "topics": [PLAYER_JOINED_EVENT_TOPIC, keccak_hex(resource_id), address_topic(player)],
        "data": "0x" + "00" * 64,
    }


def serve_token_join(rpc, resource_id="game-A", logs=None, sender=PLAYER):
    if logs is None:
        logs = [transfer_log(sender, ESCROW, FEE_UNITS)]
    rpc.get_transaction.return_value = make_tx(from_address=sender, input_data=join_input(resource_id))
    rpc.get_transaction_receipt.return_value = make_receipt(logs=logs)


class TestBinding:

    @pytest.mark.asyncio
    async def test_token_join_verifies(self, verifier, rpc, allowed):
        serve_token_join(rpc)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert isinstance(result, VerifiedBinding)
        assert result.resource_id == "game-A"
        assert result.payer_address == PLAYER
        assert result.payment_rail == PaymentRail.TOKEN
        assert result.actual_amount == FEE_UNITS
        assert result.amount_mismatch is False
        assert result.block_number == 100

    @pytest.mark.asyncio
    async def test_payment_for_other_game_is_rejected(self, verifier, rpc, allowed, caplog):
        serve_token_join(rpc, resource_id="game-B")

        with caplog.at_level(logging.WARNING, logger=SECURITY_LOGGER_NAME):
            result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert isinstance(result, VerificationFailure)
        assert result.code == FailureCode.RESOURCE_ID_MISMATCH
        assert result.code.security_significant is True
        assert result.diagnostics["actual_resource_id"] == "game-B"
        assert any(
            getattr(r, "security_event", None) == "resource_id_mismatch" for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_resource_id_comparison_is_exact(self, verifier, rpc, allowed):
        serve_token_join(rpc, resource_id="Game-A")

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.RESOURCE_ID_MISMATCH

    @pytest.mark.asyncio
    async def test_payer_outside_allowed_set_is_rejected(self, verifier, rpc, allowed):
        serve_token_join(rpc, sender=STRANGER)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.PAYER_NOT_ALLOWED
        assert result.diagnostics["allowed_payer_count"] == 1

    @pytest.mark.asyncio
    async def test_empty_allowed_set_fails_closed(self, verifier, rpc):
        serve_token_join(rpc)

        result = await verifier.verify_join(TX_HASH, "game-A", AllowedPayerSet("1234"), FEE_UNITS)

        assert result.code == FailureCode.PAYER_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_plain_address_list_is_accepted(self, verifier, rpc):
        serve_token_join(rpc)

        result = await verifier.verify_join(TX_HASH, "game-A", [PLAYER], str(FEE_UNITS))

        assert result.ok is True


class TestAmounts:

    @pytest.mark.asyncio
    async def test_native_within_tolerance(self, verifier, rpc, allowed):
        rpc.get_transaction.return_value = make_tx(
            input_data=join_input(), value=ONE_HUNDREDTH_ETH + ONE_HUNDREDTH_ETH // 200
        )
        rpc.get_transaction_receipt.return_value = make_receipt()

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, ONE_HUNDREDTH_ETH)

        assert result.payment_rail == PaymentRail.NATIVE
        assert result.amount_mismatch is False

    @pytest.mark.asyncio
    async def test_native_exactly_at_tolerance(self, verifier, rpc, allowed):
        rpc.get_transaction.return_value = make_tx(
            input_data=join_input(), value=ONE_HUNDREDTH_ETH - ONE_HUNDREDTH_ETH // 100
        )
        rpc.get_transaction_receipt.return_value = make_receipt()

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, ONE_HUNDREDTH_ETH)

        assert result.amount_mismatch is False

    @pytest.mark.asyncio
    async def test_native_outside_tolerance_is_flagged_not_rejected(self, verifier, rpc, allowed):
        rpc.get_transaction.return_value = make_tx(
            input_data=join_input(), value=ONE_HUNDREDTH_ETH * 102 // 100
        )
        rpc.get_transaction_receipt.return_value = make_receipt()

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, ONE_HUNDREDTH_ETH)

        assert result.ok is True
        assert result.amount_mismatch is True
        assert result.actual_amount == ONE_HUNDREDTH_ETH * 102 // 100

    @pytest.mark.asyncio
    async def test_token_rail_without_transfer_is_mismatch(self, verifier, rpc, allowed):
        serve_token_join(rpc, logs=[])

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.amount_mismatch is True
        assert result.actual_amount is None

    @pytest.mark.asyncio
    async def test_token_transfer_must_come_from_sender(self, verifier, rpc, allowed):
        serve_token_join(rpc, logs=[transfer_log(STRANGER, ESCROW, FEE_UNITS)])

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.amount_mismatch is True
        assert result.actual_amount == FEE_UNITS

    @pytest.mark.asyncio
    async def test_token_transfer_wrong_amount(self, verifier, rpc, allowed):
        serve_token_join(rpc, logs=[transfer_log(PLAYER, ESCROW, 4_990_000)])

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.amount_mismatch is True
        assert result.actual_amount == 4_990_000

    @pytest.mark.asyncio
    async def test_matching_transfer_found_among_others(self, verifier, rpc, allowed):
        logs = [
            transfer_log(PLAYER, STRANGER, 1, log_index=0),
            transfer_log(PLAYER, ESCROW, FEE_UNITS, log_index=1),
        ]
        serve_token_join(rpc, logs=logs)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.amount_mismatch is False


class TestShortCircuit:

    @pytest.mark.asyncio
    async def test_missing_receipt(self, verifier, rpc, allowed):
        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)
        assert result.code == FailureCode.NOT_FOUND
        rpc.get_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_reverted_transaction(self, verifier, rpc, allowed):
        rpc.get_transaction_receipt.return_value = make_receipt(status=0)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.TRANSACTION_FAILED

    @pytest.mark.asyncio
    async def test_wrong_contract(self, verifier, rpc, allowed):
        rpc.get_transaction_receipt.return_value = make_receipt(to=USDC)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.WRONG_CONTRACT

    @pytest.mark.asyncio
    async def test_missing_input(self, verifier, rpc, allowed):
        rpc.get_transaction_receipt.return_value = make_receipt()
        rpc.get_transaction.return_value = make_tx(input_data="0x")

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.MISSING_INPUT

    @pytest.mark.asyncio
    async def test_other_escrow_function(self, verifier, rpc, allowed):
        rpc.get_transaction_receipt.return_value = make_receipt()
        rpc.get_transaction.return_value = make_tx(
            input_data=encode_escrow_call("createGame", "game-A", USDC, FEE_UNITS)
        )

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.NOT_EXPECTED_CALL
        assert result.diagnostics["decoded_function"] == "createGame"

    @pytest.mark.asyncio
    async def test_undecodable_input(self, verifier, rpc, allowed):
        rpc.get_transaction_receipt.return_value = make_receipt()
        rpc.get_transaction.return_value = make_tx(input_data="0xdeadbeef" + "00" * 32)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.NOT_EXPECTED_CALL

    @pytest.mark.asyncio
    async def test_rpc_outage(self, verifier, rpc, allowed):
        rpc.get_transaction_receipt.side_effect = AllEndpointsFailedError("base", [])

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.code == FailureCode.RPC_UNAVAILABLE


class TestEventCrossCheck:

    @pytest.mark.asyncio
    async def test_matching_event(self, verifier, rpc, allowed):
        serve_token_join(
            rpc, logs=[transfer_log(PLAYER, ESCROW, FEE_UNITS), player_joined_log("game-A")]
        )

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.event_cross_check == EventCrossCheck.MATCH

    @pytest.mark.asyncio
    async def test_mismatching_event_never_overrides_call_data(
        self, verifier, rpc, allowed, caplog
    ):
        serve_token_join(
            rpc, logs=[transfer_log(PLAYER, ESCROW, FEE_UNITS), player_joined_log("game-B")]
        )

        with caplog.at_level(logging.WARNING, logger=SECURITY_LOGGER_NAME):
            result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.ok is True
        assert result.event_cross_check == EventCrossCheck.MISMATCH
        assert any(
            getattr(r, "security_event", None) == "player_joined_event_mismatch"
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_absent_event(self, verifier, rpc, allowed):
        serve_token_join(rpc)

        result = await verifier.verify_join(TX_HASH, "game-A", allowed, FEE_UNITS)

        assert result.event_cross_check == EventCrossCheck.ABSENT


class TestEmptyResourceId:

    @pytest.mark.asyncio
    async def test_empty_resource_id_never_binds(self, verifier, rpc, allowed):
        serve_token_join(rpc, resource_id="")

        result = await verifier.verify_join(TX_HASH, "", allowed, FEE_UNITS)

        assert result.code == FailureCode.RESOURCE_ID_MISMATCH
        assert result.diagnostics["actual_resource_id"] == ""
