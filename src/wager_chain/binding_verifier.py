"""
Contract-call binding verification for escrow joins.

SECURITY: a payment for game A must never be accepted as proof for game B.
The resource id is taken from the decoded call data of the transaction
itself, never from logs or client input, and compared by exact string
equality. The payer must belong to the identity claiming the join.

Steps (short-circuit on first failure):
1. Receipt exists and succeeded
2. Receipt targets the escrow contract
3. Transaction carries call data
4. Call data decodes as joinGame
5. Decoded resource id == expected resource id
6. tx.from is in the allowed payer set
7. Amount check on the native or token rail (soft flag)
8. PlayerJoined cross-check (diagnostic only)
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .abi import PLAYER_JOINED_EVENT_TOPIC, decode_escrow_call, keccak_hex
from .amounts import parse_raw_units
from .config import WagerChainSettings
from .exceptions import RPCError
from .logging_config import log_security_event, mask_address, set_resource_context
from .payment_verifier import collect_transfers, receipt_status
from .results import (
    BindingResult,
    EventCrossCheck,
    FailureCode,
    PaymentRail,
    VerificationFailure,
    VerifiedBinding,
)
from .rpc_client import hex_to_int
from .wallets import AllowedPayerSet

logger = logging.getLogger(__name__)

EXPECTED_FUNCTION = "joinGame"


class ContractCallBindingVerifier:
    """Binds a joinGame transaction to one resource and one allowed payer."""

    def __init__(self, settings: WagerChainSettings, rpc_client: Any):
        self._escrow = settings.require_escrow_contract()
        self._stable_token = settings.require_stable_token_contract()
        self._tolerance_bps = settings.native_amount_tolerance_bps
        self._rpc = rpc_client

    async def verify_join(
        self,
        tx_hash: str,
        expected_resource_id: str,
        allowed_payers: Union[AllowedPayerSet, Iterable[str]],
        expected_amount: Union[int, str],
    ) -> BindingResult:
        """
        Verify that ``tx_hash`` is a successful joinGame for the expected
        resource, sent by an allowed payer.

        Args:
            tx_hash: Untrusted, client-supplied transaction hash
            expected_resource_id: Resource the caller is claiming access to
            allowed_payers: Addresses linked to the claiming identity
            expected_amount: Expected raw amount (wei or token units)

        Returns:
            VerifiedBinding (possibly with ``amount_mismatch`` set) or
            VerificationFailure
        """
        set_resource_context(expected_resource_id)
        expected_raw = parse_raw_units(expected_amount)
        allowed = _as_payer_set(allowed_payers)
        diagnostics: Dict[str, Any] = {
            "tx_hash": tx_hash,
            "expected_resource_id": expected_resource_id,
            "expected_amount_raw": str(expected_raw),
            "escrow_contract": self._escrow,
        }

        try:
            receipt = await self._rpc.get_transaction_receipt(tx_hash)
        except RPCError as e:
            return self._rpc_failure(tx_hash, e, diagnostics)

        # 1. Receipt
        if not receipt:
            return VerificationFailure(
                code=FailureCode.NOT_FOUND,
                error="Transaction receipt not found",
                diagnostics=diagnostics,
            )
        status = receipt_status(receipt)
        diagnostics["receipt_status"] = status
        if status != 1:
            return VerificationFailure(
                code=FailureCode.TRANSACTION_FAILED,
                error="Transaction failed on-chain",
                diagnostics=diagnostics,
            )

        # 2. Destination
        receipt_to = (receipt.get("to") or "").lower()
        diagnostics["tx_to"] = receipt_to or None
        if receipt_to != self._escrow:
            return VerificationFailure(
                code=FailureCode.WRONG_CONTRACT,
                error="Transaction not sent to escrow contract",
                diagnostics=diagnostics,
            )

        # 3. Call data
        try:
            tx = await self._rpc.get_transaction(tx_hash)
        except RPCError as e:
            return self._rpc_failure(tx_hash, e, diagnostics)
        if not tx:
            return VerificationFailure(
                code=FailureCode.NOT_FOUND,
                error="Transaction not found",
                diagnostics=diagnostics,
            )

        tx_from = (tx.get("from") or "").lower()
        diagnostics["tx_from"] = tx_from or None
        input_data = tx.get("input") or tx.get("data") or ""
        if len(input_data) < 10:
            return VerificationFailure(
                code=FailureCode.MISSING_INPUT,
                error="Transaction input data missing or invalid",
                diagnostics=diagnostics,
            )

        # 4. Function identity
        decoded = decode_escrow_call(input_data)
        if decoded is None:
            diagnostics["selector"] = input_data[:10]
            return VerificationFailure(
                code=FailureCode.NOT_EXPECTED_CALL,
                error="Failed to decode transaction input against the escrow interface",
                diagnostics=diagnostics,
            )
        diagnostics["decoded_function"] = decoded.name
        if decoded.name != EXPECTED_FUNCTION:
            return VerificationFailure(
                code=FailureCode.NOT_EXPECTED_CALL,
                error=f"Transaction is not a {EXPECTED_FUNCTION} call (found: {decoded.name})",
                diagnostics=diagnostics,
            )

        # 5. Anti-replay: the resource id the payer actually paid into
        actual_resource_id = decoded.args[0]
        diagnostics["actual_resource_id"] = actual_resource_id
        if not actual_resource_id:
            return VerificationFailure(
                code=FailureCode.RESOURCE_ID_MISMATCH,
                error="Transaction resource id parameter missing or empty",
                diagnostics=diagnostics,
            )
        if actual_resource_id != expected_resource_id:
            log_security_event(
                "resource_id_mismatch",
                tx_hash=tx_hash,
                expected_resource_id=expected_resource_id,
                actual_resource_id=actual_resource_id,
                payer=mask_address(tx_from),
            )
            return VerificationFailure(
                code=FailureCode.RESOURCE_ID_MISMATCH,
                error=(
                    f"Transaction resource id mismatch: expected {expected_resource_id!r}, "
                    f"got {actual_resource_id!r}"
                ),
                diagnostics=diagnostics,
            )

        # 6. Payer binding (empty set fails closed)
        diagnostics["allowed_payer_count"] = len(allowed)
        if not tx_from or not allowed.contains(tx_from):
            log_security_event(
                "payer_not_allowed",
                tx_hash=tx_hash,
                payer=mask_address(tx_from),
                allowed_payer_count=len(allowed),
                claimed_identity=allowed.identity_id,
            )
            return VerificationFailure(
                code=FailureCode.PAYER_NOT_ALLOWED,
                error="Payment sent from wallet not linked to this account",
                diagnostics=diagnostics,
            )

        # 7. Amount
        logs = receipt.get("logs") or []
        tx_value = hex_to_int(tx.get("value"))
        if tx_value > 0:
            rail = PaymentRail.NATIVE
            actual_amount: Optional[int] = tx_value
            amount_mismatch = not self._within_native_tolerance(tx_value, expected_raw)
        else:
            rail = PaymentRail.TOKEN
            actual_amount, amount_mismatch = self._check_token_transfer(
                logs, tx_from, expected_raw
            )

        if amount_mismatch:
            logger.warning(
                f"Amount mismatch on {rail.value} rail for {tx_hash}: "
                f"expected {expected_raw}, observed {actual_amount}"
            )

        # 8. Event cross-check
        cross_check = self._cross_check_event(logs, expected_resource_id)
        if cross_check == EventCrossCheck.MISMATCH:
            log_security_event(
                "player_joined_event_mismatch",
                tx_hash=tx_hash,
                expected_resource_id=expected_resource_id,
            )

        return VerifiedBinding(
            resource_id=actual_resource_id,
            payer_address=tx_from,
            expected_amount=expected_raw,
            actual_amount=actual_amount,
            amount_mismatch=amount_mismatch,
            payment_rail=rail,
            block_number=hex_to_int(receipt.get("blockNumber")),
            event_cross_check=cross_check,
        )

    def _within_native_tolerance(self, actual: int, expected: int) -> bool:
        difference = abs(actual - expected)
        return difference * 10_000 <= expected * self._tolerance_bps

    def _check_token_transfer(
        self,
        logs: List[Dict[str, Any]],
        tx_from: str,
        expected_raw: int,
    ) -> tuple[Optional[int], bool]:
        """Return ``(actual_amount, mismatch)`` for the stable-token rail."""
        transfers = collect_transfers(logs, self._stable_token)
        for transfer in transfers:
            if (
                transfer.from_address == tx_from
                and transfer.to_address == self._escrow
                and transfer.value == expected_raw
            ):
                return transfer.value, False

        # Report the closest thing we saw: a transfer into escrow, else any
        into_escrow = [t for t in transfers if t.to_address == self._escrow]
        observed = into_escrow or transfers
        return (observed[0].value if observed else None), True

    def _cross_check_event(
        self,
        logs: List[Dict[str, Any]],
        expected_resource_id: str,
    ) -> EventCrossCheck:
        """Compare the indexed resource id of PlayerJoined. Never a veto."""
        for log in logs:
            topics = log.get("topics") or []
            if not topics or str(topics[0]).lower() != PLAYER_JOINED_EVENT_TOPIC:
                continue
            if str(log.get("address") or "").lower() != self._escrow:
                continue
            if len(topics) < 2:
                return EventCrossCheck.UNDECODABLE
            # Indexed strings are stored as keccak256 of their bytes
            if str(topics[1]).lower() == keccak_hex(expected_resource_id):
                return EventCrossCheck.MATCH
            return EventCrossCheck.MISMATCH
        return EventCrossCheck.ABSENT

    def _rpc_failure(
        self,
        tx_hash: str,
        error: RPCError,
        diagnostics: Dict[str, Any],
    ) -> VerificationFailure:
        logger.warning(f"RPC failure verifying join {tx_hash}: {error}")
        return VerificationFailure(
            code=FailureCode.RPC_UNAVAILABLE,
            error=f"Failed to fetch transaction: {error.message}",
            diagnostics=diagnostics,
        )


def _as_payer_set(allowed: Union[AllowedPayerSet, Iterable[str]]) -> AllowedPayerSet:
    if isinstance(allowed, AllowedPayerSet):
        return allowed
    return AllowedPayerSet.build("", allowed)
