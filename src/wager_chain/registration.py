"""
Idempotent on-chain game registration.

The driver performs the single authorized write, ``createGame``. Retries are
safe: an "already exists" revert is resolved by reading on-chain state.

- Active on-chain        -> idempotent success (``IDEMPOTENT_SUCCESS``)
- Exists but not active  -> IdempotencyConflictError, never auto-resolved

Callers must serialize registration attempts per resource id; two racing
submissions can otherwise both pass pre-flight before either is mined.

Manual recovery: ``build_create_game_payload`` produces the exact arguments
for an operator to submit with an external tool, and
``verify_recovery_transaction`` checks the operator's transaction.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .abi import decode_escrow_call, encode_escrow_call
from .amounts import HumanAmount, currency_to_token_address, get_currency_profile, to_raw_units
from .config import WagerChainSettings
from .escrow import EscrowStateReader
from .exceptions import (
    ConfigurationError,
    ConfirmationTimeoutError,
    IdempotencyConflictError,
    InvalidAmountError,
    RPCError,
    SignerAddressMismatchError,
    TransactionFailedError,
    ValidationError,
)
from .logging_config import log_security_event, mask_address
from .payment_verifier import receipt_status
from .results import (
    FailureCode,
    RegistrationCheckResult,
    VerificationFailure,
    VerifiedRegistration,
)
from .rpc_client import hex_to_int
from .signer import LocalKeySigner, SignerPort, TransactionRequest
from .simulation import SimulationResult, TransactionSimulator

logger = logging.getLogger(__name__)

IDEMPOTENT_SUCCESS = "IDEMPOTENT_SUCCESS"
ALREADY_EXISTS_MARKER = "already exists"


@dataclass(frozen=True)
class RegistrationReceipt:
    """Outcome of a successful (or already-satisfied) registration."""
    resource_id: str
    tx_hash: str
    idempotent: bool = False
    block_number: Optional[int] = None
    explorer_url: Optional[str] = None


@dataclass(frozen=True)
class RecoveryPayload:
    """Exact createGame arguments for manual submission."""
    resource_id: str
    currency: str
    currency_address: str
    entry_fee: str
    entry_fee_units: str
    escrow_contract: str
    calldata: str
    function: str = "createGame"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _validate_registration_input(resource_id: str, amount: HumanAmount, currency: str) -> int:
    if not isinstance(resource_id, str) or not resource_id.strip():
        raise ValidationError("Invalid resource id: must be a non-empty string", field="resource_id")
    units = to_raw_units(amount, currency)
    if units <= 0:
        raise InvalidAmountError(amount, "entry fee must be greater than zero")
    return units


def build_create_game_payload(
    resource_id: str,
    amount: HumanAmount,
    currency: str,
    settings: WagerChainSettings,
) -> RecoveryPayload:
    """Derive the createGame arguments an operator would submit by hand."""
    units = _validate_registration_input(resource_id, amount, currency)
    profile = get_currency_profile(currency)
    currency_address = currency_to_token_address(currency, settings.stable_token_contract)
    return RecoveryPayload(
        resource_id=resource_id,
        currency=profile.symbol,
        currency_address=currency_address,
        entry_fee=str(amount),
        entry_fee_units=str(units),
        escrow_contract=settings.require_escrow_contract(),
        calldata=encode_escrow_call("createGame", resource_id, currency_address, units),
    )


class GameRegistrationDriver:
    """Registers games on the escrow contract using the authorized signer."""

    def __init__(
        self,
        settings: WagerChainSettings,
        rpc_client: Any,
        signer: Optional[SignerPort] = None,
        escrow_reader: Optional[EscrowStateReader] = None,
        simulator: Optional[TransactionSimulator] = None,
    ):
        self._settings = settings
        self._escrow = settings.require_escrow_contract()
        self._rpc = rpc_client
        self._signer = signer or LocalKeySigner.from_settings(settings)

        # An injected signer still has to be the configured principal
        expected_address = settings.signer_address
        if not expected_address:
            raise ConfigurationError(
                "Signer address not configured", setting="WAGER_SIGNER_ADDRESS"
            )
        if self._signer.address.lower() != expected_address:
            raise SignerAddressMismatchError(
                expected=expected_address, derived=self._signer.address.lower()
            )

        self._reader = escrow_reader or EscrowStateReader(settings, rpc_client)
        self._simulator = simulator or TransactionSimulator(rpc_client)

    async def register_game(
        self,
        resource_id: str,
        amount: HumanAmount,
        currency: str,
    ) -> RegistrationReceipt:
        """
        Create the game on-chain, or confirm it already exists and is active.

        Args:
            resource_id: Game id to register
            amount: Human entry fee, e.g. "5.00"
            currency: ETH, BASE_ETH or USDC

        Returns:
            RegistrationReceipt with the tx hash, or ``IDEMPOTENT_SUCCESS``

        Raises:
            ValidationError: On empty resource id or non-positive amount
            TransactionFailedError: If the write reverts for any other reason
            ConfirmationTimeoutError: If no receipt appears in time
            IdempotencyConflictError: If the game exists but is not active
        """
        units = _validate_registration_input(resource_id, amount, currency)
        currency_address = currency_to_token_address(
            currency, self._settings.stable_token_contract
        )
        data = encode_escrow_call("createGame", resource_id, currency_address, units)
        call = {"from": self._signer.address, "to": self._escrow, "data": data}

        logger.info(
            f"Registering game {resource_id!r}: {units} units of {currency} "
            f"(currency={mask_address(currency_address)})"
        )

        preflight = await self._simulator.simulate(call)
        if preflight.result == SimulationResult.REVERTED:
            if preflight.mentions(ALREADY_EXISTS_MARKER):
                return await self._resolve_already_exists(resource_id)
            raise TransactionFailedError(
                f"createGame for {resource_id!r} would revert",
                revert_reason=preflight.revert_reason,
            )
        if not preflight.will_succeed:
            logger.warning(
                f"Pre-flight for {resource_id!r} inconclusive ({preflight.result.value}); "
                f"continuing with gas estimation"
            )

        try:
            tx_request = await self._build_transaction(call)
            signed_tx = await self._signer.sign_transaction(tx_request)
            tx_hash = await self._rpc.send_raw_transaction(signed_tx)
        except RPCError as e:
            if ALREADY_EXISTS_MARKER in e.full_text().lower():
                return await self._resolve_already_exists(resource_id)
            raise

        logger.info(f"createGame submitted for {resource_id!r}: {tx_hash}")
        receipt = await self._wait_for_confirmation(tx_hash)
        block_number = hex_to_int(receipt.get("blockNumber"))

        if receipt_status(receipt) != 1:
            replay = await self._simulator.replay_reverted(
                {**call, "input": data}, block_number
            )
            if replay.mentions(ALREADY_EXISTS_MARKER):
                return await self._resolve_already_exists(resource_id)
            raise TransactionFailedError(
                f"createGame for {resource_id!r} reverted on-chain",
                tx_hash=tx_hash,
                revert_reason=replay.revert_reason,
            )

        logger.info(f"Game {resource_id!r} registered in block {block_number}")
        return RegistrationReceipt(
            resource_id=resource_id,
            tx_hash=tx_hash,
            block_number=block_number,
            explorer_url=self._settings.tx_explorer_url(tx_hash),
        )

    async def _resolve_already_exists(self, resource_id: str) -> RegistrationReceipt:
        """The contract says the game exists; trust only an independent read."""
        game = await self._reader.get_game(resource_id)
        if game.is_active:
            logger.info(
                f"Game {resource_id!r} already exists and is active on contract (idempotent)"
            )
            return RegistrationReceipt(
                resource_id=resource_id,
                tx_hash=IDEMPOTENT_SUCCESS,
                idempotent=True,
            )

        log_security_event(
            "registration_idempotency_conflict",
            resource_id_claimed=resource_id,
            on_chain_state=game.to_dict(),
        )
        raise IdempotencyConflictError(resource_id, on_chain_state=game.to_dict())

    async def _build_transaction(self, call: Dict[str, Any]) -> TransactionRequest:
        gas_estimate = await self._rpc.estimate_gas(call)
        gas_limit = gas_estimate * (100 + self._settings.gas_limit_buffer_percent) // 100
        gas_price = await self._rpc.get_gas_price()
        priority_fee = await self._rpc.get_max_priority_fee()
        nonce = await self._rpc.get_nonce(self._signer.address, "pending")

        return TransactionRequest(
            chain_id=self._settings.chain_id,
            to_address=self._escrow,
            data=call["data"],
            value=0,
            gas_limit=gas_limit,
            max_fee_per_gas=gas_price + priority_fee,
            max_priority_fee_per_gas=priority_fee,
            nonce=nonce,
        )

    async def _wait_for_confirmation(self, tx_hash: str) -> Dict[str, Any]:
        """Poll until mined with the required confirmations, or time out."""
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        timeout = self._settings.confirmation_timeout_seconds
        poll_interval = self._settings.confirmation_poll_interval_seconds
        required = self._settings.confirmations_required

        while True:
            if loop.time() - start_time > timeout:
                raise ConfirmationTimeoutError(tx_hash, timeout)

            try:
                receipt = await self._rpc.get_transaction_receipt(tx_hash)
                if receipt:
                    if receipt_status(receipt) != 1 or required <= 1:
                        return receipt
                    tx_block = hex_to_int(receipt.get("blockNumber"))
                    current_block = await self._rpc.get_block_number()
                    confirmations = current_block - tx_block + 1
                    if confirmations >= required:
                        logger.info(
                            f"Transaction {tx_hash} confirmed with {confirmations} confirmations"
                        )
                        return receipt
                    logger.debug(
                        f"Transaction {tx_hash} has {confirmations} confirmations, "
                        f"waiting for {required}"
                    )
            except RPCError as e:
                logger.warning(f"Receipt poll for {tx_hash} failed: {e}")

            await asyncio.sleep(poll_interval)

    async def verify_recovery_transaction(
        self,
        tx_hash: str,
        resource_id: str,
        amount: HumanAmount,
        currency: str,
    ) -> RegistrationCheckResult:
        """
        Check an operator-submitted createGame transaction.

        Expected arguments are re-derived here; nothing from the operator's
        transaction is trusted until it matches.
        """
        expected = build_create_game_payload(resource_id, amount, currency, self._settings)
        diagnostics: Dict[str, Any] = {"tx_hash": tx_hash, "expected": expected.to_dict()}

        try:
            tx = await self._rpc.get_transaction(tx_hash)
        except RPCError as e:
            return VerificationFailure(FailureCode.RPC_UNAVAILABLE, e.message, diagnostics)
        if not tx:
            return VerificationFailure(
                FailureCode.NOT_FOUND, "Recovery transaction not found", diagnostics
            )

        tx_to = (tx.get("to") or "").lower()
        diagnostics["tx_to"] = tx_to or None
        if tx_to != self._escrow:
            return VerificationFailure(
                FailureCode.WRONG_CONTRACT,
                "Recovery transaction not sent to escrow contract",
                diagnostics,
            )

        decoded = decode_escrow_call(tx.get("input") or tx.get("data"))
        if decoded is None or decoded.name != "createGame":
            diagnostics["decoded_function"] = decoded.name if decoded else None
            return VerificationFailure(
                FailureCode.NOT_EXPECTED_CALL,
                "Recovery transaction is not a createGame call",
                diagnostics,
            )

        actual_id, actual_currency, actual_units = decoded.args
        diagnostics["actual"] = {
            "resource_id": actual_id,
            "currency_address": actual_currency,
            "entry_fee_units": str(actual_units),
        }
        if (
            actual_id != expected.resource_id
            or actual_currency != expected.currency_address
            or str(actual_units) != expected.entry_fee_units
        ):
            return VerificationFailure(
                FailureCode.ARGUMENT_MISMATCH,
                "Recovery transaction arguments do not match the expected createGame call",
                diagnostics,
            )

        try:
            receipt = await self._rpc.get_transaction_receipt(tx_hash)
        except RPCError as e:
            return VerificationFailure(FailureCode.RPC_UNAVAILABLE, e.message, diagnostics)
        if not receipt:
            return VerificationFailure(
                FailureCode.NOT_FOUND, "Recovery transaction not yet mined", diagnostics
            )
        if receipt_status(receipt) != 1:
            return VerificationFailure(
                FailureCode.TRANSACTION_FAILED,
                "Recovery transaction reverted on-chain",
                diagnostics,
            )

        return VerifiedRegistration(
            resource_id=actual_id,
            tx_hash=tx_hash,
            currency_address=actual_currency,
            entry_fee_units=int(actual_units),
            block_number=hex_to_int(receipt.get("blockNumber")),
        )
