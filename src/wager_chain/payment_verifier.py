"""
Payment transfer verification.

Identifies who actually paid by reading ERC-20 Transfer logs from the
receipt. ``tx.from`` is deliberately ignored: under paymaster and
account-abstraction flows it is a bundler, not the economic payer.

Matching rules:
- log.address == expected token contract
- topics[0] == Transfer(address,address,uint256)
- to == expected recipient
- value == expected raw amount (exact, no tolerance)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .abi import TransferLog, parse_transfer_log
from .amounts import HumanAmount, scale_to_units, to_raw_units, token_decimals
from .config import WagerChainSettings
from .exceptions import RPCError
from .logging_config import mask_address
from .results import FailureCode, TransferResult, VerificationFailure, VerifiedTransfer
from .rpc_client import hex_to_int

logger = logging.getLogger(__name__)

DIAGNOSTIC_TRANSFER_LIMIT = 10


def collect_transfers(logs: Optional[List[Dict[str, Any]]], token_contract: str) -> List[TransferLog]:
    """All Transfer logs emitted by ``token_contract``, in log order."""
    token = token_contract.lower()
    transfers: List[TransferLog] = []
    for log in logs or []:
        if str(log.get("address") or "").lower() != token:
            continue
        transfer = parse_transfer_log(log)
        if transfer is not None:
            transfers.append(transfer)
    return transfers


def receipt_status(receipt: Dict[str, Any]) -> int:
    return hex_to_int(receipt.get("status"), default=0)


@dataclass(frozen=True)
class TransactionCheck:
    """Receipt-only existence check."""
    exists: bool
    confirmed: bool
    error: Optional[str] = None
    block_number: Optional[int] = None


class PaymentTransferVerifier:
    """Verifies ERC-20 payments against Transfer logs. Read-only."""

    def __init__(self, settings: WagerChainSettings, rpc_client: Any):
        self._settings = settings
        self._rpc = rpc_client

    async def verify(
        self,
        tx_hash: str,
        expected_recipient: str,
        expected_amount: HumanAmount,
        token_contract: Optional[str] = None,
        currency: str = "USDC",
        chain_id: Optional[int] = None,
        expected_decimals: Optional[int] = None,
    ) -> TransferResult:
        """
        Verify a claimed payment transaction.

        Args:
            tx_hash: Untrusted, client-supplied transaction hash
            expected_recipient: Address that must receive the transfer (escrow)
            expected_amount: Human amount, e.g. "5.00"
            token_contract: Token contract; defaults to the configured stable token
            currency: Currency profile used for unit conversion of the
                configured stable token
            chain_id: Chain the client claims the tx is on
            expected_decimals: Token decimals. When omitted and
                ``token_contract`` is given, inferred from the token address

        Returns:
            VerifiedTransfer with the authoritative payer, or VerificationFailure
        """
        stable_token = self._settings.require_stable_token_contract()
        token = (token_contract or stable_token).lower()
        recipient = expected_recipient.lower()
        if expected_decimals is not None:
            expected_raw = scale_to_units(expected_amount, expected_decimals)
        elif token_contract:
            expected_raw = scale_to_units(
                expected_amount, token_decimals(token, stable_token)
            )
        else:
            expected_raw = to_raw_units(expected_amount, currency)

        diagnostics: Dict[str, Any] = {
            "tx_hash": tx_hash,
            "tx_from": None,
            "tx_to": None,
            "receipt_status": None,
            "found_transfers": [],
            "expected_amount_raw": str(expected_raw),
            "expected_recipient": recipient,
            "expected_token": token,
        }

        if chain_id is not None and chain_id != self._settings.chain_id:
            return VerificationFailure(
                code=FailureCode.WRONG_CHAIN,
                error=f"Transaction is on chain {chain_id}, verifier serves {self._settings.chain_id}",
                diagnostics={**diagnostics, "chain_id": chain_id},
            )

        try:
            tx, receipt = await asyncio.gather(
                self._rpc.get_transaction(tx_hash),
                self._rpc.get_transaction_receipt(tx_hash),
            )
        except RPCError as e:
            logger.warning(f"RPC failure verifying payment {tx_hash}: {e}")
            return VerificationFailure(
                code=FailureCode.RPC_UNAVAILABLE,
                error=f"Failed to fetch transaction: {e.message}",
                diagnostics=diagnostics,
            )

        if not tx:
            return VerificationFailure(
                code=FailureCode.NOT_FOUND,
                error="Payment transaction not found",
                diagnostics=diagnostics,
            )

        diagnostics["tx_from"] = (tx.get("from") or "").lower() or None
        diagnostics["tx_to"] = (tx.get("to") or "").lower() or None

        if not receipt:
            return VerificationFailure(
                code=FailureCode.NOT_FOUND,
                error="Payment transaction receipt not found (transaction may be pending)",
                diagnostics=diagnostics,
            )

        status = receipt_status(receipt)
        diagnostics["receipt_status"] = status
        if status != 1:
            return VerificationFailure(
                code=FailureCode.RECEIPT_FAILED,
                error=f"Payment transaction receipt shows failure (status={status})",
                diagnostics=diagnostics,
            )

        transfers = collect_transfers(receipt.get("logs"), token)
        matching = [t for t in transfers if t.to_address == recipient and t.value == expected_raw]

        if not matching:
            diagnostics["found_transfers"] = [
                t.summary() for t in transfers[:DIAGNOSTIC_TRANSFER_LIMIT]
            ]
            diagnostics["parsed_transfer_count"] = len(transfers)
            diagnostics["matching_transfer_count"] = 0
            logger.info(
                f"No matching transfer in {tx_hash}: expected {expected_raw} to "
                f"{mask_address(recipient)}, found {len(transfers)} transfer(s)"
            )
            return VerificationFailure(
                code=FailureCode.NO_MATCHING_TRANSFER,
                error=(
                    f"No matching Transfer found. Expected: {expected_raw} to {recipient}, "
                    f"but found {len(transfers)} Transfer(s) from token contract "
                    f"(0 matched recipient+amount)."
                ),
                diagnostics=diagnostics,
            )

        chosen = matching[0]
        if len(matching) > 1:
            logger.warning(
                f"{len(matching)} qualifying transfers in {tx_hash}; using the first"
            )

        return VerifiedTransfer(
            payer_address=chosen.from_address,
            recipient_address=chosen.to_address,
            raw_value=chosen.value,
            token_contract=token,
            block_number=hex_to_int(receipt.get("blockNumber")),
            receipt_status=status,
            tx_from=diagnostics["tx_from"],
            tx_to=diagnostics["tx_to"],
            matching_transfers_count=len(matching),
        )

    async def check_transaction(self, tx_hash: str) -> TransactionCheck:
        """Does the transaction exist and did it succeed? Receipt only."""
        try:
            receipt = await self._rpc.get_transaction_receipt(tx_hash)
        except RPCError as e:
            return TransactionCheck(exists=False, confirmed=False, error=e.message)

        if not receipt:
            return TransactionCheck(
                exists=False, confirmed=False, error="Transaction not found or pending"
            )

        block_number = hex_to_int(receipt.get("blockNumber"))
        if receipt_status(receipt) != 1:
            return TransactionCheck(
                exists=True,
                confirmed=False,
                error="Transaction failed",
                block_number=block_number,
            )
        return TransactionCheck(exists=True, confirmed=True, block_number=block_number)
