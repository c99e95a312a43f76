"""Discriminated success/failure values returned by every verifier.

Callers branch on ``result.ok``. Failures always carry a diagnostics bundle
(observed vs. expected addresses/amounts, candidate transfer counts) that can
be shown to an operator without further RPC calls.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union


class FailureCode(str, Enum):
    """Why a verification failed."""
    NOT_FOUND = "not_found"
    RECEIPT_FAILED = "receipt_failed"
    TRANSACTION_FAILED = "transaction_failed"
    WRONG_CONTRACT = "wrong_contract"
    MISSING_INPUT = "missing_input"
    NOT_EXPECTED_CALL = "not_expected_call"
    RESOURCE_ID_MISMATCH = "resource_id_mismatch"
    PAYER_NOT_ALLOWED = "payer_not_allowed"
    NO_MATCHING_TRANSFER = "no_matching_transfer"
    ARGUMENT_MISMATCH = "argument_mismatch"
    WRONG_CHAIN = "wrong_chain"
    RPC_UNAVAILABLE = "rpc_unavailable"

    @property
    def category(self) -> str:
        return _CATEGORIES[self]

    @property
    def retryable(self) -> bool:
        """Only absence and transport failures can change on a later attempt."""
        return self in (FailureCode.NOT_FOUND, FailureCode.RPC_UNAVAILABLE)

    @property
    def security_significant(self) -> bool:
        return self.category == "binding_mismatch"


_CATEGORIES: Dict[FailureCode, str] = {
    FailureCode.NOT_FOUND: "not_found",
    FailureCode.RECEIPT_FAILED: "reverted",
    FailureCode.TRANSACTION_FAILED: "reverted",
    FailureCode.WRONG_CONTRACT: "decode",
    FailureCode.MISSING_INPUT: "decode",
    FailureCode.NOT_EXPECTED_CALL: "decode",
    FailureCode.RESOURCE_ID_MISMATCH: "binding_mismatch",
    FailureCode.PAYER_NOT_ALLOWED: "binding_mismatch",
    FailureCode.NO_MATCHING_TRANSFER: "amount",
    FailureCode.ARGUMENT_MISMATCH: "binding_mismatch",
    FailureCode.WRONG_CHAIN: "decode",
    FailureCode.RPC_UNAVAILABLE: "rpc",
}


@dataclass(frozen=True)
class VerificationFailure:
    """A terminal (or, for not-found/RPC, retry-later) verification failure."""
    code: FailureCode
    error: str
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @property
    def retryable(self) -> bool:
        return self.code.retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "code": self.code.value,
            "category": self.code.category,
            "error": self.error,
            "diagnostics": self.diagnostics,
        }


@dataclass(frozen=True)
class VerifiedTransfer:
    """A matching ERC-20 transfer found in a successful receipt.

    ``payer_address`` comes from the Transfer log, never from ``tx.from``.
    """
    payer_address: str
    recipient_address: str
    raw_value: int
    token_contract: str
    block_number: int
    receipt_status: int
    tx_from: Optional[str] = None
    tx_to: Optional[str] = None
    matching_transfers_count: int = 1

    @property
    def ok(self) -> bool:
        return True

    @property
    def ambiguous(self) -> bool:
        """More than one transfer in the transaction qualified."""
        return self.matching_transfers_count > 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["raw_value"] = str(self.raw_value)
        data["ok"] = True
        return data


class EventCrossCheck(str, Enum):
    """Outcome of the non-authoritative PlayerJoined event check."""
    MATCH = "match"
    MISMATCH = "mismatch"
    ABSENT = "absent"
    UNDECODABLE = "undecodable"


class PaymentRail(str, Enum):
    NATIVE = "native"
    TOKEN = "token"


@dataclass(frozen=True)
class VerifiedBinding:
    """A joinGame call bound to the expected resource and an allowed payer.

    ``amount_mismatch`` is a soft signal: callers must consult on-chain
    participation state before acting on a flagged transaction.
    """
    resource_id: str
    payer_address: str
    expected_amount: int
    actual_amount: Optional[int]
    amount_mismatch: bool
    payment_rail: PaymentRail
    block_number: int
    event_cross_check: EventCrossCheck = EventCrossCheck.ABSENT

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "resource_id": self.resource_id,
            "payer_address": self.payer_address,
            "expected_amount": str(self.expected_amount),
            "actual_amount": str(self.actual_amount) if self.actual_amount is not None else None,
            "amount_mismatch": self.amount_mismatch,
            "payment_rail": self.payment_rail.value,
            "block_number": self.block_number,
            "event_cross_check": self.event_cross_check.value,
        }


@dataclass(frozen=True)
class VerifiedRegistration:
    """An operator-submitted createGame transaction that matches expectations."""
    resource_id: str
    tx_hash: str
    currency_address: str
    entry_fee_units: int
    block_number: int

    @property
    def ok(self) -> bool:
        return True


TransferResult = Union[VerifiedTransfer, VerificationFailure]
BindingResult = Union[VerifiedBinding, VerificationFailure]
RegistrationCheckResult = Union[VerifiedRegistration, VerificationFailure]
