"""Exception hierarchy for wager-chain.

Only configuration errors, write-path failures and genuinely unexpected faults
are raised. Verifiers report expected failures as
:class:`wager_chain.results.VerificationFailure` values instead.

All exceptions have:
- error_code: Machine-readable error code (e.g., "CONFIGURATION_ERROR")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to a response/diagnostics payload
"""
from __future__ import annotations

from typing import Any, List, Optional, Tuple


class WagerChainError(Exception):
    """Base exception for all wager-chain errors."""

    error_code: str = "WAGER_CHAIN_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration (fatal, never retried)
# =============================================================================

class ConfigurationError(WagerChainError):
    """Missing or mismatched signer / contract configuration."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        setting: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if setting:
            details["setting"] = setting
        super().__init__(message, details=details)


class SignerAddressMismatchError(ConfigurationError):
    """Private key does not derive the configured authorized address."""

    error_code = "SIGNER_ADDRESS_MISMATCH"

    def __init__(self, expected: str, derived: str) -> None:
        super().__init__(
            f"Signer address mismatch: expected {expected}, got {derived}. "
            f"The configured private key does not correspond to the configured signer address.",
            setting="WAGER_SIGNER_PRIVATE_KEY",
            details={"expected": expected, "derived": derived},
        )


# =============================================================================
# Input validation
# =============================================================================

class ValidationError(WagerChainError):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class InvalidAmountError(ValidationError):
    """Amount is negative, non-finite or not a decimal number."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount: Any, reason: str) -> None:
        super().__init__(
            f"Invalid amount {amount!r}: {reason}",
            field="amount",
            details={"amount": str(amount)},
        )


class UnsupportedCurrencyError(ValidationError):
    """Currency has no known unit profile."""

    error_code = "UNSUPPORTED_CURRENCY"

    def __init__(self, currency: str, supported: List[str]) -> None:
        super().__init__(
            f"Unsupported currency: {currency}. Supported: {', '.join(supported)}",
            field="currency",
            details={"currency": currency, "supported": supported},
        )


# =============================================================================
# RPC
# =============================================================================

class RPCError(WagerChainError):
    """JSON-RPC error returned by a node."""

    error_code = "RPC_ERROR"

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None) -> None:
        self.code = code
        self.data = data
        details: dict[str, Any] = {}
        if code is not None:
            details["rpc_code"] = code
        if data is not None:
            details["rpc_data"] = data
        super().__init__(message, details=details)

    def full_text(self) -> str:
        """Message plus any revert data, for reason matching."""
        if self.data is None:
            return self.message
        return f"{self.message} {self.data}"


class AllEndpointsFailedError(RPCError):
    """Raised when every configured RPC endpoint failed."""

    error_code = "RPC_UNAVAILABLE"

    def __init__(self, chain: str, errors: List[Tuple[str, str]]) -> None:
        self.chain = chain
        self.errors = errors
        error_summary = "; ".join([f"{url}: {err}" for url, err in errors[:3]])
        super().__init__(f"All RPC endpoints failed for {chain}. Errors: {error_summary}")


class ChainIDMismatchError(ConfigurationError):
    """RPC endpoint serves a different chain than configured."""

    error_code = "CHAIN_ID_MISMATCH"

    def __init__(self, chain: str, expected: int, received: int) -> None:
        self.chain = chain
        self.expected = expected
        self.received = received
        super().__init__(
            f"Chain ID mismatch for {chain}: expected {expected}, got {received}",
            setting="WAGER_RPC_URL",
            details={"expected": expected, "received": received},
        )


# =============================================================================
# Write path
# =============================================================================

class TransactionFailedError(WagerChainError):
    """A submitted transaction reverted on-chain."""

    error_code = "TRANSACTION_FAILED"

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        revert_reason: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if tx_hash:
            details["tx_hash"] = tx_hash
        if revert_reason:
            details["revert_reason"] = revert_reason
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason
        super().__init__(message, details=details)


class ConfirmationTimeoutError(WagerChainError):
    """Transaction was not mined within the confirmation window."""

    error_code = "CONFIRMATION_TIMEOUT"

    def __init__(self, tx_hash: str, timeout_seconds: float) -> None:
        self.tx_hash = tx_hash
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {timeout_seconds}s",
            details={"tx_hash": tx_hash, "timeout_seconds": timeout_seconds},
        )


class IdempotencyConflictError(WagerChainError):
    """Contract reports the resource exists, but it is not active.

    Requires operator intervention; never resolved automatically.
    """

    error_code = "IDEMPOTENCY_CONFLICT"

    def __init__(self, resource_id: str, on_chain_state: Optional[dict[str, Any]] = None) -> None:
        self.resource_id = resource_id
        details: dict[str, Any] = {"resource_id": resource_id}
        if on_chain_state is not None:
            details["on_chain_state"] = on_chain_state
        super().__init__(
            f"Game {resource_id!r} exists on contract but is not active",
            details=details,
        )
