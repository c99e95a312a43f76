"""On-chain payment verification and idempotent escrow writes."""

from .amounts import (
    CURRENCY_PROFILES,
    CurrencyProfile,
    MoneyAmount,
    currency_to_token_address,
    get_currency_profile,
    scale_to_units,
    to_human_amount,
    to_raw_units,
    token_decimals,
)
from .binding_verifier import ContractCallBindingVerifier
from .config import WagerChainSettings, get_settings
from .custody import AssetCustodyVerifier, CustodyReport, NftRef
from .escrow import EscrowStateReader, GameLifecycle, OnChainGame, Participant
from .exceptions import (
    AllEndpointsFailedError,
    ChainIDMismatchError,
    ConfigurationError,
    ConfirmationTimeoutError,
    IdempotencyConflictError,
    InvalidAmountError,
    RPCError,
    SignerAddressMismatchError,
    TransactionFailedError,
    UnsupportedCurrencyError,
    ValidationError,
    WagerChainError,
)
from .payment_verifier import PaymentTransferVerifier, TransactionCheck
from .registration import (
    IDEMPOTENT_SUCCESS,
    GameRegistrationDriver,
    RecoveryPayload,
    RegistrationReceipt,
    build_create_game_payload,
)
from .results import (
    EventCrossCheck,
    FailureCode,
    PaymentRail,
    VerificationFailure,
    VerifiedBinding,
    VerifiedRegistration,
    VerifiedTransfer,
)
from .rpc_client import ChainRPCClient
from .signer import LocalKeySigner, SignerPort, TransactionRequest
from .simulation import SimulationOutput, SimulationResult, TransactionSimulator
from .wallets import (
    AllowedPayerSet,
    IdentityDirectory,
    IdentityRecord,
    NeynarIdentityDirectory,
    WalletAddressResolver,
)

__all__ = [
    "CURRENCY_PROFILES",
    "CurrencyProfile",
    "MoneyAmount",
    "currency_to_token_address",
    "get_currency_profile",
    "to_human_amount",
    "to_raw_units",
    "scale_to_units",
    "token_decimals",
    "ContractCallBindingVerifier",
    "WagerChainSettings",
    "get_settings",
    "AssetCustodyVerifier",
    "CustodyReport",
    "NftRef",
    "EscrowStateReader",
    "GameLifecycle",
    "OnChainGame",
    "Participant",
    "AllEndpointsFailedError",
    "ChainIDMismatchError",
    "ConfigurationError",
    "ConfirmationTimeoutError",
    "IdempotencyConflictError",
    "InvalidAmountError",
    "RPCError",
    "SignerAddressMismatchError",
    "TransactionFailedError",
    "UnsupportedCurrencyError",
    "ValidationError",
    "WagerChainError",
    "PaymentTransferVerifier",
    "TransactionCheck",
    "IDEMPOTENT_SUCCESS",
    "GameRegistrationDriver",
    "RecoveryPayload",
    "RegistrationReceipt",
    "build_create_game_payload",
    "EventCrossCheck",
    "FailureCode",
    "PaymentRail",
    "VerificationFailure",
    "VerifiedBinding",
    "VerifiedRegistration",
    "VerifiedTransfer",
    "ChainRPCClient",
    "LocalKeySigner",
    "SignerPort",
    "TransactionRequest",
    "SimulationOutput",
    "SimulationResult",
    "TransactionSimulator",
    "AllowedPayerSet",
    "IdentityDirectory",
    "IdentityRecord",
    "NeynarIdentityDirectory",
    "WalletAddressResolver",
]
