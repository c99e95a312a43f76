"""Authorized signer for escrow writes.

Exactly one principal may write to the escrow contract. The private key is
loaded from settings and its derived address is checked against the configured
authorized address before any transaction can be signed.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from web3 import Web3

from .config import WagerChainSettings
from .exceptions import ConfigurationError, SignerAddressMismatchError
from .logging_config import mask_address

logger = logging.getLogger(__name__)


@dataclass
class TransactionRequest:
    """An EIP-1559 transaction to be signed and submitted."""
    chain_id: int
    to_address: str
    data: str = "0x"
    value: int = 0
    gas_limit: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    nonce: Optional[int] = None

    def to_eth_account_dict(self) -> dict:
        if self.gas_limit is None or self.nonce is None:
            raise ValueError("gas_limit and nonce must be set before signing")
        return {
            "type": 2,
            "chainId": self.chain_id,
            "to": Web3.to_checksum_address(self.to_address),
            "value": self.value,
            "data": self.data,
            "gas": self.gas_limit,
            "maxFeePerGas": self.max_fee_per_gas or 0,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas or 0,
            "nonce": self.nonce,
        }


class SignerPort(ABC):
    """Abstract interface for the authorized write signer."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Lower-cased address of the signing principal."""

    @abstractmethod
    async def sign_transaction(self, tx: TransactionRequest) -> str:
        """Sign a transaction and return the signed tx hex."""


class LocalKeySigner(SignerPort):
    """Signs with a private key held in process memory."""

    def __init__(self, private_key: str, expected_address: str):
        if not private_key:
            raise ConfigurationError(
                "Signer private key not configured", setting="WAGER_SIGNER_PRIVATE_KEY"
            )
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            raise ConfigurationError(
                f"Signer private key is malformed: {type(e).__name__}",
                setting="WAGER_SIGNER_PRIVATE_KEY",
            ) from None

        derived = self._account.address.lower()
        expected = (expected_address or "").lower()
        if derived != expected:
            raise SignerAddressMismatchError(expected=expected, derived=derived)

        self._address = derived
        logger.info(f"Authorized signer loaded: {mask_address(derived)}")

    @classmethod
    def from_settings(cls, settings: WagerChainSettings) -> "LocalKeySigner":
        private_key, expected_address = settings.require_signer()
        return cls(private_key, expected_address)

    @property
    def address(self) -> str:
        return self._address

    async def sign_transaction(self, tx: TransactionRequest) -> str:
        signed = self._account.sign_transaction(tx.to_eth_account_dict())
        return Web3.to_hex(signed.raw_transaction)
