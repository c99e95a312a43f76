"""Canonical configuration surface for wager-chain.

A single immutable ``WagerChainSettings`` is built once at startup and handed
to every component. Nothing in the package reads the environment directly.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

BASE_CHAIN_ID = 8453
BASE_RPC_URL = "https://mainnet.base.org"
BASE_USDC_ADDRESS = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
BASE_EXPLORER_URL = "https://basescan.org"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def is_hex_address(value: str) -> bool:
    """Check for a 0x-prefixed 20-byte hex string (checksum not enforced)."""
    return bool(value) and bool(_ADDRESS_RE.match(value))


class WagerChainSettings(BaseSettings):
    """Immutable configuration for the on-chain verification layer."""

    model_config = SettingsConfigDict(
        env_prefix="WAGER_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    environment: Literal["dev", "staging", "prod"] = "dev"

    # Chain
    chain_name: str = "base"
    chain_id: int = BASE_CHAIN_ID
    rpc_url: str = BASE_RPC_URL
    # Comma-separated
    rpc_fallback_urls: str = ""
    rpc_timeout_seconds: float = 30.0
    validate_chain_id: bool = True
    explorer_url: str = BASE_EXPLORER_URL

    # Contracts
    escrow_contract: str = ""
    stable_token_contract: str = BASE_USDC_ADDRESS

    # Authorized signer (the only principal allowed to write)
    signer_private_key: SecretStr = SecretStr("")
    signer_address: str = ""

    # Wallet that holds prize assets before distribution
    payout_wallet_address: str = ""

    # Confirmation polling
    confirmation_timeout_seconds: float = 120.0
    confirmation_poll_interval_seconds: float = 2.0
    confirmations_required: int = 1
    gas_limit_buffer_percent: int = 20

    # Native-coin joins may quote fee-inclusive amounts; 100 bps = 1%
    native_amount_tolerance_bps: int = 100

    # Identity directory (Neynar)
    identity_api_base: str = "https://api.neynar.com"
    identity_api_key: SecretStr = SecretStr("")
    identity_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator(
        "escrow_contract",
        "stable_token_contract",
        "signer_address",
        "payout_wallet_address",
    )
    @classmethod
    def normalize_address(cls, v: str, info) -> str:
        v = (v or "").strip()
        if not v:
            return ""
        if not is_hex_address(v):
            raise ValueError(f"{info.field_name} is not a valid EVM address: {v!r}")
        return v.lower()

    @field_validator("native_amount_tolerance_bps")
    @classmethod
    def validate_tolerance(cls, v: int) -> int:
        if v < 0 or v > 100:
            raise ValueError("native_amount_tolerance_bps must be between 0 and 100 (max 1%)")
        return v

    @field_validator("confirmations_required")
    @classmethod
    def validate_confirmations(cls, v: int) -> int:
        if v < 1:
            raise ValueError("confirmations_required must be at least 1")
        return v

    @model_validator(mode="after")
    def check_production_requirements(self) -> "WagerChainSettings":
        if self.environment != "prod":
            return self
        missing = [
            name
            for name, value in (
                ("escrow_contract", self.escrow_contract),
                ("signer_address", self.signer_address),
                ("signer_private_key", self.signer_private_key.get_secret_value()),
                ("payout_wallet_address", self.payout_wallet_address),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"Missing required production settings: {', '.join(missing)}"
            )
        return self

    @property
    def rpc_urls(self) -> List[str]:
        """Primary RPC URL followed by fallbacks, deduplicated in order."""
        urls: List[str] = []
        fallbacks = [u.strip() for u in self.rpc_fallback_urls.split(",")]
        for url in [self.rpc_url, *fallbacks]:
            if url and url not in urls:
                urls.append(url)
        return urls

    def require_escrow_contract(self) -> str:
        if not self.escrow_contract:
            raise ConfigurationError(
                "Escrow contract not configured", setting="WAGER_ESCROW_CONTRACT"
            )
        return self.escrow_contract

    def require_stable_token_contract(self) -> str:
        if not self.stable_token_contract:
            raise ConfigurationError(
                "Stable token contract not configured",
                setting="WAGER_STABLE_TOKEN_CONTRACT",
            )
        return self.stable_token_contract

    def require_signer(self) -> tuple[str, str]:
        """Return ``(private_key, expected_address)`` or raise."""
        key = self.signer_private_key.get_secret_value()
        if not key:
            raise ConfigurationError(
                "Signer private key not configured", setting="WAGER_SIGNER_PRIVATE_KEY"
            )
        if not self.signer_address:
            raise ConfigurationError(
                "Signer address not configured", setting="WAGER_SIGNER_ADDRESS"
            )
        return key, self.signer_address

    def require_payout_wallet(self) -> str:
        if not self.payout_wallet_address:
            raise ConfigurationError(
                "Payout wallet address not configured",
                setting="WAGER_PAYOUT_WALLET_ADDRESS",
            )
        return self.payout_wallet_address

    def tx_explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


@lru_cache
def get_settings() -> WagerChainSettings:
    """Load settings once per process."""
    return WagerChainSettings()
