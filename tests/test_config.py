"""
Tests for wager_chain.config.
"""
from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from wager_chain.config import WagerChainSettings
from wager_chain.exceptions import ConfigurationError

from conftest import ESCROW, SIGNER_ADDRESS, SIGNER_PRIVATE_KEY, make_settings


def test_addresses_are_lowercased():
    settings = make_settings(escrow_contract=ESCROW.upper().replace("0X", "0x"))
    assert settings.escrow_contract == ESCROW


def test_invalid_address_rejected():
    with pytest.raises(PydanticValidationError):
        make_settings(escrow_contract="0x1234")


def test_rpc_urls_deduplicated_in_order():
    settings = make_settings(
        rpc_url="https://a.example",
        rpc_fallback_urls="https://b.example, https://a.example,,https://c.example",
    )
    assert settings.rpc_urls == ["https://a.example", "https://b.example", "https://c.example"]


@pytest.mark.parametrize("bps", [-1, 101])
def test_native_tolerance_is_capped_at_one_percent(bps):
    with pytest.raises(PydanticValidationError):
        make_settings(native_amount_tolerance_bps=bps)


def test_confirmations_at_least_one():
    with pytest.raises(PydanticValidationError):
        make_settings(confirmations_required=0)


def test_production_requires_signer_and_contracts():
    with pytest.raises(PydanticValidationError) as exc_info:
        WagerChainSettings(_env_file=None, environment="prod")

    message = str(exc_info.value)
    assert "escrow_contract" in message
    assert "signer_private_key" in message


def test_production_with_everything_configured():
    settings = make_settings(environment="prod")
    assert settings.require_signer() == (SIGNER_PRIVATE_KEY, SIGNER_ADDRESS)


def test_settings_are_frozen():
    settings = make_settings()
    with pytest.raises(PydanticValidationError):
        settings.chain_id = 1


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("WAGER_CHAIN_ID", "84532")
    monkeypatch.setenv("WAGER_ESCROW_CONTRACT", ESCROW)

    settings = WagerChainSettings(_env_file=None)

    assert settings.chain_id == 84532
    assert settings.escrow_contract == ESCROW


@pytest.mark.parametrize(
    "method,setting",
    [
        ("require_escrow_contract", "WAGER_ESCROW_CONTRACT"),
        ("require_payout_wallet", "WAGER_PAYOUT_WALLET_ADDRESS"),
        ("require_signer", "WAGER_SIGNER_PRIVATE_KEY"),
    ],
)
def test_require_helpers_raise_configuration_error(method, setting):
    settings = WagerChainSettings(_env_file=None)

    with pytest.raises(ConfigurationError) as exc_info:
        getattr(settings, method)()

    assert exc_info.value.details["setting"] == setting


def test_explorer_url():
    settings = make_settings(explorer_url="https://basescan.org/")
    assert settings.tx_explorer_url("0xabc") == "https://basescan.org/tx/0xabc"
