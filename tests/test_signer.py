"""
Tests for wager_chain.signer.
"""
from __future__ import annotations

import pytest
from eth_account import Account

from wager_chain.exceptions import ConfigurationError, SignerAddressMismatchError
from wager_chain.signer import LocalKeySigner, TransactionRequest

from conftest import ESCROW, SIGNER_ADDRESS, SIGNER_PRIVATE_KEY, STRANGER, make_settings


def make_request(**overrides) -> TransactionRequest:
    values = dict(
        chain_id=8453,
        to_address=ESCROW,
        data="0x1234",
        gas_limit=120_000,
        max_fee_per_gas=2_000_000,
        max_priority_fee_per_gas=100_000,
        nonce=7,
    )
    values.update(overrides)
    return TransactionRequest(**values)


class TestLocalKeySigner:

    def test_derived_address_matches(self):
        signer = LocalKeySigner(SIGNER_PRIVATE_KEY, SIGNER_ADDRESS.upper().replace("0X", "0x"))
        assert signer.address == SIGNER_ADDRESS

    def test_from_settings(self):
        signer = LocalKeySigner.from_settings(make_settings())
        assert signer.address == SIGNER_ADDRESS

    def test_mismatch_is_fatal(self):
        with pytest.raises(SignerAddressMismatchError) as exc_info:
            LocalKeySigner(SIGNER_PRIVATE_KEY, STRANGER)

        assert exc_info.value.details["expected"] == STRANGER
        assert exc_info.value.details["derived"] == SIGNER_ADDRESS

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            LocalKeySigner.from_settings(make_settings(signer_private_key=""))

    def test_malformed_key_is_not_echoed(self):
        with pytest.raises(ConfigurationError) as exc_info:
            LocalKeySigner("0xnot-a-key", SIGNER_ADDRESS)

        assert "not-a-key" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_signs_eip1559_transaction(self):
        signer = LocalKeySigner(SIGNER_PRIVATE_KEY, SIGNER_ADDRESS)

        raw = await signer.sign_transaction(make_request())

        assert raw.startswith("0x02")
        recovered = Account.recover_transaction(raw)
        assert recovered.lower() == SIGNER_ADDRESS


def test_request_requires_gas_and_nonce():
    with pytest.raises(ValueError):
        make_request(nonce=None).to_eth_account_dict()
