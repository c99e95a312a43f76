"""
Pytest configuration for wager-chain tests.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from wager_chain.abi import TRANSFER_EVENT_TOPIC
from wager_chain.config import BASE_USDC_ADDRESS, WagerChainSettings

# Keep a developer's shell environment out of the settings under test
for _key in [k for k in os.environ if k.startswith("WAGER_")]:
    del os.environ[_key]

# Foundry/Anvil default account #0
SIGNER_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SIGNER_ADDRESS = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"

ESCROW = "0x" + "e5" * 20
USDC = BASE_USDC_ADDRESS
PAYOUT_WALLET = "0x" + "ab" * 20
PLAYER = "0x" + "11" * 20
PAYMASTER = "0x" + "22" * 20
STRANGER = "0x" + "33" * 20
TX_HASH = "0x" + "a" * 64


def make_settings(**overrides: Any) -> WagerChainSettings:
    values: Dict[str, Any] = {
        "escrow_contract": ESCROW,
        "signer_private_key": SIGNER_PRIVATE_KEY,
        "signer_address": SIGNER_ADDRESS,
        "payout_wallet_address": PAYOUT_WALLET,
        "confirmation_timeout_seconds": 5.0,
        "confirmation_poll_interval_seconds": 0.01,
    }
    values.update(overrides)
    return WagerChainSettings(_env_file=None, **values)


def address_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(
    from_address: str,
    to_address: str,
    value: int,
    token: str = USDC,
    log_index: int = 0,
) -> Dict[str, Any]:
    return {
        "address": token,
        "topics": [TRANSFER_EVENT_TOPIC, address_topic(from_address), address_topic(to_address)],
        "data": "0x" + f"{value:064x}",
        "logIndex": hex(log_index),
    }


def make_receipt(
    status: int = 1,
    to: Optional[str] = ESCROW,
    logs: Optional[List[Dict[str, Any]]] = None,
    block_number: int = 100,
) -> Dict[str, Any]:
    return {
        "transactionHash": TX_HASH,
        "status": hex(status),
        "to": to,
        "logs": logs or [],
        "blockNumber": hex(block_number),
    }


def make_tx(
    from_address: str = PLAYER,
    to: Optional[str] = ESCROW,
    input_data: str = "0x",
    value: int = 0,
) -> Dict[str, Any]:
    return {
        "hash": TX_HASH,
        "from": from_address,
        "to": to,
        "input": input_data,
        "value": hex(value),
    }


@pytest.fixture
def settings() -> WagerChainSettings:
    return make_settings()


@pytest.fixture
def rpc():
    """RPC client double with every method the package calls."""
    client = Mock()
    client.get_transaction = AsyncMock(return_value=None)
    client.get_transaction_receipt = AsyncMock(return_value=None)
    client.eth_call = AsyncMock(return_value="0x")
    client.estimate_gas = AsyncMock(return_value=100_000)
    client.get_gas_price = AsyncMock(return_value=1_000_000)
    client.get_max_priority_fee = AsyncMock(return_value=100_000)
    client.get_nonce = AsyncMock(return_value=7)
    client.send_raw_transaction = AsyncMock(return_value="0x" + "cd" * 32)
    client.get_block_number = AsyncMock(return_value=100)
    return client
