"""
Transaction pre-flight via eth_call.

Features:
- Pre-execution simulation of escrow writes
- Revert reason extraction (``execution reverted: <reason>`` and
  ABI-encoded ``Error(string)`` data)
- Replay of a mined-but-reverted transaction at its block to recover the reason
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .abi import ERROR_STRING_SELECTOR, decode_error_string
from .exceptions import AllEndpointsFailedError, RPCError

logger = logging.getLogger(__name__)

PANIC_SELECTOR = "0x4e487b71"
_ERROR_DATA_RE = re.compile(r"0x08c379a0[0-9a-fA-F]*", re.IGNORECASE)


class SimulationResult(str, Enum):
    """Result of transaction simulation."""
    SUCCESS = "success"
    REVERTED = "reverted"
    OUT_OF_GAS = "out_of_gas"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_NONCE = "invalid_nonce"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass
class SimulationOutput:
    """Output from transaction simulation."""
    result: SimulationResult
    return_data: Optional[str] = None
    revert_reason: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def will_succeed(self) -> bool:
        return self.result == SimulationResult.SUCCESS

    def mentions(self, phrase: str) -> bool:
        """Case-insensitive search across revert reason and raw error text."""
        phrase = phrase.lower()
        return any(
            phrase in text.lower()
            for text in (self.revert_reason, self.error_message)
            if text
        )


class TransactionSimulator:
    """
    Simulates escrow writes with eth_call before they are broadcast.

    Node-reported failures become a ``SimulationOutput``; losing every RPC
    endpoint is not a simulation outcome and propagates.
    """

    def __init__(self, rpc_client: Any, timeout_seconds: float = 15.0):
        self._rpc = rpc_client
        self._timeout = timeout_seconds

    async def simulate(
        self,
        tx_params: Dict[str, Any],
        block: str = "latest",
    ) -> SimulationOutput:
        """
        Simulate a transaction using eth_call.

        Args:
            tx_params: Transaction parameters (from, to, data, value)
            block: Block number (hex) or tag to simulate at

        Returns:
            SimulationOutput with result and details
        """
        call_params = {
            "to": tx_params.get("to"),
            "data": tx_params.get("data") or tx_params.get("input", "0x"),
        }
        if tx_params.get("from"):
            call_params["from"] = tx_params["from"]
        if tx_params.get("value"):
            value = tx_params["value"]
            call_params["value"] = hex(value) if isinstance(value, int) else value

        try:
            async with asyncio.timeout(self._timeout):
                result = await self._rpc.eth_call(call_params, block)
        except asyncio.TimeoutError:
            logger.warning(f"Simulation timed out after {self._timeout}s")
            return SimulationOutput(
                result=SimulationResult.TIMEOUT,
                error_message="Simulation timed out",
            )
        except AllEndpointsFailedError:
            raise
        except RPCError as e:
            return parse_simulation_error(e.full_text())

        return SimulationOutput(result=SimulationResult.SUCCESS, return_data=result)

    async def replay_reverted(self, tx: Dict[str, Any], block_number: int) -> SimulationOutput:
        """Re-run a mined transaction at its own block to recover the revert reason."""
        return await self.simulate(
            {
                "from": tx.get("from"),
                "to": tx.get("to"),
                "data": tx.get("input") or tx.get("data"),
                "value": tx.get("value"),
            },
            block=hex(block_number),
        )


def parse_simulation_error(error_text: str) -> SimulationOutput:
    """Classify a node error message."""
    lowered = error_text.lower()

    if "revert" in lowered or ERROR_STRING_SELECTOR in lowered:
        return SimulationOutput(
            result=SimulationResult.REVERTED,
            revert_reason=extract_revert_reason(error_text),
            error_message=error_text,
        )

    if "out of gas" in lowered or "gas required exceeds" in lowered:
        return SimulationOutput(result=SimulationResult.OUT_OF_GAS, error_message=error_text)

    if "insufficient funds" in lowered or "insufficient balance" in lowered:
        return SimulationOutput(
            result=SimulationResult.INSUFFICIENT_FUNDS, error_message=error_text
        )

    if "nonce" in lowered:
        return SimulationOutput(result=SimulationResult.INVALID_NONCE, error_message=error_text)

    return SimulationOutput(result=SimulationResult.ERROR, error_message=error_text)


def extract_revert_reason(error_message: str) -> Optional[str]:
    """Extract a human-readable revert reason from a node error message."""
    lowered = error_message.lower()

    # Error(string) data takes precedence over the node's summary text
    match = _ERROR_DATA_RE.search(error_message)
    if match:
        reason = decode_error_string(match.group(0).lower())
        if reason is not None:
            return reason

    marker = "execution reverted:"
    if marker in lowered:
        idx = lowered.find(marker)
        return error_message[idx + len(marker):].strip() or None

    if PANIC_SELECTOR in lowered:
        return "Panic: assertion failed or arithmetic error"

    return None
