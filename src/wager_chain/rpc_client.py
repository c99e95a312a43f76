"""
JSON-RPC client for the single configured EVM chain.

Features:
- Primary endpoint plus optional fallbacks with automatic failover
- Chain ID validation on first use (security)
- Health-based endpoint selection
- Request timeout handling via httpx
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import WagerChainSettings
from .exceptions import (
    AllEndpointsFailedError,
    ChainIDMismatchError,
    ConfigurationError,
    RPCError,
)
from .logging_config import mask_url

logger = logging.getLogger(__name__)

# Server errors and rate limits: try the next endpoint
RETRYABLE_RPC_CODES = (-32000, -32005)


class EndpointStatus(str, Enum):
    """Health status of an RPC endpoint."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # High latency but working
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class EndpointHealth:
    """Health tracking for an RPC endpoint."""
    url: str
    priority: int = 0
    status: EndpointStatus = EndpointStatus.UNKNOWN
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    last_failure: Optional[datetime] = None
    avg_latency_ms: float = 0.0
    last_error: Optional[str] = None

    max_consecutive_failures: int = 3
    degraded_latency_ms: float = 5000.0

    def record_success(self, latency_ms: float) -> None:
        self.consecutive_failures = 0
        self.total_requests += 1

        if self.avg_latency_ms == 0:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = 0.9 * self.avg_latency_ms + 0.1 * latency_ms

        if latency_ms > self.degraded_latency_ms:
            self.status = EndpointStatus.DEGRADED
        else:
            self.status = EndpointStatus.HEALTHY

    def record_failure(self, error: str) -> None:
        self.consecutive_failures += 1
        self.total_requests += 1
        self.total_failures += 1
        self.last_failure = datetime.now(timezone.utc)
        self.last_error = error

        if self.consecutive_failures >= self.max_consecutive_failures:
            self.status = EndpointStatus.UNHEALTHY

    def get_priority_score(self) -> float:
        """Lower score = higher priority."""
        score = float(self.priority * 100)

        if self.status == EndpointStatus.UNHEALTHY:
            score += 10000
        elif self.status == EndpointStatus.DEGRADED:
            score += 1000
        elif self.status == EndpointStatus.UNKNOWN:
            score += 500

        score += self.avg_latency_ms / 10.0
        score += self.consecutive_failures * 100
        return score


class ChainRPCClient:
    """
    Async JSON-RPC client with failover and chain-id validation.

    No automatic retries of a request beyond trying each endpoint once;
    callers wrap calls with their own deadline if they need one tighter
    than ``rpc_timeout_seconds``.
    """

    def __init__(
        self,
        settings: WagerChainSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._chain = settings.chain_name
        self._expected_chain_id = settings.chain_id
        self._validate_chain_id = settings.validate_chain_id
        self._timeout = settings.rpc_timeout_seconds
        self._request_id = 0
        self._http_client = http_client
        self._owns_client = http_client is None
        self._connected = False
        self._verified_chain_id: Optional[int] = None

        self._endpoints: List[EndpointHealth] = [
            EndpointHealth(url=url, priority=index)
            for index, url in enumerate(settings.rpc_urls)
        ]
        if not self._endpoints:
            raise ConfigurationError(
                f"No RPC endpoints configured for chain {self._chain}", setting="WAGER_RPC_URL"
            )

        logger.info(
            f"Initialized RPC client for {self._chain} with {len(self._endpoints)} endpoints"
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def connect(self) -> None:
        """Validate the chain id once. Connecting to the wrong network is fatal."""
        if self._connected:
            return

        if self._validate_chain_id:
            chain_id = await self._fetch_chain_id()
            if chain_id != self._expected_chain_id:
                raise ChainIDMismatchError(
                    chain=self._chain,
                    expected=self._expected_chain_id,
                    received=chain_id,
                )
            self._verified_chain_id = chain_id
            logger.info(f"Chain ID validated for {self._chain}: {chain_id}")

        self._connected = True

    async def _fetch_chain_id(self) -> int:
        result = await self._call_internal("eth_chainId", [], skip_chain_validation=True)
        return int(result, 16)

    def _ordered_endpoints(self) -> List[EndpointHealth]:
        return sorted(self._endpoints, key=lambda h: h.get_priority_score())

    async def _call_internal(
        self,
        method: str,
        params: List[Any],
        skip_chain_validation: bool = False,
    ) -> Any:
        if not skip_chain_validation and self._validate_chain_id and not self._connected:
            await self.connect()

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        errors: List[Tuple[str, str]] = []
        for health in self._ordered_endpoints():
            start_time = time.time()
            try:
                client = self._get_client()
                response = await client.post(
                    health.url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout,
                )
                latency_ms = (time.time() - start_time) * 1000
                response.raise_for_status()
                result = response.json()
            except (httpx.HTTPError, ValueError) as e:
                latency_ms = (time.time() - start_time) * 1000
                health.record_failure(str(e))
                errors.append((mask_url(health.url), str(e)))
                logger.warning(
                    f"RPC call {method} to {mask_url(health.url)} failed after "
                    f"{latency_ms:.0f}ms: {e}"
                )
                continue

            if not isinstance(result, dict):
                message = f"Malformed JSON-RPC response: expected object, got {type(result).__name__}"
                health.record_failure(message)
                errors.append((mask_url(health.url), message))
                logger.warning(f"RPC call {method} to {mask_url(health.url)}: {message}")
                continue

            if "error" in result:
                error = result["error"] or {}
                if not isinstance(error, dict):
                    error = {"message": str(error)}
                error_code = error.get("code", 0)
                error_msg = error.get("message", str(error))

                if error_code in RETRYABLE_RPC_CODES and not _is_revert(error_msg):
                    health.record_failure(error_msg)
                    errors.append((mask_url(health.url), error_msg))
                    logger.warning(
                        f"RPC error from {mask_url(health.url)}: {error_msg}, trying next endpoint"
                    )
                    continue

                # Reverts and other node-level errors are answers, not outages
                health.record_success(latency_ms)
                raise RPCError(message=error_msg, code=error_code, data=error.get("data"))

            health.record_success(latency_ms)
            logger.debug(
                f"RPC call {method} to {mask_url(health.url)} succeeded in {latency_ms:.0f}ms"
            )
            return result.get("result")

        raise AllEndpointsFailedError(chain=self._chain, errors=errors)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make a JSON-RPC call with automatic failover.

        Raises:
            ChainIDMismatchError: If chain ID validation fails
            RPCError: If the node returns an error
            AllEndpointsFailedError: If all endpoints fail
        """
        return await self._call_internal(method, params or [])

    async def get_chain_id(self) -> int:
        if self._verified_chain_id is not None:
            return self._verified_chain_id
        chain_id = await self._fetch_chain_id()
        self._verified_chain_id = chain_id
        return chain_id

    async def get_block_number(self) -> int:
        result = await self.call("eth_blockNumber")
        return int(result, 16)

    async def get_gas_price(self) -> int:
        result = await self.call("eth_gasPrice")
        return int(result, 16)

    async def get_max_priority_fee(self) -> int:
        try:
            result = await self.call("eth_maxPriorityFeePerGas")
            return int(result, 16)
        except RPCError:
            # Fallback for nodes that don't support this
            return 1_000_000_000  # 1 gwei

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        result = await self.call("eth_estimateGas", [tx])
        return int(result, 16)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        result = await self.call("eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        """Execute a read-only call."""
        return await self.call("eth_call", [tx, block])

    def get_endpoint_stats(self) -> List[Dict[str, Any]]:
        return [
            {
                "url": mask_url(health.url),
                "priority": health.priority,
                "status": health.status.value,
                "consecutive_failures": health.consecutive_failures,
                "total_requests": health.total_requests,
                "total_failures": health.total_failures,
                "avg_latency_ms": round(health.avg_latency_ms, 2),
                "last_error": health.last_error,
            }
            for health in self._endpoints
        ]

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        self._connected = False

    async def __aenter__(self) -> "ChainRPCClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _is_revert(message: str) -> bool:
    return "revert" in (message or "").lower()


def hex_to_int(value: Any, default: int = 0) -> int:
    """Parse a JSON-RPC quantity (0x-hex string or int)."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value)
    try:
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError:
        return default
