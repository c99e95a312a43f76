"""Wallet address resolution for payer binding.

Maps a social identity to the set of addresses it may have paid from: the
custody address plus any verified external addresses the identity directory
knows about. The set is rebuilt on every call and never cached.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from .config import WagerChainSettings, is_hex_address
from .logging_config import set_identity_context

logger = logging.getLogger(__name__)

NEYNAR_BULK_USERS_PATH = "/v2/farcaster/user/bulk"


@dataclass(frozen=True)
class IdentityRecord:
    """Addresses the directory associates with one identity."""
    identity_id: str
    custody_address: Optional[str] = None
    verified_addresses: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AllowedPayerSet:
    """
    Lower-cased, deduplicated addresses an identity may pay from.

    Order is custody address first, then verified addresses in directory
    order. An empty set means no payer is allowed.
    """
    identity_id: str
    addresses: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def build(cls, identity_id: str, candidates: Iterable[Optional[str]]) -> "AllowedPayerSet":
        seen: List[str] = []
        for candidate in candidates:
            if not candidate:
                continue
            address = candidate.strip().lower()
            if not is_hex_address(address):
                logger.debug(f"Ignoring malformed address for identity {identity_id}")
                continue
            if address not in seen:
                seen.append(address)
        return cls(identity_id=identity_id, addresses=tuple(seen))

    def contains(self, address: Optional[str]) -> bool:
        return bool(address) and address.lower() in self.addresses

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.contains(address)

    def __len__(self) -> int:
        return len(self.addresses)

    @property
    def is_empty(self) -> bool:
        return not self.addresses

    def preferred_payout_address(self, exclude: Iterable[str] = ()) -> Optional[str]:
        """
        Pick the address prizes should be sent to.

        Known contract addresses (escrow, stable token) are never payout
        targets. The most recently verified address wins over the custody
        address.
        """
        excluded = {a.lower() for a in exclude if a}
        candidates = [a for a in self.addresses if a not in excluded]
        return candidates[-1] if candidates else None


class IdentityDirectory(ABC):
    """Port for looking up the addresses linked to a social identity."""

    @abstractmethod
    async def lookup(self, identity_id: str) -> Optional[IdentityRecord]:
        """Return the identity's addresses, or None if it is unknown."""

    async def close(self) -> None:
        return None


class NeynarIdentityDirectory(IdentityDirectory):
    """Farcaster identity directory backed by the Neynar bulk-user API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.neynar.com",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={"accept": "application/json"},
        )
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls,
        settings: WagerChainSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "NeynarIdentityDirectory":
        return cls(
            api_key=settings.identity_api_key.get_secret_value(),
            base_url=settings.identity_api_base,
            timeout=settings.identity_timeout_seconds,
            http_client=http_client,
        )

    async def lookup(self, identity_id: str) -> Optional[IdentityRecord]:
        response = await self._client.get(
            f"{self._base_url}{NEYNAR_BULK_USERS_PATH}",
            params={"fids": identity_id},
            headers={"x-api-key": self._api_key},
        )
        response.raise_for_status()
        users = response.json().get("users") or []
        if not users:
            return None
        return _record_from_user(identity_id, users[0])

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _record_from_user(identity_id: str, user: Dict[str, Any]) -> IdentityRecord:
    verified = (user.get("verified_addresses") or {}).get("eth_addresses") or []
    return IdentityRecord(
        identity_id=identity_id,
        custody_address=user.get("custody_address"),
        verified_addresses=tuple(a for a in verified if a),
    )


class WalletAddressResolver:
    """
    Resolves the allowed payer set for an identity.

    Never raises: a directory failure yields an empty set, which every
    verifier treats as "no allowed payer".
    """

    def __init__(self, directory: IdentityDirectory):
        self._directory = directory

    async def resolve(self, identity_id: str) -> AllowedPayerSet:
        set_identity_context(str(identity_id))
        try:
            record = await self._directory.lookup(str(identity_id))
        except Exception as e:
            logger.error(f"Identity lookup failed for {identity_id}: {type(e).__name__}: {e}")
            return AllowedPayerSet(identity_id=str(identity_id))

        if record is None:
            logger.info(f"No identity record for {identity_id}")
            return AllowedPayerSet(identity_id=str(identity_id))

        payers = AllowedPayerSet.build(
            str(identity_id),
            [record.custody_address, *record.verified_addresses],
        )
        logger.debug(f"Resolved {len(payers)} allowed payer address(es) for {identity_id}")
        return payers
