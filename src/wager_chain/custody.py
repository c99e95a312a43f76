"""Prize custody checks.

An NFT may only be promised as a prize once ``ownerOf`` shows it sitting in
the payout wallet. Every failure path answers "not owned".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Sequence

from .abi import decode_address, encode_owner_of
from .config import WagerChainSettings
from .logging_config import mask_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NftRef:
    contract_address: str
    token_id: int

    def to_dict(self) -> dict:
        return {"contract_address": self.contract_address, "token_id": str(self.token_id)}


@dataclass(frozen=True)
class CustodyReport:
    """Batch custody result; ``missing`` lists tokens that failed verification."""
    all_owned: bool
    missing: List[NftRef] = field(default_factory=list)


class AssetCustodyVerifier:
    """Confirms prize NFTs are held by the configured payout wallet."""

    def __init__(self, settings: WagerChainSettings, rpc_client: Any):
        self._payout_wallet = settings.require_payout_wallet()
        self._rpc = rpc_client

    async def is_owned(self, contract_address: str, token_id: int) -> bool:
        try:
            result = await self._rpc.eth_call(
                {"to": contract_address, "data": encode_owner_of(token_id)}, "latest"
            )
            owner = decode_address(result)
        except Exception as e:
            logger.error(
                f"Error verifying ownership of {mask_address(contract_address)}#{token_id}: "
                f"{type(e).__name__}: {e}"
            )
            return False

        owned = owner == self._payout_wallet
        if not owned:
            logger.info(
                f"{mask_address(contract_address)}#{token_id} held by {mask_address(owner)}, "
                f"not the payout wallet"
            )
        return owned

    async def verify_all_owned(self, nfts: Sequence[NftRef]) -> CustodyReport:
        missing: List[NftRef] = []
        for nft in nfts:
            if not await self.is_owned(nft.contract_address, nft.token_id):
                missing.append(nft)
        return CustodyReport(all_owned=not missing, missing=missing)
