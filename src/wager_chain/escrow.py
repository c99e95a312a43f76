"""
Read-only adapter for the GameEscrow contract.

Exposes the contract views the verification layer relies on:
- getGame(): registration / active / settled state of a resource
- participants(): whether a payer actually joined (settles amount-mismatch flags)
- getParticipantCount()

The ``Unregistered -> Registered(active) -> Settled`` lifecycle is derived
from getGame() and is enforced by the contract itself; the guards here only
stop the driver from attempting a transition it cannot justify.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

from eth_abi.exceptions import DecodingError

from .abi import (
    decode_game_struct,
    decode_participant,
    decode_uint256,
    encode_escrow_call,
)
from .config import ZERO_ADDRESS, WagerChainSettings
from .exceptions import RPCError

logger = logging.getLogger(__name__)


class GameLifecycle(str, Enum):
    """On-chain lifecycle of a game resource."""
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"  # active, accepting joins
    SETTLED = "settled"
    # Exists but neither active nor settled; needs an operator
    INACTIVE = "inactive"


@dataclass(frozen=True)
class OnChainGame:
    """Decoded getGame() struct."""
    resource_id: str
    currency: str
    entry_fee: int
    total_collected: int
    is_active: bool
    is_settled: bool

    @property
    def exists(self) -> bool:
        return bool(self.resource_id) or self.is_active or self.is_settled

    @property
    def is_native(self) -> bool:
        return self.currency == ZERO_ADDRESS

    @property
    def lifecycle(self) -> GameLifecycle:
        if self.is_settled:
            return GameLifecycle.SETTLED
        if self.is_active:
            return GameLifecycle.REGISTERED
        if not self.exists:
            return GameLifecycle.UNREGISTERED
        return GameLifecycle.INACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "currency": self.currency,
            "entry_fee": str(self.entry_fee),
            "total_collected": str(self.total_collected),
            "is_active": self.is_active,
            "is_settled": self.is_settled,
        }


@dataclass(frozen=True)
class Participant:
    """Decoded participants(resourceId, player) entry."""
    player: str
    amount_paid: int
    has_paid: bool
    refunded: bool

    @property
    def joined(self) -> bool:
        return self.has_paid and self.player != ZERO_ADDRESS


class EscrowStateReader:
    """
    Reads escrow contract state through eth_call.

    RPC and decode failures raise ``RPCError``; callers on the read path decide
    whether that is fatal.
    """

    def __init__(self, settings: WagerChainSettings, rpc_client: Any):
        self._escrow = settings.require_escrow_contract()
        self._rpc = rpc_client

    @property
    def escrow_address(self) -> str:
        return self._escrow

    async def _call(self, data: str, block: str = "latest") -> str:
        return await self._rpc.eth_call({"to": self._escrow, "data": data}, block)

    async def get_game(self, resource_id: str) -> OnChainGame:
        result = await self._call(encode_escrow_call("getGame", resource_id))
        try:
            values = decode_game_struct(result)
        except (DecodingError, ValueError) as e:
            raise RPCError(f"Undecodable getGame response for {resource_id!r}: {e}") from e

        game = OnChainGame(
            resource_id=values[0],
            currency=values[1],
            entry_fee=int(values[2]),
            total_collected=int(values[3]),
            is_active=bool(values[4]),
            is_settled=bool(values[5]),
        )
        logger.debug(
            f"getGame({resource_id!r}): active={game.is_active} settled={game.is_settled}"
        )
        return game

    async def is_game_active(self, resource_id: str) -> bool:
        game = await self.get_game(resource_id)
        return game.is_active

    async def lifecycle(self, resource_id: str) -> GameLifecycle:
        game = await self.get_game(resource_id)
        return game.lifecycle

    async def get_participant(self, resource_id: str, player: str) -> Participant:
        result = await self._call(encode_escrow_call("participants", resource_id, player))
        try:
            values = decode_participant(result)
        except (DecodingError, ValueError) as e:
            raise RPCError(f"Undecodable participants response for {resource_id!r}: {e}") from e
        return Participant(
            player=values[0],
            amount_paid=int(values[1]),
            has_paid=bool(values[2]),
            refunded=bool(values[3]),
        )

    async def has_joined(self, resource_id: str, player: str) -> bool:
        participant = await self.get_participant(resource_id, player)
        return participant.joined

    async def get_participant_count(self, resource_id: str) -> int:
        result = await self._call(encode_escrow_call("getParticipantCount", resource_id))
        try:
            return decode_uint256(result)
        except (DecodingError, ValueError) as e:
            raise RPCError(
                f"Undecodable getParticipantCount response for {resource_id!r}: {e}"
            ) from e

    async def can_accept_payments(self, resource_id: str) -> bool:
        """Payments are meaningful only once a game is registered and active."""
        return (await self.lifecycle(resource_id)) == GameLifecycle.REGISTERED

    async def can_settle(self, resource_id: str) -> bool:
        """Settlement requires Registered and not yet Settled."""
        return (await self.lifecycle(resource_id)) == GameLifecycle.REGISTERED

