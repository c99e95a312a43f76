"""ABI fragments and calldata/log codecs for the escrow, ERC-20 and ERC-721.

Interfaces consumed:
- GameEscrow.createGame(string gameId, address currency, uint256 entryFee)
- GameEscrow.joinGame(string gameId) payable
- GameEscrow.getGame(string gameId) -> (string, address, uint256, uint256, bool, bool)
- GameEscrow.participants(string gameId, address player) -> (address, uint256, bool, bool)
- GameEscrow.getParticipantCount(string gameId) -> uint256
- event PlayerJoined(string indexed gameId, address indexed player, uint256 amount, bool isNative)
- ERC-20 event Transfer(address indexed from, address indexed to, uint256 value)
- ERC-721 ownerOf(uint256 tokenId) -> address
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

# name -> argument types, for calls we encode or decode
ESCROW_FUNCTIONS: Dict[str, List[str]] = {
    "createGame": ["string", "address", "uint256"],
    "joinGame": ["string"],
    "refundPlayer": ["string", "address"],
    "settleGame": ["string", "address[]", "uint256[]"],
    "getGame": ["string"],
    "getParticipantCount": ["string"],
    "participants": ["string", "address"],
}

GAME_STRUCT_TYPE = "(string,address,uint256,uint256,bool,bool)"
PARTICIPANT_OUTPUT_TYPES = ["address", "uint256", "bool", "bool"]

ERC721_FUNCTIONS: Dict[str, List[str]] = {
    "ownerOf": ["uint256"],
}

ERROR_STRING_SELECTOR = "0x08c379a0"


def signature(name: str, arg_types: Sequence[str]) -> str:
    return f"{name}({','.join(arg_types)})"


def keccak_hex(text: str) -> str:
    """0x-prefixed keccak256 of a UTF-8 string."""
    return Web3.to_hex(Web3.keccak(text=text))


def function_selector(name: str, arg_types: Sequence[str]) -> bytes:
    return bytes(Web3.keccak(text=signature(name, arg_types))[:4])


TRANSFER_EVENT_TOPIC = keccak_hex("Transfer(address,address,uint256)")
PLAYER_JOINED_EVENT_TOPIC = keccak_hex("PlayerJoined(string,address,uint256,bool)")

_ESCROW_SELECTORS: Dict[bytes, str] = {
    function_selector(name, types): name for name, types in ESCROW_FUNCTIONS.items()
}


def hex_to_bytes(value: Optional[str]) -> bytes:
    """Decode 0x-hex to bytes. Raises ValueError on malformed input."""
    if not value:
        return b""
    text = value[2:] if value.lower().startswith("0x") else value
    return bytes.fromhex(text)


def to_checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def _normalize_arg(arg_type: str, value: Any) -> Any:
    if arg_type == "address":
        return to_checksum(value)
    if arg_type == "address[]":
        return [to_checksum(v) for v in value]
    return value


def _normalize_decoded(arg_type: str, value: Any) -> Any:
    if arg_type == "address":
        return str(value).lower()
    if arg_type == "address[]":
        return tuple(str(v).lower() for v in value)
    return value


def _normalize_all(arg_types: Sequence[str], values: Sequence[Any]) -> Tuple[Any, ...]:
    return tuple(_normalize_decoded(t, v) for t, v in zip(arg_types, values))


def encode_function_call(name: str, arg_types: Sequence[str], args: Sequence[Any]) -> str:
    """ABI-encode a call as 0x-hex calldata."""
    normalized = [_normalize_arg(t, v) for t, v in zip(arg_types, args)]
    data = function_selector(name, arg_types) + encode(list(arg_types), normalized)
    return "0x" + data.hex()


def encode_escrow_call(name: str, *args: Any) -> str:
    return encode_function_call(name, ESCROW_FUNCTIONS[name], args)


def encode_owner_of(token_id: int) -> str:
    return encode_function_call("ownerOf", ERC721_FUNCTIONS["ownerOf"], [int(token_id)])


@dataclass(frozen=True)
class DecodedCall:
    """A successfully decoded escrow function call."""
    name: str
    args: Tuple[Any, ...]
    selector: str


def decode_escrow_call(input_data: Optional[str]) -> Optional[DecodedCall]:
    """
    Decode escrow calldata against the known interface.

    Returns None when the selector is unknown or the arguments do not decode.
    """
    try:
        data = hex_to_bytes(input_data)
    except ValueError:
        return None
    if len(data) < 4:
        return None

    name = _ESCROW_SELECTORS.get(data[:4])
    if name is None:
        return None

    try:
        args = decode(ESCROW_FUNCTIONS[name], data[4:])
    except (DecodingError, UnicodeDecodeError, ValueError, OverflowError):
        return None

    return DecodedCall(
        name=name,
        args=_normalize_all(ESCROW_FUNCTIONS[name], args),
        selector="0x" + data[:4].hex(),
    )


def decode_game_struct(return_data: Optional[str]) -> Tuple[Any, ...]:
    """Decode getGame() return data. Raises DecodingError/ValueError."""
    (game,) = decode([GAME_STRUCT_TYPE], hex_to_bytes(return_data))
    return _normalize_all(GAME_STRUCT_TYPE.strip("()").split(","), game)


def decode_participant(return_data: Optional[str]) -> Tuple[Any, ...]:
    values = decode(PARTICIPANT_OUTPUT_TYPES, hex_to_bytes(return_data))
    return _normalize_all(PARTICIPANT_OUTPUT_TYPES, values)


def decode_uint256(return_data: Optional[str]) -> int:
    (value,) = decode(["uint256"], hex_to_bytes(return_data))
    return int(value)


def decode_address(return_data: Optional[str]) -> str:
    (value,) = decode(["address"], hex_to_bytes(return_data))
    return str(value).lower()


@dataclass(frozen=True)
class TransferLog:
    """A decoded ERC-20 Transfer log entry."""
    from_address: str
    to_address: str
    value: int
    log_address: str
    log_index: Optional[int] = None

    def summary(self) -> Dict[str, str]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "value": str(self.value),
            "logAddress": self.log_address,
        }


def parse_transfer_log(log: Dict[str, Any]) -> Optional[TransferLog]:
    """
    Decode an ERC-20 Transfer log, or return None if ``log`` is not one.

    topics[0] = event signature, topics[1] = from, topics[2] = to,
    data = uint256 value.
    """
    topics = log.get("topics") or []
    if len(topics) < 3 or str(topics[0]).lower() != TRANSFER_EVENT_TOPIC:
        return None

    data = log.get("data") or "0x"
    if data.lower() in ("0x", ""):
        return None
    try:
        value = int(data, 16)
    except ValueError:
        return None

    log_index = log.get("logIndex")
    if isinstance(log_index, str):
        try:
            log_index = int(log_index, 16)
        except ValueError:
            log_index = None

    return TransferLog(
        from_address="0x" + str(topics[1])[-40:].lower(),
        to_address="0x" + str(topics[2])[-40:].lower(),
        value=value,
        log_address=str(log.get("address") or "").lower(),
        log_index=log_index,
    )


def decode_error_string(data: Optional[str]) -> Optional[str]:
    """Decode ABI-encoded ``Error(string)`` revert data."""
    if not data or not data.lower().startswith(ERROR_STRING_SELECTOR):
        return None
    try:
        (reason,) = decode(["string"], hex_to_bytes(data)[4:])
    except (DecodingError, UnicodeDecodeError, ValueError):
        return None
    return reason
