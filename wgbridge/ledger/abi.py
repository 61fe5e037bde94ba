"""
wgbridge Ledger ABI

Contract function table plus the small subset of Solidity ABI encoding
the access ledger needs: uint256, address, bool and string.

All words are 32 bytes, BIG-ENDIAN.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from Crypto.Hash import keccak

WORD_SIZE = 32
UINT256_MAX = 2**256 - 1

# Error(string) revert payload selector
REVERT_ERROR_SELECTOR = bytes.fromhex("08c379a0")

_STATIC_TYPES = ("uint256", "address", "bool")
_DYNAMIC_TYPES = ("string",)


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA-3 variant used by the ledger)."""
    return keccak.new(digest_bits=256, data=data).digest()


def function_selector(signature: str) -> bytes:
    """First four bytes of keccak256(signature)."""
    return keccak256(signature.encode("ascii"))[:4]


def event_topic(signature: str) -> bytes:
    """Full keccak256(signature), used as topics[0] of a log."""
    return keccak256(signature.encode("ascii"))


# ==============================================================================
# Encoding
# ==============================================================================

def _encode_uint(value: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"uint256 expects int, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"uint256 out of range: {value}")
    return value.to_bytes(WORD_SIZE, "big")


def _encode_address(value: str) -> bytes:
    raw = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    if len(raw) != 20:
        raise ValueError(f"address must be 20 bytes, got {len(raw)}")
    return raw.rjust(WORD_SIZE, b"\x00")


def _encode_static(abi_type: str, value: Any) -> bytes:
    if abi_type == "uint256":
        return _encode_uint(value)
    if abi_type == "address":
        return _encode_address(value)
    if abi_type == "bool":
        return _encode_uint(1 if value else 0)
    raise ValueError(f"Unsupported static type: {abi_type}")


def _encode_string(value: str) -> bytes:
    data = value.encode("utf-8")
    padded_len = (len(data) + WORD_SIZE - 1) // WORD_SIZE * WORD_SIZE
    return _encode_uint(len(data)) + data.ljust(padded_len, b"\x00")


def encode_args(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """
    ABI-encode a tuple of values.

    Args:
        types: ABI type names
        values: Values, one per type

    Returns:
        Head/tail encoded bytes (no selector)
    """
    if len(types) != len(values):
        raise ValueError(f"Expected {len(types)} values, got {len(values)}")

    head_size = WORD_SIZE * len(types)
    heads: List[bytes] = []
    tails: List[bytes] = []
    tail_offset = head_size

    for abi_type, value in zip(types, values):
        if abi_type in _DYNAMIC_TYPES:
            tail = _encode_string(value)
            heads.append(_encode_uint(tail_offset))
            tails.append(tail)
            tail_offset += len(tail)
        else:
            heads.append(_encode_static(abi_type, value))

    return b"".join(heads) + b"".join(tails)


# ==============================================================================
# Decoding
# ==============================================================================

def _word(data: bytes, offset: int) -> bytes:
    if offset + WORD_SIZE > len(data):
        raise ValueError(f"ABI data too short: need {offset + WORD_SIZE}, have {len(data)}")
    return data[offset:offset + WORD_SIZE]


def decode_static(abi_type: str, word: bytes) -> Any:
    """Decode a single 32-byte word."""
    if abi_type == "uint256":
        return int.from_bytes(word, "big")
    if abi_type == "address":
        return "0x" + word[-20:].hex()
    if abi_type == "bool":
        return int.from_bytes(word, "big") != 0
    raise ValueError(f"Unsupported static type: {abi_type}")


def _decode_string(data: bytes, offset: int) -> str:
    length = int.from_bytes(_word(data, offset), "big")
    start = offset + WORD_SIZE
    if start + length > len(data):
        raise ValueError("ABI string runs past end of data")
    return data[start:start + length].decode("utf-8")


def decode_values(types: Sequence[str], data: bytes) -> List[Any]:
    """
    ABI-decode a tuple of values.

    Args:
        types: ABI type names
        data: Encoded bytes (no selector)

    Returns:
        Decoded values in order
    """
    values = []
    for i, abi_type in enumerate(types):
        word = _word(data, i * WORD_SIZE)
        if abi_type in _DYNAMIC_TYPES:
            values.append(_decode_string(data, int.from_bytes(word, "big")))
        else:
            values.append(decode_static(abi_type, word))
    return values


def hex_to_bytes(value: Optional[str]) -> bytes:
    if not value:
        return b""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def decode_revert_reason(data: Optional[str]) -> Optional[str]:
    """
    Extract a human readable reason from revert data.

    Returns the Error(string) message, the matching custom error name,
    or None when the payload is not recognised.
    """
    try:
        raw = hex_to_bytes(data)
    except ValueError:
        return None

    if len(raw) < 4:
        return None

    selector, payload = raw[:4], raw[4:]
    if selector == REVERT_ERROR_SELECTOR:
        try:
            return decode_values(["string"], payload)[0]
        except (ValueError, UnicodeDecodeError):
            return None

    return CUSTOM_ERRORS.get(selector)


# ==============================================================================
# Ledger contract surface
# ==============================================================================

@dataclass(frozen=True)
class LedgerFunction:
    """A contract function bound to a logical operation name."""
    operation: str
    name: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...]
    mutating: bool = False

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return function_selector(self.signature)

    def encode_call(self, args: Sequence[Any]) -> str:
        """Calldata as a 0x-prefixed hex string."""
        return "0x" + (self.selector + encode_args(self.inputs, args)).hex()

    def decode_result(self, data: bytes) -> Any:
        values = decode_values(self.outputs, data)
        return values[0] if len(values) == 1 else tuple(values)


@dataclass(frozen=True)
class LedgerEventSpec:
    """A contract event and how its fields are laid out in a log."""
    name: str
    contract_name: str
    indexed: Tuple[Tuple[str, str], ...]
    data: Tuple[Tuple[str, str], ...]
    signature_types: Tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.contract_name}({','.join(self.signature_types)})"

    @property
    def topic(self) -> bytes:
        return event_topic(self.signature)

    def decode_log(self, topics: Sequence[bytes], data: bytes) -> Dict[str, Any]:
        """Decode indexed topics and the data section into a field dict."""
        fields: Dict[str, Any] = {}
        for (name, abi_type), topic in zip(self.indexed, topics[1:]):
            fields[name] = decode_static(abi_type, topic)
        if self.data:
            values = decode_values([t for _, t in self.data], data)
            for (name, _), value in zip(self.data, values):
                fields[name] = value
        return fields


FUNCTIONS: Dict[str, LedgerFunction] = {
    f.operation: f for f in (
        LedgerFunction(
            "mint_access", "mintNodeAccess",
            ("address", "string", "string", "string"), ("uint256",), mutating=True,
        ),
        LedgerFunction("revoke_access", "revokeNodeAccess", ("uint256",), (), mutating=True),
        LedgerFunction(
            "get_access_record", "getNodeAccess",
            ("uint256",), ("string", "string", "uint256", "bool"),
        ),
        LedgerFunction("has_access", "hasNodeAccess", ("address", "string"), ("bool",)),
        LedgerFunction("token_id_for_node", "getTokenIdByNodeId", ("string",), ("uint256",)),
        LedgerFunction("owner_of", "ownerOf", ("uint256",), ("address",)),
    )
}

EVENTS: Dict[str, LedgerEventSpec] = {
    e.name: e for e in (
        LedgerEventSpec(
            "AccessGranted", "NodeAccessGranted",
            indexed=(("token_id", "uint256"), ("owner", "address")),
            data=(("node_id", "string"), ("public_key", "string")),
            signature_types=("uint256", "string", "address", "string"),
        ),
        LedgerEventSpec(
            "AccessRevoked", "NodeAccessRevoked",
            indexed=(("token_id", "uint256"),),
            data=(("node_id", "string"),),
            signature_types=("uint256", "string"),
        ),
        LedgerEventSpec(
            "AccessTransferred", "NodeAccessTransferred",
            indexed=(("token_id", "uint256"), ("from", "address"), ("to", "address")),
            data=(),
            signature_types=("uint256", "address", "address"),
        ),
    )
}

EVENTS_BY_TOPIC: Dict[bytes, LedgerEventSpec] = {e.topic: e for e in EVENTS.values()}

CUSTOM_ERRORS: Dict[bytes, str] = {
    function_selector("ERC721NonexistentToken(uint256)"): "ERC721NonexistentToken",
    function_selector("ERC721InvalidOwner(address)"): "ERC721InvalidOwner",
}

NONEXISTENT_TOKEN_MARKERS = (
    "ERC721NonexistentToken",
    "invalid token ID",
    "nonexistent token",
    "does not exist",
)


def is_nonexistent_token_reason(reason: Optional[str]) -> bool:
    """True if a revert reason means the token was never minted."""
    if not reason:
        return False
    lowered = reason.lower()
    return any(marker.lower() in lowered for marker in NONEXISTENT_TOKEN_MARKERS)
