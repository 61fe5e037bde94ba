"""
wgbridge Input Validation

Synchronous checks run before any remote call or file operation.
"""

from __future__ import annotations
import base64
import binascii
import ipaddress
import re
from typing import Any, List

from wgbridge.constants import (
    ADDRESS_PATTERN,
    NETWORK_CIDR,
    NODE_ID_MAX_LENGTH,
    NODE_ID_MIN_LENGTH,
    NODE_ID_PATTERN,
    PUBLIC_KEY_B64_LENGTH,
    PUBLIC_KEY_SIZE,
)
from wgbridge.errors import (
    InvalidAddressError,
    InvalidNodeIdError,
    InvalidPrivateKeyError,
    InvalidPublicKeyError,
    InvalidRegistryError,
)

_NODE_ID_RE = re.compile(NODE_ID_PATTERN)
_ADDRESS_RE = re.compile(ADDRESS_PATTERN)


def validate_node_id(node_id: Any) -> str:
    """
    Validate a node identifier.

    Args:
        node_id: Candidate node identifier

    Returns:
        The node identifier unchanged

    Raises:
        InvalidNodeIdError: If it is not 3-50 characters of [A-Za-z0-9_-]
    """
    if not isinstance(node_id, str) or not node_id:
        raise InvalidNodeIdError(node_id, "must be a non-empty string")

    if not NODE_ID_MIN_LENGTH <= len(node_id) <= NODE_ID_MAX_LENGTH:
        raise InvalidNodeIdError(
            node_id,
            f"must be between {NODE_ID_MIN_LENGTH} and {NODE_ID_MAX_LENGTH} characters"
        )

    if not _NODE_ID_RE.match(node_id):
        raise InvalidNodeIdError(
            node_id, "may only contain letters, numbers, hyphens and underscores"
        )

    return node_id


def _decode_key(key: Any) -> bytes:
    if not isinstance(key, str) or not key:
        raise ValueError("must be a non-empty string")
    if len(key) != PUBLIC_KEY_B64_LENGTH:
        raise ValueError(f"must be {PUBLIC_KEY_B64_LENGTH} characters")
    try:
        raw = base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("must be valid base64")
    if len(raw) != PUBLIC_KEY_SIZE:
        raise ValueError(f"must decode to {PUBLIC_KEY_SIZE} bytes, got {len(raw)}")
    return raw


def validate_public_key(key: Any) -> str:
    """
    Validate a WireGuard public key (base64 of 32 raw bytes).

    Raises:
        InvalidPublicKeyError: On any encoding or length problem
    """
    try:
        _decode_key(key)
    except ValueError as e:
        raise InvalidPublicKeyError(str(e))
    return key


def validate_private_key(key: Any) -> str:
    """Validate a WireGuard private key. Same encoding as a public key."""
    try:
        _decode_key(key)
    except ValueError as e:
        raise InvalidPrivateKeyError(str(e))
    return key


def is_valid_address(address: Any) -> bool:
    """Check for a 0x-prefixed 40-hex-digit ledger address."""
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def validate_address(address: Any) -> str:
    """
    Validate a ledger account address.

    Raises:
        InvalidAddressError: If not 0x followed by 40 hex digits
    """
    if not is_valid_address(address):
        raise InvalidAddressError(address)
    return address


def is_host_address(ip: str, cidr: str) -> bool:
    """Check that ip is a usable host address inside cidr (not network/broadcast)."""
    try:
        network = ipaddress.ip_network(cidr, strict=False)
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr in network and addr not in (network.network_address, network.broadcast_address)


def registry_errors(data: Any) -> List[str]:
    """
    Check the structure of a persisted registry document.

    Returns:
        List of validation errors (empty if valid)
    """
    if not isinstance(data, dict):
        return ["registry must be an object"]

    errors = []

    if not isinstance(data.get("peers"), list):
        errors.append("peers must be a list")
    if not data.get("contract_address"):
        errors.append("contract_address is required")
    if not isinstance(data.get("network"), dict):
        errors.append("network must be an object")
    if not data.get("version"):
        errors.append("version is required")

    if errors:
        return errors

    cidr = data["network"].get("cidr") or NETWORK_CIDR
    seen_nodes = set()
    seen_ips = set()

    for i, peer in enumerate(data["peers"]):
        if not isinstance(peer, dict):
            errors.append(f"peer {i}: must be an object")
            continue

        missing = [key for key in ("node_id", "public_key", "ip_address") if not peer.get(key)]
        for key in missing:
            errors.append(f"peer {i}: missing {key}")
        if missing:
            continue

        node_id, ip = peer["node_id"], peer["ip_address"]

        try:
            validate_node_id(node_id)
        except InvalidNodeIdError as e:
            errors.append(f"peer {i}: {e.message}")
        try:
            validate_public_key(peer["public_key"])
        except InvalidPublicKeyError as e:
            errors.append(f"peer {i}: {e.message}")

        if not isinstance(ip, str) or not is_host_address(ip, cidr):
            errors.append(f"peer {i}: {ip!r} is not a host address in {cidr}")

        if isinstance(node_id, str):
            if node_id in seen_nodes:
                errors.append(f"peer {i}: duplicate node_id {node_id!r}")
            seen_nodes.add(node_id)
        if isinstance(ip, str):
            if ip in seen_ips:
                errors.append(f"peer {i}: duplicate ip_address {ip!r}")
            seen_ips.add(ip)

    return errors


def validate_registry(data: Any) -> dict:
    """
    Validate a persisted registry document.

    Raises:
        InvalidRegistryError: Listing every problem found
    """
    errors = registry_errors(data)
    if errors:
        raise InvalidRegistryError("; ".join(errors))
    return data
