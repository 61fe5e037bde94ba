"""
wgbridge Core Types

Peer, registry and access-decision data structures.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from wgbridge.constants import (
    DNS_SERVER,
    HOSTNAME_SUFFIX,
    MASK_VISIBLE_CHARS,
    NETWORK_CIDR,
    REGISTRY_VERSION,
)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def mask_key(key: Optional[str]) -> str:
    """Mask a public key for logging (first and last 8 characters)."""
    if not key or len(key) < 2 * MASK_VISIBLE_CHARS:
        return "***"
    return f"{key[:MASK_VISIBLE_CHARS]}...{key[-MASK_VISIBLE_CHARS:]}"


def hostname_for(node_id: str) -> str:
    """Overlay hostname for a node."""
    return f"{node_id}.{HOSTNAME_SUFFIX}"


class HealthStatus(str, Enum):
    """Component health."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def aggregate(cls, statuses: List["HealthStatus"]) -> "HealthStatus":
        """Any unhealthy component wins; all healthy is healthy; else degraded."""
        if any(s == cls.UNHEALTHY for s in statuses):
            return cls.UNHEALTHY
        if all(s == cls.HEALTHY for s in statuses):
            return cls.HEALTHY
        return cls.DEGRADED


class VerdictReason(str, Enum):
    """Outcome of an access check."""
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    NODE_INACTIVE = "NODE_INACTIVE"
    PUBLIC_KEY_MISMATCH = "PUBLIC_KEY_MISMATCH"
    ACCESS_DENIED = "ACCESS_DENIED"
    ACCESS_GRANTED = "ACCESS_GRANTED"
    VERIFICATION_ERROR = "VERIFICATION_ERROR"


@dataclass(frozen=True, slots=True)
class AccessVerdict:
    """
    Result of verifying an identity key against a node.

    Immutable once constructed. A cache hit is returned as a copy
    with cached=True.
    """
    granted: bool
    reason: VerdictReason
    node_id: str
    identity_key_masked: str
    message: str = ""
    token_id: Optional[int] = None
    owner_address: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "reason": self.reason.value,
            "node_id": self.node_id,
            "public_key": self.identity_key_masked,
            "message": self.message,
            "token_id": self.token_id,
            "owner_address": self.owner_address,
            "timestamp": self.timestamp,
            "cached": self.cached,
        }


@dataclass(frozen=True, slots=True)
class AccessRecord:
    """Ledger record for one access token."""
    node_id: str
    public_key: str
    created_at: int
    is_active: bool


@dataclass(frozen=True, slots=True)
class Peer:
    """
    A network endpoint derived from the ledger.

    Never mutated after creation; every sync builds fresh peers.
    """
    node_id: str
    public_key: str
    ip_address: str
    hostname: str
    owner_address: str
    token_id: int
    active: bool = True
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Peer:
        return cls(
            node_id=data["node_id"],
            public_key=data["public_key"],
            ip_address=data["ip_address"],
            hostname=data.get("hostname") or hostname_for(data["node_id"]),
            owner_address=data.get("owner_address", ""),
            token_id=int(data.get("token_id", 0)),
            active=bool(data.get("active", True)),
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass(frozen=True, slots=True)
class NetworkSettings:
    """Overlay network parameters."""
    cidr: str = NETWORK_CIDR
    dns_server: str = DNS_SERVER


@dataclass
class Registry:
    """
    Durable peer set.

    Replaced wholesale on every successful sync, never patched.
    """
    contract_address: str
    peers: List[Peer] = field(default_factory=list)
    network: NetworkSettings = field(default_factory=NetworkSettings)
    last_sync: Optional[str] = None
    version: str = REGISTRY_VERSION
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "peers": [p.to_dict() for p in self.peers],
            "contract_address": self.contract_address,
            "network": {
                "cidr": self.network.cidr,
                "dns_server": self.network.dns_server,
            },
            "last_sync": self.last_sync,
            "version": self.version,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Registry:
        network = data.get("network") or {}
        return cls(
            contract_address=data["contract_address"],
            peers=[Peer.from_dict(p) for p in data.get("peers", [])],
            network=NetworkSettings(
                cidr=network.get("cidr", NETWORK_CIDR),
                dns_server=network.get("dns_server", DNS_SERVER),
            ),
            last_sync=data.get("last_sync"),
            version=str(data.get("version", REGISTRY_VERSION)),
            created_at=data.get("created_at") or utc_now(),
        )
