"""
wgbridge Access Control

Decides whether an identity key may connect as a node.

Decisions come from the ledger through the CallGateway and are kept in a
bounded TTL cache keyed "identity_key:node_id". Any ledger mutation event
clears the whole cache.
"""

from __future__ import annotations
import logging
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from wgbridge.constants import ACCESS_CACHE_TTL_SEC, ACCESS_MAX_CACHE_SIZE
from wgbridge.core.cache import TTLCache
from wgbridge.core.types import (
    AccessVerdict,
    HealthStatus,
    VerdictReason,
    mask_key,
    utc_now,
)
from wgbridge.core.validation import validate_node_id, validate_public_key
from wgbridge.ledger.backend import LedgerEvent
from wgbridge.ledger.gateway import CallGateway

logger = logging.getLogger(__name__)


class AccessCache:
    """
    Ledger-backed access verification with a decision cache.

    Concurrent verifications of the same key are not coalesced; both may
    query the ledger and the last write wins.
    """

    def __init__(
        self,
        gateway: CallGateway,
        ttl: float = ACCESS_CACHE_TTL_SEC,
        max_cache_size: int = ACCESS_MAX_CACHE_SIZE,
        clock=time.monotonic,
    ):
        self.gateway = gateway
        self.max_cache_size = max_cache_size
        self.cache: TTLCache[AccessVerdict] = TTLCache(ttl, max_size=max_cache_size, clock=clock)
        self.reset_stats()

    @staticmethod
    def cache_key(identity_key: str, node_id: str) -> str:
        return f"{identity_key}:{node_id}"

    # ==========================================================================
    # Verification
    # ==========================================================================

    async def verify(self, identity_key: str, node_id: str) -> AccessVerdict:
        """
        Verify that identity_key may connect as node_id.

        Args:
            identity_key: Base64 WireGuard public key presented by the peer
            node_id: Node the peer claims to be

        Returns:
            AccessVerdict. Ledger failures produce a denied
            VERIFICATION_ERROR verdict rather than an exception.

        Raises:
            ValidationError: Malformed node id or key (no lookup is made)
        """
        validate_node_id(node_id)
        validate_public_key(identity_key)

        self.stats["total_requests"] += 1
        key = self.cache_key(identity_key, node_id)
        masked = mask_key(identity_key)

        cached = self.cache.get(key)
        if cached is not None:
            self.cache_hits += 1
            logger.debug(f"Access cache hit for {masked} on {node_id}")
            return replace(cached, cached=True)

        self.cache_misses += 1

        try:
            verdict = await self._resolve(identity_key, node_id, masked)
        except Exception as e:
            self.stats["errors"] += 1
            logger.error(f"Access verification error for {masked} on {node_id}: {e}")
            return AccessVerdict(
                granted=False,
                reason=VerdictReason.VERIFICATION_ERROR,
                node_id=node_id,
                identity_key_masked=masked,
                message=f"Error during access verification: {e}",
            )

        self.cache.set(key, verdict)
        self._count(verdict)

        if verdict.reason == VerdictReason.PUBLIC_KEY_MISMATCH:
            logger.warning(f"Access denied for {masked} on {node_id}: {verdict.message}")
        else:
            logger.info(f"{verdict.message} ({masked})")
        return verdict

    async def _resolve(self, identity_key: str, node_id: str, masked: str) -> AccessVerdict:
        def verdict(reason: VerdictReason, message: str, **extra: Any) -> AccessVerdict:
            return AccessVerdict(
                granted=reason == VerdictReason.ACCESS_GRANTED,
                reason=reason,
                node_id=node_id,
                identity_key_masked=masked,
                message=message,
                **extra,
            )

        token_id = await self.gateway.token_id_for_node(node_id)
        if not token_id:
            return verdict(VerdictReason.NODE_NOT_FOUND, f"Node {node_id} not found in registry")

        record = await self.gateway.get_access_record(token_id)
        if not record.is_active:
            return verdict(
                VerdictReason.NODE_INACTIVE, f"Node {node_id} is inactive", token_id=token_id
            )

        if record.public_key != identity_key:
            return verdict(
                VerdictReason.PUBLIC_KEY_MISMATCH,
                f"Public key mismatch for node {node_id} (expected {mask_key(record.public_key)})",
                token_id=token_id,
            )

        owner = await self.gateway.owner_of(token_id)
        if not await self.gateway.has_access(owner, node_id):
            return verdict(
                VerdictReason.ACCESS_DENIED,
                f"Access denied for node {node_id}",
                token_id=token_id,
                owner_address=owner,
            )

        return verdict(
            VerdictReason.ACCESS_GRANTED,
            f"Access granted for node {node_id}",
            token_id=token_id,
            owner_address=owner,
        )

    async def batch_verify(self, requests: Iterable[Tuple[str, str]]) -> List[AccessVerdict]:
        """Verify (identity_key, node_id) pairs one after another."""
        results = []
        for identity_key, node_id in requests:
            results.append(await self.verify(identity_key, node_id))
        return results

    def _count(self, verdict: AccessVerdict) -> None:
        if verdict.granted:
            self.stats["granted_access"] += 1
        else:
            self.stats["denied_access"] += 1

    # ==========================================================================
    # Invalidation
    # ==========================================================================

    def clear_cache(self) -> int:
        count = self.cache.clear()
        logger.info(f"Access cache cleared ({count} entries)")
        return count

    def on_ledger_event(self, event: Optional[LedgerEvent] = None) -> None:
        """Any ledger mutation invalidates every cached decision."""
        if event is not None:
            logger.info(f"Ledger event {event.type.value} (token {event.token_id})")
        self.clear_cache()

    # ==========================================================================
    # Statistics
    # ==========================================================================

    def get_cache_stats(self) -> Dict[str, Any]:
        lookups = self.cache_hits + self.cache_misses
        return {
            "size": len(self.cache),
            "hits": self.cache_hits,
            "misses": self.cache_misses,
            "hit_rate": self.cache_hits / lookups if lookups else 0.0,
            "max_size": self.max_cache_size,
            "evictions": self.cache.evictions,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "cache": self.get_cache_stats(),
            "uptime_sec": time.monotonic() - self._reset_at,
        }

    def reset_stats(self) -> None:
        self.stats: Dict[str, Any] = {
            "total_requests": 0,
            "granted_access": 0,
            "denied_access": 0,
            "errors": 0,
            "last_reset": utc_now(),
        }
        self.cache_hits = 0
        self.cache_misses = 0
        self._reset_at = time.monotonic()

    async def health_check(self) -> Dict[str, Any]:
        ledger = await self.gateway.health_check()
        status = (
            HealthStatus.HEALTHY
            if ledger["status"] == HealthStatus.HEALTHY.value
            else HealthStatus.DEGRADED
        )
        return {
            "status": status.value,
            "ledger": ledger,
            "cache": self.get_cache_stats(),
            "requests": {
                "total": self.stats["total_requests"],
                "granted": self.stats["granted_access"],
                "denied": self.stats["denied_access"],
                "errors": self.stats["errors"],
            },
        }
