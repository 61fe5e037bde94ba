"""
wgbridge Registry Synchronization

Rebuilds the full peer set from the ledger and persists it.

State machine: IDLE -> SYNCING -> IDLE. A sync requested while one is
running returns "skipped" unless forced. Every successful sync builds a
fresh Registry and swaps it in whole; a failed sync leaves the previous
Registry untouched.

Addresses are derived from token ids: 10.0.0.(1 + token_id % 254).
Two tokens can derive the same address; the lower token id keeps it and
the later one is moved to the lowest free address. Every such collision
is reported in the SyncResult.
"""

from __future__ import annotations
import asyncio
import inspect
import ipaddress
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from wgbridge.constants import (
    ADDRESS_PREFIX,
    EVENT_SYNC_DELAY_SEC,
    FIRST_HOST_OCTET,
    HOST_OCTET_SPAN,
    MAX_TOKEN_ID,
    NETWORK_CIDR,
    REGISTRY_VERSION,
    SYNC_INTERVAL_SEC,
    SYNC_UNHEALTHY_AFTER_ERRORS,
)
from wgbridge.core.types import (
    AccessRecord,
    HealthStatus,
    Peer,
    Registry,
    hostname_for,
    utc_now,
)
from wgbridge.core.validation import validate_node_id, validate_public_key
from wgbridge.errors import (
    BridgeError,
    NoAddressAvailableError,
    RemoteCallFailedError,
    TokenNotFoundError,
    ValidationError,
)
from wgbridge.ledger.gateway import CallGateway
from wgbridge.registry.store import RegistryStore

logger = logging.getLogger(__name__)

SyncCallback = Callable[["Registry", "SyncResult"], Union[None, Awaitable[None]]]


# ==============================================================================
# Address assignment
# ==============================================================================

def derive_address(token_id: int) -> str:
    """Deterministic overlay address for a token."""
    return f"{ADDRESS_PREFIX}{FIRST_HOST_OCTET + token_id % HOST_OCTET_SPAN}"


def assign_address(peers: Iterable[Peer], cidr: str = NETWORK_CIDR) -> str:
    """
    Lowest host address in cidr not held by any peer.

    Raises:
        NoAddressAvailableError: Every host address is taken
    """
    taken = {p.ip_address for p in peers}
    return _lowest_free(taken, cidr)


def _lowest_free(taken: Set[str], cidr: str) -> str:
    for host in ipaddress.ip_network(cidr, strict=False).hosts():
        if str(host) not in taken:
            return str(host)
    raise NoAddressAvailableError(cidr)


# ==============================================================================
# Results
# ==============================================================================

class SyncState(Enum):
    """Synchronization state."""
    IDLE = auto()
    SYNCING = auto()


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SyncConflict:
    """
    Inconsistency found while building the peer set.

    kind is "address" (two tokens derive the same address) or "node_id"
    (two active tokens claim the same node).
    """
    kind: str
    token_id: int
    other_token_id: int
    value: str
    resolved_to: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "token_id": self.token_id,
            "other_token_id": self.other_token_id,
            "value": self.value,
            "resolved_to": self.resolved_to,
        }


@dataclass
class SyncResult:
    """Outcome of one sync_with_contract() call."""
    status: SyncStatus
    peer_count: int = 0
    conflicts: List[SyncConflict] = field(default_factory=list)
    skipped_tokens: List[int] = field(default_factory=list)
    duration_ms: float = 0.0
    error: Optional[str] = None
    reason: Optional[str] = None
    consecutive_errors: int = 0
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "peer_count": self.peer_count,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "skipped_tokens": list(self.skipped_tokens),
            "duration_ms": round(self.duration_ms, 1),
            "error": self.error,
            "reason": self.reason,
            "consecutive_errors": self.consecutive_errors,
            "timestamp": self.timestamp,
        }


@dataclass
class _ResolvedToken:
    token_id: int
    record: AccessRecord
    owner: str
    created_at: str


# ==============================================================================
# Registry synchronization
# ==============================================================================

class RegistrySync:
    """
    Ledger-to-registry synchronizer.

    Owns the in-memory Registry. Readers always see a complete Registry:
    either the previous one or the freshly built one.
    """

    def __init__(
        self,
        gateway: CallGateway,
        store: RegistryStore,
        contract_address: str,
        max_token_id: int = MAX_TOKEN_ID,
        sync_interval: float = SYNC_INTERVAL_SEC,
        event_sync_delay: float = EVENT_SYNC_DELAY_SEC,
    ):
        self.gateway = gateway
        self.store = store
        self.contract_address = contract_address
        self.max_token_id = max_token_id
        self.sync_interval = sync_interval
        self.event_sync_delay = event_sync_delay

        self.registry = Registry(contract_address=contract_address)
        self.state = SyncState.IDLE
        self.last_sync: Optional[str] = None
        self.last_result: Optional[SyncResult] = None
        self.last_error: Optional[str] = None
        self.consecutive_errors = 0
        self.sync_count = 0

        self._callbacks: List[SyncCallback] = []
        self._auto_task: Optional[asyncio.Task] = None
        self._scheduled_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def is_syncing(self) -> bool:
        return self.state == SyncState.SYNCING

    async def load(self) -> Registry:
        """
        Load the persisted registry, creating and saving an empty one if
        none exists or the stored one is invalid.
        """
        loop = asyncio.get_running_loop()
        registry = await loop.run_in_executor(None, self.store.load)

        if registry is None:
            registry = Registry(contract_address=self.contract_address)
            await loop.run_in_executor(None, self.store.save, registry)
            logger.info(f"New registry created at {self.store.path}")
        elif registry.contract_address.lower() != self.contract_address.lower():
            logger.warning(
                f"Registry was built from {registry.contract_address}, "
                f"now tracking {self.contract_address}"
            )

        self.registry = registry
        self.last_sync = registry.last_sync
        return registry

    # ==========================================================================
    # Sync
    # ==========================================================================

    async def sync_with_contract(self, force: bool = False) -> SyncResult:
        """
        Rebuild the registry from the ledger.

        Args:
            force: Run even if another sync is in progress

        Returns:
            SyncResult with status success, error or skipped
        """
        if self.is_syncing and not force:
            logger.warning("Sync already in progress, skipping")
            return SyncResult(status=SyncStatus.SKIPPED, reason="sync_in_progress")

        self.state = SyncState.SYNCING
        start = time.monotonic()
        logger.info(f"Starting registry sync (tokens 1..{self.max_token_id})")

        try:
            resolved, skipped = await self._scan()
            peers, conflicts = self._build_peers(resolved)

            registry = Registry(
                contract_address=self.contract_address,
                peers=peers,
                network=self.registry.network,
                last_sync=utc_now(),
                version=REGISTRY_VERSION,
                created_at=self.registry.created_at,
            )

            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.store.save, registry)

        except BridgeError as e:
            return self._failed(e.message, start)
        except Exception as e:
            return self._failed(f"unexpected {type(e).__name__}: {e}", start)

        finally:
            self.state = SyncState.IDLE

        self.registry = registry
        self.last_sync = registry.last_sync
        self.consecutive_errors = 0
        self.last_error = None
        self.sync_count += 1

        result = SyncResult(
            status=SyncStatus.SUCCESS,
            peer_count=len(peers),
            conflicts=conflicts,
            skipped_tokens=skipped,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        self.last_result = result
        logger.info(
            f"Registry sync completed: {len(peers)} peers, {len(conflicts)} conflicts "
            f"in {result.duration_ms:.0f}ms"
        )

        await self._notify(registry, result)
        return result

    def _failed(self, error: str, start: float) -> SyncResult:
        """Record a top-level failure. The current registry stays in place."""
        self.consecutive_errors += 1
        self.last_error = error
        logger.error(f"Registry sync failed ({self.consecutive_errors} consecutive): {error}")

        result = SyncResult(
            status=SyncStatus.ERROR,
            peer_count=len(self.registry.peers),
            duration_ms=(time.monotonic() - start) * 1000,
            error=error,
            consecutive_errors=self.consecutive_errors,
        )
        self.last_result = result
        return result

    async def _scan(self) -> Tuple[List[_ResolvedToken], List[int]]:
        """
        Fetch every active token in the scan range.

        Nonexistent tokens are skipped silently. Other per-token rejections
        are logged and skipped. Network and rate-limit failures abort.
        """
        resolved: List[_ResolvedToken] = []
        skipped: List[int] = []

        for token_id in range(1, self.max_token_id + 1):
            try:
                record = await self.gateway.get_access_record(token_id)
                if not record.node_id or not record.is_active:
                    continue

                validate_node_id(record.node_id)
                validate_public_key(record.public_key)
                created_at = _timestamp(record.created_at)

                owner = await self.gateway.owner_of(token_id)

            except TokenNotFoundError:
                continue
            except RemoteCallFailedError as e:
                logger.warning(f"Error getting token {token_id}: {e.message}")
                skipped.append(token_id)
                continue
            except ValidationError as e:
                logger.warning(f"Token {token_id} holds malformed data: {e.message}")
                skipped.append(token_id)
                continue
            except (OverflowError, OSError, ValueError) as e:
                logger.warning(f"Token {token_id} has an unusable creation time: {e}")
                skipped.append(token_id)
                continue

            resolved.append(_ResolvedToken(
                token_id=token_id, record=record, owner=owner, created_at=created_at
            ))

        return resolved, skipped

    def _build_peers(self, resolved: List[_ResolvedToken]) -> Tuple[List[Peer], List[SyncConflict]]:
        """Turn resolved tokens into peers, resolving node id and address clashes."""
        conflicts: List[SyncConflict] = []
        cidr = self.registry.network.cidr

        # Lowest token id wins a node id
        by_node: Dict[str, _ResolvedToken] = {}
        for token in sorted(resolved, key=lambda t: t.token_id):
            holder = by_node.get(token.record.node_id)
            if holder is not None:
                logger.warning(
                    f"Node {token.record.node_id} claimed by tokens "
                    f"{holder.token_id} and {token.token_id}; keeping {holder.token_id}"
                )
                conflicts.append(SyncConflict(
                    kind="node_id",
                    token_id=token.token_id,
                    other_token_id=holder.token_id,
                    value=token.record.node_id,
                ))
                continue
            by_node[token.record.node_id] = token

        tokens = sorted(by_node.values(), key=lambda t: t.token_id)

        # First pass: derived addresses, lowest token id first
        claimed: Dict[str, int] = {}
        addresses: Dict[int, str] = {}
        displaced: List[Tuple[_ResolvedToken, str]] = []
        for token in tokens:
            derived = derive_address(token.token_id)
            if derived in claimed:
                displaced.append((token, derived))
            else:
                claimed[derived] = token.token_id
                addresses[token.token_id] = derived

        # Second pass: colliding tokens get the lowest free address
        for token, derived in displaced:
            try:
                address = _lowest_free(set(claimed), cidr)
            except NoAddressAvailableError:
                logger.error(f"No address left for token {token.token_id}; dropping it")
                conflicts.append(SyncConflict(
                    kind="address",
                    token_id=token.token_id,
                    other_token_id=claimed[derived],
                    value=derived,
                ))
                continue

            logger.warning(
                f"Address {derived} collision between tokens {claimed[derived]} "
                f"and {token.token_id}; token {token.token_id} moved to {address}"
            )
            conflicts.append(SyncConflict(
                kind="address",
                token_id=token.token_id,
                other_token_id=claimed[derived],
                value=derived,
                resolved_to=address,
            ))
            claimed[address] = token.token_id
            addresses[token.token_id] = address

        peers = [
            Peer(
                node_id=token.record.node_id,
                public_key=token.record.public_key,
                ip_address=addresses[token.token_id],
                hostname=hostname_for(token.record.node_id),
                owner_address=token.owner,
                token_id=token.token_id,
                active=token.record.is_active,
                created_at=token.created_at,
            )
            for token in tokens
            if token.token_id in addresses
        ]
        return peers, conflicts

    # ==========================================================================
    # Subscribers
    # ==========================================================================

    def on_synced(self, callback: SyncCallback) -> Callable[[], None]:
        """
        Call callback(registry, result) after every successful sync.

        Returns:
            Function that removes the callback
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def _notify(self, registry: Registry, result: SyncResult) -> None:
        for callback in list(self._callbacks):
            try:
                outcome = callback(registry, result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Sync callback error: {e}")

    # ==========================================================================
    # Timers
    # ==========================================================================

    def _launch_sync(self) -> asyncio.Task:
        task = asyncio.create_task(self.sync_with_contract())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def schedule_sync(self, delay: Optional[float] = None) -> None:
        """
        Run a sync once after delay seconds.

        A newer request replaces a pending one.
        """
        delay = self.event_sync_delay if delay is None else delay

        if self._scheduled_task and not self._scheduled_task.done():
            self._scheduled_task.cancel()

        self._scheduled_task = asyncio.create_task(self._delayed_sync(delay))
        logger.debug(f"Registry sync scheduled in {delay}s")

    async def _delayed_sync(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._launch_sync()

    def start_auto_sync(self) -> None:
        if self._auto_task and not self._auto_task.done():
            self._auto_task.cancel()
        self._auto_task = asyncio.create_task(self._auto_sync_loop())
        logger.info(f"Auto-sync started (every {self.sync_interval}s)")

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            self._launch_sync()

    async def stop(self) -> None:
        """Cancel pending timers and let any running sync finish."""
        for task in (self._auto_task, self._scheduled_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._auto_task = None
        self._scheduled_task = None

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        logger.info("Registry sync stopped")

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def get_peer_by_node_id(self, node_id: str) -> Optional[Peer]:
        return next((p for p in self.registry.peers if p.node_id == node_id), None)

    def get_peer_by_public_key(self, public_key: str) -> Optional[Peer]:
        return next((p for p in self.registry.peers if p.public_key == public_key), None)

    def get_peer_by_ip(self, ip_address: str) -> Optional[Peer]:
        return next((p for p in self.registry.peers if p.ip_address == ip_address), None)

    def get_active_peers(self) -> List[Peer]:
        return [p for p in self.registry.peers if p.active]

    def get_peers_by_owner(self, owner_address: str) -> List[Peer]:
        owner = owner_address.lower()
        return [p for p in self.registry.peers if p.owner_address.lower() == owner]

    # ==========================================================================
    # Status
    # ==========================================================================

    def get_stats(self) -> Dict[str, Any]:
        active = self.get_active_peers()
        return {
            "total_peers": len(self.registry.peers),
            "active_peers": len(active),
            "inactive_peers": len(self.registry.peers) - len(active),
            "sync_state": {
                "state": self.state.name,
                "last_sync": self.last_sync,
                "sync_count": self.sync_count,
                "consecutive_errors": self.consecutive_errors,
                "last_error": self.last_error,
                "conflicts": len(self.last_result.conflicts) if self.last_result else 0,
            },
            "registry": {
                "version": self.registry.version,
                "contract_address": self.registry.contract_address,
                "network": {
                    "cidr": self.registry.network.cidr,
                    "dns_server": self.registry.network.dns_server,
                },
            },
        }

    async def health_check(self) -> Dict[str, Any]:
        ledger = await self.gateway.health_check()

        if self.consecutive_errors >= SYNC_UNHEALTHY_AFTER_ERRORS:
            status = HealthStatus.UNHEALTHY
        elif self.consecutive_errors or ledger["status"] != HealthStatus.HEALTHY.value:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return {
            "status": status.value,
            "ledger": ledger,
            "registry": self.get_stats(),
        }


def _timestamp(seconds: int) -> str:
    if not seconds:
        return utc_now()
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
