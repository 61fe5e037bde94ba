"""
wgbridge Bridge

Wires the ledger gateway, access cache, registry sync and config writer
into one lifecycle:

    initialize -> start (sync -> configure -> monitor) -> stop

Ledger events flow through the EventBus. Each one clears the gateway
and access caches and schedules a delayed registry sync; every
successful sync regenerates the WireGuard configuration.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from wgbridge.access.control import AccessCache
from wgbridge.core.types import (
    AccessVerdict,
    HealthStatus,
    Registry,
    VerdictReason,
    mask_key,
    utc_now,
)
from wgbridge.core.validation import validate_private_key
from wgbridge.errors import BridgeError, ConfigurationError, ValidationError
from wgbridge.ledger.backend import LedgerBackend, LedgerEvent, Signer
from wgbridge.ledger.events import EventBus, LedgerEventPoller
from wgbridge.ledger.gateway import CallGateway, RetryPolicy
from wgbridge.ledger.rpc import JsonRpcLedger
from wgbridge.node.config import BridgeConfig, read_private_key
from wgbridge.registry.store import RegistryStore
from wgbridge.registry.sync import RegistrySync, SyncResult, SyncStatus
from wgbridge.tunnel.writer import ConfigWriter

logger = logging.getLogger(__name__)


class BridgeStatus(str, Enum):
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class Bridge:
    """
    One running bridge node.

    Args:
        config: Bridge configuration
        backend: Ledger backend to use instead of JSON-RPC (tests, local runs)
    """

    def __init__(self, config: BridgeConfig, backend: Optional[LedgerBackend] = None):
        self.config = config
        self._backend_override = backend

        self.backend: Optional[LedgerBackend] = None
        self.gateway: Optional[CallGateway] = None
        self.bus: Optional[EventBus] = None
        self.poller: Optional[LedgerEventPoller] = None
        self.access: Optional[AccessCache] = None
        self.sync: Optional[RegistrySync] = None
        self.writer: Optional[ConfigWriter] = None

        self.status = BridgeStatus.INITIALIZING
        self.start_time: Optional[str] = None
        self._started_at: Optional[float] = None
        self.last_health_check: Optional[str] = None
        self.errors = 0
        self.last_error: Optional[str] = None

        self._private_key: Optional[str] = None
        self._handlers: Dict[str, List[Callable]] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._unsubscribe: List[Callable[[], None]] = []

    @property
    def node_id(self) -> str:
        return self.config.node_id

    @property
    def is_running(self) -> bool:
        return self.status == BridgeStatus.RUNNING

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def initialize(self) -> None:
        """
        Build every component.

        Raises:
            ConfigurationError: Invalid configuration or unreadable key
        """
        logger.info(f"Initializing bridge for node {self.node_id}")

        errors = self.config.validate()
        if errors:
            self._fail("; ".join(errors))
            raise ConfigurationError(errors)

        loop = asyncio.get_running_loop()
        try:
            private_key = await loop.run_in_executor(
                None, read_private_key, self.config.private_key_path
            )
            self._private_key = validate_private_key(private_key)
        except OSError as e:
            self._fail(str(e))
            raise ConfigurationError([f"Cannot read private key: {e}"]) from e
        except ValidationError as e:
            self._fail(e.message)
            raise ConfigurationError([e.message]) from e

        ledger = self.config.ledger
        self.backend = self._backend_override or JsonRpcLedger(
            rpc_url=ledger.resolved_rpc_url,
            contract_address=ledger.contract_address,
            chain_id=ledger.resolved_chain_id,
            network=ledger.network,
            timeout=ledger.timeout_sec,
        )

        signer = None
        if ledger.signer_address:
            signer = Signer(address=ledger.signer_address, password=ledger.signer_password)

        self.gateway = CallGateway(
            self.backend,
            signer=signer,
            cache_ttl=ledger.cache_ttl_sec,
            retry=RetryPolicy(
                max_retries=ledger.max_retries,
                base_delay_ms=ledger.base_delay_ms,
                max_delay_ms=ledger.max_delay_ms,
                multiplier=ledger.backoff_multiplier,
            ),
        )

        self.bus = EventBus()
        self.poller = LedgerEventPoller(
            self.backend, self.bus, interval=ledger.event_poll_interval_sec
        )

        self.access = AccessCache(
            self.gateway,
            ttl=self.config.access.cache_ttl_sec,
            max_cache_size=self.config.access.max_cache_size,
        )

        self.sync = RegistrySync(
            self.gateway,
            RegistryStore(self.config.registry.path),
            contract_address=ledger.contract_address,
            max_token_id=self.config.registry.max_token_id,
            sync_interval=self.config.registry.sync_interval_sec,
            event_sync_delay=self.config.registry.event_sync_delay_sec,
        )
        await self.sync.load()

        tunnel = self.config.tunnel
        self.writer = ConfigWriter(
            self._current_registry,
            config_path=tunnel.config_path,
            backup_dir=tunnel.backup_dir,
            interface_name=tunnel.interface_name,
            listen_port=tunnel.listen_port,
            max_backups=tunnel.max_backups,
            auto_restart=tunnel.auto_restart,
            restart_timeout=tunnel.restart_timeout_sec,
        )

        self._unsubscribe.append(self.bus.subscribe(self._on_ledger_event))
        self._unsubscribe.append(self.sync.on_synced(self._on_registry_synced))

        self.status = BridgeStatus.INITIALIZED
        logger.info(
            f"Bridge components initialized (ledger {ledger.network}, "
            f"signer {'configured' if signer else 'not configured'})"
        )

    async def start(self) -> None:
        """Initial sync and configuration, then start background tasks."""
        if self.status == BridgeStatus.INITIALIZING:
            await self.initialize()

        logger.info("Starting bridge")

        await self.sync_registry(force=True)
        await self.update_configuration()

        self.bus.start()
        self.poller.start()
        if self.config.registry.auto_sync:
            self.sync.start_auto_sync()
        self._health_task = asyncio.create_task(self._health_loop())

        self.status = BridgeStatus.RUNNING
        self.start_time = utc_now()
        self._started_at = time.monotonic()
        logger.info(f"Bridge started for node {self.node_id}")

    async def stop(self) -> None:
        """
        Cancel timers and background tasks, then close the ledger backend.

        A registry sync already underway is allowed to finish.
        """
        logger.info("Stopping bridge")

        if self._health_task:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        if self.poller:
            await self.poller.stop()
        if self.bus:
            await self.bus.stop()
        if self.sync:
            await self.sync.stop()

        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

        if self.backend:
            await self.backend.close()

        self.status = BridgeStatus.STOPPED
        logger.info("Bridge stopped")

    def _fail(self, error: str) -> None:
        self.status = BridgeStatus.ERROR
        self.errors += 1
        self.last_error = error
        logger.error(f"Bridge error: {error}")

    def _current_registry(self) -> Registry:
        return self.sync.registry

    # ==========================================================================
    # Operations
    # ==========================================================================

    async def handle_connection(self, identity_key: str, node_id: str) -> AccessVerdict:
        """
        Decide whether a connecting peer is allowed in.

        Never raises: malformed input and internal failures come back as a
        denied VERIFICATION_ERROR verdict.
        """
        masked = mask_key(identity_key if isinstance(identity_key, str) else None)
        logger.info(f"Connection attempt from {masked} as {node_id!r}")

        if self.access is None:
            verdict = self._error_verdict(identity_key, node_id, "bridge not initialized")
        else:
            try:
                verdict = await self.access.verify(identity_key, node_id)
            except BridgeError as e:
                self.errors += 1
                self.last_error = e.message
                verdict = self._error_verdict(identity_key, node_id, e.message)

        if verdict.granted:
            logger.info(f"Access granted to {masked} on {node_id}")
        else:
            logger.warning(f"Access denied to {masked} on {node_id!r}: {verdict.reason.value}")

        await self._trigger("connection", {
            "public_key": masked,
            "node_id": node_id,
            "result": verdict.to_dict(),
        })
        return verdict

    @staticmethod
    def _error_verdict(identity_key: Any, node_id: Any, error: str) -> AccessVerdict:
        return AccessVerdict(
            granted=False,
            reason=VerdictReason.VERIFICATION_ERROR,
            node_id=node_id if isinstance(node_id, str) else "",
            identity_key_masked=mask_key(identity_key if isinstance(identity_key, str) else None),
            message=f"Bridge error: {error}",
        )

    async def update_configuration(self) -> Dict[str, Any]:
        """Regenerate the WireGuard configuration. Returns a status dict."""
        try:
            result = await self.writer.update_config(self.node_id, self._private_key)
        except BridgeError as e:
            self.errors += 1
            self.last_error = e.message
            logger.error(f"Configuration update failed: {e.message}")
            return {"status": "error", "error": e.message, **e.to_dict()}

        data = result.to_dict()
        await self._trigger("config_update", data)
        return data

    async def sync_registry(self, force: bool = False) -> Dict[str, Any]:
        """Sync the registry with the ledger. Returns a status dict."""
        result = await self.sync.sync_with_contract(force=force)
        if result.status == SyncStatus.ERROR:
            self.errors += 1
            self.last_error = result.error

        data = result.to_dict()
        await self._trigger("registry_sync", data)
        return data

    async def _on_ledger_event(self, event: LedgerEvent) -> None:
        logger.debug(f"Ledger event {event.type.value} for token {event.token_id}")
        self.gateway.clear_cache()
        self.access.on_ledger_event(event)
        self.sync.schedule_sync()
        await self._trigger("ledger_event", event.to_dict())

    async def _on_registry_synced(self, registry: Registry, result: SyncResult) -> None:
        if self.is_running:
            await self.update_configuration()

    # ==========================================================================
    # Event handlers
    # ==========================================================================

    def add_event_handler(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def remove_event_handler(self, event: str, handler: Callable) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def _trigger(self, event: str, data: Dict[str, Any]) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event handler error for {event}: {e}")

    # ==========================================================================
    # Health & stats
    # ==========================================================================

    async def get_health_status(self) -> Dict[str, Any]:
        """Per-component health plus the aggregate."""
        if self.gateway is None:
            return {
                "status": HealthStatus.UNHEALTHY.value,
                "error": "bridge not initialized",
                "timestamp": utc_now(),
            }

        components = {
            "ledger": await self.gateway.health_check(),
            "access_control": await self.access.health_check(),
            "registry": await self.sync.health_check(),
            "config": await self.writer.health_check(),
        }
        overall = HealthStatus.aggregate(
            [HealthStatus(c["status"]) for c in components.values()]
        )

        self.last_health_check = utc_now()
        return {
            "status": overall.value,
            "bridge": self._bridge_state(),
            "components": components,
            "timestamp": self.last_health_check,
        }

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_check_interval_sec)
            try:
                health = await self.get_health_status()
            except Exception as e:
                logger.error(f"Health check error: {e}")
                continue

            if health["status"] == HealthStatus.UNHEALTHY.value:
                logger.error("Health check failed")
                await self._trigger("health_check_failed", health)
            elif health["status"] == HealthStatus.DEGRADED.value:
                logger.warning("Health check degraded")
                await self._trigger("health_check_degraded", health)
            else:
                logger.debug("Health check passed")

    def _bridge_state(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "node_id": self.node_id,
            "start_time": self.start_time,
            "uptime_sec": time.monotonic() - self._started_at if self._started_at else 0.0,
            "last_health_check": self.last_health_check,
            "errors": self.errors,
            "last_error": self.last_error,
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "bridge": self._bridge_state(),
            "ledger": self.gateway.get_stats() if self.gateway else None,
            "access_control": self.access.get_stats() if self.access else None,
            "registry": self.sync.get_stats() if self.sync else None,
            "config": self.writer.get_stats() if self.writer else None,
            "events": self.poller.get_stats() if self.poller else None,
            "timestamp": utc_now(),
        }
