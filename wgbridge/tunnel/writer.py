"""
wgbridge Config Writer

Sole owner of the WireGuard configuration file.

Update sequence:
1. Build and validate the config (nothing touched on failure)
2. Back up the current file
3. Write <path>.tmp and rename it into place
4. Restart the interface (wg-quick down / up) if enabled

A failure in steps 2-4 restores the backup taken in step 2 and restarts
the interface again. The original failure is what gets reported.
"""

from __future__ import annotations
import asyncio
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from wgbridge.constants import (
    CONFIG_FILE_MODE,
    DIRECTORY_MODE,
    INTERFACE_NAME,
    LISTEN_PORT,
    MAX_BACKUPS,
    RESTART_TIMEOUT_SEC,
    WIREGUARD_DIR,
)
from wgbridge.core.types import HealthStatus, Registry, utc_now
from wgbridge.core.validation import validate_node_id, validate_private_key
from wgbridge.errors import (
    BridgeError,
    ConfigValidationError,
    ConfigWriteError,
    InterfaceRestartError,
    NoBackupAvailableError,
)
from wgbridge.tunnel.config import TunnelConfig

logger = logging.getLogger(__name__)

_TRANSFER_RE = re.compile(r"([\d.]+)\s*(B|KiB|MiB|GiB|TiB)\s+received,\s*([\d.]+)\s*(B|KiB|MiB|GiB|TiB)\s+sent")
_UNITS = {"B": 1, "KiB": 1024, "MiB": 1024**2, "GiB": 1024**3, "TiB": 1024**4}


def parse_wg_show(output: str) -> Dict[str, Any]:
    """
    Summarise `wg show <iface>` output.

    Returns:
        peers, last_handshake (most recent line seen), transfer_rx and
        transfer_tx in bytes summed over all peers
    """
    status: Dict[str, Any] = {
        "peers": 0,
        "last_handshake": None,
        "transfer_rx": 0,
        "transfer_tx": 0,
    }

    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("peer:"):
            status["peers"] += 1
        elif line.startswith("latest handshake:"):
            status["last_handshake"] = line.split(":", 1)[1].strip()
        elif line.startswith("transfer:"):
            match = _TRANSFER_RE.search(line)
            if match:
                rx, rx_unit, tx, tx_unit = match.groups()
                status["transfer_rx"] += int(float(rx) * _UNITS[rx_unit])
                status["transfer_tx"] += int(float(tx) * _UNITS[tx_unit])

    return status


@dataclass
class UpdateResult:
    """Outcome of a successful configuration update."""
    status: str
    node_id: str
    peer_count: int
    config_path: str
    backup_path: Optional[str] = None
    restarted: bool = False
    duration_ms: float = 0.0
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "node_id": self.node_id,
            "peer_count": self.peer_count,
            "config_path": self.config_path,
            "backup_path": self.backup_path,
            "restarted": self.restarted,
            "duration_ms": round(self.duration_ms, 1),
            "timestamp": self.timestamp,
        }


class ConfigWriter:
    """
    Registry-to-WireGuard configuration writer.

    Args:
        registry_source: Returns the current Registry
        config_path: Live configuration file
        backup_dir: Directory for timestamped backups
        interface_name: WireGuard interface restarted after a write
        max_backups: Backups kept (newest first)
        auto_restart: Restart the interface after writing
    """

    def __init__(
        self,
        registry_source: Callable[[], Registry],
        config_path: Union[str, Path] = f"{WIREGUARD_DIR}/{INTERFACE_NAME}.conf",
        backup_dir: Union[str, Path] = f"{WIREGUARD_DIR}/backups",
        interface_name: str = INTERFACE_NAME,
        listen_port: int = LISTEN_PORT,
        max_backups: int = MAX_BACKUPS,
        auto_restart: bool = True,
        restart_timeout: float = RESTART_TIMEOUT_SEC,
    ):
        self._registry_source = registry_source
        self.config_path = Path(config_path)
        self.backup_dir = Path(backup_dir)
        self.interface_name = interface_name
        self.listen_port = listen_port
        self.max_backups = max_backups
        self.auto_restart = auto_restart
        self.restart_timeout = restart_timeout

        self.update_count = 0
        self.errors = 0
        self.last_update: Optional[str] = None
        self.last_backup: Optional[str] = None
        self.last_error: Optional[str] = None

    # ==========================================================================
    # Update
    # ==========================================================================

    async def update_config(self, node_id: str, private_key: str) -> UpdateResult:
        """
        Regenerate and install the configuration for node_id.

        Raises:
            ValidationError: Malformed node id or private key
            NodeNotInRegistryError: node_id has no peer in the registry
            ConfigValidationError: Generated config is incomplete
            ConfigWriteError: Backup, write or restart failed (after rollback)
        """
        validate_node_id(node_id)
        validate_private_key(private_key)

        start = time.monotonic()
        self.update_count += 1
        logger.info(f"Starting WireGuard configuration update #{self.update_count} for {node_id}")

        try:
            config = TunnelConfig.build(
                self._registry_source(), node_id, private_key, self.listen_port
            )
            problems = config.validate()
            if problems:
                raise ConfigValidationError(problems)

            backup, restarted = await self._install(config.render())

        except BridgeError as e:
            self.errors += 1
            self.last_error = e.message
            logger.error(f"WireGuard configuration update failed: {e.message}")
            raise

        self.last_update = utc_now()
        self.last_error = None

        result = UpdateResult(
            status="success",
            node_id=node_id,
            peer_count=len(config.peers),
            config_path=str(self.config_path),
            backup_path=str(backup) if backup else None,
            restarted=restarted,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        logger.info(
            f"WireGuard configuration updated: {result.peer_count} peers "
            f"in {result.duration_ms:.0f}ms"
        )
        return result

    async def _install(self, content: str) -> Tuple[Optional[Path], bool]:
        loop = asyncio.get_running_loop()
        stage = "backup"
        backup: Optional[Path] = None

        try:
            await loop.run_in_executor(None, self._ensure_directories)
            backup = await loop.run_in_executor(None, self._create_backup)

            stage = "write"
            await loop.run_in_executor(None, self._write_file, content)

            if self.auto_restart:
                stage = "restart"
                await self.restart_interface()

        except (OSError, InterfaceRestartError) as e:
            error = e.message if isinstance(e, BridgeError) else str(e)
            logger.error(f"Configuration {stage} failed: {error}")
            rolled_back = stage != "backup" and await self._rollback(backup)
            raise ConfigWriteError(stage, error, rolled_back) from e

        return backup, self.auto_restart

    # ==========================================================================
    # Files
    # ==========================================================================

    def _ensure_directories(self) -> None:
        for directory in (self.config_path.parent, self.backup_dir):
            if not directory.exists():
                directory.mkdir(parents=True, mode=DIRECTORY_MODE)
                logger.info(f"Created directory: {directory}")

    def _create_backup(self) -> Optional[Path]:
        if not self.config_path.exists():
            logger.warning("No existing configuration to back up")
            return None

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        backup = self.backup_dir / f"{self.interface_name}-{stamp}.conf"

        shutil.copyfile(self.config_path, backup)
        os.chmod(backup, CONFIG_FILE_MODE)

        self.last_backup = str(backup)
        logger.info(f"Configuration backup created: {backup}")

        self._cleanup_backups()
        return backup

    def _cleanup_backups(self) -> None:
        for old in self.list_backups()[self.max_backups:]:
            try:
                old.unlink()
                logger.debug(f"Removed old backup {old.name}")
            except OSError as e:
                logger.warning(f"Failed to remove old backup {old}: {e}")

    def list_backups(self) -> List[Path]:
        """Backups of this interface, newest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(
            self.backup_dir.glob(f"{self.interface_name}-*.conf"),
            key=lambda p: p.name,
            reverse=True,
        )

    def _write_file(self, content: str) -> None:
        tmp_path = self.config_path.with_name(self.config_path.name + ".tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONFIG_FILE_MODE)
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp_path, self.config_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug(f"Configuration written to {self.config_path}")

    def _restore(self, backup: Path) -> None:
        shutil.copyfile(backup, self.config_path)
        os.chmod(self.config_path, CONFIG_FILE_MODE)

    async def _rollback(self, backup: Optional[Path]) -> bool:
        """
        Put the backup back in place and restart the interface.

        Returns:
            True if the backup was restored (and the interface restarted
            when auto-restart is on)
        """
        try:
            if backup is None or not backup.exists():
                raise NoBackupAvailableError()

            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._restore, backup)

            if self.auto_restart:
                await self.restart_interface()

        except (OSError, BridgeError) as e:
            error = e.message if isinstance(e, BridgeError) else str(e)
            logger.error(f"Rollback failed: {error}")
            return False

        logger.info(f"Configuration rolled back to {backup}")
        return True

    # ==========================================================================
    # Interface
    # ==========================================================================

    async def _run(self, *cmd: str) -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise InterfaceRestartError(self.interface_name, " ".join(cmd), str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(),
                timeout=self.restart_timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise InterfaceRestartError(
                self.interface_name, " ".join(cmd), f"timed out after {self.restart_timeout}s"
            )

        return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def restart_interface(self) -> None:
        """
        Bring the interface down and up again.

        A failing `down` is tolerated (the interface may not be up yet).

        Raises:
            InterfaceRestartError: `wg-quick up` failed
        """
        logger.info(f"Restarting WireGuard interface {self.interface_name}")

        code, _, stderr = await self._run("wg-quick", "down", self.interface_name)
        if code != 0:
            logger.warning(f"wg-quick down {self.interface_name} failed: {stderr.strip()}")

        code, _, stderr = await self._run("wg-quick", "up", self.interface_name)
        if code != 0:
            raise InterfaceRestartError(
                self.interface_name, f"wg-quick up {self.interface_name}", stderr.strip()
            )

        logger.info(f"WireGuard interface {self.interface_name} restarted")

    async def get_interface_status(self) -> Dict[str, Any]:
        """Live interface state from `wg show`."""
        try:
            code, stdout, stderr = await self._run("wg", "show", self.interface_name)
        except InterfaceRestartError as e:
            return {"interface": self.interface_name, "status": "inactive", "error": e.message}

        if code != 0:
            return {
                "interface": self.interface_name,
                "status": "inactive",
                "error": stderr.strip() or f"exit code {code}",
            }

        return {
            "interface": self.interface_name,
            "status": "active",
            **parse_wg_show(stdout),
        }

    # ==========================================================================
    # Status
    # ==========================================================================

    def get_stats(self) -> Dict[str, Any]:
        return {
            "update_count": self.update_count,
            "errors": self.errors,
            "last_update": self.last_update,
            "last_backup": self.last_backup,
            "last_error": self.last_error,
            "config_path": str(self.config_path),
            "interface_name": self.interface_name,
            "auto_restart": self.auto_restart,
            "backups": len(self.list_backups()),
        }

    async def health_check(self) -> Dict[str, Any]:
        interface = await self.get_interface_status()
        status = HealthStatus.HEALTHY if interface["status"] == "active" else HealthStatus.DEGRADED
        return {
            "status": status.value,
            "interface": interface,
            "config": self.get_stats(),
        }
