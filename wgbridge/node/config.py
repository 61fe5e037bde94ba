"""
wgbridge Bridge Configuration
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from wgbridge.constants import (
    ACCESS_CACHE_TTL_SEC,
    ACCESS_MAX_CACHE_SIZE,
    DEFAULT_CONTRACT_ADDRESS,
    DEFAULT_NETWORK,
    DEFAULT_RPC_TIMEOUT_SEC,
    EVENT_POLL_INTERVAL_SEC,
    EVENT_SYNC_DELAY_SEC,
    GATEWAY_BACKOFF_MULTIPLIER,
    GATEWAY_BASE_DELAY_MS,
    GATEWAY_CACHE_TTL_SEC,
    GATEWAY_MAX_DELAY_MS,
    GATEWAY_MAX_RETRIES,
    HEALTH_CHECK_INTERVAL_SEC,
    INTERFACE_NAME,
    LISTEN_PORT,
    MAX_BACKUPS,
    MAX_TOKEN_ID,
    NETWORKS,
    REGISTRY_FILENAME,
    RESTART_TIMEOUT_SEC,
    SYNC_INTERVAL_SEC,
    WIREGUARD_DIR,
)
from wgbridge.core.validation import is_valid_address, validate_node_id
from wgbridge.errors import InvalidNodeIdError

logger = logging.getLogger(__name__)

REDACTED = "***"
DEFAULT_PRIVATE_KEY_PATH = f"{WIREGUARD_DIR}/private.key"


@dataclass
class LedgerConfig:
    """Ledger connection configuration."""
    network: str = DEFAULT_NETWORK
    rpc_url: Optional[str] = None            # None: use the network preset
    contract_address: str = DEFAULT_CONTRACT_ADDRESS
    chain_id: Optional[int] = None
    signer_address: Optional[str] = None
    signer_password: Optional[str] = field(default=None, repr=False)
    timeout_sec: float = DEFAULT_RPC_TIMEOUT_SEC
    cache_ttl_sec: float = GATEWAY_CACHE_TTL_SEC
    max_retries: int = GATEWAY_MAX_RETRIES
    base_delay_ms: int = GATEWAY_BASE_DELAY_MS
    max_delay_ms: int = GATEWAY_MAX_DELAY_MS
    backoff_multiplier: float = GATEWAY_BACKOFF_MULTIPLIER
    event_poll_interval_sec: float = EVENT_POLL_INTERVAL_SEC

    @property
    def resolved_rpc_url(self) -> Optional[str]:
        if self.rpc_url:
            return self.rpc_url
        preset = NETWORKS.get(self.network)
        return preset["rpc_url"] if preset else None

    @property
    def resolved_chain_id(self) -> Optional[int]:
        if self.chain_id is not None:
            return self.chain_id
        preset = NETWORKS.get(self.network)
        return preset["chain_id"] if preset else None


@dataclass
class AccessConfig:
    """Access decision cache configuration."""
    cache_ttl_sec: float = ACCESS_CACHE_TTL_SEC
    max_cache_size: int = ACCESS_MAX_CACHE_SIZE


@dataclass
class RegistryConfig:
    """Registry storage and sync configuration."""
    path: str = f"./data/{REGISTRY_FILENAME}"
    max_token_id: int = MAX_TOKEN_ID
    auto_sync: bool = True
    sync_interval_sec: float = SYNC_INTERVAL_SEC
    event_sync_delay_sec: float = EVENT_SYNC_DELAY_SEC


@dataclass
class TunnelSettings:
    """WireGuard configuration file settings."""
    config_path: str = f"{WIREGUARD_DIR}/{INTERFACE_NAME}.conf"
    backup_dir: str = f"{WIREGUARD_DIR}/backups"
    interface_name: str = INTERFACE_NAME
    listen_port: int = LISTEN_PORT
    max_backups: int = MAX_BACKUPS
    auto_restart: bool = True
    restart_timeout_sec: float = RESTART_TIMEOUT_SEC


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 100
    backup_count: int = 5


@dataclass
class BridgeConfig:
    """
    Complete bridge configuration.

    All settings for running one bridge node.
    """
    # Identity
    node_id: str = ""
    private_key_path: str = DEFAULT_PRIVATE_KEY_PATH
    health_check_interval_sec: float = HEALTH_CHECK_INTERVAL_SEC

    # Sub-configurations
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    tunnel: TunnelSettings = field(default_factory=TunnelSettings)
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def signer_configured(self) -> bool:
        return bool(self.ledger.signer_address)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        # Identity
        try:
            validate_node_id(self.node_id)
        except InvalidNodeIdError as e:
            errors.append(e.message)

        if not self.private_key_path:
            errors.append("private_key_path cannot be empty")

        # Ledger
        if not self.ledger.resolved_rpc_url:
            errors.append(f"Unknown network {self.ledger.network!r} and no rpc_url given")

        if not is_valid_address(self.ledger.contract_address):
            errors.append(f"Invalid contract address: {self.ledger.contract_address!r}")

        if self.ledger.signer_address and not is_valid_address(self.ledger.signer_address):
            errors.append(f"Invalid signer address: {self.ledger.signer_address!r}")

        if self.ledger.cache_ttl_sec <= 0:
            errors.append("ledger cache_ttl_sec must be positive")

        if self.ledger.max_retries < 0:
            errors.append("max_retries cannot be negative")

        # Access
        if self.access.cache_ttl_sec <= 0:
            errors.append("access cache_ttl_sec must be positive")

        if self.access.max_cache_size < 1:
            errors.append("max_cache_size must be at least 1")

        # Registry
        if not self.registry.path:
            errors.append("registry path cannot be empty")

        if self.registry.max_token_id < 1:
            errors.append("max_token_id must be at least 1")

        if self.registry.sync_interval_sec <= 0:
            errors.append("sync_interval_sec must be positive")

        # Tunnel
        if self.tunnel.listen_port < 1 or self.tunnel.listen_port > 65535:
            errors.append(f"Invalid listen port: {self.tunnel.listen_port}")

        if self.tunnel.max_backups < 1:
            errors.append("max_backups must be at least 1")

        if not self.tunnel.config_path:
            errors.append("config_path cannot be empty")

        return errors

    def save(self, path: str) -> None:
        """Save configuration to file. The signer password is never written."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "BridgeConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls(
            node_id=data.get("node_id", ""),
            private_key_path=data.get("private_key_path", DEFAULT_PRIVATE_KEY_PATH),
            health_check_interval_sec=data.get(
                "health_check_interval_sec", HEALTH_CHECK_INTERVAL_SEC
            ),
        )

        if "ledger" in data:
            ledger = dict(data["ledger"])
            if ledger.get("signer_password") == REDACTED:
                ledger["signer_password"] = None
            config.ledger = LedgerConfig(**ledger)

        if "access" in data:
            config.access = AccessConfig(**data["access"])

        if "registry" in data:
            config.registry = RegistryConfig(**data["registry"])

        if "tunnel" in data:
            config.tunnel = TunnelSettings(**data["tunnel"])

        if "log" in data:
            config.log = LogConfig(**data["log"])

        logger.info(f"Configuration loaded from {path}")
        return config

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "BridgeConfig":
        """
        Load configuration from environment variables.

        Variables from env_file (or a .env found from the working
        directory) are loaded first without overriding the real environment.
        """
        load_dotenv(env_file)
        config = cls()

        # Ledger
        if os.getenv("NETWORK"):
            config.ledger.network = os.getenv("NETWORK")
        if os.getenv("RPC_URL"):
            config.ledger.rpc_url = os.getenv("RPC_URL")
        if os.getenv("CONTRACT_ADDRESS"):
            config.ledger.contract_address = os.getenv("CONTRACT_ADDRESS")
        if os.getenv("SIGNER_ADDRESS"):
            config.ledger.signer_address = os.getenv("SIGNER_ADDRESS")
        if os.getenv("SIGNER_PASSWORD"):
            config.ledger.signer_password = os.getenv("SIGNER_PASSWORD")

        # Identity
        if os.getenv("NODE_ID"):
            config.node_id = os.getenv("NODE_ID")
        if os.getenv("WIREGUARD_PRIVATE_KEY_PATH"):
            config.private_key_path = os.getenv("WIREGUARD_PRIVATE_KEY_PATH")

        # Access cache
        if os.getenv("CACHE_TTL"):
            config.access.cache_ttl_sec = float(os.getenv("CACHE_TTL"))
        if os.getenv("MAX_CACHE_SIZE"):
            config.access.max_cache_size = int(os.getenv("MAX_CACHE_SIZE"))

        # Registry
        if os.getenv("SYNC_INTERVAL"):
            config.registry.sync_interval_sec = float(os.getenv("SYNC_INTERVAL"))
        if os.getenv("REGISTRY_PATH"):
            config.registry.path = os.getenv("REGISTRY_PATH")

        # Tunnel
        if os.getenv("WIREGUARD_CONFIG_PATH"):
            config.tunnel.config_path = os.getenv("WIREGUARD_CONFIG_PATH")
        if os.getenv("WIREGUARD_BACKUP_PATH"):
            config.tunnel.backup_dir = os.getenv("WIREGUARD_BACKUP_PATH")
        if os.getenv("MAX_BACKUPS"):
            config.tunnel.max_backups = int(os.getenv("MAX_BACKUPS"))
        if os.getenv("AUTO_RESTART"):
            config.tunnel.auto_restart = os.getenv("AUTO_RESTART").lower() not in ("0", "false", "no")

        if os.getenv("LOG_LEVEL"):
            config.log.level = os.getenv("LOG_LEVEL")

        return config

    def to_dict(self) -> dict:
        """Export configuration as dictionary with the signer password redacted."""
        ledger = asdict(self.ledger)
        if ledger["signer_password"]:
            ledger["signer_password"] = REDACTED

        return {
            "node_id": self.node_id,
            "private_key_path": self.private_key_path,
            "health_check_interval_sec": self.health_check_interval_sec,
            "ledger": ledger,
            "access": asdict(self.access),
            "registry": asdict(self.registry),
            "tunnel": asdict(self.tunnel),
            "log": asdict(self.log),
        }


def read_private_key(path: str) -> str:
    """Read a WireGuard private key file (base64, surrounding whitespace ignored)."""
    return Path(path).read_text().strip()


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
    )
