"""
wgbridge Bridge Node
"""

from wgbridge.node.bridge import Bridge, BridgeStatus
from wgbridge.node.config import (
    AccessConfig,
    BridgeConfig,
    LedgerConfig,
    LogConfig,
    RegistryConfig,
    TunnelSettings,
    read_private_key,
    setup_logging,
)

__all__ = [
    "Bridge",
    "BridgeStatus",
    "AccessConfig",
    "BridgeConfig",
    "LedgerConfig",
    "LogConfig",
    "RegistryConfig",
    "TunnelSettings",
    "read_private_key",
    "setup_logging",
]
