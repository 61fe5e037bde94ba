"""
wgbridge
WireGuard <-> Access Ledger Bridge

Keeps a WireGuard overlay in step with an on-chain node access ledger:
every node holding an active access token becomes a peer, and every
connection attempt is checked against the ledger before it is accepted.
"""

__version__ = "0.3.0"
__author__ = "wgbridge Team"

from wgbridge.constants import NETWORK_CIDR, REGISTRY_VERSION
from wgbridge.node.bridge import Bridge
from wgbridge.node.config import BridgeConfig

__all__ = [
    "Bridge",
    "BridgeConfig",
    "NETWORK_CIDR",
    "REGISTRY_VERSION",
    "__version__",
]
