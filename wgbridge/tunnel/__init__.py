"""
wgbridge WireGuard Configuration
"""

from wgbridge.tunnel.config import InterfaceSection, PeerSection, TunnelConfig
from wgbridge.tunnel.writer import ConfigWriter, UpdateResult, parse_wg_show

__all__ = [
    "InterfaceSection",
    "PeerSection",
    "TunnelConfig",
    "ConfigWriter",
    "UpdateResult",
    "parse_wg_show",
]
