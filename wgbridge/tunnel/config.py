"""
wgbridge Tunnel Configuration

Builds, validates and renders a WireGuard configuration from the registry.
Built fresh on every update and never stored apart from the rendered file.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from wgbridge.constants import (
    LISTEN_PORT,
    PERSISTENT_KEEPALIVE,
    POST_DOWN_COMMANDS,
    POST_UP_COMMANDS,
)
from wgbridge.core.types import Registry, utc_now
from wgbridge.errors import NodeNotInRegistryError

GENERATOR = "wgbridge"


@dataclass(frozen=True)
class InterfaceSection:
    private_key: str
    address: str
    listen_port: int
    post_up: str = ""
    post_down: str = ""


@dataclass(frozen=True)
class PeerSection:
    public_key: str
    allowed_ips: str
    endpoint: Optional[str] = None
    persistent_keepalive: Optional[int] = PERSISTENT_KEEPALIVE


@dataclass
class TunnelConfig:
    """Rendered-on-demand WireGuard configuration for one node."""
    node_id: str
    interface: InterfaceSection
    peers: List[PeerSection] = field(default_factory=list)
    registry_version: str = ""
    generated_at: str = field(default_factory=utc_now)

    @classmethod
    def build(
        cls,
        registry: Registry,
        node_id: str,
        private_key: str,
        listen_port: int = LISTEN_PORT,
    ) -> TunnelConfig:
        """
        Build the configuration for node_id.

        Every other active peer becomes a [Peer] section.

        Raises:
            NodeNotInRegistryError: node_id has no peer in the registry
        """
        local = next((p for p in registry.peers if p.node_id == node_id), None)
        if local is None:
            raise NodeNotInRegistryError(node_id)

        interface = InterfaceSection(
            private_key=private_key,
            address=f"{local.ip_address}/24",
            listen_port=listen_port,
            post_up="; ".join(POST_UP_COMMANDS),
            post_down="; ".join(POST_DOWN_COMMANDS),
        )

        peers = [
            PeerSection(
                public_key=p.public_key,
                allowed_ips=f"{p.ip_address}/32",
                endpoint=f"{p.hostname}:{listen_port}",
            )
            for p in registry.peers
            if p.node_id != node_id and p.active
        ]

        return cls(
            node_id=node_id,
            interface=interface,
            peers=peers,
            registry_version=registry.version,
        )

    def validate(self) -> List[str]:
        """
        Check required fields.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.interface.private_key:
            errors.append("Missing private key")
        if not self.interface.address:
            errors.append("Missing address")
        if not self.interface.listen_port:
            errors.append("Missing listen port")

        for i, peer in enumerate(self.peers):
            if not peer.public_key:
                errors.append(f"Peer {i}: Missing public key")
            if not peer.allowed_ips:
                errors.append(f"Peer {i}: Missing allowed IPs")

        return errors

    def render(self) -> str:
        """INI-style file content, metadata as trailing comments."""
        lines = [
            "[Interface]",
            f"PrivateKey = {self.interface.private_key}",
            f"Address = {self.interface.address}",
            f"ListenPort = {self.interface.listen_port}",
        ]
        if self.interface.post_up:
            lines.append(f"PostUp = {self.interface.post_up}")
        if self.interface.post_down:
            lines.append(f"PostDown = {self.interface.post_down}")
        lines.append("")

        for peer in self.peers:
            lines.append("[Peer]")
            lines.append(f"PublicKey = {peer.public_key}")
            lines.append(f"AllowedIPs = {peer.allowed_ips}")
            if peer.endpoint:
                lines.append(f"Endpoint = {peer.endpoint}")
            if peer.persistent_keepalive:
                lines.append(f"PersistentKeepalive = {peer.persistent_keepalive}")
            lines.append("")

        lines.extend([
            f"# Generated by {GENERATOR}",
            f"# Node ID: {self.node_id}",
            f"# Total Peers: {len(self.peers)}",
            f"# Generated At: {self.generated_at}",
            f"# Registry Version: {self.registry_version}",
        ])
        return "\n".join(lines) + "\n"
