"""
wgbridge Node Registrar

Registers nodes on the ledger by minting access tokens.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from wgbridge.constants import TOKEN_URI_BASE
from wgbridge.core.types import hostname_for, mask_key
from wgbridge.core.validation import validate_address, validate_node_id, validate_public_key
from wgbridge.errors import NodeAlreadyRegisteredError, NodeNotInRegistryError, RemoteCallFailedError
from wgbridge.ledger.backend import TransactionReceipt
from wgbridge.ledger.gateway import CallGateway
from wgbridge.registry.sync import derive_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    """A freshly minted node access token."""
    node_id: str
    token_id: int
    ip_address: str
    public_key: str
    owner_address: str
    transaction_hash: str

    @property
    def hostname(self) -> str:
        return hostname_for(self.node_id)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "token_id": self.token_id,
            "ip_address": self.ip_address,
            "hostname": self.hostname,
            "public_key": self.public_key,
            "owner_address": self.owner_address,
            "transaction_hash": self.transaction_hash,
        }


class NodeRegistrar:
    """Validated mint/revoke of node access tokens."""

    def __init__(self, gateway: CallGateway, token_uri_base: str = TOKEN_URI_BASE):
        self.gateway = gateway
        self.token_uri_base = token_uri_base

    async def register_node(
        self,
        owner_address: str,
        node_id: str,
        public_key: str,
        token_uri: Optional[str] = None,
    ) -> RegistrationResult:
        """
        Mint an access token for a node.

        Args:
            owner_address: Account that will own the token
            node_id: Node identifier
            public_key: Node's WireGuard public key
            token_uri: Metadata URI (defaults to <token_uri_base><node_id>)

        Returns:
            RegistrationResult

        Raises:
            ValidationError: Malformed input (nothing is sent)
            NodeAlreadyRegisteredError: node_id already has a token
            SignerNotConfiguredError: Gateway has no signer
        """
        validate_address(owner_address)
        validate_node_id(node_id)
        validate_public_key(public_key)

        existing = await self.gateway.call("token_id_for_node", node_id, refresh=True)
        if existing:
            raise NodeAlreadyRegisteredError(node_id, existing)

        uri = token_uri or f"{self.token_uri_base}{node_id}"
        logger.info(f"Registering {node_id} for {owner_address} (key {mask_key(public_key)})")

        receipt = await self.gateway.mint_access(owner_address, node_id, public_key, uri)
        token_id = await self._minted_token_id(node_id, receipt)

        result = RegistrationResult(
            node_id=node_id,
            token_id=token_id,
            ip_address=derive_address(token_id),
            public_key=public_key,
            owner_address=owner_address,
            transaction_hash=receipt.transaction_hash,
        )
        logger.info(f"Node {node_id} registered as token {token_id} ({result.ip_address})")
        return result

    async def _minted_token_id(self, node_id: str, receipt: TransactionReceipt) -> int:
        if receipt.token_id is not None:
            return receipt.token_id

        # Receipt logs missing: ask the ledger directly
        token_id = await self.gateway.call("token_id_for_node", node_id, refresh=True)
        if not token_id:
            raise RemoteCallFailedError(
                "mint_access",
                f"transaction {receipt.transaction_hash} did not register {node_id}",
            )
        return token_id

    async def revoke_node(self, node_id: str) -> TransactionReceipt:
        """
        Revoke a node's access token.

        Raises:
            NodeNotInRegistryError: node_id has no token
        """
        validate_node_id(node_id)

        token_id = await self.gateway.call("token_id_for_node", node_id, refresh=True)
        if not token_id:
            raise NodeNotInRegistryError(node_id)

        receipt = await self.gateway.revoke_access(token_id)
        logger.info(f"Access revoked for {node_id} (token {token_id})")
        return receipt

    async def get_node_info(self, node_id: str) -> Optional[Dict[str, Any]]:
        """Ledger view of a node, or None if it has no token."""
        validate_node_id(node_id)

        token_id = await self.gateway.token_id_for_node(node_id)
        if not token_id:
            return None

        record = await self.gateway.get_access_record(token_id)
        owner = await self.gateway.owner_of(token_id)

        return {
            "token_id": token_id,
            "node_id": record.node_id,
            "public_key": record.public_key,
            "created_at": datetime.fromtimestamp(record.created_at, tz=timezone.utc).isoformat(),
            "is_active": record.is_active,
            "owner": owner,
            "ip_address": derive_address(token_id),
        }
