"""
wgbridge Node Registrar Tests
"""

import pytest

from wgbridge.errors import (
    InvalidAddressError,
    InvalidNodeIdError,
    InvalidPublicKeyError,
    NodeAlreadyRegisteredError,
    NodeNotInRegistryError,
    SignerNotConfiguredError,
)
from wgbridge.ledger.gateway import CallGateway
from wgbridge.registry.registrar import NodeRegistrar

from conftest import OWNER


@pytest.fixture
def registrar(gateway) -> NodeRegistrar:
    return NodeRegistrar(gateway, token_uri_base="https://meta.example/")


class TestRegisterNode:
    """Minting access tokens."""

    @pytest.mark.asyncio
    async def test_register(self, registrar, ledger, keys):
        """Test node registration."""
        result = await registrar.register_node(OWNER, "node-1", keys[0])

        assert result.node_id == "node-1"
        assert result.token_id == 1
        assert result.ip_address == "10.0.0.2"
        assert result.hostname == "node-1.vpn.dstack"
        assert result.transaction_hash.startswith("0x")

        token = ledger.tokens[1]
        assert token.public_key == keys[0]
        assert token.owner == OWNER
        assert token.token_uri == "https://meta.example/node-1"

    @pytest.mark.asyncio
    async def test_explicit_token_uri(self, registrar, ledger, keys):
        """Test registration with a token URI."""
        await registrar.register_node(OWNER, "node-1", keys[0], token_uri="ipfs://abc")
        assert ledger.tokens[1].token_uri == "ipfs://abc"

    @pytest.mark.asyncio
    async def test_already_registered(self, registrar, ledger, keys):
        """Test registering a taken node id."""
        ledger.mint(OWNER, "node-1", keys[0])

        with pytest.raises(NodeAlreadyRegisteredError) as exc:
            await registrar.register_node(OWNER, "node-1", keys[1])

        assert exc.value.details["token_id"] == 1
        assert ledger.calls["mint_access"] == 0

    @pytest.mark.asyncio
    async def test_stale_cache_does_not_hide_registration(self, registrar, gateway, ledger, keys):
        """Test duplicate check bypassing the cache."""
        assert await gateway.token_id_for_node("node-1") == 0
        ledger.mint(OWNER, "node-1", keys[0])

        with pytest.raises(NodeAlreadyRegisteredError):
            await registrar.register_node(OWNER, "node-1", keys[1])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("owner,node_id,key_index,error", [
        ("0x1234", "node-1", 0, InvalidAddressError),
        (OWNER, "no", 0, InvalidNodeIdError),
        (OWNER, "node-1", None, InvalidPublicKeyError),
    ])
    async def test_validation_before_any_call(self, registrar, ledger, keys, owner, node_id, key_index, error):
        """Test validation before ledger calls."""
        key = keys[key_index] if key_index is not None else "not-a-key"

        with pytest.raises(error):
            await registrar.register_node(owner, node_id, key)

        assert ledger.total_calls == 0

    @pytest.mark.asyncio
    async def test_requires_signer(self, ledger, keys):
        """Test registration without a signer."""
        registrar = NodeRegistrar(CallGateway(ledger))
        with pytest.raises(SignerNotConfiguredError):
            await registrar.register_node(OWNER, "node-1", keys[0])
        assert ledger.tokens == {}


class TestRevokeAndInfo:
    """Revocation and lookups."""

    @pytest.mark.asyncio
    async def test_revoke(self, registrar, ledger, keys):
        """Test node revocation."""
        await registrar.register_node(OWNER, "node-1", keys[0])

        receipt = await registrar.revoke_node("node-1")

        assert receipt.status
        assert not ledger.tokens[1].is_active

    @pytest.mark.asyncio
    async def test_revoke_unknown(self, registrar):
        """Test revoking an unknown node."""
        with pytest.raises(NodeNotInRegistryError):
            await registrar.revoke_node("ghost-node")

    @pytest.mark.asyncio
    async def test_node_info(self, registrar, ledger, keys):
        """Test node info lookup."""
        ledger.mint(OWNER, "node-1", keys[0])

        info = await registrar.get_node_info("node-1")

        assert info["token_id"] == 1
        assert info["public_key"] == keys[0]
        assert info["owner"] == OWNER
        assert info["is_active"]
        assert info["ip_address"] == "10.0.0.2"
        assert await registrar.get_node_info("ghost-node") is None
