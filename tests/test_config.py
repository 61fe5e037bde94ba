"""
wgbridge Configuration Tests
"""

import json
import os

import pytest

from wgbridge.node.config import BridgeConfig, LedgerConfig, read_private_key

from conftest import SIGNER_ADDRESS, make_key


@pytest.fixture
def env(monkeypatch):
    """Isolated process environment."""
    environ = {}
    monkeypatch.setattr(os, "environ", environ)
    return environ


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig(node_id="node-1")


class TestValidate:
    """BridgeConfig.validate."""

    def test_defaults_need_node_id(self):
        """Test defaults without a node id."""
        errors = BridgeConfig().validate()
        assert len(errors) == 1
        assert errors[0].startswith("Invalid node ID")

    def test_valid(self, config):
        """Test valid configuration."""
        assert config.validate() == []

    def test_collects_all_errors(self, config):
        """Test error collection."""
        config.ledger.contract_address = "0x123"
        config.ledger.signer_address = "nope"
        config.access.max_cache_size = 0
        config.tunnel.listen_port = 70000
        config.tunnel.max_backups = 0

        errors = config.validate()

        assert len(errors) == 5
        assert any("contract address" in e for e in errors)
        assert any("signer address" in e for e in errors)
        assert "max_cache_size must be at least 1" in errors
        assert "Invalid listen port: 70000" in errors
        assert "max_backups must be at least 1" in errors

    def test_unknown_network(self, config):
        """Test unknown network."""
        config.ledger.network = "moonnet"
        assert any("moonnet" in e for e in config.validate())

        config.ledger.rpc_url = "http://127.0.0.1:9000"
        assert config.validate() == []


class TestNetworks:
    """Network presets."""

    def test_presets(self):
        """Test network presets."""
        assert LedgerConfig().resolved_rpc_url == "https://mainnet.base.org"
        assert LedgerConfig().resolved_chain_id == 8453
        assert LedgerConfig(network="base-sepolia").resolved_chain_id == 84532
        assert LedgerConfig(network="localhost").resolved_rpc_url == "http://127.0.0.1:8545"

    def test_overrides(self):
        """Test explicit RPC overrides."""
        ledger = LedgerConfig(network="localhost", rpc_url="http://node:8545", chain_id=7)
        assert ledger.resolved_rpc_url == "http://node:8545"
        assert ledger.resolved_chain_id == 7

    def test_unknown(self):
        """Test unknown network preset."""
        ledger = LedgerConfig(network="moonnet")
        assert ledger.resolved_rpc_url is None
        assert ledger.resolved_chain_id is None


class TestPersistence:
    """JSON save/load."""

    def test_save_and_load(self, config, tmp_path):
        """Test save and load."""
        config.ledger.signer_address = SIGNER_ADDRESS
        config.ledger.signer_password = "hunter2"
        config.access.cache_ttl_sec = 12.5
        config.tunnel.max_backups = 3
        path = tmp_path / "bridge.json"

        config.save(str(path))
        loaded = BridgeConfig.load(str(path))

        assert "hunter2" not in path.read_text()
        assert json.loads(path.read_text())["ledger"]["signer_password"] == "***"
        assert loaded.node_id == "node-1"
        assert loaded.ledger.signer_address == SIGNER_ADDRESS
        assert loaded.ledger.signer_password is None
        assert loaded.access.cache_ttl_sec == 12.5
        assert loaded.tunnel.max_backups == 3
        assert loaded.signer_configured

    def test_password_never_in_repr(self, config):
        """Test password hidden from repr."""
        config.ledger.signer_password = "hunter2"
        assert "hunter2" not in repr(config)
        assert "hunter2" not in str(config.to_dict())


class TestFromEnv:
    """Environment loading."""

    def test_variables(self, env, tmp_path):
        """Test environment variables."""
        env.update({
            "NETWORK": "base-sepolia",
            "CONTRACT_ADDRESS": "0x" + "34" * 20,
            "NODE_ID": "edge-7",
            "WIREGUARD_PRIVATE_KEY_PATH": "/keys/wg.key",
            "SIGNER_ADDRESS": SIGNER_ADDRESS,
            "SIGNER_PASSWORD": "hunter2",
            "CACHE_TTL": "45",
            "MAX_CACHE_SIZE": "50",
            "SYNC_INTERVAL": "120",
            "MAX_BACKUPS": "4",
            "AUTO_RESTART": "false",
            "REGISTRY_PATH": "/var/lib/wgbridge/registry.json",
            "WIREGUARD_CONFIG_PATH": "/etc/wireguard/wg1.conf",
            "WIREGUARD_BACKUP_PATH": "/var/backups/wg",
            "LOG_LEVEL": "DEBUG",
        })

        config = BridgeConfig.from_env(str(tmp_path / "missing.env"))

        assert config.ledger.network == "base-sepolia"
        assert config.ledger.resolved_chain_id == 84532
        assert config.ledger.contract_address == "0x" + "34" * 20
        assert config.node_id == "edge-7"
        assert config.private_key_path == "/keys/wg.key"
        assert config.ledger.signer_password == "hunter2"
        assert config.access.cache_ttl_sec == 45.0
        assert config.access.max_cache_size == 50
        assert config.registry.sync_interval_sec == 120.0
        assert config.tunnel.max_backups == 4
        assert config.tunnel.auto_restart is False
        assert config.registry.path == "/var/lib/wgbridge/registry.json"
        assert config.tunnel.config_path == "/etc/wireguard/wg1.conf"
        assert config.tunnel.backup_dir == "/var/backups/wg"
        assert config.log.level == "DEBUG"
        assert config.validate() == []

    def test_env_file(self, env, tmp_path):
        """Test .env file loading."""
        env_file = tmp_path / ".env"
        env_file.write_text("NODE_ID=from-file\nRPC_URL=http://10.1.1.1:8545\n")
        env["NODE_ID"] = "from-process"

        config = BridgeConfig.from_env(str(env_file))

        assert config.node_id == "from-process"
        assert config.ledger.rpc_url == "http://10.1.1.1:8545"

    def test_defaults(self, env, tmp_path):
        """Test defaults from an empty environment."""
        config = BridgeConfig.from_env(str(tmp_path / "missing.env"))
        assert config.ledger.network == "base"
        assert config.tunnel.auto_restart is True
        assert config.ledger.signer_address is None


def test_read_private_key(tmp_path):
    key = make_key(42)
    path = tmp_path / "private.key"
    path.write_text(f"  {key}\n")
    assert read_private_key(str(path)) == key
