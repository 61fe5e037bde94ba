"""
wgbridge Tunnel Configuration Tests
"""

import os
import stat

import pytest

from wgbridge.core.types import Peer, Registry
from wgbridge.errors import (
    ConfigValidationError,
    ConfigWriteError,
    InterfaceRestartError,
    InvalidPrivateKeyError,
    NodeNotInRegistryError,
)
from wgbridge.tunnel.config import TunnelConfig
from wgbridge.tunnel.writer import ConfigWriter, parse_wg_show

from conftest import OWNER, make_key

ORIGINAL = "[Interface]\nPrivateKey = original\n"


def make_peer(token_id: int, active: bool = True, public_key=None) -> Peer:
    return Peer(
        node_id=f"node-{token_id}",
        public_key=make_key(token_id) if public_key is None else public_key,
        ip_address=f"10.0.0.{token_id + 1}",
        hostname=f"node-{token_id}.vpn.dstack",
        owner_address=OWNER,
        token_id=token_id,
        active=active,
    )


@pytest.fixture
def registry() -> Registry:
    return Registry(
        contract_address=OWNER,
        peers=[make_peer(1), make_peer(2), make_peer(3, active=False), make_peer(4)],
    )


class FakeRunner:
    """Stands in for ConfigWriter._run; fails the listed `wg-quick up` calls."""

    def __init__(self, fail_up_calls=()):
        self.commands = []
        self.fail_up_calls = set(fail_up_calls)
        self.up_calls = 0

    async def __call__(self, *cmd):
        self.commands.append(" ".join(cmd))
        if cmd[:2] == ("wg-quick", "up"):
            self.up_calls += 1
            if self.up_calls in self.fail_up_calls:
                return 1, "", "RTNETLINK answers: Operation not permitted"
        return 0, "", ""


@pytest.fixture
def paths(tmp_path):
    return tmp_path / "wireguard" / "wg0.conf", tmp_path / "wireguard" / "backups"


def make_writer(registry, paths, **kwargs) -> ConfigWriter:
    config_path, backup_dir = paths
    kwargs.setdefault("auto_restart", False)
    return ConfigWriter(lambda: registry, config_path=config_path, backup_dir=backup_dir, **kwargs)


def install_original(paths):
    config_path, _ = paths
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(ORIGINAL)


# =============================================================================
# Config model
# =============================================================================

class TestTunnelConfig:
    """Build, validate and render."""

    def test_build(self, registry, private_key):
        """Test building a config from the registry."""
        config = TunnelConfig.build(registry, "node-1", private_key, 51820)

        assert config.interface.address == "10.0.0.2/24"
        assert config.interface.listen_port == 51820
        assert [p.public_key for p in config.peers] == [make_key(2), make_key(4)]
        assert config.peers[0].allowed_ips == "10.0.0.3/32"
        assert config.peers[0].endpoint == "node-2.vpn.dstack:51820"
        assert config.peers[0].persistent_keepalive == 25
        assert config.validate() == []

    def test_unknown_node(self, registry, private_key):
        """Test building for an unknown node."""
        with pytest.raises(NodeNotInRegistryError):
            TunnelConfig.build(registry, "node-9", private_key)

    def test_validation_errors(self, private_key):
        """Test config validation."""
        registry = Registry(contract_address=OWNER, peers=[make_peer(1), make_peer(2, public_key="")])
        config = TunnelConfig.build(registry, "node-1", "", 51820)

        assert config.validate() == ["Missing private key", "Peer 0: Missing public key"]

    def test_render(self, registry, private_key):
        """Test rendered file content."""
        text = TunnelConfig.build(registry, "node-1", private_key, 51820).render()
        lines = text.splitlines()

        assert lines[:4] == [
            "[Interface]",
            f"PrivateKey = {private_key}",
            "Address = 10.0.0.2/24",
            "ListenPort = 51820",
        ]
        assert lines[4].startswith("PostUp = iptables -A FORWARD -i %i -j ACCEPT")
        assert lines[5].startswith("PostDown = iptables -D FORWARD")
        assert text.count("[Peer]") == 2
        assert "AllowedIPs = 10.0.0.5/32" in lines
        assert "Endpoint = node-4.vpn.dstack:51820" in lines
        assert "PersistentKeepalive = 25" in lines
        assert make_key(3) not in text
        assert "# Generated by wgbridge" in lines
        assert "# Node ID: node-1" in lines
        assert "# Total Peers: 2" in lines
        assert "# Registry Version: 2.0" in lines


# =============================================================================
# Writer
# =============================================================================

class TestConfigWriter:
    """Backup, atomic write and retention."""

    @pytest.mark.asyncio
    async def test_first_write(self, registry, paths, private_key):
        """Test writing a new config."""
        writer = make_writer(registry, paths)

        result = await writer.update_config("node-1", private_key)

        config_path, _ = paths
        assert result.status == "success"
        assert result.peer_count == 2
        assert result.backup_path is None
        assert not result.restarted
        assert f"PrivateKey = {private_key}" in config_path.read_text()
        assert stat.S_IMODE(os.stat(config_path).st_mode) == 0o600
        assert not config_path.with_name("wg0.conf.tmp").exists()

    @pytest.mark.asyncio
    async def test_backup_of_previous_file(self, registry, paths, private_key):
        """Test backup of the previous file."""
        install_original(paths)
        writer = make_writer(registry, paths)

        result = await writer.update_config("node-1", private_key)

        backups = writer.list_backups()
        assert len(backups) == 1
        assert str(backups[0]) == result.backup_path
        assert backups[0].read_text() == ORIGINAL
        assert backups[0].name.startswith("wg0-")
        assert stat.S_IMODE(os.stat(backups[0]).st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_backup_retention(self, registry, paths, private_key):
        """Test backup retention."""
        install_original(paths)
        writer = make_writer(registry, paths, max_backups=2)

        for _ in range(4):
            await writer.update_config("node-1", private_key)

        backups = writer.list_backups()
        assert len(backups) == 2
        assert backups == sorted(backups, key=lambda p: p.name, reverse=True)

    @pytest.mark.asyncio
    async def test_bad_private_key(self, registry, paths):
        """Test update with a malformed key."""
        writer = make_writer(registry, paths)
        with pytest.raises(InvalidPrivateKeyError):
            await writer.update_config("node-1", "nope")

    @pytest.mark.asyncio
    async def test_node_not_in_registry_touches_nothing(self, registry, paths, private_key):
        """Test update for an unregistered node."""
        writer = make_writer(registry, paths)

        with pytest.raises(NodeNotInRegistryError):
            await writer.update_config("node-9", private_key)

        config_path, backup_dir = paths
        assert not config_path.exists()
        assert not backup_dir.exists()
        assert writer.errors == 1

    @pytest.mark.asyncio
    async def test_invalid_config_touches_nothing(self, paths, private_key):
        """Test update with an invalid config."""
        registry = Registry(contract_address=OWNER, peers=[make_peer(1), make_peer(2, public_key="")])
        install_original(paths)
        writer = make_writer(registry, paths)

        with pytest.raises(ConfigValidationError) as exc:
            await writer.update_config("node-1", private_key)

        config_path, _ = paths
        assert exc.value.errors == ["Peer 0: Missing public key"]
        assert config_path.read_text() == ORIGINAL
        assert writer.list_backups() == []


class TestRollback:
    """Failure after validation restores the previous file."""

    @pytest.mark.asyncio
    async def test_write_failure_restores_original(self, registry, paths, private_key, monkeypatch):
        """Test write failure rollback."""
        install_original(paths)
        writer = make_writer(registry, paths)

        def failing_write(content):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(writer, "_write_file", failing_write)

        with pytest.raises(ConfigWriteError) as exc:
            await writer.update_config("node-1", private_key)

        config_path, _ = paths
        assert exc.value.stage == "write"
        assert exc.value.rolled_back
        assert "No space left on device" in exc.value.message
        assert config_path.read_text() == ORIGINAL
        assert writer.errors == 1
        assert writer.last_error == exc.value.message

    @pytest.mark.asyncio
    async def test_restart_failure_rolls_back_and_restarts(self, registry, paths, private_key, monkeypatch):
        """Test restart failure rollback."""
        install_original(paths)
        writer = make_writer(registry, paths, auto_restart=True)
        runner = FakeRunner(fail_up_calls={1})
        monkeypatch.setattr(writer, "_run", runner)

        with pytest.raises(ConfigWriteError) as exc:
            await writer.update_config("node-1", private_key)

        config_path, _ = paths
        assert exc.value.stage == "restart"
        assert exc.value.rolled_back
        assert config_path.read_text() == ORIGINAL
        assert runner.commands == [
            "wg-quick down wg0",
            "wg-quick up wg0",
            "wg-quick down wg0",
            "wg-quick up wg0",
        ]

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_original_error(self, registry, paths, private_key, monkeypatch):
        """Test rollback failure."""
        install_original(paths)
        writer = make_writer(registry, paths, auto_restart=True)
        monkeypatch.setattr(writer, "_run", FakeRunner(fail_up_calls={1, 2}))

        with pytest.raises(ConfigWriteError) as exc:
            await writer.update_config("node-1", private_key)

        assert exc.value.stage == "restart"
        assert not exc.value.rolled_back

    @pytest.mark.asyncio
    async def test_no_backup_means_no_rollback(self, registry, paths, private_key, monkeypatch):
        """Test failure without a backup."""
        writer = make_writer(registry, paths)

        def failing_write(content):
            raise OSError(13, "Permission denied")

        monkeypatch.setattr(writer, "_write_file", failing_write)

        with pytest.raises(ConfigWriteError) as exc:
            await writer.update_config("node-1", private_key)

        assert not exc.value.rolled_back

    @pytest.mark.asyncio
    async def test_backup_failure_leaves_file_alone(self, registry, paths, private_key, monkeypatch):
        """Test backup failure."""
        install_original(paths)
        writer = make_writer(registry, paths)

        def failing_backup():
            raise OSError(5, "Input/output error")

        monkeypatch.setattr(writer, "_create_backup", failing_backup)

        with pytest.raises(ConfigWriteError) as exc:
            await writer.update_config("node-1", private_key)

        config_path, _ = paths
        assert exc.value.stage == "backup"
        assert not exc.value.rolled_back
        assert config_path.read_text() == ORIGINAL


# =============================================================================
# Interface
# =============================================================================

WG_SHOW = """\
interface: wg0
  public key: abc=
  listening port: 51820

peer: def=
  endpoint: 1.2.3.4:51820
  allowed ips: 10.0.0.3/32
  latest handshake: 1 minute, 2 seconds ago
  transfer: 1.50 KiB received, 2.00 MiB sent

peer: ghi=
  allowed ips: 10.0.0.4/32
  transfer: 100 B received, 0 B sent
"""


class TestInterface:
    """wg-quick and wg show handling."""

    def test_parse_wg_show(self):
        """Test wg show parsing."""
        status = parse_wg_show(WG_SHOW)
        assert status["peers"] == 2
        assert status["last_handshake"] == "1 minute, 2 seconds ago"
        assert status["transfer_rx"] == 1536 + 100
        assert status["transfer_tx"] == 2 * 1024 * 1024

    @pytest.mark.asyncio
    async def test_restart_tolerates_failed_down(self, registry, paths, monkeypatch):
        """Test restart with a failing down."""
        writer = make_writer(registry, paths)
        calls = []

        async def runner(*cmd):
            calls.append(cmd[1])
            return (1, "", "not up") if cmd[1] == "down" else (0, "", "")

        monkeypatch.setattr(writer, "_run", runner)
        await writer.restart_interface()
        assert calls == ["down", "up"]

    @pytest.mark.asyncio
    async def test_restart_fails_on_up(self, registry, paths, monkeypatch):
        """Test restart with a failing up."""
        writer = make_writer(registry, paths)
        monkeypatch.setattr(writer, "_run", FakeRunner(fail_up_calls={1}))

        with pytest.raises(InterfaceRestartError):
            await writer.restart_interface()

    @pytest.mark.asyncio
    async def test_missing_binary(self, registry, paths):
        """Test restart without wg-quick."""
        writer = make_writer(registry, paths)
        with pytest.raises(InterfaceRestartError):
            await writer._run("wgbridge-no-such-binary", "up", "wg0")

    @pytest.mark.asyncio
    async def test_interface_status(self, registry, paths, monkeypatch):
        """Test interface status."""
        writer = make_writer(registry, paths)

        async def runner(*cmd):
            return 0, WG_SHOW, ""

        monkeypatch.setattr(writer, "_run", runner)
        status = await writer.get_interface_status()

        assert status["status"] == "active"
        assert status["peers"] == 2
        assert (await writer.health_check())["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_interface_down(self, registry, paths, monkeypatch):
        """Test status of a down interface."""
        writer = make_writer(registry, paths)

        async def runner(*cmd):
            return 1, "", "Unable to access interface: No such device"

        monkeypatch.setattr(writer, "_run", runner)
        status = await writer.get_interface_status()

        assert status["status"] == "inactive"
        assert "No such device" in status["error"]
        assert (await writer.health_check())["status"] == "degraded"
