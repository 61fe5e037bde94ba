"""
wgbridge Test Fixtures
"""

import base64

import pytest

from wgbridge.ledger.backend import Signer
from wgbridge.ledger.gateway import CallGateway, RetryPolicy
from wgbridge.ledger.mock import MockLedger
from wgbridge.registry.store import RegistryStore
from wgbridge.registry.sync import RegistrySync


OWNER = "0x" + "ab" * 20
OTHER_OWNER = "0x" + "cd" * 20
SIGNER_ADDRESS = "0x" + "ef" * 20


def make_key(seed: int) -> str:
    """Deterministic base64 WireGuard key (32 bytes)."""
    return base64.b64encode(bytes([(seed + i) % 256 for i in range(32)])).decode()


@pytest.fixture
def keys():
    """Ten distinct valid keys."""
    return [make_key(seed * 17) for seed in range(1, 11)]


@pytest.fixture
def private_key():
    return make_key(200)


@pytest.fixture
def ledger() -> MockLedger:
    """Empty in-memory ledger."""
    return MockLedger()


@pytest.fixture
def sleeps():
    """Delays requested by the gateway's backoff."""
    return []


@pytest.fixture
def gateway(ledger, sleeps) -> CallGateway:
    """Gateway with a signer and a recording no-op sleep."""
    async def record_sleep(delay):
        sleeps.append(delay)

    return CallGateway(
        ledger,
        signer=Signer(address=SIGNER_ADDRESS),
        cache_ttl=30.0,
        retry=RetryPolicy(max_retries=3, base_delay_ms=1000, max_delay_ms=10000, multiplier=2.0),
        sleep=record_sleep,
    )


@pytest.fixture
def store(tmp_path) -> RegistryStore:
    return RegistryStore(tmp_path / "data" / "peer-registry.json")


@pytest.fixture
def sync(gateway, store, ledger) -> RegistrySync:
    """Registry sync scanning token ids 1..20."""
    return RegistrySync(
        gateway,
        store,
        contract_address=ledger.contract_address,
        max_token_id=20,
        sync_interval=60.0,
        event_sync_delay=0.01,
    )
