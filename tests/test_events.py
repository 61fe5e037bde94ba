"""
wgbridge Ledger Event Tests
"""

import asyncio

import pytest

from wgbridge.errors import NetworkUnavailableError
from wgbridge.ledger.backend import LedgerEvent, LedgerEventType
from wgbridge.ledger.events import EventBus, LedgerEventPoller

from conftest import OWNER


def revoked(token_id: int = 1) -> LedgerEvent:
    return LedgerEvent(type=LedgerEventType.ACCESS_REVOKED, token_id=token_id)


class TestEventBus:
    """Publish/subscribe delivery."""

    @pytest.mark.asyncio
    async def test_drain_in_order(self):
        """Test in-order delivery."""
        bus = EventBus()
        seen = []
        bus.subscribe(lambda e: seen.append(("sync", e.token_id)))

        async def async_handler(event):
            seen.append(("async", event.token_id))

        bus.subscribe(async_handler)
        bus.publish(revoked(1))
        bus.publish(revoked(2))

        assert bus.pending == 2
        assert await bus.drain() == 2
        assert seen == [("sync", 1), ("async", 1), ("sync", 2), ("async", 2)]
        assert bus.delivered == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        """Test unsubscribing a handler."""
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(seen.append)
        unsubscribe()
        unsubscribe()

        bus.publish(revoked())
        await bus.drain()

        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        """Test failing handler."""
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        await bus.dispatch(revoked())

        assert len(seen) == 1

    @pytest.mark.asyncio
    @pytest.mark.timeout(5)
    async def test_coordinator_task(self):
        """Test coordinator task delivery."""
        bus = EventBus()
        received = asyncio.Event()
        bus.subscribe(lambda e: received.set())

        bus.start()
        assert bus.is_running
        bus.publish(revoked())
        await asyncio.wait_for(received.wait(), 2)

        await bus.stop()
        assert not bus.is_running


class TestLedgerEventPoller:
    """Block polling."""

    @pytest.mark.asyncio
    async def test_first_poll_sets_start_block(self, ledger, keys):
        """Test first poll."""
        ledger.mint(OWNER, "node-1", keys[0])
        bus = EventBus()
        poller = LedgerEventPoller(ledger, bus)

        assert await poller.poll_once() == 0
        assert poller.last_block == ledger.block
        assert bus.pending == 0

    @pytest.mark.asyncio
    async def test_publishes_new_events(self, ledger, keys):
        """Test publishing new events."""
        bus = EventBus()
        poller = LedgerEventPoller(ledger, bus)
        await poller.poll_once()

        ledger.mint(OWNER, "node-1", keys[0])
        ledger.revoke(1)

        assert await poller.poll_once() == 2
        assert await poller.poll_once() == 0

        seen = []
        bus.subscribe(lambda e: seen.append(e.type))
        await bus.drain()
        assert seen == [LedgerEventType.ACCESS_GRANTED, LedgerEventType.ACCESS_REVOKED]

    @pytest.mark.asyncio
    @pytest.mark.timeout(5)
    async def test_poll_errors_are_counted(self, ledger):
        """Test poll errors."""
        bus = EventBus()
        poller = LedgerEventPoller(ledger, bus, interval=0.01)
        ledger.fail_next(NetworkUnavailableError("block_number", "down"))

        poller.start()
        while poller.last_block is None:
            await asyncio.sleep(0.01)
        await poller.stop()

        stats = poller.get_stats()
        assert stats["errors"] == 1
        assert not stats["running"]
