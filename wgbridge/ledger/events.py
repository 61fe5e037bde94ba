"""
wgbridge Ledger Events

EventBus: subscribe/publish channel for ledger mutation events. Events are
queued and delivered in order by a single coordinator task.

LedgerEventPoller: watches the ledger for new blocks and publishes the
access events they contain.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from wgbridge.constants import EVENT_POLL_INTERVAL_SEC
from wgbridge.errors import LedgerError
from wgbridge.ledger.backend import LedgerBackend, LedgerEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[LedgerEvent], Union[None, Awaitable[None]]]


class EventBus:
    """
    In-process event channel.

    Handlers may be plain functions or coroutines. A failing handler is
    logged and does not stop delivery to the others.
    """

    def __init__(self):
        self._handlers: List[EventHandler] = []
        self._queue: asyncio.Queue[LedgerEvent] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.delivered = 0

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            Function that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: LedgerEvent) -> None:
        """Queue an event for delivery."""
        self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def dispatch(self, event: LedgerEvent) -> None:
        """Deliver one event to every handler, in subscription order."""
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Event handler error for {event.type.value}: {e}")
        self.delivered += 1

    async def drain(self) -> int:
        """Deliver everything currently queued. Returns how many were delivered."""
        count = 0
        while not self._queue.empty():
            await self.dispatch(self._queue.get_nowait())
            count += 1
        return count

    def start(self) -> None:
        if not self.is_running:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            await self.dispatch(event)


class LedgerEventPoller:
    """
    Polls the ledger backend for access events.

    Starts from the head block observed on the first poll; history before
    that is covered by the initial registry sync.
    """

    def __init__(
        self,
        backend: LedgerBackend,
        bus: EventBus,
        interval: float = EVENT_POLL_INTERVAL_SEC,
    ):
        self.backend = backend
        self.bus = bus
        self.interval = interval
        self.last_block: Optional[int] = None
        self.errors = 0
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> int:
        """
        Fetch events since the last observed block and publish them.

        Returns:
            Number of events published
        """
        head = await self.backend.block_number()

        if self.last_block is None:
            self.last_block = head
            logger.info(f"Watching ledger events from block {head}")
            return 0

        if head <= self.last_block:
            return 0

        events = await self.backend.get_events(self.last_block + 1, head)
        self.last_block = head

        for event in events:
            logger.info(f"Ledger event {event.type.value} for token {event.token_id}")
            self.bus.publish(event)
        return len(events)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except LedgerError as e:
                self.errors += 1
                logger.warning(f"Event poll failed: {e.message}")
            await asyncio.sleep(self.interval)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "last_block": self.last_block,
            "errors": self.errors,
            "running": self._task is not None and not self._task.done(),
        }
