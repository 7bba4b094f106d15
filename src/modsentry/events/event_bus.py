"""
Publish/subscribe transport for domain events.

``EventBus`` is the interface the pipeline depends on. ``InProcessEventBus``
is the asyncio implementation used when every component runs in one
process: each publish fans out to one task per subscribed handler, so
handlers run concurrently with each other and with the publisher.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, List, Protocol, Set

from modsentry.datatypes.event_datatypes import Event
from modsentry.util.logger import get_logger

logger = get_logger("event_bus")

EventHandler = Callable[[Event], Awaitable[None]]


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class EventBus(Protocol):
    def subscribe(self, subject: str, handler: EventHandler) -> Subscription: ...

    async def publish(self, subject: str, event: Event) -> None: ...


class InProcessSubscription:
    """Handle returned by ``InProcessEventBus.subscribe``."""

    def __init__(self, bus: "InProcessEventBus", subject: str, handler: EventHandler) -> None:
        self.subject = subject
        self.handler = handler
        self._bus = bus
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)


class InProcessEventBus:
    """asyncio event bus with per-handler concurrent delivery.

    Handler exceptions are logged and never reach the publisher. ``drain()``
    waits for every delivery scheduled so far.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[InProcessSubscription]] = {}
        self._pending: Set[asyncio.Task] = set()
        self._closed = False

    def subscribe(self, subject: str, handler: EventHandler) -> InProcessSubscription:
        subscription = InProcessSubscription(self, subject, handler)
        self._subscriptions.setdefault(subject, []).append(subscription)
        logger.debug("[EVENT BUS] Subscribed to %s", subject)
        return subscription

    def _remove(self, subscription: InProcessSubscription) -> None:
        handlers = self._subscriptions.get(subscription.subject, [])
        if subscription in handlers:
            handlers.remove(subscription)
        if not handlers:
            self._subscriptions.pop(subscription.subject, None)
        logger.debug("[EVENT BUS] Unsubscribed from %s", subscription.subject)

    async def publish(self, subject: str, event: Event) -> None:
        if self._closed:
            raise RuntimeError("event bus is closed")

        for subscription in list(self._subscriptions.get(subject, ())):
            task = asyncio.create_task(self._deliver(subscription, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, subscription: InProcessSubscription, event: Event) -> None:
        if not subscription.active:
            return
        try:
            await subscription.handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[EVENT BUS] Handler for %s failed on %s event", subscription.subject, event.type)

    def subscriber_count(self, subject: str) -> int:
        return len(self._subscriptions.get(subject, ()))

    async def drain(self) -> None:
        """Wait until all in-flight deliveries, including ones they publish, finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Refuse further publishes and wait for in-flight deliveries."""
        self._closed = True
        await self.drain()
        self._subscriptions.clear()
        logger.info("[EVENT BUS] Closed")
