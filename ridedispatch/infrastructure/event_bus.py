"""
In-process publish/subscribe bus.

Delivery contract
-----------------
* Best effort: no persistence, no replay.  A subscriber that is not
  subscribed at publish time never sees the event.
* No ordering guarantee *across* subscribers; each subscriber sees events in
  the order they were published to it.
* ``publish`` never blocks.  Every subscriber owns a bounded
  ``asyncio.Queue``; when it is full the event is dropped for that
  subscriber only and counted in ``Subscription.dropped``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Iterable, Optional

from ridedispatch.domain.events import Event

logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, bus: "EventBus", topics: frozenset[str], maxsize: int):
        self._bus = bus
        self.topics = topics
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def matches(self, topic: str) -> bool:
        return not self.topics or topic in self.topics

    async def get(self, timeout: Optional[float] = None) -> Event:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout=timeout)

    def get_nowait(self) -> Event:
        return self.queue.get_nowait()

    def drain(self) -> list[Event]:
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[Event]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Event]:
        while not self.closed:
            yield await self.queue.get()


class EventBus:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscriptions: list[Subscription] = []

    def subscribe(self, *topics: str, maxsize: Optional[int] = None) -> Subscription:
        """Subscribe to *topics*; no topics means every topic."""
        sub = Subscription(self, frozenset(topics), maxsize or self.queue_size)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass
        sub.closed = True

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Fan *payload* out to current subscribers; returns deliveries made."""
        event = Event(topic, payload)
        delivered = 0
        for sub in list(self._subscriptions):
            if not sub.matches(topic):
                continue
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.warning(
                    "Subscriber queue full, dropped %s (dropped=%d)", topic, sub.dropped
                )
        return delivered

    def publish_many(self, topic: str, payloads: Iterable[dict[str, Any]]) -> int:
        return sum(self.publish(topic, p) for p in payloads)
