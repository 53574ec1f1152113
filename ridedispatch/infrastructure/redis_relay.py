"""
Redis event relay.

Forwards every EventBus event to the Redis channel ``<prefix>:<topic>`` so a
real-time gateway running in another process can push it to sockets.
Failures are logged and skipped; the relay never feeds back into state.
"""

from __future__ import annotations

import asyncio
import json
import logging

import redis.asyncio as aioredis

from ridedispatch.domain.events import Event
from ridedispatch.infrastructure.event_bus import EventBus, Subscription

logger = logging.getLogger(__name__)


class RedisEventRelay:
    def __init__(self, bus: EventBus, client: aioredis.Redis, prefix: str = "dispatch"):
        self.bus = bus
        self.redis = client
        self.prefix = prefix
        self._sub: Subscription | None = None
        self._task: asyncio.Task | None = None

    def channel_for(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def forward(self, event: Event) -> bool:
        try:
            await self.redis.publish(
                self.channel_for(event.topic), json.dumps(event.to_dict(), default=str)
            )
            return True
        except Exception:
            logger.exception("Failed to relay %s to Redis", event.topic)
            return False

    async def start(self) -> None:
        self._sub = self.bus.subscribe()
        self._task = asyncio.create_task(self._run())
        logger.info("Redis event relay started (prefix=%s)", self.prefix)

    async def stop(self) -> None:
        if self._sub:
            self._sub.close()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Redis event relay stopped")

    async def _run(self) -> None:
        assert self._sub is not None
        async for event in self._sub:
            await self.forward(event)
