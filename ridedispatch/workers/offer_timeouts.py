"""
Offer expiry timers.

One ``asyncio`` task per outstanding ``(ride, driver)`` offer sleeps for the
offer timeout and then calls back into the matcher.  Timers are never
cancelled on accept or cancel: the callback re-checks the ride and is a no-op
once the offer is no longer outstanding.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[str, str], Awaitable[object]]


class OfferTimeouts:
    def __init__(self):
        self._tasks: dict[tuple[str, str], asyncio.Task] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        ride_id: str,
        driver_id: str,
        timeout: Optional[float],
        callback: ExpiryCallback,
    ) -> Optional[asyncio.Task]:
        if not timeout or timeout <= 0:
            return None
        key = (ride_id, driver_id)
        previous = self._tasks.get(key)
        if previous is not None:
            previous.cancel()

        task = asyncio.create_task(self._expire_after(key, timeout, callback))
        self._tasks[key] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(key) is done:
                del self._tasks[key]

        task.add_done_callback(_forget)
        return task

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    @staticmethod
    async def _expire_after(
        key: tuple[str, str], timeout: float, callback: ExpiryCallback
    ) -> None:
        await asyncio.sleep(timeout)
        try:
            await callback(*key)
        except Exception:
            logger.exception("Offer expiry failed for ride %s / driver %s", *key)
