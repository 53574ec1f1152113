"""
Background Staleness Sweeper
============================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 300 s).

Any online driver whose last location/status update is older than
``DRIVER_STALE_AFTER_SECONDS`` (default 600 s) is marked offline and a
single ``driver:offline`` event is published for it.  Drivers only leave the
registry's online set; they are never deleted.
"""

from __future__ import annotations

import asyncio
import logging

from ridedispatch.services.registry import DriverRegistry

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper_loop(registry: DriverRegistry, interval_seconds: float) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(registry, interval_seconds))
    logger.info("Sweeper started (interval=%ss)", interval_seconds)


async def stop_sweeper_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Sweeper stopped")


async def run_sweep_cycle(registry: DriverRegistry) -> int:
    """Execute one sweep.  Returns the number of drivers marked offline."""
    swept = await registry.sweep()
    return len(swept)


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(registry: DriverRegistry, interval_seconds: float) -> None:
    """Periodic loop: sweep then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(registry)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(_stop_event.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass  # next cycle
