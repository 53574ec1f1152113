"""
Driver Registry
===============

Process-wide tracking of drivers: last known position, online flag and
availability.  The geo index is kept in sync on every location write.

Concurrency
-----------
* Writes to the *same* driver are serialised by a per-driver
  ``asyncio.Lock``; different drivers never contend.
* Reads (``get``, ``nearest``) take no lock and may see a position that is
  one update old.

Staleness
---------
``sweep`` marks offline every online driver silent for longer than
``stale_after`` and emits ``driver:offline`` once per driver.  It is driven
by the sweeper worker, not by clients.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Callable, Iterable, NamedTuple, Optional

from ridedispatch.domain import events
from ridedispatch.domain.entities import Driver, Location, LocationSample, utcnow
from ridedispatch.domain.enums import Availability, VehicleClass
from ridedispatch.domain.exceptions import DriverNotFound, DriverNotOnline
from ridedispatch.domain.geo_index import GeoIndex
from ridedispatch.infrastructure.event_bus import EventBus

logger = logging.getLogger(__name__)


class Candidate(NamedTuple):
    driver: Driver
    distance_km: float


class DriverRegistry:
    def __init__(
        self,
        bus: EventBus,
        index: Optional[GeoIndex] = None,
        stale_after: timedelta = timedelta(minutes=10),
        history_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.bus = bus
        self.index = index or GeoIndex()
        self.stale_after = stale_after
        self.history_size = history_size
        self.clock = clock
        self._drivers: dict[str, Driver] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __len__(self) -> int:
        return len(self._drivers)

    # ── Reads ─────────────────────────────────────────────────────────

    def get(self, driver_id: str) -> Driver:
        driver = self._drivers.get(driver_id)
        if driver is None:
            raise DriverNotFound(f"Driver {driver_id} not found")
        return driver

    def online_drivers(self) -> list[Driver]:
        return [d for d in self._drivers.values() if d.online]

    def nearest(
        self,
        point: Location,
        radius_km: float,
        vehicle_class: Optional[VehicleClass] = None,
        exclude: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> list[Candidate]:
        """Eligible drivers within *radius_km*, nearest first."""
        excluded = set(exclude)

        def eligible(driver_id: str) -> bool:
            driver = self._drivers.get(driver_id)
            return (
                driver is not None
                and driver_id not in excluded
                and driver.is_eligible(vehicle_class)
            )

        return [
            Candidate(self._drivers[n.key], n.distance_km)
            for n in self.index.nearest(point, radius_km, eligible, limit)
        ]

    def location_history(self, driver_id: str, limit: int = 50) -> list[LocationSample]:
        history = list(self.get(driver_id).location_history)
        return history[-limit:] if limit else history

    # ── Writes ────────────────────────────────────────────────────────

    async def register(self, driver_id: str, vehicle_class: VehicleClass) -> Driver:
        async with self._locks[driver_id]:
            driver = self._drivers.get(driver_id)
            if driver is None:
                driver = Driver(
                    id=driver_id,
                    vehicle_class=vehicle_class,
                    location_history=deque(maxlen=self.history_size),
                )
                self._drivers[driver_id] = driver
            else:
                driver.vehicle_class = vehicle_class
            return driver

    async def set_online(
        self,
        driver_id: str,
        location: Location,
        vehicle_class: Optional[VehicleClass] = None,
    ) -> Driver:
        if driver_id not in self._drivers:
            if vehicle_class is None:
                raise DriverNotFound(
                    f"Driver {driver_id} is not registered; a vehicle class is required"
                )
            await self.register(driver_id, vehicle_class)

        async with self._locks[driver_id]:
            driver = self._drivers[driver_id]
            if vehicle_class is not None:
                driver.vehicle_class = vehicle_class
            driver.online = True
            driver.availability = Availability.AVAILABLE
            self._move(driver, location)
            driver.last_seen = self.clock()

        logger.info("Driver %s online at %s", driver_id, location.coordinates)
        self._emit(events.DRIVER_ONLINE, driver.to_dict())
        return driver

    async def set_offline(self, driver_id: str) -> Driver:
        async with self._locks[driver_id]:
            driver = self.get(driver_id)
            was_online = driver.online
            self._take_offline(driver)

        if was_online:
            logger.info("Driver %s offline", driver_id)
            self._emit(events.DRIVER_OFFLINE, {"driver_id": driver_id, "reason": "requested"})
        return driver

    async def update_location(
        self,
        driver_id: str,
        location: Location,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> Driver:
        async with self._locks[driver_id]:
            driver = self.get(driver_id)
            came_online = not driver.online
            if came_online:
                driver.online = True
                driver.availability = Availability.AVAILABLE
            self._move(driver, location, speed or 0.0, heading or 0.0)
            driver.last_seen = self.clock()

        if came_online:
            self._emit(events.DRIVER_ONLINE, driver.to_dict())
        self._emit(
            events.DRIVER_LOCATION_UPDATE,
            {
                "driver_id": driver_id,
                "location": location.to_dict(),
                "speed": speed,
                "heading": heading,
            },
        )
        return driver

    async def set_availability(self, driver_id: str, availability: Availability) -> Driver:
        if availability == Availability.OFFLINE:
            return await self.set_offline(driver_id)

        async with self._locks[driver_id]:
            driver = self.get(driver_id)
            if not driver.online:
                raise DriverNotOnline(f"Driver {driver_id} must be online to be {availability.value}")
            changed = driver.availability != availability
            driver.availability = availability
            driver.last_seen = self.clock()

        if changed:
            self._emit(
                events.DRIVER_STATUS_UPDATE,
                {"driver_id": driver_id, "status": availability.value},
            )
        return driver

    async def mark_busy(self, driver_id: str) -> Driver:
        return await self.set_availability(driver_id, Availability.BUSY)

    async def release(self, driver_id: str) -> Driver:
        """Hand a driver back to dispatch; offline drivers stay offline."""
        driver = self.get(driver_id)
        if not driver.online or driver.availability == Availability.AVAILABLE:
            return driver
        return await self.set_availability(driver_id, Availability.AVAILABLE)

    async def record_trip(self, driver_id: str) -> Driver:
        """Count a completed trip and hand the driver back to dispatch."""
        async with self._locks[driver_id]:
            driver = self.get(driver_id)
            driver.total_trips += 1
            if driver.online:
                driver.availability = Availability.AVAILABLE

        self._emit(
            events.DRIVER_STATUS_UPDATE,
            {"driver_id": driver_id, "status": driver.availability.value},
        )
        return driver

    async def sweep(self, now: Optional[datetime] = None) -> list[str]:
        """Mark offline every online driver silent for longer than ``stale_after``."""
        now = now or self.clock()
        swept: list[str] = []
        for driver_id in list(self._drivers):
            async with self._locks[driver_id]:
                driver = self._drivers[driver_id]
                if not driver.online or driver.last_seen is None:
                    continue
                if now - driver.last_seen <= self.stale_after:
                    continue
                self._take_offline(driver)
            swept.append(driver_id)
            self._emit(events.DRIVER_OFFLINE, {"driver_id": driver_id, "reason": "stale"})

        if swept:
            logger.info("Swept %d stale drivers offline", len(swept))
        return swept

    # ── Internals ─────────────────────────────────────────────────────

    def _move(
        self, driver: Driver, location: Location, speed: float = 0.0, heading: float = 0.0
    ) -> None:
        if location.timestamp is None:
            location = Location(location.longitude, location.latitude, self.clock())
        driver.record_location(location, speed, heading)
        self.index.upsert(driver.id, location)

    def _take_offline(self, driver: Driver) -> None:
        driver.online = False
        driver.availability = Availability.OFFLINE
        self.index.remove(driver.id)

    def _emit(self, topic: str, payload: dict) -> None:
        try:
            self.bus.publish(topic, payload)
        except Exception:
            logger.exception("Failed to publish %s", topic)
