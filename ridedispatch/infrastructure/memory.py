"""
In-memory implementations of the persistence collaborators.

Used by default for a single-process deployment and throughout the tests.
``InMemoryRideStore.compare_and_set`` is the atomic conditional update the
lifecycle relies on: it only writes when the stored version still matches.
"""

from __future__ import annotations

import threading
import uuid
from typing import Optional, Protocol

from ridedispatch.domain.entities import Ride, utcnow
from ridedispatch.domain.enums import RideStatus, VehicleClass
from ridedispatch.domain.exceptions import RideNotFound
from ridedispatch.domain.pricing import FareConfig


class RideStore(Protocol):
    async def add(self, ride: Ride) -> Ride: ...

    async def get(self, ride_id: str) -> Ride: ...

    async def compare_and_set(self, ride: Ride, expected_version: int) -> bool: ...

    async def list(self, status: Optional[RideStatus] = None) -> list[Ride]: ...


def new_ride_id() -> str:
    return uuid.uuid4().hex


class InMemoryRideStore:
    def __init__(self):
        self._rides: dict[str, Ride] = {}
        self._lock = threading.Lock()

    async def add(self, ride: Ride) -> Ride:
        with self._lock:
            if ride.id is None:
                ride.id = new_ride_id()
            if ride.created_at is None:
                ride.created_at = utcnow()
            ride.version = 0
            self._rides[ride.id] = ride.copy()
        return ride

    async def get(self, ride_id: str) -> Ride:
        with self._lock:
            ride = self._rides.get(ride_id)
            if ride is None:
                raise RideNotFound(f"Ride {ride_id} not found")
            return ride.copy()

    async def compare_and_set(self, ride: Ride, expected_version: int) -> bool:
        with self._lock:
            current = self._rides.get(ride.id)
            if current is None:
                raise RideNotFound(f"Ride {ride.id} not found")
            if current.version != expected_version:
                return False
            ride.version = expected_version + 1
            self._rides[ride.id] = ride.copy()
            return True

    async def list(self, status: Optional[RideStatus] = None) -> list[Ride]:
        with self._lock:
            rides = [r.copy() for r in self._rides.values()]
        if status is not None:
            rides = [r for r in rides if r.status == status]
        return sorted(rides, key=lambda r: r.created_at)


class FareConfigStore:
    """Holds fare configs; exactly one is active per vehicle class."""

    def __init__(self, configs: Optional[list[FareConfig]] = None):
        self._active: dict[VehicleClass, FareConfig] = {}
        for config in configs or []:
            self.activate(config)

    def activate(self, config: FareConfig) -> FareConfig:
        """Make *config* the active one for its class, replacing any other."""
        if not config.active:
            raise ValueError("Cannot activate a config flagged inactive")
        self._active[config.vehicle_class] = config
        return config

    async def save(self, config: FareConfig) -> FareConfig:
        return self.activate(config)

    def deactivate(self, vehicle_class: VehicleClass) -> Optional[FareConfig]:
        return self._active.pop(vehicle_class, None)

    async def get_active(self, vehicle_class: VehicleClass) -> Optional[FareConfig]:
        return self._active.get(vehicle_class)

    def all(self) -> list[FareConfig]:
        return list(self._active.values())
