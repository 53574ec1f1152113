"""
Shared test fixtures.

Everything runs in-process: the in-memory ride store, an injectable clock
and the in-process event bus.  No PostgreSQL or Redis is needed; the SQL
store tests use in-memory SQLite (via aiosqlite).
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from ridedispatch.config import Settings
from ridedispatch.domain.entities import Location
from ridedispatch.domain.enums import VehicleClass
from ridedispatch.domain.pricing import FareConfig
from ridedispatch.infrastructure.event_bus import EventBus
from ridedispatch.infrastructure.memory import FareConfigStore
from ridedispatch.services.dispatch import build_dispatch_service

# Bangalore: MG Road -> Koramangala (~7 km)
PICKUP = Location(77.59, 12.97)
DROPOFF = Location(77.64, 12.93)

# Driver positions relative to PICKUP
NEAR = Location(77.592, 12.971)  # ~0.24 km
NEARER = Location(77.5905, 12.9702)  # ~0.06 km
MID = Location(77.61, 12.98)  # ~2.4 km
FAR = Location(77.70, 13.05)  # ~14.8 km


class FakeClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    values = {"offer_timeout_seconds": 0, "ride_store": "memory"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def auto_fare(**overrides) -> FareConfig:
    values = dict(
        vehicle_class=VehicleClass.AUTO,
        base_fare=20.0,
        per_km_rate=8.0,
        per_minute_rate=2.0,
        minimum_fare=50.0,
        surge_multiplier=1.0,
    )
    values.update(overrides)
    return FareConfig(**values)


def topics(sub) -> list[str]:
    return [e.topic for e in sub.drain()]


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus(queue_size=1000)


@pytest.fixture
def fare_store() -> FareConfigStore:
    return FareConfigStore([auto_fare()])


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def service(settings, fare_store, bus, clock):
    svc = build_dispatch_service(settings, fare_configs=fare_store, bus=bus, clock=clock)
    yield svc
    await svc.close()


@pytest.fixture
def events(bus):
    """Subscription to every topic, opened before the test acts."""
    sub = bus.subscribe()
    yield sub
    sub.close()


async def bring_online(service, driver_id, location=NEAR, vehicle_class=VehicleClass.AUTO):
    return await service.set_driver_online(driver_id, location, vehicle_class)


async def request(service, requester_id="rider-1", vehicle_class=VehicleClass.AUTO, **kwargs):
    return await service.request_ride(requester_id, PICKUP, DROPOFF, vehicle_class, **kwargs)
