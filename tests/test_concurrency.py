"""
Concurrency safety tests.

Demonstrates:
1. Two drivers accepting the same ride at once: exactly one wins, the other
   gets ``AlreadyAccepted``.
2. The compare-and-set loop gives up with ``ConcurrentModification`` when it
   keeps losing.
3. The in-memory store only accepts writes against the current version.
"""

import asyncio

import pytest

from ridedispatch.domain.entities import Ride
from ridedispatch.domain.enums import Availability, RideStatus, VehicleClass
from ridedispatch.domain.exceptions import AlreadyAccepted, ConcurrentModification
from ridedispatch.infrastructure.event_bus import EventBus
from ridedispatch.infrastructure.memory import InMemoryRideStore
from ridedispatch.services.dispatch import build_dispatch_service
from ridedispatch.services.lifecycle import RideLifecycle
from ridedispatch.services.registry import DriverRegistry
from tests.conftest import DROPOFF, NEAR, PICKUP, bring_online, make_settings, request


class YieldingRideStore(InMemoryRideStore):
    """Yields to the event loop after every read so concurrent writers interleave."""

    async def get(self, ride_id: str) -> Ride:
        ride = await super().get(ride_id)
        await asyncio.sleep(0)
        return ride


class AlwaysStaleRideStore(InMemoryRideStore):
    async def compare_and_set(self, ride: Ride, expected_version: int) -> bool:
        return False


class TestAcceptRace:
    @pytest.mark.asyncio
    async def test_exactly_one_driver_wins(self, fare_store, bus, clock):
        service = build_dispatch_service(
            make_settings(),
            ride_store=YieldingRideStore(),
            fare_configs=fare_store,
            bus=bus,
            clock=clock,
        )
        sub = bus.subscribe("ride:accepted")
        await bring_online(service, "d1")
        await bring_online(service, "d2")
        ride = await request(service)
        assert ride.offered_to == {"d1", "d2"}

        results = await asyncio.gather(
            service.accept_ride(ride.id, "d1"),
            service.accept_ride(ride.id, "d2"),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, Ride)]
        losers = [r for r in results if isinstance(r, AlreadyAccepted)]
        assert len(winners) == 1
        assert len(losers) == 1

        stored = await service.get_ride(ride.id)
        assert stored.status == RideStatus.DRIVER_ACCEPTED
        assert stored.assigned_driver_id == winners[0].assigned_driver_id
        assert losers[0].driver_id == stored.assigned_driver_id

        loser_id = ({"d1", "d2"} - {stored.assigned_driver_id}).pop()
        assert service.get_driver(stored.assigned_driver_id).availability == Availability.BUSY
        assert service.get_driver(loser_id).availability == Availability.AVAILABLE
        assert len(sub.drain()) == 1
        await service.close()

    @pytest.mark.asyncio
    async def test_many_concurrent_accepts(self, fare_store, bus, clock):
        service = build_dispatch_service(
            make_settings(max_candidates=10, cas_max_retries=20),
            ride_store=YieldingRideStore(),
            fare_configs=fare_store,
            bus=bus,
            clock=clock,
        )
        drivers = [f"d{i}" for i in range(8)]
        for driver_id in drivers:
            await bring_online(service, driver_id)
        ride = await request(service)

        results = await asyncio.gather(
            *(service.accept_ride(ride.id, d) for d in drivers), return_exceptions=True
        )
        assert sum(isinstance(r, Ride) for r in results) == 1
        assert sum(isinstance(r, AlreadyAccepted) for r in results) == len(drivers) - 1
        await service.close()


class TestCompareAndSet:
    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, bus):
        store = AlwaysStaleRideStore()
        registry = DriverRegistry(bus)
        await registry.set_online("d1", NEAR, VehicleClass.AUTO)
        lifecycle = RideLifecycle(store, registry, bus, max_retries=3)
        ride = await store.add(
            Ride(
                requester_id="rider-1",
                pickup=PICKUP,
                dropoff=DROPOFF,
                status=RideStatus.DRIVER_ASSIGNED,
                offered_to=frozenset({"d1"}),
            )
        )
        with pytest.raises(ConcurrentModification):
            await lifecycle.accept(ride.id, "d1")

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self):
        store = InMemoryRideStore()
        ride = await store.add(Ride(requester_id="rider-1"))

        first = await store.get(ride.id)
        second = await store.get(ride.id)
        first.status = RideStatus.CANCELLED
        assert await store.compare_and_set(first, 0) is True
        second.status = RideStatus.DRIVER_ASSIGNED
        assert await store.compare_and_set(second, 0) is False

        stored = await store.get(ride.id)
        assert stored.status == RideStatus.CANCELLED
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_store_hands_out_copies(self):
        store = InMemoryRideStore()
        ride = await store.add(Ride(requester_id="rider-1"))
        ride.status = RideStatus.CANCELLED
        assert (await store.get(ride.id)).status == RideStatus.SEARCHING
