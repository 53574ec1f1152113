"""
SQL repositories on in-memory SQLite (via aiosqlite).

Covers the versioned compare-and-set update and the one-active-config-per-
class rule; PostgreSQL-only details (enum types, pool sizing) are not
exercised here.
"""

import pytest
import pytest_asyncio

from ridedispatch.domain.entities import Ride
from ridedispatch.domain.enums import RideStatus, VehicleClass
from ridedispatch.domain.exceptions import RideNotFound
from ridedispatch.domain.zones import ZonePolygon
from ridedispatch.infrastructure.database import Base, create_engine, create_session_factory
from ridedispatch.infrastructure.repositories import SqlFareConfigRepository, SqlRideStore
from ridedispatch.services.dispatch import build_dispatch_service
from tests.conftest import DROPOFF, NEAR, PICKUP, auto_fare, bring_online, make_settings, request

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def session_factory():
    """Create tables, yield a session factory, then drop everything."""
    engine = create_engine(TEST_DB_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


def new_ride(**kwargs) -> Ride:
    values = dict(
        requester_id="rider-1",
        pickup=PICKUP,
        dropoff=DROPOFF,
        vehicle_class=VehicleClass.AUTO,
    )
    values.update(kwargs)
    return Ride(**values)


class TestSqlRideStore:
    @pytest.mark.asyncio
    async def test_add_and_get(self, session_factory):
        store = SqlRideStore(session_factory)
        ride = await store.add(new_ride(fare_estimate=76.08))

        loaded = await store.get(ride.id)
        assert loaded.id == ride.id
        assert loaded.pickup.coordinates == PICKUP.coordinates
        assert loaded.status == RideStatus.SEARCHING
        assert loaded.vehicle_class == VehicleClass.AUTO
        assert loaded.fare_estimate == 76.08
        assert loaded.version == 0
        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, session_factory):
        with pytest.raises(RideNotFound):
            await SqlRideStore(session_factory).get("missing")

    @pytest.mark.asyncio
    async def test_compare_and_set(self, session_factory):
        store = SqlRideStore(session_factory)
        ride = await store.add(new_ride())

        first = await store.get(ride.id)
        second = await store.get(ride.id)

        first.status = RideStatus.DRIVER_ASSIGNED
        first.offered_to = frozenset({"d1", "d2"})
        assert await store.compare_and_set(first, 0) is True
        assert first.version == 1

        second.status = RideStatus.CANCELLED
        assert await store.compare_and_set(second, 0) is False

        stored = await store.get(ride.id)
        assert stored.status == RideStatus.DRIVER_ASSIGNED
        assert stored.offered_to == {"d1", "d2"}
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_compare_and_set_missing_ride(self, session_factory):
        store = SqlRideStore(session_factory)
        with pytest.raises(RideNotFound):
            await store.compare_and_set(new_ride(id="ghost"), 0)

    @pytest.mark.asyncio
    async def test_list_by_status(self, session_factory):
        store = SqlRideStore(session_factory)
        await store.add(new_ride())
        await store.add(new_ride(status=RideStatus.CANCELLED))
        assert len(await store.list()) == 2
        cancelled = await store.list(RideStatus.CANCELLED)
        assert [r.status for r in cancelled] == [RideStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_full_lifecycle_through_sql(self, session_factory, bus, clock):
        service = build_dispatch_service(
            make_settings(),
            ride_store=SqlRideStore(session_factory),
            fare_configs=SqlFareConfigRepository(session_factory),
            bus=bus,
            clock=clock,
        )
        await service.configure_fare(auto_fare())
        await bring_online(service, "d1", NEAR)

        ride = await request(service)
        assert ride.fare_estimate is not None
        await service.accept_ride(ride.id, "d1")
        await service.start_ride(ride.id)
        ride = await service.complete_ride(ride.id)

        stored = await service.get_ride(ride.id)
        assert stored.status == RideStatus.COMPLETED
        assert stored.assigned_driver_id == "d1"
        assert stored.version == 4
        await service.close()


class TestSqlFareConfigRepository:
    @pytest.mark.asyncio
    async def test_no_active_config(self, session_factory):
        repo = SqlFareConfigRepository(session_factory)
        assert await repo.get_active(VehicleClass.AUTO) is None

    @pytest.mark.asyncio
    async def test_save_replaces_active(self, session_factory):
        repo = SqlFareConfigRepository(session_factory)
        await repo.save(auto_fare(base_fare=20.0))
        await repo.save(auto_fare(base_fare=30.0))

        active = await repo.get_active(VehicleClass.AUTO)
        assert active.base_fare == 30.0

    @pytest.mark.asyncio
    async def test_zones_round_trip(self, session_factory):
        repo = SqlFareConfigRepository(session_factory)
        zone = ZonePolygon(
            "koramangala",
            ((77.62, 12.91), (77.66, 12.91), (77.66, 12.95), (77.62, 12.95)),
            surge_multiplier=1.5,
        )
        await repo.save(auto_fare(zones=(zone,)))

        active = await repo.get_active(VehicleClass.AUTO)
        assert active.zones == (zone,)
        assert active.surge_for(DROPOFF)[0] == 1.5
