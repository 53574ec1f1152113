"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``async_sessionmaker`` and opens one short
unit-of-work per call, converting between ORM rows and domain entities.

The ride compare-and-set is an optimistic conditional update::

    UPDATE rides SET ..., version = :v + 1 WHERE id = :id AND version = :v

and succeeds only when exactly one row matched.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .memory import new_ride_id
from .models import FareConfigModel, RideModel
from ridedispatch.domain.entities import Location, Ride, utcnow
from ridedispatch.domain.enums import RideStatus, VehicleClass
from ridedispatch.domain.exceptions import RideNotFound
from ridedispatch.domain.pricing import FareConfig
from ridedispatch.domain.zones import ZonePolygon


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _ride_columns(ride: Ride) -> dict[str, Any]:
    return {
        "requester_id": ride.requester_id,
        "pickup_lng": ride.pickup.longitude,
        "pickup_lat": ride.pickup.latitude,
        "dropoff_lng": ride.dropoff.longitude,
        "dropoff_lat": ride.dropoff.latitude,
        "vehicle_class": ride.vehicle_class,
        "status": ride.status,
        "fare_estimate": ride.fare_estimate,
        "distance_km": ride.distance_km,
        "estimated_minutes": ride.estimated_minutes,
        "surge_multiplier": ride.surge_multiplier,
        "assigned_driver_id": ride.assigned_driver_id,
        "offered_to": sorted(ride.offered_to),
        "rejected_by": sorted(ride.rejected_by),
        "assignment_attempts": ride.assignment_attempts,
        "search_radius_km": ride.search_radius_km,
        "scheduled_time": ride.scheduled_time,
        "created_at": ride.created_at,
        "assigned_at": ride.assigned_at,
        "accepted_at": ride.accepted_at,
        "started_at": ride.started_at,
        "completed_at": ride.completed_at,
        "cancelled_at": ride.cancelled_at,
        "cancellation_reason": ride.cancellation_reason,
    }


def _to_ride(row: RideModel) -> Ride:
    return Ride(
        id=row.id,
        requester_id=row.requester_id,
        pickup=Location(row.pickup_lng, row.pickup_lat),
        dropoff=Location(row.dropoff_lng, row.dropoff_lat),
        vehicle_class=VehicleClass(row.vehicle_class),
        status=RideStatus(row.status),
        fare_estimate=row.fare_estimate,
        distance_km=row.distance_km,
        estimated_minutes=row.estimated_minutes,
        surge_multiplier=row.surge_multiplier,
        assigned_driver_id=row.assigned_driver_id,
        offered_to=frozenset(row.offered_to or ()),
        rejected_by=frozenset(row.rejected_by or ()),
        assignment_attempts=row.assignment_attempts,
        search_radius_km=row.search_radius_km,
        scheduled_time=_aware(row.scheduled_time),
        created_at=_aware(row.created_at),
        assigned_at=_aware(row.assigned_at),
        accepted_at=_aware(row.accepted_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        cancelled_at=_aware(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        version=row.version,
    )


class SqlRideStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, ride: Ride) -> Ride:
        if ride.id is None:
            ride.id = new_ride_id()
        if ride.created_at is None:
            ride.created_at = utcnow()
        ride.version = 0
        async with self.session_factory() as session:
            session.add(RideModel(id=ride.id, version=0, **_ride_columns(ride)))
            await session.commit()
        return ride

    async def get(self, ride_id: str) -> Ride:
        async with self.session_factory() as session:
            row = await session.get(RideModel, ride_id)
            if row is None:
                raise RideNotFound(f"Ride {ride_id} not found")
            return _to_ride(row)

    async def compare_and_set(self, ride: Ride, expected_version: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(RideModel)
                .where(RideModel.id == ride.id, RideModel.version == expected_version)
                .values(version=expected_version + 1, **_ride_columns(ride))
            )
            await session.commit()
            if result.rowcount == 1:
                ride.version = expected_version + 1
                return True
            if await session.get(RideModel, ride.id) is None:
                raise RideNotFound(f"Ride {ride.id} not found")
            return False

    async def list(self, status: Optional[RideStatus] = None) -> list[Ride]:
        query = select(RideModel).order_by(RideModel.created_at)
        if status is not None:
            query = query.where(RideModel.status == status)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_to_ride(row) for row in result.scalars().all()]


def _to_fare_config(row: FareConfigModel) -> FareConfig:
    zones = tuple(
        ZonePolygon(
            z["name"],
            tuple(tuple(v) for v in z["coordinates"]),
            z.get("surge_multiplier", 1.0),
        )
        for z in row.zones or []
    )
    return FareConfig(
        vehicle_class=VehicleClass(row.vehicle_class),
        base_fare=row.base_fare,
        per_km_rate=row.per_km_rate,
        per_minute_rate=row.per_minute_rate,
        minimum_fare=row.minimum_fare,
        surge_multiplier=row.surge_multiplier,
        zones=zones,
        active=row.active,
    )


class SqlFareConfigRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_active(self, vehicle_class: VehicleClass) -> Optional[FareConfig]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(FareConfigModel).where(
                    FareConfigModel.vehicle_class == vehicle_class,
                    FareConfigModel.active.is_(True),
                )
            )
            row = result.scalar_one_or_none()
            return _to_fare_config(row) if row else None

    async def save(self, config: FareConfig) -> FareConfig:
        """Store *config* as the active one, deactivating the previous config."""
        async with self.session_factory() as session:
            await session.execute(
                update(FareConfigModel)
                .where(
                    FareConfigModel.vehicle_class == config.vehicle_class,
                    FareConfigModel.active.is_(True),
                )
                .values(active=False)
            )
            session.add(
                FareConfigModel(
                    vehicle_class=config.vehicle_class,
                    base_fare=config.base_fare,
                    per_km_rate=config.per_km_rate,
                    per_minute_rate=config.per_minute_rate,
                    minimum_fare=config.minimum_fare,
                    surge_multiplier=config.surge_multiplier,
                    zones=[
                        {
                            "name": z.name,
                            "surge_multiplier": z.surge_multiplier,
                            "coordinates": [list(v) for v in z.vertices],
                        }
                        for z in config.zones
                    ],
                    active=True,
                )
            )
            await session.commit()
        return config
