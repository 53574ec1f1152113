"""
Seed script -- populates the database with fare configs for reviewers.

Run after migrations:
    python seed.py

Creates one active fare config per main vehicle class around Bangalore,
with a surge zone over the airport and one over the central business
district.  Classes that already have an active config are left alone.
"""

import asyncio

from ridedispatch.config import settings
from ridedispatch.domain.enums import VehicleClass
from ridedispatch.domain.pricing import FareConfig
from ridedispatch.domain.zones import ZonePolygon
from ridedispatch.infrastructure.database import create_engine, create_session_factory
from ridedispatch.infrastructure.repositories import SqlFareConfigRepository

# Rings of (lon, lat)
AIRPORT_ZONE = ZonePolygon(
    "kempegowda_airport",
    (
        (77.6800, 13.1800),
        (77.7300, 13.1800),
        (77.7300, 13.2200),
        (77.6800, 13.2200),
    ),
    surge_multiplier=1.5,
)
CBD_ZONE = ZonePolygon(
    "mg_road_cbd",
    (
        (77.5900, 12.9650),
        (77.6250, 12.9650),
        (77.6250, 12.9850),
        (77.5900, 12.9850),
    ),
    surge_multiplier=1.2,
)

FARES = [
    # (class, base, per km, per min, minimum)
    (VehicleClass.BIKE_DIRECT, 15.0, 5.0, 1.0, 30.0),
    (VehicleClass.AUTO, 20.0, 8.0, 1.5, 50.0),
    (VehicleClass.AUTO_PRIORITY, 25.0, 10.0, 1.5, 60.0),
    (VehicleClass.AUTO_PET, 30.0, 10.0, 1.5, 70.0),
    (VehicleClass.CAB_NON_AC, 40.0, 12.0, 2.0, 80.0),
    (VehicleClass.CAB_AC, 50.0, 14.0, 2.0, 100.0),
    (VehicleClass.CAB_AC_SEDAN, 60.0, 16.0, 2.0, 120.0),
    (VehicleClass.CAB_PREMIUM, 100.0, 22.0, 3.0, 200.0),
    (VehicleClass.CAB_XL, 80.0, 20.0, 2.5, 160.0),
]


async def seed():
    engine = create_engine(settings.database_url)
    repo = SqlFareConfigRepository(create_session_factory(engine))
    created = 0
    try:
        for vehicle_class, base, per_km, per_min, minimum in FARES:
            if await repo.get_active(vehicle_class):
                print(f"  {vehicle_class.value}: already configured, skipping")
                continue
            await repo.save(
                FareConfig(
                    vehicle_class=vehicle_class,
                    base_fare=base,
                    per_km_rate=per_km,
                    per_minute_rate=per_min,
                    minimum_fare=minimum,
                    zones=(AIRPORT_ZONE, CBD_ZONE),
                )
            )
            created += 1
        print(f"  Created {created} fare configs")
    finally:
        await engine.dispose()


async def main():
    print("Seeding database...")
    await seed()
    print("\nSeed complete!")


if __name__ == "__main__":
    asyncio.run(main())
