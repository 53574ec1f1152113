"""
Dispatch service facade.

The single entry point adapters (HTTP, sockets, workers) talk to.  Callers
are already authenticated; ids passed in are trusted identities.

Fare policy
-----------
When no active fare config exists for the requested vehicle class, the ride
is still created without an estimate (a warning is logged) unless
``require_fare_config`` is set, in which case ``ConfigNotFound`` propagates
and nothing is created.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ridedispatch.config import Settings
from ridedispatch.domain.entities import Driver, Location, LocationSample, Ride, utcnow
from ridedispatch.domain.enums import Availability, RideStatus, VehicleClass
from ridedispatch.domain.exceptions import ConfigNotFound
from ridedispatch.domain.geo_index import GeoIndex
from ridedispatch.domain.pricing import FareConfig, FareEngine, FareEstimate
from ridedispatch.infrastructure.event_bus import EventBus
from ridedispatch.infrastructure.memory import FareConfigStore, InMemoryRideStore, RideStore
from ridedispatch.services.lifecycle import RideLifecycle
from ridedispatch.services.matcher import DispatchMatcher
from ridedispatch.services.registry import Candidate, DriverRegistry
from ridedispatch.workers.offer_timeouts import OfferTimeouts

logger = logging.getLogger(__name__)


class DispatchService:
    def __init__(
        self,
        registry: DriverRegistry,
        lifecycle: RideLifecycle,
        matcher: DispatchMatcher,
        fares: FareEngine,
        bus: EventBus,
        require_fare_config: bool = False,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.matcher = matcher
        self.fares = fares
        self.bus = bus
        self.require_fare_config = require_fare_config

    # ── Rides ─────────────────────────────────────────────────────────

    async def request_ride(
        self,
        requester_id: str,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass,
        scheduled_time: Optional[datetime] = None,
        duration_min: float = 0.0,
        search_radius_km: Optional[float] = None,
        offer_timeout: Optional[float] = None,
    ) -> Ride:
        estimate: Optional[FareEstimate] = None
        try:
            estimate = await self.fares.estimate(pickup, dropoff, vehicle_class, duration_min)
        except ConfigNotFound:
            if self.require_fare_config:
                raise
            logger.warning(
                "No active fare config for %s; creating ride without estimate",
                vehicle_class.value,
            )

        ride = await self.lifecycle.create(
            requester_id,
            pickup,
            dropoff,
            vehicle_class,
            estimate=estimate,
            scheduled_time=scheduled_time,
            search_radius_km=search_radius_km,
        )
        return await self.matcher.dispatch(ride, offer_timeout)

    async def get_ride(self, ride_id: str) -> Ride:
        return await self.lifecycle.get(ride_id)

    async def list_rides(self, status: Optional[RideStatus] = None) -> list[Ride]:
        return await self.lifecycle.store.list(status)

    async def accept_ride(self, ride_id: str, driver_id: str) -> Ride:
        return await self.lifecycle.accept(ride_id, driver_id)

    async def reject_ride(self, ride_id: str, driver_id: str) -> Ride:
        return await self.matcher.handle_rejection(ride_id, driver_id)

    async def start_ride(self, ride_id: str, actor_id: Optional[str] = None) -> Ride:
        return await self.lifecycle.start(ride_id, actor_id)

    async def complete_ride(self, ride_id: str, actor_id: Optional[str] = None) -> Ride:
        return await self.lifecycle.complete(ride_id, actor_id)

    async def cancel_ride(
        self, ride_id: str, requester_id: str, reason: Optional[str] = None
    ) -> Ride:
        return await self.lifecycle.cancel(ride_id, requester_id, reason)

    async def retry_dispatch(self, ride_id: str, offer_timeout: Optional[float] = None) -> Ride:
        return await self.matcher.retry(ride_id, offer_timeout)

    # ── Drivers ───────────────────────────────────────────────────────

    async def set_driver_online(
        self,
        driver_id: str,
        location: Location,
        vehicle_class: Optional[VehicleClass] = None,
    ) -> Driver:
        return await self.registry.set_online(driver_id, location, vehicle_class)

    async def set_driver_offline(self, driver_id: str) -> Driver:
        return await self.registry.set_offline(driver_id)

    async def update_driver_location(
        self,
        driver_id: str,
        location: Location,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> Driver:
        return await self.registry.update_location(driver_id, location, speed, heading)

    async def set_driver_availability(self, driver_id: str, state: Availability) -> Driver:
        return await self.registry.set_availability(driver_id, state)

    def get_driver(self, driver_id: str) -> Driver:
        return self.registry.get(driver_id)

    def driver_history(self, driver_id: str, limit: int = 50) -> list[LocationSample]:
        return self.registry.location_history(driver_id, limit)

    def nearby_drivers(
        self,
        point: Location,
        radius_km: Optional[float] = None,
        vehicle_class: Optional[VehicleClass] = None,
        limit: int = 20,
    ) -> list[Candidate]:
        return self.registry.nearest(
            point,
            radius_km or self.matcher.search_radius_km,
            vehicle_class=vehicle_class,
            limit=limit,
        )

    # ── Fares ─────────────────────────────────────────────────────────

    async def estimate_fare(
        self,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass,
        duration_min: float = 0.0,
    ) -> FareEstimate:
        return await self.fares.estimate(pickup, dropoff, vehicle_class, duration_min)

    async def configure_fare(self, config: FareConfig) -> FareConfig:
        saved = await self.fares.configs.save(config)
        logger.info("Fare config for %s activated", config.vehicle_class.value)
        return saved

    async def close(self) -> None:
        await self.matcher.close()


def build_dispatch_service(
    settings: Settings,
    ride_store: Optional[RideStore] = None,
    fare_configs=None,
    bus: Optional[EventBus] = None,
    clock: Callable[[], datetime] = utcnow,
) -> DispatchService:
    """Wire the core components from *settings*; in-memory stores by default."""
    bus = bus or EventBus(queue_size=settings.event_queue_size)
    registry = DriverRegistry(
        bus,
        index=GeoIndex(settings.h3_resolution),
        stale_after=timedelta(seconds=settings.driver_stale_after_seconds),
        history_size=settings.location_history_size,
        clock=clock,
    )
    lifecycle = RideLifecycle(
        ride_store or InMemoryRideStore(),
        registry,
        bus,
        clock=clock,
        max_retries=settings.cas_max_retries,
    )
    matcher = DispatchMatcher(
        registry,
        lifecycle,
        bus,
        search_radius_km=settings.search_radius_km,
        max_candidates=settings.max_candidates,
        max_attempts=settings.max_assignment_attempts,
        offer_timeout=settings.offer_timeout_seconds,
        timeouts=OfferTimeouts(),
    )
    fares = FareEngine(
        fare_configs if fare_configs is not None else FareConfigStore(),
        average_speed_kmh=settings.average_speed_kmh,
    )
    return DispatchService(
        registry,
        lifecycle,
        matcher,
        fares,
        bus,
        require_fare_config=settings.require_fare_config,
    )
