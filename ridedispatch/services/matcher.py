"""
Dispatch Matcher
================

Broadcast-then-narrow matching:

1. **Candidate query** -- up to ``max_candidates`` eligible drivers (online,
   available, same vehicle class) within the ride's search radius, nearest
   first, excluding drivers that already hold or have refused an offer.
2. **Broadcast** -- every candidate receives ``ride:request`` at once; the
   ride moves to ``driver_assigned`` and ``assignment_attempts`` grows by one.
3. **First accept wins** -- resolved by the lifecycle's compare-and-set.
4. **Rejection / expiry** -- the driver is excluded from the ride for good
   and the candidate query runs again.  With nothing new to offer and no
   offer outstanding, the ride returns to ``searching`` with
   ``ride:no_drivers``.

Attempts are capped by ``max_attempts``; an exhausted ride stays in
``searching`` until ``retry`` (manual) or cancellation.

Complexity per dispatch: one geo query, O(k^2 + m log m) (see geo_index).
"""

from __future__ import annotations

import logging
from typing import Optional

from ridedispatch.domain import events
from ridedispatch.domain.entities import Ride
from ridedispatch.domain.enums import RideStatus
from ridedispatch.domain.exceptions import InvalidTransition
from ridedispatch.infrastructure.event_bus import EventBus
from ridedispatch.services.lifecycle import RideLifecycle
from ridedispatch.services.registry import Candidate, DriverRegistry
from ridedispatch.workers.offer_timeouts import OfferTimeouts

logger = logging.getLogger(__name__)

_DISPATCHABLE = (RideStatus.SEARCHING, RideStatus.DRIVER_ASSIGNED)


class DispatchMatcher:
    def __init__(
        self,
        registry: DriverRegistry,
        lifecycle: RideLifecycle,
        bus: EventBus,
        search_radius_km: float = 5.0,
        max_candidates: int = 10,
        max_attempts: int = 5,
        offer_timeout: Optional[float] = 20.0,
        timeouts: Optional[OfferTimeouts] = None,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.bus = bus
        self.search_radius_km = search_radius_km
        self.max_candidates = max_candidates
        self.max_attempts = max_attempts
        self.offer_timeout = offer_timeout
        self.timeouts = timeouts or OfferTimeouts()

    def find_candidates(self, ride: Ride) -> list[Candidate]:
        return self.registry.nearest(
            ride.pickup,
            ride.search_radius_km or self.search_radius_km,
            vehicle_class=ride.vehicle_class,
            exclude=ride.rejected_by | ride.offered_to,
            limit=self.max_candidates,
        )

    async def dispatch(self, ride: Ride, offer_timeout: Optional[float] = None) -> Ride:
        """Offer *ride* to every eligible candidate, or report that there are none."""
        if ride.status not in _DISPATCHABLE:
            raise InvalidTransition(
                f"Cannot dispatch ride in status {ride.status.value}",
                status=ride.status.value,
            )

        if ride.assignment_attempts >= self.max_attempts:
            logger.info("Ride %s exhausted %d dispatch attempts", ride.id, self.max_attempts)
            return await self._no_drivers(ride, exhausted=True)

        candidates = self.find_candidates(ride)
        if not candidates:
            return await self._no_drivers(ride)

        ride, offered = await self.lifecycle.offer(ride.id, [c.driver.id for c in candidates])
        if not offered:
            return ride

        distances = {c.driver.id: c.distance_km for c in candidates}
        timeout = self.offer_timeout if offer_timeout is None else offer_timeout
        base = ride.to_dict()
        requests = [
            {
                **base,
                "driver_id": driver_id,
                "distance_to_pickup_km": round(distances[driver_id], 2),
            }
            for driver_id in offered
        ]
        try:
            self.bus.publish_many(events.RIDE_REQUEST, requests)
        except Exception:
            logger.exception("Failed to publish %s", events.RIDE_REQUEST)
        for driver_id in offered:
            logger.debug("Offering ride %s to driver %s", ride.id, driver_id)
            self.timeouts.schedule(ride.id, driver_id, timeout, self.expire_offer)

        self._emit(
            events.RIDE_DRIVERS_FOUND,
            {
                "ride_id": ride.id,
                "requester_id": ride.requester_id,
                "drivers_count": len(offered),
            },
        )
        return ride

    async def handle_rejection(self, ride_id: str, driver_id: str) -> Ride:
        ride = await self.lifecycle.reject(ride_id, driver_id)
        return await self._redispatch(ride)

    async def expire_offer(self, ride_id: str, driver_id: str) -> Optional[Ride]:
        ride = await self.lifecycle.expire_offer(ride_id, driver_id)
        if ride is None:
            return None
        return await self._redispatch(ride)

    async def retry(self, ride_id: str, offer_timeout: Optional[float] = None) -> Ride:
        """Manual retry: clears the attempt counter, keeps the exclusion list."""
        ride = await self.lifecycle.reset_attempts(ride_id)
        return await self.dispatch(ride, offer_timeout)

    async def close(self) -> None:
        await self.timeouts.close()

    # ── Internals ─────────────────────────────────────────────────────

    async def _redispatch(self, ride: Ride) -> Ride:
        if ride.status not in _DISPATCHABLE:
            return ride
        return await self.dispatch(ride)

    async def _no_drivers(self, ride: Ride, exhausted: bool = False) -> Ride:
        if ride.offered_to:
            # Offers still outstanding; wait for them.
            return ride
        if ride.status == RideStatus.DRIVER_ASSIGNED:
            ride = await self.lifecycle.revert_to_searching(ride.id)
        if ride.status != RideStatus.SEARCHING:
            return ride

        logger.info("No drivers for ride %s (exhausted=%s)", ride.id, exhausted)
        self._emit(
            events.RIDE_NO_DRIVERS,
            {
                "ride_id": ride.id,
                "requester_id": ride.requester_id,
                "vehicle_class": ride.vehicle_class.value,
                "pickup": ride.pickup.to_dict(),
                "fare_estimate": ride.fare_estimate,
                "exhausted": exhausted,
                "message": "No drivers available nearby",
            },
        )
        return ride

    def _emit(self, topic: str, payload: dict) -> None:
        try:
            self.bus.publish(topic, payload)
        except Exception:
            logger.exception("Failed to publish %s", topic)
