"""
Ride Lifecycle
==============

Owns every mutation of a ``Ride``.  Each operation is a compare-and-set loop:

1. read the current ride (with its ``version``),
2. validate the event against the status and the caller,
3. write the new ride only if the stored version is still the one read.

A lost CAS re-reads and re-validates, so two drivers accepting at once end
with exactly one winner: the loser re-reads ``driver_accepted`` and gets
``AlreadyAccepted``.  After ``max_retries`` lost rounds the operation fails
with ``ConcurrentModification``.

Events are published *after* the write commits and are best effort; a
failed publish never rolls the transition back.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Iterable, Optional

from ridedispatch.domain import events
from ridedispatch.domain.entities import Location, Ride, utcnow
from ridedispatch.domain.enums import Availability, RideStatus, VehicleClass
from ridedispatch.domain.exceptions import (
    AlreadyAccepted,
    ConcurrentModification,
    DispatchError,
    DriverNotOnline,
    DriverUnavailable,
    InvalidTransition,
    Unauthorized,
)
from ridedispatch.domain.pricing import FareEstimate
from ridedispatch.infrastructure.event_bus import EventBus
from ridedispatch.infrastructure.memory import RideStore
from ridedispatch.services.registry import DriverRegistry

logger = logging.getLogger(__name__)

# A change function returns False when the event is a no-op for the ride.
Change = Callable[[Ride], bool]


class RideLifecycle:
    def __init__(
        self,
        store: RideStore,
        registry: DriverRegistry,
        bus: EventBus,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 5,
    ):
        self.store = store
        self.registry = registry
        self.bus = bus
        self.clock = clock
        self.max_retries = max_retries
        self._accepting: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── Creation / reads ──────────────────────────────────────────────

    async def create(
        self,
        requester_id: str,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass,
        estimate: Optional[FareEstimate] = None,
        scheduled_time: Optional[datetime] = None,
        search_radius_km: Optional[float] = None,
    ) -> Ride:
        ride = Ride(
            requester_id=requester_id,
            pickup=pickup,
            dropoff=dropoff,
            vehicle_class=vehicle_class,
            status=RideStatus.SEARCHING,
            scheduled_time=scheduled_time,
            search_radius_km=search_radius_km,
            created_at=self.clock(),
        )
        if estimate is not None:
            ride.fare_estimate = estimate.fare
            ride.distance_km = estimate.distance_km
            ride.estimated_minutes = estimate.estimated_minutes
            ride.surge_multiplier = estimate.surge_multiplier
        ride = await self.store.add(ride)
        logger.info("Ride %s created for %s (%s)", ride.id, requester_id, vehicle_class.value)
        return ride

    async def get(self, ride_id: str) -> Ride:
        return await self.store.get(ride_id)

    # ── Dispatch-driven transitions ───────────────────────────────────

    async def offer(self, ride_id: str, driver_ids: Iterable[str]) -> tuple[Ride, list[str]]:
        """Record offers to *driver_ids*; returns the ride and the drivers actually offered."""
        candidates = list(driver_ids)
        offered: list[str] = []

        def change(ride: Ride) -> bool:
            offered.clear()
            if ride.status not in (RideStatus.SEARCHING, RideStatus.DRIVER_ASSIGNED):
                return False
            offered.extend(
                d for d in candidates if d not in ride.rejected_by and d not in ride.offered_to
            )
            if not offered:
                return False
            ride.transition_to(RideStatus.DRIVER_ASSIGNED)
            ride.offered_to = ride.offered_to | frozenset(offered)
            ride.assignment_attempts += 1
            ride.assigned_at = self.clock()
            return True

        ride, changed = await self._mutate(ride_id, change)
        if changed:
            logger.info(
                "Ride %s offered to %d drivers (attempt %d)",
                ride_id, len(offered), ride.assignment_attempts,
            )
        return ride, list(offered) if changed else []

    async def revert_to_searching(self, ride_id: str) -> Ride:
        """Back to ``searching`` once no offer is outstanding."""

        def change(ride: Ride) -> bool:
            if ride.status != RideStatus.DRIVER_ASSIGNED or ride.offered_to:
                return False
            ride.transition_to(RideStatus.SEARCHING)
            ride.assigned_at = None
            return True

        ride, changed = await self._mutate(ride_id, change)
        if changed:
            logger.info("Ride %s back to searching", ride_id)
        return ride

    async def reset_attempts(self, ride_id: str) -> Ride:
        def change(ride: Ride) -> bool:
            if ride.status != RideStatus.SEARCHING:
                raise InvalidTransition(
                    f"Cannot retry dispatch of a ride in status {ride.status.value}",
                    status=ride.status.value,
                )
            if ride.assignment_attempts == 0:
                return False
            ride.assignment_attempts = 0
            return True

        ride, _ = await self._mutate(ride_id, change)
        return ride

    # ── Driver responses ──────────────────────────────────────────────

    async def accept(self, ride_id: str, driver_id: str) -> Ride:
        def change(ride: Ride) -> bool:
            if ride.assigned_driver_id == driver_id and ride.status == RideStatus.DRIVER_ACCEPTED:
                return False
            if ride.assigned_driver_id is not None and ride.status in (
                RideStatus.DRIVER_ACCEPTED,
                RideStatus.IN_PROGRESS,
                RideStatus.COMPLETED,
            ):
                raise AlreadyAccepted(ride.id, ride.assigned_driver_id)
            if ride.status != RideStatus.DRIVER_ASSIGNED:
                raise InvalidTransition(
                    f"Cannot accept ride in status {ride.status.value}",
                    status=ride.status.value,
                )
            if driver_id not in ride.offered_to:
                raise Unauthorized(f"Driver {driver_id} holds no offer for ride {ride.id}")
            self._check_can_accept(driver_id)
            ride.transition_to(RideStatus.DRIVER_ACCEPTED)
            ride.assigned_driver_id = driver_id
            ride.accepted_at = self.clock()
            ride.offered_to = frozenset()
            return True

        # One accept at a time per driver, so an offer held for a second ride
        # sees the driver busy once the first accept lands.
        async with self._accepting[driver_id]:
            ride, changed = await self._mutate(ride_id, change)
            if not changed:
                return ride
            await self._set_driver(driver_id, Availability.BUSY)

        logger.info("Ride %s accepted by driver %s", ride_id, driver_id)
        self._emit(events.RIDE_ACCEPTED, {**ride.to_dict(), "driver_id": driver_id})
        return ride

    async def reject(self, ride_id: str, driver_id: str) -> Ride:
        was_accepted = False

        def change(ride: Ride) -> bool:
            nonlocal was_accepted
            was_accepted = False
            if ride.status == RideStatus.DRIVER_ASSIGNED:
                if driver_id not in ride.offered_to:
                    raise Unauthorized(f"Driver {driver_id} holds no offer for ride {ride.id}")
                ride.offered_to = ride.offered_to - {driver_id}
            elif ride.status == RideStatus.DRIVER_ACCEPTED:
                if ride.assigned_driver_id != driver_id:
                    raise Unauthorized(f"Driver {driver_id} is not assigned to ride {ride.id}")
                ride.transition_to(RideStatus.SEARCHING)
                ride.assigned_driver_id = None
                ride.assigned_at = None
                ride.accepted_at = None
                was_accepted = True
            else:
                raise InvalidTransition(
                    f"Cannot reject ride in status {ride.status.value}",
                    status=ride.status.value,
                )
            ride.rejected_by = ride.rejected_by | {driver_id}
            return True

        ride, _ = await self._mutate(ride_id, change)
        logger.info("Ride %s rejected by driver %s", ride_id, driver_id)
        if was_accepted:
            await self._set_driver(driver_id, Availability.AVAILABLE)
        self._emit(
            events.RIDE_REJECTED,
            {"ride_id": ride.id, "driver_id": driver_id, "status": ride.status.value},
        )
        return ride

    async def expire_offer(self, ride_id: str, driver_id: str) -> Optional[Ride]:
        """Treat an unanswered offer as a rejection; no-op once the ride moved on."""

        def change(ride: Ride) -> bool:
            if ride.status != RideStatus.DRIVER_ASSIGNED or driver_id not in ride.offered_to:
                return False
            ride.offered_to = ride.offered_to - {driver_id}
            ride.rejected_by = ride.rejected_by | {driver_id}
            return True

        ride, changed = await self._mutate(ride_id, change)
        if not changed:
            return None
        logger.info("Offer of ride %s to driver %s expired", ride_id, driver_id)
        self._emit(events.RIDE_OFFER_EXPIRED, {"ride_id": ride.id, "driver_id": driver_id})
        return ride

    # ── Trip ──────────────────────────────────────────────────────────

    async def start(self, ride_id: str, actor_id: Optional[str] = None) -> Ride:
        def change(ride: Ride) -> bool:
            self._check_participant(ride, actor_id)
            ride.transition_to(RideStatus.IN_PROGRESS)
            ride.started_at = self.clock()
            return True

        ride, _ = await self._mutate(ride_id, change)
        logger.info("Ride %s started", ride_id)
        self._emit(
            events.RIDE_STARTED,
            {**ride.to_dict(), "started_at": ride.started_at.isoformat()},
        )
        return ride

    async def complete(self, ride_id: str, actor_id: Optional[str] = None) -> Ride:
        def change(ride: Ride) -> bool:
            self._check_participant(ride, actor_id)
            ride.transition_to(RideStatus.COMPLETED)
            ride.completed_at = self.clock()
            return True

        ride, _ = await self._mutate(ride_id, change)
        logger.info("Ride %s completed", ride_id)
        if ride.assigned_driver_id:
            try:
                await self.registry.record_trip(ride.assigned_driver_id)
            except DispatchError:
                logger.warning("Could not record trip for driver %s", ride.assigned_driver_id)
        self._emit(
            events.RIDE_COMPLETED,
            {**ride.to_dict(), "completed_at": ride.completed_at.isoformat()},
        )
        return ride

    async def cancel(
        self, ride_id: str, requester_id: str, reason: Optional[str] = None
    ) -> Ride:
        notified: set[str] = set()

        def change(ride: Ride) -> bool:
            if ride.requester_id != requester_id:
                raise Unauthorized(f"Only the requester can cancel ride {ride.id}")
            if ride.is_terminal:
                raise InvalidTransition(
                    f"Cannot cancel ride in status {ride.status.value}",
                    status=ride.status.value,
                )
            notified.clear()
            notified.update(ride.offered_to)
            ride.transition_to(RideStatus.CANCELLED)
            ride.cancelled_at = self.clock()
            ride.cancellation_reason = reason or "No reason provided"
            ride.offered_to = frozenset()
            return True

        ride, _ = await self._mutate(ride_id, change)
        logger.info("Ride %s cancelled by requester", ride_id)
        if ride.assigned_driver_id:
            notified.add(ride.assigned_driver_id)
            await self._set_driver(ride.assigned_driver_id, Availability.AVAILABLE)
        self._emit(
            events.RIDE_CANCELLED,
            {
                **ride.to_dict(),
                "reason": ride.cancellation_reason,
                "notify_drivers": sorted(notified),
            },
        )
        return ride

    # ── Internals ─────────────────────────────────────────────────────

    async def _mutate(self, ride_id: str, change: Change) -> tuple[Ride, bool]:
        for _ in range(self.max_retries):
            current = await self.store.get(ride_id)
            ride = current.copy()
            if not change(ride):
                return current, False
            if await self.store.compare_and_set(ride, current.version):
                return ride, True
            logger.debug("Lost compare-and-set on ride %s, re-reading", ride_id)
        raise ConcurrentModification(
            f"Ride {ride_id} kept changing underneath; gave up after {self.max_retries} attempts"
        )

    @staticmethod
    def _check_participant(ride: Ride, actor_id: Optional[str]) -> None:
        if actor_id is None:
            return
        if actor_id not in (ride.requester_id, ride.assigned_driver_id):
            raise Unauthorized(f"{actor_id} is neither requester nor driver of ride {ride.id}")

    def _check_can_accept(self, driver_id: str) -> None:
        driver = self.registry.get(driver_id)
        if not driver.online:
            raise DriverNotOnline(f"Driver {driver_id} is offline")
        if driver.availability != Availability.AVAILABLE:
            raise DriverUnavailable(
                f"Driver {driver_id} is {driver.availability.value} and cannot accept another ride"
            )

    async def _set_driver(self, driver_id: str, availability: Availability) -> None:
        try:
            if availability == Availability.BUSY:
                await self.registry.mark_busy(driver_id)
            else:
                await self.registry.release(driver_id)
        except DispatchError:
            logger.warning("Could not mark driver %s %s", driver_id, availability.value)

    def _emit(self, topic: str, payload: dict) -> None:
        try:
            self.bus.publish(topic, payload)
        except Exception:
            logger.exception("Failed to publish %s", topic)
