"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Ride``: enforces valid lifecycle transitions
  (SEARCHING -> DRIVER_ASSIGNED -> DRIVER_ACCEPTED -> IN_PROGRESS ->
  COMPLETED, with CANCELLED reachable from every non-terminal status).
- ``Location`` is an immutable value object always ordered ``[lon, lat]``.
- ``Driver.location_history`` is a bounded ring buffer; the oldest sample is
  evicted on overflow.

A ``Ride`` holds *snapshots* of pickup/dropoff and only the *id* of the
assigned driver; it never owns the driver record.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from .enums import RIDE_TRANSITIONS, TERMINAL_STATUSES, Availability, RideStatus, VehicleClass
from .exceptions import InvalidLocation, InvalidTransition

DEFAULT_HISTORY_SIZE = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    longitude: float
    latitude: float
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if not -180 <= self.longitude <= 180:
            raise InvalidLocation(f"Longitude out of range: {self.longitude}")
        if not -90 <= self.latitude <= 90:
            raise InvalidLocation(f"Latitude out of range: {self.latitude}")

    @classmethod
    def from_coordinates(
        cls, coordinates: Sequence[float], timestamp: Optional[datetime] = None
    ) -> "Location":
        """Build from a GeoJSON-style ``[lon, lat]`` pair."""
        if len(coordinates) != 2:
            raise InvalidLocation("Coordinates must be [lon, lat]")
        return cls(float(coordinates[0]), float(coordinates[1]), timestamp)

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.longitude, self.latitude)

    def to_dict(self) -> dict[str, Any]:
        return {
            "coordinates": [self.longitude, self.latitude],
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class LocationSample:
    location: Location
    speed: float = 0.0
    heading: float = 0.0


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Driver:
    id: str
    vehicle_class: VehicleClass
    location: Optional[Location] = None
    availability: Availability = Availability.OFFLINE
    online: bool = False
    location_history: deque = field(
        default_factory=lambda: deque(maxlen=DEFAULT_HISTORY_SIZE)
    )
    total_trips: int = 0
    last_seen: Optional[datetime] = None

    def is_eligible(self, vehicle_class: Optional[VehicleClass] = None) -> bool:
        """Online, available and (optionally) of the requested class."""
        if not self.online or self.availability != Availability.AVAILABLE:
            return False
        return vehicle_class is None or self.vehicle_class == vehicle_class

    def record_location(
        self, location: Location, speed: float = 0.0, heading: float = 0.0
    ) -> None:
        self.location = location
        self.location_history.append(LocationSample(location, speed, heading))

    def to_dict(self) -> dict[str, Any]:
        return {
            "driver_id": self.id,
            "vehicle_class": self.vehicle_class.value,
            "availability": self.availability.value,
            "online": self.online,
            "location": self.location.to_dict() if self.location else None,
            "total_trips": self.total_trips,
        }


@dataclass
class Ride:
    id: Optional[str] = None
    requester_id: str = ""
    pickup: Location = field(default_factory=lambda: Location(0, 0))
    dropoff: Location = field(default_factory=lambda: Location(0, 0))
    vehicle_class: VehicleClass = VehicleClass.SEDAN
    status: RideStatus = RideStatus.SEARCHING

    fare_estimate: Optional[float] = None
    distance_km: Optional[float] = None
    estimated_minutes: Optional[int] = None
    surge_multiplier: Optional[float] = None

    assigned_driver_id: Optional[str] = None
    offered_to: frozenset[str] = frozenset()
    rejected_by: frozenset[str] = frozenset()
    assignment_attempts: int = 0
    search_radius_km: Optional[float] = None
    scheduled_time: Optional[datetime] = None

    created_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = RIDE_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}",
                status=self.status.value,
            )
        self.status = new_status

    def copy(self) -> "Ride":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ride_id": self.id,
            "requester_id": self.requester_id,
            "status": self.status.value,
            "vehicle_class": self.vehicle_class.value,
            "pickup": self.pickup.to_dict(),
            "dropoff": self.dropoff.to_dict(),
            "fare_estimate": self.fare_estimate,
            "distance_km": self.distance_km,
            "assigned_driver_id": self.assigned_driver_id,
            "assignment_attempts": self.assignment_attempts,
            "scheduled_time": self.scheduled_time.isoformat() if self.scheduled_time else None,
        }
