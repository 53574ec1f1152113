"""Event topics published by the dispatch core and the event envelope."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .entities import utcnow

# Ride topics
RIDE_REQUEST = "ride:request"
RIDE_DRIVERS_FOUND = "ride:drivers_found"
RIDE_NO_DRIVERS = "ride:no_drivers"
RIDE_ACCEPTED = "ride:accepted"
RIDE_REJECTED = "ride:rejected"
RIDE_OFFER_EXPIRED = "ride:offer_expired"
RIDE_STARTED = "ride:started"
RIDE_COMPLETED = "ride:completed"
RIDE_CANCELLED = "ride:cancelled"

# Driver topics
DRIVER_ONLINE = "driver:online"
DRIVER_OFFLINE = "driver:offline"
DRIVER_STATUS_UPDATE = "driver:status:update"
DRIVER_LOCATION_UPDATE = "driver:location:update"

ALL_TOPICS = [
    RIDE_REQUEST,
    RIDE_DRIVERS_FOUND,
    RIDE_NO_DRIVERS,
    RIDE_ACCEPTED,
    RIDE_REJECTED,
    RIDE_OFFER_EXPIRED,
    RIDE_STARTED,
    RIDE_COMPLETED,
    RIDE_CANCELLED,
    DRIVER_ONLINE,
    DRIVER_OFFLINE,
    DRIVER_STATUS_UPDATE,
    DRIVER_LOCATION_UPDATE,
]


@dataclass(frozen=True)
class Event:
    topic: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }
