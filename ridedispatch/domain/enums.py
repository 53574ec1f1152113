"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SEARCHING = "searching"
    DRIVER_ASSIGNED = "driver_assigned"
    DRIVER_ACCEPTED = "driver_accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses.
# DRIVER_ASSIGNED -> DRIVER_ASSIGNED is a re-offer to a fresh candidate set.
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {RideStatus.DRIVER_ASSIGNED, RideStatus.CANCELLED},
    RideStatus.DRIVER_ASSIGNED: {
        RideStatus.DRIVER_ASSIGNED,
        RideStatus.DRIVER_ACCEPTED,
        RideStatus.SEARCHING,
        RideStatus.CANCELLED,
    },
    RideStatus.DRIVER_ACCEPTED: {
        RideStatus.IN_PROGRESS,
        RideStatus.SEARCHING,
        RideStatus.CANCELLED,
    },
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class Availability(str, enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class VehicleClass(str, enum.Enum):
    BIKE_DIRECT = "bike_direct"
    AUTO = "auto"
    AUTO_PRIORITY = "auto_priority"
    CAB_NON_AC = "cab_non_ac"
    CAB_AC = "cab_ac"
    CAB_AC_SEDAN = "cab_ac_sedan"
    CAB_PREMIUM = "cab_premium"
    CAB_XL = "cab_xl"
    AUTO_PET = "auto_pet"
    # Legacy classes still present in stored fare configs
    SEDAN = "sedan"
    SUV = "suv"
    HATCHBACK = "hatchback"
    LUXURY = "luxury"
