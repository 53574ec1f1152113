"""Dispatch error taxonomy.

Every error the core raises derives from ``DispatchError`` so adapters can
translate the whole family in one place.
"""

from __future__ import annotations

from typing import Optional


class DispatchError(Exception):
    """Base class for all dispatch-core errors."""


class NotFound(DispatchError):
    """A ride, driver or fare config does not exist."""


class RideNotFound(NotFound):
    pass


class DriverNotFound(NotFound):
    pass


class ConfigNotFound(NotFound):
    """No active fare configuration for the requested vehicle class."""


class InvalidTransition(DispatchError):
    """Raised when an operation is not allowed from the ride's current status."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class AlreadyAccepted(DispatchError):
    """Another driver won the race for this ride."""

    def __init__(self, ride_id: str, driver_id: Optional[str] = None):
        super().__init__(f"Ride {ride_id} has already been accepted by another driver")
        self.ride_id = ride_id
        self.driver_id = driver_id


class Unauthorized(DispatchError):
    """Caller is not the requester, the assigned driver or an offered driver."""


class InvalidLocation(DispatchError, ValueError):
    """Coordinates outside the valid longitude/latitude range."""


class InvalidZone(DispatchError, ValueError):
    """Surge zone ring with too few distinct vertices or malformed points."""


class DriverNotOnline(DispatchError):
    pass


class DriverUnavailable(DispatchError):
    """Driver is online but already busy with another ride."""


class ConcurrentModification(DispatchError):
    """The compare-and-set loop kept losing to concurrent writers."""
