"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, conlist

from ridedispatch.domain.entities import Driver, Location, Ride
from ridedispatch.domain.enums import Availability, RideStatus, VehicleClass
from ridedispatch.domain.pricing import FareConfig
from ridedispatch.domain.zones import ZonePolygon


# ── Shared ────────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)

    def to_domain(self) -> Location:
        return Location(self.longitude, self.latitude)


class LocationOut(BaseModel):
    longitude: float
    latitude: float
    timestamp: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    requester_id: str = Field(..., min_length=1, max_length=64)
    pickup: LocationIn
    dropoff: LocationIn
    vehicle_class: VehicleClass
    scheduled_time: Optional[datetime] = None
    duration_min: float = Field(0.0, ge=0)
    search_radius_km: Optional[float] = Field(None, gt=0, le=50)


class DriverActionRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)


class ActorRequest(BaseModel):
    actor_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Requester or assigned driver initiating the change.",
    )


class CancelRequest(BaseModel):
    requester_id: str = Field(..., min_length=1, max_length=64)
    reason: Optional[str] = Field(None, max_length=255)


class DriverOnlineRequest(BaseModel):
    location: LocationIn
    vehicle_class: Optional[VehicleClass] = None


class LocationUpdateRequest(LocationIn):
    speed: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)


class AvailabilityRequest(BaseModel):
    availability: Availability


class NearbyRequest(BaseModel):
    location: LocationIn
    radius_km: Optional[float] = Field(None, gt=0, le=50)
    vehicle_class: Optional[VehicleClass] = None


class FareEstimateRequest(BaseModel):
    pickup: LocationIn
    dropoff: LocationIn
    vehicle_class: VehicleClass
    duration_min: float = Field(0.0, ge=0)


class ZoneIn(BaseModel):
    name: str
    coordinates: list[conlist(float, min_length=2, max_length=2)] = Field(
        ..., min_length=3, description="Ring of [lon, lat] pairs"
    )
    surge_multiplier: float = Field(1.0, gt=0)


class FareConfigRequest(BaseModel):
    base_fare: float = Field(..., ge=0)
    per_km_rate: float = Field(..., ge=0)
    per_minute_rate: float = Field(2.0, ge=0)
    minimum_fare: float = Field(50.0, ge=0)
    surge_multiplier: float = Field(1.0, gt=0)
    zones: list[ZoneIn] = []

    def to_domain(self, vehicle_class: VehicleClass) -> FareConfig:
        return FareConfig(
            vehicle_class=vehicle_class,
            base_fare=self.base_fare,
            per_km_rate=self.per_km_rate,
            per_minute_rate=self.per_minute_rate,
            minimum_fare=self.minimum_fare,
            surge_multiplier=self.surge_multiplier,
            zones=tuple(
                ZonePolygon(z.name, tuple(tuple(v) for v in z.coordinates), z.surge_multiplier)
                for z in self.zones
            ),
        )


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: str
    requester_id: str
    pickup: LocationOut
    dropoff: LocationOut
    vehicle_class: VehicleClass
    status: RideStatus
    fare_estimate: Optional[float] = None
    distance_km: Optional[float] = None
    estimated_minutes: Optional[int] = None
    surge_multiplier: Optional[float] = None
    assigned_driver_id: Optional[str] = None
    offered_to: list[str] = []
    assignment_attempts: int = 0
    scheduled_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideResponse":
        data = cls.model_validate(ride)
        data.offered_to = sorted(ride.offered_to)
        return data


class DriverResponse(BaseModel):
    id: str
    vehicle_class: VehicleClass
    availability: Availability
    online: bool
    location: Optional[LocationOut] = None
    total_trips: int
    last_seen: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_driver(cls, driver: Driver) -> "DriverResponse":
        return cls.model_validate(driver)


class NearbyDriverResponse(BaseModel):
    driver: DriverResponse
    distance_km: float


class LocationSampleResponse(BaseModel):
    longitude: float
    latitude: float
    timestamp: Optional[datetime] = None
    speed: float
    heading: float


class FareEstimateResponse(BaseModel):
    fare: float
    distance_km: float
    duration_min: float
    estimated_minutes: int
    surge_multiplier: float
    surge_applied: bool
    zone: Optional[str] = None
    breakdown: dict[str, float]

    model_config = {"from_attributes": True}


class FareConfigResponse(BaseModel):
    vehicle_class: VehicleClass
    base_fare: float
    per_km_rate: float
    per_minute_rate: float
    minimum_fare: float
    surge_multiplier: float
    zones: list[str] = []

    @classmethod
    def from_config(cls, config: FareConfig) -> "FareConfigResponse":
        return cls(
            vehicle_class=config.vehicle_class,
            base_fare=config.base_fare,
            per_km_rate=config.per_km_rate,
            per_minute_rate=config.per_minute_rate,
            minimum_fare=config.minimum_fare,
            surge_multiplier=config.surge_multiplier,
            zones=[z.name for z in config.zones],
        )


class StatsResponse(BaseModel):
    online_drivers: int
    registered_drivers: int
    rides_by_status: dict[str, int]
    event_subscribers: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
