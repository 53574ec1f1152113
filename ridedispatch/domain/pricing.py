"""
Fare Engine  (Strategy Pattern)
===============================

Formula
-------
Fare = max((Base_Fare + Distance x Per_KM + Minutes x Per_Minute) x Surge, Minimum_Fare)

* **Distance** is the haversine distance pickup -> dropoff.
* **Surge** comes from the first zone (in configured order) whose polygon
  contains the *dropoff*; otherwise the vehicle class's base multiplier.
* The result is rounded to cents, half away from zero.

Complexity: O(z x v) per estimate (z zones, v vertices per zone).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

from .distance import distance_km
from .entities import Location
from .enums import VehicleClass
from .exceptions import ConfigNotFound
from .zones import ZonePolygon

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def round_money(value: float) -> float:
    """Round to 2 decimals, half away from zero on the cent boundary."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


# ── Configuration ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class FareConfig:
    vehicle_class: VehicleClass
    base_fare: float
    per_km_rate: float
    per_minute_rate: float = 2.0
    minimum_fare: float = 50.0
    surge_multiplier: float = 1.0
    zones: tuple[ZonePolygon, ...] = ()
    active: bool = True

    def surge_for(self, dropoff: Location) -> tuple[float, Optional[ZonePolygon]]:
        """First matching zone wins; falls back to the class multiplier."""
        for zone in self.zones:
            if zone.contains(dropoff):
                return zone.surge_multiplier, zone
        return self.surge_multiplier, None


@dataclass(frozen=True)
class FareEstimate:
    fare: float
    distance_km: float
    duration_min: float
    estimated_minutes: int
    surge_multiplier: float
    surge_applied: bool
    zone: Optional[str] = None
    breakdown: dict[str, float] = field(default_factory=dict)


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, duration_min: float, config: FareConfig
    ) -> float: ...


class StandardPricing(PricingStrategy):
    def calculate(
        self, distance_km: float, duration_min: float, config: FareConfig
    ) -> float:
        return (
            config.base_fare
            + distance_km * config.per_km_rate
            + duration_min * config.per_minute_rate
        )


class SurgePricing(PricingStrategy):
    """Applies a surge multiplier on top of the standard fare, floored at the minimum."""

    def __init__(self, surge_multiplier: float = 1.0):
        self.surge_multiplier = surge_multiplier

    def calculate(
        self, distance_km: float, duration_min: float, config: FareConfig
    ) -> float:
        raw = StandardPricing().calculate(distance_km, duration_min, config)
        return max(raw * self.surge_multiplier, config.minimum_fare)


def compute_fare(
    config: FareConfig,
    pickup: Location,
    dropoff: Location,
    duration_min: float = 0.0,
    average_speed_kmh: float = 30.0,
) -> FareEstimate:
    """Pure fare computation for an already-resolved config."""
    distance = distance_km(pickup, dropoff)
    duration_min = duration_min or 0.0
    surge, zone = config.surge_for(dropoff)

    fare = round_money(SurgePricing(surge).calculate(distance, duration_min, config))

    return FareEstimate(
        fare=fare,
        distance_km=round_money(distance),
        duration_min=duration_min,
        estimated_minutes=round(distance / average_speed_kmh * 60),
        surge_multiplier=surge,
        surge_applied=surge > 1,
        zone=zone.name if zone else None,
        breakdown={
            "base_fare": round_money(config.base_fare),
            "distance_fare": round_money(distance * config.per_km_rate),
            "duration_fare": round_money(duration_min * config.per_minute_rate),
        },
    )


# ── Engine facade ─────────────────────────────────────────────────────


class FareConfigSource(Protocol):
    async def get_active(self, vehicle_class: VehicleClass) -> Optional[FareConfig]: ...


class FareEngine:
    """High-level API used by the dispatch service and the API layer."""

    def __init__(self, configs: FareConfigSource, average_speed_kmh: float = 30.0):
        self.configs = configs
        self.average_speed_kmh = average_speed_kmh

    async def estimate(
        self,
        pickup: Location,
        dropoff: Location,
        vehicle_class: VehicleClass,
        duration_min: float = 0.0,
    ) -> FareEstimate:
        config = await self.configs.get_active(vehicle_class)
        if config is None:
            raise ConfigNotFound(
                f"Fare configuration not found for vehicle class: {vehicle_class.value}"
            )
        estimate = compute_fare(
            config, pickup, dropoff, duration_min, self.average_speed_kmh
        )
        logger.debug(
            "Fare estimate %s: %.2f km, surge %.2f -> %.2f",
            vehicle_class.value, estimate.distance_km, estimate.surge_multiplier, estimate.fare,
        )
        return estimate
