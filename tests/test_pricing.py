"""Unit tests for the fare engine."""

import pytest

from ridedispatch.domain.distance import distance_km
from ridedispatch.domain.entities import Location
from ridedispatch.domain.enums import VehicleClass
from ridedispatch.domain.exceptions import ConfigNotFound
from ridedispatch.domain.pricing import (
    FareEngine,
    StandardPricing,
    SurgePricing,
    compute_fare,
    round_money,
)
from ridedispatch.domain.zones import ZonePolygon
from ridedispatch.infrastructure.memory import FareConfigStore
from tests.conftest import DROPOFF, PICKUP, auto_fare

# Covers DROPOFF (77.64, 12.93) but not PICKUP (77.59, 12.97)
KORAMANGALA = ZonePolygon(
    "koramangala",
    ((77.62, 12.91), (77.66, 12.91), (77.66, 12.95), (77.62, 12.95)),
    surge_multiplier=1.5,
)
SOUTH_BANGALORE = ZonePolygon(
    "south",
    ((77.50, 12.80), (77.70, 12.80), (77.70, 12.96), (77.50, 12.96)),
    surge_multiplier=2.0,
)


class TestPricingStrategies:
    def test_standard_pricing(self):
        config = auto_fare()
        assert StandardPricing().calculate(10.0, 5.0, config) == 20 + 80 + 10

    def test_surge_pricing_multiplier(self):
        config = auto_fare()
        assert SurgePricing(2.0).calculate(10.0, 0.0, config) == 200.0

    def test_surge_pricing_floors_at_minimum(self):
        config = auto_fare(minimum_fare=500.0)
        assert SurgePricing(2.0).calculate(10.0, 0.0, config) == 500.0


class TestRoundMoney:
    def test_half_up(self):
        assert round_money(0.125) == 0.13
        assert round_money(2.675) == 2.68

    def test_already_rounded(self):
        assert round_money(76.1) == 76.1


class TestComputeFare:
    def test_reference_trip(self):
        estimate = compute_fare(auto_fare(), PICKUP, DROPOFF)
        distance = distance_km(PICKUP, DROPOFF)
        assert estimate.fare == round_money(20 + distance * 8)
        assert estimate.distance_km == round_money(distance)
        assert estimate.surge_multiplier == 1.0
        assert estimate.surge_applied is False
        assert estimate.zone is None

    def test_short_trip_hits_minimum_fare(self):
        estimate = compute_fare(auto_fare(), PICKUP, Location(77.591, 12.97))
        assert estimate.fare == 50.0

    def test_fare_never_below_minimum(self):
        config = auto_fare(base_fare=0.0, per_km_rate=0.0)
        assert compute_fare(config, PICKUP, DROPOFF).fare == config.minimum_fare

    def test_monotonic_in_distance(self):
        config = auto_fare()
        fares = [
            compute_fare(config, PICKUP, Location(77.59 + d, 12.97)).fare
            for d in (0.01, 0.05, 0.1, 0.2, 0.4)
        ]
        assert fares == sorted(fares)

    def test_duration_adds_per_minute(self):
        config = auto_fare()
        without = compute_fare(config, PICKUP, DROPOFF)
        with_time = compute_fare(config, PICKUP, DROPOFF, duration_min=10)
        assert with_time.fare == pytest.approx(without.fare + 20, abs=0.01)
        assert with_time.breakdown["duration_fare"] == 20.0

    def test_class_surge_multiplier(self):
        estimate = compute_fare(auto_fare(surge_multiplier=1.5), PICKUP, DROPOFF)
        distance = distance_km(PICKUP, DROPOFF)
        assert estimate.fare == round_money((20 + distance * 8) * 1.5)
        assert estimate.surge_applied is True

    def test_zone_surge_applies_to_dropoff(self):
        config = auto_fare(zones=(KORAMANGALA,))
        estimate = compute_fare(config, PICKUP, DROPOFF)
        assert estimate.surge_multiplier == 1.5
        assert estimate.zone == "koramangala"

    def test_zone_does_not_apply_to_pickup(self):
        config = auto_fare(zones=(KORAMANGALA,))
        estimate = compute_fare(config, DROPOFF, PICKUP)
        assert estimate.surge_multiplier == 1.0
        assert estimate.zone is None

    def test_first_matching_zone_wins(self):
        config = auto_fare(zones=(SOUTH_BANGALORE, KORAMANGALA))
        assert compute_fare(config, PICKUP, DROPOFF).zone == "south"
        config = auto_fare(zones=(KORAMANGALA, SOUTH_BANGALORE))
        assert compute_fare(config, PICKUP, DROPOFF).zone == "koramangala"

    def test_breakdown_and_eta(self):
        estimate = compute_fare(auto_fare(), PICKUP, DROPOFF)
        distance = distance_km(PICKUP, DROPOFF)
        assert estimate.breakdown["base_fare"] == 20.0
        assert estimate.breakdown["distance_fare"] == round_money(distance * 8)
        assert estimate.estimated_minutes == round(distance / 30 * 60)


class TestFareEngine:
    @pytest.mark.asyncio
    async def test_estimate_uses_active_config(self):
        engine = FareEngine(FareConfigStore([auto_fare()]))
        estimate = await engine.estimate(PICKUP, DROPOFF, VehicleClass.AUTO)
        assert estimate.fare > 50.0

    @pytest.mark.asyncio
    async def test_missing_config_raises(self):
        engine = FareEngine(FareConfigStore([auto_fare()]))
        with pytest.raises(ConfigNotFound):
            await engine.estimate(PICKUP, DROPOFF, VehicleClass.CAB_XL)

    @pytest.mark.asyncio
    async def test_activating_replaces_previous_config(self):
        store = FareConfigStore([auto_fare()])
        await store.save(auto_fare(base_fare=100.0))
        engine = FareEngine(store)
        estimate = await engine.estimate(PICKUP, DROPOFF, VehicleClass.AUTO)
        assert estimate.breakdown["base_fare"] == 100.0
        assert len(store.all()) == 1

    @pytest.mark.asyncio
    async def test_deactivated_class_has_no_config(self):
        store = FareConfigStore([auto_fare()])
        store.deactivate(VehicleClass.AUTO)
        with pytest.raises(ConfigNotFound):
            await FareEngine(store).estimate(PICKUP, DROPOFF, VehicleClass.AUTO)
