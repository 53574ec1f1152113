"""Unit tests for distance, point-in-polygon zones and the H3 geo index."""

import pytest

from ridedispatch.domain.distance import distance_km, haversine_km
from ridedispatch.domain.entities import Location
from ridedispatch.domain.exceptions import InvalidLocation, InvalidZone
from ridedispatch.domain.geo_index import GeoIndex, cell_for
from ridedispatch.domain.zones import ZonePolygon, point_in_polygon
from tests.conftest import FAR, MID, NEAR, NEARER, PICKUP

SQUARE = [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)]


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(12.97, 77.59, 12.97, 77.59) == 0.0

    def test_symmetric(self):
        a = haversine_km(12.97, 77.59, 12.93, 77.64)
        b = haversine_km(12.93, 77.64, 12.97, 77.59)
        assert a == pytest.approx(b)

    def test_one_degree_of_latitude(self):
        assert haversine_km(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)

    def test_city_scale_distance(self):
        # MG Road -> Koramangala
        assert haversine_km(12.97, 77.59, 12.93, 77.64) == pytest.approx(7.0, abs=0.1)

    def test_distance_km_uses_lon_lat_order(self):
        assert distance_km(PICKUP, MID) == pytest.approx(
            haversine_km(PICKUP.latitude, PICKUP.longitude, MID.latitude, MID.longitude)
        )


class TestLocation:
    def test_coordinates_are_lon_lat(self):
        assert Location(77.59, 12.97).coordinates == (77.59, 12.97)

    @pytest.mark.parametrize("lon,lat", [(181, 0), (-181, 0), (0, 91), (0, -91)])
    def test_out_of_range_rejected(self, lon, lat):
        with pytest.raises(InvalidLocation):
            Location(lon, lat)

    def test_invalid_location_is_a_value_error(self):
        with pytest.raises(ValueError):
            Location(0, 100)

    def test_from_coordinates(self):
        loc = Location.from_coordinates([77.59, 12.97])
        assert loc.longitude == 77.59
        assert loc.latitude == 12.97

    def test_from_coordinates_requires_pair(self):
        with pytest.raises(InvalidLocation):
            Location.from_coordinates([77.59])


class TestPointInPolygon:
    def test_inside(self):
        assert point_in_polygon((5.0, 5.0), SQUARE)

    def test_outside(self):
        assert not point_in_polygon((15.0, 5.0), SQUARE)
        assert not point_in_polygon((-1.0, 5.0), SQUARE)

    @pytest.mark.parametrize(
        "point",
        [(0.0, 5.0), (10.0, 5.0), (5.0, 0.0), (5.0, 10.0)],
        ids=["left", "right", "bottom", "top"],
    )
    def test_edge_counts_as_outside(self, point):
        assert not point_in_polygon(point, SQUARE)

    @pytest.mark.parametrize("vertex", SQUARE)
    def test_vertex_counts_as_outside(self, vertex):
        assert not point_in_polygon(vertex, SQUARE)

    def test_concave_polygon(self):
        # U shape open to the top
        u = [(0, 0), (6, 0), (6, 6), (4, 6), (4, 2), (2, 2), (2, 6), (0, 6)]
        assert point_in_polygon((1, 4), u)
        assert point_in_polygon((5, 4), u)
        assert not point_in_polygon((3, 4), u)

    def test_degenerate_ring(self):
        assert not point_in_polygon((0.5, 0.5), [(0, 0), (1, 1)])


class TestZonePolygon:
    def test_closing_vertex_dropped(self):
        zone = ZonePolygon("sq", tuple(SQUARE) + (SQUARE[0],))
        assert len(zone.vertices) == 4

    def test_needs_three_vertices(self):
        with pytest.raises(InvalidZone):
            ZonePolygon("line", ((0, 0), (1, 1), (0, 0)))

    def test_repeated_vertices_do_not_count(self):
        with pytest.raises(InvalidZone):
            ZonePolygon("dup", ((0, 0), (1, 1), (1, 1), (0, 0)))

    def test_vertex_must_be_a_pair(self):
        with pytest.raises(InvalidZone):
            ZonePolygon("3d", ((0, 0, 5), (1, 0, 5), (1, 1, 5)))

    def test_invalid_zone_is_a_value_error(self):
        with pytest.raises(ValueError):
            ZonePolygon("line", ((0, 0), (1, 1)))

    def test_vertex_range_checked(self):
        with pytest.raises(InvalidLocation):
            ZonePolygon("bad", ((0, 0), (200, 0), (0, 10)))

    def test_contains_location(self):
        zone = ZonePolygon("sq", tuple(SQUARE), surge_multiplier=1.5)
        assert zone.contains(Location(5, 5))
        assert not zone.contains(Location(10, 5))

    def test_from_geojson_uses_outer_ring(self):
        zone = ZonePolygon.from_geojson(
            "sq", [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]], [[4, 4], [6, 4], [6, 6]]]
        )
        assert zone.vertices == tuple(SQUARE)


class TestGeoIndex:
    def setup_method(self):
        self.index = GeoIndex(resolution=7)

    def test_nearest_first(self):
        self.index.upsert("mid", MID)
        self.index.upsert("near", NEAR)
        self.index.upsert("nearer", NEARER)
        found = self.index.nearest(PICKUP, 5.0)
        assert [n.key for n in found] == ["nearer", "near", "mid"]
        assert found[0].distance_km < found[1].distance_km < found[2].distance_km

    def test_radius_is_respected(self):
        self.index.upsert("near", NEAR)
        self.index.upsert("far", FAR)
        assert [n.key for n in self.index.nearest(PICKUP, 5.0)] == ["near"]

    def test_large_radius_reaches_distant_cells(self):
        self.index.upsert("far", FAR)
        assert [n.key for n in self.index.nearest(PICKUP, 20.0)] == ["far"]

    def test_ties_broken_by_key(self):
        self.index.upsert("b", NEAR)
        self.index.upsert("a", NEAR)
        assert [n.key for n in self.index.nearest(PICKUP, 1.0)] == ["a", "b"]

    def test_limit(self):
        for i, loc in enumerate([NEAR, NEARER, MID]):
            self.index.upsert(f"d{i}", loc)
        assert len(self.index.nearest(PICKUP, 5.0, limit=2)) == 2

    def test_predicate_filters(self):
        self.index.upsert("near", NEAR)
        self.index.upsert("mid", MID)
        found = self.index.nearest(PICKUP, 5.0, predicate=lambda key: key != "near")
        assert [n.key for n in found] == ["mid"]

    def test_upsert_moves_key_between_cells(self):
        self.index.upsert("d1", FAR)
        self.index.upsert("d1", NEAR)
        assert len(self.index) == 1
        assert [n.key for n in self.index.nearest(PICKUP, 1.0)] == ["d1"]
        assert self.index.nearest(FAR, 1.0) == []

    def test_remove(self):
        self.index.upsert("d1", NEAR)
        self.index.remove("d1")
        assert "d1" not in self.index
        assert self.index.nearest(PICKUP, 5.0) == []
        self.index.remove("d1")  # idempotent

    def test_results_are_reiterable(self):
        self.index.upsert("d1", NEAR)
        found = self.index.nearest(PICKUP, 5.0)
        assert list(found) == list(found)

    def test_cell_for_is_stable(self):
        assert cell_for(PICKUP, 7) == cell_for(Location(77.59, 12.97), 7)
