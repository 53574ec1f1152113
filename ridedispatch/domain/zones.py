"""
Surge zones and point-in-polygon test.

Algorithm
---------
Ray casting: shoot a horizontal ray from the point towards +longitude and
count the polygon edges it crosses.  An odd count means inside.

Boundary policy
---------------
A point lying exactly on an edge or a vertex is **outside**.  The raw
crossing count is not stable on the boundary (it depends on which side of
the polygon the edge is on), so edges are checked explicitly first.

Coordinates are planar ``(lon, lat)`` pairs; zones are city-scale so the
curvature error is negligible.

Complexity: O(v) per test, v = number of vertices.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Union

from .entities import Location
from .exceptions import InvalidLocation, InvalidZone

Point = tuple[float, float]

_EPSILON = 1e-12


def _on_segment(p: Point, a: Point, b: Point) -> bool:
    (px, py), (ax, ay), (bx, by) = p, a, b
    cross = (bx - ax) * (py - ay) - (by - ay) * (px - ax)
    if abs(cross) > _EPSILON:
        return False
    return (
        min(ax, bx) - _EPSILON <= px <= max(ax, bx) + _EPSILON
        and min(ay, by) - _EPSILON <= py <= max(ay, by) + _EPSILON
    )


def point_in_polygon(point: Point, ring: Sequence[Point]) -> bool:
    """Ray-casting test; points on the boundary count as outside."""
    x, y = point
    n = len(ring)
    if n < 3:
        return False

    for i in range(n):
        if _on_segment(point, ring[i], ring[i - 1]):
            return False

    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i]
        xj, yj = ring[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


@dataclass(frozen=True)
class ZonePolygon:
    """Named polygon carrying its own surge multiplier.

    ``vertices`` is an ordered ring of ``(lon, lat)`` pairs; a closing vertex
    equal to the first one is accepted and dropped.
    """

    name: str
    vertices: tuple[Point, ...]
    surge_multiplier: float = 1.0

    def __post_init__(self):
        ring = []
        for vertex in self.vertices:
            if len(vertex) != 2:
                raise InvalidZone(f"Zone {self.name!r} vertex must be a [lon, lat] pair: {vertex!r}")
            ring.append((float(vertex[0]), float(vertex[1])))
        if len(ring) > 1 and ring[0] == ring[-1]:
            ring.pop()
        if len(set(ring)) < 3:
            raise InvalidZone(f"Zone {self.name!r} needs at least 3 distinct vertices")
        for lon, lat in ring:
            if not (-180 <= lon <= 180 and -90 <= lat <= 90):
                raise InvalidLocation(f"Zone {self.name!r} vertex out of range: {(lon, lat)}")
        object.__setattr__(self, "vertices", tuple(ring))

    @classmethod
    def from_geojson(
        cls, name: str, coordinates: Sequence[Sequence[Iterable[float]]], surge_multiplier: float = 1.0
    ) -> "ZonePolygon":
        """Build from GeoJSON polygon coordinates; only the outer ring is used."""
        outer = coordinates[0]
        return cls(name, tuple(tuple(v) for v in outer), surge_multiplier)

    def contains(self, point: Union[Location, Point]) -> bool:
        if isinstance(point, Location):
            point = point.coordinates
        return point_in_polygon(point, self.vertices)
