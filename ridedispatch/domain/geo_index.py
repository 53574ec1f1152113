"""
Driver Geo Index
================

1. **Spatial Binning** -- every position is mapped to an H3 hexagon
   (resolution 7 by default, ~1.2 km edge).  Upsert/remove are dict
   operations: O(1).
2. **Disk Scan** -- a query expands ``grid_disk`` around the query cell far
   enough to cover the search radius, then filters the bucketed keys by exact
   haversine distance and the caller's predicate.
3. **Ordering** -- results are sorted nearest-first (ties broken by key) and
   returned as a list, so callers can iterate them any number of times.

Complexity
----------
Let k = ring count covering the radius, m = keys in the covered cells.

* Upsert / remove:  O(1)
* Query:            O(k^2 + m log m)

Reads may interleave with writes from other threads; a query can observe a
position that is one update old.
"""

from __future__ import annotations

import math
import threading
from typing import Callable, NamedTuple, Optional

import h3

from .distance import haversine_km
from .entities import Location


class Neighbour(NamedTuple):
    key: str
    distance_km: float


def cell_for(location: Location, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(location.latitude, location.longitude, resolution)


class GeoIndex:
    def __init__(self, resolution: int = 7):
        self.resolution = resolution
        self._edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
        self._cells: dict[str, set[str]] = {}
        self._positions: dict[str, tuple[Location, str]] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, key: str) -> bool:
        return key in self._positions

    def upsert(self, key: str, location: Location) -> None:
        cell = cell_for(location, self.resolution)
        with self._lock:
            previous = self._positions.get(key)
            if previous is not None and previous[1] != cell:
                self._discard(key, previous[1])
            self._cells.setdefault(cell, set()).add(key)
            self._positions[key] = (location, cell)

    def remove(self, key: str) -> None:
        with self._lock:
            previous = self._positions.pop(key, None)
            if previous is not None:
                self._discard(key, previous[1])

    def nearest(
        self,
        point: Location,
        radius_km: float,
        predicate: Optional[Callable[[str], bool]] = None,
        limit: Optional[int] = None,
    ) -> list[Neighbour]:
        """Keys within *radius_km* of *point*, nearest first."""
        if radius_km < 0:
            return []
        # A k-ring disk reaches at least k * 1.5 edge lengths from its centre.
        rings = math.ceil(radius_km / self._edge_km) + 1
        centre = cell_for(point, self.resolution)

        with self._lock:
            keys = [
                key
                for cell in h3.grid_disk(centre, rings)
                for key in self._cells.get(cell, ())
            ]
            positions = {key: self._positions[key][0] for key in keys}

        found: list[Neighbour] = []
        for key, location in positions.items():
            d = haversine_km(
                point.latitude, point.longitude, location.latitude, location.longitude
            )
            if d > radius_km:
                continue
            if predicate is not None and not predicate(key):
                continue
            found.append(Neighbour(key, d))

        found.sort(key=lambda n: (n.distance_km, n.key))
        return found[:limit] if limit is not None else found

    def _discard(self, key: str, cell: str) -> None:
        bucket = self._cells.get(cell)
        if bucket is None:
            return
        bucket.discard(key)
        if not bucket:
            del self._cells[cell]
