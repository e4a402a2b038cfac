"""
geo.py — Distance primitives and bounding boxes for case/zone geometry.

Two distance metrics are used by the core:

    haversine(p1, p2)              great-circle distance in **kilometres**.
                                   Used for zone containment / nearby zones.

    squared_planar_distances(c)    pairwise squared Euclidean distances in
                                   raw **degree space**.  Used for cluster
                                   eps-neighbour tests.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians, R ≈ 6,371 km.

Limitation of the planar metric
===============================
One degree of longitude spans 111 km at the equator but only ~78 km at 45°
latitude, so a fixed eps in degrees covers a narrower east-west distance as
latitude grows.  At the city/province scales the clustering runs on
(eps ≈ 0.01–0.1°) the error is tolerable for visualisation; it is NOT a
geodesic distance and must not be used for containment.

Coordinates are assumed pre-validated by the calling layer; nothing here
re-checks latitude/longitude ranges.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict

import numpy as np


EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in degree space; all edges are inclusive."""
    south: float
    west: float
    north: float
    east: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.south <= latitude <= self.north
            and self.west <= longitude <= self.east
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "south": self.south,
            "west": self.west,
            "north": self.north,
            "east": self.east,
        }


def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points in kilometres.

    The value is not rounded: zone containment compares it against the
    zone radius with an inclusive test, and rounding would move points
    across the boundary.

    Examples
    --------
    >>> round(haversine(Coordinate(13.0827, 80.2707), Coordinate(12.9716, 77.5946)), 1)
    290.2
    >>> haversine(Coordinate(0, 0), Coordinate(0, 0))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )
    # Guard against a drifting just above 1.0 for antipodal points
    a = min(1.0, a)

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def squared_planar_distances(coords) -> np.ndarray:
    """
    Pairwise squared Euclidean distances in degree space.

    ``coords`` is an (n, 2) array of (longitude, latitude).  Entry [i, j] is
    ``dlon² + dlat²`` evaluated as separate IEEE operations, so a pair gives
    the same value whether it is computed alone or inside a larger matrix,
    and [i, j] == [j, i] exactly.  Compare against ``eps ** 2``.

    >>> squared_planar_distances([[0.0, 0.0], [0.03, 0.04]]).round(6).tolist()
    [[0.0, 0.0025], [0.0025, 0.0]]
    """
    coords = np.asarray(coords, dtype=np.float64).reshape(-1, 2)
    d_lon = coords[:, 0][:, None] - coords[:, 0][None, :]
    d_lat = coords[:, 1][:, None] - coords[:, 1][None, :]
    return d_lon * d_lon + d_lat * d_lat
