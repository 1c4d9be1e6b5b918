"""
engine/geo.py

Great-circle distance between two coordinates (Haversine formula).
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, NamedTuple, Union

EARTH_RADIUS_KM = 6371.0


class GeoPoint(NamedTuple):
    lat: float
    lon: float

    @classmethod
    def from_mapping(cls, raw: Any) -> GeoPoint | None:
        """Return a point for a {"lat", "lon"} mapping, or None if unusable."""
        if isinstance(raw, GeoPoint):
            return raw
        if not isinstance(raw, Mapping):
            return None
        lat, lon = raw.get("lat"), raw.get("lon")
        if isinstance(lat, bool) or isinstance(lon, bool):
            return None
        if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
            return None
        return cls(float(lat), float(lon))


PointLike = Union[GeoPoint, Mapping[str, float]]


def distance_km(a: PointLike, b: PointLike) -> float:
    """
    Haversine distance in kilometres.

    Callers must make sure both points carry coordinates
    (see GeoPoint.from_mapping).
    """
    lat1, lon1 = (a.lat, a.lon) if isinstance(a, GeoPoint) else (a["lat"], a["lon"])
    lat2, lon2 = (b.lat, b.lon) if isinstance(b, GeoPoint) else (b["lat"], b["lon"])

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))
