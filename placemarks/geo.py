"""Geospatial helpers."""
from __future__ import annotations

import math
from typing import Any, Optional

from . import config
from .models import Coordinate


def zoom_level(viewport_width_px: float, longitude_delta: float) -> float:
    return math.log2(360 * (viewport_width_px / config.TILE_SIZE_PX / longitude_delta)) + 1


def search_radius_meters(latitude_delta: float) -> float:
    lat_delta_rad = math.radians(latitude_delta)
    return lat_delta_rad * config.EARTH_RADIUS_M / 2


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    r = config.EARTH_RADIUS_M / 1000.0
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlambda = math.radians(b.lng - a.lng)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return r * c


def parse_coordinates(value: Any) -> Optional[Coordinate]:
    """Parse a "lat,lng" string or a (lat, lng) pair.

    Anything that does not yield two finite, in-range numbers is treated as
    absent.
    """
    if value is None:
        return None
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        return None
    if len(parts) != 2:
        return None
    try:
        lat = float(parts[0])
        lng = float(parts[1])
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    if abs(lat) > 90 or abs(lng) > 180:
        return None
    return Coordinate(lat, lng)
