from __future__ import annotations

import math
from typing import Iterable, Protocol, Sequence, TypeVar

from parkfinder.errors import InvalidCoordinate

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEG_LAT = 111320.0


class HasLocation(Protocol):
    latitude: float
    longitude: float


T = TypeVar("T", bound=HasLocation)


def validate_coordinate(lat: float, lon: float) -> None:
    if lat is None or lon is None:
        raise InvalidCoordinate(lat, lon)
    if math.isnan(lat) or math.isnan(lon):
        raise InvalidCoordinate(lat, lon)
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise InvalidCoordinate(lat, lon)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_meters(a: Sequence[float], b: Sequence[float]) -> float:
    """Great-circle distance between two (lat, lon) pairs in degrees."""
    validate_coordinate(a[0], a[1])
    validate_coordinate(b[0], b[1])
    return haversine_m(a[0], a[1], b[0], b[1])


def nearest_within(
    lat: float,
    lon: float,
    candidates: Iterable[T],
    max_distance_m: float,
) -> tuple[T, float] | None:
    """Closest candidate within max_distance_m, or None.

    Linear scan; on equal distances the first candidate seen wins.
    """
    best: T | None = None
    best_d = math.inf
    for c in candidates:
        d = haversine_m(lat, lon, c.latitude, c.longitude)
        if d < best_d:
            best = c
            best_d = d

    if best is None or best_d > max_distance_m:
        return None
    return best, best_d


def bounding_box(lat: float, lon: float, radius_m: float) -> dict[str, float]:
    lat_delta = radius_m / METERS_PER_DEG_LAT
    cos_lat = max(1e-6, math.cos(math.radians(lat)))
    lon_delta = radius_m / (METERS_PER_DEG_LAT * cos_lat)
    return {
        "south": lat - lat_delta,
        "north": lat + lat_delta,
        "west": lon - lon_delta,
        "east": lon + lon_delta,
    }


def grid_cell(lat: float, lon: float, cell_deg: float) -> tuple[int, int]:
    return (round(lat / cell_deg), round(lon / cell_deg))


def covering_range(lat: float, lon: float, radius_m: float, cell_deg: float) -> tuple[range, range]:
    """Row and column index ranges of the cells under a circle's bounding box."""
    box = bounding_box(lat, lon, radius_m)
    i0, j0 = grid_cell(box["south"], box["west"], cell_deg)
    i1, j1 = grid_cell(box["north"], box["east"], cell_deg)
    return range(i0, i1 + 1), range(j0, j1 + 1)


def cells_covering(lat: float, lon: float, radius_m: float, cell_deg: float) -> list[tuple[int, int]]:
    """Every grid cell touched by the bounding box of a circle, sorted.

    If two points are within radius_m of each other, each one's cell is in the
    other's covering set, so locking the covering set serialises them. Near the
    poles the box spans most longitudes; size it with ``covering_range`` first.
    """
    rows, cols = covering_range(lat, lon, radius_m, cell_deg)
    return [(i, j) for i in rows for j in cols]


def meters_to_lat_deg(meters: float) -> float:
    return meters / METERS_PER_DEG_LAT
