from __future__ import annotations

import csv
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Iterable

from parkfinder.models import CandidateSpot, Regulations, SpotType

logger = logging.getLogger(__name__)


def _polygon_centroid(ring: list) -> tuple[float, float] | None:
    # ring: [[lon, lat], ...]
    if not isinstance(ring, list) or len(ring) < 3:
        return None

    # Shoelace formula (in lon/lat space; good enough for small areas)
    area2 = 0.0
    cx = 0.0
    cy = 0.0

    for i in range(len(ring) - 1):
        p1 = ring[i]
        p2 = ring[i + 1]
        if not (_is_position(p1) and _is_position(p2)):
            continue
        x1, y1 = float(p1[0]), float(p1[1])
        x2, y2 = float(p2[0]), float(p2[1])
        cross = x1 * y2 - x2 * y1
        area2 += cross
        cx += (x1 + x2) * cross
        cy += (y1 + y2) * cross

    if abs(area2) < 1e-12:
        # Degenerate ring: average of points
        xs = [float(p[0]) for p in ring if _is_position(p)]
        ys = [float(p[1]) for p in ring if _is_position(p)]
        if not xs or not ys:
            return None
        return (sum(xs) / len(xs), sum(ys) / len(ys))

    cx /= 3.0 * area2
    cy /= 3.0 * area2
    return (cx, cy)


def _is_position(p: Any) -> bool:
    return (
        isinstance(p, (list, tuple))
        and len(p) >= 2
        and isinstance(p[0], (int, float))
        and isinstance(p[1], (int, float))
    )


def geometry_to_latlon(geom: dict) -> tuple[float, float] | None:
    """Reduce a GeoJSON geometry to a single (lat, lon)."""
    if not isinstance(geom, dict):
        return None

    gtype = geom.get("type")
    coords = geom.get("coordinates")

    if gtype == "Point" and _is_position(coords):
        return (float(coords[1]), float(coords[0]))

    if gtype == "LineString" and isinstance(coords, list) and coords:
        mid = coords[len(coords) // 2]
        if _is_position(mid):
            return (float(mid[1]), float(mid[0]))
        return None

    if gtype == "MultiLineString" and isinstance(coords, list) and coords:
        return geometry_to_latlon({"type": "LineString", "coordinates": coords[0]})

    if gtype == "Polygon" and isinstance(coords, list) and len(coords) >= 1:
        c = _polygon_centroid(coords[0])
        if c is None:
            return None
        lon, lat = c
        return (float(lat), float(lon))

    if gtype == "MultiPolygon" and isinstance(coords, list) and len(coords) >= 1:
        # centroid of the first polygon's outer ring
        first_poly = coords[0]
        if isinstance(first_poly, list) and len(first_poly) >= 1:
            c = _polygon_centroid(first_poly[0])
            if c is None:
                return None
            lon, lat = c
            return (float(lat), float(lon))

    return None


def try_parse_float(v: object) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).strip()
    if s == "":
        return None
    try:
        return float(s)
    except ValueError:
        return None


def try_parse_int(v: object) -> int | None:
    f = try_parse_float(v)
    if f is None or f != f:
        return None
    return int(f)


def row_get(row: dict, keys: Iterable[str]) -> object | None:
    for k in keys:
        if k in row and row[k] not in (None, ""):
            return row[k]
    return None


_SPOT_TYPE_ALIASES = {
    "metered": SpotType.METERED,
    "meter": SpotType.METERED,
    "lot": SpotType.LOT,
    "public_lot": SpotType.LOT,
    "surface": SpotType.LOT,
    "garage": SpotType.GARAGE,
    "parking_garage": SpotType.GARAGE,
    "multi-storey": SpotType.GARAGE,
    "underground": SpotType.GARAGE,
    "handicap": SpotType.HANDICAP,
    "accessible": SpotType.HANDICAP,
    "disabled": SpotType.HANDICAP,
    "ev": SpotType.EV_CHARGING,
    "ev_charging": SpotType.EV_CHARGING,
    "motorcycle": SpotType.MOTORCYCLE,
}


def parse_spot_type(value: object) -> SpotType:
    if value is None:
        return SpotType.STREET
    return _SPOT_TYPE_ALIASES.get(str(value).strip().lower(), SpotType.STREET)


@dataclass
class LoadResult:
    spots: list[CandidateSpot]
    source: str
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def normalize_row(row: dict, idx: int, source: str, confidence: float) -> CandidateSpot | None:
    lat = try_parse_float(row_get(row, ["lat", "latitude", "LAT", "LATITUDE", "Y"]))
    lon = try_parse_float(row_get(row, ["lon", "lng", "longitude", "LON", "LONGITUDE", "X"]))
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        return None

    source_id = str(row_get(row, ["id", "ID", "objectid", "OBJECTID", "spot_id", "LOT_ID"]) or idx)
    spot_type = parse_spot_type(row_get(row, ["type", "TYPE", "spot_type", "SpaceType", "category"]))
    address = row_get(row, ["address", "ADDRESS", "street", "Street", "location", "LOT_NAME"])
    capacity = try_parse_int(row_get(row, ["capacity", "CAPACITY", "spaces", "total_spaces"])) or 1
    rules = row_get(row, ["rules", "RULES", "regulation", "Regulations", "payment"])

    extras: dict[str, Any] = {}
    if rules is not None:
        extras["rules"] = str(rules)
    handicap = try_parse_int(row_get(row, ["HANDICAP_SPACE", "handicap_spaces"]))
    if handicap:
        extras["handicap_spaces"] = handicap

    return CandidateSpot(
        latitude=lat,
        longitude=lon,
        address=str(address) if address is not None else None,
        spot_type=spot_type,
        capacity=max(1, capacity),
        primary_source=source,
        source_id=source_id,
        confidence=confidence,
        verified_sources=frozenset({source}),
        regulations=Regulations(extras=extras),
    )


def _collect(rows: Iterable[tuple[int, dict]], source: str, confidence: float, path: str) -> LoadResult:
    result = LoadResult(spots=[], source=path)
    for idx, row in rows:
        s = normalize_row(row, idx, source, confidence) if isinstance(row, dict) else None
        if s is None:
            result.skipped += 1
            continue
        result.spots.append(s)
    if result.skipped:
        logger.warning("%s: skipped %d rows without usable coordinates", path, result.skipped)
    return result


def _geojson_rows(obj: dict) -> Iterable[tuple[int, dict]]:
    for idx, feat in enumerate(obj.get("features", [])):
        if not isinstance(feat, dict):
            yield idx, None
            continue
        row = dict(feat.get("properties") or {})
        ll = geometry_to_latlon(feat.get("geometry") or {})
        if ll is not None:
            row.setdefault("lat", ll[0])
            row.setdefault("lon", ll[1])
        yield idx, row


def load_spots_from_file(path: str, source: str = "local_file", confidence: float = 0.9) -> LoadResult:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Parking data file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    if ext == ".csv":
        with open(path, "r", encoding="utf-8-sig", newline="") as f:
            return _collect(enumerate(csv.DictReader(f)), source, confidence, path)

    if ext in (".json", ".geojson"):
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)

        if isinstance(obj, dict) and "features" in obj:
            return _collect(_geojson_rows(obj), source, confidence, path)
        if isinstance(obj, list):
            return _collect(enumerate(obj), source, confidence, path)
        raise ValueError(f"Unsupported JSON structure in {path}")

    raise ValueError(f"Unsupported file extension: {ext} (expected .csv/.json/.geojson)")
