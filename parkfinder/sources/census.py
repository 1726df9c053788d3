"""City parking census: official per-blockface space counts."""
from __future__ import annotations

from typing import Any

from parkfinder.data_loader import try_parse_int
from parkfinder.errors import MalformedRecord
from parkfinder.models import CandidateSpot, Regulations, SpotType
from parkfinder.sources.opendata import OpenDataSource

CENSUS_SOURCE = "sf_parking_census"


def census_point(geometry: Any) -> tuple[float, float] | None:
    """LineString -> middle vertex, Polygon -> average of the outer ring."""
    if not isinstance(geometry, dict) or not geometry.get("coordinates"):
        return None

    coords = geometry["coordinates"]
    gtype = geometry.get("type")
    try:
        if gtype == "LineString":
            lon, lat = coords[len(coords) // 2][:2]
            return float(lat), float(lon)
        if gtype == "MultiLineString":
            line = coords[0]
            lon, lat = line[len(line) // 2][:2]
            return float(lat), float(lon)
        if gtype == "Polygon":
            ring = coords[0]
            lon = sum(float(p[0]) for p in ring) / len(ring)
            lat = sum(float(p[1]) for p in ring) / len(ring)
            return lat, lon
    except (TypeError, ValueError, IndexError, ZeroDivisionError):
        return None
    return None


class ParkingCensusSource(OpenDataSource):
    name = CENSUS_SOURCE

    def __init__(self, *args: Any, city_suffix: str = "San Francisco, CA", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.dataset = self.settings.census_dataset
        self.page_size = self.settings.census_page_size
        self.page_delay_s = self.settings.census_page_delay_s
        self.city_suffix = city_suffix

    def fetch_all(self) -> list[CandidateSpot]:
        return self._normalize_all(self.fetch_records(), self.to_candidate)

    def build_address(self, record: dict[str, Any]) -> str:
        parts = []
        if record.get("street_name"):
            parts.append(record["street_name"])
        if record.get("from_street") and record.get("to_street"):
            parts.append(f"(between {record['from_street']} & {record['to_street']})")
        parts.append(self.city_suffix)
        return " ".join(parts)

    def to_candidate(self, record: dict[str, Any]) -> CandidateSpot | None:
        total_spaces = try_parse_int(record.get("total_spaces")) or 0
        if total_spaces <= 0:
            return None
        # Off-street blockfaces are covered by lot/garage sources.
        if record.get("blockface_category") != "Street Parking":
            return None

        point = census_point(record.get("geometry"))
        if point is None:
            raise MalformedRecord(self.name, f"no coordinates for CNN {record.get('cnn')}")
        lat, lon = point
        if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
            raise MalformedRecord(self.name, f"CNN {record.get('cnn')} out of range")

        meters = try_parse_int(record.get("meters")) or 0
        is_metered = record.get("payment_type") == "Metered" or meters > 0

        return CandidateSpot(
            latitude=lat,
            longitude=lon,
            address=self.build_address(record),
            spot_type=SpotType.METERED if is_metered else SpotType.STREET,
            capacity=total_spaces,
            primary_source=self.name,
            source_id=str(record.get("cnn")) if record.get("cnn") is not None else None,
            confidence=0.95,
            verified_sources=frozenset({self.name}),
            regulations=Regulations(is_metered=is_metered),
            metadata={
                "blockface_category": record.get("blockface_category"),
                "curb_spaces": try_parse_int(record.get("curb_spaces")) or 0,
                "noncurb_spaces": try_parse_int(record.get("noncurb_spaces")) or 0,
                "meters": meters,
            },
        )
