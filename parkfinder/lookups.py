"""Read-side lookups against static sources, cached per area."""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

import requests

from parkfinder.cache import TTLCache
from parkfinder.config import Settings, settings as default_settings
from parkfinder.data_loader import try_parse_float
from parkfinder.geo import bounding_box, haversine_m
from parkfinder.models import ParkingLotInfo, Regulations, StreetSegmentInfo
from parkfinder.sources.meters import ParkingMetersSource
from parkfinder.sources.places import PlacesClient, parking_options, place_location, place_name

logger = logging.getLogger(__name__)

METER_LOOKUP_LIMIT = 1000
SEGMENT_CONFIDENCE = 0.7
PLACES_CONFIDENCE = 0.8


def _area_key(prefix: str, lat: float, lon: float, radius_m: float) -> str:
    return f"{prefix}:{lat:.5f},{lon:.5f}:{radius_m:g}"


class MeterSegmentLookup:
    """Meters around a point, grouped into street segments (street name + number)."""

    def __init__(
        self,
        cache: TTLCache,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        client: ParkingMetersSource | None = None,
    ):
        self.settings = settings or default_settings
        self.cache = cache
        self.client = client or ParkingMetersSource(self.settings, session)

    def _query(self, lat: float, lon: float, radius_m: float) -> list[dict[str, Any]]:
        box = bounding_box(lat, lon, radius_m)
        where = (
            f"{self.client.where()} AND "
            f"latitude > {box['south']} AND latitude < {box['north']} AND "
            f"longitude > {box['west']} AND longitude < {box['east']}"
        )
        meters = self.client.fetch_page(0, METER_LOOKUP_LIMIT, where=where)
        logger.info("[meters] %d meters within %.0fm of %.5f, %.5f", len(meters), radius_m, lat, lon)
        return meters

    def segments(self, lat: float, lon: float, radius_m: float) -> list[StreetSegmentInfo]:
        meters = self.cache.get_or_set(
            _area_key("meters", lat, lon, radius_m),
            lambda: self._query(lat, lon, radius_m),
            self.settings.static_cache_ttl_s,
        )
        return self.to_segments(meters, lat, lon, radius_m)

    def to_segments(
        self, meters: list[dict[str, Any]], lat: float, lon: float, radius_m: float | None = None
    ) -> list[StreetSegmentInfo]:
        groups: dict[str, list[tuple[dict[str, Any], float, float]]] = defaultdict(list)
        for meter in meters:
            mlat = try_parse_float(meter.get("latitude"))
            mlon = try_parse_float(meter.get("longitude"))
            if mlat is None or mlon is None:
                continue
            key = f"{meter.get('street_name') or ''}_{meter.get('street_num') or ''}"
            groups[key].append((meter, mlat, mlon))

        segments: list[StreetSegmentInfo] = []
        for key, members in groups.items():
            first, slat, slon = members[0]
            d = haversine_m(lat, lon, slat, slon)
            if radius_m is not None and d > radius_m:
                continue
            street = " ".join(
                p for p in [(first.get("street_num") or "").strip(), (first.get("street_name") or "").strip()] if p
            )
            segments.append(
                StreetSegmentInfo(
                    id=f"meters_{key}",
                    latitude=slat,
                    longitude=slon,
                    address=f"{street}, {self.client.city_suffix}" if street else None,
                    source=self.client.name,
                    confidence=SEGMENT_CONFIDENCE,
                    distance_m=d,
                    total_spaces=len(members),
                    regulations=Regulations(is_metered=True, days="Mon-Sat", hours="8am-6pm"),
                )
            )

        segments.sort(key=lambda s: s.distance_m)
        return segments


class PlacesLookup:
    """Parking lots and garages from a single places search."""

    def __init__(
        self,
        cache: TTLCache,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        client: PlacesClient | None = None,
    ):
        self.settings = settings or default_settings
        self.cache = cache
        self.client = client or PlacesClient(self.settings, session)

    @property
    def configured(self) -> bool:
        return self.client.configured

    def facilities(self, lat: float, lon: float, radius_m: float) -> list[ParkingLotInfo]:
        if not self.configured:
            logger.debug("[places] not configured, skipping lookup")
            return []

        places = self.cache.get_or_set(
            _area_key("places", lat, lon, radius_m),
            lambda: self.client.search_page(lat, lon, radius_m)[0],
            self.settings.places_cache_ttl_s,
        )
        return self.to_lots(places, lat, lon)

    def to_lots(self, places: list[dict[str, Any]], lat: float, lon: float) -> list[ParkingLotInfo]:
        lots: list[ParkingLotInfo] = []
        for place in places:
            loc = place_location(place)
            if loc is None:
                continue
            opts = parking_options(place)
            lots.append(
                ParkingLotInfo(
                    id=f"google_{place.get('id')}",
                    type="garage" if opts["garage"] else "lot",
                    latitude=loc[0],
                    longitude=loc[1],
                    name=place_name(place),
                    address=place.get("formattedAddress"),
                    source=self.client.name,
                    confidence=PLACES_CONFIDENCE,
                    distance_m=haversine_m(lat, lon, loc[0], loc[1]),
                    paid=opts["paid"],
                    free=opts["free"],
                    valet=opts["valet"],
                    rating=place.get("rating"),
                )
            )

        lots.sort(key=lambda lot: lot.distance_m)
        return lots
