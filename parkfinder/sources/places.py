"""Parking lots and garages from the Google Places nearby-search API."""
from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from parkfinder.config import Settings, settings as default_settings
from parkfinder.errors import ConfigurationMissing, MalformedRecord, SourceUnavailable
from parkfinder.models import CandidateSpot, Regulations, SpotType
from parkfinder.sources.base import JsonHttpMixin, SourceAdapter

logger = logging.getLogger(__name__)

PLACES_SOURCE = "google_places"

FIELD_MASK = (
    "places.id,places.displayName,places.location,places.types,places.parkingOptions,"
    "places.businessStatus,places.rating,places.userRatingCount,places.formattedAddress,nextPageToken"
)

DEFAULT_SEARCH_CENTERS: tuple[tuple[float, float], ...] = (
    (37.7880, -122.4075),
    (37.7749, -122.4194),
    (37.8716, -122.2727),
)

MAX_PAGES_PER_CENTER = 3


def parking_options(place: dict[str, Any]) -> dict[str, bool]:
    opts = place.get("parkingOptions") or {}
    return {
        "paid": bool(
            opts.get("paidParkingLot") or opts.get("paidGarageParking") or opts.get("paidStreetParking")
        ),
        "free": bool(opts.get("freeParkingLot") or opts.get("freeStreetParking")),
        "valet": bool(opts.get("valetParking")),
        "garage": bool("parking_garage" in (place.get("types") or []) or opts.get("paidGarageParking")),
    }


def place_location(place: dict[str, Any]) -> tuple[float, float] | None:
    loc = place.get("location") or {}
    lat, lon = loc.get("latitude"), loc.get("longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return None
    return float(lat), float(lon)


def place_name(place: dict[str, Any]) -> str:
    return ((place.get("displayName") or {}).get("text") or "Parking Facility").strip()


class PlacesClient(JsonHttpMixin):
    """Nearby-search requests, shared by the ingestion source and the read-side lookup."""

    name = PLACES_SOURCE

    def __init__(
        self,
        settings: Settings | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or default_settings
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def timeout_s(self) -> float:
        return self.settings.google_places_timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.settings.google_places_api_key)

    def search_page(
        self, lat: float, lon: float, radius_m: float, page_token: str | None = None, max_results: int = 20
    ) -> tuple[list[dict[str, Any]], str | None]:
        if not self.configured:
            raise ConfigurationMissing(self.name, "google_places_api_key is not set")

        body: dict[str, Any] = {
            "includedTypes": ["parking"],
            "maxResultCount": max_results,
            "locationRestriction": {
                "circle": {"center": {"latitude": lat, "longitude": lon}, "radius": radius_m},
            },
        }
        if page_token:
            body["pageToken"] = page_token

        data = self.request_json(
            "POST",
            self.settings.google_places_url,
            json=body,
            headers={
                "Content-Type": "application/json",
                "X-Goog-Api-Key": self.settings.google_places_api_key,
                "X-Goog-FieldMask": FIELD_MASK,
            },
        )
        if not isinstance(data, dict):
            raise SourceUnavailable(self.name, "expected a JSON object")
        places = data.get("places") or []
        if not isinstance(places, list):
            raise SourceUnavailable(self.name, "'places' is not a list")
        return places, data.get("nextPageToken") or None


class PlacesSource(SourceAdapter):
    name = PLACES_SOURCE

    def __init__(self, *args: Any, centers: tuple[tuple[float, float], ...] | list = DEFAULT_SEARCH_CENTERS, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.centers = list(centers)
        self.client = PlacesClient(self.settings, self.session, self._sleep)

    @property
    def configured(self) -> bool:
        return self.client.configured

    def fetch_all(self) -> list[CandidateSpot]:
        if not self.configured:
            raise ConfigurationMissing(self.name, "google_places_api_key is not set")

        places: list[dict[str, Any]] = []
        seen: set[str] = set()
        radius = self.settings.google_places_search_radius_m
        first = True

        for lat, lon in self.centers:
            token: str | None = None
            for _ in range(MAX_PAGES_PER_CENTER):
                if not first:
                    self._sleep(self.settings.google_places_page_delay_s)
                first = False

                self._check_cancelled()
                batch, token = self.client.search_page(lat, lon, radius, page_token=token)
                self.stats.pages += 1
                for place in batch:
                    pid = str(place.get("id") or "")
                    if pid and pid in seen:
                        continue
                    seen.add(pid)
                    places.append(place)
                if not token:
                    break

        self.stats.records = len(places)
        return self._normalize_all(places, self.to_candidate)

    def to_candidate(self, place: dict[str, Any]) -> CandidateSpot | None:
        if not isinstance(place, dict):
            raise MalformedRecord(self.name, "place is not an object")
        if place.get("businessStatus") not in (None, "OPERATIONAL"):
            return None
        loc = place_location(place)
        if loc is None:
            raise MalformedRecord(self.name, f"place {place.get('id')} has no location")

        opts = parking_options(place)
        return CandidateSpot(
            latitude=loc[0],
            longitude=loc[1],
            address=place.get("formattedAddress") or place_name(place),
            spot_type=SpotType.GARAGE if opts["garage"] else SpotType.LOT,
            capacity=1,
            primary_source=self.name,
            source_id=str(place.get("id")) if place.get("id") else None,
            confidence=0.80,
            verified_sources=frozenset({self.name}),
            regulations=Regulations(
                fee=True if opts["paid"] else (False if opts["free"] else None),
                extras={k: v for k, v in opts.items() if k != "garage" and v},
            ),
            metadata={"name": place_name(place), "rating": place.get("rating")},
        )
