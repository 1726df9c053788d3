"""Read-side availability: live reports, static segments, places and a prediction."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, TypeVar

from parkfinder.config import Settings, settings as default_settings
from parkfinder.geo import haversine_m, validate_coordinate
from parkfinder.lookups import MeterSegmentLookup, PlacesLookup
from parkfinder.models import (
    AvailabilityResult,
    AvailabilitySummary,
    Coordinates,
    LiveSpotInfo,
    ParkingLotInfo,
    StreetSegmentInfo,
    utcnow,
)
from parkfinder.services import predict_availability
from parkfinder.storage import SpotStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (max age in minutes, confidence); older reports get STALE_CONFIDENCE
AGE_DECAY: tuple[tuple[float, float], ...] = (
    (5, 0.95),
    (15, 0.85),
    (30, 0.70),
    (60, 0.50),
    (120, 0.30),
)
STALE_CONFIDENCE = 0.15

# indexed by the number of non-empty source categories
CONFIDENCE_BY_SOURCES = (0.2, 0.5, 0.7, 0.85)

NO_DATA_RECOMMENDATION = "No recent parking data for this area - try a parking app or garage"


def report_age_confidence(reported_at: datetime | None, now: datetime) -> float:
    if reported_at is None:
        return STALE_CONFIDENCE
    age_min = (now - reported_at).total_seconds() / 60.0
    for max_age, confidence in AGE_DECAY:
        if age_min < max_age:
            return confidence
    return STALE_CONFIDENCE


def confidence_score(*categories: list) -> float:
    non_empty = sum(1 for c in categories if c)
    return CONFIDENCE_BY_SOURCES[min(non_empty, len(CONFIDENCE_BY_SOURCES) - 1)]


def build_recommendations(
    live: list[LiveSpotInfo],
    segments: list[StreetSegmentInfo],
    lots: list[ParkingLotInfo],
) -> list[str]:
    recommendations: list[str] = []

    available = [s for s in live if s.status == "available"]
    if available:
        closest = available[0]
        if closest.distance_m < 100:
            distance_text = "very close"
        elif closest.distance_m < 300:
            distance_text = "nearby"
        else:
            distance_text = "within walking distance"
        recommendations.append(f"Recently reported spot {distance_text} ({round(closest.distance_m)}m away)")

    if segments:
        total = sum(s.total_spaces for s in segments)
        recommendations.append(f"{len(segments)} metered street segments with {total} total spaces")

    free_lots = [lot for lot in lots if lot.free]
    if free_lots:
        recommendations.append(f"{len(free_lots)} free parking lot(s) nearby")
    paid_lots = [lot for lot in lots if lot.paid]
    if paid_lots:
        recommendations.append(f"{len(paid_lots)} paid parking facility/ies available")

    if not recommendations:
        recommendations.append(NO_DATA_RECOMMENDATION)
    return recommendations


class AvailabilityAggregator:
    def __init__(
        self,
        store: SpotStore,
        meter_lookup: MeterSegmentLookup | None = None,
        places_lookup: PlacesLookup | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.meter_lookup = meter_lookup
        self.places_lookup = places_lookup
        self.settings = settings or default_settings
        self._clock = clock

    def live_spots(self, lat: float, lon: float, radius_m: float) -> list[LiveSpotInfo]:
        now = self._clock()
        rows: list[LiveSpotInfo] = []
        for spot in self.store.find_nearby(lat, lon, radius_m):
            if spot.last_status_update is None:
                continue
            d = haversine_m(lat, lon, spot.latitude, spot.longitude)
            if d > radius_m:
                continue
            rows.append(
                LiveSpotInfo(
                    id=spot.id,
                    latitude=spot.latitude,
                    longitude=spot.longitude,
                    address=spot.address,
                    status=spot.status,
                    confidence=report_age_confidence(spot.last_status_update, now),
                    distance_m=d,
                    reported_at=spot.last_status_update,
                    verified=spot.verified,
                )
            )
        rows.sort(key=lambda r: r.distance_m)
        return rows

    def _segments(self, lat: float, lon: float, radius_m: float) -> list[StreetSegmentInfo]:
        if self.meter_lookup is None:
            return []
        return self.meter_lookup.segments(lat, lon, radius_m)

    def _places(self, lat: float, lon: float, radius_m: float) -> list[ParkingLotInfo]:
        if self.places_lookup is None:
            return []
        return self.places_lookup.facilities(lat, lon, radius_m)

    @staticmethod
    def _collect(label: str, fetch: Callable[[], list[T]]) -> list[T]:
        try:
            return fetch()
        except Exception:
            logger.exception("[availability] %s lookup failed", label)
            return []

    def availability(self, lat: float, lon: float, radius_m: float | None = None) -> AvailabilityResult:
        validate_coordinate(lat, lon)
        radius_m = self.settings.default_radius_m if radius_m is None else radius_m
        if radius_m <= 0:
            raise ValueError(f"radius_m must be positive, got {radius_m}")

        logger.info("[availability] %.5f, %.5f within %.0fm", lat, lon, radius_m)
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="availability") as pool:
            live_f = pool.submit(self._collect, "live", lambda: self.live_spots(lat, lon, radius_m))
            seg_f = pool.submit(self._collect, "meters", lambda: self._segments(lat, lon, radius_m))
            lots_f = pool.submit(self._collect, "places", lambda: self._places(lat, lon, radius_m))
            live, segments, lots = live_f.result(), seg_f.result(), lots_f.result()

        now = self._clock()
        total = sum(1 for s in live if s.status == "available") + sum(s.available_spaces for s in segments)

        return AvailabilityResult(
            location=Coordinates(latitude=lat, longitude=lon),
            radius_m=radius_m,
            timestamp=now,
            user_reported=live,
            static_segments=segments,
            places=lots,
            predictions=[predict_availability(now.astimezone())],
            summary=AvailabilitySummary(
                total_available_spots=total,
                confidence_score=confidence_score(live, segments, lots),
                recommendations=build_recommendations(live, segments, lots),
            ),
        )
