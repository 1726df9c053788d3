"""Live user reports: update a known spot or discover a new one.

A spot found by a user starts unverified. Each confirmation bumps its counter and
at ``verification_confirmations`` it becomes verified. Availability can keep
changing after that.

Match-then-create is a read followed by a write. Reports are serialised per
grid cell (every cell a match could live in is locked, in sorted order), and the
store's ``insert_if_absent`` re-checks under its own lock, so two reports of the
same unmapped place cannot both create a spot.
"""
from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Callable, Iterator

from parkfinder.config import Settings, settings as default_settings
from parkfinder.errors import SpotNotFound
from parkfinder.events import EventSink, emit
from parkfinder.geo import (
    cells_covering,
    covering_range,
    haversine_m,
    meters_to_lat_deg,
    nearest_within,
    validate_coordinate,
)
from parkfinder.models import (
    USER_REPORT_SOURCE,
    ParkingSpot,
    SpotReportResult,
    SpotStatus,
    SpotType,
    utcnow,
)
from parkfinder.storage import SpotStore

logger = logging.getLogger(__name__)

NEW_SPOT_CONFIDENCE = 0.70
CONFIRMED_CONFIDENCE = 0.95

_LOCK_STRIPES = 1024


class DiscoveryService:
    def __init__(
        self,
        store: SpotStore,
        sink: EventSink | None = None,
        settings: Settings | None = None,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.sink = sink
        self.settings = settings or default_settings
        self._clock = clock
        self._stripes = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    @property
    def threshold_m(self) -> float:
        return self.settings.report_match_threshold_m

    @contextmanager
    def _cell_lock(self, lat: float, lon: float) -> Iterator[None]:
        cell_deg = meters_to_lat_deg(self.threshold_m)
        rows, cols = covering_range(lat, lon, self.threshold_m, cell_deg)
        if len(rows) * len(cols) >= _LOCK_STRIPES:
            # polar boxes cover more cells than there are stripes
            stripes = range(_LOCK_STRIPES)
        else:
            cells = cells_covering(lat, lon, self.threshold_m, cell_deg)
            stripes = sorted({hash(c) % _LOCK_STRIPES for c in cells})
        with ExitStack() as stack:
            for idx in stripes:
                stack.enter_context(self._stripes[idx])
            yield

    def report(
        self,
        lat: float,
        lon: float,
        status: SpotStatus,
        reporter_id: str | None = None,
    ) -> SpotReportResult:
        validate_coordinate(lat, lon)
        if status not in ("available", "taken"):
            raise ValueError(f"Invalid status: {status!r}")

        with self._cell_lock(lat, lon):
            nearby = self.store.find_nearby(lat, lon, self.threshold_m)
            match = nearest_within(lat, lon, nearby, self.threshold_m)
            if match is not None:
                return self._update_existing(match[0], match[1], status)

            now = self._clock()
            candidate = ParkingSpot(
                latitude=lat,
                longitude=lon,
                spot_type=SpotType.STREET,
                capacity=1,
                primary_source=USER_REPORT_SOURCE,
                confidence=NEW_SPOT_CONFIDENCE,
                verified_sources=frozenset({USER_REPORT_SOURCE}),
                needs_verification=True,
                status=status,
                currently_available=status == "available",
                available_spaces=1 if status == "available" else 0,
                user_confirmations=1,
                verified=False,
                last_status_update=now,
                first_reported_by=reporter_id,
                created_at=now,
            )
            stored, inserted = self.store.insert_if_absent(candidate, self.threshold_m)
            if not inserted:
                d = haversine_m(lat, lon, stored.latitude, stored.longitude)
                return self._update_existing(stored, d, status)

        logger.info("New spot discovered at %.6f, %.6f (%s)", lat, lon, stored.id)
        emit(self.sink, "created", stored.model_dump(mode="json"))
        return SpotReportResult(
            spot=stored,
            is_new_discovery=True,
            message="New parking spot discovered!",
            points_earned=self.settings.discovery_bonus_points,
        )

    def _update_existing(self, spot: ParkingSpot, distance_m: float, status: SpotStatus) -> SpotReportResult:
        updated = self.store.update(
            spot.id,
            status=status,
            currently_available=status == "available",
            confidence=CONFIRMED_CONFIDENCE,
            verified_sources=spot.verified_sources | {USER_REPORT_SOURCE},
            last_status_update=self._clock(),
        )
        if updated is None:
            raise SpotNotFound(spot.id)

        emit(self.sink, "updated", updated.model_dump(mode="json"))
        return SpotReportResult(
            spot=updated,
            is_new_discovery=False,
            distance_m=distance_m,
            message="Spot status updated",
        )

    def confirm(self, spot_id: str, reporter_id: str | None = None) -> ParkingSpot:
        existing = self.store.get_by_id(spot_id) if spot_id else None
        if existing is None:
            raise SpotNotFound(spot_id)

        with self._cell_lock(existing.latitude, existing.longitude):
            current = self.store.get_by_id(spot_id)
            if current is None:
                raise SpotNotFound(spot_id)

            confirmations = current.user_confirmations + 1
            reached = confirmations >= self.settings.verification_confirmations
            updated = self.store.update(
                spot_id,
                user_confirmations=confirmations,
                verified=True if reached else current.verified,
                confidence=CONFIRMED_CONFIDENCE if reached else current.confidence,
                needs_verification=False if reached else current.needs_verification,
            )
            if updated is None:
                raise SpotNotFound(spot_id)

        if reached and not current.verified:
            logger.info("Spot %s verified after %d confirmations", spot_id, confirmations)
        logger.debug("Spot %s confirmed by %s", spot_id, reporter_id or "anonymous")
        emit(self.sink, "confirmed", updated.model_dump(mode="json"))
        return updated
