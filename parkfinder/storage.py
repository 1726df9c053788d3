from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Protocol

from parkfinder.geo import haversine_m, nearest_within
from parkfinder.models import CandidateSpot, ParkingSpot

logger = logging.getLogger(__name__)


class SpotStore(Protocol):
    """Persistence collaborator: the single source of truth for existing spots."""

    def upsert_spots(self, batch: list[CandidateSpot]) -> int: ...

    def find_nearby(self, lat: float, lon: float, radius_m: float) -> list[ParkingSpot]: ...

    def get_by_id(self, spot_id: str) -> ParkingSpot | None: ...

    def update(self, spot_id: str, **fields: Any) -> ParkingSpot | None: ...

    def all_spots(self) -> list[ParkingSpot]: ...

    def insert_if_absent(self, spot: ParkingSpot, threshold_m: float) -> tuple[ParkingSpot, bool]: ...


def source_keys(spot: CandidateSpot) -> list[tuple[str, str]]:
    """Every (source, source_id) a spot stands for, its merged members included."""
    keys: list[tuple[str, str]] = []
    if spot.source_id is not None:
        keys.append((spot.primary_source, spot.source_id))
    for member in spot.metadata.get("merged_from") or []:
        if member.get("source") and member.get("source_id") is not None:
            keys.append((member["source"], member["source_id"]))
    return list(dict.fromkeys(keys))


class MemorySpotStore:
    """Thread-safe in-memory store.

    Re-ingesting a candidate updates the stored spot in place and keeps its live
    status. A candidate matches a stored spot through any of its source keys, so
    the match survives a change of primary source between runs. When one merged
    candidate matches several stored spots, they collapse into the first.
    """

    def __init__(self, spots: Iterable[ParkingSpot] = ()):
        self._lock = threading.RLock()
        self._spots: dict[str, ParkingSpot] = {}
        self._source_index: dict[tuple[str, str], str] = {}
        for s in spots:
            self._put(s)

    def _put(self, spot: ParkingSpot) -> None:
        self._spots[spot.id] = spot
        for key in source_keys(spot):
            self._source_index[key] = spot.id

    def _matching_ids(self, candidate: CandidateSpot) -> list[str]:
        ids = (self._source_index.get(key) for key in source_keys(candidate))
        return list(dict.fromkeys(i for i in ids if i is not None and i in self._spots))

    def upsert_spots(self, batch: list[CandidateSpot]) -> int:
        written = 0
        with self._lock:
            for candidate in batch:
                matches = self._matching_ids(candidate)
                if matches:
                    keep, *absorbed = matches
                    for spot_id in absorbed:
                        del self._spots[spot_id]
                        logger.info("Spot %s merged into %s on re-ingestion", spot_id, keep)
                    fields = {name: getattr(candidate, name) for name in CandidateSpot.model_fields}
                    self._put(self._spots[keep].model_copy(update=fields))
                elif isinstance(candidate, ParkingSpot):
                    self._put(candidate)
                else:
                    self._put(ParkingSpot.from_candidate(candidate))
                written += 1
        return written

    def find_nearby(self, lat: float, lon: float, radius_m: float) -> list[ParkingSpot]:
        with self._lock:
            spots = list(self._spots.values())
        return [
            s
            for s in spots
            if s.is_active and haversine_m(lat, lon, s.latitude, s.longitude) <= radius_m
        ]

    def get_by_id(self, spot_id: str) -> ParkingSpot | None:
        with self._lock:
            return self._spots.get(spot_id)

    def update(self, spot_id: str, **fields: Any) -> ParkingSpot | None:
        with self._lock:
            existing = self._spots.get(spot_id)
            if existing is None:
                return None
            fields.pop("id", None)
            updated = existing.model_copy(update=fields)
            self._put(updated)
            return updated

    def all_spots(self) -> list[ParkingSpot]:
        with self._lock:
            return list(self._spots.values())

    def insert_if_absent(self, spot: ParkingSpot, threshold_m: float) -> tuple[ParkingSpot, bool]:
        """Insert unless an active spot already sits within threshold_m.

        The check and the insert happen under one lock, so two concurrent
        discoveries of the same place cannot both insert.
        """
        with self._lock:
            active = [s for s in self._spots.values() if s.is_active]
            match = nearest_within(spot.latitude, spot.longitude, active, threshold_m)
            if match is not None:
                return match[0], False
            self._put(spot)
            return spot, True

    def __len__(self) -> int:
        with self._lock:
            return len(self._spots)
