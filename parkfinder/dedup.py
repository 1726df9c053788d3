"""Merging near-duplicate candidate spots reported by different sources.

Two strategies share one merge policy:

* ``ExactDeduplicator`` compares every pair (O(n^2)); fine up to a few thousand
  candidates.
* ``GridDeduplicator`` snaps coordinates to a grid of roughly the same size and
  merges whatever shares a cell (O(n)). Two points closer than the threshold can
  still land in neighbouring cells and stay separate. That is a known
  approximation of this strategy; use the exact strategy or a real spatial index
  when that matters.

Both repeat their pass until nothing merges, so running dedup on its own output
returns it unchanged.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Iterable, Protocol

from parkfinder.config import Settings, settings as default_settings
from parkfinder.geo import grid_cell, haversine_m
from parkfinder.models import CandidateSpot
from parkfinder.sources.census import CENSUS_SOURCE
from parkfinder.sources.meters import METERS_SOURCE

logger = logging.getLogger(__name__)


class Deduplicator(Protocol):
    def dedupe(self, candidates: Iterable[CandidateSpot]) -> list[CandidateSpot]: ...


def merge_cluster(cluster: list[CandidateSpot]) -> CandidateSpot:
    if not cluster:
        raise ValueError("cannot merge an empty cluster")
    if len(cluster) == 1:
        return cluster[0]

    # sorted() is stable: the first highest-confidence member is the primary
    ranked = sorted(cluster, key=lambda s: s.confidence, reverse=True)
    primary = ranked[0]

    total_w = 0.0
    lat_w = 0.0
    lon_w = 0.0
    for s in ranked:
        w = s.confidence or 0.5
        lat_w += s.latitude * w
        lon_w += s.longitude * w
        total_w += w

    sources: set[str] = set()
    merged_from: list[dict] = []
    for s in ranked:
        sources.add(s.primary_source)
        sources.update(s.verified_sources)
        merged_from.extend(
            s.metadata.get("merged_from")
            or [{"source": s.primary_source, "source_id": s.source_id, "confidence": s.confidence}]
        )

    regulations = primary.regulations
    meter = next((s for s in ranked if s.primary_source == METERS_SOURCE), None)
    if meter is not None:
        regulations = regulations.overlay(meter.regulations)
    census = next((s for s in ranked if s.primary_source == CENSUS_SOURCE), None)
    if census is not None:
        regulations = regulations.overlay(census.regulations)

    return primary.model_copy(
        update={
            "latitude": lat_w / total_w,
            "longitude": lon_w / total_w,
            "capacity": max(s.capacity for s in ranked),
            "confidence": max(s.confidence for s in ranked),
            "verified_sources": frozenset(sources),
            "regulations": regulations,
            "needs_verification": any(s.needs_verification for s in ranked),
            "metadata": {**primary.metadata, "merged_from": merged_from},
        }
    )


class _FixpointDeduplicator(ABC):
    label = "dedup"

    @abstractmethod
    def _pass(self, spots: list[CandidateSpot]) -> list[CandidateSpot]:
        """One merge pass over the current spots."""

    def dedupe(self, candidates: Iterable[CandidateSpot]) -> list[CandidateSpot]:
        spots = list(candidates)
        total = len(spots)
        logger.info("[%s] deduplicating %d spots", self.label, total)

        passes = 0
        while True:
            passes += 1
            merged = self._pass(spots)
            if len(merged) == len(spots):
                break
            spots = merged

        logger.info(
            "[%s] removed %d duplicates in %d pass(es), %d unique spots",
            self.label, total - len(merged), passes, len(merged),
        )
        return merged


class ExactDeduplicator(_FixpointDeduplicator):
    label = "dedup-exact"

    def __init__(self, threshold_m: float = 5.0):
        self.threshold_m = threshold_m

    def _pass(self, spots: list[CandidateSpot]) -> list[CandidateSpot]:
        merged: list[CandidateSpot] = []
        processed = [False] * len(spots)

        for i, anchor in enumerate(spots):
            if processed[i]:
                continue
            processed[i] = True
            cluster = [anchor]
            for j in range(i + 1, len(spots)):
                if processed[j]:
                    continue
                other = spots[j]
                d = haversine_m(anchor.latitude, anchor.longitude, other.latitude, other.longitude)
                if d <= self.threshold_m:
                    cluster.append(other)
                    processed[j] = True
            merged.append(merge_cluster(cluster))

        return merged


class GridDeduplicator(_FixpointDeduplicator):
    label = "dedup-grid"

    def __init__(self, cell_deg: float = 0.00005):
        self.cell_deg = cell_deg

    def _pass(self, spots: list[CandidateSpot]) -> list[CandidateSpot]:
        cells: dict[tuple[int, int], list[CandidateSpot]] = defaultdict(list)
        for s in spots:
            cells[grid_cell(s.latitude, s.longitude, self.cell_deg)].append(s)
        return [merge_cluster(members) for members in cells.values()]


def make_deduplicator(strategy: str | None = None, settings: Settings | None = None) -> Deduplicator:
    settings = settings or default_settings
    strategy = strategy or settings.dedup_strategy
    if strategy == "exact":
        return ExactDeduplicator(settings.dedup_threshold_m)
    if strategy == "grid":
        return GridDeduplicator(settings.dedup_grid_size_deg)
    raise ValueError(f"Unknown dedup strategy: {strategy!r} (expected 'grid' or 'exact')")
