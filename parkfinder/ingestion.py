"""Bulk ingestion: run sources, merge their candidates, persist in batches."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Iterable, Sequence

import requests

from parkfinder.config import Settings, settings as default_settings
from parkfinder.dedup import Deduplicator, make_deduplicator
from parkfinder.errors import (
    ConfigurationMissing,
    DuplicateWrite,
    FetchCancelled,
    MalformedRecord,
    RateLimited,
    SourceError,
)
from parkfinder.models import CandidateSpot, IngestionError, IngestionReport
from parkfinder.sources.base import SourceAdapter, cancellation
from parkfinder.sources.census import ParkingCensusSource
from parkfinder.sources.citations import ParkingCitationsSource
from parkfinder.sources.files import LocalFileSource
from parkfinder.sources.meters import ParkingMetersSource
from parkfinder.sources.osm import OverpassSource
from parkfinder.sources.places import PlacesSource
from parkfinder.storage import SpotStore

logger = logging.getLogger(__name__)

_ERROR_KINDS: tuple[tuple[type[SourceError], str], ...] = (
    (ConfigurationMissing, "configuration_missing"),
    (RateLimited, "rate_limited"),
    (MalformedRecord, "malformed_record"),
    (SourceError, "source_unavailable"),
)


def build_default_sources(
    settings: Settings | None = None, session: requests.Session | None = None
) -> list[SourceAdapter]:
    settings = settings or default_settings
    sources: list[SourceAdapter] = [
        ParkingCensusSource(settings, session),
        ParkingMetersSource(settings, session),
        ParkingCitationsSource(settings, session),
        OverpassSource(settings, session),
        PlacesSource(settings, session),
    ]
    if settings.local_file_path:
        sources.append(LocalFileSource(settings, session))
    return sources


@dataclass
class _Outcome:
    spots: list[CandidateSpot] | None = None
    error: IngestionError | None = None
    cancelled: bool = False


class IngestionOrchestrator:
    """Runs every selected source, then dedups once and persists.

    Sources run concurrently, one worker per source, and each keeps its own page
    pacing. Dedup starts only after every source has finished or failed.

    A set ``cancel_event`` skips sources that have not started and stops running
    ones before their next page. A cancelled run merges and persists nothing.
    """

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        store: SpotStore | None = None,
        deduplicator: Deduplicator | None = None,
        settings: Settings | None = None,
        max_workers: int | None = None,
    ):
        self.settings = settings or default_settings
        self.sources = {s.name: s for s in sources}
        self.store = store
        self.deduplicator = deduplicator or make_deduplicator(settings=self.settings)
        self.max_workers = max_workers

    def _select(self, selected: Iterable[str] | None) -> list[str]:
        if selected is None:
            return list(self.sources)
        names = list(dict.fromkeys(selected))
        unknown = [n for n in names if n not in self.sources]
        if unknown:
            raise ValueError(f"Unknown source(s): {', '.join(unknown)}")
        return names

    def _run_source(self, adapter: SourceAdapter, cancel_event: threading.Event | None) -> _Outcome:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("[%s] skipped, ingestion cancelled", adapter.name)
            return _Outcome(
                cancelled=True,
                error=IngestionError(source=adapter.name, kind="cancelled", message="not started"),
            )

        started = time.monotonic()
        logger.info("[%s] ingestion started", adapter.name)
        try:
            with cancellation(cancel_event):
                spots = adapter.fetch_all()
        except FetchCancelled as e:
            logger.info("[%s] stopped: %s", adapter.name, e.message)
            return _Outcome(
                cancelled=True,
                error=IngestionError(source=adapter.name, kind="cancelled", message=e.message),
            )
        except ConfigurationMissing as e:
            logger.warning("[%s] skipped: %s", adapter.name, e.message)
            return _Outcome(error=IngestionError(source=adapter.name, kind="configuration_missing", message=e.message))
        except SourceError as e:
            kind = next(k for cls, k in _ERROR_KINDS if isinstance(e, cls))
            logger.error("[%s] failed: %s", adapter.name, e.message)
            return _Outcome(error=IngestionError(source=adapter.name, kind=kind, message=e.message))
        except Exception as e:
            logger.exception("[%s] failed unexpectedly", adapter.name)
            return _Outcome(error=IngestionError(source=adapter.name, kind="unexpected", message=str(e)))

        logger.info(
            "[%s] ingestion complete: %d spots in %.1fs",
            adapter.name, len(spots), time.monotonic() - started,
        )
        return _Outcome(spots=list(spots))

    def ingest(
        self,
        selected: Iterable[str] | None = None,
        cancel_event: threading.Event | None = None,
        persist: bool = True,
    ) -> IngestionReport:
        started = time.monotonic()
        names = self._select(selected)
        report = IngestionReport()

        outcomes: dict[str, _Outcome] = {}
        if names:
            workers = max(1, min(len(names), self.max_workers or len(names)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
                futures = {
                    name: pool.submit(self._run_source, self.sources[name], cancel_event)
                    for name in names
                }
                wait(futures.values())
            outcomes = {name: f.result() for name, f in futures.items()}

        candidates: list[CandidateSpot] = []
        for name in names:
            outcome = outcomes[name]
            if outcome.cancelled:
                report.cancelled = True
                report.errors.append(outcome.error)
                continue
            if outcome.error is not None:
                report.errors.append(outcome.error)
                report.per_source_counts[name] = 0
                continue
            report.per_source_counts[name] = len(outcome.spots or [])
            candidates.extend(outcome.spots or [])

        report.total_candidates = len(candidates)
        if report.cancelled:
            logger.warning("Ingestion cancelled; nothing merged or persisted")
            report.duration_s = time.monotonic() - started
            return report

        final = self.deduplicator.dedupe(candidates)
        report.final_spots = final
        report.duplicates_removed = len(candidates) - len(final)

        if persist and self.store is not None:
            self._persist(final, report)

        report.duration_s = time.monotonic() - started
        self._log_summary(report)
        return report

    def preview(self, source: str, limit: int = 100) -> list[CandidateSpot]:
        """Run a single source without dedup or persistence."""
        adapter = self.sources[self._select([source])[0]]
        return adapter.fetch_all()[: max(0, limit)]

    def _persist(self, spots: list[CandidateSpot], report: IngestionReport) -> None:
        batch_size = max(1, self.settings.persist_batch_size)
        for i in range(0, len(spots), batch_size):
            batch = spots[i : i + batch_size]
            try:
                report.persisted += self.store.upsert_spots(batch)
            except DuplicateWrite as e:
                report.skipped_batches += 1
                logger.info("Batch at %d already stored, skipped (%s)", i, e)
            except Exception as e:
                report.failed_batches += 1
                report.errors.append(IngestionError(source="persistence", kind="write_failed", message=f"batch at {i}: {e}"))
                logger.exception("Failed to persist batch at %d", i)

    def _log_summary(self, report: IngestionReport) -> None:
        for name, count in report.per_source_counts.items():
            logger.info("  %-20s %8d spots", name, count)
        logger.info(
            "Ingested %d candidates, removed %d duplicates, %d final spots (%d persisted) in %.1fs",
            report.total_candidates,
            report.duplicates_removed,
            report.final_spot_count,
            report.persisted,
            report.duration_s,
        )
        for err in report.errors:
            logger.warning("  %s: %s (%s)", err.source, err.message, err.kind)
