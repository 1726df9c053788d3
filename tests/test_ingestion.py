"""
Tests for the ingestion orchestrator: failure isolation, merge-after-all, batching
"""

import threading
from unittest.mock import Mock

import pytest

from parkfinder.dedup import make_deduplicator
from parkfinder.errors import (
    ConfigurationMissing,
    DuplicateWrite,
    FetchCancelled,
    MalformedRecord,
    RateLimited,
    SourceUnavailable,
)
from parkfinder.ingestion import IngestionOrchestrator, build_default_sources
from parkfinder.sources.base import SourceAdapter, cancellation
from parkfinder.sources.meters import ParkingMetersSource
from parkfinder.storage import MemorySpotStore


class StubSource(SourceAdapter):
    def __init__(self, name, spots=None, error=None, settings=None):
        super().__init__(settings, session=Mock())
        self.name = name
        self._spots = spots or []
        self._error = error
        self.calls = 0

    def fetch_all(self):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._spots)


class TestIngest:
    def test_failures_are_isolated(self, settings, make_candidate):
        good = StubSource("osm", [make_candidate(37.7749, -122.4194)], settings=settings)
        down = StubSource("sf_meters", error=SourceUnavailable("sf_meters", "HTTP 503"), settings=settings)
        no_key = StubSource("google_places", error=ConfigurationMissing("google_places", "no key"), settings=settings)
        broken = StubSource("sf_citations", error=RuntimeError("bug"), settings=settings)
        orchestrator = IngestionOrchestrator([good, down, no_key, broken], settings=settings)

        report = orchestrator.ingest()

        assert report.per_source_counts == {"osm": 1, "sf_meters": 0, "google_places": 0, "sf_citations": 0}
        assert report.final_spot_count == 1
        kinds = {e.source: e.kind for e in report.errors}
        assert kinds == {
            "sf_meters": "source_unavailable",
            "google_places": "configuration_missing",
            "sf_citations": "unexpected",
        }

    @pytest.mark.parametrize(
        "error,kind",
        [
            (RateLimited("x", "HTTP 429"), "rate_limited"),
            (MalformedRecord("x", "page was not an array"), "malformed_record"),
        ],
    )
    def test_error_kinds(self, settings, error, kind):
        orchestrator = IngestionOrchestrator([StubSource("x", error=error, settings=settings)], settings=settings)
        (err,) = orchestrator.ingest().errors
        assert err.kind == kind

    def test_merges_across_sources_once(self, settings, make_candidate):
        meter = make_candidate(37.7749, -122.4194, source="sf_meters", confidence=0.98)
        census = make_candidate(37.77491, -122.41941, source="sf_parking_census", confidence=0.95, capacity=10)
        far = make_candidate(37.7800, -122.4100, source="osm")
        orchestrator = IngestionOrchestrator(
            [StubSource("sf_meters", [meter], settings=settings), StubSource("sf_parking_census", [census, far], settings=settings)],
            settings=settings,
        )

        report = orchestrator.ingest()

        assert report.total_candidates == 3
        assert report.duplicates_removed == 1
        assert report.final_spot_count == 2
        merged = report.final_spots[0]
        assert merged.verified_sources >= {"sf_meters", "sf_parking_census"}
        assert merged.capacity == 10

    def test_selected_sources_only(self, settings, make_candidate):
        a = StubSource("a", [make_candidate()], settings=settings)
        b = StubSource("b", [make_candidate(37.8, -122.3)], settings=settings)
        report = IngestionOrchestrator([a, b], settings=settings).ingest(["b"])
        assert list(report.per_source_counts) == ["b"]
        assert a.calls == 0

    def test_unknown_source_rejected(self, settings):
        with pytest.raises(ValueError):
            IngestionOrchestrator([StubSource("a", settings=settings)], settings=settings).ingest(["nope"])

    def test_cancelled_before_start(self, settings, make_candidate):
        store = MemorySpotStore()
        source = StubSource("a", [make_candidate()], settings=settings)
        cancel = threading.Event()
        cancel.set()

        report = IngestionOrchestrator([source], store=store, settings=settings).ingest(cancel_event=cancel)

        assert report.cancelled is True
        assert source.calls == 0
        assert report.final_spots == []
        assert len(store) == 0

    def test_cancelled_between_pages(self, settings, make_response, make_session):
        settings.meters_page_size = 1
        store = MemorySpotStore()
        cancel = threading.Event()
        session = make_session(
            make_response(json_data=[{"meter_id": "M1", "latitude": "37.7749", "longitude": "-122.4194"}]),
            make_response(json_data=[{"meter_id": "M2", "latitude": "37.7750", "longitude": "-122.4194"}]),
            make_response(json_data=[]),
        )
        # the page delay is where a cancel arrives while the source is running
        meters = ParkingMetersSource(settings, session, sleep=lambda _: cancel.set())

        report = IngestionOrchestrator([meters], store=store, settings=settings).ingest(cancel_event=cancel)

        assert report.cancelled is True
        assert session.request.call_count == 1
        (err,) = report.errors
        assert err.kind == "cancelled"
        assert err.message == "cancelled after 1 page(s)"
        assert len(store) == 0

    def test_cancel_event_unbound_after_run(self, settings, make_response, make_session):
        cancel = threading.Event()
        cancel.set()
        session = make_session(make_response(json_data=[]))
        meters = ParkingMetersSource(settings, session, sleep=lambda _: None)

        with cancellation(cancel):
            with pytest.raises(FetchCancelled):
                meters.fetch_all()

        assert meters.fetch_all() == []

    def test_preview_skips_dedup_and_store(self, settings, make_candidate):
        store = Mock()
        spots = [make_candidate(), make_candidate()]
        orchestrator = IngestionOrchestrator([StubSource("a", spots, settings=settings)], store=store, settings=settings)
        assert len(orchestrator.preview("a", limit=1)) == 1
        store.upsert_spots.assert_not_called()


class TestPersistence:
    def _spots(self, make_candidate, n):
        return [make_candidate(37.0 + i * 0.01, -122.0, source_id=str(i)) for i in range(n)]

    def test_batches(self, settings, make_candidate):
        settings.persist_batch_size = 2
        store = MemorySpotStore()
        source = StubSource("osm", self._spots(make_candidate, 5), settings=settings)

        report = IngestionOrchestrator([source], store=store, settings=settings).ingest()

        assert report.persisted == 5
        assert len(store) == 5

    def test_duplicate_batch_skipped_and_failed_batch_recorded(self, settings, make_candidate):
        settings.persist_batch_size = 2
        store = Mock()
        store.upsert_spots.side_effect = [2, DuplicateWrite(), RuntimeError("disk full")]
        source = StubSource("osm", self._spots(make_candidate, 5), settings=settings)

        report = IngestionOrchestrator([source], store=store, settings=settings).ingest()

        assert store.upsert_spots.call_count == 3
        assert report.persisted == 2
        assert report.skipped_batches == 1
        assert report.failed_batches == 1
        assert [e.kind for e in report.errors] == ["write_failed"]

    def test_dry_run(self, settings, make_candidate):
        store = MemorySpotStore()
        source = StubSource("osm", self._spots(make_candidate, 3), settings=settings)
        report = IngestionOrchestrator([source], store=store, settings=settings).ingest(persist=False)
        assert report.final_spot_count == 3
        assert len(store) == 0

    def test_reingest_updates_in_place(self, settings, make_candidate):
        store = MemorySpotStore()
        spots = self._spots(make_candidate, 3)
        orchestrator = IngestionOrchestrator([StubSource("osm", spots, settings=settings)], store=store, settings=settings)

        orchestrator.ingest()
        orchestrator.ingest()

        assert len(store) == 3


class TestReingestWithDifferentSources:
    """A location keeps one stored spot whichever sources a run selects"""

    def _orchestrator(self, settings, make_candidate, store):
        census = StubSource(
            "sf_parking_census",
            [make_candidate(37.7749064, -122.4194, source="sf_parking_census", confidence=0.95, source_id="C1")],
            settings=settings,
        )
        meters = StubSource(
            "sf_meters",
            [make_candidate(37.7749, -122.4194, source="sf_meters", confidence=0.95, source_id="M1")],
            settings=settings,
        )
        return IngestionOrchestrator(
            [census, meters], store=store, deduplicator=make_deduplicator("exact", settings), settings=settings
        )

    def test_subset_then_all(self, settings, make_candidate):
        store = MemorySpotStore()
        orchestrator = self._orchestrator(settings, make_candidate, store)

        orchestrator.ingest(["sf_meters"])
        (first,) = store.all_spots()
        orchestrator.ingest()

        (spot,) = store.all_spots()
        assert spot.id == first.id
        assert spot.primary_source == "sf_parking_census"
        assert spot.verified_sources == {"sf_parking_census", "sf_meters"}

    def test_all_then_subset(self, settings, make_candidate):
        store = MemorySpotStore()
        orchestrator = self._orchestrator(settings, make_candidate, store)

        orchestrator.ingest()
        orchestrator.ingest(["sf_meters"])
        orchestrator.ingest(["sf_parking_census"])

        assert len(store) == 1

    def test_separate_runs_collapse_once_merged(self, settings, make_candidate):
        store = MemorySpotStore()
        orchestrator = self._orchestrator(settings, make_candidate, store)

        orchestrator.ingest(["sf_meters"])
        orchestrator.ingest(["sf_parking_census"])
        assert len(store) == 2

        orchestrator.ingest()

        (spot,) = store.all_spots()
        assert spot.primary_source == "sf_parking_census"


def test_default_sources(settings):
    names = [s.name for s in build_default_sources(settings)]
    assert names == ["sf_parking_census", "sf_meters", "sf_citations", "osm", "google_places"]

    settings.local_file_path = "spots.csv"
    assert build_default_sources(settings)[-1].name == "local_file"
