"""
Tests for the HTTP API
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from parkfinder.events import CollectingSink
from parkfinder.main import create_app
from parkfinder.sources.base import SourceAdapter
from parkfinder.storage import MemorySpotStore


class StaticSource(SourceAdapter):
    def __init__(self, name, spots, settings=None):
        super().__init__(settings, session=Mock())
        self.name = name
        self._spots = spots

    def fetch_all(self):
        return list(self._spots)


@pytest.fixture
def store():
    return MemorySpotStore()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def client(settings, store, sink, make_candidate, make_response):
    sources = [
        StaticSource("sf_meters", [make_candidate(37.7749, -122.4194, source="sf_meters", confidence=0.98, source_id="M1")], settings),
        StaticSource("osm", [make_candidate(37.77491, -122.41941, source="osm", source_id="node/1")], settings),
    ]
    # the meter lookup sees an empty area
    session = Mock()
    session.request.return_value = make_response(json_data=[])
    app = create_app(settings=settings, store=store, sources=sources, sink=sink, session=session)
    return TestClient(app)


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["spots_loaded"] == 0


class TestReportAndConfirm:
    def test_new_discovery_returns_201(self, client, sink):
        resp = client.post("/spots/report", json={"latitude": 37.8716, "longitude": -122.2727, "status": "available"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["is_new_discovery"] is True
        assert body["points_earned"] == 20
        assert body["spot"]["confidence"] == 0.70
        assert sink.types() == ["created"]

    def test_update_returns_200(self, client):
        client.post("/spots/report", json={"latitude": 37.8716, "longitude": -122.2727, "status": "available"})
        resp = client.post("/spots/report", json={"latitude": 37.87161, "longitude": -122.27271, "status": "taken"})

        assert resp.status_code == 200
        assert resp.json()["spot"]["status"] == "taken"

    def test_report_validation(self, client):
        resp = client.post("/spots/report", json={"latitude": 100, "longitude": 0, "status": "available"})
        assert resp.status_code == 422

    def test_confirm(self, client):
        created = client.post(
            "/spots/report", json={"latitude": 37.8716, "longitude": -122.2727, "status": "available"}
        ).json()["spot"]

        first = client.post(f"/spots/{created['id']}/confirm", json={"user_id": "u2"})
        second = client.post(f"/spots/{created['id']}/confirm")

        assert first.status_code == 200
        assert first.json()["verified"] is False
        assert second.json()["verified"] is True
        assert second.json()["user_confirmations"] == 3

    def test_confirm_unknown_spot(self, client):
        resp = client.post("/spots/nope/confirm")
        assert resp.status_code == 404


class TestIngestAndRead:
    def test_ingest_then_nearby(self, client, store):
        resp = client.post("/ingest", json={"strategy": "exact"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["per_source_counts"] == {"sf_meters": 1, "osm": 1}
        assert body["duplicates_removed"] == 1
        assert body["final_spot_count"] == 1
        assert body["persisted"] == 1
        assert "final_spots" not in body
        assert len(store) == 1

        nearby = client.post("/spots/nearby", json={"lat": 37.7749, "lon": -122.4194, "k": 3})
        assert nearby.status_code == 200
        (spot,) = nearby.json()
        assert spot["primary_source"] == "sf_meters"
        assert set(spot["verified_sources"]) == {"sf_meters", "osm"}

    def test_ingest_unknown_source(self, client):
        resp = client.post("/ingest", json={"sources": ["nope"]})
        assert resp.status_code == 400

    def test_nearby_without_data(self, client):
        resp = client.post("/spots/nearby", json={"lat": 37.7749, "lon": -122.4194})
        assert resp.status_code == 503

    def test_availability(self, client):
        client.post("/spots/report", json={"latitude": 37.7750, "longitude": -122.4194, "status": "available"})

        resp = client.get("/availability", params={"lat": 37.7749, "lon": -122.4194, "radius_m": 500})

        assert resp.status_code == 200
        body = resp.json()
        assert len(body["user_reported"]) == 1
        assert body["summary"]["total_available_spots"] == 1
        assert body["summary"]["recommendations"][0].startswith("Recently reported spot very close")

    def test_availability_invalid_coordinate(self, client):
        resp = client.get("/availability", params={"lat": 123.0, "lon": -122.4194})
        assert resp.status_code == 400

    def test_prediction(self, client):
        resp = client.get("/predict/probability", params={"when": "2026-03-14T02:00:00"})
        assert resp.status_code == 200
        assert resp.json()["tier"] == "high"
