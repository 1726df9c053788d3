"""
Shared fixtures for parkfinder tests
"""

from unittest.mock import Mock

import pytest

from parkfinder.config import Settings
from parkfinder.models import CandidateSpot, Regulations


@pytest.fixture
def settings():
    """Settings isolated from the environment, with no API keys and no delays"""
    return Settings(
        _env_file=None,
        google_places_api_key=None,
        opendata_app_token=None,
        local_file_path=None,
        meters_page_delay_s=0.0,
        census_page_delay_s=0.0,
        citations_page_delay_s=0.0,
        overpass_region_delay_s=0.0,
        google_places_page_delay_s=0.0,
        rate_limit_backoff_s=0.0,
    )


@pytest.fixture
def make_response():
    """Build a fake requests.Response"""

    def _make(status_code=200, json_data=None, headers=None, text=""):
        resp = Mock()
        resp.status_code = status_code
        resp.headers = headers or {}
        resp.text = text
        if isinstance(json_data, Exception):
            resp.json.side_effect = json_data
        else:
            resp.json.return_value = json_data
        return resp

    return _make


@pytest.fixture
def make_session():
    """Mock session whose request() returns the given responses in order"""

    def _make(*responses):
        session = Mock()
        session.request.side_effect = list(responses)
        return session

    return _make


@pytest.fixture
def no_sleep():
    return Mock()


@pytest.fixture
def make_candidate():
    def _make(lat=37.7749, lon=-122.4194, source="osm", confidence=0.8, **kwargs):
        kwargs.setdefault("verified_sources", frozenset({source}))
        kwargs.setdefault("regulations", Regulations())
        return CandidateSpot(
            latitude=lat,
            longitude=lon,
            primary_source=source,
            confidence=confidence,
            **kwargs,
        )

    return _make
