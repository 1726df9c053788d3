"""
Tests for distance and nearest-match primitives
"""

import math

import pytest

from parkfinder.errors import InvalidCoordinate
from parkfinder.geo import (
    bounding_box,
    cells_covering,
    covering_range,
    distance_meters,
    grid_cell,
    haversine_m,
    meters_to_lat_deg,
    nearest_within,
    validate_coordinate,
)
from parkfinder.models import CandidateSpot


def _spot(lat, lon, source_id):
    return CandidateSpot(latitude=lat, longitude=lon, primary_source="test", source_id=source_id)


class TestDistance:
    def test_same_point_is_zero(self):
        assert distance_meters((37.7749, -122.4194), (37.7749, -122.4194)) == 0.0

    def test_one_thousandth_degree_latitude(self):
        d = distance_meters((37.7749, -122.4194), (37.7759, -122.4194))
        assert d == pytest.approx(111.2, abs=0.5)

    def test_symmetric(self):
        a = (37.7749, -122.4194)
        b = (37.8716, -122.2727)
        assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))

    def test_antipodal_points_do_not_fail(self):
        d = haversine_m(0.0, 0.0, 0.0, 180.0)
        assert d == pytest.approx(math.pi * 6371000.0, rel=1e-9)

    @pytest.mark.parametrize(
        "lat,lon",
        [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5), (0.0, -181.0), (float("nan"), 0.0)],
    )
    def test_out_of_range_rejected(self, lat, lon):
        with pytest.raises(InvalidCoordinate):
            distance_meters((lat, lon), (0.0, 0.0))

    def test_boundaries_accepted(self):
        validate_coordinate(90.0, 180.0)
        validate_coordinate(-90.0, -180.0)

    def test_invalid_coordinate_is_value_error(self):
        with pytest.raises(ValueError):
            validate_coordinate(100.0, 0.0)


class TestNearestWithin:
    def test_empty_candidates(self):
        assert nearest_within(37.7749, -122.4194, [], 20.0) is None

    def test_returns_closest_within_threshold(self):
        far = _spot(37.7751, -122.4194, "far")  # ~22m
        near = _spot(37.77495, -122.4194, "near")  # ~5.5m
        result = nearest_within(37.7749, -122.4194, [far, near], 20.0)
        assert result is not None
        spot, d = result
        assert spot.source_id == "near"
        assert d == pytest.approx(5.56, abs=0.1)

    def test_nothing_within_threshold(self):
        far = _spot(37.7751, -122.4194, "far")
        assert nearest_within(37.7749, -122.4194, [far], 20.0) is None

    def test_tie_keeps_first_seen(self):
        a = _spot(37.7750, -122.4194, "a")
        b = _spot(37.7750, -122.4194, "b")
        spot, _ = nearest_within(37.7749, -122.4194, [a, b], 20.0)
        assert spot.source_id == "a"

    def test_threshold_is_inclusive(self):
        target = _spot(37.7750, -122.4194, "t")
        d = haversine_m(37.7749, -122.4194, 37.7750, -122.4194)
        assert nearest_within(37.7749, -122.4194, [target], d) is not None


class TestGrid:
    def test_grid_cell_rounds(self):
        assert grid_cell(37.77491, -122.41941, 0.00005) == (round(37.77491 / 0.00005), round(-122.41941 / 0.00005))

    def test_bounding_box_contains_point(self):
        box = bounding_box(37.7749, -122.4194, 500)
        assert box["south"] < 37.7749 < box["north"]
        assert box["west"] < -122.4194 < box["east"]
        # longitude degrees are shorter away from the equator
        assert (box["east"] - box["west"]) > (box["north"] - box["south"])

    def test_cells_covering_sorted_and_contains_own_cell(self):
        cell_deg = meters_to_lat_deg(20.0)
        cells = cells_covering(37.7749, -122.4194, 20.0, cell_deg)
        assert cells == sorted(cells)
        assert grid_cell(37.7749, -122.4194, cell_deg) in cells

    def test_covering_range_matches_cells(self):
        cell_deg = meters_to_lat_deg(20.0)
        rows, cols = covering_range(37.7749, -122.4194, 20.0, cell_deg)
        assert len(rows) * len(cols) == len(cells_covering(37.7749, -122.4194, 20.0, cell_deg))

    def test_covering_range_at_pole_spans_most_longitudes(self):
        cell_deg = meters_to_lat_deg(20.0)
        rows, cols = covering_range(90.0, 0.0, 20.0, cell_deg)
        assert len(rows) <= 3
        assert len(cols) > 1_000_000

    def test_points_within_radius_share_covering_cells(self):
        cell_deg = meters_to_lat_deg(20.0)
        a = (37.7749, -122.4194)
        b = (37.7749, -122.41962)  # ~19m east-west
        assert haversine_m(*a, *b) < 20.0
        assert grid_cell(*b, cell_deg) in cells_covering(*a, 20.0, cell_deg)
        assert grid_cell(*a, cell_deg) in cells_covering(*b, 20.0, cell_deg)
