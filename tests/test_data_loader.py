"""
Tests for loading spot exports from disk
"""

import json

import pytest

from parkfinder.data_loader import geometry_to_latlon, load_spots_from_file, parse_spot_type
from parkfinder.models import SpotType


class TestGeometry:
    def test_point(self):
        assert geometry_to_latlon({"type": "Point", "coordinates": [-122.4, 37.7]}) == (37.7, -122.4)

    def test_linestring_middle_vertex(self):
        geom = {"type": "LineString", "coordinates": [[-122.0, 37.0], [-122.1, 37.1], [-122.2, 37.2]]}
        assert geometry_to_latlon(geom) == (37.1, -122.1)

    def test_polygon_centroid(self):
        square = [[-122.0, 37.0], [-121.0, 37.0], [-121.0, 38.0], [-122.0, 38.0], [-122.0, 37.0]]
        lat, lon = geometry_to_latlon({"type": "Polygon", "coordinates": [square]})
        assert lat == pytest.approx(37.5)
        assert lon == pytest.approx(-121.5)

    def test_unknown_geometry(self):
        assert geometry_to_latlon({"type": "GeometryCollection", "geometries": []}) is None
        assert geometry_to_latlon(None) is None


class TestSpotType:
    @pytest.mark.parametrize(
        "raw,expected",
        [("Garage", SpotType.GARAGE), ("meter", SpotType.METERED), ("accessible", SpotType.HANDICAP), (None, SpotType.STREET)],
    )
    def test_aliases(self, raw, expected):
        assert parse_spot_type(raw) == expected


class TestLoadSpots:
    def test_csv(self, tmp_path):
        path = tmp_path / "spots.csv"
        path.write_text(
            "id,latitude,longitude,type,capacity,address\n"
            "a1,37.7749,-122.4194,garage,40,100 Main St\n"
            "a2,,,lot,3,nowhere\n"
            "a3,95.0,-122.4,lot,3,off the map\n",
            encoding="utf-8",
        )

        result = load_spots_from_file(str(path), confidence=0.9)

        assert len(result.spots) == 1
        assert result.skipped == 2
        spot = result.spots[0]
        assert spot.source_id == "a1"
        assert spot.spot_type == SpotType.GARAGE
        assert spot.capacity == 40
        assert spot.primary_source == "local_file"
        assert spot.confidence == 0.9
        assert spot.verified_sources == {"local_file"}

    def test_geojson(self, tmp_path):
        path = tmp_path / "spots.geojson"
        path.write_text(
            json.dumps(
                {
                    "type": "FeatureCollection",
                    "features": [
                        {
                            "type": "Feature",
                            "properties": {"OBJECTID": 7, "LOT_NAME": "Civic Center", "CAPACITY": "12"},
                            "geometry": {"type": "Point", "coordinates": [-122.4177, 37.7793]},
                        },
                        {"type": "Feature", "properties": {}, "geometry": None},
                    ],
                }
            ),
            encoding="utf-8",
        )

        result = load_spots_from_file(str(path))

        assert len(result.spots) == 1
        assert result.skipped == 1
        assert result.spots[0].latitude == pytest.approx(37.7793)
        assert result.spots[0].address == "Civic Center"
        assert result.spots[0].capacity == 12

    def test_json_array(self, tmp_path):
        path = tmp_path / "spots.json"
        path.write_text(json.dumps([{"lat": 37.7, "lng": -122.4, "rules": "2hr limit"}]), encoding="utf-8")

        result = load_spots_from_file(str(path))

        assert len(result.spots) == 1
        assert result.spots[0].regulations.extras == {"rules": "2hr limit"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_spots_from_file(str(tmp_path / "missing.csv"))

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "spots.xml"
        path.write_text("<spots/>", encoding="utf-8")
        with pytest.raises(ValueError):
            load_spots_from_file(str(path))
