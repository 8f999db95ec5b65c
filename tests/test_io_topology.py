"""Tests for dotsmap.io_topology.

Covers:
- GeoJSON loading and validation
- Vector formats through geopandas (skipped when it is not installed)
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dotsmap.io_topology import load_feature_collection


class TestGeoJson:
    @pytest.mark.parametrize("suffix", [".json", ".geojson", ".GeoJSON"])
    def test_loads_feature_collection(self, tmp_path: Path, two_squares: dict, suffix: str) -> None:
        path = tmp_path / f"world{suffix}"
        path.write_text(json.dumps(two_squares), encoding="utf-8")
        loaded = load_feature_collection(path)
        assert loaded == two_squares

    def test_accepts_string_path(self, tmp_path: Path, two_squares: dict) -> None:
        path = tmp_path / "world.json"
        path.write_text(json.dumps(two_squares), encoding="utf-8")
        assert load_feature_collection(str(path))["type"] == "FeatureCollection"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_feature_collection(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid JSON"):
            load_feature_collection(path)

    @pytest.mark.parametrize("payload", [[], {"type": "Feature"}, {"features": []}])
    def test_not_a_feature_collection(self, tmp_path: Path, payload: object) -> None:
        path = tmp_path / "other.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        with pytest.raises(ValueError, match="FeatureCollection"):
            load_feature_collection(path)


class TestVectorFormats:
    def test_geopackage_round_trip(self, tmp_path: Path) -> None:
        gpd = pytest.importorskip("geopandas")
        pytest.importorskip("pyogrio")
        from shapely.geometry import box

        frame = gpd.GeoDataFrame(
            {"name": ["A", "B"]},
            geometry=[box(0, 0, 10, 10), box(20, 0, 30, 10)],
            crs="EPSG:4326",
        )
        path = tmp_path / "world.gpkg"
        frame.to_file(path, driver="GPKG")

        loaded = load_feature_collection(path)
        assert loaded["type"] == "FeatureCollection"
        assert [f["properties"]["name"] for f in loaded["features"]] == ["A", "B"]
        assert loaded["features"][0]["geometry"]["type"] == "Polygon"

    def test_missing_name_column(self, tmp_path: Path) -> None:
        gpd = pytest.importorskip("geopandas")
        pytest.importorskip("pyogrio")
        from shapely.geometry import box

        frame = gpd.GeoDataFrame({"label": ["A"]}, geometry=[box(0, 0, 1, 1)], crs="EPSG:4326")
        path = tmp_path / "world.gpkg"
        frame.to_file(path, driver="GPKG")
        with pytest.raises(ValueError, match="Column 'name'"):
            load_feature_collection(path)
