"""Shared feature-collection builders and engine configs for the test suite."""

from __future__ import annotations

from typing import Any

import pytest

from dotsmap.config import EngineConfig


def box(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> list[list[float]]:
    """Closed counter-clockwise ring of an axis-aligned lon/lat box."""
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


def polygon_feature(name: str, *rings: list[list[float]]) -> dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {"name": name},
        "geometry": {"type": "Polygon", "coordinates": list(rings)},
    }


def multipolygon_feature(name: str, *polygons: list[list[list[float]]]) -> dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {"name": name},
        "geometry": {"type": "MultiPolygon", "coordinates": list(polygons)},
    }


def collection(*features: dict[str, Any]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


@pytest.fixture
def two_squares() -> dict[str, Any]:
    return collection(
        polygon_feature("A", box(0, 0, 10, 10)),
        polygon_feature("B", box(20, 0, 30, 10)),
    )


@pytest.fixture
def usa_world() -> dict[str, Any]:
    """Contiguous block plus a separate Alaska-like polygon near the antimeridian."""
    return collection(
        multipolygon_feature(
            "USA",
            [box(-125, 25, -70, 49)],
            [box(-176, 58, -169, 66)],
        ),
        polygon_feature("Mexico", box(-115, 15, -90, 24)),
    )


@pytest.fixture
def mixed_world() -> dict[str, Any]:
    """Several ordinary countries away from the poles and the antimeridian."""
    return collection(
        polygon_feature("A", box(0, 0, 10, 10)),
        polygon_feature("B", box(20, 0, 30, 10)),
        polygon_feature("C", [[40, -30], [60, -30], [50, -5], [40, -30]]),
        polygon_feature("D", box(-80, -40, -60, -10), box(-75, -35, -65, -15)),
        polygon_feature("E", box(100, 20, 130, 45)),
        polygon_feature("F", box(10.5, 0, 19.5, 2)),
    )


@pytest.fixture
def inline_config() -> EngineConfig:
    return EngineConfig.from_mapping(
        {
            "workers": {"mode": "inline", "max_workers": 1},
            "cache": {"enabled": False},
        }
    )
