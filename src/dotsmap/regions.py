"""Special-region override table for bounding-circle derivation.

A handful of countries are too large, too polar, or too fragmented across the
antimeridian for the sampled enclosing circle to work well. They are matched by
centroid window and given fixed circles instead. The default windows are tuned to the
Natural Earth / world-atlas coordinate conventions; a YAML file can replace them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from .models import LonLat


def _require_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _optional_float(value: Any, field_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected numeric value for '{field_name}'")
    return float(value)


def _require_float(value: Any, field_name: str) -> float:
    parsed = _optional_float(value, field_name)
    if parsed is None:
        raise ValueError(f"Expected numeric value for '{field_name}'")
    return parsed


def _require_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


@dataclass(frozen=True, slots=True)
class CentroidWindow:
    """Open latitude/longitude window tested against a country centroid."""

    min_lat: float | None = None
    max_lat: float | None = None
    min_lon: float | None = None
    max_lon: float | None = None

    def matches(self, centroid: LonLat) -> bool:
        lon, lat = centroid
        if self.min_lat is not None and not lat > self.min_lat:
            return False
        if self.max_lat is not None and not lat < self.max_lat:
            return False
        if self.min_lon is not None and not lon > self.min_lon:
            return False
        if self.max_lon is not None and not lon < self.max_lon:
            return False
        return True

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], field_name: str) -> CentroidWindow:
        return cls(
            min_lat=_optional_float(raw.get("min_lat"), f"{field_name}.min_lat"),
            max_lat=_optional_float(raw.get("max_lat"), f"{field_name}.max_lat"),
            min_lon=_optional_float(raw.get("min_lon"), f"{field_name}.min_lon"),
            max_lon=_optional_float(raw.get("max_lon"), f"{field_name}.max_lon"),
        )


@dataclass(frozen=True, slots=True)
class CircleTemplate:
    """Fixed circle emitted for a matched region; ``center=None`` means the centroid."""

    region_type: str
    center: LonLat | None
    radius: float
    is_polar: bool
    crosses_antimeridian: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], field_name: str) -> CircleTemplate:
        center_raw = raw.get("center", "centroid")
        center: LonLat | None
        if center_raw == "centroid":
            center = None
        elif isinstance(center_raw, list) and len(center_raw) == 2:
            center = (
                _require_float(center_raw[0], f"{field_name}.center[0]"),
                _require_float(center_raw[1], f"{field_name}.center[1]"),
            )
        else:
            raise ValueError(f"Expected [lon, lat] or 'centroid' for '{field_name}.center'")
        radius_deg = _optional_float(raw.get("radius_deg"), f"{field_name}.radius_deg")
        if radius_deg is None or radius_deg <= 0.0 or radius_deg > 180.0:
            raise ValueError(f"'{field_name}.radius_deg' must be in (0, 180]")
        return cls(
            region_type=_require_str(raw.get("region_type"), f"{field_name}.region_type"),
            center=center,
            radius=math.radians(radius_deg),
            is_polar=_require_bool(raw.get("polar", False), f"{field_name}.polar"),
            crosses_antimeridian=_require_bool(
                raw.get("antimeridian", False), f"{field_name}.antimeridian"
            ),
        )


@dataclass(frozen=True, slots=True)
class RegionOverride:
    region_type: str
    window: CentroidWindow
    circles: tuple[CircleTemplate, ...]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], field_name: str) -> RegionOverride:
        window_raw = raw.get("centroid")
        if not isinstance(window_raw, Mapping):
            raise ValueError(f"Expected mapping for '{field_name}.centroid'")
        circles_raw = raw.get("circles")
        if not isinstance(circles_raw, list) or not circles_raw:
            raise ValueError(f"Expected non-empty list for '{field_name}.circles'")
        circles = []
        for idx, item in enumerate(circles_raw):
            if not isinstance(item, Mapping):
                raise ValueError(f"Expected mapping for '{field_name}.circles[{idx}]'")
            circles.append(CircleTemplate.from_mapping(item, f"{field_name}.circles[{idx}]"))
        return cls(
            region_type=_require_str(raw.get("region_type"), f"{field_name}.region_type"),
            window=CentroidWindow.from_mapping(window_raw, f"{field_name}.centroid"),
            circles=tuple(circles),
        )


# Checked in order; first match wins.
DEFAULT_REGION_OVERRIDES: tuple[RegionOverride, ...] = (
    RegionOverride(
        region_type="antarctica",
        window=CentroidWindow(max_lat=-60.0),
        circles=(
            CircleTemplate("antarctica", (0.0, -90.0), math.pi / 2.5, True, True),
        ),
    ),
    RegionOverride(
        region_type="russia",
        window=CentroidWindow(min_lat=50.0, min_lon=60.0, max_lon=180.0),
        circles=(
            CircleTemplate("russia", (100.0, 65.0), math.pi / 2.5, True, True),
        ),
    ),
    RegionOverride(
        region_type="usa",
        window=CentroidWindow(min_lat=30.0, min_lon=-180.0, max_lon=-30.0),
        circles=(
            CircleTemplate("usa-main", None, math.pi / 4, False, False),
            CircleTemplate("usa-alaska", (-170.0, 65.0), math.pi / 3.5, True, True),
        ),
    ),
)


def match_region_override(
    centroid: LonLat,
    overrides: tuple[RegionOverride, ...] = DEFAULT_REGION_OVERRIDES,
) -> RegionOverride | None:
    for override in overrides:
        if override.window.matches(centroid):
            return override
    return None


def load_region_overrides(path: Path | None) -> tuple[RegionOverride, ...]:
    """Load the override table from YAML; a missing or empty file keeps the defaults."""
    if path is None or not path.exists():
        return DEFAULT_REGION_OVERRIDES
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        return DEFAULT_REGION_OVERRIDES
    if not isinstance(raw, list):
        raise ValueError(f"Expected list of region overrides in {path}")

    overrides: list[RegionOverride] = []
    seen: set[str] = set()
    for idx, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ValueError(f"Expected mapping at index {idx} in {path}")
        override = RegionOverride.from_mapping(item, f"regions[{idx}]")
        if override.region_type in seen:
            raise ValueError(f"Duplicate region_type '{override.region_type}' in {path}")
        seen.add(override.region_type)
        overrides.append(override)
    return tuple(overrides)
