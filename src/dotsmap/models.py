"""Domain models shared across pipeline modules."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, NamedTuple

from .projection import canonical_projection_name

LonLat = tuple[float, float]
Ring = tuple[LonLat, ...]
PolygonRings = tuple[Ring, ...]


class CellKey(NamedTuple):
    """Spatial grid cell: integer latitude and longitude buckets."""

    lat_bucket: int
    lon_bucket: int


class DotKey(NamedTuple):
    """Rounded screen position used to detect duplicate dots."""

    x: int
    y: int


def _require_int(value: Any, field_name: str, *, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    if value < minimum:
        raise ValueError(f"'{field_name}' must be >= {minimum}")
    return value


def _optional_lonlat(value: Any, field_name: str) -> LonLat | None:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ValueError(f"Expected [lon, lat] pair for '{field_name}'")
    return (float(value[0]), float(value[1]))


@dataclass(frozen=True, slots=True)
class CountryFeature:
    """Normalized country geometry: polygons of closed (lon, lat) rings."""

    index: int
    name: str
    polygons: tuple[PolygonRings, ...]

    def iter_rings(self) -> Iterator[Ring]:
        for polygon in self.polygons:
            yield from polygon

    def iter_points(self) -> Iterator[LonLat]:
        for ring in self.iter_rings():
            yield from ring


@dataclass(frozen=True, slots=True)
class BoundingCircle:
    """Approximate enclosing disk for (part of) one country.

    ``radius`` is a great-circle angle in radians. ``country_index`` points back into
    ``WorldIndex.countries``; countries never point at their circles.
    """

    country_index: int
    center: LonLat
    radius: float
    is_polar: bool
    crosses_antimeridian: bool
    is_special_region: bool
    region_type: str

    @property
    def radius_deg(self) -> float:
        return math.degrees(self.radius)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """One sample point inside the projection outline."""

    x: float
    y: float
    country_name: str | None
    coordinates: LonLat | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "countryName": self.country_name,
            "coordinates": list(self.coordinates) if self.coordinates is not None else None,
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ClassificationResult:
        name = raw.get("countryName")
        if name is not None and not isinstance(name, str):
            raise ValueError("Expected string or null for 'countryName'")
        return cls(
            x=raw["x"],
            y=raw["y"],
            country_name=name,
            coordinates=_optional_lonlat(raw.get("coordinates"), "coordinates"),
        )


@dataclass(slots=True)
class DebugInfo:
    """Pipeline counters; merged across chunks and workers."""

    total_checks: int = 0
    circle_checks: int = 0
    full_checks: int = 0
    grid_checks: int = 0
    parallel_workers: int = 0
    duplicates_removed: int = 0

    def merge(self, other: DebugInfo) -> None:
        self.total_checks += other.total_checks
        self.circle_checks += other.circle_checks
        self.full_checks += other.full_checks
        self.grid_checks += other.grid_checks

    @property
    def grid_filter_efficiency(self) -> float | None:
        if not self.grid_checks:
            return None
        return 1.0 - self.circle_checks / self.grid_checks

    @property
    def circle_filter_efficiency(self) -> float | None:
        if not self.circle_checks:
            return None
        return 1.0 - self.full_checks / self.circle_checks

    def to_dict(self) -> dict[str, int]:
        return {
            "totalChecks": self.total_checks,
            "circleChecks": self.circle_checks,
            "fullChecks": self.full_checks,
            "gridChecks": self.grid_checks,
            "parallelWorkers": self.parallel_workers,
            "duplicatesRemoved": self.duplicates_removed,
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> DebugInfo:
        return cls(
            total_checks=int(raw.get("totalChecks", 0)),
            circle_checks=int(raw.get("circleChecks", 0)),
            full_checks=int(raw.get("fullChecks", 0)),
            grid_checks=int(raw.get("gridChecks", 0)),
            parallel_workers=int(raw.get("parallelWorkers", 0)),
            duplicates_removed=int(raw.get("duplicatesRemoved", 0)),
        )


@dataclass(slots=True)
class DotsResult:
    """Aggregate output of one grid classification; the cached value."""

    dots: tuple[ClassificationResult, ...]
    debug_info: DebugInfo = field(default_factory=DebugInfo)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dots": [dot.to_dict() for dot in self.dots],
            "debugInfo": self.debug_info.to_dict(),
        }

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> DotsResult:
        dots_raw = raw.get("dots")
        if not isinstance(dots_raw, list):
            raise ValueError("Expected list for 'dots'")
        debug_raw = raw.get("debugInfo") or {}
        if not isinstance(debug_raw, Mapping):
            raise ValueError("Expected mapping for 'debugInfo'")
        return cls(
            dots=tuple(ClassificationResult.from_mapping(item) for item in dots_raw),
            debug_info=DebugInfo.from_mapping(debug_raw),
        )


class Fingerprint(NamedTuple):
    """Cache identity of a dot query."""

    projection_name: str
    width: int
    height: int
    spacing: int
    include_ocean_dots: bool

    @property
    def key(self) -> str:
        ocean = "true" if self.include_ocean_dots else "false"
        return f"{self.projection_name}-{self.width}-{self.height}-{self.spacing}-{ocean}"


@dataclass(frozen=True, slots=True)
class QueryParams:
    """Validated dot-map query."""

    width: int
    height: int
    projection_name: str
    spacing: int
    include_ocean_dots: bool = False
    resolution: int | None = None

    def __post_init__(self) -> None:
        _require_int(self.width, "width", minimum=1)
        _require_int(self.height, "height", minimum=1)
        _require_int(self.spacing, "spacing", minimum=1)
        if self.resolution is not None:
            _require_int(self.resolution, "resolution", minimum=1)
        if not isinstance(self.include_ocean_dots, bool):
            raise ValueError("Expected bool for 'include_ocean_dots'")
        object.__setattr__(self, "projection_name", canonical_projection_name(self.projection_name))

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(
            projection_name=self.projection_name,
            width=self.width,
            height=self.height,
            spacing=self.spacing,
            include_ocean_dots=self.include_ocean_dots,
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> QueryParams:
        projection = raw.get("projectionName", raw.get("projection_name"))
        if not isinstance(projection, str):
            raise ValueError("Expected string for 'projectionName'")
        include = raw.get("includeOceanDots", raw.get("include_ocean_dots", False))
        return cls(
            width=raw.get("width"),
            height=raw.get("height"),
            projection_name=projection,
            spacing=raw.get("spacing"),
            include_ocean_dots=include,
            resolution=raw.get("resolution"),
        )
