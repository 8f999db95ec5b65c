"""Immutable world index: normalized countries, spherical shapes, circles and grid."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .config import GridConfig, PreprocessConfig
from .geometry import SphericalShape, build_shape, contains, wrap_cell_longitude
from .models import BoundingCircle, CellKey, CountryFeature
from .preprocess import GeometryPreprocessor

LOGGER = logging.getLogger("dotsmap.spatial_index")


def cell_key(lon: float, lat: float, cell_size: float) -> CellKey:
    """Grid cell of a (lon, lat) point; latitude 90 belongs to the top row."""
    top_row = math.ceil(90.0 / cell_size) - 1
    lat_bucket = min(math.floor(lat / cell_size), top_row)
    aligned_lon = math.floor(lon / cell_size) * cell_size
    lon_bucket = math.floor(wrap_cell_longitude(aligned_lon) / cell_size)
    return CellKey(lat_bucket, lon_bucket)


def _longitude_half_width_deg(circle: BoundingCircle) -> float:
    """Longitude half-extent of a spherical cap; 180 when the cap covers a pole."""
    radius_deg = circle.radius_deg
    lat_c = circle.center[1]
    if abs(lat_c) + radius_deg >= 90.0:
        return 180.0
    ratio = math.sin(circle.radius) / math.cos(math.radians(lat_c))
    return math.degrees(math.asin(min(1.0, ratio)))


def circle_cells(circle: BoundingCircle, cell_size: float) -> list[CellKey]:
    """Every grid cell overlapped by the lat/lon box around ``circle``."""
    lon_c, lat_c = circle.center
    radius_deg = circle.radius_deg
    min_lat = max(-90.0, math.floor((lat_c - radius_deg) / cell_size) * cell_size)
    max_lat = min(90.0, math.ceil((lat_c + radius_deg) / cell_size) * cell_size)

    half_width = _longitude_half_width_deg(circle)
    if half_width >= 180.0:
        min_lon, max_lon = -180.0, 180.0
    else:
        min_lon = math.floor((lon_c - half_width) / cell_size) * cell_size
        max_lon = math.ceil((lon_c + half_width) / cell_size) * cell_size

    keys: list[CellKey] = []
    seen: set[CellKey] = set()
    lat_rows = max(0, math.ceil((max_lat - min_lat) / cell_size - 1e-9))
    lon_cols = max(0, math.ceil((max_lon - min_lon) / cell_size - 1e-9))
    for row in range(lat_rows):
        lat_mid = min_lat + (row + 0.5) * cell_size
        for col in range(lon_cols):
            key = cell_key(min_lon + (col + 0.5) * cell_size, min(lat_mid, 90.0), cell_size)
            if key not in seen:
                seen.add(key)
                keys.append(key)
    return keys


def build_grid(circles: Iterable[BoundingCircle], cell_size: float) -> Mapping[CellKey, tuple[int, ...]]:
    buckets: dict[CellKey, list[int]] = {}
    for circle_id, circle in enumerate(circles):
        for key in circle_cells(circle, cell_size):
            buckets.setdefault(key, []).append(circle_id)
    return MappingProxyType({key: tuple(ids) for key, ids in buckets.items()})


@dataclass(frozen=True, slots=True)
class WorldIndex:
    """Everything a worker needs to classify points; built once per topology."""

    countries: tuple[CountryFeature, ...]
    shapes: tuple[SphericalShape, ...]
    circles: tuple[BoundingCircle, ...]
    grid: Mapping[CellKey, tuple[int, ...]]
    cell_size_deg: float
    special_circle_ids: tuple[int, ...]
    alaska_circle_ids: tuple[int, ...]

    @classmethod
    def build(
        cls,
        collection: Mapping[str, Any],
        preprocess: PreprocessConfig | None = None,
        grid: GridConfig | None = None,
    ) -> WorldIndex:
        grid_cfg = grid or GridConfig()
        preprocessor = GeometryPreprocessor(preprocess)
        countries = tuple(preprocessor.normalize_features(collection))
        shapes = tuple(build_shape(country) for country in countries)
        circles = tuple(preprocessor.derive_all(countries, shapes))
        cell_grid = build_grid(circles, grid_cfg.cell_size_deg)
        LOGGER.info(
            "Built spatial grid: %d circles over %d cells (cell size %.1f deg)",
            len(circles),
            len(cell_grid),
            grid_cfg.cell_size_deg,
        )
        return cls(
            countries=countries,
            shapes=shapes,
            circles=circles,
            grid=cell_grid,
            cell_size_deg=grid_cfg.cell_size_deg,
            special_circle_ids=tuple(i for i, c in enumerate(circles) if c.is_special_region),
            alaska_circle_ids=tuple(i for i, c in enumerate(circles) if c.region_type == "usa-alaska"),
        )

    @property
    def country_names(self) -> tuple[str, ...]:
        return tuple(country.name for country in self.countries)

    def cell_key(self, lon: float, lat: float) -> CellKey:
        return cell_key(lon, lat, self.cell_size_deg)

    def candidates(self, lons: Iterable[float], lat: float) -> tuple[int, ...]:
        """Union of circle ids in the cells of each longitude variant, in first-seen order."""
        seen: dict[int, None] = {}
        for lon in lons:
            for circle_id in self.grid.get(self.cell_key(lon, lat), ()):
                seen.setdefault(circle_id, None)
        return tuple(seen)

    def contains(self, country_index: int, lon: float, lat: float) -> bool:
        return contains(self.shapes[country_index], lon, lat)

