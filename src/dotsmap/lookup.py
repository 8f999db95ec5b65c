"""Precomputed pixel -> country raster for a fixed projection and resolution."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .classifier import PointClassifier
from .models import QueryParams
from .projection import ProjectionContext

LOGGER = logging.getLogger("dotsmap.lookup")

OCEAN = 0
MAX_COUNTRIES = int(np.iinfo(np.uint16).max) - 1

ProgressCallback = Callable[[float], None]


def lookup_dimensions(width: int, height: int, resolution: int) -> tuple[int, int]:
    return math.ceil(width / resolution), math.ceil(height / resolution)


@dataclass(frozen=True)
class LookupMap:
    """Row-major ``uint16`` raster; 0 is ocean, ``k > 0`` is country index ``k - 1``."""

    data: np.ndarray
    resolution: int
    projection_name: str
    source_width: int
    source_height: int

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    def matches(self, query: QueryParams) -> bool:
        if query.resolution is not None and query.resolution != self.resolution:
            return False
        return (
            query.projection_name == self.projection_name
            and query.width == self.source_width
            and query.height == self.source_height
        )

    def lookup(self, x: float, y: float) -> int | None:
        """Country index at screen point ``(x, y)``, or None for ocean and out of range."""
        mx = math.floor(x / self.resolution)
        my = math.floor(y / self.resolution)
        if mx < 0 or mx >= self.width or my < 0 or my >= self.height:
            return None
        value = int(self.data[my, mx])
        return value - 1 if value > OCEAN else None


def build_lookup_map(
    classifier: PointClassifier,
    context: ProjectionContext,
    resolution: int,
    on_progress: ProgressCallback | None = None,
    progress_every_rows: int = 10,
) -> LookupMap:
    if len(classifier.world.countries) > MAX_COUNTRIES:
        raise ValueError(f"Lookup maps support at most {MAX_COUNTRIES} countries")
    map_width, map_height = lookup_dimensions(context.width, context.height, resolution)
    data = np.zeros((map_height, map_width), dtype=np.uint16)
    xs = np.arange(map_width, dtype=float) * resolution

    for row in range(map_height):
        ys = np.full(map_width, row * resolution, dtype=float)
        lons, lats, inside = context.invert_many(xs, ys)
        for col in np.flatnonzero(inside):
            country = classifier.classify(float(lons[col]), float(lats[col]))
            if country is not None:
                data[row, col] = country.index + 1
        if on_progress is not None and row % progress_every_rows == 0:
            on_progress(round(row / map_height * 100.0, 1))

    LOGGER.info(
        "Built %dx%d lookup map for %s at resolution %d",
        map_width,
        map_height,
        context.name,
        resolution,
    )
    return LookupMap(
        data=data,
        resolution=resolution,
        projection_name=context.name,
        source_width=context.width,
        source_height=context.height,
    )
