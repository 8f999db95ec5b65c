"""Column-major sampling of one chunk of the screen grid.

Every execution context (inline pool, worker process, engine fallback) goes through
:func:`classify_chunk`, so a chunk classifies identically wherever it runs.
"""

from __future__ import annotations

import numpy as np

from .classifier import PointClassifier
from .lookup import LookupMap
from .models import ClassificationResult
from .projection import ProjectionContext


def sample_columns(start_x: int, end_x: int, spacing: int) -> range:
    return range(start_x, end_x, spacing)


def sample_rows(height: int, spacing: int) -> np.ndarray:
    return np.arange(0, height, spacing, dtype=float)


def classify_chunk(
    classifier: PointClassifier,
    context: ProjectionContext,
    *,
    start_x: int,
    end_x: int,
    spacing: int,
    include_ocean_dots: bool,
    lookup: LookupMap | None = None,
) -> list[ClassificationResult]:
    """Classify the sample points with ``start_x <= x < end_x`` inside the projection."""
    world = classifier.world
    ys = sample_rows(context.height, spacing)
    results: list[ClassificationResult] = []
    for x in sample_columns(start_x, end_x, spacing):
        lons, lats, inside = context.invert_many(np.full(ys.shape, x, dtype=float), ys)
        for row in np.flatnonzero(inside):
            y = int(ys[row])
            lon = float(lons[row])
            lat = float(lats[row])
            if lookup is not None:
                index = lookup.lookup(x, y)
                country = world.countries[index] if index is not None else None
            else:
                country = classifier.classify(lon, lat)
            if country is None and not include_ocean_dots:
                continue
            results.append(
                ClassificationResult(
                    x=x,
                    y=y,
                    country_name=country.name if country is not None else None,
                    coordinates=(lon, lat),
                )
            )
    return results
