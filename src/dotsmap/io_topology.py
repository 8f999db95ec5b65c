"""Local country feature-collection loading."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .util import read_json

LOGGER = logging.getLogger("dotsmap.io_topology")

JSON_SUFFIXES = (".json", ".geojson")


def load_feature_collection(path: str | Path, name_field: str = "name") -> dict[str, Any]:
    """Load a GeoJSON-like FeatureCollection from a local file.

    ``.json``/``.geojson`` files are parsed directly; other vector formats (GeoPackage,
    shapefile, FlatGeobuf, ...) go through geopandas, which must be installed for them.
    Features read through geopandas keep only the name column as a property.
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Feature collection not found: {source}")

    if source.suffix.lower() in JSON_SUFFIXES:
        try:
            raw = read_json(source)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {source}: {exc}") from exc
        if not isinstance(raw, dict) or raw.get("type") != "FeatureCollection":
            raise ValueError(f"Expected a GeoJSON FeatureCollection in {source}")
        LOGGER.info("Loaded %d features from %s", len(raw.get("features") or []), source)
        return raw

    gpd = _require_geopandas()
    mapping = _require_shapely_mapping()
    frame = gpd.read_file(source)
    if name_field not in frame.columns:
        raise ValueError(f"Column '{name_field}' not found in {source}")
    if frame.crs is not None and frame.crs.to_epsg() != 4326:
        frame = frame.to_crs(epsg=4326)

    features: list[dict[str, Any]] = []
    for name, geometry in zip(frame[name_field], frame.geometry):
        if geometry is None or geometry.is_empty:
            LOGGER.warning("Skipping feature '%s' with empty geometry in %s", name, source)
            continue
        features.append({"type": "Feature", "properties": {name_field: name}, "geometry": mapping(geometry)})
    LOGGER.info("Loaded %d features from %s via geopandas", len(features), source)
    return {"type": "FeatureCollection", "features": features}


def _require_geopandas() -> Any:
    try:
        import geopandas as gpd
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("geopandas is required for non-GeoJSON feature files") from exc
    return gpd


def _require_shapely_mapping() -> Any:
    try:
        from shapely.geometry import mapping
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("shapely is required for non-GeoJSON feature files") from exc
    return mapping
