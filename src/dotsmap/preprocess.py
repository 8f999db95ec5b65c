"""Feature normalization and bounding-circle derivation."""

from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Sequence

import numpy as np

from .config import PreprocessConfig
from .geometry import (
    GeoBounds,
    SphericalShape,
    geo_distance_many,
    prewrap_high_latitude,
    shape_bounds,
    spherical_centroid,
    wrap_longitude,
)
from .models import BoundingCircle, CountryFeature, LonLat, PolygonRings, Ring
from .regions import match_region_override

LOGGER = logging.getLogger("dotsmap.preprocess")

SUPPORTED_GEOMETRY_TYPES = ("Polygon", "MultiPolygon")


class GeometryPreprocessor:
    def __init__(self, config: PreprocessConfig | None = None) -> None:
        self.config = config or PreprocessConfig()

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_features(self, collection: Mapping[str, Any]) -> list[CountryFeature]:
        """Turn a GeoJSON-like FeatureCollection into normalized country features.

        Longitudes near the poles are pre-wrapped, then every longitude is wrapped into
        (-180, 180]. Rings crossing the antimeridian stay whole. Rings are closed; rings
        with fewer than four positions are dropped. Features of other geometry types are
        skipped with a warning.
        """
        features = collection.get("features") if isinstance(collection, Mapping) else None
        if not isinstance(features, list):
            raise ValueError("Expected FeatureCollection with a 'features' list")

        countries: list[CountryFeature] = []
        seen_names: set[str] = set()
        for idx, feature in enumerate(features):
            if not isinstance(feature, Mapping):
                raise ValueError(f"Expected mapping at features[{idx}]")
            name = self._feature_name(feature, idx)
            geometry = feature.get("geometry")
            geom_type = geometry.get("type") if isinstance(geometry, Mapping) else None
            if geom_type not in SUPPORTED_GEOMETRY_TYPES:
                LOGGER.warning("Skipping feature '%s' with unsupported geometry type %s", name, geom_type)
                continue
            if name in seen_names:
                raise ValueError(f"Duplicate feature name '{name}' at features[{idx}]")
            seen_names.add(name)

            coords = geometry.get("coordinates")
            if not isinstance(coords, (list, tuple)):
                raise ValueError(f"Expected coordinates list for feature '{name}'")
            raw_polygons = [coords] if geom_type == "Polygon" else coords
            polygons = []
            for raw_polygon in raw_polygons:
                polygon = self._normalize_polygon(raw_polygon, name)
                if polygon:
                    polygons.append(polygon)
            if not polygons:
                raise ValueError(f"Feature '{name}' has no usable polygon ring")
            countries.append(CountryFeature(index=len(countries), name=name, polygons=tuple(polygons)))

        LOGGER.info("Normalized %d features (%d skipped)", len(countries), len(features) - len(countries))
        return countries

    def _feature_name(self, feature: Mapping[str, Any], idx: int) -> str:
        props = feature.get("properties") or {}
        if not isinstance(props, Mapping):
            raise ValueError(f"Expected mapping for features[{idx}].properties")
        name = props.get(self.config.name_field)
        if not isinstance(name, str) or not name.strip():
            raise ValueError(
                f"Expected non-empty string for features[{idx}].properties.{self.config.name_field}"
            )
        return name.strip()

    def _normalize_polygon(self, raw_polygon: Any, name: str) -> PolygonRings:
        if not isinstance(raw_polygon, (list, tuple)) or not raw_polygon:
            return ()
        shell = self._normalize_ring(raw_polygon[0], name)
        if shell is None:
            LOGGER.debug("Dropping degenerate outer ring of '%s'", name)
            return ()
        holes = [ring for ring in (self._normalize_ring(r, name) for r in raw_polygon[1:]) if ring is not None]
        return (shell, *holes)

    def _normalize_ring(self, raw_ring: Any, name: str) -> Ring | None:
        if not isinstance(raw_ring, (list, tuple)):
            raise ValueError(f"Expected ring list for feature '{name}'")
        points: list[LonLat] = []
        for position in raw_ring:
            if not isinstance(position, (list, tuple)) or len(position) < 2:
                raise ValueError(f"Expected [lon, lat] position in feature '{name}'")
            lon, lat = float(position[0]), float(position[1])
            if not (math.isfinite(lon) and math.isfinite(lat)):
                raise ValueError(f"Non-finite coordinate in feature '{name}'")
            lon = prewrap_high_latitude(lon, lat, self.config.high_latitude_wrap_deg)
            points.append((wrap_longitude(lon), lat))
        if points and points[0] != points[-1]:
            points.append(points[0])
        if len(points) < 4:
            return None
        return tuple(points)

    # ------------------------------------------------------------------
    # Bounding circles
    # ------------------------------------------------------------------

    def derive_circles(self, country: CountryFeature, shape: SphericalShape) -> list[BoundingCircle]:
        """Derive the bounding circles of one country from its spherical shape."""
        cfg = self.config
        bounds = shape_bounds(country, shape)
        centroid = spherical_centroid(shape)

        override = match_region_override(centroid, cfg.region_overrides)
        if override is not None:
            LOGGER.debug("Country '%s' matched region override '%s'", country.name, override.region_type)
            return [
                BoundingCircle(
                    country_index=country.index,
                    center=template.center if template.center is not None else centroid,
                    radius=template.radius,
                    is_polar=template.is_polar,
                    crosses_antimeridian=template.crosses_antimeridian,
                    is_special_region=True,
                    region_type=template.region_type,
                )
                for template in override.circles
            ]

        is_polar = bounds.is_polar
        crosses = bounds.crosses_antimeridian
        if is_polar and bounds.lat_center > cfg.polar_lat_center_deg:
            return [
                BoundingCircle(
                    country_index=country.index,
                    center=centroid,
                    radius=math.radians(cfg.polar_radius_deg),
                    is_polar=True,
                    crosses_antimeridian=crosses,
                    is_special_region=False,
                    region_type="polar",
                )
            ]

        samples = cfg.polar_sample_count if is_polar else cfg.sample_count
        radius = self._sampled_radius(country, shape, bounds, centroid, samples)
        margin = cfg.antimeridian_margin if crosses else cfg.margin
        return [
            BoundingCircle(
                country_index=country.index,
                center=centroid,
                radius=radius * margin,
                is_polar=is_polar,
                crosses_antimeridian=crosses,
                is_special_region=False,
                region_type="standard",
            )
        ]

    def derive_all(
        self, countries: Sequence[CountryFeature], shapes: Sequence[SphericalShape]
    ) -> list[BoundingCircle]:
        circles: list[BoundingCircle] = []
        for country, shape in zip(countries, shapes):
            circles.extend(self.derive_circles(country, shape))
        special = sum(1 for c in circles if c.is_special_region)
        LOGGER.info("Derived %d bounding circles (%d special)", len(circles), special)
        return circles

    @staticmethod
    def _sampled_radius(
        country: CountryFeature,
        shape: SphericalShape,
        bounds: GeoBounds,
        centroid: LonLat,
        samples: int,
    ) -> float:
        steps = np.arange(samples + 1, dtype=float) / samples
        lats = bounds.min_lat + (bounds.max_lat - bounds.min_lat) * steps
        lons = bounds.min_lon + bounds.lon_span * steps
        lons = np.where(lons > 180.0, lons - 360.0, lons)
        lon_grid, lat_grid = np.meshgrid(lons, lats)
        lon_flat = lon_grid.ravel()
        lat_flat = lat_grid.ravel()
        inside = shape.contains_many(lon_flat, lat_flat)

        vertices = np.asarray(list(country.iter_points()), dtype=float)
        lon_all = np.concatenate([lon_flat[inside], vertices[:, 0]])
        lat_all = np.concatenate([lat_flat[inside], vertices[:, 1]])
        return float(geo_distance_many(centroid, lon_all, lat_all).max())

