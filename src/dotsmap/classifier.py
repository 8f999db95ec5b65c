"""Tiered country lookup for a single geographic coordinate."""

from __future__ import annotations

import logging
from typing import Sequence

from .config import ClassifierConfig
from .geometry import geo_distance, is_valid_coordinate, longitude_variants, wrap_longitude
from .models import CountryFeature, DebugInfo
from .spatial_index import WorldIndex

LOGGER = logging.getLogger("dotsmap.classifier")


class PointClassifier:
    """Find the country containing a (lon, lat) point.

    Checks run cheapest-first: the Alaska and special-region fast paths, then grid
    candidates filtered by circle distance, and finally exact containment. Any error
    while testing a point is logged and the point is treated as ocean.
    """

    def __init__(
        self,
        world: WorldIndex,
        config: ClassifierConfig | None = None,
        debug: DebugInfo | None = None,
    ) -> None:
        self.world = world
        self.config = config or ClassifierConfig()
        self.debug = debug if debug is not None else DebugInfo()

    def classify(self, lon: float, lat: float) -> CountryFeature | None:
        self.debug.total_checks += 1
        try:
            return self._classify(lon, lat)
        except Exception:
            LOGGER.debug("Classification failed at (%s, %s)", lon, lat, exc_info=True)
            return None

    def _classify(self, lon: float, lat: float) -> CountryFeature | None:
        if not is_valid_coordinate(lon, lat):
            return None
        cfg = self.config
        world = self.world
        lon = wrap_longitude(lon)

        if lat > cfg.alaska_min_lat and lon < cfg.alaska_max_lon:
            alaska_lons = (lon, lon + 360.0) if lon < cfg.alaska_wrap_lon else (lon,)
            for circle_id in world.alaska_circle_ids:
                country_index = world.circles[circle_id].country_index
                if self._exact(country_index, alaska_lons, lat):
                    return world.countries[country_index]

        lons = longitude_variants(lon, cfg.antimeridian_band_deg)
        if abs(lat) > cfg.high_latitude_deg or len(lons) > 1:
            for circle_id in world.special_circle_ids:
                country_index = world.circles[circle_id].country_index
                if self._exact(country_index, lons, lat):
                    return world.countries[country_index]

        self.debug.grid_checks += 1
        for circle_id in world.candidates(lons, lat):
            self.debug.circle_checks += 1
            circle = world.circles[circle_id]
            if not (circle.is_polar or circle.crosses_antimeridian):
                if not any(geo_distance(circle.center, (test_lon, lat)) <= circle.radius for test_lon in lons):
                    continue
            if self._exact(circle.country_index, lons, lat):
                return world.countries[circle.country_index]
        return None

    def _exact(self, country_index: int, lons: Sequence[float], lat: float) -> bool:
        self.debug.full_checks += 1
        return any(self.world.contains(country_index, test_lon, lat) for test_lon in lons)
