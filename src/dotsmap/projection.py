"""Screen-fitted cartographic projections backed by pyproj."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

# Pixel distance a point may move on an inverse/forward round trip and still count as
# inside the projection outline.
ROUND_TRIP_TOLERANCE_PX = 0.5
_EPS = 1e-9


@dataclass(frozen=True, slots=True)
class ProjectionSpec:
    """A unit-sphere PROJ definition plus the clipping a renderer would apply."""

    name: str
    proj: str
    clip_angle_deg: float | None = None
    clip_center: tuple[float, float] = (0.0, 0.0)
    lat_limit_deg: float | None = None


_CONIC = "+lat_1=20 +lat_2=50 +lat_0=40"

PROJECTIONS: dict[str, ProjectionSpec] = {
    spec.name: spec
    for spec in (
        ProjectionSpec("equirectangular", "+proj=eqc +R=1"),
        ProjectionSpec("mercator", "+proj=merc +R=1", lat_limit_deg=85.05112878),
        ProjectionSpec("natural_earth", "+proj=natearth +R=1"),
        ProjectionSpec("equal_earth", "+proj=eqearth +R=1"),
        ProjectionSpec("orthographic", "+proj=ortho +lat_0=0 +lon_0=0 +R=1", clip_angle_deg=90.0),
        ProjectionSpec("stereographic", "+proj=stere +lat_0=0 +lon_0=0 +R=1", clip_angle_deg=90.0),
        ProjectionSpec("gnomonic", "+proj=gnom +lat_0=0 +lon_0=0 +R=1", clip_angle_deg=60.0),
        ProjectionSpec("azimuthal_equal_area", "+proj=laea +lat_0=0 +lon_0=0 +R=1"),
        ProjectionSpec("azimuthal_equidistant", "+proj=aeqd +lat_0=0 +lon_0=0 +R=1"),
        ProjectionSpec("albers", f"+proj=aea {_CONIC} +lon_0=-96 +R=1"),
        ProjectionSpec("conic_equal_area", f"+proj=aea {_CONIC} +lon_0=0 +R=1"),
        ProjectionSpec("conic_equidistant", f"+proj=eqdc {_CONIC} +lon_0=0 +R=1"),
    )
}

PROJECTION_ALIASES: dict[str, str] = {
    "geoEquirectangular": "equirectangular",
    "geoMercator": "mercator",
    "geoNaturalEarth1": "natural_earth",
    "geoEqualEarth": "equal_earth",
    "geoOrthographic": "orthographic",
    "geoStereographic": "stereographic",
    "geoGnomonic": "gnomonic",
    "geoAzimuthalEqualArea": "azimuthal_equal_area",
    "geoAzimuthalEquidistant": "azimuthal_equidistant",
    "geoAlbers": "albers",
    "geoConicEqualArea": "conic_equal_area",
    "geoConicEquidistant": "conic_equidistant",
}


def canonical_projection_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError("Expected non-empty string for 'projection_name'")
    key = name.strip()
    key = PROJECTION_ALIASES.get(key, key)
    if key not in PROJECTIONS:
        raise ValueError(
            f"Unknown projection '{name}'. Expected one of: " + ", ".join(sorted(PROJECTIONS))
        )
    return key


def _angular_distance(center: tuple[float, float], lons: np.ndarray, lats: np.ndarray) -> np.ndarray:
    lon0, lat0 = math.radians(center[0]), math.radians(center[1])
    lam = np.radians(lons)
    phi = np.radians(lats)
    cos_d = math.sin(lat0) * np.sin(phi) + math.cos(lat0) * np.cos(phi) * np.cos(lam - lon0)
    return np.degrees(np.arccos(np.clip(cos_d, -1.0, 1.0)))


def _small_circle(center: tuple[float, float], radius_deg: float, steps: int = 720) -> tuple[np.ndarray, np.ndarray]:
    lon0, lat0 = math.radians(center[0]), math.radians(center[1])
    d = math.radians(radius_deg)
    theta = np.linspace(0.0, 2.0 * math.pi, steps, endpoint=False)
    lat = np.arcsin(math.sin(lat0) * math.cos(d) + math.cos(lat0) * math.sin(d) * np.cos(theta))
    lon = lon0 + np.arctan2(
        np.sin(theta) * math.sin(d) * math.cos(lat0),
        math.cos(d) - math.sin(lat0) * np.sin(lat),
    )
    lon_deg = (np.degrees(lon) + 180.0) % 360.0 - 180.0
    return lon_deg, np.degrees(lat)


class ProjectionContext:
    """One projection instantiated for a ``width x height`` screen.

    Fitting mirrors ``fitSize(Sphere)``: the projected extent of the visible sphere is
    scaled uniformly and centred. Screen y grows downwards.
    """

    def __init__(self, name: str, width: int, height: int) -> None:
        self.name = canonical_projection_name(name)
        self.width = width
        self.height = height
        self.spec = PROJECTIONS[self.name]
        self._proj = _require_pyproj_proj()(self.spec.proj)
        self.scale, self.tx, self.ty = self._fit()

    def _visible_sample(self) -> tuple[np.ndarray, np.ndarray]:
        lon_grid, lat_grid = np.meshgrid(np.arange(-180.0, 181.0, 1.0), np.arange(-90.0, 91.0, 1.0))
        lons = lon_grid.ravel()
        lats = lat_grid.ravel()
        if self.spec.lat_limit_deg is not None:
            lats = np.clip(lats, -self.spec.lat_limit_deg, self.spec.lat_limit_deg)
        if self.spec.clip_angle_deg is not None:
            keep = _angular_distance(self.spec.clip_center, lons, lats) <= self.spec.clip_angle_deg
            edge_lons, edge_lats = _small_circle(self.spec.clip_center, self.spec.clip_angle_deg)
            lons = np.concatenate([lons[keep], edge_lons])
            lats = np.concatenate([lats[keep], edge_lats])
        return lons, lats

    def _fit(self) -> tuple[float, float, float]:
        lons, lats = self._visible_sample()
        with np.errstate(invalid="ignore", over="ignore"):
            px, py = self._proj(lons, lats)
        px = np.asarray(px, dtype=float)
        py = np.asarray(py, dtype=float)
        finite = np.isfinite(px) & np.isfinite(py)
        if not finite.any():
            raise ValueError(f"Projection '{self.name}' produced no finite extent")
        x0, x1 = float(px[finite].min()), float(px[finite].max())
        y0, y1 = float(py[finite].min()), float(py[finite].max())
        if x1 - x0 <= 0 or y1 - y0 <= 0:
            raise ValueError(f"Projection '{self.name}' has a degenerate extent")
        k = min(self.width / (x1 - x0), self.height / (y1 - y0))
        tx = (self.width - k * (x0 + x1)) / 2.0
        ty = (self.height + k * (y0 + y1)) / 2.0
        return k, tx, ty

    def forward_many(self, lons: np.ndarray, lats: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        with np.errstate(invalid="ignore", over="ignore"):
            px, py = self._proj(np.asarray(lons, dtype=float), np.asarray(lats, dtype=float))
            xs = self.tx + self.scale * np.asarray(px, dtype=float)
            ys = self.ty - self.scale * np.asarray(py, dtype=float)
        return xs, ys

    def invert_many(self, xs: np.ndarray, ys: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Invert screen points; returns lons, lats and a mask of points inside the outline."""
        xs = np.asarray(xs, dtype=float)
        ys = np.asarray(ys, dtype=float)
        with np.errstate(invalid="ignore", over="ignore"):
            px = (xs - self.tx) / self.scale
            py = (self.ty - ys) / self.scale
            lons, lats = self._proj(px, py, inverse=True)
            lons = np.asarray(lons, dtype=float)
            lats = np.asarray(lats, dtype=float)
            inside = np.isfinite(lons) & np.isfinite(lats)
            inside &= (np.abs(lats) <= 90.0 + _EPS) & (np.abs(lons) <= 180.0 + _EPS)
            if self.spec.lat_limit_deg is not None:
                inside &= np.abs(lats) <= self.spec.lat_limit_deg + _EPS
            if self.spec.clip_angle_deg is not None:
                dist = _angular_distance(self.spec.clip_center, lons, lats)
                inside &= dist <= self.spec.clip_angle_deg + _EPS
            fx, fy = self.forward_many(lons, lats)
            inside &= (np.abs(fx - xs) <= ROUND_TRIP_TOLERANCE_PX) & (np.abs(fy - ys) <= ROUND_TRIP_TOLERANCE_PX)
        return lons, lats, inside

    def invert(self, x: float, y: float) -> tuple[float, float] | None:
        lons, lats, inside = self.invert_many(np.array([x]), np.array([y]))
        if not bool(inside[0]):
            return None
        return (float(lons[0]), float(lats[0]))

    def forward(self, lon: float, lat: float) -> tuple[float, float]:
        xs, ys = self.forward_many(np.array([lon]), np.array([lat]))
        return (float(xs[0]), float(ys[0]))

    def contains_point(self, x: float, y: float) -> bool:
        return self.invert(x, y) is not None


def _require_pyproj_proj() -> Any:
    try:
        from pyproj import Proj
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("pyproj is required for map projections") from exc
    return Proj
