"""Spherical geometry helpers for (lon, lat) degree coordinates."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Iterable, Sequence

import numpy as np

from .models import CountryFeature, LonLat, Ring

# Rings whose largest longitude gap is smaller than this wrap the whole globe.
_FULL_CIRCLE_GAP_DEG = 10.0
ANTIMERIDIAN_SPAN_DEG = 350.0

_EPS = 1e-6
_EPS2 = 1e-12
_TAU = 2.0 * math.pi
_HALF_PI = math.pi / 2.0
_QUARTER_PI = math.pi / 4.0
# Rings whose vertex cap is wider than this are tested without the cap prefilter.
_MAX_CAP_RAD = math.radians(85.0)
# Points x edges evaluated per block in vectorized containment.
_BLOCK_CELLS = 1 << 18


def wrap_longitude(lon: float) -> float:
    """Map a longitude into (-180, 180]; values already in [-180, 180] are kept."""
    if -180.0 <= lon <= 180.0:
        return lon
    wrapped = ((lon + 180.0) % 360.0) - 180.0
    if wrapped <= -180.0:
        wrapped += 360.0
    return wrapped


def prewrap_high_latitude(lon: float, lat: float, threshold_deg: float = 60.0) -> float:
    """Shift out-of-range longitudes near the poles before the general wrap."""
    if abs(lat) > threshold_deg:
        if lon > 180.0:
            lon -= 360.0
        if lon <= -180.0:
            lon += 360.0
    return lon


def wrap_cell_longitude(lon: float) -> float:
    """Map a longitude into [-180, 180) for grid bucketing."""
    return ((lon + 180.0) % 360.0) - 180.0


def is_valid_coordinate(lon: float, lat: float) -> bool:
    return math.isfinite(lon) and math.isfinite(lat) and abs(lat) <= 90.0


def longitude_variants(lon: float, band_deg: float = 30.0) -> tuple[float, ...]:
    """Longitude plus its +-360 twin when it lies within ``band_deg`` of the antimeridian."""
    edge = 180.0 - band_deg
    if lon > edge:
        return (lon, lon - 360.0)
    if lon < -edge:
        return (lon, lon + 360.0)
    return (lon,)


def geo_distance(a: LonLat, b: LonLat) -> float:
    """Great-circle angle between two (lon, lat) points, in radians."""
    lon1, lat1 = math.radians(a[0]), math.radians(a[1])
    lon2, lat2 = math.radians(b[0]), math.radians(b[1])
    sin_dlat = math.sin((lat2 - lat1) / 2.0)
    sin_dlon = math.sin((lon2 - lon1) / 2.0)
    h = sin_dlat * sin_dlat + math.cos(lat1) * math.cos(lat2) * sin_dlon * sin_dlon
    return 2.0 * math.asin(min(1.0, math.sqrt(h)))


def geo_distance_many(center: LonLat, lons: np.ndarray, lats: np.ndarray) -> np.ndarray:
    """Vectorized :func:`geo_distance` from one center to many points."""
    lon1, lat1 = math.radians(center[0]), math.radians(center[1])
    lon2 = np.radians(lons)
    lat2 = np.radians(lats)
    sin_dlat = np.sin((lat2 - lat1) / 2.0)
    sin_dlon = np.sin((lon2 - lon1) / 2.0)
    h = sin_dlat * sin_dlat + math.cos(lat1) * np.cos(lat2) * sin_dlon * sin_dlon
    return 2.0 * np.arcsin(np.minimum(1.0, np.sqrt(h)))


def lonlat_to_unitvec(lon: float, lat: float) -> tuple[float, float, float]:
    lam = math.radians(lon)
    phi = math.radians(lat)
    cl = math.cos(phi)
    return (cl * math.cos(lam), cl * math.sin(lam), math.sin(phi))


def unitvec_to_lonlat(x: float, y: float, z: float) -> LonLat:
    norm = math.sqrt(x * x + y * y + z * z)
    if norm == 0.0:
        raise ValueError("Cannot convert zero vector to lon/lat")
    lon = math.degrees(math.atan2(y, x))
    lat = math.degrees(math.asin(max(-1.0, min(1.0, z / norm))))
    return (lon, lat)


def _wrap_radians(lam: np.ndarray) -> np.ndarray:
    """Longitudes in radians folded into [-pi, pi]; in-range values are kept."""
    folded = np.sign(lam) * ((np.abs(lam) + math.pi) % _TAU - math.pi)
    return np.where(np.abs(lam) <= math.pi, lam, folded)


def _cartesian(lam: np.ndarray, phi: np.ndarray) -> np.ndarray:
    cos_phi = np.cos(phi)
    return np.stack([cos_phi * np.cos(lam), cos_phi * np.sin(lam), np.sin(phi)], axis=-1)


def _normalized(vectors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    norms = np.linalg.norm(vectors, axis=-1)
    safe = np.where(norms > 0.0, norms, 1.0)
    return vectors / safe[..., None], norms


@dataclass(frozen=True, slots=True)
class GeoBounds:
    """Geographic bounds; ``max_lon < min_lon`` when the extent wraps through 180."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @property
    def lon_span(self) -> float:
        if self.max_lon >= self.min_lon:
            return self.max_lon - self.min_lon
        return self.max_lon - self.min_lon + 360.0

    @property
    def crosses_antimeridian(self) -> bool:
        return self.max_lon < self.min_lon or (self.max_lon - self.min_lon) > ANTIMERIDIAN_SPAN_DEG

    @property
    def is_polar(self) -> bool:
        return abs(self.min_lat) > 80.0 or abs(self.max_lat) > 80.0

    @property
    def lat_center(self) -> float:
        return (self.min_lat + self.max_lat) / 2.0


def geo_bounds(points: Iterable[LonLat]) -> GeoBounds:
    """Smallest longitude arc covering all points, found by dropping the largest gap."""
    lons: set[float] = set()
    min_lat = math.inf
    max_lat = -math.inf
    for lon, lat in points:
        lons.add(wrap_longitude(lon))
        min_lat = min(min_lat, lat)
        max_lat = max(max_lat, lat)
    if not lons:
        raise ValueError("Cannot compute bounds of an empty geometry")

    ordered = sorted(lons)
    wrap_gap = ordered[0] + 360.0 - ordered[-1]
    best_gap = wrap_gap
    best_idx = -1
    for idx in range(len(ordered) - 1):
        gap = ordered[idx + 1] - ordered[idx]
        if gap > best_gap:
            best_gap = gap
            best_idx = idx

    if len(ordered) > 2 and best_gap < _FULL_CIRCLE_GAP_DEG:
        return GeoBounds(-180.0, min_lat, 180.0, max_lat)
    if best_idx < 0:
        return GeoBounds(ordered[0], min_lat, ordered[-1], max_lat)
    return GeoBounds(ordered[best_idx + 1], min_lat, ordered[best_idx], max_lat)


@dataclass(frozen=True, slots=True, eq=False)
class SphericalRing:
    """One closed ring whose edges are great-circle arcs.

    The ring encloses the smaller of the two regions it bounds, whatever its winding.
    Per-edge terms that do not depend on the tested point are computed once.
    """

    lam0: np.ndarray
    lam1: np.ndarray
    delta_forward: np.ndarray
    antimeridian: np.ndarray
    arcs: np.ndarray
    south_inside: bool
    flipped: bool
    moment: np.ndarray
    vertex_sum: np.ndarray
    cap_center: np.ndarray
    cap_cos: float | None
    min_lat: float
    max_lat: float

    @classmethod
    def from_ring(cls, ring: Ring) -> SphericalRing:
        points = list(ring[:-1]) if len(ring) > 1 and ring[0] == ring[-1] else list(ring)
        coords = np.radians(np.asarray(points, dtype=float))
        lam1 = _wrap_radians(coords[:, 0])
        phi1 = coords[:, 1]
        lam0 = np.roll(lam1, 1)
        phi0 = np.roll(phi1, 1)

        delta = lam1 - lam0
        sign = np.where(delta >= 0.0, 1.0, -1.0)
        abs_delta = sign * delta
        antimeridian = abs_delta > math.pi

        half0 = phi0 / 2.0 + _QUARTER_PI
        half1 = phi1 / 2.0 + _QUARTER_PI
        k = np.sin(half0) * np.sin(half1)
        area_sum = float(
            np.sum(np.arctan2(k * sign * np.sin(abs_delta), np.cos(half0) * np.cos(half1) + k * np.cos(abs_delta)))
        )
        angle = float(np.sum(np.where(antimeridian, delta + sign * _TAU, delta)))
        south_inside = angle < -_EPS or (angle < _EPS and area_sum < -_EPS2)
        area = 2.0 * (area_sum + _TAU if area_sum < 0.0 else area_sum)

        start = _cartesian(lam0, phi0)
        end = _cartesian(lam1, phi1)
        cross = np.cross(start, end)
        arcs, norms = _normalized(cross)
        weights = np.arcsin(np.clip(norms, 0.0, 1.0))
        scale = np.where(norms > 0.0, -weights / np.where(norms > 0.0, norms, 1.0), 0.0)
        # Degenerate rings keep the crossing answer; otherwise take the smaller side.
        flipped = area > _TAU and abs(area_sum) > _EPS2
        moment = (scale[:, None] * cross).sum(axis=0)
        if flipped:
            moment = -moment

        vertex_sum = end.sum(axis=0)
        cap_center, cap_norm = _normalized(vertex_sum)
        cap_cos: float | None = None
        if cap_norm > _EPS:
            min_cos = float(np.min(end @ cap_center))
            if min_cos > math.cos(_MAX_CAP_RAD):
                cap_cos = min_cos

        min_lat, max_lat = _edge_latitude_range(start, end, arcs, norms, phi1)
        return cls(
            lam0=lam0,
            lam1=lam1,
            delta_forward=antimeridian ^ (delta >= 0.0),
            antimeridian=antimeridian,
            arcs=arcs,
            south_inside=south_inside,
            flipped=flipped,
            moment=moment,
            vertex_sum=vertex_sum,
            cap_center=cap_center,
            cap_cos=cap_cos,
            min_lat=min_lat,
            max_lat=max_lat,
        )

    def contains(self, lam: np.ndarray, phi: np.ndarray, unit: np.ndarray) -> np.ndarray:
        """Even-odd crossing test for prepared points (radians plus unit vectors)."""
        result = np.zeros(lam.shape, dtype=bool)
        candidates = np.arange(lam.size)
        if self.cap_cos is not None:
            candidates = candidates[unit @ self.cap_center >= self.cap_cos - _EPS2]
        if candidates.size == 0:
            return result

        block = max(1, _BLOCK_CELLS // max(1, self.lam0.size))
        ax, ay, az = self.arcs[:, 0], self.arcs[:, 1], self.arcs[:, 2]
        step = np.where(self.delta_forward, 1, -1)
        arc_sign = np.where(self.delta_forward, -1.0, 1.0)
        off_pole = (ax != 0.0) | (ay != 0.0)
        for first in range(0, candidates.size, block):
            idx = candidates[first : first + block]
            point_lam = lam[idx][:, None]
            point_phi = phi[idx][:, None]
            straddles = self.antimeridian ^ (self.lam0 >= point_lam) ^ (self.lam1 >= point_lam)

            nx = np.sin(point_lam)
            ny = -np.cos(point_lam)
            ix = ny * az
            iy = -nx * az
            iz = nx * ay - ny * ax
            inorm = np.sqrt(ix * ix + iy * iy + iz * iz)
            sin_arc = iz / np.where(inorm > 0.0, inorm, 1.0)
            phi_arc = arc_sign * np.arcsin(np.clip(sin_arc, -1.0, 1.0))
            below = (point_phi > phi_arc) | ((point_phi == phi_arc) & off_pole)

            winding = np.where(straddles & below, step, 0).sum(axis=1)
            result[idx] = self.south_inside ^ ((winding & 1) == 1)
        if self.flipped:
            result[candidates] = ~result[candidates]
        return result


def _edge_latitude_range(
    start: np.ndarray,
    end: np.ndarray,
    arcs: np.ndarray,
    norms: np.ndarray,
    vertex_phi: np.ndarray,
) -> tuple[float, float]:
    """Latitude extent of a ring including the bulge of great-circle edges."""
    min_lat = float(np.degrees(vertex_phi.min()))
    max_lat = float(np.degrees(vertex_phi.max()))
    live = norms > _EPS2
    if not live.any():
        return min_lat, max_lat
    a, b, n = start[live], end[live], arcs[live]
    # Point of each edge's great circle closest to the north pole.
    top = np.array([0.0, 0.0, 1.0]) - n[:, 2:3] * n
    top, top_norms = _normalized(top)
    for apex, northward in ((top, True), (-top, False)):
        on_arc = (
            (np.einsum("ij,ij->i", np.cross(a, apex), n) >= 0.0)
            & (np.einsum("ij,ij->i", np.cross(apex, b), n) >= 0.0)
            & (top_norms > _EPS2)
        )
        if not on_arc.any():
            continue
        reach = np.degrees(np.arcsin(np.clip(apex[on_arc, 2], -1.0, 1.0)))
        if northward:
            max_lat = max(max_lat, float(reach.max()))
        else:
            min_lat = min(min_lat, float(reach.min()))
    return min_lat, max_lat


@dataclass(frozen=True, slots=True, eq=False)
class SphericalShape:
    """A country as polygons of spherical rings; rings of one polygon combine even-odd."""

    polygons: tuple[tuple[SphericalRing, ...], ...]

    @property
    def min_lat(self) -> float:
        return min(ring.min_lat for rings in self.polygons for ring in rings)

    @property
    def max_lat(self) -> float:
        return max(ring.max_lat for rings in self.polygons for ring in rings)

    def contains_many(self, lons: Sequence[float] | np.ndarray, lats: Sequence[float] | np.ndarray) -> np.ndarray:
        lam = _wrap_radians(np.radians(np.asarray(lons, dtype=float)))
        phi = np.radians(np.asarray(lats, dtype=float))
        phi = np.where(phi >= _HALF_PI, _HALF_PI + _EPS, np.where(phi <= -_HALF_PI, -_HALF_PI - _EPS, phi))
        unit = _cartesian(lam, phi)
        result = np.zeros(lam.shape, dtype=bool)
        for rings in self.polygons:
            inside = np.zeros(lam.shape, dtype=bool)
            for ring in rings:
                inside ^= ring.contains(lam, phi, unit)
            result |= inside
        return result

    def contains(self, lon: float, lat: float) -> bool:
        return bool(self.contains_many([lon], [lat])[0])


def build_shape(feature: CountryFeature) -> SphericalShape:
    """Precompute the spherical rings of a normalized country."""
    return SphericalShape(
        polygons=tuple(tuple(SphericalRing.from_ring(ring) for ring in polygon) for polygon in feature.polygons)
    )


def contains(shape: SphericalShape, lon: float, lat: float) -> bool:
    return shape.contains(lon, lat)


def shape_bounds(feature: CountryFeature, shape: SphericalShape) -> GeoBounds:
    """:func:`geo_bounds` of the vertices, widened to the latitude reach of the edges."""
    bounds = geo_bounds(feature.iter_points())
    return replace(
        bounds,
        min_lat=min(bounds.min_lat, shape.min_lat),
        max_lat=max(bounds.max_lat, shape.max_lat),
    )


def spherical_centroid(shape: SphericalShape) -> LonLat:
    """Area-weighted centroid on the sphere; holes subtract from their shell.

    Falls back to the mean vertex direction when the area moment vanishes.
    """
    moment = np.zeros(3)
    for rings in shape.polygons:
        shell, *holes = rings
        moment += shell.moment
        for hole in holes:
            moment -= hole.moment
    if np.linalg.norm(moment) < _EPS2:
        moment = sum((ring.vertex_sum for rings in shape.polygons for ring in rings), np.zeros(3))
    return unitvec_to_lonlat(float(moment[0]), float(moment[1]), float(moment[2]))
