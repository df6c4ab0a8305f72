from __future__ import annotations

from typing import Iterable, Tuple
import math


# --- Spherical Earth constants ---
_EARTH_R_M = 6371008.8                               # mean Earth radius (m)
_M_PER_DEG = _EARTH_R_M * math.pi / 180.0            # meters per degree of arc (~111195 m)


# -------------------------
# Great-circle & bearings
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on WGS84 sphere approximation."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    # rounding can push `a` a hair above 1 for antipodal points
    return 2 * _EARTH_R_M * math.asin(math.sqrt(min(1.0, a)))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial great-circle bearing from point 1 to point 2 (degrees, 0..360).
    Coincident points give 0.0.
    """
    if lat1 == lat2 and lon1 == lon2:
        return 0.0
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dl = math.radians(lon2 - lon1)
    y = math.sin(dl) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dl)
    return normalize_deg(math.degrees(math.atan2(y, x)))


# -------------------------
# Planar approximations
# -------------------------
def meters_to_degrees(meters: float) -> float:
    """
    Planar meters -> degrees of arc along a great circle.

    Exact for latitude; for longitude it ignores the cos(lat) shrink, so it is
    only a fair approximation at moderate latitudes and radii.
    """
    return float(meters) / _M_PER_DEG


def degrees_to_meters(degrees: float) -> float:
    """Inverse of meters_to_degrees()."""
    return float(degrees) * _M_PER_DEG


def bounding_box(lat: float, lon: float, radius_m: float) -> Tuple[float, float, float, float]:
    """
    Axis-aligned (lat_min, lat_max, lon_min, lon_max) box of half-size radius_m.

    The same degree delta is used on both axes. The box is NOT wrapped at the
    antimeridian nor clamped at the poles: callers there get a box that
    extends past the valid coordinate range and therefore misses points.
    """
    if radius_m < 0:
        raise ValueError("radius_m must be >= 0")
    d = meters_to_degrees(radius_m)
    return (lat - d, lat + d, lon - d, lon + d)


# -------------------------
# Angles
# -------------------------
def normalize_deg(a: float) -> float:
    """Wrap an angle into [0, 360)."""
    b = math.fmod(a, 360.0)
    if b < 0.0:
        b += 360.0
    # fmod of tiny negatives lands on 360.0 after the shift
    return 0.0 if b >= 360.0 else b


def wrap_180(a: float) -> float:
    """Wrap an angle into [-180, 180)."""
    return normalize_deg(a + 180.0) - 180.0


def angle_diff_deg(a: float, b: float) -> float:
    """Signed shortest rotation from a to b, in [-180, 180)."""
    return wrap_180(b - a)


def circular_mean_deg(angles: Iterable[float]) -> float:
    """
    Circular (vector) mean of angles in degrees, result in [0, 360).

    Unlike a linear mean, {359, 1} averages to 0 rather than 180. If the unit
    vectors cancel out (e.g. {0, 180}) the mean is undefined and the last
    angle is returned.
    """
    s = c = 0.0
    last = None
    for a in angles:
        r = math.radians(a)
        s += math.sin(r)
        c += math.cos(r)
        last = a
    if last is None:
        raise ValueError("circular_mean_deg() of an empty sequence")
    if math.hypot(s, c) < 1e-9:
        return normalize_deg(last)
    return normalize_deg(math.degrees(math.atan2(s, c)))
