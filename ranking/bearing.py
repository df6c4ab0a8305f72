from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from common.geo import angle_diff_deg, haversine_m, initial_bearing_deg
from common.types import BearingResult, Point


def distance(a, b) -> float:
    """Great-circle distance in meters between two objects with .lat/.lon."""
    return haversine_m(a.lat, a.lon, b.lat, b.lon)


def initial_bearing(observer, target) -> float:
    """Bearing from observer to target, degrees in [0, 360); 0.0 if they coincide."""
    return initial_bearing_deg(observer.lat, observer.lon, target.lat, target.lon)


def _rank_key(r: BearingResult) -> Tuple[float, float, int, int, str]:
    pid = r.point.id
    # unsaved points (id None) sort before stored ones at equal bearing/distance
    return (r.bearing_deg, r.distance_m, 0 if pid is None else 1, pid or 0, r.point.name)


def rank_by_bearing(observer, points: Iterable[Point]) -> List[BearingResult]:
    """
    Bearing/distance of every point seen from `observer`, sorted by bearing,
    then distance, then id, then name. Identical input always yields the
    same order.
    """
    results = [
        BearingResult(point=p, distance_m=distance(observer, p), bearing_deg=initial_bearing(observer, p))
        for p in points
    ]
    results.sort(key=_rank_key)
    return results


def visible_in_fov(results: Sequence[BearingResult], azimuth: float, fov_deg: float) -> List[BearingResult]:
    """
    Subset of ranked results whose bearing lies within +/- fov_deg/2 of the
    heading; keeps the input order.
    """
    if not 0.0 < fov_deg <= 360.0:
        raise ValueError("fov_deg must be in (0, 360]")
    half = fov_deg / 2.0
    if fov_deg >= 360.0:
        return list(results)
    return [r for r in results if abs(angle_diff_deg(azimuth, r.bearing_deg)) <= half]
