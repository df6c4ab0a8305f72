"""
Unit tests for geodesy and angle helpers (common.geo)
"""

import math
import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.geo import (
    angle_diff_deg,
    bounding_box,
    circular_mean_deg,
    degrees_to_meters,
    haversine_m,
    initial_bearing_deg,
    meters_to_degrees,
    normalize_deg,
    wrap_180,
)


PARIS = (48.8566, 2.3522)
LONDON = (51.5074, -0.1278)


class TestHaversine:
    """Great-circle distance"""

    def test_paris_london(self):
        """Known city pair is ~343.5 km apart"""
        d = haversine_m(*PARIS, *LONDON)
        assert d == pytest.approx(343_500, rel=0.005)

    @pytest.mark.parametrize(
        "a,b",
        [
            (PARIS, LONDON),
            ((0.0, 0.0), (0.0, 179.9)),
            ((-33.86, 151.21), (40.71, -74.0)),
            ((89.9, 10.0), (-89.9, -170.0)),
        ],
    )
    def test_symmetric(self, a, b):
        """distance(a, b) == distance(b, a)"""
        assert haversine_m(*a, *b) == pytest.approx(haversine_m(*b, *a), rel=1e-6)

    def test_zero_for_same_point(self):
        assert haversine_m(*PARIS, *PARIS) == 0.0

    def test_antipodal_does_not_fail(self):
        """Rounding near antipodes must not push asin out of its domain"""
        d = haversine_m(0.0, 0.0, 0.0, 180.0)
        assert d == pytest.approx(math.pi * 6371008.8, rel=1e-9)


class TestInitialBearing:
    """Forward azimuth"""

    @pytest.mark.parametrize(
        "target,expected",
        [
            ((1.0, 0.0), 0.0),
            ((0.0, 1.0), 90.0),
            ((-1.0, 0.0), 180.0),
            ((0.0, -1.0), 270.0),
        ],
    )
    def test_cardinal_directions(self, target, expected):
        assert initial_bearing_deg(0.0, 0.0, *target) == pytest.approx(expected, abs=1e-9)

    def test_coincident_points_give_zero(self):
        """Degenerate case is stable, not NaN"""
        assert initial_bearing_deg(*PARIS, *PARIS) == 0.0

    def test_always_in_range(self):
        """Output stays in [0, 360) over a grid of pairs"""
        for lat1 in (-80.0, -10.0, 0.0, 45.0, 89.0):
            for lon1 in (-179.0, -1e-12, 0.0, 90.0):
                for dlat in (-1.0, -1e-13, 0.0, 1e-13, 1.0):
                    for dlon in (-1.0, -1e-13, 0.0, 1e-13, 1.0):
                        b = initial_bearing_deg(lat1, lon1, lat1 + dlat, lon1 + dlon)
                        assert 0.0 <= b < 360.0


class TestAngles:
    """Angle wrapping and circular statistics"""

    @pytest.mark.parametrize(
        "a,expected",
        [(0.0, 0.0), (360.0, 0.0), (-1.0, 359.0), (725.0, 5.0), (-1e-15, 0.0), (359.5, 359.5)],
    )
    def test_normalize(self, a, expected):
        out = normalize_deg(a)
        assert out == pytest.approx(expected, abs=1e-9)
        assert 0.0 <= out < 360.0

    def test_wrap_180(self):
        assert wrap_180(190.0) == pytest.approx(-170.0)
        assert wrap_180(-190.0) == pytest.approx(170.0)
        assert wrap_180(180.0) == pytest.approx(-180.0)

    def test_angle_diff_takes_short_way(self):
        assert angle_diff_deg(359.0, 1.0) == pytest.approx(2.0)
        assert angle_diff_deg(1.0, 359.0) == pytest.approx(-2.0)
        assert angle_diff_deg(10.0, 200.0) == pytest.approx(-170.0)

    def test_circular_mean_across_north(self):
        """{359, 1} averages to ~0, never 180"""
        m = circular_mean_deg([359.0, 1.0])
        assert min(m, 360.0 - m) < 1e-6

    def test_circular_mean_plain(self):
        assert circular_mean_deg([10.0, 20.0, 30.0]) == pytest.approx(20.0)

    def test_circular_mean_empty(self):
        with pytest.raises(ValueError):
            circular_mean_deg([])

    def test_circular_mean_cancelling_vectors(self):
        """Undefined mean falls back to the latest angle"""
        assert circular_mean_deg([0.0, 180.0]) == pytest.approx(180.0)


class TestPlanar:
    """Meters <-> degrees and the bounding box"""

    def test_one_degree_is_about_111km(self):
        assert degrees_to_meters(1.0) == pytest.approx(111_195, rel=1e-4)
        assert meters_to_degrees(degrees_to_meters(0.25)) == pytest.approx(0.25)

    def test_bounding_box_is_symmetric(self):
        lat_min, lat_max, lon_min, lon_max = bounding_box(48.0, 2.0, 5000)
        d = meters_to_degrees(5000)
        assert (lat_min, lat_max) == pytest.approx((48.0 - d, 48.0 + d))
        assert (lon_min, lon_max) == pytest.approx((2.0 - d, 2.0 + d))

    def test_bounding_box_not_wrapped_at_antimeridian(self):
        """Known limitation: the box runs past 180 instead of wrapping"""
        _, _, _, lon_max = bounding_box(0.0, 179.99, 5000)
        assert lon_max > 180.0

    def test_bounding_box_negative_radius(self):
        with pytest.raises(ValueError):
            bounding_box(0.0, 0.0, -1)
