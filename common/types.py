from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace
from typing import Optional, Tuple, Any, Dict, List
import math

from common.errors import StaleLocation
from common.geo import normalize_deg, angle_diff_deg
from common.utils import parse_iso8601, seconds_between


IsoTime = str


def _as_float_tuple(x: Tuple[float, float, float]) -> Tuple[float, float, float]:
    return (float(x[0]), float(x[1]), float(x[2]))


def _check_lat_lon(lat: float, lon: float) -> None:
    if not (-90.0 <= lat <= 90.0) or not (-180.0 <= lon <= 180.0):
        raise ValueError("lat/lon out of range")


@dataclass(slots=True, frozen=True)
class LatLon:
    """Geodetic position: WGS84 degrees, altitude in meters."""
    lat: float
    lon: float
    alt_m: float = 0.0

    def __post_init__(self) -> None:
        _check_lat_lon(self.lat, self.lon)


@dataclass(slots=True, frozen=True)
class Point:
    """
    A point of interest.

    Attributes:
        name: display name.
        lat, lon: WGS84 degrees.
        alt_m: altitude, integer meters.
        description: free text.
        id: identifier assigned by the PointStore; None until stored.

    (lat, lon, alt_m) is the point's identity inside a store: two points with
    the same triple cannot coexist, the later one replaces the earlier.
    """
    name: str
    lat: float
    lon: float
    alt_m: int = 0
    description: str = ""
    id: Optional[int] = None

    def __post_init__(self) -> None:
        _check_lat_lon(self.lat, self.lon)
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "lat", float(self.lat))
        object.__setattr__(self, "lon", float(self.lon))
        object.__setattr__(self, "alt_m", int(round(self.alt_m)))

    @property
    def key(self) -> Tuple[float, float, int]:
        return (self.lat, self.lon, self.alt_m)

    def with_id(self, id: int) -> "Point":
        return replace(self, id=int(id))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class LocationFix:
    """
    Position fix delivered by an external location provider.

    Attributes:
        ts: ISO-8601 (UTC) time the fix was measured.
        lat, lon: WGS84 degrees.
        alt_m: altitude in meters.
        valid: provider-side validity flag; invalid fixes are ignored.
        accuracy_m: optional horizontal accuracy estimate.
        provider: free-form source name ("gps", "network", "mock", ...).
    """
    ts: IsoTime
    lat: float
    lon: float
    alt_m: float = 0.0
    valid: bool = True
    accuracy_m: Optional[float] = None
    provider: str = "gps"

    def __post_init__(self) -> None:
        _check_lat_lon(self.lat, self.lon)
        parse_iso8601(self.ts)  # fail early on malformed timestamps

    @property
    def position(self) -> LatLon:
        return LatLon(self.lat, self.lon, float(self.alt_m))

    def age_s(self, now: Optional[IsoTime] = None) -> float:
        return seconds_between(self.ts, now)

    def is_stale(self, max_age_s: float, now: Optional[IsoTime] = None) -> bool:
        return self.age_s(now) > max_age_s

    def require_fresh(self, max_age_s: float, now: Optional[IsoTime] = None) -> "LocationFix":
        age = self.age_s(now)
        if age > max_age_s:
            raise StaleLocation(f"fix is {age:.1f}s old (max {max_age_s:.0f}s)")
        return self


@dataclass(slots=True)
class RawSensorSample:
    """
    One accelerometer + magnetometer reading in device coordinates
    (x right, y up the screen, z out of the screen).

    Attributes:
        ts: ISO-8601 (UTC) timestamp.
        accel: (ax, ay, az) m/s^2, gravity included.
        mag: (mx, my, mz) micro-tesla.
    """
    ts: IsoTime
    accel: Tuple[float, float, float]
    mag: Tuple[float, float, float]

    def __post_init__(self) -> None:
        self.accel = _as_float_tuple(self.accel)
        self.mag = _as_float_tuple(self.mag)


@dataclass(slots=True)
class RotationVectorSample:
    """Device->world (ENU) rotation as a unit quaternion (w, x, y, z)."""
    ts: IsoTime
    quat: Tuple[float, float, float, float]

    def __post_init__(self) -> None:
        w, x, y, z = (float(v) for v in self.quat)
        n = math.sqrt(w * w + x * x + y * y + z * z)
        if n == 0.0:
            raise ValueError("quaternion must be non-zero")
        self.quat = (w / n, x / n, y / n, z / n)


@dataclass(slots=True)
class OrientationSample:
    """
    Filtered device orientation.

    Attributes:
        ts: ISO-8601 (UTC) timestamp of the newest raw sample behind it.
        azimuth: heading, degrees clockwise from north, [0, 360).
        pitch_deg: rotation about the device x axis, [-180, 180).
        roll_deg: rotation about the device y axis, [-180, 180).
    """
    ts: IsoTime
    azimuth: float
    pitch_deg: float
    roll_deg: float

    def __post_init__(self) -> None:
        self.azimuth = normalize_deg(self.azimuth)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BearingResult:
    """Ephemeral ranking entry: a point seen from the observer."""
    point: Point
    distance_m: float
    bearing_deg: float

    def relative_bearing_deg(self, azimuth: float) -> float:
        """Angle of the point relative to the current heading, [0, 360)."""
        return normalize_deg(self.bearing_deg - azimuth)

    def offset_from_heading_deg(self, azimuth: float) -> float:
        """Signed offset from the heading, [-180, 180); negative is left."""
        return angle_diff_deg(azimuth, self.bearing_deg)


@dataclass(slots=True)
class InsertResult:
    """Outcome of inserting one point."""
    point: Point
    id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.id is not None


@dataclass(slots=True)
class BatchInsertResult:
    """Per-item outcome of a batch insert."""
    results: List[InsertResult] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> List[InsertResult]:
        return [r for r in self.results if not r.ok]

    def legacy_count(self) -> int:
        """Inserted count, or -1 if any item failed (single-sentinel mode)."""
        return -1 if self.failed else self.inserted
