"""
Orientation fusion: raw accelerometer/magnetometer (or rotation-vector)
samples -> filtered, threshold-gated azimuth/pitch/roll events.

Angles follow the Android SensorManager conventions:
  - rotation matrix rows are the world East, North, Up axes in device coordinates
  - azimuth = atan2(R[0,1], R[1,1]), clockwise from north
  - pitch   = asin(-R[2,1])
  - roll    = atan2(-R[2,0], R[2,2])
"""
from __future__ import annotations

import math
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Protocol, Tuple, Union

import numpy as np

from common.errors import SensorUnavailable
from common.events import Listeners, Subscription
from common.geo import angle_diff_deg, circular_mean_deg, wrap_180
from common.logging_setup import get_logger
from common.types import OrientationSample, RawSensorSample, RotationVectorSample
from common.utils import RateTimer, clamp


log = get_logger("orientation.fusion")

Angles = Tuple[float, float, float]  # (azimuth, pitch, roll) degrees
AnySample = Union[RawSensorSample, RotationVectorSample]

# Below these magnitudes the rotation matrix is meaningless
# (free fall, or magnetic field parallel to gravity).
_MIN_ACCEL_MPS2 = 0.1 * 9.80665
_MIN_CROSS = 0.1


class SensorProvider(Protocol):
    """Push-style raw sensor source."""

    def subscribe(self, callback: Callable[[AnySample], None]) -> Any:
        """Start delivering samples; raise SensorUnavailable if the sensor is absent."""

    def unsubscribe(self, handle: Any) -> None:
        """Stop delivering samples for `handle`."""


# -------------------------
# Raw sample -> angles
# -------------------------
def rotation_matrix(accel: Tuple[float, float, float], mag: Tuple[float, float, float]) -> Optional[np.ndarray]:
    """
    Device->world rotation matrix from gravity and geomagnetic vectors,
    or None when the inputs are degenerate.
    """
    A = np.asarray(accel, dtype=float)
    E = np.asarray(mag, dtype=float)
    norm_a = float(np.linalg.norm(A))
    if norm_a < _MIN_ACCEL_MPS2:
        return None
    H = np.cross(E, A)
    norm_h = float(np.linalg.norm(H))
    if norm_h < _MIN_CROSS:
        return None
    H /= norm_h
    A /= norm_a
    M = np.cross(A, H)
    return np.vstack([H, M, A])


def quaternion_matrix(quat: Tuple[float, float, float, float]) -> np.ndarray:
    """Rotation matrix of a unit quaternion (w, x, y, z)."""
    w, x, y, z = quat
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
            [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
            [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
        ],
        dtype=float,
    )


def matrix_angles(R: np.ndarray) -> Angles:
    """(azimuth [0,360), pitch, roll) in degrees from a device->world rotation matrix."""
    az = math.degrees(math.atan2(R[0, 1], R[1, 1])) % 360.0
    pitch = math.degrees(math.asin(clamp(-R[2, 1], -1.0, 1.0)))
    roll = math.degrees(math.atan2(-R[2, 0], R[2, 2]))
    return (0.0 if az >= 360.0 else az, pitch, roll)


def sample_angles(sample: AnySample) -> Optional[Angles]:
    if isinstance(sample, RotationVectorSample):
        return matrix_angles(quaternion_matrix(sample.quat))
    R = rotation_matrix(sample.accel, sample.mag)
    return None if R is None else matrix_angles(R)


# -------------------------
# Engine
# -------------------------
class SensorFusionEngine:
    """
    Low-pass filtered, rate-limited orientation stream.

    Each raw sample is converted to angles and pushed into a moving window of
    the last `window` samples; the estimate is the circular mean of each axis
    over that window. A new estimate is only published when at least one axis
    moved by its minimum delta since the last published one.

    Filter state is only touched from the provider callback, under `_lock`.
    stop() takes the same lock, so once it returns no callback is running
    and none will start.
    """

    def __init__(
        self,
        provider: Optional[SensorProvider] = None,
        *,
        min_azimuth_delta: float = 1.0,
        min_pitch_delta: float = 1.0,
        min_roll_delta: float = 1.0,
        window: int = 10,
    ):
        self._provider = provider
        self._lock = threading.RLock()
        self._listeners = Listeners("orientation", log)
        self._error_listeners = Listeners("orientation.errors", log)
        self._handle: Any = None
        self._running = False
        self._window: Deque[Angles] = deque(maxlen=10)
        self._last: Optional[OrientationSample] = None
        self._rate = RateTimer(window=100)
        self.error: Optional[SensorUnavailable] = None
        self.configure(min_azimuth_delta, min_pitch_delta, min_roll_delta, window=window)

    @classmethod
    def from_config(cls, provider: Optional[SensorProvider], cfg: Dict) -> "SensorFusionEngine":
        o = cfg.get("orientation", cfg)
        return cls(
            provider,
            min_azimuth_delta=float(o.get("min_azimuth_delta_deg", 1.0)),
            min_pitch_delta=float(o.get("min_pitch_delta_deg", 1.0)),
            min_roll_delta=float(o.get("min_roll_delta_deg", 1.0)),
            window=int(o.get("window", 10)),
        )

    # -------- configuration / lifecycle --------

    def configure(
        self,
        min_azimuth_delta: float = 1.0,
        min_pitch_delta: float = 1.0,
        min_roll_delta: float = 1.0,
        *,
        window: Optional[int] = None,
    ) -> None:
        """Set per-axis notification thresholds (deg) and, optionally, the filter length."""
        deltas = (float(min_azimuth_delta), float(min_pitch_delta), float(min_roll_delta))
        if any(d < 0 or math.isnan(d) for d in deltas):
            raise ValueError("minimum deltas must be >= 0")
        if window is not None and int(window) < 1:
            raise ValueError("window must be >= 1")
        with self._lock:
            self.min_azimuth_delta, self.min_pitch_delta, self.min_roll_delta = deltas
            if window is not None and int(window) != self._window.maxlen:
                self._window = deque(self._window, maxlen=int(window))

    @property
    def window(self) -> int:
        return int(self._window.maxlen or 1)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_sample(self) -> Optional[OrientationSample]:
        return self._last

    @property
    def sample_rate_hz(self) -> float:
        """Observed raw sample rate."""
        return self._rate.rate()

    def start(self) -> bool:
        """
        Subscribe to the provider. Returns False (and reports a SensorUnavailable
        to error subscribers) instead of raising when the sensor is missing.
        """
        with self._lock:
            if self._running:
                return True
            self.error = None
            if self._provider is None:
                return self._fail(SensorUnavailable("no sensor provider configured"))
            self._running = True
            try:
                self._handle = self._provider.subscribe(self.on_sample)
            except SensorUnavailable as e:
                self._running = False
                return self._fail(e)
            except Exception as e:
                self._running = False
                return self._fail(SensorUnavailable(f"sensor subscription failed: {e}"))
        log.info("Orientation stream started", extra={"extra": {
            "window": self.window,
            "min_deltas": [self.min_azimuth_delta, self.min_pitch_delta, self.min_roll_delta],
        }})
        return True

    def stop(self) -> None:
        """Unsubscribe. Safe without start(), idempotent."""
        with self._lock:
            was_running = self._running
            self._running = False
            handle, self._handle = self._handle, None
        if handle is not None and self._provider is not None:
            try:
                self._provider.unsubscribe(handle)
            except Exception:
                log.warning("Sensor unsubscribe failed", exc_info=True)
        if was_running:
            log.info("Orientation stream stopped")

    def reset(self) -> None:
        """Forget the filter window and the last published sample."""
        with self._lock:
            self._window.clear()
            self._last = None

    # -------- subscriptions --------

    def subscribe(self, callback: Callable[[OrientationSample], None]) -> Subscription:
        return self._listeners.add(callback)

    def subscribe_errors(self, callback: Callable[[SensorUnavailable], None]) -> Subscription:
        return self._error_listeners.add(callback)

    # -------- sample path --------

    def on_sample(self, sample: AnySample) -> None:
        """Provider callback; ignored unless the engine is running."""
        with self._lock:
            if not self._running:
                return
            self.process(sample)

    def process(self, sample: AnySample) -> Optional[OrientationSample]:
        """
        Filter one raw sample and publish if it passes the delta gate.
        Returns the published sample, or None when suppressed or dropped.
        Usable directly for offline replay without a provider.
        """
        with self._lock:
            self._rate.tick()
            angles = sample_angles(sample)
            if angles is None:
                log.debug("Dropping degenerate sensor sample", extra={"extra": {"ts": sample.ts}})
                return None
            self._window.append(angles)
            est = self._estimate(sample.ts)
            if not self._should_emit(est):
                return None
            self._last = est
            self._listeners.notify(est)
            return est

    # -------- internals --------

    def _estimate(self, ts: str) -> OrientationSample:
        az = circular_mean_deg(a[0] for a in self._window)
        pitch = wrap_180(circular_mean_deg(a[1] for a in self._window))
        roll = wrap_180(circular_mean_deg(a[2] for a in self._window))
        return OrientationSample(ts=ts, azimuth=az, pitch_deg=pitch, roll_deg=roll)

    def _should_emit(self, est: OrientationSample) -> bool:
        last = self._last
        if last is None:
            return True
        return (
            abs(angle_diff_deg(last.azimuth, est.azimuth)) >= self.min_azimuth_delta
            or abs(angle_diff_deg(last.pitch_deg, est.pitch_deg)) >= self.min_pitch_delta
            or abs(angle_diff_deg(last.roll_deg, est.roll_deg)) >= self.min_roll_delta
        )

    def _fail(self, err: SensorUnavailable) -> bool:
        self.error = err
        log.warning("Orientation sensor unavailable", extra={"extra": {"error": str(err)}})
        self._error_listeners.notify(err)
        return False
