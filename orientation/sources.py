from __future__ import annotations

import csv
import math
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Tuple

import numpy as np

from common.errors import SensorUnavailable
from common.logging_setup import get_logger
from common.types import RawSensorSample
from common.utils import iso_now_ms


log = get_logger("orientation.sources")

CSV_HEADER = ["ts", "dt", "ax", "ay", "az", "mx", "my", "mz"]


@dataclass
class RawCSVSource:
    """
    Replay accelerometer + magnetometer from a CSV file with columns:
    ts, dt, ax, ay, az, mx, my, mz.
    If realtime=True, sleeps dt between samples; else yields as fast as possible.
    """
    path: str
    realtime: bool = False
    scale_dt: float = 1.0  # multiply dt by this factor (e.g., 0.5 = 2x speed)

    def samples(self) -> Iterator[RawSensorSample]:
        # checked here rather than inside the generator so a missing file fails at subscribe time
        if not Path(self.path).exists():
            raise FileNotFoundError(f"Sensor CSV not found: {self.path}")
        return self._rows()

    def _rows(self) -> Iterator[RawSensorSample]:
        with open(self.path, newline="") as f:
            r = csv.DictReader(f)
            for row in r:
                dt = float(row.get("dt") or "0.02") * float(self.scale_dt)
                ts = row.get("ts") or iso_now_ms()
                accel = (float(row.get("ax", "0.0")), float(row.get("ay", "0.0")), float(row.get("az", "0.0")))
                mag = (float(row.get("mx", "0.0")), float(row.get("my", "0.0")), float(row.get("mz", "0.0")))
                yield RawSensorSample(ts=ts, accel=accel, mag=mag)
                if self.realtime and dt > 0:
                    time.sleep(dt)


@dataclass
class RawSyntheticSource:
    """
    Procedural accelerometer/magnetometer generator for a device held flat,
    screen up, turning in place.

    Args:
        rate_hz: sample rate (e.g., 50 Hz)
        heading_deg: initial heading of the device y axis
        yaw_rate_dps: constant turn rate (deg/s), clockwise positive
        field_ut: total geomagnetic field strength (micro-tesla)
        inclination_deg: magnetic dip, positive pointing down (northern hemisphere)
        accel_noise_mps2: accelerometer white noise std
        mag_noise_ut: magnetometer white noise std
        seed: RNG seed
        realtime: pace output at rate_hz
    """
    rate_hz: int = 50
    heading_deg: float = 0.0
    yaw_rate_dps: float = 0.0
    field_ut: float = 48.0
    inclination_deg: float = 60.0
    accel_noise_mps2: float = 0.05
    mag_noise_ut: float = 0.4
    gravity_mps2: float = 9.80665
    seed: int = 1234
    realtime: bool = False

    def samples(self, duration_s: Optional[float] = None) -> Iterator[RawSensorSample]:
        dt = 1.0 / max(1, self.rate_hz)
        rng = np.random.default_rng(self.seed)
        inc = math.radians(self.inclination_deg)
        h = self.field_ut * math.cos(inc)
        v = self.field_ut * math.sin(inc)
        n = 0
        start = time.perf_counter()
        while duration_s is None or n * dt < duration_s:
            t = n * dt
            yaw = math.radians(self.heading_deg + self.yaw_rate_dps * t)
            # north projected on device axes: x = -sin(yaw), y = cos(yaw); field dips below the screen
            mag = np.array([-h * math.sin(yaw), h * math.cos(yaw), -v]) + rng.normal(0, self.mag_noise_ut, size=3)
            accel = np.array([0.0, 0.0, self.gravity_mps2]) + rng.normal(0, self.accel_noise_mps2, size=3)
            yield RawSensorSample(
                ts=iso_now_ms(),
                accel=(float(accel[0]), float(accel[1]), float(accel[2])),
                mag=(float(mag[0]), float(mag[1]), float(mag[2])),
            )
            n += 1
            if self.realtime:
                sleep_s = start + n * dt - time.perf_counter()
                if sleep_s > 0:
                    time.sleep(sleep_s)


def write_raw_csv(path: str, samples: Iterable[RawSensorSample], max_rows: int = 0, dt: float = 0.02) -> int:
    """
    Write a raw sensor stream to CSV. If max_rows > 0, stops after that many rows.
    Returns the number of rows written.
    """
    n = 0
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", newline="") as f:
        w = csv.writer(f)
        w.writerow(CSV_HEADER)
        for s in samples:
            w.writerow([s.ts, f"{dt:.6f}",
                        f"{s.accel[0]:.6f}", f"{s.accel[1]:.6f}", f"{s.accel[2]:.6f}",
                        f"{s.mag[0]:.6f}", f"{s.mag[1]:.6f}", f"{s.mag[2]:.6f}"])
            n += 1
            if max_rows > 0 and n >= max_rows:
                break
    return n


class IteratorSensorProvider:
    """
    Sensor provider that pumps samples from an iterable on a daemon thread.

    `samples` is either an iterable or a zero-argument factory returning one;
    the factory is called on every subscribe(), so a CSV source can be replayed
    again after a stop/start cycle. Errors opening the stream are reported as
    SensorUnavailable.
    """

    def __init__(self, samples: Any, *, available: bool = True, name: str = "sensor"):
        self._samples = samples
        self.available = available
        self.name = name
        self._lock = threading.Lock()
        self._pumps: Dict[int, Tuple[threading.Thread, threading.Event]] = {}
        self._next = 0

    def subscribe(self, callback: Callable[[RawSensorSample], None]) -> int:
        if not self.available:
            raise SensorUnavailable(f"{self.name}: sensor not present")
        try:
            src = self._samples() if callable(self._samples) else self._samples
            it = iter(src)
        except (OSError, ValueError) as e:
            raise SensorUnavailable(f"{self.name}: {e}") from e

        stop = threading.Event()
        with self._lock:
            self._next += 1
            handle = self._next
            t = threading.Thread(
                target=self._pump, args=(handle, it, callback, stop),
                name=f"{self.name}-pump-{handle}", daemon=True,
            )
            self._pumps[handle] = (t, stop)
        t.start()
        return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            entry = self._pumps.pop(handle, None)
        if entry is None:
            return
        t, stop = entry
        stop.set()
        if t is not threading.current_thread():
            t.join(timeout=1.0)

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for every pump to drain its iterator (finite sources only)."""
        with self._lock:
            threads = [t for t, _ in self._pumps.values()]
        for t in threads:
            t.join(timeout)

    def _pump(self, handle: int, it: Iterator[RawSensorSample], callback: Callable, stop: threading.Event) -> None:
        count = 0
        try:
            for s in it:
                if stop.is_set():
                    break
                callback(s)
                count += 1
        except Exception:
            log.exception("Sensor stream failed", extra={"extra": {"provider": self.name, "samples": count}})
        log.debug("Sensor pump finished", extra={"extra": {"provider": self.name, "handle": handle, "samples": count}})
