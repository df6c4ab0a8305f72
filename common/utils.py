from __future__ import annotations

from typing import Optional, Deque
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from collections import deque
import time


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_ago(seconds: float, now: Optional[str] = None) -> str:
    """Timestamp `seconds` before `now` (default: current time), same format as iso_now_ms()."""
    ref = parse_iso8601(now) if now else datetime.now(timezone.utc)
    return (ref - timedelta(seconds=seconds)).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso8601(ts: str) -> datetime:
    """Parse a strict ISO-8601 timestamp with optional 'Z'. Naive times are taken as UTC."""
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def seconds_between(earlier: str, later: Optional[str] = None) -> float:
    """Seconds from `earlier` to `later` (default: now). Negative if `earlier` is in the future."""
    t1 = parse_iso8601(later) if later else datetime.now(timezone.utc)
    return (t1 - parse_iso8601(earlier)).total_seconds()


@dataclass(slots=True)
class RateTimer:
    """
    Simple rate tracker for loop diagnostics.

    Usage:
        rt = RateTimer(window=50)
        while True:
            # work...
            hz = rt.tick()
    """
    window: int = 50
    _times: Deque[float] = field(default_factory=deque, init=False, repr=False)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=self.window)

    def tick(self) -> float:
        t = time.perf_counter()
        self._times.append(t)
        return self.rate()

    def rate(self) -> float:
        if len(self._times) < 2:
            return 0.0
        dt = (self._times[-1] - self._times[0]) / (len(self._times) - 1)
        return 0.0 if dt <= 0 else 1.0 / dt


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))
