from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from common.errors import QueryStorageFailure, StaleLocation
from common.events import Listeners, Subscription
from common.logging_setup import get_logger
from common.types import BearingResult, IsoTime, LatLon, LocationFix, Point
from points.store import PointStore
from ranking.bearing import distance, rank_by_bearing


log = get_logger("ranking.tracker")


@dataclass(slots=True)
class TrackerStatus:
    """Location status for the overlay: "waiting" (no usable fix) or "located"."""
    state: str
    age_s: Optional[float] = None
    fix: Optional[LocationFix] = None


class PointTracker:
    """
    Location fix -> store query -> bearing ranking.

    Policy:
      - fixes flagged invalid or older than max_age_s are dropped silently
      - the store is queried again only after moving more than
        reload_distance_m from the last query position
      - points are re-ranked only after moving more than recalc_distance_m
        from the last ranking position (or right after a reload)

    on_location() never blocks: cycles run one at a time on a worker thread.
    A fix that arrives while a cycle is running replaces any fix still
    waiting, so only the latest one is processed next.
    """

    def __init__(
        self,
        store: PointStore,
        *,
        max_age_s: float = 180.0,
        search_radius_m: float = 10000.0,
        reload_distance_m: float = 500.0,
        recalc_distance_m: float = 10.0,
    ):
        self.store = store
        self.max_age_s = float(max_age_s)
        self.search_radius_m = float(search_radius_m)
        self.reload_distance_m = float(reload_distance_m)
        self.recalc_distance_m = float(recalc_distance_m)

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tracker")
        self._lock = threading.Lock()
        self._pending: Optional[LocationFix] = None
        self._busy = False
        self._idle = threading.Event()
        self._idle.set()
        self._closed = False

        self._location_listeners = Listeners("location", log)
        self._ranking_listeners = Listeners("ranking", log)
        self._error_listeners = Listeners("tracker.errors", log)

        self._last_fix: Optional[LocationFix] = None
        # worker-owned state
        self._points: Optional[List[Point]] = None
        self._query_pos: Optional[LatLon] = None
        self._rank_pos: Optional[LatLon] = None
        self._ranking: List[BearingResult] = []
        self._force_reload = False
        self.cycles = 0
        self.reloads = 0

    @classmethod
    def from_config(cls, store: PointStore, cfg: Dict) -> "PointTracker":
        t = cfg.get("tracking", cfg)
        return cls(
            store,
            max_age_s=float(t.get("max_age_s", 180.0)),
            search_radius_m=float(t.get("search_radius_m", 10000.0)),
            reload_distance_m=float(t.get("reload_distance_m", 500.0)),
            recalc_distance_m=float(t.get("recalc_distance_m", 10.0)),
        )

    # -------- subscriptions --------

    def subscribe_location(self, callback: Callable[[LocationFix], None]) -> Subscription:
        """Accepted (fresh, valid) fixes, delivered on the provider's thread."""
        return self._location_listeners.add(callback)

    def subscribe_ranking(self, callback: Callable[[LatLon, List[BearingResult]], None]) -> Subscription:
        """(observer, ranked points) after every re-ranking, delivered on the worker thread."""
        return self._ranking_listeners.add(callback)

    def subscribe_errors(self, callback: Callable[[QueryStorageFailure], None]) -> Subscription:
        return self._error_listeners.add(callback)

    # -------- inputs --------

    def on_location(self, fix: LocationFix, now: Optional[IsoTime] = None) -> bool:
        """
        Location provider callback. Returns True if the fix was accepted
        (which does not mean a query or ranking will follow).
        """
        if self._closed:
            return False
        if not fix.valid:
            log.debug("Ignoring invalid fix", extra={"extra": {"ts": fix.ts, "provider": fix.provider}})
            return False
        try:
            fix.require_fresh(self.max_age_s, now)
        except StaleLocation as e:
            log.debug("Discarding stale fix", extra={"extra": {"ts": fix.ts, "reason": str(e)}})
            return False

        self._last_fix = fix
        self._location_listeners.notify(fix)

        with self._lock:
            if self._closed:
                return False
            self._pending = fix
            if self._busy:
                return True
            self._busy = True
            self._idle.clear()
            try:
                self._executor.submit(self._drain)
            except RuntimeError:
                # executor already shut down
                self._pending = None
                self._busy = False
                self._idle.set()
                return False
        return True

    def refresh(self) -> None:
        """Reload points from the store on the next cycle (e.g. after an import)."""
        self._force_reload = True

    # -------- outputs --------

    @property
    def ranking(self) -> List[BearingResult]:
        return list(self._ranking)

    @property
    def last_fix(self) -> Optional[LocationFix]:
        return self._last_fix

    def status(self, now: Optional[IsoTime] = None) -> TrackerStatus:
        fix = self._last_fix
        if fix is None or fix.is_stale(self.max_age_s, now):
            return TrackerStatus(state="waiting")
        return TrackerStatus(state="located", age_s=fix.age_s(now), fix=fix)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is running or queued."""
        return self._idle.wait(timeout)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)
        self._location_listeners.clear()
        self._ranking_listeners.clear()
        self._error_listeners.clear()

    # -------- worker --------

    def _drain(self) -> None:
        while True:
            with self._lock:
                fix, self._pending = self._pending, None
                if fix is None:
                    self._busy = False
                    self._idle.set()
                    return
            try:
                self._cycle(fix)
            except Exception:
                log.exception("Tracking cycle failed", extra={"extra": {"ts": fix.ts}})

    def _cycle(self, fix: LocationFix) -> None:
        pos = fix.position
        self.cycles += 1
        reloaded = False
        if (
            self._points is None
            or self._force_reload
            or distance(self._query_pos, pos) > self.reload_distance_m
        ):
            self._force_reload = False
            try:
                pts = self.store.query_around(pos, self.search_radius_m)
            except QueryStorageFailure as e:
                log.warning("Point query failed", extra={"extra": {"error": str(e)}})
                self._error_listeners.notify(e)
                return
            except RuntimeError as e:
                # store closed underneath the tracker
                err = QueryStorageFailure(f"point store unavailable: {e}")
                log.warning("Point query failed", extra={"extra": {"error": str(err)}})
                self._error_listeners.notify(err)
                return
            self._points, self._query_pos = pts, pos
            reloaded = True
            self.reloads += 1
            log.info("Loaded points around location", extra={"extra": {
                "lat": pos.lat, "lon": pos.lon, "radius_m": self.search_radius_m, "found": len(pts),
            }})

        if reloaded or self._rank_pos is None or distance(self._rank_pos, pos) > self.recalc_distance_m:
            ranked = rank_by_bearing(pos, self._points or [])
            self._rank_pos, self._ranking = pos, ranked
            log.debug("Re-ranked points", extra={"extra": {"points": len(ranked)}})
            self._ranking_listeners.notify(pos, ranked)
