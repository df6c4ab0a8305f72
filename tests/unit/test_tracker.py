"""
Unit tests for the location -> query -> ranking tracker
"""

import os
import sys
import threading
from unittest.mock import MagicMock

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.errors import QueryStorageFailure
from common.types import LocationFix, Point
from common.utils import iso_ago, iso_now_ms
from points.store import PointStore
from ranking.tracker import PointTracker


LAT, LON = 45.9237, 6.8694
# ~11.1 m of latitude
STEP = 0.0001

PEAKS = [
    Point(name="Mont Blanc", lat=45.8326, lon=6.8652, alt_m=4808, id=1),
    Point(name="Le Brevent", lat=45.9339, lon=6.8371, alt_m=2525, id=2),
]


def fix(dlat=0.0, ts=None, valid=True):
    return LocationFix(ts=ts or iso_now_ms(), lat=LAT + dlat, lon=LON, alt_m=1035, valid=valid)


@pytest.fixture
def store():
    s = MagicMock(spec=PointStore)
    s.query_around.return_value = list(PEAKS)
    return s


@pytest.fixture
def tracker(store):
    t = PointTracker(store)
    yield t
    t.close()


class TestFixFiltering:
    """Which fixes are accepted"""

    def test_stale_fix_is_dropped(self, tracker, store):
        """A fix older than three minutes never reaches the store"""
        assert tracker.on_location(fix(ts=iso_ago(200))) is False
        assert tracker.wait_idle(5.0)
        store.query_around.assert_not_called()
        assert tracker.status().state == "waiting"

    def test_invalid_fix_is_dropped(self, tracker, store):
        assert tracker.on_location(fix(valid=False)) is False
        store.query_around.assert_not_called()
        assert tracker.last_fix is None

    def test_fresh_fix_queries_and_ranks(self, tracker, store):
        rankings = []
        tracker.subscribe_ranking(lambda obs, ranked: rankings.append((obs, ranked)))
        assert tracker.on_location(fix()) is True
        assert tracker.wait_idle(5.0)
        store.query_around.assert_called_once()
        center, radius = store.query_around.call_args[0]
        assert (center.lat, center.lon) == (LAT, LON)
        assert radius == 10000.0
        assert len(rankings) == 1
        obs, ranked = rankings[0]
        assert obs.lat == LAT
        # Mont Blanc is due south, Le Brevent roughly west-north-west
        assert [r.point.name for r in ranked] == ["Mont Blanc", "Le Brevent"]
        assert tracker.ranking == ranked

    def test_accepted_fixes_are_passed_through(self, tracker):
        seen = []
        tracker.subscribe_location(seen.append)
        f = fix()
        tracker.on_location(f)
        tracker.on_location(fix(ts=iso_ago(500)))
        assert seen == [f]

    def test_status(self, tracker):
        now = iso_now_ms()
        assert tracker.status(now).state == "waiting"
        tracker.on_location(fix(ts=iso_ago(30, now)), now=now)
        st = tracker.status(now)
        assert st.state == "located"
        assert st.age_s == pytest.approx(30.0, abs=0.01)
        # the same fix goes stale once time moves on
        assert tracker.status(iso_ago(-200, now)).state == "waiting"


class TestMovementThresholds:
    """Reload after 500 m, re-rank after 10 m"""

    def test_small_moves_do_nothing(self, tracker, store):
        rankings = []
        tracker.subscribe_ranking(lambda obs, ranked: rankings.append(obs))
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        tracker.on_location(fix(dlat=STEP * 0.5))  # ~5.6 m
        tracker.wait_idle(5.0)
        assert store.query_around.call_count == 1
        assert len(rankings) == 1
        assert tracker.cycles == 2

    def test_medium_move_reranks_without_query(self, tracker, store):
        rankings = []
        tracker.subscribe_ranking(lambda obs, ranked: rankings.append(obs))
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        tracker.on_location(fix(dlat=STEP * 2))  # ~22 m
        tracker.wait_idle(5.0)
        assert store.query_around.call_count == 1
        assert len(rankings) == 2
        assert rankings[1].lat == pytest.approx(LAT + STEP * 2)

    def test_large_move_reloads(self, tracker, store):
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        tracker.on_location(fix(dlat=STEP * 60))  # ~667 m
        tracker.wait_idle(5.0)
        assert store.query_around.call_count == 2
        assert tracker.reloads == 2

    def test_reload_distance_measured_from_last_query(self, tracker, store):
        """Many small steps add up to a reload"""
        for i in range(6):
            tracker.on_location(fix(dlat=STEP * 10 * i))  # ~111 m apart
            tracker.wait_idle(5.0)
        # 0 m -> query; 555 m from the first query -> second query
        assert store.query_around.call_count == 2

    def test_refresh_forces_reload(self, tracker, store):
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        tracker.refresh()
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        assert store.query_around.call_count == 2


class TestConcurrency:
    """Non-blocking input, latest fix wins"""

    def test_latest_pending_fix_wins(self, store):
        entered = threading.Event()
        release = threading.Event()
        centers = []

        def slow_query(center, radius):
            centers.append(center)
            entered.set()
            release.wait(5.0)
            return list(PEAKS)

        store.query_around.side_effect = slow_query
        t = PointTracker(store)
        try:
            t.on_location(fix())
            assert entered.wait(5.0)
            # both arrive while the first cycle is blocked in the store
            t.on_location(fix(dlat=STEP * 100))
            t.on_location(fix(dlat=STEP * 200))
            release.set()
            assert t.wait_idle(5.0)
        finally:
            t.close()
        assert t.cycles == 2
        assert [round(c.lat, 4) for c in centers] == [round(LAT, 4), round(LAT + STEP * 200, 4)]

    def test_on_location_does_not_block(self, store):
        release = threading.Event()
        store.query_around.side_effect = lambda c, r: release.wait(5.0) and list(PEAKS)
        t = PointTracker(store)
        try:
            assert t.on_location(fix()) is True
            assert t.wait_idle(0.05) is False
            release.set()
            assert t.wait_idle(5.0)
        finally:
            t.close()


class TestFailures:
    """Store errors go to error subscribers"""

    def test_query_failure_is_reported(self, tracker, store):
        store.query_around.side_effect = QueryStorageFailure("query_around failed: disk I/O error")
        errors = []
        rankings = []
        tracker.subscribe_errors(errors.append)
        tracker.subscribe_ranking(lambda obs, ranked: rankings.append(ranked))
        tracker.on_location(fix())
        assert tracker.wait_idle(5.0)
        assert len(errors) == 1
        assert isinstance(errors[0], QueryStorageFailure)
        assert rankings == []

    def test_next_fix_retries_after_failure(self, tracker, store):
        store.query_around.side_effect = [QueryStorageFailure("boom"), list(PEAKS)]
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        tracker.on_location(fix())
        tracker.wait_idle(5.0)
        assert store.query_around.call_count == 2
        assert len(tracker.ranking) == 2

    def test_closed_tracker_ignores_fixes(self, store):
        t = PointTracker(store)
        t.close()
        assert t.on_location(fix()) is False
        store.query_around.assert_not_called()

    def test_closed_store_is_reported(self):
        """A store closed under a live tracker surfaces as QueryStorageFailure"""
        real = PointStore("sqlite://").open()
        real.close()
        t = PointTracker(real)
        errors = []
        t.subscribe_errors(errors.append)
        try:
            assert t.on_location(fix()) is True
            assert t.wait_idle(5.0)
        finally:
            t.close()
        assert len(errors) == 1
        assert isinstance(errors[0], QueryStorageFailure)
        assert t.ranking == []

    def test_fix_after_worker_shutdown_leaves_tracker_idle(self, store):
        """If the worker pool is already gone, on_location refuses the fix and never wedges wait_idle"""
        t = PointTracker(store)
        t._executor.shutdown(wait=True)
        try:
            assert t.on_location(fix()) is False
            assert t.wait_idle(1.0)
            store.query_around.assert_not_called()
        finally:
            t.close()

    def test_close_racing_fixes_never_wedges(self, store):
        t = PointTracker(store)
        stop = threading.Event()

        def feed():
            i = 0
            while not stop.is_set():
                t.on_location(fix(dlat=STEP * 100 * (i % 2)))
                i += 1

        feeders = [threading.Thread(target=feed) for _ in range(4)]
        for th in feeders:
            th.start()
        t.close()
        stop.set()
        for th in feeders:
            th.join(timeout=5.0)
        assert t.wait_idle(5.0)
        assert t.on_location(fix()) is False


class TestConfig:
    def test_from_config(self, store):
        cfg = {"tracking": {"max_age_s": 60, "search_radius_m": 2000, "reload_distance_m": 100, "recalc_distance_m": 5}}
        t = PointTracker.from_config(store, cfg)
        try:
            assert (t.max_age_s, t.search_radius_m, t.reload_distance_m, t.recalc_distance_m) == (60.0, 2000.0, 100.0, 5.0)
        finally:
            t.close()
