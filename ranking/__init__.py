"""
Ranking — Bearing ordering & location tracking

This package provides:
- Great-circle distance / initial bearing between an observer and points
- rank_by_bearing(): deterministic ordering of points for the overlay
  (bearing, then distance, then id)
- PointTracker: takes location fixes, drops stale ones, queries the point
  store around the observer and re-ranks on a single worker thread
  (latest fix wins)
- A demo service wiring the orientation stream, store and tracker together

Entry point:
    python -m ranking.service --config config/params.yaml --seed-demo-points
"""
from .bearing import distance, initial_bearing, rank_by_bearing, visible_in_fov

__all__ = ["distance", "initial_bearing", "rank_by_bearing", "visible_in_fov"]
