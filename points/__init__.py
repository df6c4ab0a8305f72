"""
Points — Point-of-interest store

- PointStore: caller-owned collection backed by an SQLAlchemy engine
  (in-memory SQLite by default, any SQLAlchemy URL otherwise)
- One `points` table with UNIQUE(latitude, longitude, altitude); inserting a
  point at an existing position replaces the stored one
- Planar bounding-box query around a position, name substring search,
  per-item batch inserts (sync or on a single writer thread)
"""
from .store import PointStore

__all__ = ["PointStore"]
