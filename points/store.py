from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import create_engine, delete, func, insert, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from common.errors import InsertFailure, QueryStorageFailure
from common.geo import bounding_box
from common.logging_setup import get_logger
from common.types import BatchInsertResult, InsertResult, Point
from points.models import Base, PointRecord, point_values, row_to_point


log = get_logger("points.store")

_points = PointRecord.__table__


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def _ensure_sqlite_dir(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    if not url.startswith("sqlite") or _is_memory_url(url):
        return
    db = make_url(url).database
    if db:
        Path(db).parent.mkdir(parents=True, exist_ok=True)


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PointStore:
    """
    Caller-owned collection of points of interest on top of an SQLAlchemy engine.

        store = PointStore("sqlite:///data/points.db").open()
        ...
        store.close()

    or as a context manager. The default URL keeps everything in memory.

    Concurrency:
      - writes (insert, batches, delete, clear) hold a writer lock for their
        whole duration, so batches never interleave; async batches run on a
        single writer thread
      - every single transaction or read holds a short transaction lock, so a
        reader waits at most for one insert, never for a whole batch
      - reads see committed data only
    """

    def __init__(self, url: str = "sqlite://", *, echo: bool = False, reader_threads: int = 2):
        self.url = url
        self.echo = echo
        self.reader_threads = reader_threads
        self._engine: Optional[Engine] = None
        self._write_lock = threading.Lock()
        self._tx_lock = threading.Lock()
        self._writer: Optional[ThreadPoolExecutor] = None
        self._reader: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_config(cls, cfg: Dict) -> "PointStore":
        return cls(cfg.get("points", {}).get("db_url", "sqlite://"))

    # -------- lifecycle --------

    def open(self) -> "PointStore":
        """
        Connect and create the table if needed. Idempotent.
        Raises QueryStorageFailure if the database cannot be opened; the store
        is then left closed and open() may be retried.
        """
        if self._engine is not None:
            return self
        kwargs: Dict = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if _is_memory_url(self.url):
                # one shared connection, otherwise every checkout sees a fresh empty database
                kwargs["poolclass"] = StaticPool
        try:
            _ensure_sqlite_dir(self.url)
            self._engine = create_engine(self.url, **kwargs)
            self.ensure_schema()
            n = self.count()
        except (OSError, SQLAlchemyError, QueryStorageFailure) as e:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None
            log.error("Point store open failed", extra={"extra": {"url": self._safe_url(), "error": str(e)}})
            if isinstance(e, QueryStorageFailure):
                raise
            raise QueryStorageFailure(f"cannot open point store {self._safe_url()}: {e}") from e
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="points-writer")
        self._reader = ThreadPoolExecutor(max_workers=max(1, self.reader_threads), thread_name_prefix="points-reader")
        log.info("Point store opened", extra={"extra": {"url": self._safe_url(), "points": n}})
        return self

    def ensure_schema(self) -> None:
        with self._tx_lock:
            Base.metadata.create_all(self._require_engine())

    def close(self) -> None:
        """Finish queued async work, then release the engine. Idempotent."""
        writer, reader = self._writer, self._reader
        self._writer = self._reader = None
        if writer is not None:
            writer.shutdown(wait=True)
        if reader is not None:
            reader.shutdown(wait=True)
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            log.info("Point store closed", extra={"extra": {"url": self._safe_url()}})

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def __enter__(self) -> "PointStore":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # -------- writes --------

    def insert(self, point: Point) -> int:
        """
        Insert `point`, replacing any stored point at the same (lat, lon, alt).
        Returns the new identifier; raises InsertFailure on any other error.
        """
        with self._write_lock:
            return self._insert_one(point)

    def insert_batch(self, points: Iterable[Point]) -> BatchInsertResult:
        """
        Insert each point in its own transaction with the same replace policy.
        A failing item does not undo the ones already committed.
        """
        out = BatchInsertResult()
        with self._write_lock:
            for p in points:
                try:
                    out.results.append(InsertResult(point=p, id=self._insert_one(p)))
                except InsertFailure as e:
                    out.results.append(InsertResult(point=p, error=e.reason))
        level = "warning" if out.failed else "info"
        getattr(log, level)("Batch insert finished", extra={"extra": {
            "total": len(out.results), "inserted": out.inserted, "failed": len(out.failed),
        }})
        return out

    def insert_batch_async(
        self,
        points: Iterable[Point],
        on_complete: Optional[Callable[[BatchInsertResult], None]] = None,
    ) -> "Future[BatchInsertResult]":
        """
        Queue a batch on the single writer thread and return immediately.
        `on_complete(result)` runs on the writer thread once the batch is done.
        """
        writer = self._writer
        if writer is None:
            raise RuntimeError("PointStore is not open")
        batch = list(points)

        def _job() -> BatchInsertResult:
            res = self.insert_batch(batch)
            if on_complete is not None:
                try:
                    on_complete(res)
                except Exception:
                    log.exception("Batch completion callback failed")
            return res

        return writer.submit(_job)

    def delete(self, point_id: int) -> bool:
        with self._write_lock:
            try:
                with self._tx_lock, self._require_engine().begin() as conn:
                    n = conn.execute(delete(_points).where(_points.c.id == int(point_id))).rowcount
            except SQLAlchemyError as e:
                raise QueryStorageFailure(f"delete failed: {e}") from e
        return bool(n)

    def clear(self) -> int:
        """Remove every point; returns how many were removed."""
        with self._write_lock:
            try:
                with self._tx_lock, self._require_engine().begin() as conn:
                    n = conn.execute(delete(_points)).rowcount
            except SQLAlchemyError as e:
                raise QueryStorageFailure(f"clear failed: {e}") from e
        log.info("Point store cleared", extra={"extra": {"removed": n}})
        return int(n or 0)

    # -------- reads --------

    def query_around(self, center, radius_m: float) -> List[Point]:
        """
        Points whose lat/lon fall inside the planar box of half-size radius_m
        around `center` (anything with .lat/.lon). Edges are inclusive.
        The box is not wrapped at +/-180 deg nor clamped at the poles.
        """
        lat_min, lat_max, lon_min, lon_max = bounding_box(center.lat, center.lon, radius_m)
        stmt = (
            select(_points)
            .where(_points.c.latitude >= lat_min, _points.c.latitude <= lat_max)
            .where(_points.c.longitude >= lon_min, _points.c.longitude <= lon_max)
            .order_by(_points.c.id)
        )
        pts = self._fetch(stmt, "query_around")
        log.debug("Points around", extra={"extra": {
            "lat": center.lat, "lon": center.lon, "radius_m": radius_m, "found": len(pts),
        }})
        return pts

    def query_around_async(self, center, radius_m: float) -> "Future[List[Point]]":
        reader = self._reader
        if reader is None:
            raise RuntimeError("PointStore is not open")
        return reader.submit(self.query_around, center, radius_m)

    def find_by_name_contains(self, substring: str) -> List[Point]:
        """Case-insensitive literal substring match on the name."""
        pattern = f"%{_escape_like(substring)}%"
        stmt = select(_points).where(_points.c.name.ilike(pattern, escape="\\")).order_by(_points.c.id)
        return self._fetch(stmt, "find_by_name_contains")

    def get_all(self) -> List[Point]:
        return self._fetch(select(_points).order_by(_points.c.id), "get_all")

    def get(self, point_id: int) -> Optional[Point]:
        pts = self._fetch(select(_points).where(_points.c.id == int(point_id)), "get")
        return pts[0] if pts else None

    def count(self) -> int:
        try:
            with self._tx_lock, self._require_engine().connect() as conn:
                return int(conn.execute(select(func.count()).select_from(_points)).scalar_one())
        except SQLAlchemyError as e:
            raise QueryStorageFailure(f"count failed: {e}") from e

    def __len__(self) -> int:
        return self.count()

    # -------- internals --------

    def _insert_one(self, p: Point) -> int:
        if not isinstance(p, Point):
            raise InsertFailure(p, f"expected Point, got {type(p).__name__}")
        try:
            with self._tx_lock, self._require_engine().begin() as conn:
                replaced = conn.execute(
                    delete(_points).where(
                        _points.c.latitude == p.lat,
                        _points.c.longitude == p.lon,
                        _points.c.altitude == p.alt_m,
                    )
                ).rowcount
                new_id = conn.execute(insert(_points).values(**point_values(p))).inserted_primary_key[0]
        except SQLAlchemyError as e:
            log.debug("Point insert failed", extra={"extra": {"name": p.name, "error": str(e)}})
            raise InsertFailure(p, e.__class__.__name__ + ": " + str(e.orig if getattr(e, "orig", None) else e), cause=e) from e
        if replaced:
            log.debug("Replaced point at same position", extra={"extra": {"name": p.name, "key": list(p.key), "id": new_id}})
        return int(new_id)

    def _fetch(self, stmt, what: str) -> List[Point]:
        try:
            with self._tx_lock, self._require_engine().connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as e:
            log.warning("Point query failed", extra={"extra": {"op": what, "error": str(e)}})
            raise QueryStorageFailure(f"{what} failed: {e}") from e
        return [row_to_point(r) for r in rows]

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("PointStore is not open")
        return self._engine

    def _safe_url(self) -> str:
        return self.url.split("@")[-1] if "@" in self.url else self.url
