from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Optional


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record, e.g.
      { "t": 1714564800000, "lvl": "INFO", "name": "points.store",
        "thread": "points-writer_0", "msg": "Batch insert finished",
        "extra": {"inserted": 5, "failed": 0} }

    Sensor pumps, the tracker worker and the store pools all log, so the
    emitting thread is part of every record.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        ctx = getattr(record, "extra", None)
        if isinstance(ctx, dict):
            payload["extra"] = ctx
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # numpy scalars and exceptions in the context are logged via str()
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None) -> None:
    """
    Install the JSON handler on the root logger once.
    Level: explicit `level`, else env LOG_LEVEL, else INFO. Calling again
    with an explicit level only changes the level.
    """
    root = logging.getLogger()
    if getattr(root, "_poi_configured", False):
        if level:
            root.setLevel(_level(level))
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level or os.environ.get("LOG_LEVEL") or "INFO"))
    root._poi_configured = True  # type: ignore[attr-defined]


def _level(name: str) -> int:
    lvl = logging.getLevelName(name.upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures the root handler on first use."""
    setup_logging()
    return logging.getLogger(name)
