from __future__ import annotations

from typing import Any, Optional


class PoiError(Exception):
    """Base class for errors reported by the engine to its calling layer."""


class SensorUnavailable(PoiError):
    """The orientation sensor cannot be subscribed to; the stream is down until restarted."""


class StaleLocation(PoiError):
    """A location fix is older than the configured max age."""


class QueryStorageFailure(PoiError):
    """A read against the point store failed. The store stays usable."""


class InsertFailure(PoiError):
    """A point could not be written for a reason other than a key conflict."""

    def __init__(self, point: Any, reason: str, *, cause: Optional[BaseException] = None):
        super().__init__(f"cannot insert point {getattr(point, 'name', point)!r}: {reason}")
        self.point = point
        self.reason = reason
        self.cause = cause
