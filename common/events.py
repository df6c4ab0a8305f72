from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Callable, Dict, List


class Subscription:
    """Handle returned by Listeners.add(); unsubscribe() is idempotent."""

    __slots__ = ("_owner", "_key")

    def __init__(self, owner: "Listeners", key: int):
        self._owner = owner
        self._key = key

    @property
    def active(self) -> bool:
        return self._owner._has(self._key)

    def unsubscribe(self) -> None:
        self._owner._remove(self._key)


class Listeners:
    """
    Thread-safe callback registry.

    notify() calls every callback in registration order with a snapshot of the
    registry, so callbacks may (un)subscribe while being notified. A callback
    that raises is logged and skipped; the remaining callbacks still run.
    """

    def __init__(self, name: str, log: logging.Logger):
        self.name = name
        self._log = log
        self._lock = threading.Lock()
        self._cbs: Dict[int, Callable[..., Any]] = {}
        self._ids = itertools.count(1)

    def add(self, cb: Callable[..., Any]) -> Subscription:
        if not callable(cb):
            raise TypeError("callback must be callable")
        with self._lock:
            key = next(self._ids)
            self._cbs[key] = cb
        return Subscription(self, key)

    def notify(self, *args: Any) -> None:
        with self._lock:
            cbs: List[Callable[..., Any]] = list(self._cbs.values())
        for cb in cbs:
            try:
                cb(*args)
            except Exception:
                self._log.exception("%s listener failed", self.name)

    def clear(self) -> None:
        with self._lock:
            self._cbs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cbs)

    def _has(self, key: int) -> bool:
        with self._lock:
            return key in self._cbs

    def _remove(self, key: int) -> None:
        with self._lock:
            self._cbs.pop(key, None)
