from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory cache with per-entry expiry.

    Owned by whoever builds it: call ``start()`` to run the background sweeper
    and ``stop()`` on shutdown. Expired entries are also dropped lazily on read,
    so the sweeper only bounds memory.
    """

    def __init__(self, sweep_interval_s: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval_s = sweep_interval_s
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_s: float) -> None:
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_s)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_set(self, key: str, compute: Callable[[], T], ttl_s: float) -> T:
        cached = self.get(key)
        if cached is not None:
            logger.debug("cache hit %s", key)
            return cached

        logger.debug("cache miss %s", key)
        value = compute()
        self.set(key, value, ttl_s)
        return value

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("cache sweep removed %d expired entries", len(expired))
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"size": len(self._entries), "keys": list(self._entries)}

    def start(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._run, name="ttl-cache-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self.clear()

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _run(self) -> None:
        while not self._stop_event.wait(self._sweep_interval_s):
            self.sweep()
