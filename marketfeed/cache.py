"""Process-wide in-memory TTL cache.

Holds raw upstream payloads and derived values such as the resolved build
identifier. Each entry carries its own TTL. There is no size bound: keys are
limited to the filter/sort/page and metric/window combinations the UI uses.
This is best-effort and resets when the process restarts.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Hashable, Optional

from marketfeed.errors import CacheMiss

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: Hashable
    value: Any
    fetched_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


class TTLCache:
    def __init__(self, default_ttl: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self._default_ttl = float(default_ttl)
        self._clock = clock
        self._lock = RLock()
        self._data: Dict[Hashable, CacheEntry] = {}

    def lookup(self, key: Hashable) -> CacheEntry:
        """Return the live entry for ``key`` or raise CacheMiss."""
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                raise CacheMiss(key)
            try:
                fresh = entry.is_fresh(now)
            except (AttributeError, TypeError):
                logger.warning("Dropping unreadable cache entry for %r", key)
                self._data.pop(key, None)
                raise CacheMiss(key)
            if not fresh:
                self._data.pop(key, None)
                raise CacheMiss(key)
            return entry

    def get(self, key: Hashable, default: Any = None) -> Any:
        try:
            value = self.lookup(key).value
        except CacheMiss:
            logger.debug("Cache miss: %s", key)
            return default
        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        # None is reserved for "miss" by get()
        if value is None:
            return
        now = self._clock()
        ttl = self._default_ttl if ttl is None else float(ttl)
        with self._lock:
            # purge expired
            expired_keys = [
                k for k, v in self._data.items()
                if not isinstance(v, CacheEntry) or not v.is_fresh(now)
            ]
            for k in expired_keys:
                self._data.pop(k, None)

            self._data[key] = CacheEntry(key=key, value=value, fetched_at=now, ttl=ttl)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: Hashable) -> bool:
        try:
            self.lookup(key)
        except CacheMiss:
            return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
