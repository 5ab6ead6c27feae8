"""
In-memory caches for population grids.

A ``TTLCache`` is constructed once per process and handed to the grid
provider; tests and offline runs can pass a ``NullCache`` instead. Expired
entries behave as misses and are evicted when looked up.
"""

import logging
import threading
import time

logger = logging.getLogger(__name__)


class TTLCache:
    """
    Thread-safe key/value cache whose entries expire after ``ttl`` seconds.

    Args:
        ttl (float): Entry lifetime in seconds.
        clock (callable): Returns the current time in seconds; defaults to
                          ``time.monotonic``.
    """

    def __init__(self, ttl, clock=time.monotonic):
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")
        self.ttl = ttl
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0}

    def get(self, key):
        """Return the cached value for ``key``, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            value, stored_at = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                self._stats["misses"] += 1
                return None
            self._stats["hits"] += 1
            return value

    def set(self, key, value):
        with self._lock:
            self._entries[key] = (value, self._clock())

    def clear(self):
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        logger.info("Cache cleared (%d entries)", dropped)

    def evict_expired(self):
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, stored_at) in self._entries.items() if now - stored_at >= self.ttl]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self):
        with self._lock:
            stats = dict(self._stats)
            stats["size"] = len(self._entries)
        return stats

    def __len__(self):
        with self._lock:
            return len(self._entries)


class NullCache:
    """Cache that never stores anything."""

    def get(self, key):
        return None

    def set(self, key, value):
        pass

    def clear(self):
        pass

    def evict_expired(self):
        return 0

    def stats(self):
        return {"hits": 0, "misses": 0, "size": 0}

    def __len__(self):
        return 0
