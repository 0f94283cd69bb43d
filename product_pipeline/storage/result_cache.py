# product_pipeline/storage/result_cache.py

"""Bounded in-memory cache of recent extraction results."""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from product_pipeline.config.settings import Settings

logger = logging.getLogger("product_pipeline.cache")

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value and the time it was stored."""

    value: V
    timestamp: float


class BoundedCache(Generic[V]):
    """LRU cache with a per-entry TTL.

    Reads refresh an entry's recency; once ``capacity`` is exceeded the
    least recently used entry is evicted.  Expired entries are dropped
    lazily when looked up.
    """

    def __init__(
        self,
        capacity: int | None = None,
        ttl: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._capacity = capacity or Settings.RESULT_CACHE_SIZE
        self._ttl = ttl if ttl is not None else Settings.RESULT_CACHE_TTL
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[V]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> V | None:
        """Return the cached value for *key*, or ``None`` on miss."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if now - entry.timestamp >= self._ttl:
                del self._entries[key]
                self.misses += 1
                logger.debug("Expired cache entry for %s", key)
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.value

    def put(self, key: str, value: V) -> None:
        """Store *value*, evicting the least recently used entry if full."""
        with self._lock:
            self._entries[key] = CacheEntry(value, self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted least recently used entry %s", evicted)

    def clear(self) -> int:
        """Purge all entries.

        Returns the number of entries that were removed.
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Result cache purged (%d entries removed)", count)
        return count
