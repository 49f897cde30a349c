"""In-process TTL cache for complete pipeline results."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

__all__ = ["ResultCache"]

logger = logging.getLogger(__name__)

_V = TypeVar("_V")


class ResultCache(Generic[_V]):
    """Thread-safe TTL cache with whole-entry get/set semantics.

    Entries expire ``ttl_s`` seconds after they were written and are
    dropped on the read that finds them stale. When more than
    ``max_keys`` entries are held, the oldest-written entry is evicted.
    Concurrent writes to one key: last writer wins.

    Usage::

        cache = ResultCache(ttl_s=300, max_keys=1000)
        cache.set(query.cache_key(), result)
        hit = cache.get(query.cache_key())
    """

    def __init__(
        self,
        ttl_s: float = 300,
        max_keys: int = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_s <= 0:
            raise ValueError(f"ttl_s must be positive, got {ttl_s}")
        if max_keys < 1:
            raise ValueError(f"max_keys must be >= 1, got {max_keys}")
        self._ttl_s = ttl_s
        self._max_keys = max_keys
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[str, tuple[float, _V]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._evictions = 0

    def get(self, key: str) -> _V | None:
        """Return the live value for *key*, or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._misses += 1
                logger.debug("Cache entry expired: %s", key[:12])
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: _V) -> None:
        """Store *value* under *key*, replacing any previous entry."""
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + self._ttl_s, value)
            self._sets += 1
            while len(self._entries) > self._max_keys:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug("Cache evicted oldest entry: %s", evicted[:12])

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry; statistics are kept."""
        with self._lock:
            self._entries.clear()
        logger.info("Cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Hit/miss counters and current size."""
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
                "keys": len(self._entries),
                "max_keys": self._max_keys,
                "ttl_s": self._ttl_s,
            }

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = self._misses = self._sets = self._evictions = 0
