"""
Bounded LRU cache with optional TTL.

Reads refresh an entry's last-access time, which is the only recency signal.
Inserting a new key at capacity evicts the least recently accessed entry.
Expiry is measured from creation and enforced lazily on read; there is no
background sweep.
"""
import contextlib
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional

log = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    accessed_at: float

    def expired(self, ttl: Optional[float], now: float) -> bool:
        return ttl is not None and (now - self.created_at) > ttl


class BoundedCache:
    """
    LRU + TTL key/value store.

    Args:
        max_size: Maximum number of entries (at least 1)
        ttl: Seconds an entry lives after creation; None disables expiry
        thread_safe: Serialize every public operation behind one lock
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, max_size: int = 100, ttl: Optional[float] = None,
                 thread_safe: bool = True, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self.thread_safe = thread_safe
        self._clock = clock
        # Ordered by last access, oldest first.
        self._data: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock() if thread_safe else None

    def _locked(self):
        return self._lock if self._lock is not None else contextlib.nullcontext()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._locked():
            entry = self._data.get(key)
            if entry is None:
                return default
            now = self._clock()
            if entry.expired(self.ttl, now):
                del self._data[key]
                log.debug("cache.expired key=%s", key)
                return default
            entry.accessed_at = now
            self._data.move_to_end(key)
            return entry.value

    def set(self, key: Hashable, value: Any) -> Any:
        with self._locked():
            now = self._clock()
            if key in self._data:
                del self._data[key]
            elif len(self._data) >= self.max_size:
                evicted, _ = self._data.popitem(last=False)
                log.debug("cache.evicted key=%s", evicted)
            self._data[key] = CacheEntry(value, now, now)
            return value

    def contains(self, key: Hashable) -> bool:
        """Expiry-aware membership test; does not refresh recency."""
        with self._locked():
            entry = self._data.get(key)
            if entry is None:
                return False
            if entry.expired(self.ttl, self._clock()):
                del self._data[key]
                return False
            return True

    __contains__ = contains

    def get_or_set(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = self.set(key, factory())
        return value

    def delete(self, key: Hashable) -> Any:
        with self._locked():
            entry = self._data.pop(key, None)
            return None if entry is None else entry.value

    def clear(self) -> None:
        with self._locked():
            self._data.clear()

    def keys(self) -> List[Hashable]:
        with self._locked():
            self._purge_expired()
            return list(self._data)

    def stats(self) -> Dict[str, Any]:
        with self._locked():
            self._purge_expired()
            size = len(self._data)
            return {
                "size": size,
                "max_size": self.max_size,
                "ttl": self.ttl,
                "utilization": size / self.max_size,
            }

    def _purge_expired(self) -> None:
        if self.ttl is None:
            return
        now = self._clock()
        for key in [k for k, e in self._data.items() if e.expired(self.ttl, now)]:
            del self._data[key]

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"BoundedCache(size={len(self._data)}, max_size={self.max_size}, ttl={self.ttl})"
