"""
Bounded TTL cache.

A least-recently-used map with a hard capacity and per-entry expiry.  Used
wherever a long-running service would otherwise keep an ever-growing dict
(e.g. resolved sourcing outcomes served to dashboards).

Guarantees:
    - Never holds more than ``capacity`` entries; the least recently used
      entry is evicted first.
    - An entry older than ``ttl_seconds`` (by the injected clock) is never
      returned and is dropped on access.
    - Thread-safe.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Generic, Hashable, TypeVar

from sourcing_kernel.domain.clock import Clock, SystemClock

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedTTLCache(Generic[K, V]):
    """LRU cache with capacity and expiry."""

    def __init__(self, capacity: int, ttl_seconds: float, clock: Clock | None = None):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._capacity = capacity
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._entries: OrderedDict[K, tuple[datetime, V]] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def get(self, key: K, default: V | None = None) -> V | None:
        now = self._clock.now()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            stored_at, value = entry
            if now - stored_at >= self._ttl:
                del self._entries[key]
                return default
            self._entries.move_to_end(key)
            return value

    def put(self, key: K, value: V) -> None:
        now = self._clock.now()
        with self._lock:
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)

    def pop(self, key: K) -> V | None:
        with self._lock:
            entry = self._entries.pop(key, None)
        return entry[1] if entry else None

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were dropped."""
        now = self._clock.now()
        with self._lock:
            expired = [k for k, (t, _) in self._entries.items() if now - t >= self._ttl]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
