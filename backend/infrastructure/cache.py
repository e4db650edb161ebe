"""
In-process TTL cache.

Used for short-lived lookups (bearer token -> user id) that would otherwise
hit the directory on every request. The clock is injected so expiry can be
tested without sleeping. Instances are created per process and passed to
whoever needs them; there is no shared global cache.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from core.clock import Clock, utc_now

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """Bounded mapping whose entries expire ``ttl`` after being set."""

    def __init__(self, ttl: timedelta, max_size: int = 1000, clock: Clock = utc_now):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[K, tuple[datetime, V]] = OrderedDict()

    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return value

    def set(self, key: K, value: V) -> None:
        self._entries[key] = (self._clock() + self.ttl, value)
        self._entries.move_to_end(key)
        # Evict least recently used entries beyond capacity
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def invalidate(self, key: K) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
