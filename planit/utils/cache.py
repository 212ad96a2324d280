"""In-memory LRU cache with TTL expiration.

Process-level cache for detailed place lookups. Details are only fetched when
a user opens a place, so a small cache avoids paying for the same lookup
twice in a session.
TTL: 24h. Max 100 entries.
"""

import time
from collections import OrderedDict
from typing import Callable, Generic, TypeVar

V = TypeVar("V")


class LRUCache(Generic[V]):
    """TTL-aware LRU cache."""

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock

    def get(self, key: str) -> V | None:
        if key not in self._cache:
            return None
        ts, value = self._cache[key]
        if self._clock() - ts >= self._ttl:
            del self._cache[key]
            return None
        self._cache.move_to_end(key)
        return value

    def set(self, key: str, value: V) -> None:
        if key in self._cache:
            self._cache.move_to_end(key)
        self._cache[key] = (self._clock(), value)
        if len(self._cache) > self._max_size:
            self._cache.popitem(last=False)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
