"""Explicit time-based cache.

Whoever needs caching constructs one of these and passes it where it is
needed; there is no module-level cache. Entries are ``key -> (value, expiry)``.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable, Optional

_MISSING = object()


class TTLCache:
    """Thread-safe mapping whose entries expire ``ttl`` seconds after being set.

    Usage:
        cache = TTLCache(ttl=300)
        photos = cache.get_or_set("photos", backend_listing)
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + (self.ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = (value, expires_at)

    def get_or_set(self, key: Hashable, factory: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Return the cached value, computing and storing it on a miss.

        ``factory`` runs outside the lock; exceptions propagate and nothing is
        cached.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = factory()
        self.set(key, value, ttl)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for _, expires_at in self._entries.values() if now < expires_at)
