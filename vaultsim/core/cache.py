"""vaultsim.core.cache

In-memory TTL cache.

There is no module-level instance. Whoever wants caching constructs one and
passes it in, so two resolvers never share state by accident.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from typing import Any


class TTLCache:
    """Thread-safe TTL cache with lazy eviction on read and explicit purge."""

    def __init__(self, default_ttl_s: float = 60.0, *, clock: Callable[[], float] = time.monotonic):
        self._default_ttl_s = float(default_ttl_s)
        self._clock = clock
        self._store: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.RLock()

    def get(self, key: Hashable) -> Any | None:
        now = self._clock()
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            expires_at, value = item
            if now < expires_at:
                return value
            self._store.pop(key, None)
            return None

    def set(self, key: Hashable, value: Any, *, ttl_s: float | None = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else float(ttl_s)
        with self._lock:
            self._store[key] = (self._clock() + ttl, value)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            dead = [k for k, (expires_at, _) in self._store.items() if now >= expires_at]
            for k in dead:
                del self._store[k]
        return len(dead)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
