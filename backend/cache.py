"""In-memory TTL cache for read-heavy wallet endpoints."""
from __future__ import annotations

import threading
from typing import Any

from cachetools import TTLCache


_DEFAULT_TTL = 60
_DEFAULT_MAXSIZE = 512


class CacheLayer:
    """Thread-safe wrapper around ``cachetools.TTLCache``.

    Entries share one TTL per cache; use separate instances for different
    lifetimes.
    """

    def __init__(self, maxsize: int = _DEFAULT_MAXSIZE, ttl: int = _DEFAULT_TTL) -> None:
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value
