from __future__ import annotations

import os
import threading
from typing import Any, Callable

from cachetools import TTLCache


# Distinguishes "not cached" from a cached falsy value (e.g. a missing permission rule).
MISSING = object()


def _env_int(name: str, default: int, *, lo: int, hi: int) -> int:
    try:
        n = int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        n = default
    return max(lo, min(hi, n))


class _LookupCache:
    """Process-local TTL cache for RBAC and capability lookups."""

    def __init__(self):
        ttl = _env_int("CACHE_TTL_SECONDS", 60, lo=1, hi=3600)
        max_items = _env_int("CACHE_MAX_ITEMS", 10000, lo=100, hi=500_000)
        self._cache: TTLCache = TTLCache(maxsize=max_items, ttl=ttl)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        with self._lock:
            val = self._cache.get(key, MISSING)
            if val is MISSING:
                self._misses += 1
            else:
                self._hits += 1
            return val

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def get_or_set(self, key: str, factory: Callable[[], Any]) -> Any:
        val = self.get(key)
        if val is not MISSING:
            return val
        computed = factory()
        with self._lock:
            return self._cache.setdefault(key, computed)

    def invalidate_prefix(self, prefix: str) -> int:
        if not prefix:
            return 0
        with self._lock:
            keys = [k for k in list(self._cache.keys()) if str(k).startswith(prefix)]
            for k in keys:
                self._cache.pop(k, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "ttl": self._cache.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total * 100, 2) if total else 0.0,
            }


_cache = _LookupCache()


def cache_get(key: str) -> Any:
    """Returns MISSING when the key is absent or expired."""
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_get_or_set(key: str, factory: Callable[[], Any]) -> Any:
    return _cache.get_or_set(key, factory)


def cache_invalidate_prefix(prefix: str) -> int:
    return _cache.invalidate_prefix(prefix)


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
