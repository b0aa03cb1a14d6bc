"""
Read-through cache of active rules per (organization, family).

Entries expire after a short TTL and are dropped on every successful write
for their key. Cached rule sets are immutable tuples of frozen rules, so
readers never need to copy them.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable

from universal_config.core.models import Rule

CacheKey = tuple[str, str]


class RuleCache:
    """Thread-safe TTL cache of active rule sets."""

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        max_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry; 0 or less disables caching
            max_size: Maximum number of (organization, family) entries
            clock: Monotonic time source
        """
        self._cache: dict[CacheKey, tuple[float, tuple[Rule, ...]]] = {}
        # Generations are kept only for keys with a load in flight
        self._generations: dict[CacheKey, int] = {}
        self._loading: dict[CacheKey, int] = {}
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, organization_id: str, family: str) -> tuple[Rule, ...] | None:
        """Get a cached rule set, or None if absent or expired."""
        key = (organization_id, family)
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                expires_at, rules = entry
                if self._clock() < expires_at:
                    self._hits += 1
                    return rules
                del self._cache[key]
            self._misses += 1
            return None

    def put(self, organization_id: str, family: str, rules: Iterable[Rule]) -> tuple[Rule, ...]:
        """Cache a rule set and return the stored tuple."""
        key = (organization_id, family)
        frozen = tuple(rules)
        if self._ttl <= 0:
            return frozen
        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                self._evict()
            self._cache[key] = (self._clock() + self._ttl, frozen)
        return frozen

    def invalidate(self, organization_id: str, family: str) -> bool:
        """Drop the entry for a key.

        Also bumps the key's generation so a load that started before the
        invalidation cannot repopulate the cache with stale rules.

        Returns:
            True if the key was cached
        """
        key = (organization_id, family)
        with self._lock:
            self._bump_generation(key)
            return self._cache.pop(key, None) is not None

    def invalidate_all(self) -> int:
        """Invalidate all cached rule sets.

        Returns:
            Number of entries invalidated
        """
        with self._lock:
            count = len(self._cache)
            for key in list(self._loading):
                self._bump_generation(key)
            self._cache.clear()
            return count

    def get_or_load(
        self,
        organization_id: str,
        family: str,
        loader: Callable[[], Iterable[Rule]],
    ) -> tuple[Rule, ...]:
        """Get from cache or load using the provided loader.

        Loader errors propagate and nothing is cached.
        """
        cached = self.get(organization_id, family)
        if cached is not None:
            return cached

        key = (organization_id, family)
        with self._lock:
            self._loading[key] = self._loading.get(key, 0) + 1
            generation = self._generations.get(key, 0)

        try:
            rules = tuple(loader())
            with self._lock:
                if self._generations.get(key, 0) == generation:
                    self.put(organization_id, family, rules)
        finally:
            with self._lock:
                remaining = self._loading[key] - 1
                if remaining:
                    self._loading[key] = remaining
                else:
                    del self._loading[key]
                    self._generations.pop(key, None)
        return rules

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            hit_rate = self._hits / total if total > 0 else 0.0
            return {
                "size": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": hit_rate,
                "loads_in_flight": sum(self._loading.values()),
                "cached_keys": [f"{org}/{family}" for org, family in self._cache],
            }

    def _bump_generation(self, key: CacheKey) -> None:
        if key in self._loading:
            self._generations[key] = self._generations.get(key, 0) + 1

    def _evict(self) -> None:
        """Evict half of the cached entries.

        Uses simple FIFO eviction (first entries added are removed first).
        """
        keys = list(self._cache.keys())
        evict_count = max(1, len(keys) // 2)
        for key in keys[:evict_count]:
            del self._cache[key]
