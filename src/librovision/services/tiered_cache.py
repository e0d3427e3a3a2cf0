"""Tiered cache service.

Coordinates the memory, durable and session tiers behind one read/write API.
Reads go fastest-first and promote slow-tier hits into memory; writes always
land in memory plus exactly one slow tier. Tier failures never escape.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import redis

from librovision.entities import CacheLookup
from librovision.exceptions import CacheStorageError
from librovision.protocols import CacheStore

logger = logging.getLogger(__name__)

# Failures a tier may raise; anything else is a programming error and propagates.
TIER_ERRORS = (CacheStorageError, redis.RedisError)


class TieredCache:
    """Multi-tier key-value cache.

    This service depends on the CacheStore PROTOCOL, so any tier
    implementation (Redis, an in-memory fake, a session dict) can be plugged in.

    Example:
        ```python
        cache = TieredCache(
            memory=MemoryCache(max_size=100),
            durable=RedisCacheRepository.create(prefix="librovision_books_"),
            session=SessionCacheRepository(prefix="librovision_books_"),
        )

        cache.set("book_123", book, persistent=True)
        lookup = cache.get("book_123")
        if lookup.hit:
            ...
        ```
    """

    def __init__(
        self,
        memory: CacheStore,
        durable: CacheStore | None = None,
        session: CacheStore | None = None,
        name: str = "cache",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the tiered cache.

        Args:
            memory: Fast in-process tier (required).
            durable: Survives restarts; used for ``persistent`` writes.
            session: Scoped to the login session; used for other writes.
            name: Domain name for logs and stats (e.g. "books").
            clock: Time source, used to compute remaining lifetime on promotion.
        """
        self._memory = memory
        self._durable = durable
        self._session = session
        self._name = name
        self._clock = clock
        self._stats: dict[str, int] = {"hits": 0, "misses": 0, "errors": 0}
        for tier in self._tiers:
            self._stats[f"{tier.name}_hits"] = 0

    @property
    def _tiers(self) -> list[CacheStore]:
        return [t for t in (self._memory, self._durable, self._session) if t is not None]

    @property
    def name(self) -> str:
        return self._name

    def _record_error(self, tier: CacheStore, operation: str, key: str, error: Exception) -> None:
        self._stats["errors"] += 1
        logger.warning(
            "%s cache: %s tier %s failed for %s: %s", self._name, tier.name, operation, key, error
        )

    def set(self, key: str, value: Any, max_age: float | None = None, persistent: bool = False) -> bool:
        """Store a value.

        Args:
            key: Cache key
            value: Value to store (must be JSON-compatible for the slow tiers)
            max_age: Lifetime in seconds. Defaults to each tier's max age.
            persistent: Write the durable tier instead of the session tier

        Returns:
            Whether the slow-tier write succeeded (True when no slow tier is configured)
        """
        self._memory.set_entry(key, value, max_age)

        slow = self._durable if persistent else self._session
        if slow is None:
            return True

        try:
            return slow.set_entry(key, value, max_age)
        except TIER_ERRORS as e:
            self._record_error(slow, "set", key, e)
            return False

    def get(self, key: str) -> CacheLookup:
        """Look up ``key`` in memory, then durable, then session storage.

        A slow-tier hit is copied into memory with the entry's remaining
        lifetime so promotion never extends freshness.
        """
        for tier in self._tiers:
            try:
                entry = tier.get_entry(key)
            except TIER_ERRORS as e:
                self._record_error(tier, "get", key, e)
                continue

            if entry is None:
                continue

            self._stats["hits"] += 1
            self._stats[f"{tier.name}_hits"] += 1
            if tier is not self._memory:
                remaining = entry.remaining(self._clock())
                if remaining > 0:
                    self._memory.set_entry(key, entry.data, remaining)
                logger.debug("%s cache: promoted %s from %s tier", self._name, key, tier.name)
            return CacheLookup.found(entry.data, tier=tier.name)

        self._stats["misses"] += 1
        return CacheLookup.absent()

    def delete(self, key: str) -> bool:
        """Remove ``key`` from every tier.

        Returns:
            True if every tier accepted the delete
        """
        ok = True
        for tier in self._tiers:
            try:
                tier.delete(key)
            except TIER_ERRORS as e:
                self._record_error(tier, "delete", key, e)
                ok = False
        return ok

    def clear(self, durable: bool = True) -> bool:
        """Remove every entry this cache owns.

        Args:
            durable: Also clear the durable tier. Its Redis keyspace is shared
                by every process using the same prefix.
        """
        ok = True
        for tier in self._tiers:
            if tier is self._durable and not durable:
                continue
            try:
                tier.clear()
            except TIER_ERRORS as e:
                self._record_error(tier, "clear", "*", e)
                ok = False
        return ok

    def size(self) -> int:
        """Number of entries in the memory tier."""
        return self._memory.size()

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary with per-tier sizes, hit/miss counters and hit ratio
        """
        lookups = self._stats["hits"] + self._stats["misses"]
        stats: dict[str, Any] = {
            "name": self._name,
            "memory_size": self._memory.size(),
            **self._stats,
            "hit_ratio": self._stats["hits"] / lookups if lookups else 0.0,
        }
        for tier in self._tiers[1:]:
            try:
                stats[f"{tier.name}_size"] = tier.size()
            except TIER_ERRORS as e:
                self._record_error(tier, "size", "*", e)
                stats[f"{tier.name}_size"] = None
        return stats

    @property
    def memory(self) -> CacheStore:
        """Get the memory tier (for testing)."""
        return self._memory

    @property
    def durable(self) -> CacheStore | None:
        return self._durable

    @property
    def session(self) -> CacheStore | None:
        return self._session
