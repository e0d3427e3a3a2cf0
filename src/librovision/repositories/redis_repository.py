"""Redis implementation of CacheStore.

The durable tier of the tiered cache. Each entry is a JSON envelope stored
under ``<prefix><key>``; the Redis TTL mirrors the entry expiry so the server
drops dead keys on its own, while reads still check expiry and version lazily.
"""

import logging
import math
import time
from collections.abc import Callable
from typing import Any

import redis

from librovision.config import get_redis_client, settings
from librovision.entities import CacheEntryEntity
from librovision.exceptions import CacheStorageError

from .envelope import decode_entry, encode_entry

logger = logging.getLogger(__name__)


class RedisCacheRepository:
    """Redis-backed durable cache tier.

    This class satisfies the CacheStore protocol through structural
    typing - no explicit inheritance needed.

    Redis failures are re-raised as CacheStorageError so the tiered cache can
    contain every tier failure the same way.
    """

    name = "durable"

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        prefix: str | None = None,
        max_age: float | None = None,
        version: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the Redis cache repository.

        Args:
            redis_client: Redis client instance. If None, creates default.
            prefix: Key namespace, e.g. ``librovision_books_``.
            max_age: Default entry lifetime in seconds.
            version: Cache-format version stamp.
            clock: Time source returning Unix seconds.
        """
        self._client = redis_client or get_redis_client()
        self._prefix = prefix or settings.cache_prefix
        self._max_age = settings.cache_max_age if max_age is None else max_age
        self._version = version or settings.cache_version
        self._clock = clock

    @classmethod
    def create(
        cls,
        prefix: str | None = None,
        max_age: float | None = None,
    ) -> "RedisCacheRepository":
        """Factory method to create RedisCacheRepository with defaults.

        Args:
            prefix: Key namespace. If None, uses settings.
            max_age: Default lifetime in seconds. If None, uses settings.

        Returns:
            Configured RedisCacheRepository
        """
        return cls(prefix=prefix, max_age=max_age)

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def set_entry(self, key: str, data: Any, max_age: float | None = None) -> bool:
        entry = CacheEntryEntity(
            data=data,
            timestamp=self._clock(),
            expiry=self._max_age if max_age is None else max_age,
            version=self._version,
        )
        payload = encode_entry(entry)

        try:
            self._client.set(self._make_key(key), payload, px=max(1, math.ceil(entry.expiry * 1000)))
        except redis.RedisError as e:
            raise CacheStorageError(f"Redis set failed for {key}: {e}") from e
        return True

    def get_entry(self, key: str) -> CacheEntryEntity | None:
        try:
            raw = self._client.get(self._make_key(key))
        except redis.RedisError as e:
            raise CacheStorageError(f"Redis get failed for {key}: {e}") from e

        if raw is None:
            return None

        try:
            entry = decode_entry(raw)
        except CacheStorageError:
            self.delete(key)
            raise

        if entry.is_expired(self._clock()) or entry.is_version_mismatch(self._version):
            self.delete(key)
            return None

        return entry

    def delete(self, key: str) -> bool:
        try:
            result: int = self._client.delete(self._make_key(key))  # type: ignore[assignment]
        except redis.RedisError as e:
            raise CacheStorageError(f"Redis delete failed for {key}: {e}") from e
        return result > 0

    def clear(self) -> bool:
        try:
            keys = list(self._client.scan_iter(match=f"{self._prefix}*"))
            if keys:
                self._client.delete(*keys)
        except redis.RedisError as e:
            raise CacheStorageError(f"Redis clear failed for {self._prefix}*: {e}") from e
        return True

    def keys(self) -> list[str]:
        try:
            raw_keys = list(self._client.scan_iter(match=f"{self._prefix}*"))
        except redis.RedisError as e:
            raise CacheStorageError(f"Redis scan failed for {self._prefix}*: {e}") from e
        return [
            (k.decode() if isinstance(k, bytes) else k)[len(self._prefix):]
            for k in raw_keys
        ]

    def size(self) -> int:
        return len(self.keys())

    def health_check(self) -> bool:
        """Check if Redis is accessible.

        Returns:
            True if healthy, False otherwise
        """
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    @property
    def client(self) -> redis.Redis:
        """Get the Redis client."""
        return self._client
