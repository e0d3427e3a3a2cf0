"""In-memory LRU implementation of CacheStore.

The fast tier of the tiered cache. Entries live in an access-ordered map:
every ``get_entry``/``set_entry`` moves the key to the most-recent end, and
inserting a new key into a full cache evicts from the least-recent end.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from librovision.config import settings
from librovision.entities import CacheEntryEntity

logger = logging.getLogger(__name__)


class MemoryCache:
    """Bounded in-process cache with LRU eviction.

    This class satisfies the CacheStore protocol through structural typing.
    It never raises for storage reasons; values are kept by reference.
    """

    name = "memory"

    def __init__(
        self,
        max_size: int = 100,
        max_age: float | None = None,
        version: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the memory tier.

        Args:
            max_size: Maximum number of entries before LRU eviction.
            max_age: Default entry lifetime in seconds. Defaults to settings.
            version: Cache-format version stamp. Defaults to settings.
            clock: Time source returning Unix seconds (injectable for tests).
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._max_size = max_size
        self._max_age = settings.cache_max_age if max_age is None else max_age
        self._version = version or settings.cache_version
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntryEntity] = OrderedDict()

    def _evict_lru(self) -> None:
        while len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted least-recently-used key %s", evicted)

    def set_entry(self, key: str, data: Any, max_age: float | None = None) -> bool:
        if key in self._entries:
            del self._entries[key]
        else:
            self._evict_lru()

        self._entries[key] = CacheEntryEntity(
            data=data,
            timestamp=self._clock(),
            expiry=self._max_age if max_age is None else max_age,
            version=self._version,
        )
        return True

    def get_entry(self, key: str) -> CacheEntryEntity | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()) or entry.is_version_mismatch(self._version):
            self.delete(key)
            return None

        self._entries.move_to_end(key)
        return entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> bool:
        self._entries.clear()
        return True

    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        """Keys from least- to most-recently used."""
        return list(self._entries.keys())

    @property
    def max_size(self) -> int:
        return self._max_size
