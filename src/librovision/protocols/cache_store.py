"""Cache tier protocol.

Defines the interface every tier of the tiered cache implements.

Implementations:
- MemoryCache: in-process LRU (fast tier)
- RedisCacheRepository: durable tier
- SessionCacheRepository: session-scoped tier, cleared at logout
"""

from typing import Any, Protocol, runtime_checkable

from librovision.entities import CacheEntryEntity


@runtime_checkable
class CacheStore(Protocol):
    """Protocol for one tier of the tiered cache.

    Any type that implements these methods satisfies the protocol, no
    explicit inheritance needed.

    Tiers own their expiry and version checks: ``get_entry`` returns None for
    missing, expired or version-mismatched entries and purges the latter two.
    Durable tiers may raise ``CacheStorageError`` or backend errors; the
    tiered cache is responsible for containing them.

    Example:
        ```python
        from librovision.protocols import CacheStore

        tier: CacheStore = MemoryCache(max_size=100)
        tier: CacheStore = RedisCacheRepository.create(prefix="librovision_books_")
        ```
    """

    @property
    def name(self) -> str:
        """Short tier name used in logs and stats (e.g. "memory")."""
        ...

    def get_entry(self, key: str) -> CacheEntryEntity | None:
        """Return the live entry for ``key``.

        Args:
            key: Cache key (without any tier prefix)

        Returns:
            The entry, or None if missing, expired or from another cache version
        """
        ...

    def set_entry(self, key: str, data: Any, max_age: float | None = None) -> bool:
        """Store ``data`` under ``key``.

        Args:
            key: Cache key
            data: Value to store
            max_age: Lifetime in seconds. Defaults to the tier's configured max age.

        Returns:
            True if stored
        """
        ...

    def delete(self, key: str) -> bool:
        """Delete ``key``. Returns True if something was removed."""
        ...

    def clear(self) -> bool:
        """Remove every entry owned by this tier."""
        ...

    def size(self) -> int:
        """Number of entries currently held."""
        ...

    def keys(self) -> list[str]:
        """Keys currently held (without prefix)."""
        ...
