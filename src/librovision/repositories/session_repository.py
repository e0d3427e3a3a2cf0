"""Session-scoped implementation of CacheStore.

Holds serialized envelopes for the lifetime of one login session and is
cleared at logout. Storage is bounded by a byte quota; a write that would
exceed it fails with CacheStorageError, like a full browser session store.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from librovision.config import settings
from librovision.entities import CacheEntryEntity
from librovision.exceptions import CacheStorageError

from .envelope import decode_entry, encode_entry

logger = logging.getLogger(__name__)


class SessionCacheRepository:
    """Quota-bounded, string-valued session store.

    This class satisfies the CacheStore protocol through structural typing.
    Several repositories may share one ``storage`` dict (one per session),
    each owning the keys under its own prefix.
    """

    name = "session"

    def __init__(
        self,
        prefix: str | None = None,
        storage: dict[str, str] | None = None,
        max_bytes: int | None = None,
        max_age: float | None = None,
        version: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the session tier.

        Args:
            prefix: Key namespace, e.g. ``librovision_books_``.
            storage: Backing dict shared by the session. Defaults to a new dict.
            max_bytes: Quota for the whole backing dict (UTF-8 bytes of values).
            max_age: Default entry lifetime in seconds.
            version: Cache-format version stamp.
            clock: Time source returning Unix seconds.
        """
        self._prefix = prefix or settings.cache_prefix
        self._storage = storage if storage is not None else {}
        self._max_bytes = max_bytes or settings.session_cache_max_bytes
        self._max_age = settings.cache_max_age if max_age is None else max_age
        self._version = version or settings.cache_version
        self._clock = clock

    def _make_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _used_bytes(self, excluding: str | None = None) -> int:
        return sum(
            len(k.encode()) + len(v.encode())
            for k, v in self._storage.items()
            if k != excluding
        )

    def set_entry(self, key: str, data: Any, max_age: float | None = None) -> bool:
        entry = CacheEntryEntity(
            data=data,
            timestamp=self._clock(),
            expiry=self._max_age if max_age is None else max_age,
            version=self._version,
        )
        payload = encode_entry(entry)
        storage_key = self._make_key(key)

        needed = len(storage_key.encode()) + len(payload.encode())
        if self._used_bytes(excluding=storage_key) + needed > self._max_bytes:
            raise CacheStorageError(
                f"Session storage quota exceeded writing {key} ({needed} bytes)"
            )

        self._storage[storage_key] = payload
        return True

    def get_entry(self, key: str) -> CacheEntryEntity | None:
        raw = self._storage.get(self._make_key(key))
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
        return self._storage.pop(self._make_key(key), None) is not None

    def clear(self) -> bool:
        for storage_key in [k for k in self._storage if k.startswith(self._prefix)]:
            del self._storage[storage_key]
        return True

    def keys(self) -> list[str]:
        return [k[len(self._prefix):] for k in self._storage if k.startswith(self._prefix)]

    def size(self) -> int:
        return len(self.keys())
