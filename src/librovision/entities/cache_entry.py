"""Cache entry domain entity."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheEntryEntity:
    """A value stored in one cache tier together with its freshness metadata.

    Attributes:
        data: The cached value (opaque to the cache)
        timestamp: Insertion time (Unix timestamp, seconds)
        expiry: Lifetime in seconds measured from ``timestamp``
        version: Cache-format version the entry was written with
    """

    data: Any
    timestamp: float
    expiry: float
    version: str

    @property
    def expires_at(self) -> float:
        return self.timestamp + self.expiry

    def is_expired(self, now: float) -> bool:
        """Check whether the entry's lifetime has elapsed at ``now``."""
        return now > self.expires_at

    def is_version_mismatch(self, version: str) -> bool:
        """Check whether the entry was written by a different cache format."""
        return self.version != version

    def remaining(self, now: float) -> float:
        """Seconds of lifetime left at ``now`` (never negative)."""
        return max(0.0, self.expires_at - now)
