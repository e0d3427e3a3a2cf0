"""JSON envelope shared by the string-backed cache tiers.

Persisted layout of one entry: ``{"data", "timestamp", "expiry", "version"}``.
"""

import json

from librovision.entities import CacheEntryEntity
from librovision.exceptions import CacheStorageError


def encode_entry(entry: CacheEntryEntity) -> str:
    """Serialize an entry.

    Raises:
        CacheStorageError: If the data is not JSON-serializable
    """
    try:
        return json.dumps(
            {
                "data": entry.data,
                "timestamp": entry.timestamp,
                "expiry": entry.expiry,
                "version": entry.version,
            },
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        raise CacheStorageError(f"Cannot serialize cache entry: {e}") from e


def decode_entry(raw: str | bytes) -> CacheEntryEntity:
    """Deserialize an entry written by :func:`encode_entry`.

    Raises:
        CacheStorageError: If the payload is corrupt or not an envelope
    """
    try:
        item = json.loads(raw)
        return CacheEntryEntity(
            data=item["data"],
            timestamp=float(item["timestamp"]),
            expiry=float(item["expiry"]),
            version=str(item.get("version", "")),
        )
    except (TypeError, ValueError, KeyError) as e:
        raise CacheStorageError(f"Corrupt cache entry: {e}") from e
