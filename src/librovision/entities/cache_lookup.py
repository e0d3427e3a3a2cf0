"""Cache lookup result entity."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheLookup:
    """Outcome of a cache read: a value or an explicit absence.

    Reads never raise for missing keys or storage failures; callers test
    ``hit`` instead of relying on ``None`` (which is a legal cached value).

    Attributes:
        hit: Whether a live value was found
        value: The cached value (None when absent)
        tier: Name of the tier that served the value, if any
    """

    hit: bool
    value: Any = None
    tier: str | None = None

    @classmethod
    def found(cls, value: Any, tier: str | None = None) -> "CacheLookup":
        return cls(hit=True, value=value, tier=tier)

    @classmethod
    def absent(cls) -> "CacheLookup":
        return ABSENT

    def unwrap_or(self, default: Any) -> Any:
        """Return the value on a hit, ``default`` otherwise."""
        return self.value if self.hit else default

    def __bool__(self) -> bool:
        return self.hit


ABSENT = CacheLookup(hit=False)
