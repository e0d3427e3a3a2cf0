"""Mutation context domain entity."""

from dataclasses import dataclass, field
from typing import Any

from .query_key import QueryKey


@dataclass(frozen=True)
class QuerySnapshot:
    """Verbatim copy of one query entry, taken before an optimistic write.

    Attributes:
        present: Whether the query held data at snapshot time
        data: Deep copy of the data (None when absent)
        updated_at: When the data was last written (Unix timestamp)
        is_invalidated: Invalidation flag at snapshot time
    """

    present: bool
    data: Any = None
    updated_at: float = 0.0
    is_invalidated: bool = False


@dataclass
class MutationContext:
    """Snapshots captured at the start of one mutation.

    Created when the mutation starts and consumed exactly once: discarded on
    success or handed to rollback on failure.

    Attributes:
        mutation: Name of the mutation, for logging and errors
        snapshots: Pre-mutation state of every key the mutation alters
    """

    mutation: str
    snapshots: dict[QueryKey, QuerySnapshot] = field(default_factory=dict)
    _consumed: bool = field(default=False, repr=False)

    def capture(self, key: QueryKey, snapshot: QuerySnapshot) -> None:
        """Record the state of ``key`` unless it was already captured."""
        if self._consumed:
            raise RuntimeError(f"MutationContext for {self.mutation} already consumed")
        self.snapshots.setdefault(key, snapshot)

    def has(self, key: QueryKey) -> bool:
        return key in self.snapshots

    def consume(self) -> dict[QueryKey, QuerySnapshot]:
        """Hand out the snapshots; a context can only be consumed once."""
        if self._consumed:
            raise RuntimeError(f"MutationContext for {self.mutation} already consumed")
        self._consumed = True
        return self.snapshots

    def discard(self) -> None:
        self.consume()

    @property
    def consumed(self) -> bool:
        return self._consumed
