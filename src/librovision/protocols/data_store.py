"""Remote data store protocol.

Defines the request/response contract the query and mutation layers consume.
The default implementation talks to Supabase's PostgREST API; tests use an
in-memory fake.
"""

from typing import Any, Protocol, runtime_checkable

from librovision.entities import ResourceDescriptor, StoreResult


@runtime_checkable
class DataStore(Protocol):
    """Protocol for the hosted relational store.

    Errors are raised as ``RequestError``; the only classification callers
    rely on is client (4xx, not retryable) versus everything else.
    """

    async def read(self, descriptor: ResourceDescriptor) -> StoreResult:
        """Read rows described by ``descriptor``.

        Raises:
            RequestError: On any failure. ``NotFoundError`` for ``single``
                reads that match no row.
        """
        ...

    async def write(
        self,
        descriptor: ResourceDescriptor,
        payload: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> StoreResult:
        """Insert, upsert, update or delete rows (``descriptor.method``).

        Returns:
            The affected rows as returned by the store
        """
        ...

    async def health_check(self) -> bool:
        ...
