"""Book catalog protocol.

Anything that can turn a free-text query into normalized book summaries:
the Google Books repository (direct upstream) or the search proxy client
(through our own ``/api/search/books`` endpoint).
"""

from typing import Protocol, runtime_checkable

from librovision.models import Book


@runtime_checkable
class BookCatalog(Protocol):
    async def search(self, query: str, page: int = 1, max_results: int = 20) -> list[Book]:
        """Search the catalog.

        Args:
            query: Free-text search query
            page: 1-based page number
            max_results: Page size (capped by the catalog)

        Returns:
            Normalized books for that page

        Raises:
            UpstreamSearchError: If the catalog rejects or fails the request
        """
        ...

    async def is_available(self) -> bool:
        ...
