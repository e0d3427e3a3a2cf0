"""HTTP handler for the book search proxy.

Handlers convert between DTOs (API contracts) and catalog calls. Every
failure leaves as a ``SearchErrorResponse`` body with a remediation hint.
"""

import logging
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from librovision.dto import BookSearchParams, BookSummary, HealthCheckResponse, SearchErrorResponse
from librovision.exceptions import UpstreamAuthError, UpstreamSearchError
from librovision.protocols import BookCatalog
from librovision.services import CacheContext

logger = logging.getLogger(__name__)


def remediation_for(status_code: int) -> str:
    """Suggested next step for a failed search with ``status_code``."""
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "Provide a search term with the 'q' query parameter."
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return (
            "Check that GOOGLE_BOOKS_API_KEY is valid and has the Books API enabled, "
            "or unset it to use the anonymous quota."
        )
    if status_code in (status.HTTP_403_FORBIDDEN, status.HTTP_429_TOO_MANY_REQUESTS):
        return "The catalog quota is exhausted. Wait a few minutes and try again."
    if status_code >= 500:
        return "The book catalog is unavailable. Try again shortly; books you viewed before are still cached."
    return "Check the search parameters and try again."


def error_response(status_code: int, error: str, message: str, details: Any = None) -> JSONResponse:
    body = SearchErrorResponse(
        error=error,
        message=message,
        remediation=remediation_for(status_code),
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


class SearchHandler:
    """HTTP handlers for the search proxy and health endpoints.

    Example:
        ```python
        handler = SearchHandler(catalog=GoogleBooksRepository.create(), context=context)

        @app.get("/api/search/books")
        async def search_books(params: Annotated[BookSearchParams, Query()]):
            return await handler.search_books(params)
        ```
    """

    def __init__(self, catalog: BookCatalog, context: CacheContext | None = None, has_api_key: bool = False) -> None:
        """Initialize the search handler.

        Args:
            catalog: Upstream book catalog (required).
            context: Cache context, used for health reporting.
            has_api_key: Whether the catalog runs with credentials.
        """
        self._catalog = catalog
        self._context = context
        self._has_api_key = has_api_key

    async def search_books(self, params: BookSearchParams) -> list[BookSummary] | JSONResponse:
        """Handle GET /api/search/books requests.

        Returns:
            Normalized book summaries, or a structured error response
        """
        query = (params.q or "").strip()
        if not query:
            return error_response(
                status.HTTP_400_BAD_REQUEST,
                "Search query is required",
                "The 'q' query parameter is missing or empty.",
            )

        try:
            books = await self._catalog.search(query, page=params.page, max_results=params.max_results)
        except UpstreamAuthError as e:
            logger.error("Catalog credentials rejected: %s", e.message)
            return error_response(e.status, "Google Books API authentication failed", e.message, e.details)
        except UpstreamSearchError as e:
            logger.error("Catalog search failed (%s): %s", e.status, e.message)
            return error_response(e.status, "Failed to fetch books", e.message, e.details)

        return [BookSummary.model_validate(book.model_dump()) for book in books]

    def health_check(self, redis_healthy: bool) -> HealthCheckResponse:
        """Handle GET /health requests."""
        return HealthCheckResponse(
            status="healthy" if redis_healthy else "unhealthy",
            redis_healthy=redis_healthy,
            catalog_configured=self._has_api_key,
            cache={
                name: cache.size() for name, cache in self._context.caches.items()
            } if self._context else {},
        )
