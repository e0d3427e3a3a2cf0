"""Google Books implementation of BookCatalog.

Calls the public volumes endpoint and normalizes each volume into a Book.
Upstream failures are classified for the search proxy:

- credential problems (missing/invalid/restricted key) -> UpstreamAuthError (401)
- other HTTP errors -> UpstreamSearchError with the upstream status
- transport failures -> UpstreamSearchError (500)
"""

import logging
import re
from typing import Any

import httpx

from librovision.config import settings
from librovision.exceptions import UpstreamAuthError, UpstreamSearchError
from librovision.models import Book

logger = logging.getLogger(__name__)

COVER_PRIORITY = ("extraLarge", "large", "medium", "small", "thumbnail", "smallThumbnail")

CREDENTIAL_REASONS = {
    "keyInvalid",
    "keyExpired",
    "accessNotConfigured",
    "ipRefererBlocked",
    "forbidden",
}


def highest_quality_cover(image_links: dict[str, str] | None) -> str | None:
    """Pick the largest available cover and force https / full resolution."""
    if not image_links:
        return None

    cover_url = next((image_links[k] for k in COVER_PRIORITY if image_links.get(k)), None)
    if not cover_url:
        return None

    url = cover_url.replace("http:", "https:", 1)
    if "books.google.com" in url:
        url = re.sub(r"&zoom=\d+", "", url)
        url = re.sub(r"&w=\d+", "", url)
        url = re.sub(r"&h=\d+", "", url)
        if "zoom=" not in url:
            url += "&zoom=1"
    return url


def format_google_book(item: dict[str, Any]) -> Book:
    """Normalize one Google Books volume."""
    volume_info = item.get("volumeInfo") or {}

    publication_year = None
    match = re.search(r"\d{4}", volume_info.get("publishedDate") or "")
    if match:
        publication_year = int(match.group(0))

    identifiers = {
        i.get("type"): i.get("identifier") for i in volume_info.get("industryIdentifiers") or []
    }
    isbn = identifiers.get("ISBN_13") or identifiers.get("ISBN_10")

    authors = volume_info.get("authors") or []
    return Book(
        id=item["id"],
        google_book_id=item["id"],
        title=volume_info.get("title") or "No title",
        author=", ".join(authors) if authors else "Unknown Author",
        cover_image_url=highest_quality_cover(volume_info.get("imageLinks")),
        summary=volume_info.get("description") or "No summary available.",
        average_rating=volume_info.get("averageRating"),
        genres=volume_info.get("categories") or [],
        publication_year=publication_year,
        isbn=isbn,
    )


def classify_upstream_error(response: httpx.Response) -> UpstreamSearchError:
    """Turn a failed Google Books response into the matching exception."""
    try:
        details = response.json()
    except ValueError:
        details = {"message": response.text}
    if not isinstance(details, dict):
        details = {"message": str(details)}

    error = details.get("error") if isinstance(details.get("error"), dict) else {}
    message = error.get("message") or details.get("message") or response.reason_phrase
    reasons = {e.get("reason") for e in error.get("errors") or [] if isinstance(e, dict)}

    if (
        response.status_code == 401
        or reasons & CREDENTIAL_REASONS
        or "api key" in str(message).lower()
    ):
        return UpstreamAuthError(f"Google Books API rejected credentials: {message}", details=details)

    return UpstreamSearchError(
        f"Google Books API error: {response.reason_phrase or message}",
        status=response.status_code,
        details=details,
    )


class GoogleBooksRepository:
    """Google Books catalog client.

    This class satisfies the BookCatalog protocol through structural typing.

    Example:
        ```python
        catalog = GoogleBooksRepository.create()
        books = await catalog.search("dune", page=1, max_results=20)
        ```
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_results_cap: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Google Books repository.

        Args:
            api_url: Volumes endpoint. Defaults to settings.
            api_key: API key. If unset, the anonymous quota is used.
            timeout: Request timeout in seconds.
            max_results_cap: Upper bound on page size (Google allows 40).
            client: Pre-built httpx client.
        """
        self._api_url = api_url or settings.google_books_api_url
        self._api_key = api_key if api_key is not None else settings.google_books_api_key
        self._timeout = timeout or settings.google_books_timeout
        self._max_results_cap = max_results_cap or settings.google_books_max_results
        self._client = client

    @classmethod
    def create(cls, api_key: str | None = None) -> "GoogleBooksRepository":
        """Factory method to create GoogleBooksRepository with defaults."""
        return cls(api_key=api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-load the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._client

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def build_params(self, query: str, page: int, max_results: int) -> dict[str, Any]:
        max_results = max(1, min(max_results, self._max_results_cap))
        params: dict[str, Any] = {
            "q": query,
            "startIndex": (max(page, 1) - 1) * max_results,
            "maxResults": max_results,
        }
        if self._api_key:
            params["key"] = self._api_key
        return params

    async def search(self, query: str, page: int = 1, max_results: int = 20) -> list[Book]:
        params = self.build_params(query, page, max_results)
        logger.info("Calling Google Books API: q=%r startIndex=%s", query, params["startIndex"])

        try:
            response = await self.client.get(self._api_url, params=params)
        except httpx.HTTPError as e:
            logger.error("Google Books request failed: %s", e)
            raise UpstreamSearchError(
                "Failed to fetch books from external APIs",
                status=500,
                details={"message": str(e)},
            ) from e

        if response.status_code >= 400:
            error = classify_upstream_error(response)
            logger.error("Google Books API error %s: %s", response.status_code, error.details)
            raise error

        items = response.json().get("items") or []
        books = [format_google_book(item) for item in items if item.get("id")]
        logger.info("Found %d books for query %r", len(books), query)
        return books

    async def is_available(self) -> bool:
        try:
            await self.search("isbn:9780441013593", max_results=1)
            return True
        except UpstreamSearchError:
            return False

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
