"""BookCatalog implementation that goes through the LibroVision search proxy.

Used by clients that must not hold the catalog credentials themselves: the
proxy endpoint (``GET /api/search/books``) talks to Google Books and returns
already normalized summaries.
"""

import logging

import httpx

from librovision.exceptions import UpstreamAuthError, UpstreamSearchError
from librovision.models import Book

logger = logging.getLogger(__name__)


class SearchProxyClient:
    """HTTP client for ``/api/search/books``.

    This class satisfies the BookCatalog protocol through structural typing.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def search(self, query: str, page: int = 1, max_results: int = 20) -> list[Book]:
        try:
            response = await self.client.get(
                f"{self._base_url}/api/search/books",
                params={"q": query, "page": page, "maxResults": max_results},
            )
        except httpx.HTTPError as e:
            raise UpstreamSearchError("Search proxy unreachable", status=500, details={"message": str(e)}) from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {"error": response.text}
            message = body.get("message") or body.get("error") or f"Request failed with status {response.status_code}"
            if response.status_code == 401:
                raise UpstreamAuthError(message, details=body)
            raise UpstreamSearchError(message, status=response.status_code, details=body)

        return [Book.model_validate(item) for item in response.json()]

    async def is_available(self) -> bool:
        try:
            response = await self.client.get(f"{self._base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
