"""
Tests for the LibroVision API.
"""

import pytest
from fastapi.testclient import TestClient

from librovision.api.app import app
from librovision.exceptions import UpstreamAuthError, UpstreamSearchError
from librovision.handlers import SearchHandler
from librovision.models import Book


class FakeCatalog:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def search(self, query, page=1, max_results=20):
        self.calls.append((query, page, max_results))
        if self.error is not None:
            raise self.error
        return [Book(id="vol1", google_book_id="vol1", title="Dune", author="Frank Herbert")]

    async def is_available(self):
        return self.error is None


@pytest.fixture
def client():
    """Create a test client with the lifespan running."""
    with TestClient(app) as test_client:
        yield test_client


def use_catalog(client, catalog):
    client.app.state.search_handler = SearchHandler(
        catalog=catalog, context=client.app.state.cache_context
    )


def test_root(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "LibroVision API"
    assert data["endpoints"]["search"] == "/api/search/books"


def test_health(client):
    """Test health check endpoint."""
    response = client.get("/health")
    # 503 when Redis is not running
    assert response.status_code in [200, 503]
    data = response.json()
    assert data["status"] in ["healthy", "unhealthy"]
    assert set(data["cache"]) == {"books", "users", "reviews", "lists"}


def test_search_books(client):
    catalog = FakeCatalog()
    use_catalog(client, catalog)

    response = client.get("/api/search/books", params={"q": "dune", "page": 2, "maxResults": 10})

    assert response.status_code == 200
    [book] = response.json()
    assert book["title"] == "Dune"
    assert book["google_book_id"] == "vol1"
    assert catalog.calls == [("dune", 2, 10)]


@pytest.mark.parametrize("params", [{}, {"q": "   "}])
def test_search_requires_query(client, params):
    catalog = FakeCatalog()
    use_catalog(client, catalog)

    response = client.get("/api/search/books", params=params)

    assert response.status_code == 400
    data = response.json()
    assert set(data) == {"error", "message", "remediation", "details"}
    assert "'q'" in data["remediation"]
    assert catalog.calls == []


def test_search_rejected_credentials(client):
    use_catalog(client, FakeCatalog(UpstreamAuthError("API key not valid", details={"error": {"code": 400}})))

    response = client.get("/api/search/books", params={"q": "dune"})

    assert response.status_code == 401
    data = response.json()
    assert data["error"] == "Google Books API authentication failed"
    assert "GOOGLE_BOOKS_API_KEY" in data["remediation"]
    assert data["details"] == {"error": {"code": 400}}


def test_search_upstream_failure(client):
    use_catalog(client, FakeCatalog(UpstreamSearchError("Failed to fetch books from external APIs")))

    response = client.get("/api/search/books", params={"q": "dune"})

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to fetch books"


def test_cache_stats(client):
    response = client.get("/api/cache/stats")
    assert response.status_code == 200
    data = response.json()
    assert "books" in data["domains"]
    assert "queries" in data


def test_offline_page(client):
    response = client.get("/offline")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "/health" in response.text
