"""
Tests for the book service: search fall-through, details and reading-log mutations.
"""

import pytest

from librovision.entities import query_keys
from librovision.exceptions import (
    MutationError,
    NotAuthenticatedError,
    RequestError,
    UpstreamAuthError,
    UpstreamSearchError,
)
from librovision.models import Book
from librovision.services import BookService


class FakeCatalog:
    def __init__(self, books=None):
        self.books = books if books is not None else []
        self.calls = []

    async def search(self, query, page=1, max_results=20):
        self.calls.append((query, page, max_results))
        return self.books

    async def is_available(self):
        return True


BOOK_ROW = {"id": "b1", "title": "Dune", "authors": ["Frank Herbert"], "genres": ["Fiction"]}


@pytest.fixture
def catalog():
    return FakeCatalog([Book(id="g1", google_book_id="g1", title="Dune", author="Frank Herbert")])


@pytest.fixture
def books(store, context, catalog):
    return BookService(store=store, context=context, catalog=catalog, page_size=20)


async def test_search_falls_through_to_catalog_and_is_cached(books, store, catalog, clock):
    """Too few stored matches -> catalog -> cached by query and filters."""
    data = await books.search_books("dune", {"genre": "Fiction"})

    assert [b["title"] for b in data["pages"][0]["items"]] == ["Dune"]
    assert len(catalog.calls) == 1
    search_read = store.reads_of("books")[0]
    assert "title.ilike.*dune*" in search_read.or_filter

    [(upsert, payload)] = store.writes_to("books")
    assert upsert.method == "upsert"
    assert upsert.on_conflict == "google_book_id"
    assert upsert.ignore_duplicates
    assert payload[0]["google_book_id"] == "g1"

    reads_before = len(store.reads)
    clock.advance(5 * 60)
    again = await books.search_books("dune", {"genre": "Fiction"})

    assert again == data
    assert len(store.reads) == reads_before
    assert len(catalog.calls) == 1


async def test_search_with_enough_stored_rows_skips_catalog(store, context, catalog):
    service = BookService(store=store, context=context, catalog=catalog, page_size=2)
    store.on_read("books", lambda d: [{"id": "1", "title": "Dune"}, {"id": "2", "title": "Dune Messiah"}])

    data = await service.search_books("dune")

    assert len(data["pages"][0]["items"]) == 2
    assert catalog.calls == []


async def test_different_filters_are_different_queries(books, catalog):
    await books.search_books("dune", {"genre": "Fiction"})
    await books.search_books("dune", {"genre": "Classics"})
    assert len(catalog.calls) == 2


async def test_blank_search_is_rejected(books):
    with pytest.raises(ValueError):
        await books.search_books("   ")


async def test_get_book_uses_tiered_cache(books, store, context):
    store.on_read("books", lambda d: BOOK_ROW)

    book = await books.get_book("b1")
    assert book["author"] == "Frank Herbert"
    assert context.books.get("book_b1").hit

    context.query_client.clear()
    assert await books.get_book("b1") == book
    assert len(store.reads_of("books")) == 1


async def test_get_book_unknown_returns_none(books):
    assert await books.get_book("nope") is None


async def test_get_book_includes_user_interaction(books, store, context):
    context.sign_in("u1")
    store.on_read("books", lambda d: BOOK_ROW)
    store.on_read(
        "user_book_interactions",
        lambda d: [{"user_id": "u1", "book_id": "b1", "is_on_watchlist": True, "rating": 4}],
    )

    book = await books.get_book("b1")

    assert book["current_user_is_on_watchlist"] is True
    assert book["current_user_rating"] == 4


async def test_mark_currently_reading_clears_watchlist_in_one_update(books, store, context):
    """No observable state where both flags are true."""
    context.sign_in("u1")
    key = query_keys.book("b1")
    context.query_client.set_query_data(
        key, Book(id="b1", title="Dune", current_user_is_on_watchlist=True).model_dump(mode="json")
    )
    seen = []

    def write(descriptor, payload):
        seen.append(dict(context.query_client.get_query_data(key)))
        return {**payload}

    store.on_write("user_book_interactions", write)

    await books.mark_currently_reading("b1")

    [during] = seen
    assert during["current_user_is_currently_reading"] is True
    assert during["current_user_is_on_watchlist"] is False
    [(descriptor, payload)] = store.writes_to("user_book_interactions")
    assert descriptor.on_conflict == "user_id,book_id"
    assert payload == {"user_id": "u1", "book_id": "b1", "is_currently_reading": True, "is_on_watchlist": False}
    assert context.query_client.get_query_state(key).is_invalidated
    assert context.query_client.get_query_data(query_keys.book_interaction("b1"))["is_currently_reading"] is True


async def test_add_to_watchlist_clears_currently_reading(books, store, context):
    context.sign_in("u1")
    key = query_keys.book("b1")
    context.query_client.set_query_data(
        key, Book(id="b1", title="Dune", current_user_is_currently_reading=True).model_dump(mode="json")
    )

    await books.add_to_watchlist("b1")

    [(_, payload)] = store.writes_to("user_book_interactions")
    assert payload["is_on_watchlist"] is True
    assert payload["is_currently_reading"] is False


async def test_failed_interaction_rolls_back(books, store, context, mutation_errors):
    context.sign_in("u1")
    key = query_keys.book("b1")
    original = Book(id="b1", title="Dune", current_user_is_on_watchlist=True).model_dump(mode="json")
    context.query_client.set_query_data(key, original)

    def fail(descriptor, payload):
        raise RequestError("permission denied", status=403)

    store.on_write("user_book_interactions", fail)

    with pytest.raises(MutationError):
        await books.mark_currently_reading("b1")

    assert context.query_client.get_query_data(key) == original
    assert context.query_client.get_query_data(query_keys.book_interaction("b1")) is None
    assert [name for name, _ in mutation_errors] == ["mark_currently_reading"]


async def test_mutations_require_sign_in(books):
    with pytest.raises(NotAuthenticatedError):
        await books.like_book("b1")


async def test_clear_read_status_removes_own_review(books, store, context):
    context.sign_in("u1")
    own = {"id": "r1", "user_id": "u1", "book_id": "b1", "rating": 4}
    other = {"id": "r2", "user_id": "u2", "book_id": "b1", "rating": 5}
    reviews_key = query_keys.book_reviews("b1")
    page = {"items": [own, other], "total": 2, "page": 1, "page_size": 10, "total_pages": 1}
    context.query_client.set_query_data(reviews_key, {"pages": [page], "page_params": [1]})

    await books.clear_read_status("b1")

    items = context.query_client.get_query_data(reviews_key)["pages"][0]["items"]
    assert [r["id"] for r in items] == ["r2"]
    assert context.query_client.get_query_state(reviews_key).is_invalidated
    assert [d.table for d, _ in store.writes] == ["reviews", "user_book_interactions"]
    assert store.writes[0][0].method == "delete"
    assert store.writes[1][1]["is_read"] is False


async def test_currently_reading_shelf(books, store, context):
    assert await books.get_currently_reading() == []

    context.sign_in("u1")
    store.on_read(
        "user_book_interactions",
        lambda d: [{"user_id": "u1", "book_id": "b1", "is_currently_reading": True, "book": BOOK_ROW}],
    )
    shelf = await books.get_currently_reading()
    assert shelf[0]["current_user_is_currently_reading"] is True


class FailingCatalog(FakeCatalog):
    def __init__(self, error):
        super().__init__()
        self.error = error

    async def search(self, query, page=1, max_results=20):
        self.calls.append((query, page, max_results))
        raise self.error


async def test_catalog_credential_failure_is_not_retried(store, context):
    catalog = FailingCatalog(UpstreamAuthError("API key not valid"))
    service = BookService(store=store, context=context, catalog=catalog)

    with pytest.raises(UpstreamAuthError):
        await service.search_books("dune")

    assert len(catalog.calls) == 1


async def test_catalog_server_failure_is_retried(store, context):
    catalog = FailingCatalog(UpstreamSearchError("Google Books API error: Service Unavailable", status=503))
    service = BookService(store=store, context=context, catalog=catalog)

    with pytest.raises(UpstreamSearchError):
        await service.search_books("dune")

    # First attempt plus three retries
    assert len(catalog.calls) == 4
