"""
Tests for the PostgREST data store.
"""

import httpx
import pytest

from librovision.entities import Filter, ResourceDescriptor
from librovision.exceptions import NotFoundError, RequestError
from librovision.repositories import SupabaseRepository
from librovision.repositories.supabase_repository import format_filter, parse_content_range


def make_store(handler):
    requests = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    return SupabaseRepository(base_url="https://db.test/", api_key="anon", client=client), requests


def test_format_filter():
    assert format_filter(Filter("book_id", "eq", "b1")) == ("book_id", "eq.b1")
    assert format_filter(Filter("parent_comment_id", "is", None)) == ("parent_comment_id", "is.null")
    assert format_filter(Filter("read", "eq", False)) == ("read", "eq.false")
    assert format_filter(Filter("id", "in", ["n1", "n 2"])) == ("id", 'in.(n1,"n 2")')
    assert format_filter(Filter("genres", "cs", "Fiction")) == ("genres", "cs.{Fiction}")
    assert format_filter(Filter("read_date", "not.is", None)) == ("read_date", "not.is.null")


def test_parse_content_range():
    assert parse_content_range("0-9/42") == 42
    assert parse_content_range("*/0") == 0
    assert parse_content_range("0-9/*") is None
    assert parse_content_range(None) is None


async def test_paged_read_builds_postgrest_query():
    store, requests = make_store(
        lambda r: httpx.Response(200, json=[{"id": "r1"}], headers={"Content-Range": "0-0/42"})
    )

    result = await store.read(
        ResourceDescriptor("reviews")
        .eq("book_id", "b1")
        .order_by("created_at", ascending=False)
        .page(2, 10)
    )

    assert result.rows == [{"id": "r1"}]
    assert result.count == 42
    [request] = requests
    assert request.method == "GET"
    assert request.url.path == "/rest/v1/reviews"
    assert request.url.params["select"] == "*"
    assert request.url.params["book_id"] == "eq.b1"
    assert request.url.params["order"] == "created_at.desc"
    assert request.url.params["offset"] == "10"
    assert request.url.params["limit"] == "10"
    assert request.headers["apikey"] == "anon"
    assert request.headers["Authorization"] == "Bearer anon"
    assert request.headers["Prefer"] == "count=exact"


async def test_access_token_replaces_anon_bearer():
    store, requests = make_store(lambda r: httpx.Response(200, json=[]))
    store.set_access_token("jwt")

    await store.read(ResourceDescriptor("books"))

    assert requests[0].headers["Authorization"] == "Bearer jwt"


async def test_single_read_not_found():
    store, requests = make_store(
        lambda r: httpx.Response(406, json={"code": "PGRST116", "message": "0 rows"})
    )

    with pytest.raises(NotFoundError):
        await store.read(ResourceDescriptor("books").eq("id", "missing").one())

    assert requests[0].headers["Accept"] == "application/vnd.pgrst.object+json"


async def test_client_error_keeps_status():
    store, _ = make_store(
        lambda r: httpx.Response(403, json={"code": "42501", "message": "permission denied"})
    )

    with pytest.raises(RequestError) as exc_info:
        await store.write(ResourceDescriptor("likes").as_write("insert"), {"user_id": "u1"})

    assert exc_info.value.status == 403
    assert exc_info.value.code == "42501"
    assert exc_info.value.is_client_error


async def test_transport_error_is_retryable_request_error():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    store, _ = make_store(boom)

    with pytest.raises(RequestError) as exc_info:
        await store.read(ResourceDescriptor("books"))

    assert exc_info.value.status is None
    assert not exc_info.value.is_client_error


async def test_upsert_sends_conflict_target_and_resolution():
    store, requests = make_store(lambda r: httpx.Response(201, json=[{"id": "b1"}]))

    await store.write(
        ResourceDescriptor("books").as_write("upsert", on_conflict="google_book_id", ignore_duplicates=True),
        [{"google_book_id": "g1"}],
    )

    [request] = requests
    assert request.method == "POST"
    assert request.url.params["on_conflict"] == "google_book_id"
    assert "select" not in request.url.params
    assert "resolution=ignore-duplicates" in request.headers["Prefer"]
    assert "return=representation" in request.headers["Prefer"]


async def test_delete_with_empty_body():
    store, requests = make_store(lambda r: httpx.Response(204))

    result = await store.write(ResourceDescriptor("likes").eq("review_id", "r1").as_write("delete"))

    assert result.data is None
    assert requests[0].method == "DELETE"
    assert requests[0].url.params["review_id"] == "eq.r1"


async def test_health_check():
    store, _ = make_store(lambda r: httpx.Response(200, json={}))
    assert await store.health_check() is True

    down, _ = make_store(lambda r: httpx.Response(503))
    assert await down.health_check() is False
