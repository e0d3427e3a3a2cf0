"""
Tests for the query client: de-duplication, staleness, retry, pagination, cancellation.
"""

import asyncio

import pytest

from conftest import no_sleep
from librovision.entities import query_keys
from librovision.exceptions import QueryCancelledError, RequestError
from librovision.services import QueryClient, QueryOptions, RequestDeduplicator, RetryPolicy

MINUTE = 60


@pytest.fixture
def client(clock):
    return QueryClient(retry_policy=RetryPolicy(retries=3, sleep=no_sleep), clock=clock)


class CountingFetcher:
    def __init__(self, results=None, delay=0.0):
        self.calls = 0
        self.results = list(results or [])
        self.delay = delay

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return {"call": self.calls}


async def test_concurrent_reads_trigger_one_fetch(client):
    """Concurrent callers for an uncached key share one network read."""
    fetch = CountingFetcher(delay=0.01)
    key = query_keys.book("123")

    results = await asyncio.gather(*(client.fetch_query(key, fetch) for _ in range(5)))

    assert fetch.calls == 1
    assert all(r == {"call": 1} for r in results)


async def test_fresh_then_stale_while_revalidate(client, clock):
    """book:123 with 5-minute freshness: cache at 1 min, SWR at 10 min."""
    fetch = CountingFetcher(results=[{"title": "v1"}, {"title": "v2"}])
    key = query_keys.book("123")
    options = QueryOptions(stale_time=5 * MINUTE, gc_time=30 * MINUTE)

    assert await client.fetch_query(key, fetch, options) == {"title": "v1"}

    clock.advance(1 * MINUTE)
    assert await client.fetch_query(key, fetch, options) == {"title": "v1"}
    assert fetch.calls == 1

    clock.advance(9 * MINUTE)
    stale = await client.fetch_query(key, fetch, options)
    assert stale == {"title": "v1"}
    assert client.get_query_state(key).is_fetching

    await client.wait_for_fetches()
    assert fetch.calls == 2
    assert client.get_query_data(key) == {"title": "v2"}


async def test_invalidated_query_refetches_in_background(client):
    fetch = CountingFetcher(results=[1, 2])
    key = query_keys.popular_books()
    await client.fetch_query(key, fetch)

    assert client.invalidate_queries(query_keys.books) == 1
    assert await client.fetch_query(key, fetch) == 1
    await client.wait_for_fetches()
    assert client.get_query_data(key) == 2


async def test_transient_errors_are_retried(client):
    fetch = CountingFetcher(results=[RequestError("boom", status=503), RequestError("net"), "ok"])
    assert await client.fetch_query(query_keys.book("1"), fetch) == "ok"
    assert fetch.calls == 3


async def test_client_errors_are_not_retried(client):
    fetch = CountingFetcher(results=[RequestError("forbidden", status=403), "never"])
    with pytest.raises(RequestError):
        await client.fetch_query(query_keys.book("1"), fetch)
    assert fetch.calls == 1


async def test_retries_are_bounded(client):
    fetch = CountingFetcher(results=[RequestError("down", status=500)] * 10)
    with pytest.raises(RequestError):
        await client.fetch_query(query_keys.book("1"), fetch)
    assert fetch.calls == 4


def test_backoff_delays():
    policy = RetryPolicy(retries=5, base_delay=1.0, max_delay=30.0)
    assert [policy.delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]


async def test_cancel_in_flight_fetch(client):
    fetch = CountingFetcher(delay=10)
    key = query_keys.book("1")

    waiter = asyncio.ensure_future(client.fetch_query(key, fetch))
    await asyncio.sleep(0)
    assert client.cancel_queries(key) == 1

    with pytest.raises(QueryCancelledError):
        await waiter
    assert client.get_query_data(key) is None


async def test_cancel_keeps_cached_data(client, clock):
    key = query_keys.book("1")
    client.set_query_data(key, {"title": "cached"})
    client.invalidate_queries(key)

    slow = CountingFetcher(delay=10)
    assert await client.fetch_query(key, slow) == {"title": "cached"}
    client.cancel_queries(key)
    await asyncio.sleep(0)

    assert client.get_query_data(key) == {"title": "cached"}
    assert not client.get_query_state(key).is_fetching


async def test_garbage_collection(client, clock):
    key = query_keys.book("1")
    await client.fetch_query(key, CountingFetcher(), QueryOptions(stale_time=60, gc_time=120))

    clock.advance(121)
    assert client.collect_garbage() == 1
    assert client.get_query_state(key) is None


async def test_infinite_query_pagination(client):
    calls = []

    async def page_fn(page):
        calls.append(page)
        return {"items": [f"p{page}"], "total": 3, "page": page, "page_size": 1, "total_pages": 3}

    key = query_keys.book_reviews("b1")
    data = await client.fetch_infinite_query(key, page_fn)
    assert data["page_params"] == [1]
    assert client.has_next_page(data)

    await client.fetch_next_page(key, page_fn)
    data = await client.fetch_next_page(key, page_fn)
    assert [p["items"][0] for p in data["pages"]] == ["p1", "p2", "p3"]
    assert not client.has_next_page(data)

    # Last page reached: no further request
    await client.fetch_next_page(key, page_fn)
    assert calls == [1, 2, 3]


async def test_concurrent_next_page_requests_are_deduplicated(client):
    calls = []

    async def page_fn(page):
        calls.append(page)
        await asyncio.sleep(0.01)
        return {"items": [page], "total": 4, "page": page, "page_size": 1, "total_pages": 4}

    key = query_keys.user_lists("u1")
    await client.fetch_infinite_query(key, page_fn)
    await asyncio.gather(client.fetch_next_page(key, page_fn), client.fetch_next_page(key, page_fn))

    assert calls == [1, 2]
    assert client.get_query_data(key)["page_params"] == [1, 2]


def test_snapshot_and_restore_absence(client):
    key = query_keys.review("r1")
    snapshot = client.snapshot(key)
    client.set_query_data(key, {"like_count": 5})

    client.restore(key, snapshot)
    assert client.get_query_data(key) is None
    assert client.find_keys(query_keys.reviews) == []


def test_set_query_data_with_updater(client):
    key = query_keys.review("r1")
    client.set_query_data(key, {"like_count": 1})
    client.set_query_data(key, lambda r: {**r, "like_count": r["like_count"] + 1})
    assert client.get_query_data(key) == {"like_count": 2}


async def test_updater_returning_none_leaves_unloaded_query_alone(client):
    key = query_keys.book_reviews("b1")

    assert client.set_query_data(key, lambda data: data and {**data, "total": 1}) is None
    assert client.get_query_state(key) is None

    fetcher = CountingFetcher()
    assert await client.fetch_query(key, fetcher) == {"call": 1}
    assert fetcher.calls == 1


async def test_request_deduplicator():
    dedup = RequestDeduplicator()
    calls = 0

    async def fn():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return calls

    a, b = await asyncio.gather(dedup.run("k", fn), dedup.run("k", fn))
    assert (a, b) == (1, 1)
    assert len(dedup) == 0

    assert await dedup.run("k", fn) == 2
