"""Query orchestration service.

Keeps the in-memory query cache that the domain services read through:

- one in-flight fetch per key, shared by every concurrent caller
- stale-while-revalidate: stale data is returned at once while a background
  refetch runs
- retry with exponential backoff for transient failures only
- lazy garbage collection of queries nobody has read for ``gc_time``
- cancellation of in-flight fetches ahead of optimistic writes
- page-accumulating ("infinite") queries
"""

import asyncio
import copy
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from librovision.config import settings
from librovision.entities import QueryKey, QuerySnapshot
from librovision.exceptions import QueryCancelledError, is_retryable

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 60 * MINUTE

Fetcher = Callable[[], Awaitable[Any]]
PageFetcher = Callable[[int], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class QueryOptions:
    """Freshness and retry settings for one query.

    Attributes:
        stale_time: Seconds after a fetch during which data is served without a network call
        gc_time: Seconds an unread query is kept before being dropped
        retry: Retry count override (None uses the client's retry policy)
    """

    stale_time: float = settings.query_stale_time
    gc_time: float = settings.query_gc_time
    retry: int | None = None

    @classmethod
    def preset(cls, name: str, **overrides: Any) -> "QueryOptions":
        """Options for a named query type, e.g. ``QueryOptions.preset("search")``."""
        try:
            options = QUERY_PRESETS[name]
        except KeyError:
            raise ValueError(f"Unknown query preset: {name}") from None
        return replace(options, **overrides) if overrides else options


QUERY_PRESETS: dict[str, QueryOptions] = {
    "default": QueryOptions(),
    "search": QueryOptions(stale_time=10 * MINUTE, gc_time=15 * MINUTE),
    "book_details": QueryOptions(stale_time=30 * MINUTE),
    "popular_books": QueryOptions(stale_time=15 * MINUTE, gc_time=30 * MINUTE),
    "top_books_this_week": QueryOptions(stale_time=HOUR, gc_time=2 * HOUR),
    "currently_reading": QueryOptions(stale_time=5 * MINUTE),
    "book_interaction": QueryOptions(stale_time=2 * MINUTE),
    "book_reviews": QueryOptions(stale_time=5 * MINUTE),
    "review": QueryOptions(stale_time=10 * MINUTE),
    "top_reviews": QueryOptions(stale_time=HOUR),
    "notifications": QueryOptions(stale_time=1 * MINUTE),
}


@dataclass
class RetryPolicy:
    """Exponential backoff for transient failures.

    Client errors (4xx) are never retried. The delay before retry ``n``
    (0-based) is ``min(base_delay * 2**n, max_delay)``.
    """

    retries: int = settings.query_retries
    base_delay: float = settings.query_retry_base_delay
    max_delay: float = settings.query_retry_max_delay
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def should_retry(self, attempt: int, error: BaseException, retries: int | None = None) -> bool:
        limit = self.retries if retries is None else retries
        return attempt < limit and is_retryable(error)

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)

    async def run(self, fn: Fetcher, retries: int | None = None, label: str = "request") -> Any:
        """Call ``fn`` until it succeeds, the error is permanent or retries run out."""
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as e:
                if not self.should_retry(attempt, e, retries):
                    raise
                delay = self.delay(attempt)
                logger.info(
                    "%s failed (%s), retry %d in %.1fs", label, e, attempt + 1, delay
                )
                await self.sleep(delay)
                attempt += 1


class RequestDeduplicator:
    """Share one in-flight call among every caller using the same string key.

    The entry is removed as soon as the call settles, so a later call with the
    same key starts a new request.

    Example:
        ```python
        dedup = RequestDeduplicator()
        a, b = await asyncio.gather(
            dedup.run("book-123", lambda: store.read(descriptor)),
            dedup.run("book-123", lambda: store.read(descriptor)),
        )  # one read
        ```
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task] = {}

    def _settled(self, key: str, task: asyncio.Task) -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        if not task.cancelled():
            task.exception()

    async def run(self, key: str, fn: Fetcher) -> Any:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._pending[key] = task
            task.add_done_callback(lambda t: self._settled(key, t))
        return await asyncio.shield(task)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def clear(self) -> None:
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)


@dataclass
class QueryState:
    """Cached data and bookkeeping for one query key."""

    key: QueryKey
    options: QueryOptions
    data: Any = None
    has_data: bool = False
    updated_at: float = 0.0
    last_accessed: float = 0.0
    is_invalidated: bool = False
    error: BaseException | None = None
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def is_fetching(self) -> bool:
        return self.task is not None and not self.task.done()


def has_next_page(data: dict[str, Any] | None) -> bool:
    """True when the last loaded page of an infinite query is not the final one."""
    if not data or not data.get("pages"):
        return False
    last = data["pages"][-1]
    return last.get("page", 0) < last.get("total_pages", 0)


class QueryClient:
    """In-memory query cache with request orchestration.

    Every read in the domain services goes through ``fetch_query`` (or
    ``fetch_infinite_query``); optimistic mutations manipulate the same cache
    through ``snapshot`` / ``set_query_data`` / ``restore``.

    Example:
        ```python
        client = QueryClient()

        book = await client.fetch_query(
            query_keys.book("123"),
            lambda: store.read(ResourceDescriptor("books").eq("id", "123").one()),
            QueryOptions.preset("book_details"),
        )
        client.invalidate_queries(query_keys.books)
        ```
    """

    def __init__(
        self,
        default_options: QueryOptions | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the query client.

        Args:
            default_options: Options used when a call passes none.
            retry_policy: Backoff policy for query functions.
            clock: Time source returning seconds (injectable for tests).
        """
        self._default_options = default_options or QueryOptions()
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._queries: dict[QueryKey, QueryState] = {}
        self._deduplicator = RequestDeduplicator()

    # -- fetching ---------------------------------------------------------

    def _is_stale(self, state: QueryState, now: float) -> bool:
        return state.is_invalidated or now - state.updated_at >= state.options.stale_time

    def _write(self, state: QueryState, data: Any) -> None:
        now = self._clock()
        state.data = data
        state.has_data = True
        state.updated_at = now
        state.last_accessed = now
        state.is_invalidated = False
        state.error = None

    async def _run_fetch(self, state: QueryState, fn: Fetcher) -> Any:
        data = await self._retry.run(fn, retries=state.options.retry, label=f"query {state.key}")
        self._write(state, data)
        return data

    def _fetch_done(self, state: QueryState, task: asyncio.Task) -> None:
        if state.task is task:
            state.task = None
        if task.cancelled():
            logger.debug("Fetch for %s cancelled", state.key)
            return
        error = task.exception()
        if error is not None:
            state.error = error
            if state.has_data:
                logger.warning("Background refetch of %s failed: %s", state.key, error)

    def _start_fetch(self, state: QueryState, fn: Fetcher) -> asyncio.Task:
        if state.is_fetching:
            return state.task  # type: ignore[return-value]

        task = asyncio.ensure_future(self._run_fetch(state, fn))
        task.add_done_callback(lambda t: self._fetch_done(state, t))
        state.task = task
        return task

    async def _await_fetch(self, state: QueryState, task: asyncio.Task) -> Any:
        # Waiting via asyncio.wait keeps a cancelled caller from cancelling the shared task.
        await asyncio.wait({task})
        if task.cancelled():
            raise QueryCancelledError(state.key)
        return task.result()

    def _state(self, key: QueryKey, options: QueryOptions | None = None) -> QueryState:
        state = self._queries.get(key)
        if state is None:
            state = QueryState(key=key, options=options or self._default_options)
            self._queries[key] = state
        elif options is not None:
            state.options = options
        return state

    async def fetch_query(self, key: QueryKey, fn: Fetcher, options: QueryOptions | None = None) -> Any:
        """Read a query through the cache.

        Args:
            key: Query key
            fn: Coroutine function performing the network read
            options: Freshness/retry options (defaults to the client's)

        Returns:
            Fresh cached data, stale cached data (a background refetch is
            started), or the result of a new fetch shared with concurrent callers

        Raises:
            QueryCancelledError: If the fetch this caller waited on was cancelled
            Exception: Whatever ``fn`` raised once retries were exhausted
        """
        self.collect_garbage()
        state = self._state(key, options)
        now = self._clock()
        state.last_accessed = now

        if state.has_data:
            if self._is_stale(state, now):
                logger.debug("Serving stale %s, refetching in background", key)
                self._start_fetch(state, fn)
            return state.data

        return await self._await_fetch(state, self._start_fetch(state, fn))

    async def prefetch_query(self, key: QueryKey, fn: Fetcher, options: QueryOptions | None = None) -> None:
        """Warm the cache; failures are logged, not raised."""
        try:
            await self.fetch_query(key, fn, options)
        except Exception as e:
            logger.warning("Prefetch of %s failed: %s", key, e)

    async def wait_for_fetches(self) -> None:
        """Wait until every in-flight fetch has settled."""
        tasks = [s.task for s in self._queries.values() if s.is_fetching]
        if tasks:
            await asyncio.wait(tasks)

    # -- pagination -------------------------------------------------------

    def _page_request(self, key: QueryKey, page: int, fn: PageFetcher, options: QueryOptions | None) -> Awaitable[Any]:
        retries = (options or self._default_options).retry
        return self._deduplicator.run(
            f"{key.hash}:{page}",
            lambda: self._retry.run(lambda: fn(page), retries=retries, label=f"page {page} of {key}"),
        )

    async def fetch_infinite_query(
        self,
        key: QueryKey,
        fn: PageFetcher,
        options: QueryOptions | None = None,
    ) -> dict[str, Any]:
        """Read the first page of a paginated query.

        Cached data has the shape ``{"pages": [...], "page_params": [...]}``;
        each page is a PaginatedResponse dict. A refetch starts over at page 1.
        """

        async def first_page() -> dict[str, Any]:
            page = await self._page_request(key, 1, fn, options)
            return {"pages": [page], "page_params": [1]}

        # Page requests already retry; the outer fetch must not multiply attempts.
        outer_options = replace(options or self._default_options, retry=0)
        return await self.fetch_query(key, first_page, outer_options)

    async def fetch_next_page(
        self,
        key: QueryKey,
        fn: PageFetcher,
        options: QueryOptions | None = None,
    ) -> dict[str, Any]:
        """Append the next page to a paginated query (no-op on the last page)."""
        data = self.get_query_data(key)
        if data is None:
            return await self.fetch_infinite_query(key, fn, options)
        if not has_next_page(data):
            return data

        next_page = data["page_params"][-1] + 1
        page = await self._page_request(key, next_page, fn, options)

        current = self.get_query_data(key) or data
        if next_page in current["page_params"]:
            return current

        merged = {
            "pages": [*current["pages"], page],
            "page_params": [*current["page_params"], next_page],
        }
        self._write(self._state(key), merged)
        return merged

    has_next_page = staticmethod(has_next_page)

    # -- direct cache access ---------------------------------------------

    def get_query_state(self, key: QueryKey) -> QueryState | None:
        return self._queries.get(key)

    def get_query_data(self, key: QueryKey) -> Any:
        """Cached data for ``key``, or None."""
        state = self._queries.get(key)
        if state is None or not state.has_data:
            return None
        state.last_accessed = self._clock()
        return state.data

    def set_query_data(self, key: QueryKey, value_or_updater: Any) -> Any:
        """Write data for ``key`` and mark it fresh.

        Args:
            key: Query key
            value_or_updater: New value, or a callable receiving the current
                data (None when absent) and returning the new value

        A resulting value of None leaves the query untouched, so an updater
        can decline to create data for a query that was never loaded.

        Returns:
            The value now stored (None when nothing was written)
        """
        current = self.get_query_data(key)
        value = value_or_updater(current) if callable(value_or_updater) else value_or_updater
        if value is None:
            return None
        self._write(self._state(key), value)
        return value

    def find_keys(
        self,
        prefix: QueryKey | None = None,
        predicate: Callable[[QueryKey, Any], bool] | None = None,
    ) -> list[QueryKey]:
        """Keys holding data that match ``prefix`` and ``predicate(key, data)``."""
        return [
            key
            for key, state in self._queries.items()
            if state.has_data
            and (prefix is None or key.matches(prefix))
            and (predicate is None or predicate(key, state.data))
        ]

    def _matching(self, keys: Iterable[QueryKey]) -> list[QueryState]:
        prefixes = list(keys)
        return [
            state
            for key, state in self._queries.items()
            if not prefixes or any(key.matches(p) for p in prefixes)
        ]

    def invalidate_queries(self, *keys: QueryKey) -> int:
        """Mark every query under the given prefixes stale (all when none given).

        The next read serves the cached data and refetches in the background.

        Returns:
            Number of queries marked
        """
        states = self._matching(keys)
        for state in states:
            state.is_invalidated = True
        if states:
            logger.debug("Invalidated %d queries under %s", len(states), [str(k) for k in keys])
        return len(states)

    def remove_queries(self, *keys: QueryKey) -> int:
        """Drop every query under the given prefixes, cancelling their fetches."""
        states = self._matching(keys)
        for state in states:
            if state.is_fetching:
                state.task.cancel()  # type: ignore[union-attr]
            self._queries.pop(state.key, None)
        return len(states)

    def cancel_queries(self, *keys: QueryKey) -> int:
        """Cancel in-flight fetches under the given prefixes, keeping cached data.

        Callers awaiting a cancelled fetch get QueryCancelledError.

        Returns:
            Number of fetches cancelled
        """
        cancelled = 0
        for state in self._matching(keys):
            if state.is_fetching:
                state.task.cancel()  # type: ignore[union-attr]
                state.task = None
                cancelled += 1
        return cancelled

    def snapshot(self, key: QueryKey) -> QuerySnapshot:
        """Verbatim copy of the query's current state (absence included)."""
        state = self._queries.get(key)
        if state is None or not state.has_data:
            return QuerySnapshot(present=False)
        return QuerySnapshot(
            present=True,
            data=copy.deepcopy(state.data),
            updated_at=state.updated_at,
            is_invalidated=state.is_invalidated,
        )

    def restore(self, key: QueryKey, snapshot: QuerySnapshot) -> None:
        """Put a query back exactly as ``snapshot`` recorded it."""
        if not snapshot.present:
            state = self._queries.get(key)
            if state is not None:
                state.data = None
                state.has_data = False
                state.updated_at = 0.0
                state.is_invalidated = False
            return

        state = self._state(key)
        state.data = copy.deepcopy(snapshot.data)
        state.has_data = True
        state.updated_at = snapshot.updated_at
        state.is_invalidated = snapshot.is_invalidated

    def collect_garbage(self) -> int:
        """Drop queries unread for longer than their ``gc_time`` and not fetching."""
        now = self._clock()
        expired = [
            key
            for key, state in self._queries.items()
            if not state.is_fetching and now - state.last_accessed > state.options.gc_time
        ]
        for key in expired:
            del self._queries[key]
        if expired:
            logger.debug("Garbage-collected %d queries", len(expired))
        return len(expired)

    def clear(self) -> None:
        """Cancel every fetch and forget every query."""
        for state in self._queries.values():
            if state.is_fetching:
                state.task.cancel()  # type: ignore[union-attr]
        self._queries.clear()
        self._deduplicator.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "queries": len(self._queries),
            "fetching": sum(1 for s in self._queries.values() if s.is_fetching),
            "invalidated": sum(1 for s in self._queries.values() if s.is_invalidated),
            "pending_requests": len(self._deduplicator),
        }

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry
