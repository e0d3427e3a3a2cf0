"""Process-wide cache context.

Owns every cache object the domain services share: one TieredCache per
domain, the QueryClient, the CacheInvalidator and the MutationExecutor, plus
the signed-in user id. It is created once at start-up and passed to services
explicitly instead of living in module globals.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import redis

from librovision.config import get_redis_client, settings
from librovision.exceptions import NotAuthenticatedError
from librovision.repositories import MemoryCache, RedisCacheRepository, SessionCacheRepository

from .invalidation import CacheInvalidator
from .optimistic import ErrorNotifier, MutationExecutor
from .query_client import QueryClient, RetryPolicy
from .tiered_cache import TieredCache

logger = logging.getLogger(__name__)

# Memory-tier capacity per domain
CACHE_DOMAINS: dict[str, int] = {
    "books": 100,
    "users": 50,
    "reviews": 200,
    "lists": 50,
}


class CacheContext:
    """Explicit store for the cache and query layer.

    Example:
        ```python
        context = CacheContext.create()            # memory + Redis + session tiers
        context = CacheContext.create(redis_client=None, persistent=False)  # no Redis

        context.sign_in(user_id)
        books = BookService(store=store, catalog=catalog, context=context)
        ...
        context.logout()
        ```
    """

    def __init__(
        self,
        books: TieredCache,
        users: TieredCache,
        reviews: TieredCache,
        lists: TieredCache,
        query_client: QueryClient,
        executor: MutationExecutor | None = None,
        session_storage: dict[str, str] | None = None,
    ) -> None:
        self.books = books
        self.users = users
        self.reviews = reviews
        self.lists = lists
        self.query_client = query_client
        self.executor = executor or MutationExecutor(query_client)
        self.invalidator = CacheInvalidator(
            books=books, users=users, reviews=reviews, lists=lists, query_client=query_client
        )
        self._session_storage = session_storage
        self._user_id: str | None = None

    @classmethod
    def create(
        cls,
        redis_client: redis.Redis | None = None,
        persistent: bool = True,
        clock: Callable[[], float] = time.time,
        on_error: ErrorNotifier | None = None,
        retry_policy: RetryPolicy | None = None,
        mutation_retry_policy: RetryPolicy | None = None,
    ) -> "CacheContext":
        """Factory method to build the whole cache layer with defaults from settings.

        Args:
            redis_client: Client for the durable tier. If None, creates default.
            persistent: Whether to configure the durable (Redis) tier at all.
            clock: Time source shared by every tier and the query client.
            on_error: Error sink for failed mutations.
            retry_policy: Backoff policy for queries.
            mutation_retry_policy: Backoff policy for mutation commits.

        Returns:
            Configured CacheContext
        """
        session_storage: dict[str, str] = {}
        client = (redis_client or get_redis_client()) if persistent else None

        def tiered(domain: str, max_size: int) -> TieredCache:
            prefix = f"{settings.cache_prefix}{domain}_"
            durable = None
            if persistent:
                durable = RedisCacheRepository(redis_client=client, prefix=prefix, clock=clock)
            return TieredCache(
                memory=MemoryCache(max_size=max_size, clock=clock),
                durable=durable,
                session=SessionCacheRepository(prefix=prefix, storage=session_storage, clock=clock),
                name=domain,
                clock=clock,
            )

        caches = {domain: tiered(domain, size) for domain, size in CACHE_DOMAINS.items()}
        query_client = QueryClient(retry_policy=retry_policy, clock=clock)
        executor = MutationExecutor(query_client, on_error=on_error, retry_policy=mutation_retry_policy)
        return cls(
            **caches,
            query_client=query_client,
            executor=executor,
            session_storage=session_storage,
        )

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def require_user(self) -> str:
        """Signed-in user id.

        Raises:
            NotAuthenticatedError: If nobody is signed in
        """
        if self._user_id is None:
            raise NotAuthenticatedError()
        return self._user_id

    def sign_in(self, user_id: str) -> None:
        if self._user_id is not None and self._user_id != user_id:
            self.logout()
        self._user_id = user_id

    def logout(self) -> None:
        """Forget the user and everything cached on their behalf.

        Memory, session storage and the query layer are cleared. The durable
        Redis tier is left alone: its keys are shared with every other
        context on the same Redis, so clearing it would evict other users.
        """
        for cache in self.caches.values():
            cache.clear(durable=False)
        self.query_client.clear()
        if self._session_storage is not None:
            self._session_storage.clear()
        logger.info("Cleared caches for user %s", self._user_id)
        self._user_id = None

    @property
    def caches(self) -> dict[str, TieredCache]:
        return {
            "books": self.books,
            "users": self.users,
            "reviews": self.reviews,
            "lists": self.lists,
        }

    def get_stats(self) -> dict[str, Any]:
        """Memory-tier size per domain plus query-layer counters."""
        stats: dict[str, Any] = {name: cache.size() for name, cache in self.caches.items()}
        stats["queries"] = self.query_client.get_stats()
        return stats

    def get_detailed_stats(self) -> dict[str, Any]:
        return {name: cache.get_stats() for name, cache in self.caches.items()}
