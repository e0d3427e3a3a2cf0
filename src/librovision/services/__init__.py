"""Service layer for the cache, query and domain logic.

Cache and query orchestration live here alongside the domain services that
use them. Services depend on protocols (interfaces), not concrete
implementations, making them testable and flexible.

Architecture:
    Handler -> Service -> Repository
    (HTTP)  -> (Business) -> (Data Access)

Usage:
    ```python
    from librovision.services import BookService, CacheContext

    # Using factory method (recommended)
    context = CacheContext.create()
    books = BookService(store=SupabaseRepository.create(), context=context,
                        catalog=GoogleBooksRepository.create())

    # Or manual creation
    context = CacheContext(books=..., users=..., reviews=..., lists=..., query_client=QueryClient())
    ```
"""

from .book_service import BookService
from .cache_context import CACHE_DOMAINS, CacheContext
from .comment_service import CommentService
from .invalidation import CacheInvalidator
from .list_service import ListService
from .notifications import notify
from .optimistic import MutationExecutor, OptimisticMutation, log_mutation_error
from .query_client import (
    QUERY_PRESETS,
    QueryClient,
    QueryOptions,
    QueryState,
    RequestDeduplicator,
    RetryPolicy,
)
from .review_service import ReviewService
from .social_service import SocialService
from .tiered_cache import TieredCache

__all__ = [
    "BookService",
    "CACHE_DOMAINS",
    "CacheContext",
    "CacheInvalidator",
    "CommentService",
    "ListService",
    "MutationExecutor",
    "OptimisticMutation",
    "QUERY_PRESETS",
    "QueryClient",
    "QueryOptions",
    "QueryState",
    "RequestDeduplicator",
    "RetryPolicy",
    "ReviewService",
    "SocialService",
    "TieredCache",
    "log_mutation_error",
    "notify",
]
