"""LibroVision - tiered caching and optimistic mutations for a social book tracker.

This package provides a layered architecture for the LibroVision data layer:

Layers:
    - protocols: Interface contracts (CacheStore, DataStore, BookCatalog)
    - repositories: Data access implementations (memory, Redis, session,
      Supabase, Google Books)
    - services: Tiered cache, query client, optimistic executor, domain services
    - handlers: HTTP endpoint handlers
    - dto: Data transfer objects (API contracts)
    - entities: Domain models (internal)

Usage:
    ```python
    from librovision.services import BookService, CacheContext

    context = CacheContext.create()
    books = BookService(store=SupabaseRepository.create(), context=context)
    context.sign_in(user_id)
    await books.like_book(book_id)
    ```

For HTTP API:
    ```python
    from librovision.api.app import app
    ```
"""

from librovision.config import get_redis_client, settings
from librovision.dto import BookSearchParams, BookSummary
from librovision.entities import CacheEntryEntity, CacheLookup, QueryKey, query_keys
from librovision.exceptions import (
    CacheStorageError,
    LibroVisionError,
    MutationError,
    NotAuthenticatedError,
    NotFoundError,
    QueryCancelledError,
    RequestError,
    UpstreamAuthError,
    UpstreamSearchError,
)
from librovision.handlers import SearchHandler
from librovision.protocols import BookCatalog, CacheStore, DataStore
from librovision.repositories import (
    GoogleBooksRepository,
    MemoryCache,
    RedisCacheRepository,
    SessionCacheRepository,
    SupabaseRepository,
)
from librovision.services import (
    BookService,
    CacheContext,
    MutationExecutor,
    OptimisticMutation,
    QueryClient,
    TieredCache,
)

__all__ = [
    # Configuration
    "settings",
    "get_redis_client",
    # Protocols (interfaces)
    "BookCatalog",
    "CacheStore",
    "DataStore",
    # Services
    "BookService",
    "CacheContext",
    "MutationExecutor",
    "OptimisticMutation",
    "QueryClient",
    "TieredCache",
    # Handlers (HTTP)
    "SearchHandler",
    # Repositories (data access)
    "GoogleBooksRepository",
    "MemoryCache",
    "RedisCacheRepository",
    "SessionCacheRepository",
    "SupabaseRepository",
    # Entities
    "CacheEntryEntity",
    "CacheLookup",
    "QueryKey",
    "query_keys",
    # DTOs (API contracts)
    "BookSearchParams",
    "BookSummary",
    # Errors
    "CacheStorageError",
    "LibroVisionError",
    "MutationError",
    "NotAuthenticatedError",
    "NotFoundError",
    "QueryCancelledError",
    "RequestError",
    "UpstreamAuthError",
    "UpstreamSearchError",
]
