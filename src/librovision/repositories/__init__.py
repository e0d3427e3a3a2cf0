"""Repository layer for data access.

This layer abstracts external dependencies (Redis, the session store,
Supabase, Google Books) behind protocol-based interfaces. This enables:
- Easy swapping of implementations
- Unit testing with in-memory implementations
- Clear separation of concerns

The repositories are protocol-based (structural typing), not inheritance-based.
Any class implementing the required methods will satisfy the protocol.
"""

from librovision.protocols import BookCatalog, CacheStore, DataStore

from .google_books_repository import GoogleBooksRepository, format_google_book
from .memory_cache import MemoryCache
from .redis_repository import RedisCacheRepository
from .search_proxy_client import SearchProxyClient
from .session_repository import SessionCacheRepository
from .supabase_repository import SupabaseRepository

__all__ = [
    "BookCatalog",
    "CacheStore",
    "DataStore",
    "GoogleBooksRepository",
    "MemoryCache",
    "RedisCacheRepository",
    "SearchProxyClient",
    "SessionCacheRepository",
    "SupabaseRepository",
    "format_google_book",
]
