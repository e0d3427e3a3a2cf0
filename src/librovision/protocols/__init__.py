"""Protocol interfaces for swappable implementations.

This package contains protocol definitions using structural typing.
Protocols enable:
- Easy swapping of implementations (Redis → another durable store, Supabase → fake)
- Unit testing with in-memory implementations
- Clear separation of concerns

Usage:
    ```python
    from librovision.protocols import CacheStore, DataStore

    tier: CacheStore = MemoryCache(max_size=50)
    store: DataStore = SupabaseRepository.create()
    ```
"""

from .book_catalog import BookCatalog
from .cache_store import CacheStore
from .data_store import DataStore

__all__ = [
    "BookCatalog",
    "CacheStore",
    "DataStore",
]
