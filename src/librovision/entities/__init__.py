"""Domain entities for internal representation.

These are pure dataclasses used internally by services and repositories.
They are NOT used for API contracts - use DTOs from the dto package for that,
and the pydantic records in ``librovision.models`` for remote rows.

Entities should have:
- No JSON serialization logic
- No Pydantic validation
- No external dependencies
"""

from .cache_entry import CacheEntryEntity
from .cache_lookup import ABSENT, CacheLookup
from .mutation_context import MutationContext, QuerySnapshot
from .query_key import QueryKey, query_keys
from .resource import Filter, ResourceDescriptor, StoreResult

__all__ = [
    "ABSENT",
    "CacheEntryEntity",
    "CacheLookup",
    "Filter",
    "MutationContext",
    "QueryKey",
    "QuerySnapshot",
    "ResourceDescriptor",
    "StoreResult",
    "query_keys",
]
