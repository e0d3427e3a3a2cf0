"""Cache invalidation fan-outs.

One method per entity type. Each removes the entity's entries from the tiered
caches and marks the related queries stale. Invalidation is best-effort and
idempotent: missing keys and failing tiers are ignored.
"""

import logging

from librovision.entities import QueryKey, query_keys

from .query_client import QueryClient
from .tiered_cache import TieredCache

logger = logging.getLogger(__name__)


class CacheInvalidator:
    """Applies the per-entity invalidation patterns.

    Example:
        ```python
        invalidator = CacheInvalidator(
            books=book_cache, users=user_cache, reviews=review_cache, lists=list_cache,
            query_client=query_client,
        )
        invalidator.invalidate_review("r1", book_id="b1")
        ```
    """

    def __init__(
        self,
        books: TieredCache,
        users: TieredCache,
        reviews: TieredCache,
        lists: TieredCache,
        query_client: QueryClient,
    ) -> None:
        self._books = books
        self._users = users
        self._reviews = reviews
        self._lists = lists
        self._queries = query_client

    def _invalidate(self, cache: TieredCache, tier_keys: list[str], queries: list[QueryKey]) -> int:
        for key in tier_keys:
            cache.delete(key)
        count = self._queries.invalidate_queries(*queries)
        logger.debug("Invalidated %s and %d queries", tier_keys, count)
        return count

    def invalidate_user(self, user_id: str) -> int:
        """Invalidate a user's profile, books, reviews and lists."""
        return self._invalidate(
            self._users,
            [f"user_{user_id}", f"user_profile_{user_id}", f"user_books_{user_id}"],
            [
                query_keys.user(user_id),
                query_keys.user_books(user_id),
                query_keys.user_reviews(user_id),
                query_keys.user_lists(user_id),
                query_keys.users,
            ],
        )

    def invalidate_book(self, book_id: str) -> int:
        """Invalidate a book, its reviews and the book listings."""
        return self._invalidate(
            self._books,
            [f"book_{book_id}", f"book_reviews_{book_id}", f"book_details_{book_id}"],
            [
                query_keys.book(book_id),
                query_keys.book_reviews(book_id),
                query_keys.books,
                query_keys.popular_books(),
                query_keys.top_books_this_week(),
            ],
        )

    def invalidate_review(self, review_id: str, book_id: str | None = None) -> int:
        """Invalidate a review, its comments and (with ``book_id``) the book's review list."""
        self._reviews.delete(f"review_{review_id}")
        queries = [query_keys.review(review_id), query_keys.review_comments(review_id)]
        tier_keys = []
        if book_id:
            tier_keys.append(f"book_reviews_{book_id}")
            queries.append(query_keys.book_reviews(book_id))
        queries += [query_keys.reviews, query_keys.feed]
        return self._invalidate(self._books, tier_keys, queries)

    def invalidate_list(self, list_id: str, user_id: str | None = None) -> int:
        """Invalidate a list, its books and comments and (with ``user_id``) the owner's lists."""
        self._lists.delete(f"list_{list_id}")
        queries = [
            query_keys.list(list_id),
            query_keys.list_books(list_id),
            query_keys.list_comments(list_id),
        ]
        tier_keys = []
        if user_id:
            tier_keys.append(f"user_lists_{user_id}")
            queries.append(query_keys.user_lists(user_id))
        queries.append(query_keys.lists)
        return self._invalidate(self._users, tier_keys, queries)
