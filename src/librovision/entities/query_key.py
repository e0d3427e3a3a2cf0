"""Query key entity and key factory.

Keys are ordered tuples of parts. Mappings, sets and sequences inside a key
are normalized so that logically equivalent queries produce equal keys:

    ```python
    a = QueryKey.of("books", "search", "dune", {"year": 1965, "genre": "sf"})
    b = QueryKey.of("books", "search", "dune", {"genre": "sf", "year": 1965})
    assert a == b
    ```
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return tuple(
            sorted((str(k), _normalize(v)) for k, v in value.items() if v is not None)
        )
    if isinstance(value, (set, frozenset)):
        return tuple(sorted((_normalize(v) for v in value), key=repr))
    if isinstance(value, (list, tuple)):
        return tuple(_normalize(v) for v in value)
    return value


@dataclass(frozen=True)
class QueryKey:
    """Hashable, normalized identifier of a cached query."""

    parts: tuple

    @classmethod
    def of(cls, *parts: Any) -> "QueryKey":
        """Build a key from raw parts, normalizing filters and collections."""
        return cls(parts=tuple(_normalize(p) for p in parts))

    def extend(self, *parts: Any) -> "QueryKey":
        return QueryKey.of(*self.parts, *parts)

    def matches(self, prefix: "QueryKey") -> bool:
        """Check whether ``prefix`` is a leading part of this key."""
        return self.parts[: len(prefix.parts)] == prefix.parts

    @property
    def hash(self) -> str:
        """Stable string form, used for string-keyed stores and de-duplication."""
        return json.dumps(self.parts, separators=(",", ":"), default=str)

    def __str__(self) -> str:
        return self.hash


class _QueryKeys:
    """Key factory shared by all services so invalidation hits the right entries."""

    # Books
    books = QueryKey.of("books")

    def book(self, book_id: str) -> QueryKey:
        return self.books.extend(book_id)

    def book_search(self, query: str, filters: Mapping[str, Any] | None = None) -> QueryKey:
        return self.books.extend("search", query, dict(filters or {}))

    def popular_books(self) -> QueryKey:
        return self.books.extend("popular")

    def top_books_this_week(self) -> QueryKey:
        return self.books.extend("top-week")

    def book_interaction(self, book_id: str) -> QueryKey:
        return self.book(book_id).extend("interaction")

    # Users
    users = QueryKey.of("users")

    def user(self, user_id: str) -> QueryKey:
        return self.users.extend(user_id)

    def user_profile(self, username: str) -> QueryKey:
        return self.users.extend("profile", username)

    def user_books(self, user_id: str) -> QueryKey:
        return self.users.extend(user_id, "books")

    def user_shelf(self, user_id: str, shelf: str) -> QueryKey:
        return self.user_books(user_id).extend(shelf)

    def user_search(self, query: str) -> QueryKey:
        return self.users.extend("search", query)

    # Reviews
    reviews = QueryKey.of("reviews")

    def review(self, review_id: str) -> QueryKey:
        return self.reviews.extend(review_id)

    def book_reviews(self, book_id: str) -> QueryKey:
        return self.reviews.extend("book", book_id)

    def user_reviews(self, user_id: str) -> QueryKey:
        return self.reviews.extend("user", user_id)

    def top_reviews_this_week(self, limit: int) -> QueryKey:
        return self.reviews.extend("top-week", limit)

    # Lists
    lists = QueryKey.of("lists")

    def list(self, list_id: str) -> QueryKey:
        return self.lists.extend(list_id)

    def list_books(self, list_id: str) -> QueryKey:
        return self.list(list_id).extend("books")

    def user_lists(self, user_id: str) -> QueryKey:
        return self.lists.extend("user", user_id)

    def list_search(self, query: str) -> QueryKey:
        return self.lists.extend("search", query)

    # Social
    feed = QueryKey.of("feed")

    def user_feed(self, user_id: str) -> QueryKey:
        return self.feed.extend(user_id)

    def notifications(self, user_id: str) -> QueryKey:
        return QueryKey.of("notifications", user_id)

    def follows(self, user_id: str) -> QueryKey:
        return QueryKey.of("follows", user_id)

    def followers(self, user_id: str) -> QueryKey:
        return self.follows(user_id).extend("followers")

    def following(self, user_id: str) -> QueryKey:
        return self.follows(user_id).extend("following")

    # Comments
    comments = QueryKey.of("comments")

    def review_comments(self, review_id: str) -> QueryKey:
        return self.comments.extend("review", review_id)

    def list_comments(self, list_id: str) -> QueryKey:
        return self.comments.extend("list", list_id)

    def comment_replies(self, comment_id: str) -> QueryKey:
        return self.comments.extend("replies", comment_id)


query_keys = _QueryKeys()
