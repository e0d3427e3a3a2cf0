"""Book service: search, details, reading log.

Reads go through the QueryClient (and the ``books`` tiered cache for book
details); every change to the signed-in user's reading log is an optimistic
mutation against the ``user_book_interactions`` table.
"""

import logging
from typing import Any

from librovision.entities import QueryKey, ResourceDescriptor, query_keys
from librovision.exceptions import NotFoundError, RequestError
from librovision.models import Book, PaginatedResponse, Review, with_like_flag
from librovision.protocols import BookCatalog, DataStore

from .cache_context import CacheContext
from .optimistic import OptimisticMutation, Updater
from .pages import remove_entities
from .query_client import QueryClient, QueryOptions

logger = logging.getLogger(__name__)

# user_book_interactions column -> Book field
INTERACTION_FIELDS = {
    "rating": "current_user_rating",
    "is_read": "current_user_is_read",
    "is_currently_reading": "current_user_is_currently_reading",
    "read_date": "current_user_read_date",
    "is_on_watchlist": "current_user_is_on_watchlist",
    "is_liked": "current_user_is_liked",
    "is_owned": "current_user_is_owned",
}

REVIEW_SELECT = "*, user:user_profiles(*), book:books(*), current_user_likes:likes!left(user_id)"


def apply_interaction(book: dict[str, Any] | None, changes: dict[str, Any]) -> dict[str, Any] | None:
    """Project interaction changes onto a cached book (None when not cached)."""
    if book is None:
        return None
    return {
        **book,
        **{INTERACTION_FIELDS[k]: v for k, v in changes.items() if k in INTERACTION_FIELDS},
    }


class BookService:
    """Book search, book details and the user's reading log.

    Example:
        ```python
        books = BookService(store=SupabaseRepository.create(),
                            context=context,
                            catalog=GoogleBooksRepository.create())

        data = await books.search_books("dune", {"genre": "Fiction"})
        await books.mark_currently_reading(book_id)
        ```
    """

    def __init__(
        self,
        store: DataStore,
        context: CacheContext,
        catalog: BookCatalog | None = None,
        page_size: int = 20,
        review_page_size: int = 10,
    ) -> None:
        """Initialize the book service.

        Args:
            store: Remote data store.
            context: Shared cache context.
            catalog: External catalog used when the store has too few matches.
            page_size: Search page size.
            review_page_size: Book review page size.
        """
        self._store = store
        self._context = context
        self._catalog = catalog
        self._page_size = page_size
        self._review_page_size = review_page_size

    @property
    def _queries(self) -> QueryClient:
        return self._context.query_client

    # -- enrichment -------------------------------------------------------

    async def _interactions_for(self, book_ids: list[str]) -> dict[str, dict[str, Any]]:
        user_id = self._context.user_id
        if not user_id or not book_ids:
            return {}
        try:
            result = await self._store.read(
                ResourceDescriptor("user_book_interactions")
                .eq("user_id", user_id)
                .where("book_id", "in", book_ids)
            )
        except RequestError as e:
            logger.warning("Failed to load interactions, returning books without them: %s", e)
            return {}
        return {row["book_id"]: row for row in result.rows}

    async def _enrich(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert book rows to Book dicts carrying the user's interaction flags."""
        if not rows:
            return []
        interactions = await self._interactions_for([str(r["id"]) for r in rows if r.get("id")])
        return [
            Book.from_row(row, interactions.get(str(row.get("id")))).model_dump(mode="json")
            for row in rows
        ]

    # -- search -----------------------------------------------------------

    def _search_descriptor(self, query: str, filters: dict[str, Any], page: int) -> ResourceDescriptor:
        descriptor = ResourceDescriptor("books").order_by("title").page(page, self._page_size)
        if query:
            words = ",".join(query.split())
            descriptor = descriptor.any_of(f"title.ilike.*{query}*,authors.cs.{{{words}}}")
        if filters.get("genre") and filters["genre"] != "all":
            descriptor = descriptor.where("genres", "cs", [filters["genre"]])
        if filters.get("year"):
            descriptor = descriptor.eq("publication_year", filters["year"])
        if filters.get("min_rating"):
            descriptor = descriptor.where("average_rating", "gte", filters["min_rating"])
        return descriptor

    async def _store_catalog_books(self, books: list[Book]) -> None:
        try:
            await self._store.write(
                ResourceDescriptor("books").as_write(
                    "upsert", on_conflict="google_book_id", ignore_duplicates=True
                ),
                [b.to_row() for b in books],
            )
        except RequestError as e:
            logger.warning("Failed to store %d catalog books: %s", len(books), e)

    async def _search_page(self, query: str, filters: dict[str, Any], page: int) -> dict[str, Any]:
        result = await self._store.read(self._search_descriptor(query, filters, page))

        if len(result.rows) >= self._page_size or self._catalog is None:
            items = await self._enrich(result.rows)
            return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

        logger.info("Only %d stored matches for %r, searching catalog", len(result.rows), query)
        catalog_books = await self._catalog.search(query, page=page, max_results=self._page_size)
        if catalog_books:
            await self._store_catalog_books(catalog_books)

        items = await self._enrich([b.model_dump(mode="json") for b in catalog_books])
        # The catalog gives no reliable total; assume one more page while results keep coming.
        response = PaginatedResponse.build(
            items, len(items) * (page + 1) if items else 0, page, self._page_size
        )
        response["total_pages"] = page + 1 if items else page
        return response

    async def search_books(self, query: str, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        """First page of a book search (infinite query data).

        The store is searched first; when it has fewer than a full page of
        matches the external catalog is queried and its results are saved.

        Raises:
            ValueError: If ``query`` is blank
        """
        if not query.strip():
            raise ValueError("Search query must not be empty")
        filters = dict(filters or {})
        return await self._queries.fetch_infinite_query(
            query_keys.book_search(query, filters),
            lambda page: self._search_page(query, filters, page),
            QueryOptions.preset("search"),
        )

    async def fetch_more_search_results(
        self, query: str, filters: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        filters = dict(filters or {})
        return await self._queries.fetch_next_page(
            query_keys.book_search(query, filters),
            lambda page: self._search_page(query, filters, page),
            QueryOptions.preset("search"),
        )

    # -- reads ------------------------------------------------------------

    async def _load_book(self, book_id: str) -> dict[str, Any] | None:
        cache_key = f"book_{book_id}"
        cached = self._context.books.get(cache_key)
        if cached.hit:
            return cached.value

        try:
            result = await self._store.read(ResourceDescriptor("books").eq("id", book_id).one())
        except NotFoundError:
            return None

        book = (await self._enrich(result.rows))[0]
        self._context.books.set(cache_key, book)
        return book

    async def get_book(self, book_id: str) -> dict[str, Any] | None:
        """Book details with the user's interaction, or None if unknown."""
        return await self._queries.fetch_query(
            query_keys.book(book_id),
            lambda: self._load_book(book_id),
            QueryOptions.preset("book_details"),
        )

    async def _book_reviews_page(self, book_id: str, page: int) -> dict[str, Any]:
        descriptor = (
            ResourceDescriptor("reviews", select=REVIEW_SELECT)
            .eq("book_id", book_id)
            .order_by("created_at", ascending=False)
            .page(page, self._review_page_size)
        )
        if self._context.user_id:
            descriptor = descriptor.eq("likes.user_id", self._context.user_id)
        result = await self._store.read(descriptor)
        items = [
            Review.model_validate(with_like_flag(row)).model_dump(mode="json") for row in result.rows
        ]
        return PaginatedResponse.build(items, result.count or 0, page, self._review_page_size)

    async def get_book_reviews(self, book_id: str) -> dict[str, Any]:
        return await self._queries.fetch_infinite_query(
            query_keys.book_reviews(book_id),
            lambda page: self._book_reviews_page(book_id, page),
            QueryOptions.preset("book_reviews"),
        )

    async def fetch_more_book_reviews(self, book_id: str) -> dict[str, Any]:
        return await self._queries.fetch_next_page(
            query_keys.book_reviews(book_id),
            lambda page: self._book_reviews_page(book_id, page),
            QueryOptions.preset("book_reviews"),
        )

    async def get_popular_books(self, limit: int = 5) -> list[dict[str, Any]]:
        async def load() -> list[dict[str, Any]]:
            result = await self._store.read(
                ResourceDescriptor("books", limit=limit)
                .order_by("average_rating", ascending=False)
                .order_by("total_ratings", ascending=False)
            )
            return await self._enrich(result.rows)

        return await self._queries.fetch_query(
            query_keys.popular_books(), load, QueryOptions.preset("popular_books")
        )

    async def get_top_books_this_week(self, limit: int = 4) -> list[dict[str, Any]]:
        """Books with the most recent reviews."""

        async def load() -> list[dict[str, Any]]:
            result = await self._store.read(
                ResourceDescriptor("reviews", select="book:books(*)", limit=limit).order_by(
                    "created_at", ascending=False
                )
            )
            return await self._enrich([row["book"] for row in result.rows if row.get("book")])

        return await self._queries.fetch_query(
            query_keys.top_books_this_week(), load, QueryOptions.preset("top_books_this_week")
        )

    async def get_currently_reading(self, limit: int = 6) -> list[dict[str, Any]]:
        """The signed-in user's currently-reading shelf (empty when signed out)."""
        user_id = self._context.user_id
        if not user_id:
            return []

        async def load() -> list[dict[str, Any]]:
            result = await self._store.read(
                ResourceDescriptor("user_book_interactions", select="*, book:books(*)", limit=limit)
                .eq("user_id", user_id)
                .eq("is_currently_reading", True)
                .order_by("updated_at", ascending=False)
            )
            return [
                Book.from_row(row["book"], row).model_dump(mode="json")
                for row in result.rows
                if row.get("book")
            ]

        return await self._queries.fetch_query(
            query_keys.user_books(user_id), load, QueryOptions.preset("currently_reading")
        )

    async def get_interaction(self, book_id: str) -> dict[str, Any] | None:
        user_id = self._context.user_id
        if not user_id:
            return None

        async def load() -> dict[str, Any] | None:
            try:
                result = await self._store.read(
                    ResourceDescriptor("user_book_interactions")
                    .eq("user_id", user_id)
                    .eq("book_id", book_id)
                    .one()
                )
            except NotFoundError:
                return None
            return result.first

        return await self._queries.fetch_query(
            query_keys.book_interaction(book_id), load, QueryOptions.preset("book_interaction")
        )

    # -- reading log mutations --------------------------------------------

    def _interaction_mutation(
        self,
        name: str,
        book_id: str,
        changes: dict[str, Any],
        extra_predictions: dict[QueryKey, Updater] | None = None,
        before_commit: Any = None,
    ) -> OptimisticMutation:
        user_id = self._context.require_user()

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            predictions: dict[QueryKey, Updater] = {
                query_keys.book(book_id): lambda book: apply_interaction(book, changes),
                query_keys.book_interaction(book_id): lambda current: {
                    **(current or {"user_id": user_id, "book_id": book_id}),
                    **changes,
                },
            }
            predictions.update(extra_predictions or {})
            return predictions

        async def commit() -> dict[str, Any] | None:
            if before_commit is not None:
                await before_commit()
            result = await self._store.write(
                ResourceDescriptor("user_book_interactions", select="*, book:books(*)")
                .as_write("upsert", on_conflict="user_id,book_id")
                .one(),
                {"user_id": user_id, "book_id": book_id, **changes},
            )
            return result.first

        def reconcile(client: QueryClient, row: dict[str, Any] | None) -> None:
            if row:
                client.set_query_data(
                    query_keys.book_interaction(book_id),
                    {k: v for k, v in row.items() if k != "book"},
                )
            self._context.invalidator.invalidate_book(book_id)

        return OptimisticMutation(
            name=name,
            commit=commit,
            affected_keys=[query_keys.book(book_id), query_keys.book_interaction(book_id)],
            predict=predict,
            reconcile=reconcile,
            invalidate=[query_keys.user_books(user_id)],
        )

    async def update_interaction(self, book_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Apply arbitrary reading-log changes optimistically.

        Returns:
            The stored interaction row

        Raises:
            NotAuthenticatedError: If nobody is signed in
            MutationError: If the write failed (the cache has been rolled back)
        """
        return await self._context.executor.execute(
            self._interaction_mutation("update_interaction", book_id, changes)
        )

    async def like_book(self, book_id: str) -> None:
        await self._context.executor.execute(
            self._interaction_mutation("like_book", book_id, {"is_liked": True})
        )

    async def unlike_book(self, book_id: str) -> None:
        await self._context.executor.execute(
            self._interaction_mutation("unlike_book", book_id, {"is_liked": False})
        )

    async def mark_currently_reading(self, book_id: str) -> None:
        """Start reading; leaves the watchlist in the same update."""
        await self._context.executor.execute(
            self._interaction_mutation(
                "mark_currently_reading",
                book_id,
                {"is_currently_reading": True, "is_on_watchlist": False},
            )
        )

    async def remove_from_currently_reading(self, book_id: str) -> None:
        await self._context.executor.execute(
            self._interaction_mutation(
                "remove_from_currently_reading", book_id, {"is_currently_reading": False}
            )
        )

    async def add_to_watchlist(self, book_id: str) -> None:
        """Put on the watchlist; stops "currently reading" in the same update."""
        await self._context.executor.execute(
            self._interaction_mutation(
                "add_to_watchlist",
                book_id,
                {"is_on_watchlist": True, "is_currently_reading": False},
            )
        )

    async def remove_from_watchlist(self, book_id: str) -> None:
        await self._context.executor.execute(
            self._interaction_mutation("remove_from_watchlist", book_id, {"is_on_watchlist": False})
        )

    async def mark_as_read(
        self,
        book_id: str,
        rating: float | None = None,
        read_date: str | None = None,
    ) -> None:
        changes: dict[str, Any] = {"is_read": True, "is_currently_reading": False}
        if rating is not None:
            changes["rating"] = rating
        if read_date is not None:
            changes["read_date"] = read_date
        await self._context.executor.execute(
            self._interaction_mutation("mark_as_read", book_id, changes)
        )

    async def clear_read_status(self, book_id: str) -> None:
        """Un-log a book; the user's review of it is removed as well."""
        user_id = self._context.require_user()

        def is_own_review(review: dict[str, Any]) -> bool:
            return review.get("user_id") == user_id and review.get("book_id") == book_id

        review_lists = [
            *self._queries.find_keys(query_keys.book_reviews(book_id)),
            *self._queries.find_keys(query_keys.user_reviews(user_id)),
        ]
        extra: dict[QueryKey, Updater] = {
            key: lambda data: remove_entities(data, is_own_review) for key in review_lists
        }

        async def delete_review() -> None:
            await self._store.write(
                ResourceDescriptor("reviews")
                .eq("user_id", user_id)
                .eq("book_id", book_id)
                .as_write("delete")
            )

        await self._context.executor.execute(
            self._interaction_mutation(
                "clear_read_status",
                book_id,
                {"is_read": False, "read_date": None, "rating": None},
                extra_predictions=extra,
                before_commit=delete_review,
            )
        )
        self._context.books.delete(f"book_reviews_{book_id}")
        self._queries.invalidate_queries(
            query_keys.book_reviews(book_id), query_keys.user_reviews(user_id)
        )
