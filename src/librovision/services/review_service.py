"""Review service.

Review reads are cached per review and per list; writes are optimistic. Like
counts are speculative in the query layer only and kept on success, while
adds, edits and deletes invalidate the affected review lists.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from librovision.entities import QueryKey, ResourceDescriptor, query_keys
from librovision.exceptions import NotFoundError
from librovision.models import Review, with_like_flag
from librovision.protocols import DataStore

from .book_service import REVIEW_SELECT
from .cache_context import CacheContext
from .notifications import notify
from .optimistic import OptimisticMutation, Updater
from .pages import adjust_count, contains_entity, prepend_item, remove_entities, replace_entity, update_entity
from .query_client import QueryClient, QueryOptions

logger = logging.getLogger(__name__)


class ReviewService:
    """Review reads and optimistic review mutations."""

    def __init__(self, store: DataStore, context: CacheContext) -> None:
        self._store = store
        self._context = context

    @property
    def _queries(self) -> QueryClient:
        return self._context.query_client

    def _keys_containing(self, review_id: str) -> list[QueryKey]:
        return self._queries.find_keys(
            query_keys.reviews, lambda _, data: contains_entity(data, review_id)
        )

    def _normalize(self, row: dict[str, Any]) -> dict[str, Any]:
        return Review.model_validate(with_like_flag(row)).model_dump(mode="json")

    def _review_descriptor(self) -> ResourceDescriptor:
        descriptor = ResourceDescriptor("reviews", select=REVIEW_SELECT)
        if self._context.user_id:
            descriptor = descriptor.eq("likes.user_id", self._context.user_id)
        return descriptor

    # -- reads ------------------------------------------------------------

    async def get_review(self, review_id: str) -> dict[str, Any] | None:
        async def load() -> dict[str, Any] | None:
            cache_key = f"review_{review_id}"
            cached = self._context.reviews.get(cache_key)
            if cached.hit:
                return cached.value
            try:
                result = await self._store.read(self._review_descriptor().eq("id", review_id).one())
            except NotFoundError:
                return None
            review = self._normalize(result.first)
            self._context.reviews.set(cache_key, review)
            return review

        return await self._queries.fetch_query(
            query_keys.review(review_id), load, QueryOptions.preset("review")
        )

    async def get_top_reviews_this_week(self, limit: int = 3) -> list[dict[str, Any]]:
        """Most-liked reviews written in the last seven days."""

        async def load() -> list[dict[str, Any]]:
            since = (datetime.now(timezone.utc) - timedelta(days=7)).isoformat()
            result = await self._store.read(
                self._review_descriptor()
                .where("created_at", "gte", since)
                .order_by("like_count", ascending=False)
                .order_by("created_at", ascending=False)
                .page(1, limit)
            )
            return [self._normalize(row) for row in result.rows]

        return await self._queries.fetch_query(
            query_keys.top_reviews_this_week(limit), load, QueryOptions.preset("top_reviews")
        )

    # -- writes -----------------------------------------------------------

    async def add_review(self, book_id: str, rating: float, review_text: str = "") -> dict[str, Any]:
        """Post a review; a temporary review is shown at the top of the book's list.

        The rating is also stored on the user's reading log for the book.
        """
        if not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        user_id = self._context.require_user()
        temp_id = f"temp-{uuid.uuid4()}"
        now = datetime.now(timezone.utc).isoformat()
        temp_review = Review(
            id=temp_id,
            user_id=user_id,
            book_id=book_id,
            rating=rating,
            review_text=review_text,
            created_at=now,
            updated_at=now,
        ).model_dump(mode="json")

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                query_keys.book_reviews(book_id): lambda data: prepend_item(data, temp_review),
                query_keys.book(book_id): lambda book: book and {**book, "current_user_rating": rating},
            }

        async def commit() -> dict[str, Any]:
            result = await self._store.write(
                ResourceDescriptor("reviews", select="*, user:user_profiles(*), book:books(*)")
                .as_write("insert")
                .one(),
                {"user_id": user_id, "book_id": book_id, "rating": rating, "review_text": review_text},
            )
            await self._store.write(
                ResourceDescriptor("user_book_interactions").as_write(
                    "upsert", on_conflict="user_id,book_id"
                ),
                {"user_id": user_id, "book_id": book_id, "rating": rating, "is_read": True},
            )
            return self._normalize(result.first)

        def reconcile(client: QueryClient, review: dict[str, Any]) -> None:
            client.set_query_data(
                query_keys.book_reviews(book_id),
                lambda data: replace_entity(data, temp_id, review),
            )
            client.set_query_data(query_keys.review(review["id"]), review)
            self._context.invalidator.invalidate_review(review["id"], book_id=book_id)
            self._context.invalidator.invalidate_book(book_id)

        return await self._context.executor.execute(
            OptimisticMutation(
                name="add_review",
                commit=commit,
                affected_keys=[query_keys.book_reviews(book_id)],
                predict=predict,
                reconcile=reconcile,
                invalidate=[query_keys.user_reviews(user_id), query_keys.user_books(user_id)],
            )
        )

    async def update_review(self, review_id: str, rating: float, review_text: str = "") -> dict[str, Any]:
        if not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        user_id = self._context.require_user()
        changes = {"rating": rating, "review_text": review_text}

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, review_id, lambda _: changes)
                for key in self._keys_containing(review_id)
            }

        async def commit() -> dict[str, Any]:
            result = await self._store.write(
                ResourceDescriptor("reviews", select="*, user:user_profiles(*), book:books(*)")
                .eq("id", review_id)
                .eq("user_id", user_id)
                .as_write("update")
                .one(),
                {**changes, "updated_at": datetime.now(timezone.utc).isoformat()},
            )
            return self._normalize(result.first)

        def reconcile(client: QueryClient, review: dict[str, Any]) -> None:
            self._context.invalidator.invalidate_review(review_id, book_id=review["book_id"])

        return await self._context.executor.execute(
            OptimisticMutation(
                name="update_review",
                commit=commit,
                affected_keys=[query_keys.review(review_id)],
                predict=predict,
                reconcile=reconcile,
                invalidate=[query_keys.user_reviews(user_id)],
            )
        )

    async def delete_review(self, review_id: str, book_id: str) -> None:
        """Delete one of the user's reviews.

        Its rating is cleared from the reading log when the review was the
        user's only interaction with the book.
        """
        user_id = self._context.require_user()

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: remove_entities(data, lambda r: r.get("id") == review_id)
                for key in self._keys_containing(review_id)
            }

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("reviews")
                .eq("id", review_id)
                .eq("user_id", user_id)
                .as_write("delete")
            )
            try:
                interaction = await self._store.read(
                    ResourceDescriptor("user_book_interactions")
                    .eq("user_id", user_id)
                    .eq("book_id", book_id)
                    .one()
                )
            except NotFoundError:
                return
            row = interaction.first or {}
            if not any(row.get(f) for f in ("is_read", "is_on_watchlist", "is_liked", "is_owned")):
                await self._store.write(
                    ResourceDescriptor("user_book_interactions")
                    .eq("user_id", user_id)
                    .eq("book_id", book_id)
                    .as_write("update"),
                    {"rating": None},
                )

        def reconcile(client: QueryClient, _: None) -> None:
            client.remove_queries(query_keys.review(review_id))
            self._context.invalidator.invalidate_review(review_id, book_id=book_id)
            self._context.invalidator.invalidate_book(book_id)

        await self._context.executor.execute(
            OptimisticMutation(
                name="delete_review",
                commit=commit,
                affected_keys=[query_keys.review(review_id), query_keys.book_reviews(book_id)],
                predict=predict,
                reconcile=reconcile,
                invalidate=[query_keys.user_reviews(user_id)],
            )
        )

    def _like_mutation(self, name: str, review_id: str, liked: bool, commit: Any) -> OptimisticMutation:
        delta = 1 if liked else -1

        def changes(review: dict[str, Any]) -> dict[str, Any]:
            if bool(review.get("current_user_has_liked")) == liked:
                return {}
            return {**adjust_count(review, "like_count", delta), "current_user_has_liked": liked}

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, review_id, changes)
                for key in self._keys_containing(review_id)
            }

        return OptimisticMutation(
            name=name,
            commit=commit,
            affected_keys=[query_keys.review(review_id)],
            predict=predict,
        )

    async def like_review(self, review_id: str) -> None:
        """Like a review and notify its author (count and flag kept on success)."""
        user_id = self._context.require_user()

        async def commit() -> None:
            existing = await self._store.read(
                ResourceDescriptor("likes").eq("user_id", user_id).eq("review_id", review_id)
            )
            if existing.rows:
                return
            review = await self._store.read(
                ResourceDescriptor("reviews", select="user_id, book:books(title)")
                .eq("id", review_id)
                .one()
            )
            await self._store.write(
                ResourceDescriptor("likes").as_write("insert"),
                {"user_id": user_id, "review_id": review_id},
            )
            owner = review.first or {}
            await notify(
                self._store,
                recipient_id=owner.get("user_id"),
                actor_id=user_id,
                type="like_review",
                entity_type="review",
                entity_id=review_id,
                entity_parent_title=(owner.get("book") or {}).get("title"),
            )

        await self._context.executor.execute(
            self._like_mutation("like_review", review_id, True, commit)
        )

    async def unlike_review(self, review_id: str) -> None:
        user_id = self._context.require_user()

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("likes")
                .eq("user_id", user_id)
                .eq("review_id", review_id)
                .as_write("delete")
            )

        await self._context.executor.execute(
            self._like_mutation("unlike_review", review_id, False, commit)
        )
