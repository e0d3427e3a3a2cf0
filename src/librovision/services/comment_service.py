"""Comment service.

Comments belong to either a review or a list. Adding or deleting a comment
also adjusts the parent's ``comment_count`` optimistically.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from librovision.entities import QueryKey, ResourceDescriptor, query_keys
from librovision.exceptions import RequestError
from librovision.models import Comment, PaginatedResponse, with_like_flag
from librovision.protocols import DataStore

from .cache_context import CacheContext
from .notifications import notify
from .optimistic import OptimisticMutation, Updater
from .pages import (
    adjust_count,
    append_item,
    contains_entity,
    remove_entities,
    replace_entity,
    update_entity,
)
from .query_client import QueryClient, QueryOptions

logger = logging.getLogger(__name__)

COMMENT_SELECT = "*, user:user_profiles(*), current_user_likes:likes!left(user_id)"


class CommentService:
    """Threaded comments on reviews and lists."""

    def __init__(self, store: DataStore, context: CacheContext, page_size: int = 10) -> None:
        self._store = store
        self._context = context
        self._page_size = page_size

    @property
    def _queries(self) -> QueryClient:
        return self._context.query_client

    def _comments_key(self, review_id: str | None, list_id: str | None) -> QueryKey:
        if (review_id is None) == (list_id is None):
            raise ValueError("A comment belongs to exactly one of a review or a list")
        if review_id is not None:
            return query_keys.review_comments(review_id)
        return query_keys.list_comments(list_id)  # type: ignore[arg-type]

    def _parent_keys(self, review_id: str | None, list_id: str | None) -> list[QueryKey]:
        """Cached queries showing the parent review or list (for its comment_count)."""
        parent_id = review_id or list_id
        prefix = query_keys.reviews if review_id else query_keys.lists
        return self._queries.find_keys(prefix, lambda _, data: contains_entity(data, parent_id))

    async def _comments_page(self, column: str, parent_id: str, page: int) -> dict[str, Any]:
        descriptor = (
            ResourceDescriptor("comments", select=COMMENT_SELECT)
            .eq(column, parent_id)
            .where("parent_comment_id", "is", None)
            .order_by("created_at")
            .page(page, self._page_size)
        )
        if self._context.user_id:
            descriptor = descriptor.eq("likes.user_id", self._context.user_id)
        result = await self._store.read(descriptor)
        items = [
            Comment.model_validate(with_like_flag(row)).model_dump(mode="json") for row in result.rows
        ]
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def get_review_comments(self, review_id: str) -> dict[str, Any]:
        return await self._queries.fetch_infinite_query(
            query_keys.review_comments(review_id),
            lambda page: self._comments_page("review_id", review_id, page),
            QueryOptions.preset("default"),
        )

    async def get_list_comments(self, list_id: str) -> dict[str, Any]:
        return await self._queries.fetch_infinite_query(
            query_keys.list_comments(list_id),
            lambda page: self._comments_page("list_collection_id", list_id, page),
            QueryOptions.preset("default"),
        )

    async def fetch_more_comments(self, review_id: str | None = None, list_id: str | None = None) -> dict[str, Any]:
        key = self._comments_key(review_id, list_id)
        column, parent_id = ("review_id", review_id) if review_id else ("list_collection_id", list_id)
        return await self._queries.fetch_next_page(
            key, lambda page: self._comments_page(column, parent_id, page)  # type: ignore[arg-type]
        )

    async def get_comment_replies(self, comment_id: str) -> list[dict[str, Any]]:
        """Replies to a comment, oldest first."""

        async def load() -> list[dict[str, Any]]:
            descriptor = (
                ResourceDescriptor("comments", select=COMMENT_SELECT)
                .eq("parent_comment_id", comment_id)
                .order_by("created_at")
            )
            if self._context.user_id:
                descriptor = descriptor.eq("likes.user_id", self._context.user_id)
            result = await self._store.read(descriptor)
            return [
                Comment.model_validate(with_like_flag(row)).model_dump(mode="json") for row in result.rows
            ]

        return await self._queries.fetch_query(
            query_keys.comment_replies(comment_id), load, QueryOptions.preset("default")
        )

    async def _notify_for_comment(
        self,
        comment_id: str,
        review_id: str | None,
        list_id: str | None,
        parent_comment_id: str | None,
    ) -> None:
        user_id = self._context.require_user()
        if review_id:
            parent = await self._store.read(
                ResourceDescriptor("reviews", select="user_id, book:books(title)").eq("id", review_id).one()
            )
            title = ((parent.first or {}).get("book") or {}).get("title")
        else:
            parent = await self._store.read(
                ResourceDescriptor("list_collections", select="user_id, name").eq("id", list_id).one()
            )
            title = (parent.first or {}).get("name")

        if parent_comment_id:
            replied_to = await self._store.read(
                ResourceDescriptor("comments", select="user_id").eq("id", parent_comment_id).one()
            )
            recipient, kind = (replied_to.first or {}).get("user_id"), "reply_comment"
        else:
            recipient = (parent.first or {}).get("user_id")
            kind = "comment_review" if review_id else "comment_list"

        await notify(
            self._store,
            recipient_id=recipient,
            actor_id=user_id,
            type=kind,  # type: ignore[arg-type]
            entity_type="comment",
            entity_id=comment_id,
            entity_parent_id=review_id or list_id,
            entity_parent_title=title,
        )

    async def add_comment(
        self,
        text: str,
        review_id: str | None = None,
        list_id: str | None = None,
        parent_comment_id: str | None = None,
    ) -> dict[str, Any]:
        """Comment on a review or a list (or reply to a comment on one).

        The comment shows up at once with a temporary id and the parent's
        ``comment_count`` is incremented; both are rolled back on failure.
        """
        if not 0 < len(text) <= 2000:
            raise ValueError("Comment text must be 1-2000 characters")
        user_id = self._context.require_user()
        key = self._comments_key(review_id, list_id)
        temp_id = f"temp-{uuid.uuid4()}"
        temp_comment = Comment(
            id=temp_id,
            user_id=user_id,
            text=text,
            review_id=review_id,
            list_collection_id=list_id,
            parent_comment_id=parent_comment_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        ).model_dump(mode="json")
        parent_id = review_id or list_id
        # Replies are listed under their parent comment, top-level comments under the review or list
        thread_key = key if parent_comment_id is None else query_keys.comment_replies(parent_comment_id)

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            predictions: dict[QueryKey, Updater] = {
                k: lambda data: update_entity(
                    data, parent_id, lambda p: adjust_count(p, "comment_count", 1)
                )
                for k in self._parent_keys(review_id, list_id)
            }
            predictions[thread_key] = lambda data: append_item(data, temp_comment)
            return predictions

        async def commit() -> dict[str, Any]:
            result = await self._store.write(
                ResourceDescriptor("comments", select="*, user:user_profiles(*)").as_write("insert").one(),
                {
                    "user_id": user_id,
                    "review_id": review_id,
                    "list_collection_id": list_id,
                    "parent_comment_id": parent_comment_id,
                    "text": text,
                },
            )
            comment = Comment.model_validate(result.first).model_dump(mode="json")
            try:
                await self._notify_for_comment(comment["id"], review_id, list_id, parent_comment_id)
            except RequestError as e:
                logger.warning("Comment %s saved but notification failed: %s", comment["id"], e)
            return comment

        def reconcile(client: QueryClient, comment: dict[str, Any]) -> None:
            client.set_query_data(thread_key, lambda data: replace_entity(data, temp_id, comment))

        return await self._context.executor.execute(
            OptimisticMutation(
                name="add_comment",
                commit=commit,
                affected_keys=[thread_key],
                predict=predict,
                reconcile=reconcile,
                invalidate=[
                    key,
                    thread_key,
                    query_keys.review(review_id) if review_id else query_keys.list(list_id),  # type: ignore[arg-type]
                ],
            )
        )

    def _like_mutation(self, name: str, comment_id: str, liked: bool, commit: Any) -> OptimisticMutation:
        def changes(comment: dict[str, Any]) -> dict[str, Any]:
            if bool(comment.get("current_user_has_liked")) == liked:
                return {}
            return {
                **adjust_count(comment, "like_count", 1 if liked else -1),
                "current_user_has_liked": liked,
            }

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                k: lambda data: update_entity(data, comment_id, changes)
                for k in client.find_keys(
                    query_keys.comments, lambda _, data: contains_entity(data, comment_id)
                )
            }

        return OptimisticMutation(name=name, commit=commit, predict=predict)

    async def like_comment(self, comment_id: str) -> None:
        user_id = self._context.require_user()

        async def commit() -> None:
            existing = await self._store.read(
                ResourceDescriptor("likes").eq("user_id", user_id).eq("comment_id", comment_id)
            )
            if not existing.rows:
                await self._store.write(
                    ResourceDescriptor("likes").as_write("insert"),
                    {"user_id": user_id, "comment_id": comment_id},
                )

        await self._context.executor.execute(
            self._like_mutation("like_comment", comment_id, True, commit)
        )

    async def unlike_comment(self, comment_id: str) -> None:
        user_id = self._context.require_user()

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("likes")
                .eq("user_id", user_id)
                .eq("comment_id", comment_id)
                .as_write("delete")
            )

        await self._context.executor.execute(
            self._like_mutation("unlike_comment", comment_id, False, commit)
        )

    async def delete_comment(
        self,
        comment_id: str,
        review_id: str | None = None,
        list_id: str | None = None,
    ) -> None:
        """Delete one of the user's comments and decrement the parent's count."""
        user_id = self._context.require_user()
        key = self._comments_key(review_id, list_id)
        parent_id = review_id or list_id

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            predictions: dict[QueryKey, Updater] = {
                k: lambda data: update_entity(
                    data, parent_id, lambda p: adjust_count(p, "comment_count", -1)
                )
                for k in self._parent_keys(review_id, list_id)
            }
            # The comment may be listed under its review or list, or as a reply
            listed = client.find_keys(query_keys.comments, lambda _, data: contains_entity(data, comment_id))
            for k in {key, *listed}:
                predictions[k] = lambda data: remove_entities(data, lambda c: c.get("id") == comment_id)
            return predictions

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("comments")
                .eq("id", comment_id)
                .eq("user_id", user_id)
                .as_write("delete")
            )

        await self._context.executor.execute(
            OptimisticMutation(
                name="delete_comment",
                commit=commit,
                affected_keys=[key],
                predict=predict,
                invalidate=[key],
            )
        )
