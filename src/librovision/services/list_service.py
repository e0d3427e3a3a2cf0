"""List service: curated, shareable book lists."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from librovision.entities import QueryKey, ResourceDescriptor, query_keys
from librovision.exceptions import NotFoundError
from librovision.models import Book, ListCollection, PaginatedResponse, with_like_flag
from librovision.protocols import DataStore

from .cache_context import CacheContext
from .notifications import notify
from .optimistic import OptimisticMutation, Updater
from .pages import (
    adjust_count,
    contains_entity,
    prepend_item,
    remove_entities,
    replace_entity,
    update_entity,
)
from .query_client import QueryClient, QueryOptions

logger = logging.getLogger(__name__)

LIST_SELECT = (
    "*, user:user_profiles(*), list_items(*, book:books(*)), "
    "current_user_likes:likes!left(user_id)"
)


def list_from_row(row: dict[str, Any]) -> dict[str, Any]:
    row = with_like_flag(row)
    items = sorted(row.pop("list_items", None) or [], key=lambda i: i.get("sort_order") or 0)
    books = [Book.from_row(item["book"]).model_dump(mode="json") for item in items if item.get("book")]
    if items:
        row["item_count"] = len(items)
    row["books"] = books
    row["cover_images"] = [b["cover_image_url"] for b in books if b.get("cover_image_url")][:4]
    return ListCollection.model_validate(row).model_dump(mode="json")


class ListService:
    """List reads and optimistic list mutations."""

    def __init__(self, store: DataStore, context: CacheContext, page_size: int = 10) -> None:
        self._store = store
        self._context = context
        self._page_size = page_size

    @property
    def _queries(self) -> QueryClient:
        return self._context.query_client

    def _keys_containing(self, list_id: str) -> list[QueryKey]:
        return self._queries.find_keys(
            query_keys.lists, lambda _, data: contains_entity(data, list_id)
        )

    def _list_descriptor(self) -> ResourceDescriptor:
        descriptor = ResourceDescriptor("list_collections", select=LIST_SELECT)
        if self._context.user_id:
            descriptor = descriptor.eq("likes.user_id", self._context.user_id)
        return descriptor

    async def get_list(self, list_id: str) -> dict[str, Any] | None:
        async def load() -> dict[str, Any] | None:
            cache_key = f"list_{list_id}"
            cached = self._context.lists.get(cache_key)
            if cached.hit:
                return cached.value
            try:
                result = await self._store.read(self._list_descriptor().eq("id", list_id).one())
            except NotFoundError:
                return None
            collection = list_from_row(result.first)
            self._context.lists.set(cache_key, collection)
            return collection

        return await self._queries.fetch_query(query_keys.list(list_id), load)

    async def _user_lists_page(self, user_id: str, page: int) -> dict[str, Any]:
        descriptor = (
            self._list_descriptor()
            .eq("user_id", user_id)
            .order_by("updated_at", ascending=False)
            .page(page, self._page_size)
        )
        if user_id != self._context.user_id:
            descriptor = descriptor.eq("is_public", True)
        result = await self._store.read(descriptor)
        items = [list_from_row(row) for row in result.rows]
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def get_user_lists(self, user_id: str) -> dict[str, Any]:
        """A user's lists; other users only see public ones."""
        return await self._queries.fetch_infinite_query(
            query_keys.user_lists(user_id),
            lambda page: self._user_lists_page(user_id, page),
        )

    async def create_list(
        self,
        name: str,
        description: str | None = None,
        is_public: bool = True,
    ) -> dict[str, Any]:
        if not name.strip():
            raise ValueError("List name must not be empty")
        user_id = self._context.require_user()
        temp_id = f"temp-{uuid.uuid4()}"
        now = datetime.now(timezone.utc).isoformat()
        temp_list = ListCollection(
            id=temp_id,
            user_id=user_id,
            name=name,
            description=description,
            is_public=is_public,
            created_at=now,
            updated_at=now,
        ).model_dump(mode="json")

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {query_keys.user_lists(user_id): lambda data: prepend_item(data, temp_list)}

        async def commit() -> dict[str, Any]:
            result = await self._store.write(
                ResourceDescriptor("list_collections").as_write("insert").one(),
                {"user_id": user_id, "name": name, "description": description, "is_public": is_public},
            )
            return list_from_row(result.first)

        def reconcile(client: QueryClient, collection: dict[str, Any]) -> None:
            client.set_query_data(
                query_keys.user_lists(user_id),
                lambda data: replace_entity(data, temp_id, collection) if data else None,
            )
            client.set_query_data(query_keys.list(collection["id"]), collection)
            self._context.invalidator.invalidate_list(collection["id"], user_id=user_id)

        return await self._context.executor.execute(
            OptimisticMutation(
                name="create_list",
                commit=commit,
                affected_keys=[query_keys.user_lists(user_id)],
                predict=predict,
                reconcile=reconcile,
            )
        )

    async def update_list_details(
        self,
        list_id: str,
        name: str | None = None,
        description: str | None = None,
        is_public: bool | None = None,
    ) -> dict[str, Any]:
        """Rename or re-describe one of the user's lists, or change its visibility.

        Raises:
            ValueError: If nothing is changed or ``name`` is blank
            MutationError: If the write failed (cached copies rolled back)
        """
        if name is not None and not name.strip():
            raise ValueError("List name must not be empty")
        changes = {
            field: value
            for field, value in {"name": name, "description": description, "is_public": is_public}.items()
            if value is not None
        }
        if not changes:
            raise ValueError("Nothing to update")
        user_id = self._context.require_user()

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, list_id, lambda _: changes)
                for key in self._keys_containing(list_id)
            }

        async def commit() -> dict[str, Any]:
            result = await self._store.write(
                ResourceDescriptor("list_collections", select="*, user:user_profiles(*)")
                .eq("id", list_id)
                .eq("user_id", user_id)
                .as_write("update")
                .one(),
                changes,
            )
            return result.first or {}

        def reconcile(client: QueryClient, row: dict[str, Any]) -> None:
            self._context.invalidator.invalidate_list(list_id, user_id=user_id)

        return await self._context.executor.execute(
            OptimisticMutation(
                name="update_list_details",
                commit=commit,
                affected_keys=[query_keys.list(list_id)],
                predict=predict,
                reconcile=reconcile,
            )
        )

    async def delete_list(self, list_id: str) -> None:
        """Delete one of the user's lists; it disappears from cached lists at once."""
        user_id = self._context.require_user()

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: remove_entities(data, lambda c: c.get("id") == list_id)
                for key in self._keys_containing(list_id)
            }

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("list_collections")
                .eq("id", list_id)
                .eq("user_id", user_id)
                .as_write("delete")
            )

        def reconcile(client: QueryClient, _: None) -> None:
            client.remove_queries(query_keys.list(list_id))
            self._context.invalidator.invalidate_list(list_id, user_id=user_id)

        await self._context.executor.execute(
            OptimisticMutation(
                name="delete_list",
                commit=commit,
                affected_keys=[query_keys.list(list_id), query_keys.user_lists(user_id)],
                predict=predict,
                reconcile=reconcile,
            )
        )

    async def _search_page(self, query: str, page: int) -> dict[str, Any]:
        descriptor = (
            self._list_descriptor()
            .eq("is_public", True)
            .order_by("created_at", ascending=False)
            .page(page, self._page_size)
        )
        if query:
            descriptor = descriptor.any_of(f"name.ilike.*{query}*,description.ilike.*{query}*")
        result = await self._store.read(descriptor)
        items = [list_from_row(row) for row in result.rows]
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def search_lists(self, query: str = "") -> dict[str, Any]:
        """Public lists whose name or description contains ``query`` (all public lists when blank)."""
        query = query.strip()
        return await self._queries.fetch_infinite_query(
            query_keys.list_search(query),
            lambda page: self._search_page(query, page),
            QueryOptions.preset("search"),
        )

    async def add_book_to_list(self, list_id: str, book_id: str, book: dict[str, Any] | None = None) -> None:
        """Append a book to a list (``book`` is shown immediately when given)."""
        user_id = self._context.require_user()

        def changes(collection: dict[str, Any]) -> dict[str, Any]:
            update = adjust_count(collection, "item_count", 1)
            if book is not None:
                update["books"] = [*(collection.get("books") or []), book]
            return update

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, list_id, changes)
                for key in self._keys_containing(list_id)
            }

        async def commit() -> None:
            last = await self._store.read(
                ResourceDescriptor("list_items", select="sort_order", limit=1)
                .eq("list_collection_id", list_id)
                .order_by("sort_order", ascending=False)
            )
            next_order = ((last.first or {}).get("sort_order") or 0) + 1
            await self._store.write(
                ResourceDescriptor("list_items").as_write("insert"),
                {"list_collection_id": list_id, "book_id": book_id, "sort_order": next_order},
            )

        await self._context.executor.execute(
            OptimisticMutation(
                name="add_book_to_list",
                commit=commit,
                affected_keys=[query_keys.list(list_id)],
                predict=predict,
                reconcile=lambda client, _: self._context.invalidator.invalidate_list(list_id, user_id=user_id),
            )
        )

    async def remove_book_from_list(self, list_id: str, book_id: str) -> None:
        user_id = self._context.require_user()

        def changes(collection: dict[str, Any]) -> dict[str, Any]:
            return {
                **adjust_count(collection, "item_count", -1),
                "books": [b for b in collection.get("books") or [] if b.get("id") != book_id],
            }

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, list_id, changes)
                for key in self._keys_containing(list_id)
            }

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("list_items")
                .eq("list_collection_id", list_id)
                .eq("book_id", book_id)
                .as_write("delete")
            )

        await self._context.executor.execute(
            OptimisticMutation(
                name="remove_book_from_list",
                commit=commit,
                affected_keys=[query_keys.list(list_id)],
                predict=predict,
                reconcile=lambda client, _: self._context.invalidator.invalidate_list(list_id, user_id=user_id),
            )
        )

    def _like_mutation(self, name: str, list_id: str, liked: bool, commit: Any) -> OptimisticMutation:
        def changes(collection: dict[str, Any]) -> dict[str, Any]:
            if bool(collection.get("current_user_has_liked")) == liked:
                return {}
            return {
                **adjust_count(collection, "like_count", 1 if liked else -1),
                "current_user_has_liked": liked,
            }

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, list_id, changes)
                for key in self._keys_containing(list_id)
            }

        return OptimisticMutation(
            name=name,
            commit=commit,
            affected_keys=[query_keys.list(list_id)],
            predict=predict,
        )

    async def like_list(self, list_id: str) -> None:
        """Like a list and notify its owner."""
        user_id = self._context.require_user()

        async def commit() -> None:
            existing = await self._store.read(
                ResourceDescriptor("likes").eq("user_id", user_id).eq("list_collection_id", list_id)
            )
            if existing.rows:
                return
            collection = await self._store.read(
                ResourceDescriptor("list_collections", select="user_id, name").eq("id", list_id).one()
            )
            await self._store.write(
                ResourceDescriptor("likes").as_write("insert"),
                {"user_id": user_id, "list_collection_id": list_id},
            )
            owner = collection.first or {}
            await notify(
                self._store,
                recipient_id=owner.get("user_id"),
                actor_id=user_id,
                type="like_list",
                entity_type="list_collection",
                entity_id=list_id,
                entity_parent_title=owner.get("name"),
            )

        await self._context.executor.execute(self._like_mutation("like_list", list_id, True, commit))

    async def unlike_list(self, list_id: str) -> None:
        user_id = self._context.require_user()

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("likes")
                .eq("user_id", user_id)
                .eq("list_collection_id", list_id)
                .as_write("delete")
            )

        await self._context.executor.execute(self._like_mutation("unlike_list", list_id, False, commit))
