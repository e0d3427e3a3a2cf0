"""Social service: profiles, follows, shelves, the home feed and notifications."""

import logging
from typing import Any

from librovision.entities import QueryKey, ResourceDescriptor, query_keys
from librovision.exceptions import NotFoundError
from librovision.models import (
    Book,
    Notification,
    PaginatedResponse,
    Review,
    UserBookInteraction,
    UserProfile,
    with_like_flag,
)
from librovision.protocols import DataStore

from .book_service import REVIEW_SELECT
from .cache_context import CacheContext
from .list_service import LIST_SELECT, list_from_row
from .notifications import notify
from .optimistic import OptimisticMutation, Updater
from .pages import adjust_count, contains_entity, iter_items, map_items, update_entity
from .query_client import QueryClient, QueryOptions

logger = logging.getLogger(__name__)

NOTIFICATION_SELECT = "*, actor:user_profiles!actor_id(*)"

# Shelf name -> (interaction flag, newest-first ordering column)
SHELVES: dict[str, tuple[str, str]] = {
    "read": ("is_read", "read_date"),
    "watchlist": ("is_on_watchlist", "created_at"),
    "liked": ("is_liked", "updated_at"),
    "owned": ("is_owned", "updated_at"),
}


class SocialService:
    """Profiles and the follow graph, reading shelves, the home feed and notifications."""

    def __init__(
        self,
        store: DataStore,
        context: CacheContext,
        notification_page_size: int = 10,
        page_size: int = 20,
    ) -> None:
        self._store = store
        self._context = context
        self._notification_page_size = notification_page_size
        self._page_size = page_size

    @property
    def _queries(self) -> QueryClient:
        return self._context.query_client

    async def _count(self, descriptor: ResourceDescriptor) -> int:
        result = await self._store.read(descriptor.counted())
        return result.count or 0

    # -- profiles ---------------------------------------------------------

    async def get_user_profile(self, username: str) -> dict[str, Any] | None:
        """Profile with follower/following counts and whether we follow them."""

        async def load() -> dict[str, Any] | None:
            try:
                result = await self._store.read(
                    ResourceDescriptor("user_profiles").eq("username", username).one()
                )
            except NotFoundError:
                return None
            row = dict(result.first or {})
            user_id = row["id"]
            follows = ResourceDescriptor("follows", select="follower_id")
            row["follower_count"] = await self._count(follows.eq("following_id", user_id))
            row["following_count"] = await self._count(follows.eq("follower_id", user_id))

            viewer = self._context.user_id
            if viewer and viewer != user_id:
                following = await self._store.read(
                    follows.eq("follower_id", viewer).eq("following_id", user_id)
                )
                row["is_current_user_following"] = bool(following.rows)

            profile = UserProfile.model_validate(row).model_dump(mode="json")
            self._context.users.set(f"user_{user_id}", profile)
            return profile

        return await self._queries.fetch_query(query_keys.user_profile(username), load)

    async def update_user_profile(
        self,
        name: str | None = None,
        bio: str | None = None,
        avatar_url: str | None = None,
    ) -> dict[str, Any]:
        """Update the signed-in user's name, bio and avatar.

        Every cached copy of the profile shows the new values while the write
        is in flight.

        Fields left as None are not changed.

        Raises:
            ValueError: If every field is None
            MutationError: If the write failed (cached profiles rolled back)
        """
        user_id = self._context.require_user()
        changes = {
            field: value
            for field, value in {"name": name, "bio": bio, "avatar_url": avatar_url}.items()
            if value is not None
        }
        if not changes:
            raise ValueError("Nothing to update")

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            return {
                key: lambda data: update_entity(data, user_id, lambda _: changes)
                for key in client.find_keys(
                    query_keys.users, lambda _, data: contains_entity(data, user_id)
                )
            }

        async def commit() -> dict[str, Any]:
            result = await self._store.write(
                ResourceDescriptor("user_profiles").eq("id", user_id).as_write("update").one(),
                changes,
            )
            return UserProfile.model_validate(result.first).model_dump(mode="json")

        def reconcile(client: QueryClient, profile: dict[str, Any]) -> None:
            self._context.invalidator.invalidate_user(user_id)

        return await self._context.executor.execute(
            OptimisticMutation(
                name="update_user_profile",
                commit=commit,
                affected_keys=[query_keys.user(user_id)],
                predict=predict,
                reconcile=reconcile,
            )
        )

    async def _user_search_page(self, query: str, page: int) -> dict[str, Any]:
        result = await self._store.read(
            ResourceDescriptor("user_profiles")
            .any_of(f"username.ilike.*{query}*,name.ilike.*{query}*")
            .order_by("username")
            .page(page, self._page_size)
        )
        items = [UserProfile.model_validate(row).model_dump(mode="json") for row in result.rows]
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def search_users(self, query: str) -> dict[str, Any]:
        """Users whose username or display name contains ``query``.

        Raises:
            ValueError: If ``query`` is blank
        """
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty")
        return await self._queries.fetch_infinite_query(
            query_keys.user_search(query),
            lambda page: self._user_search_page(query, page),
            QueryOptions.preset("search"),
        )

    # -- follows ----------------------------------------------------------

    def _follow_mutation(self, name: str, target_id: str, following: bool, commit: Any) -> OptimisticMutation:
        follower_id = self._context.require_user()
        if follower_id == target_id:
            raise ValueError("Users cannot follow themselves")
        delta = 1 if following else -1

        def target_changes(profile: dict[str, Any]) -> dict[str, Any]:
            if bool(profile.get("is_current_user_following")) == following:
                return {}
            return {
                **adjust_count(profile, "follower_count", delta),
                "is_current_user_following": following,
            }

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            predictions: dict[QueryKey, Updater] = {
                key: lambda data: update_entity(data, target_id, target_changes)
                for key in client.find_keys(
                    query_keys.users, lambda _, data: contains_entity(data, target_id)
                )
            }
            for key in client.find_keys(
                query_keys.users, lambda _, data: contains_entity(data, follower_id)
            ):
                predictions.setdefault(
                    key,
                    lambda data: update_entity(
                        data, follower_id, lambda p: adjust_count(p, "following_count", delta)
                    ),
                )
            return predictions

        def reconcile(client: QueryClient, _: None) -> None:
            self._context.invalidator.invalidate_user(target_id)
            self._context.invalidator.invalidate_user(follower_id)

        return OptimisticMutation(
            name=name,
            commit=commit,
            affected_keys=[query_keys.user(target_id)],
            predict=predict,
            reconcile=reconcile,
            invalidate=[
                query_keys.follows(follower_id),
                query_keys.follows(target_id),
                query_keys.user_feed(follower_id),
            ],
        )

    async def follow_user(self, user_id: str) -> None:
        """Follow ``user_id`` and notify them.

        Raises:
            ValueError: When following yourself
            MutationError: If the write failed (optimistic counts rolled back)
        """
        follower_id = self._context.require_user()

        async def commit() -> None:
            existing = await self._store.read(
                ResourceDescriptor("follows").eq("follower_id", follower_id).eq("following_id", user_id)
            )
            if existing.rows:
                return
            await self._store.write(
                ResourceDescriptor("follows").as_write("insert"),
                {"follower_id": follower_id, "following_id": user_id},
            )
            await notify(
                self._store,
                recipient_id=user_id,
                actor_id=follower_id,
                type="new_follower",
                entity_type="user",
                entity_id=follower_id,
            )

        await self._context.executor.execute(self._follow_mutation("follow_user", user_id, True, commit))

    async def unfollow_user(self, user_id: str) -> None:
        follower_id = self._context.require_user()

        async def commit() -> None:
            await self._store.write(
                ResourceDescriptor("follows")
                .eq("follower_id", follower_id)
                .eq("following_id", user_id)
                .as_write("delete")
            )

        await self._context.executor.execute(self._follow_mutation("unfollow_user", user_id, False, commit))

    async def _follow_list_page(self, user_id: str, direction: str, page: int) -> dict[str, Any]:
        # direction is "followers" (people following user_id) or "following"
        if direction == "followers":
            match, embed = "following_id", "user:user_profiles!follower_id(*)"
        else:
            match, embed = "follower_id", "user:user_profiles!following_id(*)"
        result = await self._store.read(
            ResourceDescriptor("follows", select=embed)
            .eq(match, user_id)
            .order_by("created_at", ascending=False)
            .page(page, self._page_size)
        )
        profiles = [row["user"] for row in result.rows if row.get("user")]

        viewer = self._context.user_id
        followed: set[str] = set()
        if viewer and profiles:
            mine = await self._store.read(
                ResourceDescriptor("follows", select="following_id")
                .eq("follower_id", viewer)
                .where("following_id", "in", [p["id"] for p in profiles])
            )
            followed = {row["following_id"] for row in mine.rows}

        items = [
            UserProfile.model_validate(
                {**profile, "is_current_user_following": profile["id"] in followed}
            ).model_dump(mode="json")
            for profile in profiles
        ]
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def get_followers(self, user_id: str) -> dict[str, Any]:
        """Profiles following ``user_id``, newest first."""
        return await self._queries.fetch_infinite_query(
            query_keys.followers(user_id),
            lambda page: self._follow_list_page(user_id, "followers", page),
        )

    async def get_following(self, user_id: str) -> dict[str, Any]:
        """Profiles ``user_id`` follows, newest first."""
        return await self._queries.fetch_infinite_query(
            query_keys.following(user_id),
            lambda page: self._follow_list_page(user_id, "following", page),
        )

    # -- shelves and reviews ----------------------------------------------

    async def _shelf_page(self, user_id: str, shelf: str, page: int) -> dict[str, Any]:
        flag, newest = SHELVES[shelf]
        result = await self._store.read(
            ResourceDescriptor("user_book_interactions", select="*, book:books(*)")
            .eq("user_id", user_id)
            .eq(flag, True)
            .order_by(newest, ascending=False)
            .order_by("updated_at", ascending=False)
            .page(page, self._page_size)
        )
        items = []
        for row in result.rows:
            entry = UserBookInteraction.model_validate(row).model_dump(mode="json")
            if row.get("book"):
                entry["book"] = Book.from_row(row["book"], row).model_dump(mode="json")
            items.append(entry)
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def get_user_books(self, user_id: str, shelf: str = "read") -> dict[str, Any]:
        """One of a user's shelves: ``read``, ``watchlist``, ``liked`` or ``owned``.

        Raises:
            ValueError: For an unknown shelf
        """
        if shelf not in SHELVES:
            raise ValueError(f"Unknown shelf: {shelf}")
        return await self._queries.fetch_infinite_query(
            query_keys.user_shelf(user_id, shelf),
            lambda page: self._shelf_page(user_id, shelf, page),
        )

    async def _user_reviews_page(self, user_id: str, page: int) -> dict[str, Any]:
        descriptor = (
            ResourceDescriptor("reviews", select=REVIEW_SELECT)
            .eq("user_id", user_id)
            .order_by("created_at", ascending=False)
            .page(page, self._page_size)
        )
        if self._context.user_id:
            descriptor = descriptor.eq("likes.user_id", self._context.user_id)
        result = await self._store.read(descriptor)
        items = [
            Review.model_validate(with_like_flag(row)).model_dump(mode="json") for row in result.rows
        ]
        return PaginatedResponse.build(items, result.count or 0, page, self._page_size)

    async def get_user_reviews(self, user_id: str) -> dict[str, Any]:
        return await self._queries.fetch_infinite_query(
            query_keys.user_reviews(user_id),
            lambda page: self._user_reviews_page(user_id, page),
        )

    # -- home feed --------------------------------------------------------

    async def _feed_page(self, user_id: str, page: int) -> dict[str, Any]:
        follows = await self._store.read(
            ResourceDescriptor("follows", select="following_id").eq("follower_id", user_id)
        )
        followed = sorted({row["following_id"] for row in follows.rows})
        if not followed:
            return PaginatedResponse.build([], 0, page, self._page_size)

        # Enough of each activity type to fill every page up to this one
        window = page * self._page_size
        reviews = await self._store.read(
            ResourceDescriptor("reviews", select="*, user:user_profiles(*), book:books(*)", limit=window)
            .where("user_id", "in", followed)
            .order_by("created_at", ascending=False)
        )
        lists = await self._store.read(
            ResourceDescriptor("list_collections", select=LIST_SELECT, limit=window)
            .where("user_id", "in", followed)
            .eq("is_public", True)
            .order_by("created_at", ascending=False)
        )
        finished = await self._store.read(
            ResourceDescriptor(
                "user_book_interactions", select="*, user:user_profiles(*), book:books(*)", limit=window
            )
            .where("user_id", "in", followed)
            .eq("is_read", True)
            .where("read_date", "not.is", None)
            .order_by("read_date", ascending=False)
        )

        activities = [
            {
                "type": "review",
                "id": row["id"],
                "user": row.get("user"),
                "book": row.get("book"),
                "data": Review.model_validate(row).model_dump(mode="json"),
                "created_at": row.get("created_at"),
            }
            for row in reviews.rows
        ]
        for row in lists.rows:
            collection = list_from_row(row)
            activities.append(
                {
                    "type": "list",
                    "id": collection["id"],
                    "user": row.get("user"),
                    "book": None,
                    "data": collection,
                    "created_at": collection.get("created_at"),
                }
            )
        for row in finished.rows:
            activities.append(
                {
                    "type": "read_book",
                    "id": f"{row['user_id']}-{row['book_id']}",
                    "user": row.get("user"),
                    "book": row.get("book"),
                    "data": UserBookInteraction.model_validate(row).model_dump(mode="json"),
                    "created_at": row.get("read_date") or row.get("updated_at"),
                }
            )
        activities.sort(key=lambda a: a["created_at"] or "", reverse=True)

        start = (page - 1) * self._page_size
        return PaginatedResponse.build(
            activities[start : start + self._page_size], len(activities), page, self._page_size
        )

    async def get_home_feed(self) -> dict[str, Any]:
        """Recent reviews, public lists and finished books from followed users, newest first."""
        user_id = self._context.require_user()
        return await self._queries.fetch_infinite_query(
            query_keys.user_feed(user_id),
            lambda page: self._feed_page(user_id, page),
        )

    async def fetch_more_home_feed(self) -> dict[str, Any]:
        user_id = self._context.require_user()
        return await self._queries.fetch_next_page(
            query_keys.user_feed(user_id),
            lambda page: self._feed_page(user_id, page),
        )

    # -- notifications ----------------------------------------------------

    async def _notifications_page(self, user_id: str, page: int) -> dict[str, Any]:
        result = await self._store.read(
            ResourceDescriptor("notifications", select=NOTIFICATION_SELECT)
            .eq("user_id", user_id)
            .order_by("created_at", ascending=False)
            .page(page, self._notification_page_size)
        )
        items = [Notification.model_validate(row).model_dump(mode="json") for row in result.rows]
        return PaginatedResponse.build(items, result.count or 0, page, self._notification_page_size)

    async def get_notifications(self) -> dict[str, Any]:
        user_id = self._context.require_user()
        return await self._queries.fetch_infinite_query(
            query_keys.notifications(user_id),
            lambda page: self._notifications_page(user_id, page),
            QueryOptions.preset("notifications"),
        )

    async def fetch_more_notifications(self) -> dict[str, Any]:
        user_id = self._context.require_user()
        return await self._queries.fetch_next_page(
            query_keys.notifications(user_id),
            lambda page: self._notifications_page(user_id, page),
        )

    async def unread_notification_count(self) -> int:
        user_id = self._context.require_user()

        async def load() -> int:
            return await self._count(
                ResourceDescriptor("notifications", select="id")
                .eq("user_id", user_id)
                .eq("read", False)
            )

        return await self._queries.fetch_query(
            query_keys.notifications(user_id).extend("unread"),
            load,
            QueryOptions.preset("notifications"),
        )

    async def mark_notifications_read(self, ids: list[str] | None = None) -> None:
        """Mark the given notifications (or all of them) as read."""
        user_id = self._context.require_user()
        inbox = query_keys.notifications(user_id)
        unread = inbox.extend("unread")
        selected = set(ids) if ids is not None else None

        def mark(item: dict[str, Any]) -> dict[str, Any]:
            if selected is None or item.get("id") in selected:
                return {**item, "read": True}
            return item

        def predict(client: QueryClient) -> dict[QueryKey, Updater]:
            cached = client.get_query_data(inbox)
            if selected is None:
                newly_read = None
            elif cached is None:
                newly_read = len(selected)
            else:
                # Only unread notifications in the selection lower the count
                newly_read = sum(
                    1 for item in iter_items(cached) if item.get("id") in selected and not item.get("read")
                )

            def count_update(n: int | None) -> int | None:
                if n is None:
                    return None
                return 0 if newly_read is None else max(0, n - newly_read)

            return {inbox: lambda data: map_items(data, mark), unread: count_update}

        async def commit() -> None:
            descriptor = ResourceDescriptor("notifications").eq("user_id", user_id).eq("read", False)
            if selected is not None:
                descriptor = descriptor.where("id", "in", sorted(selected))
            await self._store.write(descriptor.as_write("update"), {"read": True})

        await self._context.executor.execute(
            OptimisticMutation(
                name="mark_notifications_read",
                commit=commit,
                affected_keys=[inbox, unread],
                predict=predict,
            )
        )
