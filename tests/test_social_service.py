"""
Tests for profiles, follows and the notification inbox.
"""

import pytest

from librovision.entities import StoreResult, query_keys
from librovision.exceptions import MutationError, RequestError
from librovision.services import SocialService


def alice(**overrides):
    return {
        "id": "u2",
        "username": "alice",
        "follower_count": 7,
        "following_count": 3,
        "is_current_user_following": False,
        **overrides,
    }


def follows_handler(descriptor):
    columns = {f.column for f in descriptor.filters}
    if descriptor.limit == 0:
        return StoreResult(data=[], count=7 if columns == {"following_id"} else 3)
    return [{"follower_id": "u1"}]


@pytest.fixture
def social(store, context):
    context.sign_in("u1")
    return SocialService(store=store, context=context)


async def test_get_user_profile_counts_and_follow_flag(social, store, context):
    store.on_read("user_profiles", lambda d: {"id": "u2", "username": "alice"})
    store.on_read("follows", follows_handler)

    profile = await social.get_user_profile("alice")

    assert profile["follower_count"] == 7
    assert profile["following_count"] == 3
    assert profile["is_current_user_following"] is True
    assert context.users.get("user_u2").hit


async def test_unknown_profile_is_none(social):
    assert await social.get_user_profile("nobody") is None


async def test_follow_is_speculative_and_notifies(social, store, context):
    queries = context.query_client
    key = query_keys.user_profile("alice")
    queries.set_query_data(key, alice())
    during = []

    def insert(descriptor, payload):
        during.append(queries.get_query_data(key))
        return {"id": "f1", **payload}

    store.on_write("follows", insert)

    await social.follow_user("u2")

    [profile] = during
    assert (profile["follower_count"], profile["is_current_user_following"]) == (8, True)
    assert queries.get_query_state(key).is_invalidated
    [(_, notification)] = store.writes_to("notifications")
    assert notification["type"] == "new_follower"
    assert notification["user_id"] == "u2"
    assert notification["entity_type"] == "user"
    assert notification["entity_id"] == "u1"


async def test_follow_adjusts_own_following_count(social, context):
    queries = context.query_client
    own = query_keys.user_profile("me")
    queries.set_query_data(own, {"id": "u1", "username": "me", "following_count": 2})

    await social.follow_user("u2")

    assert queries.get_query_data(own)["following_count"] == 3


async def test_follow_failure_rolls_back(social, store, context, mutation_errors):
    queries = context.query_client
    key = query_keys.user_profile("alice")
    queries.set_query_data(key, alice())

    def fail(descriptor, payload):
        raise RequestError("duplicate key", status=409)

    store.on_write("follows", fail)

    with pytest.raises(MutationError):
        await social.follow_user("u2")

    assert queries.get_query_data(key) == alice()
    assert [name for name, _ in mutation_errors] == ["follow_user"]


async def test_cannot_follow_yourself(social, store):
    with pytest.raises(ValueError):
        await social.follow_user("u1")
    assert store.writes == []


async def test_unfollow_decrements(social, store, context):
    key = query_keys.user_profile("alice")
    context.query_client.set_query_data(key, alice(follower_count=8, is_current_user_following=True))

    await social.unfollow_user("u2")

    profile = context.query_client.get_query_data(key)
    assert (profile["follower_count"], profile["is_current_user_following"]) == (7, False)
    [(descriptor, _)] = store.writes_to("follows")
    assert descriptor.method == "delete"


def notifications_handler(descriptor):
    if descriptor.limit == 0:
        return StoreResult(data=[], count=2)
    return [
        {"id": "n1", "user_id": "u1", "actor_id": "u2", "type": "new_follower", "read": False},
        {"id": "n2", "user_id": "u1", "actor_id": "u3", "type": "like_review", "read": False},
    ]


async def test_mark_all_notifications_read(social, store, context):
    store.on_read("notifications", notifications_handler)
    await social.get_notifications()
    assert await social.unread_notification_count() == 2

    await social.mark_notifications_read()

    inbox = context.query_client.get_query_data(query_keys.notifications("u1"))
    assert all(n["read"] for n in inbox["pages"][0]["items"])
    assert context.query_client.get_query_data(query_keys.notifications("u1").extend("unread")) == 0
    [(descriptor, payload)] = store.writes_to("notifications")
    assert payload == {"read": True}
    assert "id" not in [f.column for f in descriptor.filters]


async def test_mark_some_notifications_read(social, store, context):
    store.on_read("notifications", notifications_handler)
    await social.get_notifications()
    await social.unread_notification_count()

    await social.mark_notifications_read(["n1"])

    items = context.query_client.get_query_data(query_keys.notifications("u1"))["pages"][0]["items"]
    assert [n["read"] for n in items] == [True, False]
    assert context.query_client.get_query_data(query_keys.notifications("u1").extend("unread")) == 1
    [(descriptor, _)] = store.writes_to("notifications")
    assert ("id", "in", ["n1"]) in [(f.column, f.op, f.value) for f in descriptor.filters]


async def test_marking_an_already_read_notification_keeps_the_count(social, store, context):
    def handler(descriptor):
        if descriptor.limit == 0:
            return StoreResult(data=[], count=1)
        rows = notifications_handler(descriptor)
        rows[0]["read"] = True
        return rows

    store.on_read("notifications", handler)
    await social.get_notifications()
    assert await social.unread_notification_count() == 1

    await social.mark_notifications_read(["n1"])

    assert context.query_client.get_query_data(query_keys.notifications("u1").extend("unread")) == 1


async def test_mark_read_without_cached_count_leaves_it_absent(social, context):
    await social.mark_notifications_read(["n1"])
    assert context.query_client.get_query_data(query_keys.notifications("u1").extend("unread")) is None


async def test_update_profile_shows_new_values_while_saving(social, store, context):
    queries = context.query_client
    key = query_keys.user_profile("me")
    queries.set_query_data(key, {"id": "u1", "username": "me", "name": "Old", "bio": "Reader"})
    during = []

    def update(descriptor, payload):
        during.append(queries.get_query_data(key)["name"])
        return {"id": "u1", "username": "me", "bio": "Reader", **payload}

    store.on_write("user_profiles", update)

    profile = await social.update_user_profile(name="New")

    assert during == ["New"]
    assert profile["name"] == "New"
    [(descriptor, payload)] = store.writes_to("user_profiles")
    assert payload == {"name": "New"}
    assert ("id", "eq", "u1") in [(f.column, f.op, f.value) for f in descriptor.filters]
    assert queries.get_query_state(key).is_invalidated


async def test_failed_profile_update_rolls_back(social, store, context):
    queries = context.query_client
    key = query_keys.user_profile("me")
    queries.set_query_data(key, {"id": "u1", "username": "me", "name": "Old"})

    def fail(descriptor, payload):
        raise RequestError("denied", status=403)

    store.on_write("user_profiles", fail)

    with pytest.raises(MutationError):
        await social.update_user_profile(name="New")

    assert queries.get_query_data(key)["name"] == "Old"


async def test_update_profile_needs_a_change(social):
    with pytest.raises(ValueError):
        await social.update_user_profile()


async def test_search_users_matches_username_or_name(social, store):
    store.on_read("user_profiles", lambda d: [{"id": "u2", "username": "alice"}])

    found = await social.search_users("  ali ")

    assert [u["username"] for u in found["pages"][0]["items"]] == ["alice"]
    [descriptor] = store.reads_of("user_profiles")
    assert descriptor.or_filter == "username.ilike.*ali*,name.ilike.*ali*"
    with pytest.raises(ValueError):
        await social.search_users("   ")


async def test_followers_carry_the_follow_flag(social, store, context):
    def handler(descriptor):
        if descriptor.select.startswith("user:"):
            return [{"user": {"id": "u2", "username": "alice"}}, {"user": {"id": "u3", "username": "bob"}}]
        return [{"following_id": "u3"}]

    store.on_read("follows", handler)

    followers = await social.get_followers("u9")

    items = followers["pages"][0]["items"]
    assert [(u["username"], u["is_current_user_following"]) for u in items] == [("alice", False), ("bob", True)]
    listing = store.reads_of("follows")[0]
    assert ("following_id", "eq", "u9") in [(f.column, f.op, f.value) for f in listing.filters]
    assert context.query_client.get_query_data(query_keys.followers("u9")) == followers


async def test_following_reads_the_other_direction(social, store):
    store.on_read("follows", lambda d: [])

    await social.get_following("u9")

    [listing] = store.reads_of("follows")
    assert listing.select == "user:user_profiles!following_id(*)"
    assert ("follower_id", "eq", "u9") in [(f.column, f.op, f.value) for f in listing.filters]


async def test_follow_invalidates_target_follower_list(social, store, context):
    queries = context.query_client
    queries.set_query_data(query_keys.followers("u2"), {"pages": [], "page_params": []})

    await social.follow_user("u2")

    assert queries.get_query_state(query_keys.followers("u2")).is_invalidated


async def test_user_shelf_filters_on_its_flag(social, store, context):
    store.on_read(
        "user_book_interactions",
        lambda d: [{"user_id": "u2", "book_id": "b1", "is_on_watchlist": True, "book": {"id": "b1", "title": "Dune"}}],
    )

    shelf = await social.get_user_books("u2", "watchlist")

    [entry] = shelf["pages"][0]["items"]
    assert entry["book"]["title"] == "Dune"
    assert entry["book"]["current_user_is_on_watchlist"] is True
    [descriptor] = store.reads_of("user_book_interactions")
    assert ("is_on_watchlist", "eq", True) in [(f.column, f.op, f.value) for f in descriptor.filters]
    assert context.query_client.get_query_data(query_keys.user_shelf("u2", "watchlist")) == shelf


async def test_unknown_shelf(social):
    with pytest.raises(ValueError):
        await social.get_user_books("u2", "borrowed")


async def test_user_reviews(social, store, context):
    store.on_read(
        "reviews",
        lambda d: [{"id": "r1", "user_id": "u2", "book_id": "b1", "rating": 5, "current_user_likes": [{"user_id": "u1"}]}],
    )

    reviews = await social.get_user_reviews("u2")

    [review] = reviews["pages"][0]["items"]
    assert review["current_user_has_liked"] is True
    assert context.query_client.get_query_data(query_keys.user_reviews("u2")) == reviews


async def test_home_feed_is_empty_without_follows(social, store):
    store.on_read("follows", lambda d: [])

    feed = await social.get_home_feed()

    assert feed["pages"][0]["items"] == []
    assert store.reads_of("reviews") == []


async def test_home_feed_merges_activity_newest_first(social, store, context):
    store.on_read("follows", lambda d: [{"following_id": "u2"}])
    store.on_read(
        "reviews",
        lambda d: [
            {
                "id": "r1",
                "user_id": "u2",
                "book_id": "b1",
                "rating": 4,
                "created_at": "2026-01-03T00:00:00+00:00",
                "user": {"id": "u2", "username": "alice"},
                "book": {"id": "b1", "title": "Dune"},
            }
        ],
    )
    store.on_read(
        "list_collections",
        lambda d: [{"id": "l1", "user_id": "u2", "name": "Faves", "created_at": "2026-01-02T00:00:00+00:00"}],
    )
    store.on_read(
        "user_book_interactions",
        lambda d: [{"user_id": "u2", "book_id": "b2", "is_read": True, "read_date": "2026-01-04T00:00:00+00:00"}],
    )

    feed = await social.get_home_feed()

    items = feed["pages"][0]["items"]
    assert [(a["type"], a["id"]) for a in items] == [("read_book", "u2-b2"), ("review", "r1"), ("list", "l1")]
    [reviews] = store.reads_of("reviews")
    assert ("user_id", "in", ["u2"]) in [(f.column, f.op, f.value) for f in reviews.filters]
    assert context.query_client.get_query_data(query_keys.user_feed("u1")) == feed
