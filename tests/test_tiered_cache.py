"""
Tests for the tiered cache.
"""

import pytest

from librovision.repositories import MemoryCache, RedisCacheRepository, SessionCacheRepository
from librovision.services import TieredCache


@pytest.fixture
def tiers(fake_redis, clock):
    memory = MemoryCache(max_size=2, max_age=300, clock=clock)
    durable = RedisCacheRepository(redis_client=fake_redis, prefix="librovision_books_", max_age=300, clock=clock)
    session = SessionCacheRepository(prefix="librovision_books_", max_age=300, clock=clock)
    return memory, durable, session


@pytest.fixture
def cache(tiers, clock):
    memory, durable, session = tiers
    return TieredCache(memory=memory, durable=durable, session=session, name="books", clock=clock)


def test_set_get_until_expiry(cache, clock):
    assert cache.set("book_123", {"id": "123"}) is True

    clock.advance(60)
    lookup = cache.get("book_123")
    assert lookup.hit
    assert lookup.value == {"id": "123"}
    assert lookup.tier == "memory"

    clock.advance(300)
    assert not cache.get("book_123").hit


def test_persistent_writes_durable_tier(cache, tiers):
    memory, durable, session = tiers
    cache.set("book_1", "a", persistent=True)
    cache.set("book_2", "b")

    assert durable.keys() == ["book_1"]
    assert session.keys() == ["book_2"]
    assert memory.size() == 2


def test_slow_tier_hit_is_promoted_with_remaining_lifetime(cache, tiers, clock):
    memory, durable, _ = tiers
    cache.set("book_1", "a", persistent=True)
    memory.clear()

    clock.advance(200)
    lookup = cache.get("book_1")
    assert lookup.hit and lookup.tier == "durable"
    assert memory.get_entry("book_1").expiry == pytest.approx(100)

    # Promotion does not extend freshness past the original expiry
    clock.advance(101)
    assert not cache.get("book_1").hit


def test_none_is_a_legal_value(cache):
    cache.set("nothing", None)
    lookup = cache.get("nothing")
    assert lookup.hit
    assert lookup.value is None


def test_durable_failure_degrades_to_miss(cache, fake_redis):
    """Redis failures are logged and counted, never raised."""
    fake_redis.fail = True

    assert cache.set("book_1", "a", persistent=True) is False
    assert cache.get("missing").hit is False
    assert cache.delete("book_1") is False
    assert cache.get_stats()["errors"] >= 3


def test_session_quota_failure_keeps_memory_copy(clock):
    cache = TieredCache(
        memory=MemoryCache(max_size=5, clock=clock),
        session=SessionCacheRepository(prefix="p_", max_bytes=50, clock=clock),
        clock=clock,
    )
    assert cache.set("big", "x" * 100) is False
    assert cache.get("big").value == "x" * 100


def test_delete_and_clear_every_tier(cache, tiers):
    memory, durable, session = tiers
    cache.set("a", 1, persistent=True)
    cache.set("b", 2)

    cache.delete("a")
    assert durable.keys() == []
    assert memory.get_entry("a") is None

    cache.clear()
    assert session.keys() == []
    assert cache.size() == 0


def test_stats(cache):
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")

    stats = cache.get_stats()
    assert stats["name"] == "books"
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["memory_hits"] == 1
    assert stats["hit_ratio"] == 0.5
    assert stats["session_size"] == 1
