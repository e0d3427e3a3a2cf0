"""
Tests for the Redis durable tier.
"""

import json

import pytest

from librovision.exceptions import CacheStorageError
from librovision.repositories import RedisCacheRepository


@pytest.fixture
def durable(fake_redis, clock):
    return RedisCacheRepository(
        redis_client=fake_redis, prefix="librovision_books_", max_age=300, version="1.0.0", clock=clock
    )


def test_envelope_layout(durable, fake_redis, clock):
    """Entries are JSON envelopes under the prefixed key with a matching TTL."""
    durable.set_entry("book_1", {"title": "Dune"})

    raw = json.loads(fake_redis.data["librovision_books_book_1"])
    assert raw == {
        "data": {"title": "Dune"},
        "timestamp": clock.now,
        "expiry": 300,
        "version": "1.0.0",
    }
    assert fake_redis.ttls["librovision_books_book_1"] == 300_000


def test_expired_entry_is_purged(durable, fake_redis, clock):
    durable.set_entry("book_1", {"title": "Dune"})
    clock.advance(301)

    assert durable.get_entry("book_1") is None
    assert "librovision_books_book_1" not in fake_redis.data


def test_zero_max_age_expires_immediately(durable, fake_redis, clock):
    durable.set_entry("book_1", {"title": "Dune"}, max_age=0)

    assert json.loads(fake_redis.data["librovision_books_book_1"])["expiry"] == 0
    assert fake_redis.ttls["librovision_books_book_1"] == 1
    clock.advance(1)
    assert durable.get_entry("book_1") is None


def test_version_mismatch_is_purged(durable, fake_redis, clock):
    fake_redis.data["librovision_books_old"] = json.dumps(
        {"data": 1, "timestamp": clock.now, "expiry": 300, "version": "0.1.0"}
    )
    assert durable.get_entry("old") is None
    assert "librovision_books_old" not in fake_redis.data


def test_corrupt_entry_raises_storage_error(durable, fake_redis):
    fake_redis.data["librovision_books_bad"] = "{not json"
    with pytest.raises(CacheStorageError):
        durable.get_entry("bad")
    assert "librovision_books_bad" not in fake_redis.data


def test_unserializable_value(durable):
    with pytest.raises(CacheStorageError):
        durable.set_entry("obj", object())


def test_redis_failure_is_storage_error(durable, fake_redis):
    fake_redis.fail = True
    with pytest.raises(CacheStorageError):
        durable.get_entry("book_1")
    assert durable.health_check() is False


def test_clear_only_touches_own_prefix(durable, fake_redis):
    durable.set_entry("a", 1)
    fake_redis.data["librovision_users_x"] = "{}"

    durable.clear()

    assert list(fake_redis.data) == ["librovision_users_x"]
    assert durable.keys() == []
