"""
Tests for the entitlement policy cache.

Redis is mocked with unittest.mock; the in-memory fallback is exercised
directly.
"""

import json
from unittest.mock import MagicMock

import pytest
import redis

from fieldops.config.entitlements import EntitlementSettings
from fieldops.entitlements.cache import (
    INVALIDATION_CHANNEL,
    EntitlementCache,
    InMemoryCache,
    RedisClient,
    get_entitlement_cache,
)
from fieldops.entitlements.models import EffectivePolicy, FeaturesDocument


def _policy(user_id: str = "u1", plan_id: str = "plan_pro") -> EffectivePolicy:
    return EffectivePolicy(
        user_id=user_id,
        plan_id=plan_id,
        plan_name="Pro",
        override_id=None,
        features=FeaturesDocument(
            flags={"collaborators": False},
            visible_fields={"clients": ["name"]},
            limits={"max_clients": 10},
        ),
        governed_fields={"clients": ["name", "email"]},
        resolved_at="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture
def offline_redis():
    """RedisClient with no REDIS_URL configured."""
    client = RedisClient()
    assert client.available is False
    return client


@pytest.fixture
def online_redis():
    """RedisClient backed by a MagicMock connection."""
    client = RedisClient()
    client._redis = MagicMock()
    client._available = True
    return client


@pytest.fixture
def settings():
    return EntitlementSettings(cache_enabled=True, cache_ttl_seconds=60)


class TestInMemoryCache:
    """Tests for InMemoryCache."""

    def test_set_get_delete(self):
        cache = InMemoryCache()
        cache.set("k", "v")
        assert cache.get("k", ttl_seconds=60) == "v"
        assert cache.delete("k") is True
        assert cache.get("k", ttl_seconds=60) is None
        assert cache.delete("k") is False

    def test_expired_entry_is_dropped(self):
        cache = InMemoryCache()
        cache.set("k", "v")
        assert cache.get("k", ttl_seconds=-1) is None
        assert len(cache) == 0

    def test_evicts_oldest_at_capacity(self):
        cache = InMemoryCache(max_size=2)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.set("c", "3")
        assert len(cache) == 2
        assert cache.get("a", ttl_seconds=60) is None
        assert cache.get("c", ttl_seconds=60) == "3"

    def test_clear_returns_count(self):
        cache = InMemoryCache()
        cache.set("a", "1")
        cache.set("b", "2")
        assert cache.clear() == 2
        assert len(cache) == 0


class TestEntitlementCacheMemory:
    """EntitlementCache using the in-memory fallback."""

    def test_round_trip_tags_source_cache(self, settings, offline_redis):
        cache = EntitlementCache(settings=settings, redis_client=offline_redis)
        policy = _policy()

        assert cache.set(policy) is True
        cached = cache.get("u1")

        assert cached is not None
        assert cached.source == "cache"
        assert cached.plan_id == "plan_pro"
        assert cached.features == policy.features
        assert cached.governed_fields == policy.governed_fields

    def test_entries_are_per_user(self, settings, offline_redis):
        cache = EntitlementCache(settings=settings, redis_client=offline_redis)
        cache.set(_policy(user_id="u1"))
        assert cache.get("u2") is None

    def test_disabled_cache_never_stores(self, offline_redis):
        cache = EntitlementCache(
            settings=EntitlementSettings(cache_enabled=False),
            redis_client=offline_redis,
        )
        assert cache.set(_policy()) is False
        assert cache.get("u1") is None

    def test_zero_ttl_disables_cache(self, offline_redis):
        cache = EntitlementCache(
            settings=EntitlementSettings(cache_ttl_seconds=0),
            redis_client=offline_redis,
        )
        assert cache.enabled is False

    def test_invalidate_user(self, settings, offline_redis):
        cache = EntitlementCache(settings=settings, redis_client=offline_redis)
        cache.set(_policy(user_id="u1"))
        cache.set(_policy(user_id="u2"))

        assert cache.invalidate("u1", reason="override_updated") is True
        assert cache.get("u1") is None
        assert cache.get("u2") is not None
        assert cache.invalidate("u1") is False

    def test_invalidate_all(self, settings, offline_redis):
        cache = EntitlementCache(settings=settings, redis_client=offline_redis)
        cache.set(_policy(user_id="u1"))
        cache.set(_policy(user_id="u2"))

        assert cache.invalidate_all(reason="plan_updated") == 2
        assert cache.get("u1") is None
        assert cache.get("u2") is None

    def test_corrupt_entry_is_discarded(self, settings, offline_redis):
        cache = EntitlementCache(settings=settings, redis_client=offline_redis)
        cache._memory_cache.set(cache._cache_key("u1"), "{not json")

        assert cache.get("u1") is None
        assert len(cache._memory_cache) == 0

    def test_entry_for_other_user_is_discarded(self, settings, offline_redis):
        cache = EntitlementCache(settings=settings, redis_client=offline_redis)
        cache._memory_cache.set(cache._cache_key("u1"), _policy(user_id="u2").to_json())

        assert cache.get("u1") is None
        assert len(cache._memory_cache) == 0


class TestEntitlementCacheRedis:
    """EntitlementCache using a mocked Redis connection."""

    def test_set_uses_setex_with_ttl(self, settings, online_redis):
        cache = EntitlementCache(settings=settings, redis_client=online_redis)
        policy = _policy()

        assert cache.set(policy) is True

        online_redis._redis.setex.assert_called_once_with(
            "entitlement:policy:u1", 60, policy.to_json()
        )

    def test_get_reads_redis(self, settings, online_redis):
        online_redis._redis.get.return_value = _policy().to_json()
        cache = EntitlementCache(settings=settings, redis_client=online_redis)

        cached = cache.get("u1")

        assert cached.source == "cache"
        online_redis._redis.get.assert_called_once_with("entitlement:policy:u1")

    def test_invalidate_publishes(self, settings, online_redis):
        online_redis._redis.delete.return_value = 1
        cache = EntitlementCache(settings=settings, redis_client=online_redis)

        assert cache.invalidate("u1", reason="override_deleted") is True

        channel, message = online_redis._redis.publish.call_args[0]
        assert channel == INVALIDATION_CHANNEL
        assert json.loads(message)["user_id"] == "u1"
        assert json.loads(message)["reason"] == "override_deleted"

    def test_invalidate_all_scans_prefix(self, settings, online_redis):
        online_redis._redis.scan_iter.return_value = iter(["entitlement:policy:u1", "entitlement:policy:u2"])
        online_redis._redis.delete.return_value = 2
        cache = EntitlementCache(settings=settings, redis_client=online_redis)

        assert cache.invalidate_all(reason="plan_updated") == 2
        online_redis._redis.scan_iter.assert_called_once_with("entitlement:policy:*")

    def test_redis_errors_degrade_to_miss(self, settings, online_redis):
        online_redis._redis.get.side_effect = redis.RedisError("boom")
        cache = EntitlementCache(settings=settings, redis_client=online_redis)

        assert cache.get("u1") is None


class TestRedisClient:
    """Tests for RedisClient configuration."""

    def test_is_singleton(self):
        assert RedisClient() is RedisClient()

    def test_connection_failure_falls_back(self, monkeypatch):
        failing = MagicMock()
        failing.ping.side_effect = redis.ConnectionError("refused")
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6390/0")
        monkeypatch.setattr(redis, "from_url", MagicMock(return_value=failing))
        RedisClient._instance = None

        client = RedisClient()

        assert client.available is False

    def test_malformed_url_falls_back_to_memory(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "localhost:6379")
        RedisClient._instance = None

        cache = get_entitlement_cache()
        cache.set(_policy())

        assert RedisClient().available is False
        assert cache.get("u1").plan_id == "plan_pro"


def test_get_entitlement_cache_uses_yaml_settings():
    cache = get_entitlement_cache()
    assert cache is get_entitlement_cache()
    assert cache.ttl_seconds == 60
    assert cache.enabled is True
