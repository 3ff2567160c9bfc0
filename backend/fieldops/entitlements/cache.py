"""
Entitlement Cache - short-lived memoisation of resolved policies.

Provides:
- RedisClient: Redis wrapper with graceful degradation
- InMemoryCache: thread-safe TTL cache used when Redis is unavailable
- EntitlementCache: per-user cache of EffectivePolicy snapshots

Entries are keyed by user ID and never shared across users. Override
writes invalidate the affected user; plan writes invalidate everything.
Cache failures never fail a resolution - they are logged and the policy
is recomputed.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from threading import Lock

import redis

from fieldops.config.entitlements import EntitlementSettings, get_entitlement_settings
from fieldops.entitlements.models import EffectivePolicy, PolicySource

logger = logging.getLogger(__name__)

INVALIDATION_CHANNEL = "entitlements:invalidations"


class RedisClient:
    """
    Redis client wrapper with connection pooling and fallback.

    Provides graceful degradation when Redis is unavailable.
    """

    _instance: Optional["RedisClient"] = None
    _lock = Lock()

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._redis = None
        self._available = False
        self._connect()
        self._initialized = True

    def _connect(self) -> None:
        """Connect to Redis if configured."""
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            logger.info("REDIS_URL not configured - using in-memory entitlement cache")
            return

        try:
            self._redis = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
            )
            self._redis.ping()
            self._available = True
            logger.info("Redis connection established for entitlement cache")
        except (redis.RedisError, ValueError) as e:
            # ValueError: malformed REDIS_URL (e.g. missing scheme)
            self._redis = None
            logger.warning(f"Redis connection failed: {e} - using in-memory entitlement cache")

    @property
    def available(self) -> bool:
        """Check if Redis is available."""
        return self._available and self._redis is not None

    def get(self, key: str) -> Optional[str]:
        """Get value from Redis."""
        if not self.available:
            return None
        try:
            return self._redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Redis GET failed: {e}")
            return None

    def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set value in Redis with TTL."""
        if not self.available:
            return False
        try:
            self._redis.setex(key, ttl_seconds, value)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis SET failed: {e}")
            return False

    def delete(self, *keys: str) -> int:
        """Delete keys from Redis."""
        if not self.available or not keys:
            return 0
        try:
            return self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE failed: {e}")
            return 0

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern."""
        if not self.available:
            return 0
        try:
            keys = list(self._redis.scan_iter(pattern))
            if keys:
                return self._redis.delete(*keys)
            return 0
        except redis.RedisError as e:
            logger.warning(f"Redis DELETE pattern failed: {e}")
            return 0

    def publish(self, channel: str, message: str) -> int:
        """Publish message to channel."""
        if not self.available:
            return 0
        try:
            return self._redis.publish(channel, message)
        except redis.RedisError as e:
            logger.warning(f"Redis PUBLISH failed: {e}")
            return 0


class InMemoryCache:
    """
    In-memory fallback cache when Redis is unavailable.

    Thread-safe with basic TTL support.
    """

    def __init__(self, max_size: int = 10000):
        self._cache: Dict[str, Tuple[str, datetime]] = {}
        self._lock = Lock()
        self._max_size = max_size

    def get(self, key: str, ttl_seconds: int) -> Optional[str]:
        """Get value if not expired."""
        with self._lock:
            if key not in self._cache:
                return None
            value, cached_at = self._cache[key]
            if (datetime.now(timezone.utc) - cached_at).total_seconds() > ttl_seconds:
                del self._cache[key]
                return None
            return value

    def set(self, key: str, value: str) -> None:
        """Set value with current timestamp."""
        with self._lock:
            # Evict oldest if at capacity
            if key not in self._cache and len(self._cache) >= self._max_size:
                oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
                del self._cache[oldest_key]
            self._cache[key] = (value, datetime.now(timezone.utc))

    def delete(self, key: str) -> bool:
        """Delete a key."""
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    def clear(self) -> int:
        """Clear all cache entries."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class EntitlementCache:
    """
    Caching layer for resolved policies.

    Uses Redis when available (shared across workers), the in-memory cache
    otherwise. NOT_SUBSCRIBED results are never cached.

    Usage:
        cache = get_entitlement_cache()

        policy = cache.get(user_id)
        if policy is None:
            policy = resolve(user_id)
            cache.set(policy)

        # After an override write
        cache.invalidate(user_id, reason="override_updated")
    """

    CACHE_KEY_PREFIX = "entitlement:policy:"

    def __init__(
        self,
        settings: Optional[EntitlementSettings] = None,
        redis_client: Optional[RedisClient] = None,
    ):
        """
        Initialize cache with Redis or in-memory fallback.

        Args:
            settings: Entitlement settings (defaults to the YAML loader)
            redis_client: Redis wrapper (defaults to the singleton)
        """
        self._settings = settings or get_entitlement_settings()
        self._redis = redis_client or RedisClient()
        self._memory_cache = InMemoryCache()

    @property
    def enabled(self) -> bool:
        return self._settings.cache_enabled and self._settings.cache_ttl_seconds > 0

    @property
    def ttl_seconds(self) -> int:
        return self._settings.cache_ttl_seconds

    def _cache_key(self, user_id: str) -> str:
        """Generate cache key for a user."""
        return f"{self.CACHE_KEY_PREFIX}{user_id}"

    def get(self, user_id: str) -> Optional[EffectivePolicy]:
        """
        Get the cached policy for a user.

        Args:
            user_id: User identifier

        Returns:
            EffectivePolicy tagged with source "cache", or None on miss
        """
        if not self.enabled:
            return None

        key = self._cache_key(user_id)
        if self._redis.available:
            data = self._redis.get(key)
        else:
            data = self._memory_cache.get(key, self.ttl_seconds)

        if not data:
            logger.debug(f"Entitlement cache miss for user {user_id}")
            return None

        try:
            cached = json.loads(data)
            cached["source"] = PolicySource.CACHE.value
            policy = EffectivePolicy.from_dict(cached)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Failed to deserialize cached policy, discarding entry",
                extra={"user_id": user_id, "error": str(e)}
            )
            self.invalidate(user_id, reason="corrupt_entry")
            return None

        if policy.user_id != user_id:
            logger.error(
                "Cached policy belongs to a different user, discarding entry",
                extra={"user_id": user_id, "cached_user_id": policy.user_id}
            )
            self.invalidate(user_id, reason="user_mismatch")
            return None

        logger.debug(f"Entitlement cache hit for user {user_id}")
        return policy

    def set(self, policy: EffectivePolicy) -> bool:
        """
        Cache a resolved policy under its user ID.

        Returns:
            True if cached successfully
        """
        if not self.enabled:
            return False

        key = self._cache_key(policy.user_id)
        data = policy.to_json()

        if self._redis.available:
            stored = self._redis.set(key, data, self.ttl_seconds)
        else:
            self._memory_cache.set(key, data)
            stored = True

        if stored:
            logger.debug(
                f"Cached policy for user {policy.user_id} (TTL: {self.ttl_seconds}s)"
            )
        return stored

    def invalidate(self, user_id: str, reason: Optional[str] = None) -> bool:
        """
        Invalidate the cached policy for a user.

        Args:
            user_id: User identifier
            reason: Optional reason for logging

        Returns:
            True if an entry was removed
        """
        key = self._cache_key(user_id)
        deleted = False

        if self._redis.available:
            if self._redis.delete(key) > 0:
                deleted = True
            self._redis.publish(
                INVALIDATION_CHANNEL,
                json.dumps({
                    "user_id": user_id,
                    "reason": reason,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            )

        if self._memory_cache.delete(key):
            deleted = True

        if deleted:
            logger.info(
                f"Invalidated entitlement cache for user {user_id}",
                extra={"reason": reason}
            )

        return deleted

    def invalidate_all(self, reason: Optional[str] = None) -> int:
        """
        Invalidate every cached policy.

        Called on any plan write, since a plan change can affect any user.

        Returns:
            Number of entries invalidated
        """
        count = 0

        if self._redis.available:
            count = self._redis.delete_pattern(f"{self.CACHE_KEY_PREFIX}*")
            self._redis.publish(
                INVALIDATION_CHANNEL,
                json.dumps({
                    "user_id": "*",
                    "reason": reason or "mass_invalidation",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            )

        count += self._memory_cache.clear()

        logger.info(
            f"Mass invalidation of entitlement cache ({count} entries)",
            extra={"reason": reason}
        )

        return count


# Module-level singleton
_cache_instance: Optional[EntitlementCache] = None
_cache_lock = Lock()


def get_entitlement_cache() -> EntitlementCache:
    """Get the singleton EntitlementCache instance."""
    global _cache_instance
    if _cache_instance is None:
        with _cache_lock:
            if _cache_instance is None:
                _cache_instance = EntitlementCache()
    return _cache_instance


def reset_entitlement_cache() -> None:
    """Reset singleton (for tests only)."""
    global _cache_instance
    _cache_instance = None
