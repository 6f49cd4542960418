"""
Tagged TTL cache for computed reports
Entries live in process memory and are mirrored to Redis when a client is given.
Tags are scoped per barbershop so invalidation never crosses tenants.
"""

import json
import logging
import time
from threading import Lock
from typing import Any, Iterable, Optional

import redis
from fastapi import Request

logger = logging.getLogger(__name__)

KEY_PREFIX = "cache"
MEMORY_CACHE_CLEANUP_INTERVAL = 60  # Sweep expired entries at most once a minute


def scoped_tag(tag: str, scope: Optional[Any] = None) -> str:
    return f"{scope}:{tag}" if scope is not None else tag


class Cache:
    """Cache wrapper with TTL, JSON serialization and invalidation by tag"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, default_ttl: int = 300):
        self.redis_client = redis_client
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[float, str]] = {}  # key -> (expires_at, serialized)
        self._tags: dict[str, set[str]] = {}  # scoped tag -> keys
        self._lock = Lock()
        self._last_cleanup = 0.0

    def _cleanup_expired(self, now: float):
        """Drop expired entries and empty tag sets; caller holds the lock"""
        if now - self._last_cleanup < MEMORY_CACHE_CLEANUP_INTERVAL:
            return
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        for tag in list(self._tags):
            self._tags[tag].intersection_update(self._entries)
            if not self._tags[tag]:
                del self._tags[tag]
        if expired:
            logger.debug(f"🧹 Cleaned up {len(expired)} expired cache entries")
        self._last_cleanup = now

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        now = time.time()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                expires_at, serialized = entry
                if now < expires_at:
                    logger.debug(f"✅ Cache HIT: {key}")
                    return json.loads(serialized)
                del self._entries[key]

        if self.redis_client is not None:
            try:
                serialized = self.redis_client.get(f"{KEY_PREFIX}:{key}")
                if serialized:
                    logger.debug(f"✅ Cache HIT (redis): {key}")
                    return json.loads(serialized)
            except Exception as e:
                logger.error(f"❌ Cache get error for {key}: {e}")

        logger.debug(f"❌ Cache MISS: {key}")
        return None

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tags: Iterable[str] = (),
        scope: Optional[Any] = None,
    ) -> bool:
        """Store value for `ttl` seconds and register it under each (scoped) tag"""
        ttl = ttl or self.default_ttl
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

        scoped_tags = [scoped_tag(tag, scope) for tag in tags]
        with self._lock:
            now = time.time()
            self._cleanup_expired(now)
            self._entries[key] = (now + ttl, serialized)
            for tag in scoped_tags:
                self._tags.setdefault(tag, set()).add(key)

        if self.redis_client is not None:
            try:
                pipe = self.redis_client.pipeline()
                pipe.setex(f"{KEY_PREFIX}:{key}", ttl, serialized)
                for tag in scoped_tags:
                    pipe.sadd(f"{KEY_PREFIX}:tag:{tag}", key)
                pipe.execute()
            except Exception as e:
                logger.error(f"❌ Cache set error (redis) for {key}: {e}")

        logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s, tags: {scoped_tags})")
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            self._entries.pop(key, None)
        if self.redis_client is not None:
            try:
                self.redis_client.delete(f"{KEY_PREFIX}:{key}")
            except Exception as e:
                logger.error(f"❌ Cache delete error for {key}: {e}")
                return False
        return True

    def invalidate_tag(self, tag: str, scope: Optional[Any] = None) -> int:
        """Drop every entry registered under `tag` for `scope`; returns number of keys dropped"""
        name = scoped_tag(tag, scope)
        with self._lock:
            keys = self._tags.pop(name, set())
            for key in keys:
                self._entries.pop(key, None)

        if self.redis_client is not None:
            try:
                tag_key = f"{KEY_PREFIX}:tag:{name}"
                redis_keys = set(self.redis_client.smembers(tag_key) or [])
                keys = keys | redis_keys
                if keys:
                    self.redis_client.delete(*[f"{KEY_PREFIX}:{k}" for k in keys])
                self.redis_client.delete(tag_key)
            except Exception as e:
                logger.error(f"❌ Cache invalidation error for tag {name}: {e}")

        if keys:
            logger.info(f"🧹 Cache invalidated tag {name} ({len(keys)} keys)")
        return len(keys)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._tags.clear()


def get_cache(request: Request) -> Cache:
    """Dependency: the cache created at startup"""
    return request.app.state.cache
