"""
Hybrid in-memory + Redis rate limiting utilities
Counters live in process memory and are mirrored to Redis periodically
"""

import logging
import os
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import Depends, HTTPException, Request

from .auth import get_current_user
from .config import REDIS_ENABLED

logger = logging.getLogger(__name__)

# Configuration
MEMORY_CACHE_SYNC_INTERVAL = 10  # Sync to Redis every 10 seconds
MEMORY_CACHE_CLEANUP_INTERVAL = 60  # Clean up expired entries every 60 seconds


def get_redis_client() -> redis.Redis:
    """
    Create a Redis client from REDIS_URL or the individual REDIS_* settings
    Raises if Redis is unreachable
    """
    redis_url = os.getenv("REDIS_URL")

    if redis_url:
        # Mask password in URL for logging
        if "@" in redis_url:
            url_parts = redis_url.split("@")
            protocol = url_parts[0].split(":")[0]
            masked_url = f"{protocol}:****@{url_parts[1]}"
        else:
            masked_url = "****"
        logger.info(f"📡 Using Redis URL connection: {masked_url}")

        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )
    else:
        redis_host = os.getenv("REDIS_HOST", "localhost")
        redis_port = int(os.getenv("REDIS_PORT", "6379"))
        redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"
        logger.info(f"📡 Using Redis at {redis_host}:{redis_port} (SSL: {'on' if redis_ssl else 'off'})")

        client = redis.Redis(
            host=redis_host,
            port=redis_port,
            password=os.getenv("REDIS_PASSWORD", None),
            db=int(os.getenv("REDIS_DB", "0")),
            ssl=redis_ssl,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=10,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )

    client.ping()
    logger.info("Redis connected successfully")
    return client


def connect_redis_or_none() -> Optional[redis.Redis]:
    """Redis client, or None when disabled/unreachable (callers then run memory-only)"""
    if not REDIS_ENABLED:
        logger.info("ℹ️ Redis disabled (REDIS_ENABLED=false) - running memory-only")
        return None
    try:
        return get_redis_client()
    except Exception as e:
        logger.warning(f"⚠️ Redis unavailable, running memory-only: {e}")
        return None


class RateLimiter:
    """Windowed call counter keyed by an arbitrary string

    Used both as an HTTP rate limit and as the circuit breaker in front of
    expensive report refreshes.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis_client = redis_client
        # {key: {'count': int, 'reset_time': float, 'last_redis_sync': float}}
        self._memory: dict[str, dict] = {}
        self._lock = Lock()
        self._last_cleanup = 0.0

    def _cleanup_expired(self, now: float):
        if now - self._last_cleanup < MEMORY_CACHE_CLEANUP_INTERVAL:
            return
        expired = [k for k, v in self._memory.items() if now >= v["reset_time"]]
        for k in expired:
            del self._memory[k]
        if expired:
            logger.debug(f"🧹 Cleaned up {len(expired)} expired rate limit entries")
        self._last_cleanup = now

    def _load_entry(self, key: str, window_seconds: float, now: float) -> dict:
        if self.redis_client is not None:
            try:
                redis_count = self.redis_client.get(f"rate_limit:{key}")
                redis_ttl = self.redis_client.ttl(f"rate_limit:{key}")
                if redis_count and redis_ttl > 0:
                    return {"count": int(redis_count), "reset_time": now + redis_ttl, "last_redis_sync": now}
            except Exception as e:
                logger.warning(f"⚠️ Failed to load from Redis, using memory only: {e}")
        return {"count": 0, "reset_time": now + window_seconds, "last_redis_sync": now}

    def check(self, key: str, limit: int, window_seconds: float) -> tuple[bool, int, int]:
        """Count one call against `key`

        Returns:
            Tuple of (is_allowed, current_count, ttl_seconds)
        """
        now = time.time()
        with self._lock:
            self._cleanup_expired(now)

            entry = self._memory.get(key)
            if entry is None:
                entry = self._memory[key] = self._load_entry(key, window_seconds, now)

            if now >= entry["reset_time"]:
                entry["count"] = 0
                entry["reset_time"] = now + window_seconds
                entry["last_redis_sync"] = 0

            is_allowed = entry["count"] < limit
            if is_allowed:
                entry["count"] += 1

            if self.redis_client is not None and now - entry["last_redis_sync"] >= MEMORY_CACHE_SYNC_INTERVAL:
                try:
                    self.redis_client.set(f"rate_limit:{key}", entry["count"], ex=max(1, int(window_seconds)))
                    entry["last_redis_sync"] = now
                except Exception as e:
                    logger.warning(f"⚠️ Failed to sync to Redis: {e}")

            ttl = int(entry["reset_time"] - now)
            return is_allowed, entry["count"], max(0, ttl)

    def reset(self, key: Optional[str] = None):
        with self._lock:
            if key is None:
                self._memory.clear()
            else:
                self._memory.pop(key, None)


def get_rate_limiter(request: Request) -> RateLimiter:
    """Dependency: the limiter created at startup"""
    return request.app.state.rate_limiter


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Create a per-barbershop rate limit dependency

    Example usage:
        reconcile_limit = create_rate_limiter(limit=5, window_seconds=60, key_prefix="whatsapp_reconcile")

        @router.post("/reconcile")
        async def reconcile(_: None = Depends(reconcile_limit)):
            ...
    """
    async def rate_limit_dependency(
        request: Request,
        user=Depends(get_current_user),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ):
        key = f"{key_prefix}:{user.barbershop_id}"
        is_allowed, current_count, ttl = limiter.check(key, limit, window_seconds)

        if not is_allowed:
            logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                headers={"Retry-After": str(ttl)},
            )

        request.state.rate_limit_remaining = limit - current_count

    return rate_limit_dependency
