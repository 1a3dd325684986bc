"""Redis-backed usage counters and the per-user request rate window.

Redis is the only synchronization point for these counters: increments use
INCR, so concurrent turns never need an in-process lock.
"""
import logging
import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import redis.asyncio as redis

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Counters are day-scoped, so the expiry only cleans up; stale days are never read.
USAGE_TTL_SECONDS = 48 * 60 * 60
RATE_WINDOW_TTL_SECONDS = 120


def create_redis_client() -> redis.Redis:
    """Create the shared async Redis client."""
    return redis.from_url(REDIS_URL, decode_responses=True)


def today() -> str:
    """Current UTC day as YYYY-MM-DD."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def credential_usage_key(provider: str, index: int, day: Optional[str] = None) -> str:
    return f"key_usage:{provider}:{day or today()}:{index}"


def user_usage_key(user_id: str, model: str, day: Optional[str] = None) -> str:
    return f"user_usage:{day or today()}:{user_id}:{model}"


def rate_window_key(user_id: str) -> str:
    return f"rate:{user_id}"


@dataclass
class RateWindow:
    allowed: bool
    remaining: int


class UsageCounters:
    """Thin wrapper over the Redis commands the quota layer needs."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def get_usage(self, key: str) -> int:
        value = await self.client.get(key)
        return int(value) if value else 0

    async def get_many(self, keys: Sequence[str]) -> List[int]:
        """Read several counters in one round trip. Missing counters read as 0."""
        if not keys:
            return []
        values = await self.client.mget(list(keys))
        return [int(value) if value else 0 for value in values]

    async def increment_usage(self, key: str) -> int:
        """Atomically increment a counter, arming its expiry on first use."""
        count = await self.client.incr(key)
        if count == 1:
            await self.client.expire(key, USAGE_TTL_SECONDS)
        return count

    async def hit_rate_window(self, user_id: str, limit: int, window_seconds: int) -> RateWindow:
        """
        Record one request in the caller's sliding window.

        Args:
            user_id: Caller identifier
            limit: Maximum requests allowed inside the window
            window_seconds: Length of the rolling window

        Returns:
            RateWindow: whether the request is allowed and how many remain
        """
        key = rate_window_key(user_id)
        now_ms = int(time.time() * 1000)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now_ms - window_seconds * 1000)
            pipe.zcard(key)
            _, count = await pipe.execute()

        if count >= limit:
            logger.info(f"Rate window full for user {user_id} ({count}/{limit})")
            return RateWindow(allowed=False, remaining=0)

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {f"{now_ms}:{uuid.uuid4().hex[:8]}": now_ms})
            pipe.expire(key, RATE_WINDOW_TTL_SECONDS)
            await pipe.execute()

        return RateWindow(allowed=True, remaining=limit - count - 1)
