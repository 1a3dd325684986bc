"""Tests for the Redis usage counters and rate window."""
import pytest

from services.counters import (
    USAGE_TTL_SECONDS,
    credential_usage_key,
    rate_window_key,
    today,
    user_usage_key,
)


def test_keys_are_day_scoped():
    assert credential_usage_key("gemini", 2, "2025-01-31") == "key_usage:gemini:2025-01-31:2"
    assert user_usage_key("u1", "max", "2025-01-31") == "user_usage:2025-01-31:u1:max"
    assert credential_usage_key("gemini", 1).split(":")[2] == today()
    assert rate_window_key("u1") == "rate:u1"


@pytest.mark.asyncio
async def test_increment_arms_expiry_once(counters, redis_client):
    key = user_usage_key("u1", "basic")

    assert await counters.increment_usage(key) == 1
    ttl = await redis_client.ttl(key)
    assert 0 < ttl <= USAGE_TTL_SECONDS

    await redis_client.expire(key, 100)
    assert await counters.increment_usage(key) == 2
    assert await redis_client.ttl(key) <= 100


@pytest.mark.asyncio
async def test_missing_counters_read_as_zero(counters):
    await counters.increment_usage("a")

    assert await counters.get_usage("missing") == 0
    assert await counters.get_many(["a", "missing", "a"]) == [1, 0, 1]
    assert await counters.get_many([]) == []


@pytest.mark.asyncio
async def test_rate_window(counters):
    results = [await counters.hit_rate_window("u1", 3, 60) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]

    other = await counters.hit_rate_window("u2", 3, 60)
    assert other.allowed
