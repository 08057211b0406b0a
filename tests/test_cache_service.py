"""Tests for the Redis cache wrapper and the atomic quota reservation."""

from __future__ import annotations

import json
import uuid
from unittest.mock import AsyncMock, patch

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from bergvlei.services.cache_service import CacheKeys, CacheService, CacheTTL


def _cache(**methods) -> tuple[CacheService, AsyncMock]:
    redis = AsyncMock()
    for name, value in methods.items():
        setattr(redis, name, value)
    return CacheService(redis), redis


@pytest.fixture(autouse=True)
def _fixed_day():
    with patch("bergvlei.services.cache_service.utc_today", return_value="2024-03-10"):
        yield


def test_key_layout():
    user_id = uuid.UUID("00000000-0000-0000-0000-000000000001")
    assert CacheKeys.user_profile(user_id) == f"user:profile:{user_id}"
    assert CacheKeys.daily_limit(user_id, "2024-03-10") == f"limit:{user_id}:2024-03-10"
    assert CacheKeys.leaderboard("weekly") == "leaderboard:weekly"
    assert CacheKeys.hint("r1", 2) == "hint:r1:2"


@pytest.mark.asyncio
async def test_get_decodes_json():
    cache, _ = _cache(get=AsyncMock(return_value=json.dumps({"a": 1})))
    assert await cache.get("k") == {"a": 1}


@pytest.mark.asyncio
async def test_set_uses_ttl():
    cache, redis = _cache()
    await cache.set("k", {"when": "now"}, CacheTTL.SHORT)
    redis.setex.assert_awaited_once_with("k", 300, json.dumps({"when": "now"}))


@pytest.mark.asyncio
async def test_redis_errors_read_as_misses():
    cache, _ = _cache(get=AsyncMock(side_effect=RedisConnectionError("down")))
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_write_errors_are_swallowed():
    cache, _ = _cache(
        setex=AsyncMock(side_effect=RedisConnectionError("down")),
        delete=AsyncMock(side_effect=RedisConnectionError("down")),
    )
    await cache.set("k", 1)
    await cache.delete("k")


@pytest.mark.asyncio
async def test_increment_sets_ttl_only_on_create():
    cache, redis = _cache(incr=AsyncMock(side_effect=[1, 2]))

    assert await cache.increment("counter", 60) == 1
    assert await cache.increment("counter", 60) == 2

    redis.expire.assert_awaited_once_with("counter", 60)


@pytest.mark.asyncio
async def test_reserve_daily_slot_runs_script_against_todays_key():
    cache, redis = _cache(eval=AsyncMock(return_value=3))
    user_id = uuid.uuid4()

    assert await cache.reserve_daily_slot(user_id, 5) == 3

    args = redis.eval.call_args.args
    assert args[1:] == (1, f"limit:{user_id}:2024-03-10", 5, CacheTTL.LONG, 0)


@pytest.mark.asyncio
async def test_reserve_daily_slot_reports_full_and_unavailable():
    cache, _ = _cache(eval=AsyncMock(return_value=-1))
    assert await cache.reserve_daily_slot(uuid.uuid4(), 5) == -1

    cache, _ = _cache(eval=AsyncMock(side_effect=RedisConnectionError("down")))
    assert await cache.reserve_daily_slot(uuid.uuid4(), 5) is None


# ---------------------------------------------------------------------------
# Against an in-memory Redis
# ---------------------------------------------------------------------------

@pytest.fixture
async def redis():
    server = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield server
    await server.flushall()
    await server.aclose()


@pytest.mark.asyncio
async def test_set_then_get_returns_equal_value(redis):
    cache = CacheService(redis)
    profile = {
        "user_id": "00000000-0000-0000-0000-000000000001",
        "is_premium": False,
        "riddles_per_day_limit": 5,
        "tags": ["daily", "easy"],
        "last_solved": None,
    }

    await cache.set("user:profile:1", profile, CacheTTL.SHORT)

    assert await cache.get("user:profile:1") == profile
    assert 0 < await redis.ttl("user:profile:1") <= CacheTTL.SHORT


@pytest.mark.asyncio
async def test_reserve_daily_slot_stops_at_limit(redis):
    cache = CacheService(redis)
    user_id = uuid.uuid4()

    counts = [await cache.reserve_daily_slot(user_id, 3) for _ in range(4)]

    assert counts == [1, 2, 3, -1]
    assert await redis.get(f"limit:{user_id}:2024-03-10") == "3"


@pytest.mark.asyncio
async def test_missing_counter_starts_from_served_today(redis):
    cache = CacheService(redis)
    user_id = uuid.uuid4()
    key = f"limit:{user_id}:2024-03-10"

    assert await cache.reserve_daily_slot(user_id, 5, served_today=5) == -1
    assert await redis.exists(key) == 0

    assert await cache.reserve_daily_slot(user_id, 5, served_today=3) == 4
    assert await redis.get(key) == "4"
    assert 0 < await redis.ttl(key) <= CacheTTL.LONG


@pytest.mark.asyncio
async def test_release_gives_slot_back(redis):
    cache = CacheService(redis)
    user_id = uuid.uuid4()
    await cache.reserve_daily_slot(user_id, 1)

    await cache.release_daily_slot(user_id)

    assert await cache.reserve_daily_slot(user_id, 1) == 1
