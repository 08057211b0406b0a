"""Redis-backed cache, daily quota counters, and key layout.

Every Redis failure is logged and swallowed: readers see a cache miss and
writers silently drop the write.  Callers that need to know whether Redis
answered at all (the quota reservation) get ``None`` back instead.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

log = structlog.get_logger()


class CacheTTL:
    SHORT = 300  # 5 minutes
    MEDIUM = 1800  # 30 minutes
    LONG = 86400  # 24 hours
    WEEK = 604800  # 7 days


class CacheKeys:
    @staticmethod
    def user_profile(user_id) -> str:
        return f"user:profile:{user_id}"

    @staticmethod
    def user_stats(user_id) -> str:
        return f"user:stats:{user_id}"

    @staticmethod
    def riddle(riddle_id) -> str:
        return f"riddle:{riddle_id}"

    @staticmethod
    def daily_limit(user_id, day: str) -> str:
        return f"limit:{user_id}:{day}"

    @staticmethod
    def leaderboard(period: str) -> str:
        return f"leaderboard:{period}"

    @staticmethod
    def hint(riddle_id, hint_number: int) -> str:
        return f"hint:{riddle_id}:{hint_number}"


def utc_today() -> str:
    """Quota day as ``YYYY-MM-DD`` in UTC."""
    return datetime.now(timezone.utc).date().isoformat()


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = ttl seconds,
# ARGV[3] = count already served today according to the database.
# A missing key starts from ARGV[3].
# Returns the new count, or -1 when the counter is already at the limit.
_RESERVE_SLOT_LUA = """
local stored = redis.call('GET', KEYS[1])
local current = tonumber(stored or ARGV[3])
if current >= tonumber(ARGV[1]) then
    return -1
end
if stored then
    return redis.call('INCR', KEYS[1])
end
redis.call('SET', KEYS[1], tostring(current + 1), 'EX', tonumber(ARGV[2]))
return current + 1
"""


class CacheService:
    """Thin JSON cache over an injected ``redis.asyncio.Redis`` client."""

    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def get(self, key: str) -> Any | None:
        try:
            data = await self.redis.get(key)
        except RedisError as e:
            log.warning("cache_get_failed", key=key, error=str(e))
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            log.warning("cache_value_corrupt", key=key)
            return None

    async def set(self, key: str, value: Any, ttl: int = CacheTTL.MEDIUM) -> None:
        try:
            await self.redis.setex(key, ttl, json.dumps(value, default=str))
        except RedisError as e:
            log.warning("cache_set_failed", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            log.warning("cache_delete_failed", key=key, error=str(e))

    async def delete_pattern(self, pattern: str) -> None:
        try:
            keys = [key async for key in self.redis.scan_iter(match=pattern)]
            if keys:
                await self.redis.delete(*keys)
        except RedisError as e:
            log.warning("cache_delete_pattern_failed", pattern=pattern, error=str(e))

    async def increment(self, key: str, ttl: int | None = None) -> int:
        """INCR *key*; the TTL is applied only when the counter is created.

        Returns 0 when Redis is unavailable.
        """
        try:
            value = await self.redis.incr(key)
            if ttl and value == 1:
                await self.redis.expire(key, ttl)
            return value
        except RedisError as e:
            log.warning("cache_increment_failed", key=key, error=str(e))
            return 0

    # ------------------------------------------------------------------
    # Daily riddle quota
    # ------------------------------------------------------------------

    async def increment_daily_riddle_count(self, user_id) -> int:
        key = CacheKeys.daily_limit(user_id, utc_today())
        return await self.increment(key, CacheTTL.LONG)

    async def reserve_daily_slot(
        self, user_id, limit: int, served_today: int = 0
    ) -> int | None:
        """Atomically take one slot of today's quota.

        *served_today* seeds the counter when today's key does not exist yet.

        Returns the new count, ``-1`` when the limit is already reached, or
        ``None`` when Redis could not be consulted.
        """
        key = CacheKeys.daily_limit(user_id, utc_today())
        try:
            result = await self.redis.eval(
                _RESERVE_SLOT_LUA, 1, key, limit, CacheTTL.LONG, served_today
            )
        except RedisError as e:
            log.warning("quota_reserve_failed", user_id=str(user_id), error=str(e))
            return None
        return int(result)

    async def release_daily_slot(self, user_id) -> None:
        """Give back a slot taken by :meth:`reserve_daily_slot`."""
        key = CacheKeys.daily_limit(user_id, utc_today())
        try:
            await self.redis.decr(key)
        except RedisError as e:
            log.warning("quota_release_failed", user_id=str(user_id), error=str(e))
