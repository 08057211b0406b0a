"""Leaderboard service -- Redis sorted sets for ranking.

All leaderboard reads go through Redis.  PostgreSQL only holds the durable
copy written by :meth:`LeaderboardService.sync_to_database`.
"""

from __future__ import annotations

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.services.cache_service import CacheKeys, CacheTTL

log = structlog.get_logger()

PERIODS = ("daily", "weekly", "monthly", "alltime")

_PERIOD_ALIASES = {"all-time": "alltime"}

_SYNC_LIMIT = 1000


def normalize_period(period: str) -> str:
    """Map a client-facing period name to its key suffix.

    Raises ValueError for unknown periods.
    """
    period = _PERIOD_ALIASES.get(period, period)
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    return period


def _split_member(member: str) -> tuple[str, str]:
    user_id, _, username = member.partition(":")
    return user_id, username


class LeaderboardService:
    def __init__(self, redis: Redis) -> None:
        self.redis = redis

    async def add_score(
        self, user_id, username: str, score: int, period: str = "daily"
    ) -> None:
        """Set the member's score; daily and weekly boards expire on their own."""
        period = normalize_period(period)
        key = CacheKeys.leaderboard(period)
        try:
            await self.redis.zadd(key, {f"{user_id}:{username}": score})
            if period == "daily":
                await self.redis.expire(key, CacheTTL.LONG)
            elif period == "weekly":
                await self.redis.expire(key, CacheTTL.WEEK)
        except RedisError as e:
            log.warning(
                "leaderboard_add_failed", period=period, user_id=str(user_id), error=str(e)
            )

    async def get_top_players(self, period: str = "daily", limit: int = 100) -> list[dict]:
        """Top *limit* entries by descending score with ranks 1..n."""
        period = normalize_period(period)
        key = CacheKeys.leaderboard(period)
        try:
            entries = await self.redis.zrevrange(key, 0, limit - 1, withscores=True)
        except RedisError as e:
            log.warning("leaderboard_read_failed", period=period, error=str(e))
            return []

        leaderboard = []
        for index, (member, score) in enumerate(entries):
            user_id, username = _split_member(member)
            leaderboard.append(
                {
                    "user_id": user_id,
                    "username": username,
                    "score": int(score),
                    "riddles_solved": int(score),
                    "rank": index + 1,
                }
            )
        return leaderboard

    async def get_user_standing(self, user_id, period: str = "daily") -> dict | None:
        """Rank and score of *user_id*, or ``None`` when not on the board."""
        period = normalize_period(period)
        key = CacheKeys.leaderboard(period)
        prefix = f"{user_id}:"
        try:
            entries = await self.redis.zrevrange(key, 0, -1, withscores=True)
        except RedisError as e:
            log.warning("leaderboard_read_failed", period=period, error=str(e))
            return None

        for index, (member, score) in enumerate(entries):
            if member.startswith(prefix):
                return {"rank": index + 1, "score": int(score)}
        return None

    async def get_user_rank(self, user_id, period: str = "daily") -> int | None:
        standing = await self.get_user_standing(user_id, period)
        return standing["rank"] if standing else None

    async def sync_to_database(self, db: AsyncSession, period: str) -> int:
        """Upsert the top entries of *period* into ``leaderboards``.

        Returns the number of rows written.
        """
        period = normalize_period(period)
        entries = await self.get_top_players(period, _SYNC_LIMIT)
        for entry in entries:
            await db.execute(
                text(
                    "INSERT INTO leaderboards "
                    "(user_id, username, period, score, riddles_solved, rank) "
                    "VALUES (:user_id, :username, :period, :score, :riddles_solved, :rank) "
                    "ON CONFLICT (user_id, period) DO UPDATE SET "
                    "score = EXCLUDED.score, "
                    "riddles_solved = EXCLUDED.riddles_solved, "
                    "rank = EXCLUDED.rank, "
                    "updated_at = now()"
                ),
                {
                    "user_id": entry["user_id"],
                    "username": entry["username"],
                    "period": period,
                    "score": entry["score"],
                    "riddles_solved": entry["riddles_solved"],
                    "rank": entry["rank"],
                },
            )
        log.info("leaderboard_synced", period=period, entries=len(entries))
        return len(entries)
