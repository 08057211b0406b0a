#!/usr/bin/env python3
"""Leaderboard persistence script.

Copies the top entries of every Redis leaderboard period into the
``leaderboards`` table so rankings survive a Redis flush.

Usage:
    DATABASE_URL=postgresql+asyncpg://... REDIS_URL=redis://... \
        python scripts/sync_leaderboard.py

Exit codes:
    0 -- every period synced
    1 -- the database write failed
"""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timezone

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from bergvlei.config import settings
from bergvlei.database import create_engine, create_session_factory
from bergvlei.services.leaderboard_service import PERIODS, LeaderboardService


async def sync_all(session_factory, leaderboard: LeaderboardService) -> dict[str, int]:
    """Sync each period in its own transaction; returns rows written per period."""
    written: dict[str, int] = {}
    for period in PERIODS:
        async with session_factory() as session:
            async with session.begin():
                written[period] = await leaderboard.sync_to_database(session, period)
    return written


async def main() -> int:
    engine = create_engine(settings.DATABASE_URL)
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        written = await sync_all(create_session_factory(engine), LeaderboardService(redis))
    except SQLAlchemyError as exc:
        sys.stderr.write(f"leaderboard sync failed: {exc}\n")
        return 1
    finally:
        await redis.aclose()
        await engine.dispose()

    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "rows_written": written,
    }
    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
