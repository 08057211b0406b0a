"""Health endpoints -- /api/v1/health/*."""

from __future__ import annotations

import platform
import resource
import sys
import time
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.api.dependencies import get_redis, success
from bergvlei.config import settings
from bergvlei.database import get_db

log = structlog.get_logger()

router = APIRouter(prefix="/api/v1/health", tags=["health"])

_STARTED_AT = time.monotonic()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uptime() -> float:
    return round(time.monotonic() - _STARTED_AT, 2)


def _failure(message: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": {"message": message, "details": str(exc)}},
    )


async def _probe_database(db: AsyncSession) -> dict:
    """Round-trip the database; returns type and latency in milliseconds."""
    started = time.perf_counter()
    await db.execute(text("SELECT 1"))
    result = await db.execute(text("SELECT version()"))
    version = result.scalar() or "Unknown"
    latency = round((time.perf_counter() - started) * 1000, 2)
    return {
        "status": "connected",
        "type": "PostgreSQL" if "PostgreSQL" in version else "Unknown",
        "latency": latency,
    }


async def _probe_redis(redis: Redis) -> str:
    try:
        await redis.ping()
    except (RedisError, OSError) as exc:
        return f"error: {exc}"
    return "ok"


def _memory_mb() -> float:
    # ru_maxrss is KiB on Linux, bytes on macOS
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 2)


@router.get("")
async def health() -> dict:
    """Liveness probe."""
    return success(
        {
            "status": "healthy",
            "timestamp": _now(),
            "environment": settings.APP_ENV,
            "uptime": _uptime(),
        }
    )


@router.get("/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    try:
        probe = await _probe_database(db)
    except (SQLAlchemyError, OSError) as exc:
        log.error("database_health_check_failed", error=str(exc))
        return _failure("Database health check failed", exc)

    return success(
        {
            "status": probe["status"],
            "database": probe["type"],
            "latency": probe["latency"],
            "timestamp": _now(),
        }
    )


@router.get("/full")
async def full_health(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    try:
        database = await _probe_database(db)
    except (SQLAlchemyError, OSError) as exc:
        log.error("full_health_check_failed", error=str(exc))
        return _failure("Health check failed", exc)

    redis_status = await _probe_redis(redis)
    return success(
        {
            "status": "healthy" if redis_status == "ok" else "degraded",
            "timestamp": _now(),
            "server": {
                "environment": settings.APP_ENV,
                "uptime": _uptime(),
                "python_version": platform.python_version(),
            },
            "database": database,
            "redis": redis_status,
            "memory": {"peak_rss_mb": _memory_mb()},
        }
    )
