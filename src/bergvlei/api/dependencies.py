"""Shared FastAPI dependencies: authentication and per-request services.

Long-lived clients (Redis, AI client, billing provider) live on
``app.state`` and are created in the application lifespan; services that
need a database session are built per request around them.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.database import get_db
from bergvlei.models import User
from bergvlei.services.ai_service import AIService
from bergvlei.services.auth_service import verify_token
from bergvlei.services.billing.interface import BillingProvider
from bergvlei.services.billing.reconciler import SubscriptionReconciler
from bergvlei.services.billing.repository import SubscriptionRepository
from bergvlei.services.billing.subscription_service import SubscriptionService
from bergvlei.services.cache_service import CacheService
from bergvlei.services.leaderboard_service import LeaderboardService
from bergvlei.services.riddle_service import RiddleService

# auto_error=False so a missing header maps to our own 401 message
_bearer_scheme = HTTPBearer(auto_error=False)


def success(data: Any) -> dict[str, Any]:
    """Wrap *data* in the success envelope.

    Response models nested anywhere in *data* are dumped by alias.
    """
    return {"success": True, "data": jsonable_encoder(data, by_alias=True)}


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> User:
    """Validate the bearer token and return the User.

    Raises HTTPException(401) if no valid token is found or the user does not
    exist / has been deactivated.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(credentials.credentials)
    try:
        user_id = UUID(str(payload["sub"]))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or deactivated",
        )

    return user


def get_redis(request: Request) -> Redis:
    return request.app.state.redis


def get_cache(redis: Redis = Depends(get_redis)) -> CacheService:
    return CacheService(redis)


def get_leaderboard(redis: Redis = Depends(get_redis)) -> LeaderboardService:
    return LeaderboardService(redis)


def get_ai_service(request: Request) -> AIService:
    return request.app.state.ai_service


def get_billing_provider(request: Request) -> BillingProvider:
    return request.app.state.billing_provider


def get_riddle_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    leaderboard: LeaderboardService = Depends(get_leaderboard),
    ai: AIService = Depends(get_ai_service),
) -> RiddleService:
    return RiddleService(db, cache, leaderboard, ai)


def get_subscription_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
    provider: BillingProvider = Depends(get_billing_provider),
) -> SubscriptionService:
    reconciler = SubscriptionReconciler(SubscriptionRepository(db), cache)
    return SubscriptionService(provider, reconciler)
