"""Authentication API router -- /api/v1/auth/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.api.dependencies import get_cache, get_current_user, success
from bergvlei.api.schemas import AuthResponse, UserResponse
from bergvlei.database import get_db
from bergvlei.models import User
from bergvlei.services.auth_service import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    get_user_profile,
    login_user,
    register_user,
    request_password_reset,
    reset_password,
)
from bergvlei.services.cache_service import CacheService

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Register a new account and return it with an access token."""
    return success(AuthResponse.model_validate(await register_user(db, request)))


@router.post("/login")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict:
    return success(AuthResponse.model_validate(await login_user(db, cache, request)))


@router.get("/profile")
async def profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict:
    user = await get_user_profile(db, cache, current_user.user_id)
    return success({"user": UserResponse.model_validate(user)})


@router.post("/forgot-password")
async def forgot_password(
    request: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success(await request_password_reset(db, request.email))


@router.post("/reset-password")
async def reset_password_endpoint(
    request: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> dict:
    return success(await reset_password(db, cache, request.token, request.password))
