"""Authentication service: password hashing, JWT tokens, registration, login, password reset."""

from __future__ import annotations

import hashlib
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID

import bcrypt
from fastapi import HTTPException, status
from jose import JWTError, jwt
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.config import settings
from bergvlei.models import User, UserStats
from bergvlei.services.audit_logger import AuditLogger
from bergvlei.services.cache_service import CacheKeys, CacheService, CacheTTL

# ---------------------------------------------------------------------------
# Password hashing helpers (bcrypt, cost 12)
# ---------------------------------------------------------------------------
# passlib 1.7.4 is incompatible with bcrypt >= 4.1 so we use bcrypt directly.

_BCRYPT_ROUNDS = 12
_EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$")
_RESET_TOKEN_TTL = timedelta(hours=1)

RESET_REQUESTED_MESSAGE = "If the email exists, a password reset link has been sent"


def hash_password(password: str) -> str:
    """Hash a plaintext password with bcrypt (cost 12)."""
    salt = bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a bcrypt hash."""
    return bcrypt.checkpw(
        plain_password.encode("utf-8"),
        hashed_password.encode("utf-8"),
    )


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


def _normalize_email(v: str) -> str:
    v = v.strip()
    if not _EMAIL_PATTERN.match(v):
        raise ValueError("Invalid email address")
    return v.lower()


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=8)
    username: Optional[str] = Field(default=None, min_length=3, max_length=20)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, v):
        if isinstance(v, str) and len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)

    @field_validator("password", mode="before")
    @classmethod
    def validate_password(cls, v):
        if isinstance(v, str) and len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v


def serialize_user(user: User) -> dict[str, Any]:
    """Public profile fields; never includes hashes or reset tokens."""
    return {
        "user_id": str(user.user_id),
        "email": user.email,
        "username": user.username,
        "is_premium": user.is_premium,
        "subscription_tier": user.subscription_tier,
        "riddles_per_day_limit": user.riddles_per_day_limit,
        "total_riddles_solved": user.total_riddles_solved,
        "current_streak": user.current_streak,
        "longest_streak": user.longest_streak,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def create_access_token(user: User) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.user_id),
        "email": user.email,
        "is_premium": user.is_premium,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> dict:
    """Decode and validate an access token.

    Raises:
        HTTPException(401) if the token is invalid or expired.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=["HS256"])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    if "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------


async def _find_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def register_user(db: AsyncSession, request: RegisterRequest) -> dict[str, Any]:
    """Create a user with an empty stats row and return it with a token."""
    if await _find_by_email(db, request.email) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists",
        )

    if request.username:
        result = await db.execute(select(User).where(User.username == request.username))
        if result.scalar_one_or_none() is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username already taken",
            )

    now = datetime.now(timezone.utc)
    user = User(
        email=request.email,
        username=request.username,
        password_hash=hash_password(request.password),
        is_premium=False,
        subscription_tier="FREE",
        riddles_per_day_limit=settings.FREE_DAILY_RIDDLE_LIMIT,
        riddles_today_count=0,
        total_riddles_solved=0,
        current_streak=0,
        longest_streak=0,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    await db.flush()
    db.add(UserStats(user_id=user.user_id, updated_at=now))
    await db.flush()

    return {"user": serialize_user(user), "token": create_access_token(user)}


async def authenticate_user(
    db: AsyncSession, email: str, password: str
) -> User | None:
    """Authenticate a user by email and password.

    SECURITY: Always performs a password hash even when the user does not exist
    to prevent timing-based user enumeration.
    """
    user = await _find_by_email(db, email)

    if user is None:
        # Constant-time: hash the password anyway to prevent timing attacks
        hash_password(password)
        return None

    if not verify_password(password, user.password_hash):
        return None

    return user


async def login_user(
    db: AsyncSession, cache: CacheService, request: LoginRequest
) -> dict[str, Any]:
    user = await authenticate_user(db, request.email, request.password)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    profile = serialize_user(user)
    await cache.set(CacheKeys.user_profile(user.user_id), profile, CacheTTL.LONG)
    return {"user": profile, "token": create_access_token(user)}


async def get_user_profile(
    db: AsyncSession, cache: CacheService, user_id: UUID
) -> dict[str, Any]:
    key = CacheKeys.user_profile(user_id)
    cached = await cache.get(key)
    if cached is not None:
        return cached

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    profile = serialize_user(user)
    await cache.set(key, profile, CacheTTL.LONG)
    return profile


async def request_password_reset(
    db: AsyncSession, email: str, audit: AuditLogger | None = None
) -> dict[str, str]:
    """Issue a one-hour reset token for a known email.

    The response is identical whether or not the email exists.  Only the
    sha256 of the token is stored; the plaintext is logged outside
    production because no mail is sent.
    """
    audit = audit or AuditLogger()
    user = await _find_by_email(db, email)
    if user is not None:
        token = secrets.token_hex(32)
        user.reset_password_token = hash_reset_token(token)
        user.reset_password_expires = datetime.now(timezone.utc) + _RESET_TOKEN_TTL
        await db.flush()
        audit.log_password_reset(
            user.user_id,
            "requested",
            token=None if settings.is_production else token,
        )

    return {"message": RESET_REQUESTED_MESSAGE}


async def reset_password(
    db: AsyncSession,
    cache: CacheService,
    token: str,
    new_password: str,
    audit: AuditLogger | None = None,
) -> dict[str, str]:
    audit = audit or AuditLogger()
    result = await db.execute(
        select(User).where(
            User.reset_password_token == hash_reset_token(token),
            User.reset_password_expires > datetime.now(timezone.utc),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired password reset token",
        )

    user.password_hash = hash_password(new_password)
    user.reset_password_token = None
    user.reset_password_expires = None
    user.updated_at = datetime.now(timezone.utc)
    await db.flush()

    await cache.delete(CacheKeys.user_profile(user.user_id))
    audit.log_password_reset(user.user_id, "completed")
    return {"message": "Password has been reset successfully"}
