"""Tests for the authentication service and API endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from jose import jwt

from bergvlei.api.dependencies import get_cache
from bergvlei.config import settings
from bergvlei.database import get_db
from bergvlei.models import User, UserStats
from bergvlei.services.auth_service import (
    RESET_REQUESTED_MESSAGE,
    LoginRequest,
    RegisterRequest,
    authenticate_user,
    create_access_token,
    hash_password,
    hash_reset_token,
    login_user,
    register_user,
    request_password_reset,
    reset_password,
    verify_password,
    verify_token,
)

from conftest import TEST_JWT_SECRET, make_user

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_fake_user(password: str = "securepassword123", **kwargs) -> MagicMock:
    user = make_user(**kwargs)
    user.password_hash = hash_password(password)
    return user


def _build_scalar_result(value):
    """Return a mock SQLAlchemy result whose scalar_one_or_none() returns *value*."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _mock_db(*results) -> AsyncMock:
    db = AsyncMock()
    db.execute.side_effect = [_build_scalar_result(r) for r in results]
    db.add = MagicMock()
    return db


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def test_password_hashing():
    password = "my-very-secure-p@ssword!"
    hashed = hash_password(password)

    assert hashed != password
    assert hashed.startswith("$2")
    assert verify_password(password, hashed) is True
    assert verify_password("wrong-password", hashed) is False


def test_reset_tokens_are_stored_hashed():
    assert hash_reset_token("abc") == hash_reset_token("abc")
    assert hash_reset_token("abc") != "abc"
    assert len(hash_reset_token("abc")) == 64


@pytest.mark.asyncio
async def test_constant_time_auth():
    """authenticate_user must hash the password even when the user does not exist."""
    db = _mock_db(None)

    with patch("bergvlei.services.auth_service.hash_password") as mock_hash:
        mock_hash.return_value = "$2b$12$fakehashvalue"
        result = await authenticate_user(db, "nobody@example.com", "anypass")

    assert result is None
    mock_hash.assert_called_once_with("anypass")


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def test_access_token_claims():
    user = make_user(is_premium=True)

    token = create_access_token(user)
    payload = jwt.decode(token, TEST_JWT_SECRET, algorithms=["HS256"])

    assert payload["sub"] == str(user.user_id)
    assert payload["email"] == user.email
    assert payload["is_premium"] is True
    assert payload["exp"] - payload["iat"] == settings.JWT_EXPIRE_MINUTES * 60


def test_verify_token_valid():
    user = make_user()
    assert verify_token(create_access_token(user))["sub"] == str(user.user_id)


def test_verify_token_expired():
    payload = {
        "sub": str(uuid.uuid4()),
        "exp": datetime.now(timezone.utc) - timedelta(seconds=10),
        "iat": datetime.now(timezone.utc) - timedelta(minutes=20),
    }
    expired_token = jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")

    with pytest.raises(HTTPException) as exc_info:
        verify_token(expired_token)

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Invalid or expired token"


def test_verify_token_wrong_secret():
    token = jwt.encode({"sub": str(uuid.uuid4())}, "another-secret", algorithm="HS256")
    with pytest.raises(HTTPException) as exc_info:
        verify_token(token)
    assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


def test_register_request_validation():
    request = RegisterRequest(email="  Player@Example.COM ", password="longenough")
    assert request.email == "player@example.com"

    with pytest.raises(ValueError, match="at least 8 characters"):
        RegisterRequest(email="player@example.com", password="short")
    with pytest.raises(ValueError, match="Invalid email"):
        RegisterRequest(email="not-an-email", password="longenough")


@pytest.mark.asyncio
async def test_register_creates_user_and_stats():
    db = _mock_db(None, None)

    result = await register_user(
        db, RegisterRequest(email="new@example.com", password="securepass123", username="newbie")
    )

    added = [call.args[0] for call in db.add.call_args_list]
    assert isinstance(added[0], User)
    assert isinstance(added[1], UserStats)
    assert added[0].riddles_per_day_limit == settings.FREE_DAILY_RIDDLE_LIMIT
    assert added[0].password_hash != "securepass123"
    assert result["user"]["email"] == "new@example.com"
    assert "password_hash" not in result["user"]
    assert result["token"]


@pytest.mark.asyncio
async def test_register_duplicate_email():
    db = _mock_db(make_user())
    with pytest.raises(HTTPException) as exc_info:
        await register_user(db, RegisterRequest(email="player@example.com", password="securepass123"))
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "User already exists"


@pytest.mark.asyncio
async def test_register_duplicate_username():
    db = _mock_db(None, make_user())
    with pytest.raises(HTTPException) as exc_info:
        await register_user(
            db,
            RegisterRequest(email="new@example.com", password="securepass123", username="player1"),
        )
    assert exc_info.value.detail == "Username already taken"


@pytest.mark.asyncio
async def test_login_caches_profile():
    user = _make_fake_user(password="securepassword123")
    db = _mock_db(user)
    cache = AsyncMock()

    result = await login_user(
        db, cache, LoginRequest(email=user.email, password="securepassword123")
    )

    assert result["user"]["user_id"] == str(user.user_id)
    assert verify_token(result["token"])["sub"] == str(user.user_id)
    cache.set.assert_awaited_once()
    assert cache.set.call_args.args[0] == f"user:profile:{user.user_id}"


@pytest.mark.asyncio
async def test_login_wrong_password_is_401():
    user = _make_fake_user(password="securepassword123")
    with pytest.raises(HTTPException) as exc_info:
        await login_user(_mock_db(user), AsyncMock(), LoginRequest(email=user.email, password="nope"))
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Invalid credentials"


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reset_request_for_unknown_email_looks_identical():
    audit = MagicMock()

    result = await request_password_reset(_mock_db(None), "nobody@example.com", audit)

    assert result == {"message": RESET_REQUESTED_MESSAGE}
    audit.log_password_reset.assert_not_called()


@pytest.mark.asyncio
async def test_reset_request_stores_token_hash():
    user = make_user()
    audit = MagicMock()

    result = await request_password_reset(_mock_db(user), user.email, audit)

    assert result == {"message": RESET_REQUESTED_MESSAGE}
    token = audit.log_password_reset.call_args.kwargs["token"]
    assert user.reset_password_token == hash_reset_token(token)
    assert user.reset_password_expires > datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_reset_password_clears_token_and_cache():
    user = make_user()
    user.reset_password_token = hash_reset_token("tok")
    cache = AsyncMock()
    audit = MagicMock()

    await reset_password(_mock_db(user), cache, "tok", "brand-new-pass", audit)

    assert verify_password("brand-new-pass", user.password_hash)
    assert user.reset_password_token is None
    assert user.reset_password_expires is None
    cache.delete.assert_awaited_once_with(f"user:profile:{user.user_id}")
    audit.log_password_reset.assert_called_once_with(user.user_id, "completed")


@pytest.mark.asyncio
async def test_reset_password_with_bad_token_is_400():
    with pytest.raises(HTTPException) as exc_info:
        await reset_password(_mock_db(None), AsyncMock(), "bad", "brand-new-pass", MagicMock())
    assert exc_info.value.status_code == 400


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_register_endpoint(app, client):
    fake_user_id = uuid.uuid4()
    mock_db = _mock_db(None, None)

    def capture_add(obj):
        if isinstance(obj, User):
            obj.user_id = fake_user_id

    mock_db.add.side_effect = capture_add

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "newuser@example.com", "username": "newuser", "password": "securepass123"},
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["success"] is True
    user = body["data"]["user"]
    assert user["id"] == str(fake_user_id)
    assert user["isPremium"] is False
    assert user["subscriptionTier"] == "FREE"
    assert user["riddlesPerDayLimit"] == 5
    assert "user_id" not in user
    assert body["data"]["token"]


@pytest.mark.asyncio
async def test_register_endpoint_short_password(app, client):
    async def override_get_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = override_get_db

    response = await client.post(
        "/api/v1/auth/register",
        json={"email": "newuser@example.com", "password": "short"},
    )

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": {"message": "password: Password must be at least 8 characters"},
    }


@pytest.mark.asyncio
async def test_login_endpoint(app, client):
    user = _make_fake_user(password="securepassword123")
    mock_db = _mock_db(user)

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: AsyncMock()

    response = await client.post(
        "/api/v1/auth/login",
        json={"email": user.email, "password": "securepassword123"},
    )

    assert response.status_code == 200, response.text
    assert response.json()["data"]["user"]["email"] == user.email


@pytest.mark.asyncio
async def test_profile_requires_token(app, client):
    async def override_get_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = override_get_db

    response = await client.get("/api/v1/auth/profile")

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "No token provided"


@pytest.mark.asyncio
async def test_profile_rejects_deactivated_user(app, client):
    user = make_user(is_active=False)
    mock_db = _mock_db(user)

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    response = await client.get(
        "/api/v1/auth/profile",
        headers={"Authorization": f"Bearer {create_access_token(user)}"},
    )

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "User not found or deactivated"


@pytest.mark.asyncio
async def test_forgot_password_endpoint(app, client):
    mock_db = _mock_db(None)

    async def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db

    response = await client.post(
        "/api/v1/auth/forgot-password", json={"email": "nobody@example.com"}
    )

    assert response.status_code == 200
    assert response.json()["data"]["message"] == RESET_REQUESTED_MESSAGE
