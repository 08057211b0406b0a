import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from bergvlei.config import settings
from bergvlei.main import create_app

TEST_JWT_SECRET = "test-secret-key-for-unit-tests"


@pytest.fixture(autouse=True)
def _jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", TEST_JWT_SECRET)


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_user(
    user_id: uuid.UUID | None = None,
    email: str = "player@example.com",
    username: str | None = "player1",
    is_premium: bool = False,
    is_active: bool = True,
) -> MagicMock:
    """Build a MagicMock that quacks like a User ORM instance."""
    user = MagicMock()
    user.user_id = user_id or uuid.uuid4()
    user.email = email
    user.username = username
    user.is_premium = is_premium
    user.subscription_tier = "PREMIUM" if is_premium else "FREE"
    user.riddles_per_day_limit = 999999 if is_premium else 5
    user.total_riddles_solved = 0
    user.current_streak = 0
    user.longest_streak = 0
    user.is_active = is_active
    user.created_at = datetime(2024, 1, 8, tzinfo=timezone.utc)
    return user


def offline_redis() -> MagicMock:
    """A Redis stand-in whose pipeline fails, so rate limiting fails open."""
    redis = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(side_effect=RedisConnectionError("redis down"))
    redis.pipeline.return_value = pipe
    redis.ping = AsyncMock(side_effect=RedisConnectionError("redis down"))
    return redis


@pytest.fixture
def app():
    application = create_app()
    application.state.redis = offline_redis()
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
