"""Database access for subscriptions, entitlements, and the webhook replay guard."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.models import Subscription
from bergvlei.services.billing.subscription_state import SubscriptionState


class SubscriptionRepository:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def latest_for_user(self, user_id: uuid.UUID) -> Subscription | None:
        result = await self._db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_provider_subscription(
        self, provider_subscription_id: str
    ) -> Subscription | None:
        result = await self._db.execute(
            select(Subscription)
            .where(Subscription.stripe_subscription_id == provider_subscription_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_free_record(self, user_id: uuid.UUID, provider: str) -> Subscription:
        now = datetime.now(timezone.utc)
        record = Subscription(
            user_id=user_id,
            provider=provider,
            state=SubscriptionState.FREE.value,
            status="ACTIVE",
            tier="FREE",
            cancel_at_period_end=False,
            created_at=now,
            updated_at=now,
        )
        self._db.add(record)
        await self._db.flush()
        return record

    async def flush(self) -> None:
        await self._db.flush()

    async def get_entitlement(self, user_id: uuid.UUID) -> dict[str, Any] | None:
        result = await self._db.execute(
            text(
                "SELECT is_premium, subscription_tier, riddles_per_day_limit "
                "FROM users WHERE user_id = :user_id"
            ),
            {"user_id": user_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return {
            "is_premium": row[0],
            "tier": row[1],
            "riddles_per_day_limit": row[2],
        }

    async def set_entitlement(
        self, user_id: uuid.UUID, is_premium: bool, tier: str, daily_limit: int
    ) -> None:
        await self._db.execute(
            text(
                "UPDATE users SET is_premium = :is_premium, "
                "subscription_tier = :tier, "
                "riddles_per_day_limit = :daily_limit, "
                "updated_at = now() "
                "WHERE user_id = :user_id"
            ),
            {
                "user_id": user_id,
                "is_premium": is_premium,
                "tier": tier,
                "daily_limit": daily_limit,
            },
        )

    async def is_processed(self, event_id: str) -> bool:
        """Return True if this webhook event has already been handled."""
        result = await self._db.execute(
            text("SELECT 1 FROM processed_webhooks WHERE event_id = :event_id"),
            {"event_id": event_id},
        )
        return result.fetchone() is not None

    async def mark_processed(self, event_id: str, provider: str) -> None:
        """Record a webhook event ID so it is not replayed."""
        await self._db.execute(
            text(
                "INSERT INTO processed_webhooks (event_id, provider, processed_at) "
                "VALUES (:event_id, :provider, :processed_at) "
                "ON CONFLICT (event_id) DO NOTHING"
            ),
            {
                "event_id": event_id,
                "provider": provider,
                "processed_at": datetime.now(timezone.utc),
            },
        )
