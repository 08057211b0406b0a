"""Subscription operations exposed over HTTP, independent of the provider."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from bergvlei.models import Subscription
from bergvlei.services.billing.interface import BillingProvider, BillingProviderError
from bergvlei.services.billing.reconciler import SubscriptionReconciler
from bergvlei.services.billing.revenuecat_provider import RevenueCatProvider
from bergvlei.services.billing.stripe_provider import StripeProvider

log = structlog.get_logger()

OFFERINGS = {
    "message": "Offerings should be fetched from RevenueCat SDK on mobile",
    "products": {
        "premium_monthly": {
            "identifier": "premium_monthly",
            "price": 4.99,
            "currency": "USD",
            "description": "Premium Monthly Subscription",
            "features": [
                "Unlimited riddles per day",
                "No advertisements",
                "Priority support",
                "Exclusive riddle categories",
            ],
        },
    },
}


def serialize_subscription(record: Subscription | None) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "subscription_id": str(record.subscription_id),
        "provider": record.provider,
        "state": record.state,
        "status": record.status,
        "tier": record.tier,
        "product_id": record.product_id,
        "current_period_start": record.current_period_start,
        "current_period_end": record.current_period_end,
        "cancel_at_period_end": record.cancel_at_period_end,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


class SubscriptionService:
    def __init__(self, provider: BillingProvider, reconciler: SubscriptionReconciler) -> None:
        self.provider = provider
        self.reconciler = reconciler

    async def process_webhook(self, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """Verify, de-duplicate, translate and apply one provider webhook.

        Events that are ignored or rejected by the state machine are still
        acknowledged so the provider stops retrying them.
        """
        payload = self.provider.verify_webhook(body, headers)
        event_id = self.provider.event_id(payload)
        repo = self.reconciler.repo

        if event_id and await repo.is_processed(event_id):
            log.info("webhook_duplicate", provider=self.provider.name, event_id=event_id)
            return {"received": True, "duplicate": True}

        event = self.provider.parse_event(payload)
        applied = False
        if event is not None:
            applied = await self.reconciler.apply(event)

        if event_id:
            await repo.mark_processed(event_id, self.provider.name)

        log.info(
            "webhook_processed",
            provider=self.provider.name,
            event_id=event_id,
            kind=event.kind.value if event else None,
            applied=applied,
        )
        return {"received": True, "applied": applied}

    async def get_status(self, user_id: uuid.UUID) -> dict[str, Any]:
        """Local subscription and entitlement plus the provider's view.

        Provider failures degrade to local data only.
        """
        record, state = await self.reconciler.current_state(user_id)
        entitlement = await self.reconciler.repo.get_entitlement(user_id) or {}

        try:
            provider_status = await self.provider.fetch_status(user_id, record)
        except BillingProviderError as e:
            log.warning(
                "billing_status_degraded",
                provider=self.provider.name,
                user_id=str(user_id),
                error=str(e),
            )
            provider_status = None

        return {
            "subscription": serialize_subscription(record),
            "state": state.value,
            "is_premium": entitlement.get("is_premium", False),
            "tier": entitlement.get("tier", "FREE"),
            "riddles_per_day_limit": entitlement.get(
                "riddles_per_day_limit", self.reconciler.free_limit
            ),
            "provider": self.provider.name,
            "provider_data": provider_status["data"] if provider_status else None,
            "has_active_entitlements": bool(
                provider_status and provider_status["has_active_entitlements"]
            ),
        }

    async def sync(self, user_id: uuid.UUID) -> dict[str, Any]:
        """Pull the provider's state into the local record, then report status."""
        record = await self.reconciler.ensure_record(user_id, self.provider.name)
        try:
            events = await self.provider.sync(user_id, record)
        except BillingProviderError as e:
            log.warning(
                "billing_sync_failed",
                provider=self.provider.name,
                user_id=str(user_id),
                error=str(e),
            )
            events = []

        for event in events:
            await self.reconciler.apply(event)
        return await self.get_status(user_id)

    async def create_checkout(self, user_id: uuid.UUID, email: str) -> dict[str, Any]:
        record = await self.reconciler.ensure_record(user_id, self.provider.name)
        session = await self.provider.create_checkout(user_id, email, record)

        customer_id = session.get("customer_id")
        if customer_id and record.stripe_customer_id != customer_id:
            record.stripe_customer_id = customer_id
            await self.reconciler.repo.flush()

        return {"session_id": session.get("session_id"), "url": session.get("url")}

    async def create_portal(self, user_id: uuid.UUID) -> dict[str, Any]:
        record = await self.reconciler.repo.latest_for_user(user_id)
        return await self.provider.create_portal(user_id, record)

    @staticmethod
    def offerings() -> dict[str, Any]:
        return OFFERINGS


def build_provider(name: str) -> BillingProvider:
    """Provider for the ``BILLING_PROVIDER`` setting."""
    if name == "revenuecat":
        return RevenueCatProvider()
    if name == "stripe":
        return StripeProvider()
    raise ValueError(f"Unknown billing provider: {name!r}")
