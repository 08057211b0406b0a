"""RevenueCat billing provider -- mobile in-app purchases.

Purchases happen in the mobile SDK; the backend only learns about them from
webhooks and subscriber lookups.  Webhooks authenticate with the shared
``Authorization`` header configured in the RevenueCat dashboard.
"""

from __future__ import annotations

import hmac
import json
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import HTTPException

from bergvlei.config import settings
from bergvlei.integrations.revenuecat_client import RevenueCatAPIError, RevenueCatClient
from bergvlei.models import Subscription
from bergvlei.services.billing.interface import BillingEvent, BillingProviderError
from bergvlei.services.billing.subscription_state import (
    BillingEventType,
    SubscriptionState,
    is_premium,
)

log = structlog.get_logger()

EVENT_TYPES = {
    "INITIAL_PURCHASE": BillingEventType.ACTIVATE,
    "RENEWAL": BillingEventType.RENEW,
    "CANCELLATION": BillingEventType.CANCEL,
    "UNCANCELLATION": BillingEventType.UNCANCEL,
    "NON_RENEWING_PURCHASE": BillingEventType.ONE_TIME_PURCHASE,
    "EXPIRATION": BillingEventType.EXPIRE,
    "BILLING_ISSUE": BillingEventType.BILLING_ISSUE,
    "PRODUCT_CHANGE": BillingEventType.PRODUCT_CHANGE,
}


def _from_ms(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def active_entitlements(
    subscriber: dict[str, Any] | None, now: datetime | None = None
) -> dict[str, Any]:
    """Entitlements whose ``expires_date`` is unset or in the future."""
    if not subscriber:
        return {}
    now = now or datetime.now(timezone.utc)
    entitlements = (subscriber.get("subscriber") or {}).get("entitlements") or {}
    active = {}
    for name, entitlement in entitlements.items():
        expires = _parse_iso((entitlement or {}).get("expires_date"))
        if expires is None or expires > now:
            active[name] = entitlement
    return active


class RevenueCatProvider:
    name = "revenuecat"

    def __init__(
        self,
        client: RevenueCatClient | None = None,
        webhook_auth_token: str | None = None,
    ) -> None:
        self.client = client or RevenueCatClient()
        self.webhook_auth_token = (
            webhook_auth_token
            if webhook_auth_token is not None
            else settings.REVENUECAT_WEBHOOK_AUTH_TOKEN
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        auth_header = headers.get("authorization")
        if not auth_header:
            raise HTTPException(status_code=400, detail="Missing authorization header")

        if self.webhook_auth_token:
            token = auth_header
            if token.lower().startswith("bearer "):
                token = token[7:]
            if not hmac.compare_digest(
                token.strip().encode("utf-8"), self.webhook_auth_token.encode("utf-8")
            ):
                raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        return payload

    def event_id(self, payload: dict[str, Any]) -> str | None:
        event = payload.get("event") or {}
        return event.get("id")

    def parse_event(self, payload: dict[str, Any]) -> BillingEvent | None:
        event = payload.get("event") or {}
        event_type = event.get("type")
        kind = EVENT_TYPES.get(event_type)
        if kind is None:
            log.info("revenuecat_event_ignored", event_type=event_type)
            return None

        try:
            user_id = uuid.UUID(str(event.get("app_user_id")))
        except ValueError:
            log.warning(
                "revenuecat_event_without_user",
                event_type=event_type,
                app_user_id=event.get("app_user_id"),
            )
            return None

        return BillingEvent(
            kind=kind,
            user_id=user_id,
            provider=self.name,
            product_id=event.get("product_id"),
            period_start=_from_ms(event.get("purchased_at_ms")),
            period_end=_from_ms(event.get("expiration_at_ms")),
            provider_status="TRIAL" if event.get("period_type") == "TRIAL" else None,
            event_id=event.get("id"),
        )

    # ------------------------------------------------------------------
    # Subscriber lookups
    # ------------------------------------------------------------------

    async def _subscriber(self, user_id: uuid.UUID) -> dict[str, Any] | None:
        try:
            return await self.client.get_subscriber(str(user_id))
        except RevenueCatAPIError as e:
            raise BillingProviderError(str(e)) from e

    async def fetch_status(
        self, user_id: uuid.UUID, subscription: Subscription | None
    ) -> dict[str, Any] | None:
        subscriber = await self._subscriber(user_id)
        if subscriber is None:
            return None
        return {
            "has_active_entitlements": bool(active_entitlements(subscriber)),
            "data": subscriber,
        }

    async def sync(
        self, user_id: uuid.UUID, subscription: Subscription
    ) -> list[BillingEvent]:
        """Activate locally when RevenueCat reports an active entitlement.

        Expiry is left to the EXPIRATION webhook.
        """
        subscriber = await self._subscriber(user_id)
        active = active_entitlements(subscriber)
        if not active or is_premium(SubscriptionState(subscription.state)):
            return []

        entitlement = next(iter(active.values())) or {}
        return [
            BillingEvent(
                kind=BillingEventType.ACTIVATE,
                user_id=user_id,
                provider=self.name,
                product_id=entitlement.get("product_identifier"),
                period_start=_parse_iso(entitlement.get("purchase_date")),
                period_end=_parse_iso(entitlement.get("expires_date")),
            )
        ]

    # ------------------------------------------------------------------
    # Web checkout (not available)
    # ------------------------------------------------------------------

    async def create_checkout(
        self, user_id: uuid.UUID, email: str, subscription: Subscription | None
    ) -> dict[str, Any]:
        raise HTTPException(
            status_code=400,
            detail="Purchases are made in the mobile app",
        )

    async def create_portal(
        self, user_id: uuid.UUID, subscription: Subscription | None
    ) -> dict[str, Any]:
        raise HTTPException(
            status_code=400,
            detail="Subscriptions are managed in the mobile app store",
        )
