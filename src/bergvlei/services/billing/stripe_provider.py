"""Stripe billing provider -- web checkout, customer portal, and webhooks."""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import stripe
import structlog
from fastapi import HTTPException

from bergvlei.config import settings
from bergvlei.models import Subscription
from bergvlei.services.billing.interface import BillingEvent, BillingProviderError
from bergvlei.services.billing.subscription_state import (
    BillingEventType,
    SubscriptionState,
    is_premium,
)

log = structlog.get_logger()

_LIVE_STATUSES = ("active", "trialing")


def _user_id_from(metadata: Any) -> uuid.UUID | None:
    if not metadata:
        return None
    try:
        return uuid.UUID(str(metadata.get("user_id")))
    except ValueError:
        return None


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _period(subscription: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Billing period, read from the subscription or (newer API versions) its first item."""
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return _from_epoch(start), _from_epoch(end)


def _provider_status(status: str | None) -> str | None:
    if status == "trialing":
        return "TRIAL"
    if status == "canceled":
        return "CANCELED"
    return None


def _invoice_subscription_metadata(invoice: dict[str, Any]) -> Any:
    details = invoice.get("subscription_details") or (
        (invoice.get("parent") or {}).get("subscription_details") or {}
    )
    return details.get("metadata")


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription = invoice.get("subscription")
    if subscription:
        return subscription
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


class StripeProvider:
    name = "stripe"

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        price_id: str | None = None,
        api_url: str | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.price_id = price_id if price_id is not None else settings.STRIPE_PREMIUM_PRICE_ID
        self.api_url = (api_url or settings.API_URL).rstrip("/")

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """Verify the Stripe-Signature header and return the event as a plain dict."""
        sig_header = headers.get("stripe-signature")
        if not sig_header:
            raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError:
            raise HTTPException(status_code=400, detail="Invalid webhook signature")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
        return json.loads(body)

    def event_id(self, payload: dict[str, Any]) -> str | None:
        return payload.get("id")

    def parse_event(self, payload: dict[str, Any]) -> BillingEvent | None:
        event_type = payload.get("type")
        obj = (payload.get("data") or {}).get("object") or {}
        event_id = payload.get("id")

        if event_type == "checkout.session.completed":
            user_id = _user_id_from(obj.get("metadata")) or _user_id_from(
                {"user_id": obj.get("client_reference_id")}
            )
            return BillingEvent(
                kind=BillingEventType.ACTIVATE,
                user_id=user_id,
                provider=self.name,
                provider_subscription_id=obj.get("subscription"),
                customer_id=obj.get("customer"),
                event_id=event_id,
            )

        if event_type in (
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ):
            kind = self._subscription_kind(event_type, obj)
            if kind is None:
                log.info(
                    "stripe_event_ignored", event_type=event_type, status=obj.get("status")
                )
                return None
            return self._subscription_event(kind, obj, event_id)

        if event_type == "invoice.payment_failed":
            return BillingEvent(
                kind=BillingEventType.BILLING_ISSUE,
                user_id=_user_id_from(_invoice_subscription_metadata(obj)),
                provider=self.name,
                provider_subscription_id=_invoice_subscription_id(obj),
                customer_id=obj.get("customer"),
                event_id=event_id,
            )

        log.info("stripe_event_ignored", event_type=event_type)
        return None

    @staticmethod
    def _subscription_kind(event_type: str, subscription: dict[str, Any]) -> BillingEventType | None:
        status = subscription.get("status")
        if event_type == "customer.subscription.deleted":
            return BillingEventType.EXPIRE
        if event_type == "customer.subscription.created":
            return BillingEventType.ACTIVATE if status in _LIVE_STATUSES else None
        if status in _LIVE_STATUSES:
            if subscription.get("cancel_at_period_end"):
                return BillingEventType.CANCEL
            return BillingEventType.RENEW
        if status in ("past_due", "unpaid"):
            return BillingEventType.BILLING_ISSUE
        if status in ("canceled", "incomplete_expired"):
            return BillingEventType.EXPIRE
        return None

    def _subscription_event(
        self,
        kind: BillingEventType,
        subscription: dict[str, Any],
        event_id: str | None = None,
    ) -> BillingEvent:
        period_start, period_end = _period(subscription)
        price = _first_item(subscription).get("price") or {}
        return BillingEvent(
            kind=kind,
            user_id=_user_id_from(subscription.get("metadata")),
            provider=self.name,
            provider_subscription_id=subscription.get("id"),
            customer_id=subscription.get("customer"),
            product_id=price.get("id"),
            period_start=period_start,
            period_end=period_end,
            provider_status=_provider_status(subscription.get("status")),
            event_id=event_id,
        )

    # ------------------------------------------------------------------
    # Subscription lookups
    # ------------------------------------------------------------------

    def _retrieve(self, subscription_id: str) -> dict[str, Any]:
        try:
            subscription = stripe.Subscription.retrieve(
                subscription_id, api_key=self.secret_key
            )
        except stripe.StripeError as e:
            raise BillingProviderError(str(e)) from e
        return subscription.to_dict()

    async def fetch_status(
        self, user_id: uuid.UUID, subscription: Subscription | None
    ) -> dict[str, Any] | None:
        if subscription is None or not subscription.stripe_subscription_id:
            return None
        remote = self._retrieve(subscription.stripe_subscription_id)
        _, period_end = _period(remote)
        return {
            "has_active_entitlements": remote.get("status") in _LIVE_STATUSES,
            "data": {
                "id": remote.get("id"),
                "status": remote.get("status"),
                "cancel_at_period_end": remote.get("cancel_at_period_end", False),
                "current_period_end": period_end,
            },
        }

    async def sync(
        self, user_id: uuid.UUID, subscription: Subscription
    ) -> list[BillingEvent]:
        """Re-read the Stripe subscription and replay it as local events.

        A live remote subscription on a non-premium local record is activated
        first, so a following cancel or renew is legal.
        """
        if not subscription.stripe_subscription_id:
            return []
        remote = self._retrieve(subscription.stripe_subscription_id)
        kind = self._subscription_kind("customer.subscription.updated", remote)
        if kind is None:
            return []

        events = []
        local_premium = is_premium(SubscriptionState(subscription.state))
        if remote.get("status") in _LIVE_STATUSES and not local_premium:
            events.append(self._subscription_event(BillingEventType.ACTIVATE, remote))
            if kind is BillingEventType.RENEW:
                return events
        events.append(self._subscription_event(kind, remote))
        return [
            event if event.user_id else replace(event, user_id=user_id) for event in events
        ]

    # ------------------------------------------------------------------
    # Checkout and portal
    # ------------------------------------------------------------------

    async def create_checkout(
        self, user_id: uuid.UUID, email: str, subscription: Subscription | None
    ) -> dict[str, Any]:
        """Create a subscription Checkout Session, creating the customer if needed."""
        customer_id = subscription.stripe_customer_id if subscription else None
        try:
            if not customer_id:
                customer = stripe.Customer.create(
                    email=email,
                    metadata={"user_id": str(user_id)},
                    api_key=self.secret_key,
                )
                customer_id = customer.id

            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": self.price_id, "quantity": 1}],
                success_url=(
                    f"{self.api_url}/subscription/success"
                    "?session_id={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self.api_url}/subscription/cancel",
                client_reference_id=str(user_id),
                metadata={"user_id": str(user_id)},
                subscription_data={"metadata": {"user_id": str(user_id)}},
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            log.error("stripe_checkout_failed", user_id=str(user_id), error=str(e))
            raise HTTPException(status_code=500, detail="Failed to create checkout session")

        return {"session_id": session.id, "url": session.url, "customer_id": customer_id}

    async def create_portal(
        self, user_id: uuid.UUID, subscription: Subscription | None
    ) -> dict[str, Any]:
        if subscription is None or not subscription.stripe_customer_id:
            raise HTTPException(status_code=404, detail="No subscription found")
        try:
            session = stripe.billing_portal.Session.create(
                customer=subscription.stripe_customer_id,
                return_url=f"{self.api_url}/profile",
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            log.error("stripe_portal_failed", user_id=str(user_id), error=str(e))
            raise HTTPException(status_code=500, detail="Failed to create portal session")
        return {"url": session.url}

