"""Billing provider contract and the provider-neutral event it produces."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from bergvlei.services.billing.subscription_state import BillingEventType

if TYPE_CHECKING:
    from bergvlei.models import Subscription


class BillingProviderError(Exception):
    """Raised when a provider API call fails."""


@dataclass(frozen=True)
class BillingEvent:
    """A subscription change, translated out of a provider's payload.

    ``user_id`` may be None when the payload only names the provider
    subscription; the reconciler then resolves the owner from the local
    record carrying ``provider_subscription_id``.
    """

    kind: BillingEventType
    user_id: uuid.UUID | None
    provider: str
    provider_subscription_id: str | None = None
    customer_id: str | None = None
    product_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    # "TRIAL" or "CANCELED" when the provider reports it explicitly
    provider_status: str | None = None
    event_id: str | None = None


class BillingProvider(Protocol):
    """Strategy interface implemented by each billing integration."""

    name: str

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        """Authenticate a webhook and return its decoded JSON payload.

        Raises HTTPException(400/401) when the request cannot be trusted.
        """
        ...

    def event_id(self, payload: dict[str, Any]) -> str | None:
        """Replay-guard identifier of a webhook payload."""
        ...

    def parse_event(self, payload: dict[str, Any]) -> BillingEvent | None:
        """Translate a payload; None for events the reconciler ignores."""
        ...

    async def fetch_status(
        self, user_id: uuid.UUID, subscription: Subscription | None
    ) -> dict[str, Any] | None:
        """Provider-side view of the subscriber.

        Returns ``{"has_active_entitlements": bool, "data": ...}`` or None
        when the provider has no record.  Raises BillingProviderError.
        """
        ...

    async def sync(
        self, user_id: uuid.UUID, subscription: Subscription
    ) -> list[BillingEvent]:
        """Events that bring the local record in line with the provider.

        Raises BillingProviderError.
        """
        ...

    async def create_checkout(
        self, user_id: uuid.UUID, email: str, subscription: Subscription | None
    ) -> dict[str, Any]:
        ...

    async def create_portal(
        self, user_id: uuid.UUID, subscription: Subscription | None
    ) -> dict[str, Any]:
        ...
