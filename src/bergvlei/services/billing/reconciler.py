"""Subscription reconciler -- applies billing events through the state machine.

For each event:
1. Resolve the owning user (directly, or via the provider subscription id)
2. Ask ``next_state`` whether the event is legal from the current state
3. Illegal: audit-log and stop, leaving subscription and user untouched
4. Legal: upsert the latest Subscription row, set the user's entitlement,
   and drop the cached profile
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog

from bergvlei.config import settings
from bergvlei.models import Subscription
from bergvlei.services.audit_logger import AuditLogger
from bergvlei.services.billing.interface import BillingEvent
from bergvlei.services.billing.repository import SubscriptionRepository
from bergvlei.services.billing.subscription_state import (
    BillingEventType,
    SubscriptionState,
    is_premium,
    next_state,
)
from bergvlei.services.cache_service import CacheKeys, CacheService

log = structlog.get_logger()

_STATUS_BY_STATE = {
    SubscriptionState.FREE: "ACTIVE",
    SubscriptionState.ACTIVE: "ACTIVE",
    SubscriptionState.CANCEL_PENDING: "ACTIVE",
    SubscriptionState.EXPIRED: "EXPIRED",
    SubscriptionState.BILLING_ISSUE: "EXPIRED",
}

_CLEARS_CANCEL_FLAG = frozenset(
    {BillingEventType.ACTIVATE, BillingEventType.RENEW, BillingEventType.UNCANCEL}
)


def status_for(state: SubscriptionState, provider_status: str | None = None) -> str:
    """Client-facing status column for *state*."""
    if provider_status in ("TRIAL", "CANCELED"):
        return provider_status
    return _STATUS_BY_STATE[state]


class SubscriptionReconciler:
    def __init__(
        self,
        repo: SubscriptionRepository,
        cache: CacheService,
        audit: AuditLogger | None = None,
        free_limit: int | None = None,
        premium_limit: int | None = None,
    ) -> None:
        self.repo = repo
        self.cache = cache
        self.audit = audit or AuditLogger()
        self.free_limit = free_limit or settings.FREE_DAILY_RIDDLE_LIMIT
        self.premium_limit = premium_limit or settings.PREMIUM_DAILY_RIDDLE_LIMIT

    async def current_state(
        self, user_id: uuid.UUID
    ) -> tuple[Subscription | None, SubscriptionState]:
        record = await self.repo.latest_for_user(user_id)
        if record is None:
            return None, SubscriptionState.FREE
        return record, SubscriptionState(record.state)

    async def ensure_record(self, user_id: uuid.UUID, provider: str) -> Subscription:
        """Latest record for *user_id*, creating a FREE one if there is none."""
        record = await self.repo.latest_for_user(user_id)
        if record is None:
            record = await self.repo.create_free_record(user_id, provider)
        return record

    async def _resolve(
        self, event: BillingEvent
    ) -> tuple[uuid.UUID | None, Subscription | None]:
        if event.user_id is not None:
            return event.user_id, await self.repo.latest_for_user(event.user_id)
        if event.provider_subscription_id:
            record = await self.repo.find_by_provider_subscription(
                event.provider_subscription_id
            )
            if record is not None:
                return record.user_id, record
        return None, None

    async def apply(self, event: BillingEvent) -> bool:
        """Apply *event*; returns False when it was ignored or rejected."""
        user_id, record = await self._resolve(event)
        if user_id is None:
            log.warning(
                "billing_event_unresolved",
                provider=event.provider,
                kind=event.kind.value,
                provider_subscription_id=event.provider_subscription_id,
            )
            return False

        current = SubscriptionState(record.state) if record else SubscriptionState.FREE
        target = next_state(current, event.kind)
        if target is None:
            self.audit.log_rejected_transition(
                user_id, current.value, event.kind.value, event.provider, event.event_id
            )
            return False

        if record is None:
            record = await self.repo.create_free_record(user_id, event.provider)

        self._update_record(record, event, target)
        await self.repo.flush()

        premium = is_premium(target)
        await self.repo.set_entitlement(
            user_id,
            premium,
            "PREMIUM" if premium else "FREE",
            self.premium_limit if premium else self.free_limit,
        )
        await self.cache.delete(CacheKeys.user_profile(user_id))

        if event.kind is BillingEventType.ONE_TIME_PURCHASE:
            self.audit.log_one_time_purchase(user_id, event.product_id, event.provider)
        else:
            self.audit.log_subscription_transition(
                user_id,
                current.value,
                target.value,
                event.kind.value,
                event.provider,
                event.event_id,
            )
        return True

    @staticmethod
    def _update_record(
        record: Subscription, event: BillingEvent, target: SubscriptionState
    ) -> None:
        premium = is_premium(target)
        record.provider = event.provider
        record.state = target.value
        record.tier = "PREMIUM" if premium else "FREE"
        record.status = status_for(target, event.provider_status)

        if event.kind is BillingEventType.CANCEL:
            record.cancel_at_period_end = True
        elif event.kind in _CLEARS_CANCEL_FLAG:
            record.cancel_at_period_end = False

        if event.provider_subscription_id and event.provider == "stripe":
            record.stripe_subscription_id = event.provider_subscription_id
        if event.customer_id:
            record.stripe_customer_id = event.customer_id
        if event.product_id:
            record.product_id = event.product_id
        if event.period_start is not None:
            record.current_period_start = event.period_start
        if event.period_end is not None:
            record.current_period_end = event.period_end
        record.updated_at = datetime.now(timezone.utc)
