"""Subscription lifecycle state machine.

States: FREE -> ACTIVE <-> CANCEL_PENDING, with BILLING_ISSUE and EXPIRED
reachable from any paid state.  ``next_state`` is the only place transition
legality is decided; the reconciler refuses anything it rejects.
"""

from __future__ import annotations

from enum import Enum


class SubscriptionState(str, Enum):
    FREE = "FREE"
    ACTIVE = "ACTIVE"
    CANCEL_PENDING = "CANCEL_PENDING"
    EXPIRED = "EXPIRED"
    BILLING_ISSUE = "BILLING_ISSUE"


class BillingEventType(str, Enum):
    ACTIVATE = "activate"
    RENEW = "renew"
    CANCEL = "cancel"
    UNCANCEL = "uncancel"
    ONE_TIME_PURCHASE = "one_time_purchase"
    EXPIRE = "expire"
    BILLING_ISSUE = "billing_issue"
    PRODUCT_CHANGE = "product_change"


# States in which the user holds the premium entitlement
PREMIUM_STATES = frozenset(
    {
        SubscriptionState.ACTIVE,
        SubscriptionState.CANCEL_PENDING,
        SubscriptionState.BILLING_ISSUE,
    }
)

_ANY = frozenset(SubscriptionState)
_PAID = PREMIUM_STATES

# event -> (legal source states, target state); a None target keeps the state
TRANSITIONS: dict[BillingEventType, tuple[frozenset[SubscriptionState], SubscriptionState | None]] = {
    BillingEventType.ACTIVATE: (_ANY, SubscriptionState.ACTIVE),
    BillingEventType.RENEW: (_PAID | {SubscriptionState.EXPIRED}, SubscriptionState.ACTIVE),
    BillingEventType.CANCEL: (_PAID, SubscriptionState.CANCEL_PENDING),
    BillingEventType.UNCANCEL: (
        frozenset({SubscriptionState.CANCEL_PENDING, SubscriptionState.ACTIVE}),
        SubscriptionState.ACTIVE,
    ),
    BillingEventType.ONE_TIME_PURCHASE: (_ANY, None),
    BillingEventType.EXPIRE: (_PAID | {SubscriptionState.EXPIRED}, SubscriptionState.EXPIRED),
    BillingEventType.BILLING_ISSUE: (_PAID, SubscriptionState.BILLING_ISSUE),
    BillingEventType.PRODUCT_CHANGE: (_PAID, None),
}


def next_state(
    current: SubscriptionState, event_type: BillingEventType
) -> SubscriptionState | None:
    """Target state for *event_type* from *current*, or None if illegal."""
    sources, target = TRANSITIONS[event_type]
    if current not in sources:
        return None
    return current if target is None else target


def is_premium(state: SubscriptionState) -> bool:
    return state in PREMIUM_STATES
