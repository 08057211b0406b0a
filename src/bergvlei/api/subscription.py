"""Subscription API router -- /api/v1/subscription/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from bergvlei.api.dependencies import (
    get_current_user,
    get_subscription_service,
    success,
)
from bergvlei.api.schemas import (
    CheckoutResponse,
    PortalResponse,
    SubscriptionStatusResponse,
)
from bergvlei.models import User
from bergvlei.services.billing.subscription_service import SubscriptionService

router = APIRouter(prefix="/api/v1/subscription", tags=["subscription"])


@router.get("/status")
async def get_status(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    status = await service.get_status(current_user.user_id)
    return success(SubscriptionStatusResponse.model_validate(status))


@router.post("/sync")
async def sync_subscription(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    """Pull the provider's view after a purchase and return the updated status."""
    status = await service.sync(current_user.user_id)
    return success(SubscriptionStatusResponse.model_validate(status))


@router.post("/webhook")
async def webhook(
    request: Request,
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    """Receive provider webhooks.

    Unauthenticated; the provider verifies the raw body and headers.  The
    bare ``{"received": true}`` acknowledgement is what providers expect.
    """
    body = await request.body()
    return await service.process_webhook(body, request.headers)


@router.post("/checkout")
async def create_checkout(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    session = await service.create_checkout(current_user.user_id, current_user.email)
    return success(CheckoutResponse.model_validate(session))


@router.post("/portal")
async def create_portal(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> dict:
    portal = await service.create_portal(current_user.user_id)
    return success(PortalResponse.model_validate(portal))


@router.get("/offerings")
async def get_offerings(current_user: User = Depends(get_current_user)) -> dict:
    return success(SubscriptionService.offerings())
