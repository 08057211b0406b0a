"""Async RevenueCat REST client (subscriber lookups only)."""

from __future__ import annotations

from typing import Any

import httpx

from bergvlei.config import settings

REVENUECAT_API_URL = "https://api.revenuecat.com/v1"


class RevenueCatAPIError(Exception):
    """Raised on transport failures and non-404 error responses."""


class RevenueCatClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = REVENUECAT_API_URL,
        timeout: float = 10.0,
    ):
        self.api_key = api_key if api_key is not None else settings.REVENUECAT_API_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_subscriber(self, app_user_id: str) -> dict[str, Any] | None:
        """Fetch ``/subscribers/{app_user_id}``; None when RevenueCat has no such subscriber.

        Raises:
            RevenueCatAPIError: when unconfigured, unreachable, or erroring.
        """
        if not self.api_key:
            raise RevenueCatAPIError("RevenueCat API key not configured")

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            ) as client:
                response = await client.get(f"/subscribers/{app_user_id}")
        except httpx.HTTPError as exc:
            raise RevenueCatAPIError(f"RevenueCat request failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.is_error:
            raise RevenueCatAPIError(
                f"RevenueCat API error: {response.status_code} {response.reason_phrase}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RevenueCatAPIError("RevenueCat returned a non-JSON body") from exc
