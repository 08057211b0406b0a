"""Response bodies for the mobile client.

Services hand back plain dicts with snake_case keys; the routers validate
them into these models, which serialise with the client's camelCase names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class UserResponse(CamelModel):
    user_id: str = Field(alias="id")
    email: str
    username: Optional[str] = None
    is_premium: bool
    subscription_tier: str
    riddles_per_day_limit: int
    total_riddles_solved: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    created_at: Optional[str] = None


class AuthResponse(CamelModel):
    user: UserResponse
    token: str


# ---------------------------------------------------------------------------
# Riddles
# ---------------------------------------------------------------------------

class RiddleResponse(CamelModel):
    riddle_id: str = Field(alias="id")
    question: str
    difficulty: str
    category: Optional[str] = None
    hints_available: int
    is_ai_generated: bool = Field(default=False, alias="isAIGenerated")


class SavedRiddleResponse(RiddleResponse):
    saved_at: Optional[datetime] = None


class AnswerResultResponse(CamelModel):
    correct: bool
    answer: Optional[str] = None
    message: str


class HintResponse(CamelModel):
    hint: str
    hint_number: int
    total_hints: int


class AIHintResponse(CamelModel):
    hint: str
    confidence: float
    is_ai_generated: bool = Field(default=True, alias="isAIGenerated")


class AnswerValidationResponse(CamelModel):
    is_correct: bool
    similarity: float
    feedback: str


class SaveRiddleResponse(CamelModel):
    riddle_id: str
    saved: bool
    message: str


class StatsResponse(CamelModel):
    total_riddles_solved: int
    total_attempts: int
    total_hints_used: int
    total_time_spent: int
    current_streak: int
    longest_streak: int


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

class LeaderboardEntryResponse(CamelModel):
    user_id: str
    username: str
    score: int
    riddles_solved: int
    rank: int


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------

class SubscriptionRecordResponse(CamelModel):
    subscription_id: str
    provider: str
    state: str
    status: Optional[str] = None
    tier: Optional[str] = None
    product_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SubscriptionStatusResponse(CamelModel):
    subscription: Optional[SubscriptionRecordResponse] = None
    state: str
    is_premium: bool
    tier: str
    riddles_per_day_limit: int
    provider: str
    # Provider payloads are passed through untouched
    provider_data: Optional[dict[str, Any]] = None
    has_active_entitlements: bool = False


class CheckoutResponse(CamelModel):
    session_id: Optional[str] = None
    url: Optional[str] = None


class PortalResponse(CamelModel):
    url: str
