"""Riddle API router -- /api/v1/riddles/*."""

from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from bergvlei.api.dependencies import get_current_user, get_riddle_service, success
from bergvlei.api.schemas import (
    AIHintResponse,
    AnswerResultResponse,
    AnswerValidationResponse,
    HintResponse,
    RiddleResponse,
    SavedRiddleResponse,
    SaveRiddleResponse,
    StatsResponse,
)
from bergvlei.models import User
from bergvlei.services.riddle_service import RiddleService

router = APIRouter(prefix="/api/v1/riddles", tags=["riddles"])

Difficulty = Literal["EASY", "MEDIUM", "HARD", "EXPERT"]


# ---------------------------------------------------------------------------
# Request bodies (the mobile client sends camelCase)
# ---------------------------------------------------------------------------

class SubmitAnswerRequest(BaseModel):
    riddle_id: UUID = Field(..., alias="riddleId")
    answer: str = Field(..., min_length=1)
    time_spent: Optional[int] = Field(default=None, alias="timeSpent", ge=0)
    hints_used: Optional[int] = Field(default=None, alias="hintsUsed", ge=0)

    model_config = {"populate_by_name": True}


class ValidateAnswerRequest(BaseModel):
    riddle_id: UUID = Field(..., alias="riddleId")
    answer: str = Field(..., min_length=1)

    model_config = {"populate_by_name": True}


class SaveRiddleRequest(BaseModel):
    riddle_id: UUID = Field(..., alias="riddleId")

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("")
async def get_riddle(
    difficulty: Optional[Difficulty] = Query(default=None),
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    """Serve an unsolved riddle, consuming one slot of the daily quota."""
    riddle = await service.get_riddle(current_user.user_id, difficulty)
    return success({"riddle": RiddleResponse.model_validate(riddle)})


@router.post("/submit")
async def submit_answer(
    body: SubmitAnswerRequest,
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    result = await service.submit_answer(
        current_user.user_id,
        body.riddle_id,
        body.answer,
        time_spent=body.time_spent,
        hints_used=body.hints_used,
    )
    return success(AnswerResultResponse.model_validate(result))


@router.get("/stats")
async def get_stats(
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    stats = await service.get_user_stats(current_user.user_id)
    return success({"stats": StatsResponse.model_validate(stats)})


@router.post("/validate-ai")
async def validate_answer_with_ai(
    body: ValidateAnswerRequest,
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    verdict = await service.validate_answer_with_ai(body.riddle_id, body.answer)
    return success(AnswerValidationResponse.model_validate(verdict))


@router.get("/generate-ai")
async def generate_ai_riddle(
    difficulty: Optional[Difficulty] = Query(default=None),
    category: Optional[str] = Query(default=None, max_length=50),
    custom_answer: Optional[str] = Query(default=None, alias="customAnswer", max_length=100),
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    """Generate a fresh riddle with the AI model; counts against the daily quota."""
    riddle = await service.generate_ai_riddle(
        current_user.user_id,
        difficulty=difficulty,
        category=category,
        custom_answer=custom_answer,
    )
    return success({"riddle": RiddleResponse.model_validate(riddle)})


@router.post("/save-custom")
async def save_custom_riddle(
    body: SaveRiddleRequest,
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    result = await service.save_custom_riddle(current_user.user_id, body.riddle_id)
    return success(SaveRiddleResponse.model_validate(result))


@router.get("/saved-riddles")
async def get_saved_riddles(
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    saved = await service.get_saved_riddles(current_user.user_id)
    return success(
        {"savedRiddles": [SavedRiddleResponse.model_validate(riddle) for riddle in saved]}
    )


@router.get("/{riddle_id}/hint")
async def get_hint(
    riddle_id: UUID,
    hint_number: int = Query(..., alias="hintNumber"),
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    hint = await service.get_hint(current_user.user_id, riddle_id, hint_number)
    return success(HintResponse.model_validate(hint))


@router.get("/{riddle_id}/ai-hint")
async def get_ai_hint(
    riddle_id: UUID,
    current_user: User = Depends(get_current_user),
    service: RiddleService = Depends(get_riddle_service),
) -> dict:
    """AI-generated hint for an open attempt (premium only)."""
    hint = await service.generate_ai_hint(current_user.user_id, riddle_id)
    return success(AIHintResponse.model_validate(hint))
