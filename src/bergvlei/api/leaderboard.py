"""Leaderboard API router -- /api/v1/leaderboard/*."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from bergvlei.api.dependencies import get_current_user, get_leaderboard, success
from bergvlei.api.schemas import LeaderboardEntryResponse
from bergvlei.models import User
from bergvlei.services.leaderboard_service import LeaderboardService, normalize_period

router = APIRouter(prefix="/api/v1/leaderboard", tags=["leaderboard"])


def _period_or_400(period: str) -> str:
    try:
        return normalize_period(period)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid leaderboard period")


@router.get("")
async def list_top_players(
    period: str = Query(default="daily"),
    limit: int = Query(default=100, ge=1, le=1000),
    leaderboard: LeaderboardService = Depends(get_leaderboard),
) -> dict:
    """Top players for *period*; public."""
    entries = await leaderboard.get_top_players(_period_or_400(period), limit)
    return success(
        {"leaderboard": [LeaderboardEntryResponse.model_validate(entry) for entry in entries]}
    )


@router.get("/rank")
async def get_user_rank(
    period: str = Query(default="daily"),
    current_user: User = Depends(get_current_user),
    leaderboard: LeaderboardService = Depends(get_leaderboard),
) -> dict:
    rank = await leaderboard.get_user_rank(current_user.user_id, _period_or_400(period))
    return success({"rank": rank})
