"""Tests for riddle serving, scoring and the daily quota.

The repository, cache, leaderboard and AI service are all mocked; these
tests cover the orchestration in RiddleService, not SQL.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from bergvlei.services.ai_service import AIHint, AIServiceError, GeneratedRiddle
from bergvlei.services.riddle_service import (
    DAILY_LIMIT_MESSAGE,
    PlayerSnapshot,
    RiddleService,
    advance_streak,
    riddle_summary,
)

TODAY = date(2024, 3, 10)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _player(**overrides) -> PlayerSnapshot:
    values = dict(
        user_id=uuid.uuid4(),
        display_name="player1",
        is_premium=False,
        riddles_per_day_limit=5,
        riddles_today_count=0,
        riddles_today_date=None,
        current_streak=0,
        longest_streak=0,
        last_solved_date=None,
    )
    values.update(overrides)
    return PlayerSnapshot(**values)


def _riddle(riddle_id: uuid.UUID | None = None, hints: list[str] | None = None) -> dict:
    return {
        "riddle_id": str(riddle_id or uuid.uuid4()),
        "question": "What has keys but can't open locks?",
        "answer": "Piano",
        "difficulty": "EASY",
        "category": "Objects",
        "hints": hints if hints is not None else ["Music", "Black and white", "88 keys"],
    }


def _service(player: PlayerSnapshot | None = None):
    repo = AsyncMock()
    repo.load_player.return_value = player or _player()
    repo.record_user_solve.return_value = 1

    cache = AsyncMock()
    cache.get.return_value = None
    cache.reserve_daily_slot.return_value = 1

    leaderboard = AsyncMock()
    ai = MagicMock()
    service = RiddleService(MagicMock(), cache, leaderboard, ai, repo=repo)
    return service, repo, cache, leaderboard, ai


@pytest.fixture(autouse=True)
def _fixed_today():
    with patch("bergvlei.services.riddle_service.utc_today", return_value=TODAY):
        yield


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "last, current, longest, expected",
    [
        (None, 0, 0, (1, 1)),
        (TODAY, 3, 5, (3, 5)),
        (TODAY - timedelta(days=1), 3, 3, (4, 4)),
        (TODAY - timedelta(days=2), 7, 9, (1, 9)),
    ],
)
def test_advance_streak(last, current, longest, expected):
    assert advance_streak(last, TODAY, current, longest) == expected


def test_durable_count_resets_on_new_day():
    player = _player(riddles_today_count=4, riddles_today_date=TODAY - timedelta(days=1))
    assert player.durable_daily_count(TODAY) == 0
    assert _player(riddles_today_count=4, riddles_today_date=TODAY).durable_daily_count(TODAY) == 4


def test_riddle_summary_hides_answer():
    summary = riddle_summary(_riddle())
    assert "answer" not in summary
    assert summary["hints_available"] == 3


# ---------------------------------------------------------------------------
# Serving and the daily quota
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_free_player_is_served_and_quota_recorded():
    service, repo, cache, _, _ = _service()
    riddle = _riddle()
    repo.pick_candidate.return_value = riddle

    result = await service.get_riddle(repo.load_player.return_value.user_id, "EASY")

    assert result["riddle_id"] == riddle["riddle_id"]
    assert "answer" not in result
    cache.reserve_daily_slot.assert_awaited_once()
    cache.increment_daily_riddle_count.assert_not_awaited()
    repo.mark_served.assert_awaited_once_with(uuid.UUID(riddle["riddle_id"]))
    repo.open_attempt.assert_awaited_once()
    repo.record_daily_serve.assert_awaited_once()
    assert repo.record_daily_serve.call_args.args[1] == TODAY


@pytest.mark.asyncio
async def test_free_player_over_limit_is_refused():
    service, repo, cache, _, _ = _service()
    cache.reserve_daily_slot.return_value = -1

    with pytest.raises(HTTPException) as exc_info:
        await service.get_riddle(uuid.uuid4())

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == DAILY_LIMIT_MESSAGE
    repo.pick_candidate.assert_not_awaited()
    repo.open_attempt.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_down_falls_back_to_durable_counter():
    player = _player(riddles_today_count=5, riddles_today_date=TODAY)
    service, repo, cache, _, _ = _service(player)
    cache.reserve_daily_slot.return_value = None

    with pytest.raises(HTTPException) as exc_info:
        await service.get_riddle(player.user_id)

    assert exc_info.value.status_code == 403
    repo.pick_candidate.assert_not_awaited()


@pytest.mark.asyncio
async def test_redis_down_with_room_left_still_serves():
    player = _player(riddles_today_count=2, riddles_today_date=TODAY)
    service, repo, cache, _, _ = _service(player)
    cache.reserve_daily_slot.return_value = None
    repo.pick_candidate.return_value = _riddle()

    await service.get_riddle(player.user_id)

    repo.open_attempt.assert_awaited_once()
    cache.release_daily_slot.assert_not_awaited()


@pytest.mark.asyncio
async def test_premium_player_skips_quota():
    player = _player(is_premium=True, riddles_per_day_limit=999999)
    service, repo, cache, _, _ = _service(player)
    repo.pick_candidate.return_value = _riddle()

    await service.get_riddle(player.user_id)

    cache.reserve_daily_slot.assert_not_awaited()
    cache.increment_daily_riddle_count.assert_awaited_once_with(player.user_id)


@pytest.mark.asyncio
async def test_no_candidate_releases_reserved_slot():
    service, repo, cache, _, _ = _service()
    repo.pick_candidate.return_value = None

    with pytest.raises(HTTPException) as exc_info:
        await service.get_riddle(uuid.uuid4(), "EXPERT")

    assert exc_info.value.status_code == 404
    cache.release_daily_slot.assert_awaited_once()
    repo.record_daily_serve.assert_not_awaited()



@pytest.mark.asyncio
async def test_quota_counter_is_seeded_with_todays_durable_count():
    player = _player(riddles_today_count=3, riddles_today_date=TODAY)
    service, repo, cache, _, _ = _service(player)
    repo.pick_candidate.return_value = _riddle()

    await service.get_riddle(player.user_id)

    cache.reserve_daily_slot.assert_awaited_once_with(player.user_id, 5, 3)


@pytest.mark.asyncio
async def test_database_failure_after_reserve_releases_slot():
    service, repo, cache, _, _ = _service()
    repo.pick_candidate.return_value = _riddle()
    repo.open_attempt.side_effect = SQLAlchemyError("connection lost")

    with pytest.raises(SQLAlchemyError):
        await service.get_riddle(uuid.uuid4())

    cache.release_daily_slot.assert_awaited_once()
    repo.record_daily_serve.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_user_is_404():
    service, repo, _, _, _ = _service()
    repo.load_player.return_value = None

    with pytest.raises(HTTPException) as exc_info:
        await service.get_riddle(uuid.uuid4())

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "User not found"


# ---------------------------------------------------------------------------
# Submitting answers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_correct_answer_updates_streak_stats_and_leaderboards():
    player = _player(current_streak=2, longest_streak=2, last_solved_date=TODAY - timedelta(days=1))
    service, repo, cache, leaderboard, _ = _service(player)
    riddle = _riddle()
    repo.get_riddle.return_value = riddle
    repo.find_open_attempt.return_value = {"attempt_id": uuid.uuid4(), "hints_used": 0}
    repo.record_user_solve.return_value = 12

    result = await service.submit_answer(
        player.user_id, uuid.UUID(riddle["riddle_id"]), "  piano ", time_spent=30, hints_used=1
    )

    assert result["correct"] is True
    assert result["answer"] == "Piano"
    repo.record_user_solve.assert_awaited_once_with(player.user_id, TODAY, 3, 3)
    repo.update_stats.assert_awaited_once_with(player.user_id, 1, 30)
    repo.upsert_daily_progress.assert_awaited_once_with(player.user_id, TODAY)
    periods = [c.args[3] for c in leaderboard.add_score.await_args_list]
    assert periods == ["daily", "weekly", "monthly", "alltime"]
    assert all(c.args[2] == 12 for c in leaderboard.add_score.await_args_list)
    cache.delete.assert_awaited_once_with(f"user:stats:{player.user_id}")


@pytest.mark.asyncio
async def test_wrong_answer_only_closes_attempt():
    service, repo, _, leaderboard, _ = _service()
    riddle = _riddle()
    repo.get_riddle.return_value = riddle
    attempt_id = uuid.uuid4()
    repo.find_open_attempt.return_value = {"attempt_id": attempt_id, "hints_used": 0}

    result = await service.submit_answer(uuid.uuid4(), uuid.UUID(riddle["riddle_id"]), "organ")

    assert result == {"correct": False, "answer": None, "message": "Incorrect. Try again!"}
    repo.close_attempt.assert_awaited_once_with(attempt_id, False, 0, None)
    repo.record_user_solve.assert_not_awaited()
    leaderboard.add_score.assert_not_awaited()


@pytest.mark.asyncio
async def test_submit_without_open_attempt_is_404():
    service, repo, _, _, _ = _service()
    repo.get_riddle.return_value = _riddle()
    repo.find_open_attempt.return_value = None

    with pytest.raises(HTTPException) as exc_info:
        await service.submit_answer(uuid.uuid4(), uuid.uuid4(), "piano")

    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_cached_riddle_skips_database():
    service, repo, cache, _, _ = _service()
    cache.get.return_value = _riddle()
    repo.find_open_attempt.return_value = None

    with pytest.raises(HTTPException):
        await service.submit_answer(uuid.uuid4(), uuid.uuid4(), "piano")

    repo.get_riddle.assert_not_awaited()


# ---------------------------------------------------------------------------
# Hints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_free_player_gets_first_hint_only():
    service, repo, _, _, _ = _service()
    repo.get_riddle.return_value = _riddle()

    first = await service.get_hint(uuid.uuid4(), uuid.uuid4(), 0)
    assert first == {"hint": "Music", "hint_number": 0, "total_hints": 3}

    with pytest.raises(HTTPException) as exc_info:
        await service.get_hint(uuid.uuid4(), uuid.uuid4(), 1)
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_hint_number_out_of_range_is_400():
    service, repo, _, _, _ = _service(_player(is_premium=True))
    repo.get_riddle.return_value = _riddle()

    with pytest.raises(HTTPException) as exc_info:
        await service.get_hint(uuid.uuid4(), uuid.uuid4(), 3)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_ai_hint_checks_attempt_before_premium():
    service, repo, _, _, _ = _service()
    repo.get_riddle.return_value = _riddle()
    repo.find_open_attempt.return_value = None

    with pytest.raises(HTTPException) as exc_info:
        await service.generate_ai_hint(uuid.uuid4(), uuid.uuid4())
    assert exc_info.value.status_code == 404

    repo.find_open_attempt.return_value = {"attempt_id": uuid.uuid4(), "hints_used": 0}
    with pytest.raises(HTTPException) as exc_info:
        await service.generate_ai_hint(uuid.uuid4(), uuid.uuid4())
    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_ai_hint_for_premium_player_passes_used_hints():
    service, repo, _, _, ai = _service(_player(is_premium=True))
    repo.get_riddle.return_value = _riddle()
    repo.find_open_attempt.return_value = {"attempt_id": uuid.uuid4(), "hints_used": 2}
    ai.generate_hint = AsyncMock(return_value=AIHint(hint="Think of a concert.", confidence=0.8))

    result = await service.generate_ai_hint(uuid.uuid4(), uuid.uuid4())

    assert result == {"hint": "Think of a concert.", "confidence": 0.8, "is_ai_generated": True}
    assert ai.generate_hint.call_args.kwargs["previous_hints"] == ["Music", "Black and white"]


@pytest.mark.asyncio
async def test_ai_hint_failure_is_500():
    service, repo, _, _, ai = _service(_player(is_premium=True))
    repo.get_riddle.return_value = _riddle()
    repo.find_open_attempt.return_value = {"attempt_id": uuid.uuid4(), "hints_used": 0}
    ai.generate_hint = AsyncMock(side_effect=AIServiceError("down"))

    with pytest.raises(HTTPException) as exc_info:
        await service.generate_ai_hint(uuid.uuid4(), uuid.uuid4())
    assert exc_info.value.status_code == 500


# ---------------------------------------------------------------------------
# AI validation and generation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_validation_falls_back_to_exact_match():
    service, repo, _, _, ai = _service()
    repo.get_riddle.return_value = _riddle()
    ai.validate_answer = AsyncMock(side_effect=AIServiceError("down"))

    result = await service.validate_answer_with_ai(uuid.uuid4(), "PIANO")

    assert result == {"is_correct": True, "similarity": 1.0, "feedback": "Correct!"}


@pytest.mark.asyncio
async def test_generated_riddle_is_stored_and_counted():
    service, repo, cache, _, ai = _service()
    ai.generate_riddle = AsyncMock(
        return_value=GeneratedRiddle(
            question="What runs but never walks?", answer="River", hints=["a", "b", "c"], category="Nature"
        )
    )
    stored = _riddle()
    stored.update(question="What runs but never walks?", answer="River", category="Nature")
    repo.create_riddle.return_value = stored

    result = await service.generate_ai_riddle(uuid.uuid4(), None, "Nature")

    assert result["is_ai_generated"] is True
    assert result["question"] == "What runs but never walks?"
    assert repo.create_riddle.call_args.kwargs["difficulty"] == "MEDIUM"
    repo.open_attempt.assert_awaited_once()
    repo.record_daily_serve.assert_awaited_once()


@pytest.mark.asyncio
async def test_generation_failure_releases_slot():
    service, repo, cache, _, ai = _service()
    ai.generate_riddle = AsyncMock(side_effect=AIServiceError("down"))

    with pytest.raises(HTTPException) as exc_info:
        await service.generate_ai_riddle(uuid.uuid4())

    assert exc_info.value.status_code == 500
    cache.release_daily_slot.assert_awaited_once()
    repo.create_riddle.assert_not_awaited()



@pytest.mark.asyncio
async def test_storing_generated_riddle_failure_releases_slot():
    service, repo, cache, _, ai = _service()
    ai.generate_riddle = AsyncMock(
        return_value=GeneratedRiddle(
            question="What runs but never walks?",
            answer="River",
            hints=["Water"],
            category="Nature",
        )
    )
    repo.create_riddle.side_effect = SQLAlchemyError("insert failed")

    with pytest.raises(SQLAlchemyError):
        await service.generate_ai_riddle(uuid.uuid4())

    cache.release_daily_slot.assert_awaited_once()
    repo.open_attempt.assert_not_awaited()


# ---------------------------------------------------------------------------
# Saved riddles
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_saving_twice_reports_already_saved():
    service, repo, _, _, _ = _service()
    repo.get_riddle.return_value = _riddle()
    repo.save_riddle.side_effect = [True, False]
    riddle_id = uuid.uuid4()

    first = await service.save_custom_riddle(uuid.uuid4(), riddle_id)
    second = await service.save_custom_riddle(uuid.uuid4(), riddle_id)

    assert first["message"] == "Riddle saved successfully"
    assert second["message"] == "Riddle already saved"
    assert second["saved"] is True
