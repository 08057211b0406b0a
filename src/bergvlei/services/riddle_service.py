"""Riddle delivery and scoring.

Serving a riddle:
1. Load the player, 404 if absent
2. Reserve a daily quota slot (free tier only) with one atomic Redis script;
   fall back to the durable ``riddles_today_*`` columns if Redis is down
3. Pick the least-attempted active riddle the player has not solved
4. Bump the riddle's serve counter, open an attempt, mirror the daily count

Submitting an answer closes out the latest open attempt.  A correct answer
also updates the riddle, the player's totals and streak, aggregate stats,
the per-day progress row and every leaderboard period.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from bergvlei.services.ai_service import AIService, AIServiceError, normalize_answer
from bergvlei.services.cache_service import CacheKeys, CacheService, CacheTTL
from bergvlei.services.leaderboard_service import PERIODS, LeaderboardService

logger = logging.getLogger(__name__)

DAILY_LIMIT_MESSAGE = (
    "Daily riddle limit reached. Upgrade to premium for unlimited riddles."
)


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlayerSnapshot:
    """The user columns riddle operations read."""

    user_id: uuid.UUID
    display_name: str
    is_premium: bool
    riddles_per_day_limit: int
    riddles_today_count: int
    riddles_today_date: date | None
    current_streak: int
    longest_streak: int
    last_solved_date: date | None

    def durable_daily_count(self, today: date) -> int:
        if self.riddles_today_date != today:
            return 0
        return self.riddles_today_count


def advance_streak(
    last_solved: date | None, today: date, current: int, longest: int
) -> tuple[int, int]:
    """Return ``(current, longest)`` after a solve on *today*.

    Same day keeps the streak, the next day extends it, any gap resets to 1.
    """
    if last_solved == today:
        new_current = max(current, 1)
    elif last_solved is not None and last_solved == today - timedelta(days=1):
        new_current = current + 1
    else:
        new_current = 1
    return new_current, max(longest, new_current)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _as_hint_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return [str(h) for h in value]


def _riddle_row_to_dict(row) -> dict[str, Any]:
    return {
        "riddle_id": str(row[0]),
        "question": row[1],
        "answer": row[2],
        "difficulty": row[3],
        "category": row[4],
        "hints": _as_hint_list(row[5]),
    }


def riddle_summary(riddle: dict[str, Any]) -> dict[str, Any]:
    """Client-facing view of a riddle; never includes the answer."""
    return {
        "riddle_id": riddle["riddle_id"],
        "question": riddle["question"],
        "difficulty": riddle["difficulty"],
        "category": riddle["category"],
        "hints_available": len(riddle["hints"]),
    }


# ---------------------------------------------------------------------------
# Riddle DB helpers
# ---------------------------------------------------------------------------

_RIDDLE_COLUMNS = "r.riddle_id, r.question, r.answer, r.difficulty, r.category, r.hints"


class RiddleRepository:
    """Encapsulates database operations for riddles, attempts, and progress."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def load_player(self, user_id: uuid.UUID) -> PlayerSnapshot | None:
        result = await self._db.execute(
            text(
                "SELECT user_id, COALESCE(username, email), is_premium, "
                "riddles_per_day_limit, riddles_today_count, riddles_today_date, "
                "current_streak, longest_streak, last_solved_date "
                "FROM users WHERE user_id = :user_id"
            ),
            {"user_id": user_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return PlayerSnapshot(
            user_id=row[0],
            display_name=row[1],
            is_premium=row[2],
            riddles_per_day_limit=row[3],
            riddles_today_count=row[4],
            riddles_today_date=row[5],
            current_streak=row[6],
            longest_streak=row[7],
            last_solved_date=row[8],
        )

    async def pick_candidate(
        self, user_id: uuid.UUID, difficulty: str | None = None
    ) -> dict[str, Any] | None:
        """Least-attempted active riddle the user has not solved yet."""
        params: dict[str, Any] = {"user_id": user_id}
        difficulty_clause = ""
        if difficulty is not None:
            difficulty_clause = "AND r.difficulty = :difficulty "
            params["difficulty"] = difficulty

        result = await self._db.execute(
            text(
                f"SELECT {_RIDDLE_COLUMNS} FROM riddles r "
                "WHERE r.is_active = TRUE "
                f"{difficulty_clause}"
                "AND NOT EXISTS ("
                "SELECT 1 FROM riddle_attempts a "
                "WHERE a.user_id = :user_id AND a.riddle_id = r.riddle_id "
                "AND a.solved = TRUE) "
                "ORDER BY r.times_attempted ASC "
                "LIMIT 1"
            ),
            params,
        )
        row = result.fetchone()
        return _riddle_row_to_dict(row) if row is not None else None

    async def get_riddle(self, riddle_id: uuid.UUID) -> dict[str, Any] | None:
        result = await self._db.execute(
            text(f"SELECT {_RIDDLE_COLUMNS} FROM riddles r WHERE r.riddle_id = :riddle_id"),
            {"riddle_id": riddle_id},
        )
        row = result.fetchone()
        return _riddle_row_to_dict(row) if row is not None else None

    async def mark_served(self, riddle_id: uuid.UUID) -> None:
        await self._db.execute(
            text(
                "UPDATE riddles SET times_attempted = times_attempted + 1 "
                "WHERE riddle_id = :riddle_id"
            ),
            {"riddle_id": riddle_id},
        )

    async def open_attempt(self, user_id: uuid.UUID, riddle_id: uuid.UUID) -> uuid.UUID:
        attempt_id = uuid.uuid4()
        await self._db.execute(
            text(
                "INSERT INTO riddle_attempts (attempt_id, user_id, riddle_id, started_at) "
                "VALUES (:attempt_id, :user_id, :riddle_id, :now)"
            ),
            {
                "attempt_id": attempt_id,
                "user_id": user_id,
                "riddle_id": riddle_id,
                "now": datetime.now(timezone.utc),
            },
        )
        return attempt_id

    async def record_daily_serve(self, user_id: uuid.UUID, today: date) -> None:
        """Mirror the daily counter into the users row (resets on a new day)."""
        await self._db.execute(
            text(
                "UPDATE users SET "
                "riddles_today_count = CASE WHEN riddles_today_date = :today "
                "THEN riddles_today_count + 1 ELSE 1 END, "
                "riddles_today_date = :today "
                "WHERE user_id = :user_id"
            ),
            {"user_id": user_id, "today": today},
        )

    async def find_open_attempt(
        self, user_id: uuid.UUID, riddle_id: uuid.UUID
    ) -> dict[str, Any] | None:
        """Most recently started unsolved attempt, if any."""
        result = await self._db.execute(
            text(
                "SELECT attempt_id, hints_used FROM riddle_attempts "
                "WHERE user_id = :user_id AND riddle_id = :riddle_id AND solved = FALSE "
                "ORDER BY started_at DESC LIMIT 1"
            ),
            {"user_id": user_id, "riddle_id": riddle_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return {"attempt_id": row[0], "hints_used": row[1] or 0}

    async def close_attempt(
        self,
        attempt_id: uuid.UUID,
        solved: bool,
        hints_used: int,
        time_spent: int | None,
    ) -> None:
        await self._db.execute(
            text(
                "UPDATE riddle_attempts SET "
                "solved = :solved, attempts = attempts + 1, hints_used = :hints_used, "
                "time_spent = :time_spent, "
                "completed_at = CASE WHEN :solved THEN :now ELSE completed_at END "
                "WHERE attempt_id = :attempt_id"
            ),
            {
                "attempt_id": attempt_id,
                "solved": solved,
                "hints_used": hints_used,
                "time_spent": time_spent,
                "now": datetime.now(timezone.utc),
            },
        )

    async def mark_solved(self, riddle_id: uuid.UUID) -> None:
        await self._db.execute(
            text(
                "UPDATE riddles SET times_solved = times_solved + 1 "
                "WHERE riddle_id = :riddle_id"
            ),
            {"riddle_id": riddle_id},
        )

    async def record_user_solve(
        self,
        user_id: uuid.UUID,
        today: date,
        current_streak: int,
        longest_streak: int,
    ) -> int:
        """Bump the user's solve total and store the new streak.

        Returns the new total.
        """
        result = await self._db.execute(
            text(
                "UPDATE users SET "
                "total_riddles_solved = total_riddles_solved + 1, "
                "current_streak = :current_streak, "
                "longest_streak = :longest_streak, "
                "last_solved_date = :today, "
                "updated_at = now() "
                "WHERE user_id = :user_id "
                "RETURNING total_riddles_solved"
            ),
            {
                "user_id": user_id,
                "today": today,
                "current_streak": current_streak,
                "longest_streak": longest_streak,
            },
        )
        return result.scalar_one()

    async def update_stats(
        self, user_id: uuid.UUID, hints_used: int, time_spent: int
    ) -> None:
        await self._db.execute(
            text(
                "UPDATE user_stats SET "
                "total_riddles_solved = total_riddles_solved + 1, "
                "total_attempts = total_attempts + 1, "
                "total_hints_used = total_hints_used + :hints_used, "
                "total_time_spent = total_time_spent + :time_spent, "
                "updated_at = now() "
                "WHERE user_id = :user_id"
            ),
            {"user_id": user_id, "hints_used": hints_used, "time_spent": time_spent},
        )

    async def upsert_daily_progress(self, user_id: uuid.UUID, today: date) -> None:
        await self._db.execute(
            text(
                "INSERT INTO daily_progress "
                "(progress_id, user_id, date, riddles_solved, riddles_attempted) "
                "VALUES (:progress_id, :user_id, :today, 1, 1) "
                "ON CONFLICT (user_id, date) DO UPDATE SET "
                "riddles_solved = daily_progress.riddles_solved + 1, "
                "riddles_attempted = daily_progress.riddles_attempted + 1"
            ),
            {"progress_id": uuid.uuid4(), "user_id": user_id, "today": today},
        )

    async def get_stats(self, user_id: uuid.UUID) -> dict[str, Any] | None:
        result = await self._db.execute(
            text(
                "SELECT s.total_riddles_solved, s.total_attempts, s.total_hints_used, "
                "s.total_time_spent, u.current_streak, u.longest_streak "
                "FROM user_stats s JOIN users u ON u.user_id = s.user_id "
                "WHERE s.user_id = :user_id"
            ),
            {"user_id": user_id},
        )
        row = result.fetchone()
        if row is None:
            return None
        return {
            "total_riddles_solved": row[0],
            "total_attempts": row[1],
            "total_hints_used": row[2],
            "total_time_spent": row[3],
            "current_streak": row[4] or 0,
            "longest_streak": row[5] or 0,
        }

    async def create_riddle(
        self,
        question: str,
        answer: str,
        difficulty: str,
        category: str | None,
        hints: list[str],
        created_by: uuid.UUID,
    ) -> dict[str, Any]:
        riddle_id = uuid.uuid4()
        await self._db.execute(
            text(
                "INSERT INTO riddles "
                "(riddle_id, question, answer, difficulty, category, hints, "
                "is_active, ai_generated, created_by) "
                "VALUES (:riddle_id, :question, :answer, :difficulty, :category, "
                "CAST(:hints AS JSONB), TRUE, TRUE, :created_by)"
            ),
            {
                "riddle_id": riddle_id,
                "question": question,
                "answer": answer,
                "difficulty": difficulty,
                "category": category,
                "hints": json.dumps(hints),
                "created_by": created_by,
            },
        )
        return {
            "riddle_id": str(riddle_id),
            "question": question,
            "answer": answer,
            "difficulty": difficulty,
            "category": category,
            "hints": list(hints),
        }

    async def save_riddle(self, user_id: uuid.UUID, riddle_id: uuid.UUID) -> bool:
        """Add to the user's collection. Returns False if already saved."""
        result = await self._db.execute(
            text(
                "INSERT INTO saved_riddles (saved_id, user_id, riddle_id) "
                "VALUES (:saved_id, :user_id, :riddle_id) "
                "ON CONFLICT (user_id, riddle_id) DO NOTHING "
                "RETURNING saved_id"
            ),
            {"saved_id": uuid.uuid4(), "user_id": user_id, "riddle_id": riddle_id},
        )
        return result.fetchone() is not None

    async def list_saved(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        result = await self._db.execute(
            text(
                f"SELECT {_RIDDLE_COLUMNS}, s.saved_at "
                "FROM saved_riddles s JOIN riddles r ON r.riddle_id = s.riddle_id "
                "WHERE s.user_id = :user_id "
                "ORDER BY s.saved_at DESC"
            ),
            {"user_id": user_id},
        )
        saved = []
        for row in result.fetchall():
            riddle = _riddle_row_to_dict(row)
            riddle["saved_at"] = row[6]
            saved.append(riddle)
        return saved


# ---------------------------------------------------------------------------
# RiddleService
# ---------------------------------------------------------------------------

class RiddleService:
    """Riddle operations for one request; collaborators are injected."""

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheService,
        leaderboard: LeaderboardService,
        ai: AIService,
        repo: RiddleRepository | None = None,
    ) -> None:
        self.cache = cache
        self.leaderboard = leaderboard
        self.ai = ai
        self.repo = repo or RiddleRepository(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _require_player(self, user_id: uuid.UUID) -> PlayerSnapshot:
        player = await self.repo.load_player(user_id)
        if player is None:
            raise HTTPException(status_code=404, detail="User not found")
        return player

    async def _require_riddle(self, riddle_id: uuid.UUID) -> dict[str, Any]:
        key = CacheKeys.riddle(riddle_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        riddle = await self.repo.get_riddle(riddle_id)
        if riddle is None:
            raise HTTPException(status_code=404, detail="Riddle not found")
        await self.cache.set(key, riddle, CacheTTL.MEDIUM)
        return riddle

    # ------------------------------------------------------------------
    # Daily quota
    # ------------------------------------------------------------------

    async def _reserve_quota(self, player: PlayerSnapshot, today: date) -> bool:
        """Take a slot for a free-tier player, raising 403 when exhausted.

        Returns True when a Redis slot was reserved and must be released if
        the serve does not go through.
        """
        if player.is_premium:
            return False

        limit = player.riddles_per_day_limit
        served = player.durable_daily_count(today)
        reserved = await self.cache.reserve_daily_slot(player.user_id, limit, served)
        if reserved is None:
            # Redis unavailable; the durable mirror is advisory only
            if served >= limit:
                raise HTTPException(status_code=403, detail=DAILY_LIMIT_MESSAGE)
            return False
        if reserved < 0:
            raise HTTPException(status_code=403, detail=DAILY_LIMIT_MESSAGE)
        return True

    async def _release_quota(self, player: PlayerSnapshot, reserved: bool) -> None:
        if reserved:
            await self.cache.release_daily_slot(player.user_id)

    async def _record_serve(self, player: PlayerSnapshot, today: date) -> None:
        if player.is_premium:
            await self.cache.increment_daily_riddle_count(player.user_id)
        await self.repo.record_daily_serve(player.user_id, today)

    # ------------------------------------------------------------------
    # Serving and scoring
    # ------------------------------------------------------------------

    async def get_riddle(
        self, user_id: uuid.UUID, difficulty: str | None = None
    ) -> dict[str, Any]:
        player = await self._require_player(user_id)
        today = utc_today()
        reserved = await self._reserve_quota(player, today)

        riddle = await self.repo.pick_candidate(user_id, difficulty)
        if riddle is None:
            await self._release_quota(player, reserved)
            raise HTTPException(
                status_code=404,
                detail="No riddles available. Try a different difficulty level.",
            )

        riddle_id = uuid.UUID(riddle["riddle_id"])
        try:
            await self.repo.mark_served(riddle_id)
            await self.repo.open_attempt(user_id, riddle_id)
            await self._record_serve(player, today)
        except Exception:
            await self._release_quota(player, reserved)
            raise

        logger.info("Served riddle %s to user %s", riddle_id, user_id)
        return riddle_summary(riddle)

    async def submit_answer(
        self,
        user_id: uuid.UUID,
        riddle_id: uuid.UUID,
        answer: str,
        time_spent: int | None = None,
        hints_used: int | None = None,
    ) -> dict[str, Any]:
        riddle = await self._require_riddle(riddle_id)

        attempt = await self.repo.find_open_attempt(user_id, riddle_id)
        if attempt is None:
            raise HTTPException(
                status_code=404,
                detail="No active attempt found for this riddle",
            )

        correct = normalize_answer(answer) == normalize_answer(riddle["answer"])
        await self.repo.close_attempt(
            attempt["attempt_id"], correct, hints_used or 0, time_spent
        )

        if correct:
            await self._record_solve(user_id, riddle_id, hints_used or 0, time_spent or 0)

        return {
            "correct": correct,
            "answer": riddle["answer"] if correct else None,
            "message": "Correct! Well done!" if correct else "Incorrect. Try again!",
        }

    async def _record_solve(
        self,
        user_id: uuid.UUID,
        riddle_id: uuid.UUID,
        hints_used: int,
        time_spent: int,
    ) -> None:
        player = await self._require_player(user_id)
        today = utc_today()
        current, longest = advance_streak(
            player.last_solved_date, today, player.current_streak, player.longest_streak
        )

        await self.repo.mark_solved(riddle_id)
        total = await self.repo.record_user_solve(user_id, today, current, longest)
        await self.repo.update_stats(user_id, hints_used, time_spent)
        await self.repo.upsert_daily_progress(user_id, today)

        for period in PERIODS:
            await self.leaderboard.add_score(user_id, player.display_name, total, period)

        await self.cache.delete(CacheKeys.user_stats(user_id))
        logger.info(
            "User %s solved riddle %s (total=%d, streak=%d)",
            user_id, riddle_id, total, current,
        )

    async def get_hint(
        self, user_id: uuid.UUID, riddle_id: uuid.UUID, hint_number: int
    ) -> dict[str, Any]:
        player = await self._require_player(user_id)
        riddle = await self._require_riddle(riddle_id)
        hints = riddle["hints"]

        if hint_number < 0 or hint_number >= len(hints):
            raise HTTPException(status_code=400, detail="Invalid hint number")
        if not player.is_premium and hint_number > 0:
            raise HTTPException(
                status_code=403,
                detail="Upgrade to premium to access more hints",
            )

        return {
            "hint": hints[hint_number],
            "hint_number": hint_number,
            "total_hints": len(hints),
        }

    async def get_user_stats(self, user_id: uuid.UUID) -> dict[str, Any]:
        key = CacheKeys.user_stats(user_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        stats = await self.repo.get_stats(user_id)
        if stats is None:
            raise HTTPException(status_code=404, detail="User stats not found")

        await self.cache.set(key, stats, CacheTTL.MEDIUM)
        return stats

    # ------------------------------------------------------------------
    # AI-assisted operations
    # ------------------------------------------------------------------

    async def generate_ai_hint(
        self, user_id: uuid.UUID, riddle_id: uuid.UUID
    ) -> dict[str, Any]:
        player = await self._require_player(user_id)
        riddle = await self._require_riddle(riddle_id)

        attempt = await self.repo.find_open_attempt(user_id, riddle_id)
        if attempt is None:
            raise HTTPException(
                status_code=404,
                detail="No active attempt found for this riddle",
            )
        if not player.is_premium:
            raise HTTPException(
                status_code=403,
                detail="Upgrade to premium to access AI-powered hints",
            )

        previous_hints = riddle["hints"][: attempt["hints_used"]]
        try:
            ai_hint = await self.ai.generate_hint(
                riddle=riddle["question"],
                answer=riddle["answer"],
                previous_hints=previous_hints,
                difficulty=riddle["difficulty"],
            )
        except AIServiceError:
            logger.exception("AI hint generation failed for riddle %s", riddle_id)
            raise HTTPException(status_code=500, detail="Failed to generate AI hint")

        return {
            "hint": ai_hint.hint,
            "confidence": ai_hint.confidence,
            "is_ai_generated": True,
        }

    async def validate_answer_with_ai(
        self, riddle_id: uuid.UUID, answer: str
    ) -> dict[str, Any]:
        """Fuzzy answer check; degrades to exact matching if the AI fails."""
        riddle = await self._require_riddle(riddle_id)

        try:
            verdict = await self.ai.validate_answer(answer, riddle["answer"])
        except AIServiceError:
            logger.warning("AI validation unavailable, using exact match")
            correct = normalize_answer(answer) == normalize_answer(riddle["answer"])
            return {
                "is_correct": correct,
                "similarity": 1.0 if correct else 0.0,
                "feedback": "Correct!" if correct else "Incorrect",
            }

        return {
            "is_correct": verdict.is_correct,
            "similarity": verdict.similarity,
            "feedback": verdict.feedback,
        }

    async def generate_ai_riddle(
        self,
        user_id: uuid.UUID,
        difficulty: str | None = None,
        category: str | None = None,
        custom_answer: str | None = None,
    ) -> dict[str, Any]:
        player = await self._require_player(user_id)
        today = utc_today()
        reserved = await self._reserve_quota(player, today)
        difficulty = difficulty or "MEDIUM"

        try:
            generated = await self.ai.generate_riddle(
                difficulty=difficulty,
                category=category,
                custom_answer=custom_answer,
            )
        except AIServiceError:
            logger.exception("AI riddle generation failed for user %s", user_id)
            await self._release_quota(player, reserved)
            raise HTTPException(status_code=500, detail="Failed to generate AI riddle")

        try:
            riddle = await self.repo.create_riddle(
                question=generated.question,
                answer=generated.answer,
                difficulty=difficulty,
                category=generated.category,
                hints=generated.hints,
                created_by=user_id,
            )
            riddle_id = uuid.UUID(riddle["riddle_id"])
            await self.repo.open_attempt(user_id, riddle_id)
            await self._record_serve(player, today)
        except Exception:
            await self._release_quota(player, reserved)
            raise

        logger.info("Generated AI riddle %s for user %s", riddle_id, user_id)
        summary = riddle_summary(riddle)
        summary["is_ai_generated"] = True
        return summary

    # ------------------------------------------------------------------
    # Saved riddles
    # ------------------------------------------------------------------

    async def save_custom_riddle(
        self, user_id: uuid.UUID, riddle_id: uuid.UUID
    ) -> dict[str, Any]:
        await self._require_riddle(riddle_id)
        created = await self.repo.save_riddle(user_id, riddle_id)
        return {
            "riddle_id": str(riddle_id),
            "saved": True,
            "message": "Riddle saved successfully" if created else "Riddle already saved",
        }

    async def get_saved_riddles(self, user_id: uuid.UUID) -> list[dict[str, Any]]:
        saved = await self.repo.list_saved(user_id)
        return [
            {**riddle_summary(riddle), "saved_at": riddle["saved_at"]}
            for riddle in saved
        ]
