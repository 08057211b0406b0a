"""ORM models package -- re-exports all models and the Base class."""

from bergvlei.models.base import Base
from bergvlei.models.user import User, UserStats, DailyProgress
from bergvlei.models.riddle import Riddle, RiddleAttempt, SavedRiddle
from bergvlei.models.subscription import Subscription, ProcessedWebhook
from bergvlei.models.leaderboard import LeaderboardRecord

__all__ = [
    "Base",
    "User",
    "UserStats",
    "DailyProgress",
    "Riddle",
    "RiddleAttempt",
    "SavedRiddle",
    "Subscription",
    "ProcessedWebhook",
    "LeaderboardRecord",
]
