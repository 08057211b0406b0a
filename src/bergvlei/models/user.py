"""User account, aggregate stats and daily progress models."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bergvlei.models.base import Base

if TYPE_CHECKING:
    from bergvlei.models.riddle import RiddleAttempt, SavedRiddle
    from bergvlei.models.subscription import Subscription


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(
        String(20), unique=True, nullable=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(
        String(20), default="FREE", nullable=False
    )
    riddles_per_day_limit: Mapped[int] = mapped_column(
        Integer, default=5, nullable=False
    )
    riddles_today_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    riddles_today_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_riddles_solved: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_solved_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    reset_password_token: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    reset_password_expires: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('FREE', 'PREMIUM')",
            name="ck_users_subscription_tier",
        ),
    )

    # Relationships
    stats: Mapped[Optional[UserStats]] = relationship(
        back_populates="user", lazy="raise", uselist=False
    )
    daily_progress: Mapped[list[DailyProgress]] = relationship(
        back_populates="user", lazy="raise"
    )
    attempts: Mapped[list[RiddleAttempt]] = relationship(
        back_populates="user", lazy="raise"
    )
    saved_riddles: Mapped[list[SavedRiddle]] = relationship(
        back_populates="user", lazy="raise"
    )
    subscriptions: Mapped[list[Subscription]] = relationship(
        back_populates="user", lazy="raise"
    )


class UserStats(Base):
    __tablename__ = "user_stats"

    stats_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id"), unique=True, nullable=False
    )
    total_riddles_solved: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_hints_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_time_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    user: Mapped[User] = relationship(back_populates="stats")


class DailyProgress(Base):
    __tablename__ = "daily_progress"

    progress_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.user_id"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    riddles_solved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    riddles_attempted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_progress_user_date"),
    )

    user: Mapped[User] = relationship(back_populates="daily_progress")
