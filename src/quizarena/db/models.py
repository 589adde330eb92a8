"""ORM models for progression, achievements and leaderboards.

Schema ownership lives with the platform's migration tooling; these models
only describe the tables the SQL store reads and writes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from quizarena.db.base import Base, BigIntId, JsonDocument

# Category value stored for the global (all categories) leaderboard rows.
# NULL would defeat the unique constraint, so the store maps None <-> 0.
GLOBAL_CATEGORY = 0


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Identity mirror. Issuance and profile data live upstream."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------


class UserProgression(Base):
    """Authoritative XP aggregate. level/title/progress are derived from total_xp."""

    __tablename__ = "user_progression"
    __table_args__ = (
        Index("ix_user_progression_total_xp", "total_xp"),
        {"extend_existing": True},
    )

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_level_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    level_progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class UserStatistics(Base):
    """Lifetime gameplay counters and streak state."""

    __tablename__ = "user_statistics"
    __table_args__ = (
        Index("ix_user_statistics_last_activity_at", "last_activity_at"),
        {"extend_existing": True},
    )

    user_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    games_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    games_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    perfect_games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    questions_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_time_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    fastest_avg_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    multiplayer_games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    achievements_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    previous_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LevelBand(Base):
    """Inclusive XP range per level."""

    __tablename__ = "level_bands"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    level: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    min_xp: Mapped[int] = mapped_column(Integer, nullable=False)
    max_xp: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    perks: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementDefinition(Base):
    """Catalog entry. criteria = {"type": ..., "threshold": ..., "options": {...}}."""

    __tablename__ = "achievement_definitions"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    criteria: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    track_progress: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UserAchievement(Base):
    """Earned achievements. UNIQUE(user_id, achievement_code) prevents duplicates."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_code", name="user_achievements_user_code_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_code: Mapped[str] = mapped_column(String(64), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class AchievementProgress(Base):
    """Partial progress (0-100) towards tracked achievements."""

    __tablename__ = "achievement_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_code", name="achievement_progress_user_code_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_code: Mapped[str] = mapped_column(String(64), nullable=False)
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class LeaderboardEntry(Base):
    """Per-period accumulation. Rank is derived at read time, never stored."""

    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "window_type", "category_id", "period_start",
            name="leaderboard_entries_user_window_category_period_key",
        ),
        Index("ix_leaderboard_entries_ranking", "window_type", "category_id", "period_start", "score"),
        Index("ix_leaderboard_entries_period_end", "window_type", "period_end"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    window_type: Mapped[str] = mapped_column(String(16), nullable=False)
    category_id: Mapped[int] = mapped_column(Integer, nullable=False, default=GLOBAL_CATEGORY)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    games_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
