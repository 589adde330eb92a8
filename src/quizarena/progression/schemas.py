"""Pydantic request and response models for progression endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from quizarena.achievements.criteria import GameContext
from quizarena.progression.xp_calculator import GameSummary


# --- Requests ---


class GameSummaryRequest(BaseModel):
    correct_answers: int = Field(ge=0)
    total_questions: int = Field(ge=0)
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    avg_time_per_question: float | None = Field(default=None, ge=0)
    is_perfect_game: bool | None = None
    has_active_streak: bool = False
    score: int | None = Field(default=None, ge=0)
    category_id: int | None = Field(default=None, gt=0)
    time_taken_seconds: float | None = Field(default=None, ge=0)
    is_multiplayer: bool = False
    won: bool | None = None
    event_id: str | None = None

    def to_summary(self) -> GameSummary:
        return GameSummary(**self.model_dump())


class XpGrantRequest(BaseModel):
    earned_xp: int = Field(gt=0)


class AchievementCheckRequest(GameSummaryRequest):
    correct_answers: int = Field(default=0, ge=0)
    total_questions: int = Field(default=0, ge=0)
    occurred_at: datetime | None = None
    current_streak: int | None = Field(default=None, ge=0)
    leaderboard_rank: int | None = Field(default=None, ge=1)
    leaderboard_window: Literal["daily", "weekly", "monthly", "all_time"] | None = None

    def to_context(self) -> GameContext:
        occurred_at = self.occurred_at or datetime.now(timezone.utc)
        summary = GameSummary(**self.model_dump(exclude={
            "occurred_at", "current_streak", "leaderboard_rank", "leaderboard_window",
        }))
        return GameContext.from_summary(
            summary,
            occurred_at,
            current_streak=self.current_streak,
            leaderboard_rank=self.leaderboard_rank,
            leaderboard_window=self.leaderboard_window,
        )


# --- Progression ---


class RecentAchievement(BaseModel):
    code: str
    name: str
    rarity: str | None = None
    earned_at: datetime


class ProgressionResponse(BaseModel):
    user_id: int
    level: int
    total_xp: int
    current_level_xp: int
    title: str
    level_progress: float
    next_level_xp: int | None = None
    recent_achievements: list[RecentAchievement] = []


class XpBreakdownResponse(BaseModel):
    earned_xp: int
    base_xp: int
    difficulty_multiplier: float
    bonus_multiplier: float
    bonuses: list[str]
    rules: str


class XpGrantResponse(BaseModel):
    user_id: int
    total_xp: int
    earned_xp: int
    level: int
    previous_level: int
    leveled_up: bool
    title: str
    current_level_xp: int
    level_progress: float
    next_level_xp: int | None = None


# --- Achievements ---


class UnlockedAchievement(BaseModel):
    code: str
    name: str
    description: str
    category: str
    rarity: str
    xp_reward: int
    earned_at: datetime


class AchievementCheckResponse(BaseModel):
    new_achievements: list[UnlockedAchievement]


class AchievementStatus(BaseModel):
    code: str
    name: str
    description: str
    category: str
    rarity: str
    xp_reward: int
    earned: bool
    earned_at: datetime | None = None
    progress: float
    track_progress: bool


class UserAchievementsResponse(BaseModel):
    user_id: int
    categories: dict[str, list[AchievementStatus]]
    total_earned: int
    total_available: int
    completion: float


class GameCompletionResponse(BaseModel):
    user_id: int
    xp: XpBreakdownResponse
    progression: dict
    new_achievements: list[UnlockedAchievement]
    current_streak: int
    score: int


# --- Statistics ---


class StatisticsResponse(BaseModel):
    user_id: int
    games_played: int
    games_won: int
    win_rate: float
    perfect_games: int
    questions_answered: int
    correct_answers: int
    accuracy: float
    total_score: int
    average_score: float
    total_time_seconds: float
    fastest_avg_seconds: float | None = None
    multiplayer_games: int
    achievements_earned: int
    current_streak: int
    longest_streak: int
    last_activity_at: datetime | None = None
    total_xp: int


# --- Leaderboards ---


class LeaderboardPeriod(BaseModel):
    start: datetime
    end: datetime


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: int
    username: str
    level: int
    title: str | None = None
    score: int
    xp_earned: int
    games_played: int


class LeaderboardResponse(BaseModel):
    window_type: str
    category_id: int | None = None
    period: LeaderboardPeriod
    entries: list[LeaderboardEntryResponse]
    total: int
    limit: int
    offset: int


class UserRankResponse(BaseModel):
    user_id: int
    window_type: str
    category_id: int | None = None
    rank: int | None = None
    score: int
    xp_earned: int
    games_played: int
    percentile: float
    total_entries: int


class TopPlayerResponse(BaseModel):
    rank: int
    user_id: int
    username: str
    total_xp: int
    level: int
    title: str


class TopPlayersResponse(BaseModel):
    players: list[TopPlayerResponse]
