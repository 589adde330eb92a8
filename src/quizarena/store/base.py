"""Authoritative store interface.

Two backends implement it: ``MemoryStore`` (single process, tests and the
simplified deployment) and ``SqlStore`` (SQLAlchemy async, PostgreSQL in
production). The backend is picked once in ``build_container``.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from quizarena.achievements.catalog import AchievementDefinition
from quizarena.progression.level_table import LevelBand

DEFAULT_TITLE = "Novice"


@dataclass
class ProgressionRecord:
    user_id: int
    total_xp: int = 0
    current_level_xp: int = 0
    level: int = 1
    title: str = DEFAULT_TITLE
    level_progress: float = 0.0
    updated_at: datetime | None = None


@dataclass
class StatisticsRecord:
    user_id: int
    games_played: int = 0
    games_won: int = 0
    perfect_games: int = 0
    questions_answered: int = 0
    correct_answers: int = 0
    total_score: int = 0
    total_time_seconds: float = 0.0
    fastest_avg_seconds: float | None = None
    multiplayer_games: int = 0
    achievements_earned: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_at: datetime | None = None
    previous_activity_at: datetime | None = None

    @property
    def accuracy(self) -> float:
        if self.questions_answered <= 0:
            return 0.0
        return self.correct_answers / self.questions_answered * 100


@dataclass
class EarnedAchievement:
    user_id: int
    achievement_code: str
    earned_at: datetime
    notified: bool = False


@dataclass
class LeaderboardRow:
    user_id: int
    window_type: str
    category_id: int | None
    period_start: datetime
    period_end: datetime
    score: int
    xp_earned: int
    games_played: int
    created_at: datetime

    @property
    def sort_key(self) -> tuple:
        """Total order: score desc, xp desc, earliest row first, then user id."""
        return (-self.score, -self.xp_earned, self.created_at, self.user_id)


class ProgressionStore(abc.ABC):
    """Persistence operations the services rely on.

    Every method is atomic on its own. Multi-step flows are linearised per
    user by the services, not by the store.
    """

    # --- Users ---

    @abc.abstractmethod
    async def ensure_user(self, user_id: int, username: str | None = None) -> None: ...

    @abc.abstractmethod
    async def get_usernames(self, user_ids: Sequence[int]) -> dict[int, str]: ...

    # --- Progression ---

    @abc.abstractmethod
    async def get_progression(self, user_id: int) -> ProgressionRecord | None: ...

    @abc.abstractmethod
    async def get_progressions(self, user_ids: Sequence[int]) -> dict[int, ProgressionRecord]: ...

    @abc.abstractmethod
    async def increment_total_xp(self, user_id: int, amount: int) -> tuple[int, int]:
        """Add ``amount`` to total_xp atomically. Returns (previous_total, new_total)."""

    @abc.abstractmethod
    async def set_level_state(
        self,
        user_id: int,
        *,
        total_xp: int,
        level: int,
        title: str,
        current_level_xp: int,
        level_progress: float,
    ) -> bool:
        """Write derived level fields only if total_xp still equals ``total_xp``."""

    @abc.abstractmethod
    async def list_top_progressions(self, limit: int) -> list[ProgressionRecord]: ...

    # --- Statistics ---

    @abc.abstractmethod
    async def get_statistics(self, user_id: int) -> StatisticsRecord | None: ...

    @abc.abstractmethod
    async def save_statistics(self, stats: StatisticsRecord) -> None:
        """Write the game counters and streak. achievements_earned is left as stored."""

    @abc.abstractmethod
    async def increment_statistic(self, user_id: int, field: str, amount: int = 1) -> None: ...

    @abc.abstractmethod
    async def list_active_users(self, since: datetime) -> list[int]: ...

    # --- Level bands ---

    @abc.abstractmethod
    async def list_level_bands(self) -> list[LevelBand]: ...

    @abc.abstractmethod
    async def upsert_level_bands(self, bands: Sequence[LevelBand]) -> int: ...

    # --- Achievements ---

    @abc.abstractmethod
    async def list_achievement_definitions(self, active_only: bool = True) -> list[AchievementDefinition]: ...

    @abc.abstractmethod
    async def upsert_achievement_definitions(self, definitions: Sequence[AchievementDefinition]) -> int: ...

    @abc.abstractmethod
    async def list_earned_achievements(self, user_id: int, limit: int | None = None) -> list[EarnedAchievement]:
        """Earned achievements, most recent first."""

    @abc.abstractmethod
    async def grant_achievement(self, user_id: int, code: str, earned_at: datetime) -> bool:
        """Insert-if-absent. Returns False when the user already holds it."""

    @abc.abstractmethod
    async def mark_achievement_notified(self, user_id: int, code: str) -> None:
        """Flag an earned achievement as delivered to at least one live connection."""

    @abc.abstractmethod
    async def get_achievement_progress(self, user_id: int) -> dict[str, float]: ...

    @abc.abstractmethod
    async def set_achievement_progress(self, user_id: int, code: str, progress: float, now: datetime) -> None:
        """Store progress, never lowering a previously stored value."""

    # --- Leaderboards ---

    @abc.abstractmethod
    async def increment_leaderboard_entry(
        self,
        user_id: int,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
        period_end: datetime,
        *,
        score: int,
        xp_earned: int,
        now: datetime,
    ) -> None:
        """Atomic upsert adding score, xp and one game to the row."""

    @abc.abstractmethod
    async def list_leaderboard(
        self,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
        limit: int,
        offset: int,
    ) -> list[LeaderboardRow]: ...

    @abc.abstractmethod
    async def count_leaderboard(self, window_type: str, category_id: int | None, period_start: datetime) -> int: ...

    @abc.abstractmethod
    async def get_leaderboard_row(
        self,
        user_id: int,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
    ) -> LeaderboardRow | None: ...

    @abc.abstractmethod
    async def count_ranked_ahead(self, row: LeaderboardRow) -> int:
        """Rows of the same board that sort strictly before ``row``."""

    @abc.abstractmethod
    async def delete_leaderboard_before(self, window_type: str, cutoff: datetime) -> int:
        """Delete rows whose period ended before ``cutoff``."""

    async def close(self) -> None:  # noqa: B027
        """Release backend resources."""
