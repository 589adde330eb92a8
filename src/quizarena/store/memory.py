"""In-process store.

Every method completes without yielding to the event loop, so each call is
atomic with respect to other coroutines. Data does not survive a restart.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence
from datetime import datetime, timezone

from quizarena.achievements.catalog import AchievementDefinition
from quizarena.progression.level_table import LevelBand
from quizarena.store.base import (
    EarnedAchievement,
    LeaderboardRow,
    ProgressionRecord,
    ProgressionStore,
    StatisticsRecord,
)

_BoardKey = tuple[str, int | None, datetime]


class MemoryStore(ProgressionStore):
    def __init__(self) -> None:
        self._users: dict[int, str] = {}
        self._progression: dict[int, ProgressionRecord] = {}
        self._statistics: dict[int, StatisticsRecord] = {}
        self._bands: dict[int, LevelBand] = {}
        self._definitions: dict[str, AchievementDefinition] = {}
        self._earned: dict[int, dict[str, EarnedAchievement]] = {}
        self._progress: dict[int, dict[str, float]] = {}
        self._boards: dict[_BoardKey, dict[int, LeaderboardRow]] = {}

    # --- Users ---

    async def ensure_user(self, user_id: int, username: str | None = None) -> None:
        if username:
            self._users[user_id] = username
        else:
            self._users.setdefault(user_id, f"player{user_id}")

    async def get_usernames(self, user_ids: Sequence[int]) -> dict[int, str]:
        return {uid: self._users[uid] for uid in user_ids if uid in self._users}

    # --- Progression ---

    async def get_progression(self, user_id: int) -> ProgressionRecord | None:
        record = self._progression.get(user_id)
        return dataclasses.replace(record) if record else None

    async def get_progressions(self, user_ids: Sequence[int]) -> dict[int, ProgressionRecord]:
        return {
            uid: dataclasses.replace(self._progression[uid])
            for uid in user_ids
            if uid in self._progression
        }

    async def increment_total_xp(self, user_id: int, amount: int) -> tuple[int, int]:
        self._users.setdefault(user_id, f"player{user_id}")
        record = self._progression.get(user_id)
        if record is None:
            record = ProgressionRecord(user_id=user_id, updated_at=datetime.now(timezone.utc))
            self._progression[user_id] = record
        previous = record.total_xp
        record.total_xp += amount
        return previous, record.total_xp

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
        record = self._progression.get(user_id)
        if record is None or record.total_xp != total_xp:
            return False
        record.level = level
        record.title = title
        record.current_level_xp = current_level_xp
        record.level_progress = level_progress
        record.updated_at = datetime.now(timezone.utc)
        return True

    async def list_top_progressions(self, limit: int) -> list[ProgressionRecord]:
        ordered = sorted(self._progression.values(), key=lambda r: (-r.total_xp, r.user_id))
        return [dataclasses.replace(r) for r in ordered[:limit]]

    # --- Statistics ---

    async def get_statistics(self, user_id: int) -> StatisticsRecord | None:
        stats = self._statistics.get(user_id)
        return dataclasses.replace(stats) if stats else None

    async def save_statistics(self, stats: StatisticsRecord) -> None:
        self._users.setdefault(stats.user_id, f"player{stats.user_id}")
        current = self._statistics.get(stats.user_id)
        earned = current.achievements_earned if current else 0
        self._statistics[stats.user_id] = dataclasses.replace(stats, achievements_earned=earned)

    async def increment_statistic(self, user_id: int, field: str, amount: int = 1) -> None:
        stats = self._statistics.setdefault(user_id, StatisticsRecord(user_id=user_id))
        setattr(stats, field, getattr(stats, field) + amount)

    async def list_active_users(self, since: datetime) -> list[int]:
        return sorted(
            uid
            for uid, stats in self._statistics.items()
            if stats.last_activity_at is not None and stats.last_activity_at >= since
        )

    # --- Level bands ---

    async def list_level_bands(self) -> list[LevelBand]:
        return [self._bands[level] for level in sorted(self._bands)]

    async def upsert_level_bands(self, bands: Sequence[LevelBand]) -> int:
        for band in bands:
            self._bands[band.level] = band
        return len(bands)

    # --- Achievements ---

    async def list_achievement_definitions(self, active_only: bool = True) -> list[AchievementDefinition]:
        definitions = sorted(self._definitions.values(), key=lambda d: (d.display_order, d.code))
        return [d for d in definitions if d.active or not active_only]

    async def upsert_achievement_definitions(self, definitions: Sequence[AchievementDefinition]) -> int:
        for definition in definitions:
            self._definitions[definition.code] = definition
        return len(definitions)

    async def list_earned_achievements(self, user_id: int, limit: int | None = None) -> list[EarnedAchievement]:
        earned = sorted(
            self._earned.get(user_id, {}).values(),
            key=lambda e: e.earned_at,
            reverse=True,
        )
        return earned[:limit] if limit is not None else earned

    async def grant_achievement(self, user_id: int, code: str, earned_at: datetime) -> bool:
        held = self._earned.setdefault(user_id, {})
        if code in held:
            return False
        held[code] = EarnedAchievement(user_id=user_id, achievement_code=code, earned_at=earned_at)
        return True

    async def mark_achievement_notified(self, user_id: int, code: str) -> None:
        earned = self._earned.get(user_id, {}).get(code)
        if earned is not None:
            earned.notified = True

    async def get_achievement_progress(self, user_id: int) -> dict[str, float]:
        return dict(self._progress.get(user_id, {}))

    async def set_achievement_progress(self, user_id: int, code: str, progress: float, now: datetime) -> None:
        progress_map = self._progress.setdefault(user_id, {})
        progress_map[code] = max(progress_map.get(code, 0.0), progress)

    # --- Leaderboards ---

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
        self._users.setdefault(user_id, f"player{user_id}")
        board = self._boards.setdefault((window_type, category_id, period_start), {})
        row = board.get(user_id)
        if row is None:
            board[user_id] = LeaderboardRow(
                user_id=user_id,
                window_type=window_type,
                category_id=category_id,
                period_start=period_start,
                period_end=period_end,
                score=score,
                xp_earned=xp_earned,
                games_played=1,
                created_at=now,
            )
            return
        row.score += score
        row.xp_earned += xp_earned
        row.games_played += 1

    def _sorted_board(self, window_type: str, category_id: int | None, period_start: datetime) -> list[LeaderboardRow]:
        board = self._boards.get((window_type, category_id, period_start), {})
        return sorted(board.values(), key=lambda r: r.sort_key)

    async def list_leaderboard(
        self,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
        limit: int,
        offset: int,
    ) -> list[LeaderboardRow]:
        rows = self._sorted_board(window_type, category_id, period_start)
        return [dataclasses.replace(r) for r in rows[offset:offset + limit]]

    async def count_leaderboard(self, window_type: str, category_id: int | None, period_start: datetime) -> int:
        return len(self._boards.get((window_type, category_id, period_start), {}))

    async def get_leaderboard_row(
        self,
        user_id: int,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
    ) -> LeaderboardRow | None:
        row = self._boards.get((window_type, category_id, period_start), {}).get(user_id)
        return dataclasses.replace(row) if row else None

    async def count_ranked_ahead(self, row: LeaderboardRow) -> int:
        board = self._boards.get((row.window_type, row.category_id, row.period_start), {})
        return sum(1 for other in board.values() if other.sort_key < row.sort_key)

    async def delete_leaderboard_before(self, window_type: str, cutoff: datetime) -> int:
        deleted = 0
        for key in list(self._boards):
            if key[0] != window_type:
                continue
            board = self._boards[key]
            if board and next(iter(board.values())).period_end < cutoff:
                deleted += len(board)
                del self._boards[key]
        return deleted
