"""Per-user gameplay statistics and daily streaks.

Streak days are calendar days in the reference timezone:
same day keeps the streak, the next day extends it, any gap resets it to 1.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from quizarena.cache.keys import statistics_key
from quizarena.cache.service import TieredCache
from quizarena.progression.locks import KeyedLock
from quizarena.progression.xp_calculator import GameSummary, validate_summary
from quizarena.store.base import ProgressionStore, StatisticsRecord

logger = logging.getLogger(__name__)

WIN_ACCURACY = 50.0


def next_streak(current: int, last_day: date | None, today: date) -> int:
    if last_day is None or current <= 0:
        return 1
    gap = (today - last_day).days
    if gap <= 0:
        return current
    if gap == 1:
        return current + 1
    return 1


def is_win(summary: GameSummary) -> bool:
    """Explicit result when reported, else at least half the answers right."""
    if summary.won is not None:
        return summary.won
    return summary.total_questions > 0 and summary.accuracy >= WIN_ACCURACY


class StatisticsService:
    def __init__(
        self,
        store: ProgressionStore,
        cache: TieredCache,
        locks: KeyedLock,
        *,
        timezone_name: str = "UTC",
        cache_ttl: int = 300,
    ) -> None:
        self._store = store
        self._cache = cache
        self._locks = locks
        self._tz = ZoneInfo(timezone_name)
        self._cache_ttl = cache_ttl

    def _local_day(self, moment: datetime) -> date:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self._tz).date()

    async def record_game(self, user_id: int, summary: GameSummary, now: datetime | None = None) -> StatisticsRecord:
        """Fold one finished game into the user's statistics. Returns the new record."""
        validate_summary(summary)
        now = now or datetime.now(timezone.utc)

        async with self._locks.hold(user_id):
            stats = await self._store.get_statistics(user_id) or StatisticsRecord(user_id=user_id)
            last_day = self._local_day(stats.last_activity_at) if stats.last_activity_at else None
            streak = next_streak(stats.current_streak, last_day, self._local_day(now))

            avg = summary.average_seconds
            fastest = stats.fastest_avg_seconds
            if avg is not None and summary.total_questions > 0 and (fastest is None or avg < fastest):
                fastest = avg

            updated = replace(
                stats,
                games_played=stats.games_played + 1,
                games_won=stats.games_won + (1 if is_win(summary) else 0),
                perfect_games=stats.perfect_games + (1 if summary.perfect else 0),
                questions_answered=stats.questions_answered + summary.total_questions,
                correct_answers=stats.correct_answers + summary.correct_answers,
                total_score=stats.total_score + (summary.score or 0),
                total_time_seconds=stats.total_time_seconds + (summary.time_taken_seconds or 0.0),
                fastest_avg_seconds=fastest,
                multiplayer_games=stats.multiplayer_games + (1 if summary.is_multiplayer else 0),
                current_streak=streak,
                longest_streak=max(stats.longest_streak, streak),
                previous_activity_at=stats.last_activity_at,
                last_activity_at=now,
            )
            await self._store.save_statistics(updated)

        await self._cache.delete(statistics_key(user_id))
        return updated

    def streak_advanced(self, stats: StatisticsRecord) -> bool:
        """True when the game that produced ``stats`` was the first of its local day."""
        if stats.last_activity_at is None:
            return False
        if stats.previous_activity_at is None:
            return True
        return self._local_day(stats.previous_activity_at) != self._local_day(stats.last_activity_at)

    async def build_statistics(self, user_id: int) -> dict[str, Any]:
        """Uncached statistics view, straight from the store."""
        stats = await self._store.get_statistics(user_id) or StatisticsRecord(user_id=user_id)
        progression = await self._store.get_progression(user_id)
        played = stats.games_played
        return {
            "user_id": user_id,
            "games_played": played,
            "games_won": stats.games_won,
            "win_rate": round(stats.games_won / played * 100, 2) if played else 0.0,
            "perfect_games": stats.perfect_games,
            "questions_answered": stats.questions_answered,
            "correct_answers": stats.correct_answers,
            "accuracy": round(stats.accuracy, 2),
            "total_score": stats.total_score,
            "average_score": round(stats.total_score / played, 2) if played else 0.0,
            "total_time_seconds": stats.total_time_seconds,
            "fastest_avg_seconds": stats.fastest_avg_seconds,
            "multiplayer_games": stats.multiplayer_games,
            "achievements_earned": stats.achievements_earned,
            "current_streak": stats.current_streak,
            "longest_streak": stats.longest_streak,
            "last_activity_at": stats.last_activity_at.isoformat() if stats.last_activity_at else None,
            "total_xp": progression.total_xp if progression else 0,
        }

    async def get_user_statistics(self, user_id: int) -> dict[str, Any]:
        return await self._cache.get_with_refresh(
            statistics_key(user_id),
            lambda: self.build_statistics(user_id),
            ttl=self._cache_ttl,
        )

    async def invalidate(self, user_id: int) -> None:
        await self._cache.delete(statistics_key(user_id))
