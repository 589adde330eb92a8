"""SQLAlchemy async store.

Counters are changed with single atomic statements (``UPDATE ... SET x = x + n``
and ``INSERT ... ON CONFLICT DO UPDATE``) so concurrent writers in other
processes never lose increments. PostgreSQL in production, SQLite in tests.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quizarena.achievements.catalog import AchievementDefinition
from quizarena.db import models
from quizarena.db.models import GLOBAL_CATEGORY
from quizarena.progression.level_table import LevelBand
from quizarena.store.base import (
    DEFAULT_TITLE,
    EarnedAchievement,
    LeaderboardRow,
    ProgressionRecord,
    ProgressionStore,
    StatisticsRecord,
)

logger = logging.getLogger(__name__)

_STAT_FIELDS = (
    "games_played",
    "games_won",
    "perfect_games",
    "questions_answered",
    "correct_answers",
    "total_score",
    "total_time_seconds",
    "fastest_avg_seconds",
    "multiplayer_games",
    "achievements_earned",
    "current_streak",
    "longest_streak",
    "last_activity_at",
    "previous_activity_at",
)

# achievements_earned only moves through increment_statistic.
_STAT_WRITE_FIELDS = tuple(name for name in _STAT_FIELDS if name != "achievements_earned")

_COUNTER_FIELDS = frozenset(
    {
        "games_played",
        "games_won",
        "perfect_games",
        "questions_answered",
        "correct_answers",
        "total_score",
        "multiplayer_games",
        "achievements_earned",
    }
)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_category(category_id: int | None) -> int:
    return GLOBAL_CATEGORY if category_id is None else category_id


def _from_category(category_id: int) -> int | None:
    return None if category_id == GLOBAL_CATEGORY else category_id


def _progression(row: models.UserProgression) -> ProgressionRecord:
    return ProgressionRecord(
        user_id=row.user_id,
        total_xp=row.total_xp,
        current_level_xp=row.current_level_xp,
        level=row.level,
        title=row.title,
        level_progress=row.level_progress,
        updated_at=_aware(row.updated_at),
    )


def _leaderboard_row(row: models.LeaderboardEntry) -> LeaderboardRow:
    return LeaderboardRow(
        user_id=row.user_id,
        window_type=row.window_type,
        category_id=_from_category(row.category_id),
        period_start=_aware(row.period_start),
        period_end=_aware(row.period_end),
        score=row.score,
        xp_earned=row.xp_earned,
        games_played=row.games_played,
        created_at=_aware(row.created_at),
    )


def _definition(row: models.AchievementDefinition) -> AchievementDefinition:
    return AchievementDefinition(
        code=row.code,
        name=row.name,
        description=row.description,
        category=row.category,
        rarity=row.rarity,
        xp_reward=row.xp_reward,
        criteria=dict(row.criteria or {}),
        track_progress=row.track_progress,
        active=row.active,
        display_order=row.display_order,
    )


class SqlStore(ProgressionStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], dialect: str = "postgresql") -> None:
        if dialect not in ("postgresql", "sqlite"):
            msg = f"Unsupported SQL dialect for upserts: {dialect}"
            raise ValueError(msg)
        self._sessions = session_factory
        self._dialect = dialect

    def _insert(self, model: Any) -> Any:
        return sqlite_insert(model) if self._dialect == "sqlite" else pg_insert(model)

    def _greatest(self, *args: Any) -> Any:
        return func.max(*args) if self._dialect == "sqlite" else func.greatest(*args)

    async def _ensure_user(self, db: AsyncSession, user_id: int, username: str | None = None) -> None:
        stmt = self._insert(models.User).values(
            id=user_id,
            username=username or f"player{user_id}",
            created_at=datetime.now(timezone.utc),
        )
        if username:
            stmt = stmt.on_conflict_do_update(index_elements=["id"], set_={"username": username})
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
        await db.execute(stmt)

    # --- Users ---

    async def ensure_user(self, user_id: int, username: str | None = None) -> None:
        async with self._sessions() as db:
            await self._ensure_user(db, user_id, username)
            await db.commit()

    async def get_usernames(self, user_ids: Sequence[int]) -> dict[int, str]:
        if not user_ids:
            return {}
        async with self._sessions() as db:
            result = await db.execute(
                select(models.User.id, models.User.username).where(models.User.id.in_(list(user_ids)))
            )
            return {row.id: row.username for row in result}

    # --- Progression ---

    async def get_progression(self, user_id: int) -> ProgressionRecord | None:
        async with self._sessions() as db:
            row = await db.get(models.UserProgression, user_id)
            return _progression(row) if row else None

    async def get_progressions(self, user_ids: Sequence[int]) -> dict[int, ProgressionRecord]:
        if not user_ids:
            return {}
        async with self._sessions() as db:
            result = await db.execute(
                select(models.UserProgression).where(models.UserProgression.user_id.in_(list(user_ids)))
            )
            return {row.user_id: _progression(row) for row in result.scalars()}

    async def increment_total_xp(self, user_id: int, amount: int) -> tuple[int, int]:
        now = datetime.now(timezone.utc)
        async with self._sessions() as db:
            await self._ensure_user(db, user_id)
            await db.execute(
                self._insert(models.UserProgression)
                .values(
                    user_id=user_id,
                    total_xp=0,
                    current_level_xp=0,
                    level=1,
                    title=DEFAULT_TITLE,
                    level_progress=0.0,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["user_id"])
            )
            result = await db.execute(
                update(models.UserProgression)
                .where(models.UserProgression.user_id == user_id)
                .values(total_xp=models.UserProgression.total_xp + amount, updated_at=now)
                .returning(models.UserProgression.total_xp)
            )
            new_total = result.scalar_one()
            await db.commit()
        return new_total - amount, new_total

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
        async with self._sessions() as db:
            result = await db.execute(
                update(models.UserProgression)
                .where(
                    models.UserProgression.user_id == user_id,
                    models.UserProgression.total_xp == total_xp,
                )
                .values(
                    level=level,
                    title=title,
                    current_level_xp=current_level_xp,
                    level_progress=level_progress,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            await db.commit()
            return result.rowcount == 1

    async def list_top_progressions(self, limit: int) -> list[ProgressionRecord]:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.UserProgression)
                .order_by(models.UserProgression.total_xp.desc(), models.UserProgression.user_id.asc())
                .limit(limit)
            )
            return [_progression(row) for row in result.scalars()]

    # --- Statistics ---

    async def get_statistics(self, user_id: int) -> StatisticsRecord | None:
        async with self._sessions() as db:
            row = await db.get(models.UserStatistics, user_id)
            if row is None:
                return None
            values = {name: getattr(row, name) for name in _STAT_FIELDS}
            values["last_activity_at"] = _aware(values["last_activity_at"])
            values["previous_activity_at"] = _aware(values["previous_activity_at"])
            return StatisticsRecord(user_id=user_id, **values)

    async def save_statistics(self, stats: StatisticsRecord) -> None:
        async with self._sessions() as db:
            await self._ensure_user(db, stats.user_id)
            row = await db.get(models.UserStatistics, stats.user_id)
            if row is None:
                row = models.UserStatistics(user_id=stats.user_id)
                db.add(row)
            for name in _STAT_WRITE_FIELDS:
                setattr(row, name, getattr(stats, name))
            await db.commit()

    async def increment_statistic(self, user_id: int, field: str, amount: int = 1) -> None:
        if field not in _COUNTER_FIELDS:
            msg = f"Not a counter field: {field}"
            raise ValueError(msg)
        column = getattr(models.UserStatistics, field)
        async with self._sessions() as db:
            await self._ensure_user(db, user_id)
            await db.execute(
                self._insert(models.UserStatistics)
                .values(user_id=user_id, **{field: amount})
                .on_conflict_do_update(index_elements=["user_id"], set_={field: column + amount})
            )
            await db.commit()

    async def list_active_users(self, since: datetime) -> list[int]:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.UserStatistics.user_id)
                .where(models.UserStatistics.last_activity_at >= since)
                .order_by(models.UserStatistics.user_id)
            )
            return list(result.scalars())

    # --- Level bands ---

    async def list_level_bands(self) -> list[LevelBand]:
        async with self._sessions() as db:
            result = await db.execute(select(models.LevelBand).order_by(models.LevelBand.level))
            return [
                LevelBand(
                    level=row.level,
                    min_xp=row.min_xp,
                    max_xp=row.max_xp,
                    title=row.title,
                    perks=dict(row.perks or {}),
                )
                for row in result.scalars()
            ]

    async def upsert_level_bands(self, bands: Sequence[LevelBand]) -> int:
        async with self._sessions() as db:
            for band in bands:
                stmt = self._insert(models.LevelBand).values(
                    level=band.level,
                    min_xp=band.min_xp,
                    max_xp=band.max_xp,
                    title=band.title,
                    perks=band.perks,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["level"],
                    set_={
                        "min_xp": stmt.excluded.min_xp,
                        "max_xp": stmt.excluded.max_xp,
                        "title": stmt.excluded.title,
                        "perks": stmt.excluded.perks,
                    },
                )
                await db.execute(stmt)
            await db.commit()
        return len(bands)

    # --- Achievements ---

    async def list_achievement_definitions(self, active_only: bool = True) -> list[AchievementDefinition]:
        query = select(models.AchievementDefinition).order_by(
            models.AchievementDefinition.display_order, models.AchievementDefinition.code
        )
        if active_only:
            query = query.where(models.AchievementDefinition.active.is_(True))
        async with self._sessions() as db:
            result = await db.execute(query)
            return [_definition(row) for row in result.scalars()]

    async def upsert_achievement_definitions(self, definitions: Sequence[AchievementDefinition]) -> int:
        async with self._sessions() as db:
            for definition in definitions:
                stmt = self._insert(models.AchievementDefinition).values(
                    code=definition.code,
                    name=definition.name,
                    description=definition.description,
                    category=definition.category,
                    rarity=definition.rarity,
                    xp_reward=definition.xp_reward,
                    criteria=definition.criteria,
                    track_progress=definition.track_progress,
                    active=definition.active,
                    display_order=definition.display_order,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["code"],
                    set_={
                        "name": stmt.excluded.name,
                        "description": stmt.excluded.description,
                        "category": stmt.excluded.category,
                        "rarity": stmt.excluded.rarity,
                        "xp_reward": stmt.excluded.xp_reward,
                        "criteria": stmt.excluded.criteria,
                        "track_progress": stmt.excluded.track_progress,
                        "active": stmt.excluded.active,
                        "display_order": stmt.excluded.display_order,
                    },
                )
                await db.execute(stmt)
            await db.commit()
        return len(definitions)

    async def list_earned_achievements(self, user_id: int, limit: int | None = None) -> list[EarnedAchievement]:
        query = (
            select(models.UserAchievement)
            .where(models.UserAchievement.user_id == user_id)
            .order_by(models.UserAchievement.earned_at.desc(), models.UserAchievement.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        async with self._sessions() as db:
            result = await db.execute(query)
            return [
                EarnedAchievement(
                    user_id=row.user_id,
                    achievement_code=row.achievement_code,
                    earned_at=_aware(row.earned_at),
                    notified=row.notified,
                )
                for row in result.scalars()
            ]

    async def grant_achievement(self, user_id: int, code: str, earned_at: datetime) -> bool:
        async with self._sessions() as db:
            await self._ensure_user(db, user_id)
            await db.commit()
            db.add(models.UserAchievement(user_id=user_id, achievement_code=code, earned_at=earned_at))
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False  # Already granted by a concurrent writer
        return True

    async def mark_achievement_notified(self, user_id: int, code: str) -> None:
        async with self._sessions() as db:
            await db.execute(
                update(models.UserAchievement)
                .where(
                    models.UserAchievement.user_id == user_id,
                    models.UserAchievement.achievement_code == code,
                )
                .values(notified=True)
            )
            await db.commit()

    async def get_achievement_progress(self, user_id: int) -> dict[str, float]:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.AchievementProgress).where(models.AchievementProgress.user_id == user_id)
            )
            return {row.achievement_code: row.progress for row in result.scalars()}

    async def set_achievement_progress(self, user_id: int, code: str, progress: float, now: datetime) -> None:
        async with self._sessions() as db:
            await self._ensure_user(db, user_id)
            stmt = self._insert(models.AchievementProgress).values(
                user_id=user_id, achievement_code=code, progress=progress, updated_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "achievement_code"],
                set_={
                    "progress": self._greatest(models.AchievementProgress.progress, stmt.excluded.progress),
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)
            await db.commit()

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
        entry = models.LeaderboardEntry
        async with self._sessions() as db:
            await self._ensure_user(db, user_id)
            stmt = self._insert(entry).values(
                user_id=user_id,
                window_type=window_type,
                category_id=_to_category(category_id),
                period_start=period_start,
                period_end=period_end,
                score=score,
                xp_earned=xp_earned,
                games_played=1,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "window_type", "category_id", "period_start"],
                set_={
                    "score": entry.score + stmt.excluded.score,
                    "xp_earned": entry.xp_earned + stmt.excluded.xp_earned,
                    "games_played": entry.games_played + 1,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)
            await db.commit()

    def _board(self, window_type: str, category_id: int | None, period_start: datetime) -> Any:
        entry = models.LeaderboardEntry
        return and_(
            entry.window_type == window_type,
            entry.category_id == _to_category(category_id),
            entry.period_start == period_start,
        )

    async def list_leaderboard(
        self,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
        limit: int,
        offset: int,
    ) -> list[LeaderboardRow]:
        entry = models.LeaderboardEntry
        async with self._sessions() as db:
            result = await db.execute(
                select(entry)
                .where(self._board(window_type, category_id, period_start))
                .order_by(
                    entry.score.desc(),
                    entry.xp_earned.desc(),
                    entry.created_at.asc(),
                    entry.user_id.asc(),
                )
                .limit(limit)
                .offset(offset)
            )
            return [_leaderboard_row(row) for row in result.scalars()]

    async def count_leaderboard(self, window_type: str, category_id: int | None, period_start: datetime) -> int:
        async with self._sessions() as db:
            result = await db.execute(
                select(func.count())
                .select_from(models.LeaderboardEntry)
                .where(self._board(window_type, category_id, period_start))
            )
            return result.scalar_one()

    async def get_leaderboard_row(
        self,
        user_id: int,
        window_type: str,
        category_id: int | None,
        period_start: datetime,
    ) -> LeaderboardRow | None:
        async with self._sessions() as db:
            result = await db.execute(
                select(models.LeaderboardEntry).where(
                    models.LeaderboardEntry.user_id == user_id,
                    self._board(window_type, category_id, period_start),
                )
            )
            row = result.scalar_one_or_none()
            return _leaderboard_row(row) if row else None

    async def count_ranked_ahead(self, row: LeaderboardRow) -> int:
        entry = models.LeaderboardEntry
        same_score = entry.score == row.score
        same_xp = and_(same_score, entry.xp_earned == row.xp_earned)
        ahead = or_(
            entry.score > row.score,
            and_(same_score, entry.xp_earned > row.xp_earned),
            and_(same_xp, entry.created_at < row.created_at),
            and_(same_xp, entry.created_at == row.created_at, entry.user_id < row.user_id),
        )
        async with self._sessions() as db:
            result = await db.execute(
                select(func.count())
                .select_from(entry)
                .where(self._board(row.window_type, row.category_id, row.period_start), ahead)
            )
            return result.scalar_one()

    async def delete_leaderboard_before(self, window_type: str, cutoff: datetime) -> int:
        async with self._sessions() as db:
            result = await db.execute(
                delete(models.LeaderboardEntry).where(
                    models.LeaderboardEntry.window_type == window_type,
                    models.LeaderboardEntry.period_end < cutoff,
                )
            )
            await db.commit()
            deleted = result.rowcount or 0
        if deleted:
            logger.info("Deleted %d %s leaderboard rows older than %s", deleted, window_type, cutoff.isoformat())
        return deleted
