"""Progression updates: XP grants, level derivation and progression reads."""

from __future__ import annotations

import logging
from typing import Any

from quizarena.achievements.catalog import AchievementDefinition
from quizarena.cache.keys import TOP_PLAYERS_PREFIX, progression_key
from quizarena.cache.service import TieredCache
from quizarena.errors import ValidationError
from quizarena.progression.level_table import LevelTable
from quizarena.progression.locks import KeyedLock
from quizarena.store.base import ProgressionStore
from quizarena.ws.notifier import Notifier

logger = logging.getLogger(__name__)

RECENT_ACHIEVEMENTS = 5


class ProgressionService:
    def __init__(
        self,
        store: ProgressionStore,
        levels: LevelTable,
        cache: TieredCache,
        notifier: Notifier,
        locks: KeyedLock,
        *,
        cache_ttl: int = 300,
    ) -> None:
        self._store = store
        self._levels = levels
        self._cache = cache
        self._notifier = notifier
        self._locks = locks
        self._cache_ttl = cache_ttl
        self._definitions: dict[str, AchievementDefinition] | None = None

    @property
    def levels(self) -> LevelTable:
        return self._levels

    async def add_xp(self, user_id: int, earned_xp: int) -> dict[str, Any]:
        """Grant XP and recompute level fields from the new total.

        Writers for one user are serialised by the per-user lock; the store
        increment itself is a single atomic statement and the derived level
        fields are written only if total_xp has not moved since.
        """
        if isinstance(earned_xp, bool) or not isinstance(earned_xp, int) or earned_xp <= 0:
            raise ValidationError("earned_xp must be a positive integer")

        async with self._locks.hold(user_id):
            previous_total, new_total = await self._store.increment_total_xp(user_id, earned_xp)
            previous = self._levels.compute(previous_total)
            current = self._levels.compute(new_total, start_level=previous.level)
            written = await self._store.set_level_state(
                user_id,
                total_xp=new_total,
                level=current.level,
                title=current.title,
                current_level_xp=current.current_level_xp,
                level_progress=current.level_progress,
            )
            if not written:
                logger.debug("Level state for user %s superseded by a newer total", user_id)

        result = {
            "user_id": user_id,
            "total_xp": new_total,
            "earned_xp": earned_xp,
            "level": current.level,
            "previous_level": previous.level,
            "leveled_up": current.level > previous.level,
            "title": current.title,
            "current_level_xp": current.current_level_xp,
            "level_progress": current.level_progress,
            "next_level_xp": current.next_level_xp,
        }

        await self._cache.delete(progression_key(user_id))
        await self._cache.delete_prefix(TOP_PLAYERS_PREFIX)
        await self._notifier.progression_update(user_id, result)
        if result["leveled_up"]:
            logger.info("User %s leveled up %d -> %d", user_id, previous.level, current.level)
            await self._notifier.level_up(user_id, previous.level, current.level, current.title)
        return result

    async def _definition_map(self) -> dict[str, AchievementDefinition]:
        if self._definitions is None:
            definitions = await self._store.list_achievement_definitions(active_only=False)
            self._definitions = {d.code: d for d in definitions}
        return self._definitions

    def reset_definitions(self) -> None:
        self._definitions = None

    async def build_progression(self, user_id: int) -> dict[str, Any]:
        """Uncached progression view. Unknown users get the level-1 default."""
        record = await self._store.get_progression(user_id)
        total_xp = record.total_xp if record else 0
        state = self._levels.compute(total_xp)

        definitions = await self._definition_map()
        recent = []
        for earned in await self._store.list_earned_achievements(user_id, limit=RECENT_ACHIEVEMENTS):
            definition = definitions.get(earned.achievement_code)
            recent.append({
                "code": earned.achievement_code,
                "name": definition.name if definition else earned.achievement_code,
                "rarity": definition.rarity if definition else None,
                "earned_at": earned.earned_at.isoformat(),
            })

        return {
            "user_id": user_id,
            "level": state.level,
            "total_xp": total_xp,
            "current_level_xp": state.current_level_xp,
            "title": state.title,
            "level_progress": state.level_progress,
            "next_level_xp": state.next_level_xp,
            "recent_achievements": recent,
        }

    async def get_user_progression(self, user_id: int) -> dict[str, Any]:
        """Cached progression view with refresh-ahead."""
        return await self._cache.get_with_refresh(
            progression_key(user_id),
            lambda: self.build_progression(user_id),
            ttl=self._cache_ttl,
        )

    async def invalidate(self, user_id: int) -> None:
        await self._cache.delete(progression_key(user_id))
