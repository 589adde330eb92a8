"""Achievement evaluation and granting.

One bounded pass per call: XP granted by an achievement never re-triggers
evaluation within the same call. Grants are insert-if-absent, so a lost
race with another writer is reported as "already earned", not an error.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from quizarena.achievements.catalog import CATEGORIES, AchievementDefinition
from quizarena.achievements.criteria import EvaluationState, GameContext, evaluate_criteria
from quizarena.cache.keys import achievements_key
from quizarena.cache.service import TieredCache
from quizarena.leaderboard.service import LeaderboardService
from quizarena.progression.service import ProgressionService
from quizarena.store.base import ProgressionRecord, ProgressionStore, StatisticsRecord
from quizarena.ws.notifier import Notifier

logger = logging.getLogger(__name__)


class AchievementEvaluator:
    def __init__(
        self,
        store: ProgressionStore,
        progression: ProgressionService,
        leaderboard: LeaderboardService,
        cache: TieredCache,
        notifier: Notifier,
        *,
        timezone_name: str = "UTC",
        cache_ttl: int = 300,
    ) -> None:
        self._store = store
        self._progression = progression
        self._leaderboard = leaderboard
        self._cache = cache
        self._notifier = notifier
        self._tz = ZoneInfo(timezone_name)
        self._cache_ttl = cache_ttl
        self._definitions: list[AchievementDefinition] | None = None

    async def _load_definitions(self) -> list[AchievementDefinition]:
        """Active definitions, loaded once per evaluator."""
        if self._definitions is None:
            self._definitions = await self._store.list_achievement_definitions(active_only=True)
        return self._definitions

    def reload_definitions(self) -> None:
        self._definitions = None
        self._progression.reset_definitions()

    async def _leaderboard_ranks(
        self, user_id: int, pending: list[AchievementDefinition], context: GameContext
    ) -> dict[str, int | None]:
        ranks: dict[str, int | None] = {}
        for definition in pending:
            if definition.criteria_type != "leaderboard_rank":
                continue
            period = definition.options.get("period", "weekly")
            if period in ranks:
                continue
            if context.leaderboard_rank is not None and context.leaderboard_window in (None, period):
                ranks[period] = context.leaderboard_rank
                continue
            rank = await self._leaderboard.build_user_rank(user_id, period, now=context.occurred_at)
            ranks[period] = rank["rank"]
        return ranks

    async def check_achievements(self, user_id: int, context: GameContext) -> list[dict[str, Any]]:
        """Evaluate all unearned active achievements; grant the ones now satisfied."""
        definitions = await self._load_definitions()
        earned = {e.achievement_code for e in await self._store.list_earned_achievements(user_id)}
        pending = [d for d in definitions if d.code not in earned]
        if not pending:
            return []

        stats = await self._store.get_statistics(user_id) or StatisticsRecord(user_id=user_id)
        progression = await self._store.get_progression(user_id) or ProgressionRecord(user_id=user_id)
        occurred_at = context.occurred_at
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        state = EvaluationState(
            stats=stats,
            progression=progression,
            game=context,
            local_time=occurred_at.astimezone(self._tz),
            leaderboard_ranks=await self._leaderboard_ranks(user_id, pending, context),
        )

        unlocked: list[dict[str, Any]] = []
        for definition in pending:
            result = evaluate_criteria(definition.criteria, state)
            if not result.met:
                if definition.track_progress and result.progress:
                    await self._store.set_achievement_progress(user_id, definition.code, result.progress, occurred_at)
                continue
            if await self._grant(user_id, definition, occurred_at):
                unlocked.append({**definition.to_dict(), "earned_at": occurred_at.isoformat()})

        await self._cache.delete(achievements_key(user_id))
        if unlocked:
            await self._progression.invalidate(user_id)
        return unlocked

    async def _grant(self, user_id: int, definition: AchievementDefinition, now: datetime) -> bool:
        if not await self._store.grant_achievement(user_id, definition.code, now):
            return False  # Already earned

        if definition.track_progress:
            await self._store.set_achievement_progress(user_id, definition.code, 100.0, now)
        await self._store.increment_statistic(user_id, "achievements_earned")
        if definition.xp_reward > 0:
            await self._progression.add_xp(user_id, definition.xp_reward)

        delivered = await self._notifier.achievement_unlocked(
            user_id, {**definition.to_dict(), "earned_at": now.isoformat()}
        )
        if delivered:
            await self._store.mark_achievement_notified(user_id, definition.code)
        logger.info("Granted achievement %s to user %s", definition.code, user_id)
        return True

    async def build_user_achievements(self, user_id: int) -> dict[str, Any]:
        definitions = await self._load_definitions()
        earned = {e.achievement_code: e for e in await self._store.list_earned_achievements(user_id)}
        progress = await self._store.get_achievement_progress(user_id)

        categories: dict[str, list[dict[str, Any]]] = {c: [] for c in CATEGORIES}
        for definition in definitions:
            held = earned.get(definition.code)
            categories.setdefault(definition.category, []).append({
                **definition.to_dict(),
                "earned": held is not None,
                "earned_at": held.earned_at.isoformat() if held else None,
                "progress": 100.0 if held else progress.get(definition.code, 0.0),
                "track_progress": definition.track_progress,
            })

        total = len(definitions)
        total_earned = sum(1 for d in definitions if d.code in earned)
        return {
            "user_id": user_id,
            "categories": {name: items for name, items in categories.items() if items},
            "total_earned": total_earned,
            "total_available": total,
            "completion": round(total_earned / total * 100, 2) if total else 0.0,
        }

    async def get_user_achievements(self, user_id: int) -> dict[str, Any]:
        """All active achievements grouped by category with earned state and progress."""
        return await self._cache.get_with_refresh(
            achievements_key(user_id),
            lambda: self.build_user_achievements(user_id),
            ttl=self._cache_ttl,
        )
