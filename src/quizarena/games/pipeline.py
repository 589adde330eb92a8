"""Game completion: the full write path for one finished quiz.

Order matters. Statistics are recorded before achievements are evaluated so
counters include this game, and the leaderboard is updated before the
announcements go out. The weekly rank is read on both sides of the
leaderboard write so a climb can be reported.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from quizarena.achievements.criteria import GameContext
from quizarena.achievements.evaluator import AchievementEvaluator
from quizarena.leaderboard.service import LeaderboardService
from quizarena.progression.service import ProgressionService
from quizarena.progression.stats_service import StatisticsService
from quizarena.progression.xp_calculator import GameSummary, XpRules, calculate_xp
from quizarena.store.base import StatisticsRecord
from quizarena.ws.notifier import Notifier

logger = logging.getLogger(__name__)

# Window whose rank movements are pushed to the player and announced.
RANK_WINDOW = "weekly"


class GameCompletionPipeline:
    def __init__(
        self,
        rules: XpRules,
        statistics: StatisticsService,
        progression: ProgressionService,
        achievements: AchievementEvaluator,
        leaderboard: LeaderboardService,
        notifier: Notifier,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._rules = rules
        self._statistics = statistics
        self._progression = progression
        self._achievements = achievements
        self._leaderboard = leaderboard
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def rules(self) -> XpRules:
        return self._rules

    async def complete_game(
        self, user_id: int, summary: GameSummary, now: datetime | None = None
    ) -> dict[str, Any]:
        """Record a finished game and everything that follows from it.

        Returns the XP breakdown, the current progression, newly unlocked
        achievements, the updated streak and the leaderboard score recorded.
        """
        now = now or self._clock()
        xp = calculate_xp(summary, self._rules)

        stats = await self._statistics.record_game(user_id, summary, now)

        progression = None
        if xp["earned_xp"] > 0:
            progression = await self._progression.add_xp(user_id, xp["earned_xp"])

        context = GameContext.from_summary(summary, now, current_streak=stats.current_streak)
        unlocked = await self._achievements.check_achievements(user_id, context)

        score = summary.score if summary.score is not None else xp["earned_xp"]
        before = await self._leaderboard.build_user_rank(user_id, RANK_WINDOW, now=now)
        await self._leaderboard.record_game(
            user_id, score, xp["earned_xp"], category_id=summary.category_id, now=now
        )
        await self._statistics.invalidate(user_id)

        if progression is None:
            progression = await self._progression.build_progression(user_id)

        await self._announce(user_id, summary, xp["earned_xp"], score, progression, stats, before["rank"], now)

        logger.info(
            "Game completed for user %s: +%d XP, %d achievement(s)", user_id, xp["earned_xp"], len(unlocked)
        )
        return {
            "user_id": user_id,
            "xp": xp,
            "progression": progression,
            "new_achievements": unlocked,
            "current_streak": stats.current_streak,
            "score": score,
        }

    async def _announce(
        self,
        user_id: int,
        summary: GameSummary,
        earned_xp: int,
        score: int,
        progression: dict[str, Any],
        stats: StatisticsRecord,
        old_rank: int | None,
        now: datetime,
    ) -> None:
        ranks = await self._leaderboard.get_user_all_ranks(user_id, now=now)
        await self._notifier.rank_update(user_id, ranks)
        new_rank = ranks[RANK_WINDOW]["rank"]
        if new_rank is not None and new_rank != old_rank:
            await self._notifier.rank_changed(user_id, RANK_WINDOW, old_rank, new_rank)

        await self._notifier.quiz_completed(
            user_id, score, summary.category_id, earned_xp=earned_xp, level=progression["level"]
        )
        if self._statistics.streak_advanced(stats):
            await self._notifier.streak_milestone(user_id, stats.current_streak)
