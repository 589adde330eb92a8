"""Achievement criteria evaluators.

Each evaluator takes the definition's criteria and the evaluation state and
returns whether the criterion is met plus, for counters, a 0-100 progress.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from quizarena.progression.xp_calculator import GameSummary
from quizarena.store.base import ProgressionRecord, StatisticsRecord

logger = logging.getLogger(__name__)


@dataclass
class GameContext:
    """Facts about the game that triggered evaluation."""

    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correct_answers: int = 0
    total_questions: int = 0
    difficulty: str | None = None
    average_seconds: float | None = None
    perfect_game: bool = False
    score: int | None = None
    category_id: int | None = None
    time_taken_seconds: float | None = None
    is_multiplayer: bool = False
    current_streak: int | None = None
    leaderboard_rank: int | None = None
    leaderboard_window: str | None = None
    event_id: str | None = None

    @classmethod
    def from_summary(cls, summary: GameSummary, occurred_at: datetime, **extra: Any) -> GameContext:
        return cls(
            occurred_at=occurred_at,
            correct_answers=summary.correct_answers,
            total_questions=summary.total_questions,
            difficulty=summary.difficulty,
            average_seconds=summary.average_seconds,
            perfect_game=summary.perfect,
            score=summary.score,
            category_id=summary.category_id,
            time_taken_seconds=summary.time_taken_seconds,
            is_multiplayer=summary.is_multiplayer,
            event_id=summary.event_id,
            **extra,
        )


@dataclass
class EvaluationState:
    stats: StatisticsRecord
    progression: ProgressionRecord
    game: GameContext
    local_time: datetime
    leaderboard_ranks: dict[str, int | None] = field(default_factory=dict)


@dataclass(frozen=True)
class CriterionResult:
    met: bool
    progress: float | None = None


NOT_MET = CriterionResult(met=False)

Evaluator = Callable[[float, dict[str, Any], EvaluationState], CriterionResult]


def _counter(value_of: Callable[[EvaluationState], float]) -> Evaluator:
    def evaluate(threshold: float, _options: dict[str, Any], state: EvaluationState) -> CriterionResult:
        value = value_of(state)
        if threshold <= 0:
            return CriterionResult(met=True, progress=100.0)
        return CriterionResult(met=value >= threshold, progress=round(min(100.0, value / threshold * 100), 2))

    return evaluate


def _speed_demon(threshold: float, _options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    game_avg = state.game.average_seconds if state.game.total_questions > 0 else None
    candidates = [v for v in (game_avg, state.stats.fastest_avg_seconds) if v is not None]
    return CriterionResult(met=bool(candidates) and min(candidates) <= threshold)


def _accuracy(threshold: float, options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    min_questions = options.get("min_questions", 0)
    if state.stats.questions_answered < min_questions:
        return NOT_MET
    return CriterionResult(met=state.stats.accuracy >= threshold)


def _level(threshold: float, _options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    return CriterionResult(met=state.progression.level >= threshold)


def _leaderboard_rank(threshold: float, options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    rank = state.leaderboard_ranks.get(options.get("period", "weekly"))
    return CriterionResult(met=rank is not None and rank <= threshold)


def _single_game_score(threshold: float, _options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    return CriterionResult(met=state.game.score is not None and state.game.score >= threshold)


def _time_of_day(_threshold: float, options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    hour = state.local_time.hour
    if "hour_before" in options:
        return CriterionResult(met=hour < options["hour_before"])
    hour_from = options.get("hour_from", 0)
    hour_to = options.get("hour_to", 24)
    return CriterionResult(met=hour_from <= hour < hour_to)


def _comeback(_threshold: float, options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    previous = state.stats.previous_activity_at
    if previous is None:
        return NOT_MET
    away = state.local_time - previous
    return CriterionResult(met=away.days >= options.get("days_away", 7))


def _event(_threshold: float, options: dict[str, Any], state: EvaluationState) -> CriterionResult:
    wanted = options.get("event_id")
    return CriterionResult(met=wanted is not None and state.game.event_id == wanted)


CRITERIA_EVALUATORS: dict[str, Evaluator] = {
    "games_played": _counter(lambda s: s.stats.games_played),
    "games_won": _counter(lambda s: s.stats.games_won),
    "perfect_games": _counter(lambda s: s.stats.perfect_games),
    "questions_answered": _counter(lambda s: s.stats.questions_answered),
    "correct_answers": _counter(lambda s: s.stats.correct_answers),
    "multiplayer_games": _counter(lambda s: s.stats.multiplayer_games),
    "achievements_earned": _counter(lambda s: s.stats.achievements_earned),
    "current_streak": _counter(lambda s: max(s.stats.current_streak, s.game.current_streak or 0)),
    "longest_streak": _counter(lambda s: s.stats.longest_streak),
    "time_played": _counter(lambda s: s.stats.total_time_seconds),
    "total_xp": _counter(lambda s: s.progression.total_xp),
    "speed_demon": _speed_demon,
    "accuracy": _accuracy,
    "level": _level,
    "leaderboard_rank": _leaderboard_rank,
    "single_game_score": _single_game_score,
    "time_of_day": _time_of_day,
    "comeback": _comeback,
    "event": _event,
}


def evaluate_criteria(criteria: dict[str, Any], state: EvaluationState) -> CriterionResult:
    evaluator = CRITERIA_EVALUATORS.get(criteria.get("type", ""))
    if evaluator is None:
        logger.warning("Unknown achievement criteria type: %s", criteria.get("type"))
        return NOT_MET
    return evaluator(criteria.get("threshold", 0), criteria.get("options") or {}, state)
