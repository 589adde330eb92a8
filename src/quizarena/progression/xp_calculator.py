"""XP award calculation for a completed game.

earned = round_half_up(correct * base * difficulty multiplier * bonuses)

Bonuses compound multiplicatively. Two rule sets exist; which one a
deployment uses is chosen once at startup (``Settings.xp_rules``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from quizarena.errors import ValidationError

DIFFICULTIES = ("easy", "medium", "hard")


@dataclass(frozen=True)
class XpRules:
    name: str
    difficulty_multipliers: dict[str, float]
    xp_per_correct: int = 10
    perfect_bonus: float = 1.5
    fast_bonus: float = 1.2
    streak_bonus: float = 1.1
    fast_answer_seconds: float = 10.0


STANDARD_XP_RULES = XpRules(
    name="standard",
    difficulty_multipliers={"easy": 1.0, "medium": 1.5, "hard": 2.0},
)

# Perfect-game bonus only.
SIMPLE_XP_RULES = XpRules(
    name="simple",
    difficulty_multipliers={"easy": 0.8, "medium": 1.0, "hard": 1.5},
    fast_bonus=1.0,
    streak_bonus=1.0,
)

XP_RULE_SETS = {rules.name: rules for rules in (STANDARD_XP_RULES, SIMPLE_XP_RULES)}


def get_xp_rules(name: str) -> XpRules:
    try:
        return XP_RULE_SETS[name]
    except KeyError:
        raise ValidationError(f"Unknown XP rule set: {name}") from None


@dataclass
class GameSummary:
    """Outcome of one finished quiz, as reported by the session layer."""

    correct_answers: int
    total_questions: int
    difficulty: str = "medium"
    avg_time_per_question: float | None = None
    is_perfect_game: bool | None = None
    has_active_streak: bool = False
    score: int | None = None
    category_id: int | None = None
    time_taken_seconds: float | None = None
    is_multiplayer: bool = False
    won: bool | None = None
    event_id: str | None = None
    extra: dict = field(default_factory=dict)

    @property
    def perfect(self) -> bool:
        if self.is_perfect_game is not None:
            return self.is_perfect_game
        return self.total_questions > 0 and self.correct_answers == self.total_questions

    @property
    def accuracy(self) -> float:
        if self.total_questions <= 0:
            return 0.0
        return self.correct_answers / self.total_questions * 100

    @property
    def average_seconds(self) -> float | None:
        """Per-question time, falling back to total time / questions."""
        if self.avg_time_per_question is not None:
            return self.avg_time_per_question
        if self.time_taken_seconds is not None and self.total_questions > 0:
            return self.time_taken_seconds / self.total_questions
        return None


def validate_summary(summary: GameSummary) -> None:
    if summary.correct_answers < 0 or summary.total_questions < 0:
        raise ValidationError("Answer counts cannot be negative")
    if summary.correct_answers > summary.total_questions:
        raise ValidationError("correct_answers cannot exceed total_questions")
    if summary.difficulty not in DIFFICULTIES:
        raise ValidationError(f"Unknown difficulty: {summary.difficulty}")
    if summary.avg_time_per_question is not None and summary.avg_time_per_question < 0:
        raise ValidationError("avg_time_per_question cannot be negative")
    if summary.time_taken_seconds is not None and summary.time_taken_seconds < 0:
        raise ValidationError("time_taken_seconds cannot be negative")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_xp(summary: GameSummary, rules: XpRules = STANDARD_XP_RULES) -> dict:
    """Compute the XP award for a game. Pure; raises ValidationError on bad input."""
    validate_summary(summary)

    multiplier = rules.difficulty_multipliers[summary.difficulty]
    base_xp = summary.correct_answers * rules.xp_per_correct

    bonus = 1.0
    applied: list[str] = []
    if summary.perfect and rules.perfect_bonus != 1.0:
        bonus *= rules.perfect_bonus
        applied.append("perfect")
    avg = summary.avg_time_per_question
    if avg is not None and avg < rules.fast_answer_seconds and rules.fast_bonus != 1.0:
        bonus *= rules.fast_bonus
        applied.append("fast")
    if summary.has_active_streak and rules.streak_bonus != 1.0:
        bonus *= rules.streak_bonus
        applied.append("streak")

    return {
        "earned_xp": round_half_up(base_xp * multiplier * bonus),
        "base_xp": base_xp,
        "difficulty_multiplier": multiplier,
        "bonus_multiplier": round(bonus, 4),
        "bonuses": applied,
        "rules": rules.name,
    }
