"""Achievement definitions and the default catalog.

criteria is ``{"type": str, "threshold": number, "options": dict}``. The
evaluators for each type live in ``quizarena.achievements.criteria``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

CATEGORIES = ("gameplay", "progression", "streak", "social", "special")
RARITIES = ("common", "uncommon", "rare", "epic", "legendary")


@dataclass(frozen=True)
class AchievementDefinition:
    code: str
    name: str
    description: str
    category: str
    rarity: str
    xp_reward: int
    criteria: dict[str, Any]
    track_progress: bool = False
    active: bool = True
    display_order: int = 0

    @property
    def criteria_type(self) -> str:
        return self.criteria.get("type", "")

    @property
    def threshold(self) -> float:
        return self.criteria.get("threshold", 0)

    @property
    def options(self) -> dict[str, Any]:
        return self.criteria.get("options") or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "rarity": self.rarity,
            "xp_reward": self.xp_reward,
        }


def _criteria(kind: str, threshold: float = 0, **options: Any) -> dict[str, Any]:
    return {"type": kind, "threshold": threshold, "options": options}


_SEEDS: list[AchievementDefinition] = [
    # --- Gameplay ---
    AchievementDefinition("first_win", "First Victory", "Win your first quiz game",
        "gameplay", "common", 25, _criteria("games_won", 1)),
    AchievementDefinition("perfect_score", "Perfectionist", "Get a perfect score in any quiz",
        "gameplay", "common", 50, _criteria("perfect_games", 1)),
    AchievementDefinition("speed_demon", "Speed Demon", "Average under 3 seconds per question in a game",
        "gameplay", "rare", 75, _criteria("speed_demon", 3)),
    AchievementDefinition("accuracy_master", "Accuracy Master", "Maintain 90% accuracy over 100 questions",
        "gameplay", "epic", 200, _criteria("accuracy", 90, min_questions=100)),
    AchievementDefinition("sharp_mind", "Sharp Mind", "Answer 100 questions correctly",
        "gameplay", "common", 100, _criteria("correct_answers", 100), track_progress=True),
    AchievementDefinition("quiz_marathon", "Quiz Marathon", "Answer 1000 questions",
        "gameplay", "epic", 500, _criteria("questions_answered", 1000), track_progress=True),
    # --- Progression ---
    AchievementDefinition("level_5", "Scholar", "Reach level 5",
        "progression", "common", 100, _criteria("level", 5)),
    AchievementDefinition("level_10", "Master", "Reach level 10",
        "progression", "rare", 250, _criteria("level", 10)),
    AchievementDefinition("level_25", "Quiz Legend", "Reach level 25",
        "progression", "legendary", 1000, _criteria("level", 25)),
    AchievementDefinition("xp_milestone_5000", "Experience Collector", "Earn 5000 total XP",
        "progression", "rare", 300, _criteria("total_xp", 5000), track_progress=True),
    # --- Streak ---
    AchievementDefinition("week_streak", "Dedicated Player", "Play for 7 days in a row",
        "streak", "common", 150, _criteria("current_streak", 7)),
    AchievementDefinition("month_streak", "Quiz Addict", "Play for 30 days in a row",
        "streak", "epic", 1000, _criteria("current_streak", 30)),
    AchievementDefinition("comeback_king", "Comeback King", "Return after a 7-day break",
        "streak", "rare", 100, _criteria("comeback", 0, days_away=7)),
    # --- Social ---
    AchievementDefinition("social_butterfly", "Social Butterfly", "Play 10 multiplayer games",
        "social", "common", 100, _criteria("multiplayer_games", 10)),
    AchievementDefinition("leaderboard_top_10", "Elite Player", "Reach top 10 in weekly leaderboard",
        "social", "epic", 500, _criteria("leaderboard_rank", 10, period="weekly")),
    # --- Special ---
    AchievementDefinition("early_bird", "Early Bird", "Play a quiz before 6 AM",
        "special", "rare", 100, _criteria("time_of_day", 0, hour_before=6)),
    AchievementDefinition("night_owl", "Night Owl", "Play a quiz after midnight",
        "special", "rare", 100, _criteria("time_of_day", 0, hour_from=0, hour_to=4)),
]

ACHIEVEMENT_CATALOG: list[AchievementDefinition] = [
    replace(definition, display_order=order) for order, definition in enumerate(_SEEDS, start=1)
]
