"""Leveling table: contiguous XP bands mapped to levels and titles.

Level, title and progress are a pure function of total XP. The table is
seeded into the store once and loaded back at startup.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from quizarena.errors import ValidationError


@dataclass(frozen=True)
class LevelBand:
    level: int
    min_xp: int
    max_xp: int
    title: str
    perks: dict[str, Any] = field(default_factory=dict)

    @property
    def span(self) -> int:
        return self.max_xp - self.min_xp


@dataclass(frozen=True)
class LevelState:
    """Derived level fields for a given total XP."""

    level: int
    title: str
    current_level_xp: int
    level_progress: float
    next_level_xp: int | None


_BAND_SEED: list[tuple[int, int, str]] = [
    (0, 100, "Novice"),
    (101, 250, "Beginner"),
    (251, 500, "Learner"),
    (501, 850, "Student"),
    (851, 1300, "Scholar"),
    (1301, 1900, "Adept"),
    (1901, 2650, "Proficient"),
    (2651, 3550, "Advanced"),
    (3551, 4650, "Expert"),
    (4651, 6000, "Master"),
    (6001, 7600, "Grandmaster"),
    (7601, 9500, "Champion"),
    (9501, 11700, "Virtuoso"),
    (11701, 14300, "Elite"),
    (14301, 17300, "Sage"),
    (17301, 20800, "Oracle"),
    (20801, 24800, "Savant"),
    (24801, 29400, "Luminary"),
    (29401, 34600, "Transcendent"),
    (34601, 40500, "Immortal"),
    (40501, 47200, "Mythic"),
    (47201, 54700, "Legendary"),
    (54701, 63100, "Eternal"),
    (63101, 72500, "Cosmic"),
    (72501, 999999, "Quiz God"),
]


def level_perks(level: int) -> dict[str, Any]:
    """Perks granted at a level: +2% XP multiplier per level and a daily bonus."""
    return {
        "xp_multiplier": round(1 + (level - 1) * 0.02, 2),
        "daily_bonus": level * 10,
    }


DEFAULT_LEVEL_BANDS: list[LevelBand] = [
    LevelBand(level=i, min_xp=lo, max_xp=hi, title=title, perks=level_perks(i))
    for i, (lo, hi, title) in enumerate(_BAND_SEED, start=1)
]


class LevelTable:
    """Ordered, gap-free list of level bands."""

    def __init__(self, bands: Sequence[LevelBand] = DEFAULT_LEVEL_BANDS) -> None:
        ordered = sorted(bands, key=lambda b: b.level)
        if not ordered:
            raise ValidationError("Level table must contain at least one band")
        if ordered[0].min_xp != 0 or ordered[0].level != 1:
            raise ValidationError("Level table must start at level 1 with min_xp 0")
        for prev, nxt in zip(ordered, ordered[1:]):
            if nxt.level != prev.level + 1 or nxt.min_xp != prev.max_xp + 1:
                raise ValidationError(f"Level bands {prev.level} and {nxt.level} are not contiguous")
        self._bands = ordered

    @property
    def bands(self) -> list[LevelBand]:
        return list(self._bands)

    @property
    def max_level(self) -> int:
        return self._bands[-1].level

    def band(self, level: int) -> LevelBand:
        if level < 1 or level > self.max_level:
            raise ValidationError(f"Unknown level: {level}")
        return self._bands[level - 1]

    def band_for(self, total_xp: int, start_level: int = 1) -> LevelBand:
        """Walk upward from start_level to the band containing total_xp.

        XP past the last band's max_xp stays clamped at the top level.
        """
        index = max(0, min(start_level, self.max_level) - 1)
        if total_xp < self._bands[index].min_xp:
            index = 0
        for band in self._bands[index:]:
            if total_xp <= band.max_xp:
                return band
        return self._bands[-1]

    def compute(self, total_xp: int, start_level: int = 1) -> LevelState:
        if total_xp < 0:
            raise ValidationError("total_xp cannot be negative")
        band = self.band_for(total_xp, start_level)
        current = total_xp - band.min_xp
        progress = current / band.span if band.span > 0 else 1.0
        next_xp = band.max_xp + 1 if band.level < self.max_level else None
        return LevelState(
            level=band.level,
            title=band.title,
            current_level_xp=current,
            level_progress=min(1.0, max(0.0, progress)),
            next_level_xp=next_xp,
        )
