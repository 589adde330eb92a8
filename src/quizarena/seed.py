"""Reference data seeding: level bands and the achievement catalog."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from quizarena.achievements.catalog import ACHIEVEMENT_CATALOG, AchievementDefinition
from quizarena.progression.level_table import DEFAULT_LEVEL_BANDS, LevelBand, LevelTable
from quizarena.store.base import ProgressionStore

logger = logging.getLogger(__name__)


async def seed_reference_data(
    store: ProgressionStore,
    bands: Sequence[LevelBand] = DEFAULT_LEVEL_BANDS,
    achievements: Sequence[AchievementDefinition] = ACHIEVEMENT_CATALOG,
) -> dict[str, int]:
    """Upsert bands and definitions by key. Safe to run on every startup."""
    LevelTable(bands)  # reject a broken table before writing any of it
    levels = await store.upsert_level_bands(bands)
    definitions = await store.upsert_achievement_definitions(achievements)
    logger.info("Seeded %d level bands and %d achievement definitions", levels, definitions)
    return {"level_bands": levels, "achievements": definitions}


async def load_level_table(store: ProgressionStore) -> LevelTable:
    """Level table as stored, falling back to the default bands when none are."""
    bands = await store.list_level_bands()
    if not bands:
        logger.warning("No level bands stored; using the default table")
        return LevelTable()
    return LevelTable(bands)
