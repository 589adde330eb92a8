"""SqlStore against SQLite through aiosqlite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

pytest.importorskip("aiosqlite")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from quizarena.cache.service import TieredCache  # noqa: E402
from quizarena.container import assemble_container  # noqa: E402
from quizarena.db.models import Base  # noqa: E402
from quizarena.leaderboard.periods import resolve_period  # noqa: E402
from quizarena.progression.locks import KeyedLock  # noqa: E402
from quizarena.progression.stats_service import StatisticsService  # noqa: E402
from quizarena.progression.xp_calculator import GameSummary  # noqa: E402
from quizarena.seed import load_level_table, seed_reference_data  # noqa: E402
from quizarena.store.base import StatisticsRecord  # noqa: E402
from quizarena.store.sql import SqlStore  # noqa: E402

from conftest import FIXED_NOW, make_settings  # noqa: E402


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path) -> AsyncGenerator[SqlStore, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'quizarena.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SqlStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False), dialect="sqlite")
    await seed_reference_data(store)
    yield store
    await engine.dispose()


def test_unknown_dialect_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported"):
        SqlStore(async_sessionmaker(), dialect="mysql")


class TestReferenceData:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, sql_store: SqlStore) -> None:
        await seed_reference_data(sql_store)
        bands = await sql_store.list_level_bands()
        assert len(bands) == 25
        assert bands[0].level == 1
        assert len(await sql_store.list_achievement_definitions()) == 17

    @pytest.mark.asyncio
    async def test_level_table_loads_from_store(self, sql_store: SqlStore) -> None:
        table = await load_level_table(sql_store)
        assert table.compute(3110).level == 8


class TestProgression:
    @pytest.mark.asyncio
    async def test_increment_creates_then_adds(self, sql_store: SqlStore) -> None:
        assert await sql_store.increment_total_xp(1, 50) == (0, 50)
        assert await sql_store.increment_total_xp(1, 25) == (50, 75)
        assert (await sql_store.get_progression(1)).total_xp == 75

    @pytest.mark.asyncio
    async def test_level_state_guarded_by_total(self, sql_store: SqlStore) -> None:
        await sql_store.increment_total_xp(1, 150)
        fields = {"level": 2, "title": "Apprentice", "current_level_xp": 40, "level_progress": 20.0}
        assert await sql_store.set_level_state(1, total_xp=100, **fields) is False
        assert await sql_store.set_level_state(1, total_xp=150, **fields) is True
        assert (await sql_store.get_progression(1)).level == 2

    @pytest.mark.asyncio
    async def test_concurrent_add_xp_sums_every_grant(self, sql_store: SqlStore) -> None:
        first = assemble_container(make_settings(), sql_store, clock=lambda: FIXED_NOW)
        second = assemble_container(make_settings(), sql_store, clock=lambda: FIXED_NOW)
        await first.progression.add_xp(7, 100)

        await asyncio.gather(
            first.progression.add_xp(7, 30),
            second.progression.add_xp(7, 40),
            first.progression.add_xp(7, 50),
        )

        stored = await sql_store.get_progression(7)
        assert stored.total_xp == 220
        assert stored.level == 2
        assert stored.current_level_xp == 119

    @pytest.mark.asyncio
    async def test_large_grant_from_mid_band(self, sql_store: SqlStore) -> None:
        services = assemble_container(make_settings(), sql_store, clock=lambda: FIXED_NOW)
        await services.progression.add_xp(8, 150)
        assert (await sql_store.get_progression(8)).level == 2

        result = await services.progression.add_xp(8, 300)

        assert result["total_xp"] == 450
        assert (result["previous_level"], result["level"]) == (2, 3)
        assert result["leveled_up"] is True
        stored = await sql_store.get_progression(8)
        assert (stored.level, stored.title, stored.current_level_xp) == (3, "Learner", 199)

    @pytest.mark.asyncio
    async def test_top_progressions_ordered(self, sql_store: SqlStore) -> None:
        for user_id, xp in ((1, 100), (2, 300), (3, 100)):
            await sql_store.increment_total_xp(user_id, xp)
        assert [p.user_id for p in await sql_store.list_top_progressions(3)] == [2, 1, 3]


class TestStatistics:
    @pytest.mark.asyncio
    async def test_save_and_reload(self, sql_store: SqlStore) -> None:
        record = StatisticsRecord(user_id=4, games_played=3, correct_answers=20, last_activity_at=FIXED_NOW)
        await sql_store.save_statistics(record)
        loaded = await sql_store.get_statistics(4)
        assert loaded.games_played == 3
        assert loaded.last_activity_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_increment_counter(self, sql_store: SqlStore) -> None:
        await sql_store.increment_statistic(4, "achievements_earned")
        await sql_store.increment_statistic(4, "achievements_earned")
        assert (await sql_store.get_statistics(4)).achievements_earned == 2

    @pytest.mark.asyncio
    async def test_record_game_keeps_concurrent_achievement_count(self, sql_store: SqlStore) -> None:
        statistics = StatisticsService(sql_store, TieredCache(None), KeyedLock())
        read = sql_store.get_statistics

        async def slow_read(user_id: int) -> StatisticsRecord | None:
            stats = await read(user_id)
            await asyncio.sleep(0.05)
            return stats

        sql_store.get_statistics = slow_read  # type: ignore[method-assign]
        await asyncio.gather(
            statistics.record_game(5, GameSummary(correct_answers=6, total_questions=10), FIXED_NOW),
            sql_store.increment_statistic(5, "achievements_earned"),
        )
        sql_store.get_statistics = read  # type: ignore[method-assign]

        stats = await sql_store.get_statistics(5)
        assert stats.games_played == 1
        assert stats.achievements_earned == 1

    @pytest.mark.asyncio
    async def test_non_counter_rejected(self, sql_store: SqlStore) -> None:
        with pytest.raises(ValueError):
            await sql_store.increment_statistic(4, "current_streak")

    @pytest.mark.asyncio
    async def test_active_users(self, sql_store: SqlStore) -> None:
        await sql_store.save_statistics(StatisticsRecord(user_id=1, last_activity_at=FIXED_NOW))
        await sql_store.save_statistics(StatisticsRecord(user_id=2, last_activity_at=FIXED_NOW - timedelta(days=3)))
        assert await sql_store.list_active_users(FIXED_NOW - timedelta(hours=24)) == [1]


class TestAchievements:
    @pytest.mark.asyncio
    async def test_grant_once(self, sql_store: SqlStore) -> None:
        assert await sql_store.grant_achievement(1, "first_win", FIXED_NOW) is True
        assert await sql_store.grant_achievement(1, "first_win", FIXED_NOW) is False
        [earned] = await sql_store.list_earned_achievements(1)
        assert earned.achievement_code == "first_win"
        assert earned.notified is False

    @pytest.mark.asyncio
    async def test_mark_notified(self, sql_store: SqlStore) -> None:
        await sql_store.grant_achievement(1, "first_win", FIXED_NOW)
        await sql_store.mark_achievement_notified(1, "first_win")
        [earned] = await sql_store.list_earned_achievements(1)
        assert earned.notified is True

    @pytest.mark.asyncio
    async def test_progress_only_rises(self, sql_store: SqlStore) -> None:
        await sql_store.set_achievement_progress(1, "sharp_mind", 40.0, FIXED_NOW)
        await sql_store.set_achievement_progress(1, "sharp_mind", 25.0, FIXED_NOW)
        assert await sql_store.get_achievement_progress(1) == {"sharp_mind": 40.0}


class TestLeaderboard:
    async def _add(self, store: SqlStore, user_id: int, score: int, xp: int, category_id: int | None = None) -> None:
        start, end = resolve_period("weekly", FIXED_NOW)
        await store.increment_leaderboard_entry(
            user_id, "weekly", category_id, start, end, score=score, xp_earned=xp, now=FIXED_NOW
        )

    @pytest.mark.asyncio
    async def test_upsert_accumulates(self, sql_store: SqlStore) -> None:
        await self._add(sql_store, 1, 100, 10)
        await self._add(sql_store, 1, 50, 5)
        start, _ = resolve_period("weekly", FIXED_NOW)
        row = await sql_store.get_leaderboard_row(1, "weekly", None, start)
        assert (row.score, row.xp_earned, row.games_played) == (150, 15, 2)
        assert row.category_id is None

    @pytest.mark.asyncio
    async def test_ordering_and_rank(self, sql_store: SqlStore) -> None:
        await self._add(sql_store, 1, 100, 10)
        await self._add(sql_store, 2, 100, 20)
        await self._add(sql_store, 3, 200, 0)
        start, _ = resolve_period("weekly", FIXED_NOW)

        rows = await sql_store.list_leaderboard("weekly", None, start, 10, 0)
        assert [r.user_id for r in rows] == [3, 2, 1]
        assert await sql_store.count_leaderboard("weekly", None, start) == 3
        assert await sql_store.count_ranked_ahead(rows[2]) == 2

    @pytest.mark.asyncio
    async def test_category_board_separate(self, sql_store: SqlStore) -> None:
        await self._add(sql_store, 1, 100, 10, category_id=7)
        start, _ = resolve_period("weekly", FIXED_NOW)
        assert await sql_store.count_leaderboard("weekly", None, start) == 0
        assert await sql_store.count_leaderboard("weekly", 7, start) == 1

    @pytest.mark.asyncio
    async def test_delete_before(self, sql_store: SqlStore) -> None:
        await self._add(sql_store, 1, 100, 10)
        assert await sql_store.delete_leaderboard_before("weekly", FIXED_NOW) == 0
        assert await sql_store.delete_leaderboard_before("weekly", FIXED_NOW + timedelta(days=30)) == 1


@pytest.mark.asyncio
async def test_full_game_over_sql(sql_store: SqlStore) -> None:
    services = assemble_container(make_settings(), sql_store, clock=lambda: FIXED_NOW)
    result = await services.pipeline.complete_game(
        9, GameSummary(correct_answers=10, total_questions=10, score=900), FIXED_NOW
    )
    assert result["xp"]["earned_xp"] == 225
    codes = {a["code"] for a in result["new_achievements"]}
    assert {"first_win", "perfect_score"} <= codes

    board = await services.leaderboard.get_leaderboard("weekly")
    assert board["entries"][0]["user_id"] == 9
    assert board["entries"][0]["username"] == "player9"
    await services.cache.aclose()
