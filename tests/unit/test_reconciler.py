"""Cache/store reconciliation."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from quizarena.cache.keys import statistics_key
from quizarena.container import ServiceContainer
from quizarena.errors import ValidationError
from quizarena.progression.xp_calculator import GameSummary
from quizarena.sync.reconciler import SyncReconciler, find_conflicts

from conftest import FIXED_NOW


def _reconciler(container: ServiceContainer, **kwargs) -> SyncReconciler:
    return SyncReconciler(
        container.store, container.statistics, container.cache, clock=lambda: FIXED_NOW, **kwargs
    )


async def _active_user(container: ServiceContainer, user_id: int) -> dict:
    summary = GameSummary(correct_answers=8, total_questions=10, score=500)
    await container.statistics.record_game(user_id, summary, FIXED_NOW - timedelta(hours=1))
    return await container.statistics.get_user_statistics(user_id)


class TestFindConflicts:
    def test_small_drift_tolerated(self):
        assert find_conflicts(1, {"total_score": 1000}, {"total_score": 1040}) == []

    def test_relative_drift_flagged(self):
        [conflict] = find_conflicts(1, {"total_score": 1000}, {"total_score": 1100})
        assert conflict.field == "total_score"
        assert conflict.cached_value == 1000
        assert conflict.fresh_value == 1100

    def test_absolute_floor_for_small_values(self):
        assert find_conflicts(1, {"total_xp": 0}, {"total_xp": 10}) == []
        assert len(find_conflicts(1, {"total_xp": 0}, {"total_xp": 11})) == 1

    def test_any_games_played_difference(self):
        assert len(find_conflicts(1, {"games_played": 4}, {"games_played": 5})) == 1

    def test_accuracy_points(self):
        assert find_conflicts(1, {"accuracy": 80.0}, {"accuracy": 84.0}) == []
        assert len(find_conflicts(1, {"accuracy": 80.0}, {"accuracy": 86.0})) == 1

    def test_missing_fields_ignored(self):
        assert find_conflicts(1, {}, {"games_played": 3}) == []


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_consistent_cache_has_no_conflicts(self, container: ServiceContainer):
        await _active_user(container, 1)
        result = await _reconciler(container).run_once()
        assert result["status"] == "completed"
        assert result["checked"] == 1
        assert result["conflicted_users"] == 0

    @pytest.mark.asyncio
    async def test_drifted_cache_is_repaired(self, container: ServiceContainer):
        cached = await _active_user(container, 1)
        await container.cache.set(statistics_key(1), {**cached, "games_played": 9, "total_score": 90_000})

        reconciler = _reconciler(container)
        result = await reconciler.run_once()
        assert result["conflicted_users"] == 1

        repaired = await container.cache.get(statistics_key(1))
        assert repaired["games_played"] == 1
        assert repaired["total_score"] == 500

        status = reconciler.get_status()
        assert status["total_conflicts"] == 2
        assert {c["field"] for c in status["recent_conflicts"]} == {"games_played", "total_score"}

    @pytest.mark.asyncio
    async def test_uncached_and_inactive_users_skipped(self, container: ServiceContainer):
        await _active_user(container, 1)
        await container.cache.delete(statistics_key(1))
        summary = GameSummary(correct_answers=1, total_questions=1)
        await container.statistics.record_game(2, summary, FIXED_NOW - timedelta(days=3))

        result = await _reconciler(container).run_once()
        assert result["active_users"] == 1
        assert result["checked"] == 0

    @pytest.mark.asyncio
    async def test_sampling_caps_users(self, container: ServiceContainer):
        for user_id in range(1, 6):
            await _active_user(container, user_id)
        result = await _reconciler(container, sample_size=2).run_once()
        assert result["active_users"] == 2

    @pytest.mark.asyncio
    async def test_overlapping_run_skipped(self, container: ServiceContainer):
        await _active_user(container, 1)
        reconciler = _reconciler(container)
        gate = asyncio.Event()
        original = container.statistics.build_statistics

        async def slow_build(user_id: int) -> dict:
            await gate.wait()
            return await original(user_id)

        container.statistics.build_statistics = slow_build
        first = asyncio.create_task(reconciler.run_once())
        await asyncio.sleep(0)
        assert reconciler.get_status()["sync_in_progress"] is True

        second = await reconciler.force_sync()
        assert second["status"] == "skipped"
        gate.set()
        assert (await first)["status"] == "completed"
        assert reconciler.get_status()["skipped_runs"] == 1

    @pytest.mark.asyncio
    async def test_conflict_log_is_bounded(self, container: ServiceContainer):
        reconciler = _reconciler(container, conflict_capacity=3)
        for user_id in range(1, 4):
            cached = await _active_user(container, user_id)
            await container.cache.set(statistics_key(user_id), {**cached, "games_played": 50, "total_score": 0})
        await reconciler.run_once()
        assert len(reconciler.conflicts) == 3
        assert reconciler.get_status()["total_conflicts"] == 6

        assert reconciler.clear_conflict_history() == 3
        assert reconciler.conflicts == []


class TestControl:
    @pytest.mark.asyncio
    async def test_force_sync_reports_store_failure(self, container: ServiceContainer):
        reconciler = _reconciler(container)

        async def broken(_since):
            raise RuntimeError("store unavailable")

        container.store.list_active_users = broken
        result = await reconciler.force_sync()
        assert result["status"] == "failed"
        status = reconciler.get_status()
        assert status["failures"] == 1
        assert "store unavailable" in status["last_error"]
        assert status["sync_in_progress"] is False

    @pytest.mark.asyncio
    async def test_interval_floor(self, container: ServiceContainer):
        reconciler = _reconciler(container)
        with pytest.raises(ValidationError):
            reconciler.set_sync_interval(30)
        assert reconciler.set_sync_interval(120) == 120
        assert reconciler.get_status()["sync_interval"] == 120

    @pytest.mark.asyncio
    async def test_start_and_stop(self, container: ServiceContainer):
        reconciler = _reconciler(container, initial_delay=60)
        reconciler.start()
        await asyncio.sleep(0)
        status = reconciler.get_status()
        assert status["running"] is True
        assert status["next_sync_time"] is not None
        await reconciler.stop()
        assert reconciler.running is False
