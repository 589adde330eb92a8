"""HTTP surface: routing, identity, validation and error mapping."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from quizarena.container import ServiceContainer

from conftest import FakeRedis

PLAYER = {"X-User-Id": "7"}


async def _play(client: AsyncClient, user_id: int, **body) -> dict:
    payload = {"correct_answers": 8, "total_questions": 10, **body}
    resp = await client.post("/api/v1/progression/games", json=payload, headers={"X-User-Id": str(user_id)})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_ready(self, client: AsyncClient) -> None:
        body = (await client.get("/ready")).json()
        assert body["status"] == "ready"
        assert body["checks"] == {"store": "ok", "cache": "ok"}

    @pytest.mark.asyncio
    async def test_ready_degraded_when_shared_cache_down(self, client: AsyncClient, fake_redis: FakeRedis) -> None:
        fake_redis.failing = True
        await client.get("/api/v1/progression/statistics", headers=PLAYER)
        body = (await client.get("/ready")).json()
        assert body["status"] == "degraded"
        assert body["checks"]["cache"] == "degraded"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient) -> None:
        resp = await client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert resp.headers["X-Request-Id"] == "abc-123"


class TestIdentity:
    @pytest.mark.asyncio
    async def test_missing_header(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/progression/me")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["abc", "0", "-4"])
    async def test_invalid_header(self, client: AsyncClient, value: str) -> None:
        resp = await client.get("/api/v1/progression/me", headers={"X-User-Id": value})
        assert resp.status_code == 401


class TestProgression:
    @pytest.mark.asyncio
    async def test_new_player_defaults(self, client: AsyncClient) -> None:
        body = (await client.get("/api/v1/progression/me", headers=PLAYER)).json()
        assert body["level"] == 1
        assert body["total_xp"] == 0
        assert body["recent_achievements"] == []

    @pytest.mark.asyncio
    async def test_xp_preview_changes_nothing(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/progression/xp/calculate",
            json={"correct_answers": 10, "total_questions": 10, "difficulty": "medium"},
        )
        assert resp.json()["earned_xp"] == 225
        assert resp.json()["bonuses"] == ["perfect"]
        assert (await client.get("/api/v1/progression/me", headers=PLAYER)).json()["total_xp"] == 0

    @pytest.mark.asyncio
    async def test_domain_validation_maps_to_400(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/progression/xp/calculate", json={"correct_answers": 11, "total_questions": 10})
        assert resp.status_code == 400
        assert "correct_answers" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_schema_validation_maps_to_422(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/progression/xp/calculate",
            json={"correct_answers": 1, "total_questions": 10, "difficulty": "insane"},
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_grant_xp_levels_up(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/progression/xp", json={"earned_xp": 110}, headers=PLAYER)
        body = resp.json()
        assert body["level"] == 2
        assert body["leveled_up"] is True
        assert body["previous_level"] == 1

    @pytest.mark.asyncio
    async def test_grant_must_be_positive(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/progression/xp", json={"earned_xp": 0}, headers=PLAYER)
        assert resp.status_code == 422


class TestGames:
    @pytest.mark.asyncio
    async def test_complete_game(self, client: AsyncClient) -> None:
        body = await _play(client, 7, score=640)
        assert body["xp"]["earned_xp"] == 120
        assert body["score"] == 640
        assert [a["code"] for a in body["new_achievements"]] == ["first_win"]

        me = (await client.get("/api/v1/progression/me", headers=PLAYER)).json()
        assert me["total_xp"] == 145
        assert me["recent_achievements"][0]["code"] == "first_win"

        stats = (await client.get("/api/v1/progression/statistics", headers=PLAYER)).json()
        assert stats["games_played"] == 1
        assert stats["current_streak"] == 1

    @pytest.mark.asyncio
    async def test_achievements_view(self, client: AsyncClient) -> None:
        await _play(client, 7)
        body = (await client.get("/api/v1/progression/achievements", headers=PLAYER)).json()
        assert body["total_earned"] == 1
        assert body["total_available"] == 17
        earned = [a["code"] for group in body["categories"].values() for a in group if a["earned"]]
        assert earned == ["first_win"]

    @pytest.mark.asyncio
    async def test_explicit_achievement_check(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/progression/achievements/check",
            json={"occurred_at": "2024-05-15T05:00:00Z"},
            headers=PLAYER,
        )
        assert [a["code"] for a in resp.json()["new_achievements"]] == ["early_bird"]


class TestLeaderboards:
    @pytest.mark.asyncio
    async def test_board_rank_and_top_players(self, client: AsyncClient) -> None:
        await _play(client, 1, score=100)
        await _play(client, 2, score=300, category_id=4)
        await _play(client, 3, score=200)

        board = (await client.get("/api/v1/progression/leaderboard", params={"window_type": "daily"})).json()
        assert [e["user_id"] for e in board["entries"]] == [2, 3, 1]
        assert [e["rank"] for e in board["entries"]] == [1, 2, 3]
        assert board["total"] == 3

        category = (
            await client.get("/api/v1/progression/leaderboard", params={"window_type": "daily", "category_id": 4})
        ).json()
        assert [e["user_id"] for e in category["entries"]] == [2]

        rank = (await client.get("/api/v1/progression/rank", headers={"X-User-Id": "3"})).json()
        assert rank["rank"] == 2
        assert rank["percentile"] == 66.67

        ranks = (await client.get("/api/v1/progression/ranks", headers={"X-User-Id": "1"})).json()
        assert set(ranks) == {"daily", "weekly", "monthly", "all_time"}
        assert ranks["all_time"]["rank"] == 3

        players = (await client.get("/api/v1/progression/top-players", params={"limit": 2})).json()["players"]
        assert len(players) == 2

    @pytest.mark.asyncio
    async def test_unranked_player(self, client: AsyncClient) -> None:
        rank = (await client.get("/api/v1/progression/rank", headers=PLAYER)).json()
        assert rank["rank"] is None
        assert rank["percentile"] == 0

    @pytest.mark.asyncio
    async def test_unknown_window_rejected(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/progression/leaderboard", params={"window_type": "yearly"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_page_size_capped(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/progression/leaderboard", params={"limit": 1000})
        assert resp.status_code == 422


class TestAdmin:
    @pytest.mark.asyncio
    async def test_sync_status_and_force(self, client: AsyncClient) -> None:
        await _play(client, 7)
        status = (await client.get("/api/v1/admin/sync/status")).json()
        assert status["running"] is False
        assert status["runs"] == 0

        result = (await client.post("/api/v1/admin/sync/force")).json()
        assert result["status"] == "completed"
        assert (await client.get("/api/v1/admin/sync/status")).json()["runs"] == 1

    @pytest.mark.asyncio
    async def test_sync_interval(self, client: AsyncClient, container: ServiceContainer) -> None:
        assert (await client.put("/api/v1/admin/sync/interval", json={"interval_seconds": 30})).status_code == 422
        resp = await client.put("/api/v1/admin/sync/interval", json={"interval_seconds": 900})
        assert resp.json() == {"sync_interval": 900}
        assert container.reconciler.get_status()["sync_interval"] == 900

    @pytest.mark.asyncio
    async def test_clear_conflicts(self, client: AsyncClient) -> None:
        assert (await client.delete("/api/v1/admin/sync/conflicts")).json() == {"cleared": 0}

    @pytest.mark.asyncio
    async def test_cache_endpoints(self, client: AsyncClient) -> None:
        warmed = (await client.post("/api/v1/admin/cache/warm")).json()
        assert warmed["status"] == "completed"
        stats = (await client.get("/api/v1/admin/cache/stats")).json()
        assert set(stats) == {"cache", "warming", "connections"}
        assert stats["cache"]["sets"] >= warmed["warmed"]


@pytest.mark.asyncio
async def test_not_ready_without_container() -> None:
    from quizarena.main import create_app

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.get("/api/v1/progression/me", headers=PLAYER)
    assert resp.status_code == 503
