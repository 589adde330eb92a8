"""WebSocket endpoint: auth, subscriptions and keepalive."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from quizarena.auth.jwt import create_access_token
from quizarena.container import ServiceContainer, assemble_container
from quizarena.store.memory import MemoryStore

from conftest import make_settings


@pytest.fixture
def test_client() -> TestClient:
    """Sync client with an in-memory container; lifespan is not run."""
    from quizarena.main import create_app

    app = create_app()
    app.state.container = assemble_container(make_settings(), MemoryStore())
    return TestClient(app)


@pytest.fixture
def services() -> ServiceContainer:
    """Container whose weekly board already holds two players."""
    container = assemble_container(make_settings(), MemoryStore())

    async def _seed() -> None:
        await container.store.ensure_user(1, "ada")
        await container.store.ensure_user(2, "grace")
        await container.leaderboard.record_game(1, 300, 30)
        await container.leaderboard.record_game(2, 500, 50)

    asyncio.run(_seed())
    return container


@pytest.fixture
def seeded_client(services: ServiceContainer) -> TestClient:
    from quizarena.main import create_app

    app = create_app()
    app.state.container = services
    return TestClient(app)


@pytest.fixture
def ws_token() -> str:
    return create_access_token(1)


class TestWebSocketAuth:
    def test_connect_with_valid_token(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_token_closes_4001(self, test_client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect("/ws?token=not-a-jwt") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_expired_token_closes_4001(self, test_client: TestClient) -> None:
        token = create_access_token(1, expires_minutes=-5)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with test_client.websocket_connect(f"/ws?token={token}") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4001


class TestSubscriptions:
    def test_subscribe_global_room(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "window_type": "weekly"})
            assert ws.receive_json() == {"type": "subscribed", "room": "leaderboard:weekly"}

    def test_subscribe_category_room(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "window": "daily", "category_id": 4})
            assert ws.receive_json() == {"type": "subscribed", "room": "leaderboard:daily:4"}

    def test_subscribe_unknown_window(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "window_type": "hourly"})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["message"] == "Invalid leaderboard room"

    def test_unsubscribe(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "subscribe", "window_type": "monthly"})
            ws.receive_json()
            ws.send_json({"action": "unsubscribe", "window_type": "monthly"})
            assert ws.receive_json() == {"type": "unsubscribed", "room": "leaderboard:monthly"}


class TestSnapshots:
    def test_leaderboard_subscribe_sends_initial_board(
        self, seeded_client: TestClient, services: ServiceContainer, ws_token: str
    ) -> None:
        with seeded_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "leaderboard:subscribe", "window_type": "weekly", "limit": 10})
            reply = ws.receive_json()
            assert reply["event"] == "leaderboard:initial"
            assert reply["data"]["window_type"] == "weekly"
            assert reply["data"]["category_id"] is None
            entries = reply["data"]["leaderboard"]["entries"]
            assert [(e["username"], e["rank"]) for e in entries] == [("grace", 1), ("ada", 2)]
            assert "timestamp" in reply["data"]
            assert services.connections.get_stats()["rooms"] == {"leaderboard:weekly": 1}

    def test_leaderboard_subscribe_invalid_room(self, seeded_client: TestClient, ws_token: str) -> None:
        with seeded_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "leaderboard:subscribe", "window_type": "hourly"})
            assert ws.receive_json() == {"type": "error", "message": "Invalid leaderboard room"}

    def test_leaderboard_subscribe_bad_limit(self, seeded_client: TestClient, ws_token: str) -> None:
        with seeded_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "leaderboard:subscribe", "window_type": "weekly", "limit": 0})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert "limit" in reply["message"]

    def test_rank_subscribe_sends_all_windows(self, seeded_client: TestClient, ws_token: str) -> None:
        with seeded_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "rank:subscribe"})
            reply = ws.receive_json()
            assert reply["event"] == "rank:update"
            ranks = reply["data"]["ranks"]
            assert set(ranks) == {"daily", "weekly", "monthly", "all_time"}
            assert ranks["weekly"]["rank"] == 2
            assert ranks["weekly"]["total_entries"] == 2

class TestProtocolErrors:
    def test_invalid_json(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_text("{nope")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}

    def test_non_object_message(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json([1, 2])
            assert ws.receive_json()["type"] == "error"

    def test_unknown_action(self, test_client: TestClient, ws_token: str) -> None:
        with test_client.websocket_connect(f"/ws?token={ws_token}") as ws:
            ws.send_json({"action": "dance"})
            reply = ws.receive_json()
            assert reply == {"type": "error", "message": "Unknown action: dance"}
