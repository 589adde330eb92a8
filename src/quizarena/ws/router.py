"""WebSocket endpoint: token auth, leaderboard room subscriptions, keepalive."""

import json
import uuid

import jwt
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from quizarena.auth.jwt import user_id_from_token
from quizarena.container import ServiceContainer
from quizarena.errors import ValidationError
from quizarena.ws.manager import room_name
from quizarena.ws.notifier import EVENT_LEADERBOARD_INITIAL, EVENT_RANK_UPDATE

logger = structlog.get_logger()

router = APIRouter()

DEFAULT_SNAPSHOT_SIZE = 100


def _room_from(msg: dict) -> str | None:
    window_type = msg.get("window_type") or msg.get("window")
    if not isinstance(window_type, str):
        return None
    category_id = msg.get("category_id")
    if category_id is not None and (isinstance(category_id, bool) or not isinstance(category_id, int)):
        return None
    return room_name(window_type, category_id)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Single realtime endpoint.

    Protocol:
        Client -> Server:
            {"action": "subscribe", "window_type": "weekly", "category_id": 3}
            {"action": "unsubscribe", "window_type": "weekly"}
            {"action": "leaderboard:subscribe", "window_type": "weekly", "limit": 20}
            {"action": "rank:subscribe"}
            {"action": "ping"}

        Server -> Client:
            {"event": "progression:update", "data": {...}}
            {"event": "leaderboard:initial", "data": {"window_type": ..., "leaderboard": {...}}}
            {"event": "rank:update", "data": {"ranks": {...}}}
            {"type": "subscribed", "room": "leaderboard:weekly:3"}
            {"type": "unsubscribed", "room": "leaderboard:weekly"}
            {"type": "pong"}
            {"type": "error", "message": "..."}
    """
    try:
        user_id = user_id_from_token(token)
    except jwt.InvalidTokenError as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    container: ServiceContainer = websocket.app.state.container
    manager = container.connections
    conn_id = str(uuid.uuid4())
    await manager.connect(websocket, conn_id, user_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await websocket.send_json({"type": "error", "message": "Expected a JSON object"})
                continue

            action = msg.get("action")

            if action == "subscribe":
                room = _room_from(msg)
                if room is not None and await manager.join_room(conn_id, room):
                    await websocket.send_json({"type": "subscribed", "room": room})
                else:
                    await websocket.send_json({"type": "error", "message": "Invalid leaderboard room"})

            elif action == "unsubscribe":
                room = _room_from(msg)
                if room is not None:
                    await manager.leave_room(conn_id, room)
                await websocket.send_json({"type": "unsubscribed", "room": room})

            elif action == "leaderboard:subscribe":
                room = _room_from(msg)
                if room is None or not await manager.join_room(conn_id, room):
                    await websocket.send_json({"type": "error", "message": "Invalid leaderboard room"})
                    continue
                window_type = room.split(":")[1]
                category_id = msg.get("category_id")
                try:
                    board = await container.leaderboard.get_leaderboard(
                        window_type, category_id, limit=msg.get("limit", DEFAULT_SNAPSHOT_SIZE)
                    )
                except (ValidationError, TypeError) as e:
                    await websocket.send_json({"type": "error", "message": str(e)})
                    continue
                await websocket.send_json(container.notifier.envelope(EVENT_LEADERBOARD_INITIAL, {
                    "window_type": window_type,
                    "category_id": category_id,
                    "leaderboard": board,
                }))

            elif action == "rank:subscribe":
                ranks = await container.leaderboard.get_user_all_ranks(user_id)
                await websocket.send_json(container.notifier.envelope(EVENT_RANK_UPDATE, {"ranks": ranks}))

            elif action == "ping":
                await websocket.send_json({"type": "pong"})

            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                })

    except WebSocketDisconnect:
        await manager.disconnect(conn_id)
    except Exception:
        logger.exception("ws_error", conn_id=conn_id)
        await manager.disconnect(conn_id)
