"""WebSocket connection registry.

Tracks live connections by id, by user and by leaderboard room, and fans
messages out to them. Delivery is best-effort: a send that fails or times
out drops the connection, and nothing is queued for later.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import WebSocket

from quizarena.leaderboard.periods import WINDOW_TYPES

logger = structlog.get_logger()

ROOM_PREFIX = "leaderboard"


def room_name(window_type: str, category_id: int | None = None) -> str:
    """``leaderboard:{window}`` or ``leaderboard:{window}:{category}``."""
    if category_id is None:
        return f"{ROOM_PREFIX}:{window_type}"
    return f"{ROOM_PREFIX}:{window_type}:{category_id}"


def is_valid_room(room: str) -> bool:
    parts = room.split(":")
    if len(parts) not in (2, 3) or parts[0] != ROOM_PREFIX or parts[1] not in WINDOW_TYPES:
        return False
    return len(parts) == 2 or parts[2].isdigit()


@dataclass
class ClientConnection:
    """A single WebSocket client."""

    websocket: WebSocket
    user_id: int
    rooms: set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Owns all live connections for this process.

    Single event loop, so the dicts need no locking.
    """

    def __init__(self, send_timeout: float = 2.0) -> None:
        self._send_timeout = send_timeout
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._rooms: dict[str, set[str]] = defaultdict(set)  # room -> {conn_ids}
        self._user_connections: dict[int, set[str]] = defaultdict(set)  # user_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, conn_id: str, user_id: int) -> None:
        """Accept and register an already authenticated connection."""
        await websocket.accept()
        self._connections[conn_id] = ClientConnection(websocket=websocket, user_id=user_id)
        self._user_connections[user_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, user_id=user_id)

    async def disconnect(self, conn_id: str) -> None:
        """Remove a connection and its room memberships."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return

        for room in client.rooms:
            members = self._rooms.get(room)
            if members is not None:
                members.discard(conn_id)
                if not members:
                    del self._rooms[room]

        self._user_connections[client.user_id].discard(conn_id)
        if not self._user_connections[client.user_id]:
            del self._user_connections[client.user_id]

        logger.info("ws_disconnected", conn_id=conn_id, user_id=client.user_id)

    async def join_room(self, conn_id: str, room: str) -> bool:
        """Add a connection to a leaderboard room. Returns False if invalid."""
        client = self._connections.get(conn_id)
        if client is None or not is_valid_room(room):
            return False
        client.rooms.add(room)
        self._rooms[room].add(conn_id)
        logger.debug("ws_joined_room", conn_id=conn_id, room=room)
        return True

    async def leave_room(self, conn_id: str, room: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False
        client.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(conn_id)
            if not members:
                del self._rooms[room]
        return True

    async def _send_one(self, conn_id: str, payload: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False
        await asyncio.wait_for(client.websocket.send_text(payload), self._send_timeout)
        client.messages_sent += 1
        return True

    async def _deliver(self, conn_ids: list[str], payload: str) -> int:
        """Send to all targets concurrently, so one slow client costs at most one timeout."""
        results = await asyncio.gather(
            *(self._send_one(conn_id, payload) for conn_id in conn_ids),
            return_exceptions=True,
        )
        sent = 0
        for conn_id, result in zip(conn_ids, results):
            if isinstance(result, BaseException):
                logger.info("ws_send_failed", conn_id=conn_id, error=repr(result))
                await self.disconnect(conn_id)
            elif result:
                sent += 1
        return sent

    async def send_to_user(self, user_id: int, message: dict[str, Any]) -> int:
        """Send to every connection of one user. Returns deliveries."""
        conn_ids = list(self._user_connections.get(user_id, ()))
        if not conn_ids:
            return 0
        return await self._deliver(conn_ids, json.dumps(message, default=str))

    async def broadcast_to_room(self, room: str, message: dict[str, Any]) -> int:
        conn_ids = list(self._rooms.get(room, ()))
        if not conn_ids:
            return 0
        return await self._deliver(conn_ids, json.dumps(message, default=str))

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Send to every connection in this process."""
        conn_ids = list(self._connections)
        if not conn_ids:
            return 0
        return await self._deliver(conn_ids, json.dumps(message, default=str))

    def rooms_of(self, conn_id: str) -> set[str]:
        client = self._connections.get(conn_id)
        return set(client.rooms) if client else set()

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
            "rooms": {room: len(conns) for room, conns in self._rooms.items() if conns},
        }

    async def close_all(self) -> None:
        for conn_id in list(self._connections):
            client = self._connections.get(conn_id)
            if client is not None:
                try:
                    await client.websocket.close(code=1001)
                except Exception:
                    logger.debug("ws_close_failed", conn_id=conn_id)
            await self.disconnect(conn_id)
