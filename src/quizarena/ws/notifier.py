"""Real-time event fan-out.

Every event is wrapped as ``{"event": name, "data": {..., "timestamp": iso}}``.
Notifier calls are fire-and-forget for the caller: delivery failures are
logged and swallowed, never raised into the game-completion flow.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from quizarena.ws.manager import ConnectionManager, room_name

logger = logging.getLogger(__name__)

EVENT_PROGRESSION_UPDATE = "progression:update"
EVENT_LEVEL_UP = "progression:levelup"
EVENT_ACHIEVEMENT_UNLOCKED = "achievement:unlocked"
EVENT_LEADERBOARD_UPDATE = "leaderboard:update"
EVENT_GLOBAL_LEVEL_UP = "global:levelup"
EVENT_GLOBAL_QUIZ_COMPLETE = "global:quizcomplete"
EVENT_GLOBAL_STREAK = "global:streak"
EVENT_LEADERBOARD_INITIAL = "leaderboard:initial"
EVENT_RANK_UPDATE = "rank:update"
EVENT_RANK_CHANGED = "rank:changed"
EVENT_GLOBAL_TOP_TEN = "global:topten"

STREAK_MILESTONES = frozenset({3, 7, 14, 30, 50, 100})
TOP_TEN = 10

UsernameLookup = Callable[[Sequence[int]], Awaitable[dict[int, str]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Notifier:
    def __init__(
        self,
        connections: ConnectionManager,
        clock: Callable[[], datetime] = _utcnow,
        usernames: UsernameLookup | None = None,
    ) -> None:
        self._connections = connections
        self._clock = clock
        self._usernames = usernames

    def envelope(self, event: str, data: dict[str, Any]) -> dict[str, Any]:
        return {"event": event, "data": {**data, "timestamp": self._clock().isoformat()}}

    async def _emit(self, event: str, send: Callable[[dict[str, Any]], Awaitable[int]], data: dict[str, Any]) -> int:
        try:
            return await send(self.envelope(event, data))
        except Exception:
            logger.warning("Failed to emit %s", event, exc_info=True)
            return 0

    async def _username(self, user_id: int) -> str | None:
        """Display name for global announcements, or None if it cannot be resolved."""
        if self._usernames is None or not self._connections.connection_count:
            return None
        try:
            names = await self._usernames([user_id])
        except Exception:
            logger.warning("Username lookup failed for user %s", user_id, exc_info=True)
            return None
        return names.get(user_id)

    # --- Per-user ---

    async def progression_update(self, user_id: int, progression: dict[str, Any]) -> int:
        return await self._emit(
            EVENT_PROGRESSION_UPDATE,
            lambda msg: self._connections.send_to_user(user_id, msg),
            progression,
        )

    async def achievement_unlocked(self, user_id: int, achievement: dict[str, Any]) -> int:
        return await self._emit(
            EVENT_ACHIEVEMENT_UNLOCKED,
            lambda msg: self._connections.send_to_user(user_id, msg),
            {"achievement": achievement},
        )

    async def level_up(self, user_id: int, previous_level: int, level: int, title: str) -> int:
        """Tell the player, then announce to everyone connected."""
        sent = await self._emit(
            EVENT_LEVEL_UP,
            lambda msg: self._connections.send_to_user(user_id, msg),
            {"user_id": user_id, "level": level, "previous_level": previous_level, "title": title},
        )
        sent += await self._emit(
            EVENT_GLOBAL_LEVEL_UP,
            self._connections.broadcast,
            {"user_id": user_id, "username": await self._username(user_id), "level": level},
        )
        return sent

    async def rank_update(self, user_id: int, ranks: dict[str, Any]) -> int:
        return await self._emit(
            EVENT_RANK_UPDATE,
            lambda msg: self._connections.send_to_user(user_id, msg),
            {"ranks": ranks},
        )

    async def rank_changed(self, user_id: int, window_type: str, old_rank: int | None, new_rank: int) -> int:
        """Tell the player their rank moved; announce it when they climb into the top ten.

        An old rank of None means the player had no entry yet, which counts as a climb.
        """
        improved = old_rank is None or new_rank < old_rank
        sent = await self._emit(
            EVENT_RANK_CHANGED,
            lambda msg: self._connections.send_to_user(user_id, msg),
            {"window_type": window_type, "old_rank": old_rank, "new_rank": new_rank, "improved": improved},
        )
        if improved and new_rank <= TOP_TEN:
            sent += await self._emit(
                EVENT_GLOBAL_TOP_TEN,
                self._connections.broadcast,
                {
                    "user_id": user_id,
                    "username": await self._username(user_id),
                    "rank": new_rank,
                    "window_type": window_type,
                },
            )
        return sent

    # --- Rooms and global ---

    async def leaderboard_update(self, window_type: str, category_id: int | None, data: dict[str, Any]) -> int:
        room = room_name(window_type, category_id)
        return await self._emit(
            EVENT_LEADERBOARD_UPDATE,
            lambda msg: self._connections.broadcast_to_room(room, msg),
            {"window_type": window_type, "category_id": category_id, **data},
        )

    async def quiz_completed(
        self, user_id: int, score: int, category_id: int | None = None, **details: Any
    ) -> int:
        return await self._emit(
            EVENT_GLOBAL_QUIZ_COMPLETE,
            self._connections.broadcast,
            {
                "user_id": user_id,
                "username": await self._username(user_id),
                "score": score,
                "category": category_id,
                **details,
            },
        )

    async def streak_milestone(self, user_id: int, streak: int) -> int:
        """Announce a streak only when it lands exactly on a milestone."""
        if streak not in STREAK_MILESTONES:
            return 0
        return await self._emit(
            EVENT_GLOBAL_STREAK,
            self._connections.broadcast,
            {"user_id": user_id, "username": await self._username(user_id), "streak": streak},
        )
