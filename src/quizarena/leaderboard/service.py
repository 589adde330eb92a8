"""Leaderboard ranking over per-period accumulation rows.

Rows are upserted per (user, window, category, period). Rank is never
stored: it is the 1-based position under score desc, xp desc, earliest row,
lowest user id. Reads go through the tiered cache; writes invalidate it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from quizarena.cache.keys import (
    LEADERBOARD_PREFIX,
    TOP_PLAYERS_PREFIX,
    USER_RANK_PREFIX,
    leaderboard_key,
    top_players_key,
    user_rank_key,
)
from quizarena.cache.service import TieredCache, WarmEntry
from quizarena.errors import ValidationError
from quizarena.leaderboard.periods import (
    RETENTION,
    WINDOW_TYPES,
    resolve_period,
    retention_cutoffs,
    validate_window,
)
from quizarena.store.base import LeaderboardRow, ProgressionStore
from quizarena.ws.notifier import Notifier

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
DEFAULT_TOP_PLAYERS = 10
TOP_PLAYERS_TTL = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_percentile(rank: int, total: int) -> float:
    """100 for first place, approaching 0 for last. 0 when nobody is ranked."""
    if total <= 0 or rank <= 0:
        return 0.0
    return round(100 * (1 - (rank - 1) / total), 2)


def _validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset cannot be negative")


class LeaderboardService:
    def __init__(
        self,
        store: ProgressionStore,
        cache: TieredCache,
        notifier: Notifier,
        *,
        timezone_name: str = "UTC",
        ttls: dict[str, int] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._cache = cache
        self._notifier = notifier
        self._tz = ZoneInfo(timezone_name)
        self._ttls = ttls or {}
        self._clock = clock

    def period(self, window_type: str, now: datetime | None = None) -> tuple[datetime, datetime]:
        return resolve_period(window_type, now or self._clock(), self._tz)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record_game(
        self,
        user_id: int,
        score: int,
        xp_earned: int,
        category_id: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Add a game to every window, globally and for its category.

        Returns the number of rows touched.
        """
        if score < 0 or xp_earned < 0:
            raise ValidationError("score and xp_earned cannot be negative")
        now = now or self._clock()
        scopes: list[int | None] = [None] if category_id is None else [None, category_id]

        touched = 0
        for window_type in WINDOW_TYPES:
            start, end = self.period(window_type, now)
            for scope in scopes:
                await self._store.increment_leaderboard_entry(
                    user_id, window_type, scope, start, end,
                    score=score, xp_earned=xp_earned, now=now,
                )
                touched += 1

        await self.invalidate()
        for window_type in WINDOW_TYPES:
            for scope in scopes:
                await self._notifier.leaderboard_update(
                    window_type, scope, {"user_id": user_id, "score": score, "xp_earned": xp_earned}
                )
        return touched

    async def invalidate(self) -> None:
        for prefix in (LEADERBOARD_PREFIX, USER_RANK_PREFIX, TOP_PLAYERS_PREFIX):
            await self._cache.delete_prefix(prefix)

    async def cleanup_old_entries(self, now: datetime | None = None) -> dict[str, int]:
        """Delete expired daily/weekly/monthly rows. all_time is kept."""
        cutoffs = retention_cutoffs(now or self._clock())
        deleted = {}
        for window_type in RETENTION:
            deleted[window_type] = await self._store.delete_leaderboard_before(window_type, cutoffs[window_type])
        if any(deleted.values()):
            await self._cache.delete_prefix(LEADERBOARD_PREFIX)
            await self._cache.delete_prefix(USER_RANK_PREFIX)
        logger.info("Leaderboard cleanup removed %s", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _enrich(self, rows: list[LeaderboardRow], offset: int) -> list[dict[str, Any]]:
        user_ids = [row.user_id for row in rows]
        usernames = await self._store.get_usernames(user_ids)
        progressions = await self._store.get_progressions(user_ids)
        entries = []
        for position, row in enumerate(rows):
            progression = progressions.get(row.user_id)
            entries.append({
                "rank": offset + position + 1,
                "user_id": row.user_id,
                "username": usernames.get(row.user_id, f"player{row.user_id}"),
                "level": progression.level if progression else 1,
                "title": progression.title if progression else None,
                "score": row.score,
                "xp_earned": row.xp_earned,
                "games_played": row.games_played,
            })
        return entries

    async def build_leaderboard(
        self,
        window_type: str,
        category_id: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_window(window_type)
        _validate_page(limit, offset)
        start, end = self.period(window_type, now)
        rows = await self._store.list_leaderboard(window_type, category_id, start, limit, offset)
        total = await self._store.count_leaderboard(window_type, category_id, start)
        return {
            "window_type": window_type,
            "category_id": category_id,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "entries": await self._enrich(rows, offset),
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    async def get_leaderboard(
        self,
        window_type: str,
        category_id: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_window(window_type)
        _validate_page(limit, offset)
        start, _ = self.period(window_type, now)
        return await self._cache.get_with_refresh(
            leaderboard_key(window_type, start, category_id, limit=limit, offset=offset),
            lambda: self.build_leaderboard(window_type, category_id, limit, offset, now),
            ttl=self._ttls.get(window_type),
        )

    async def build_user_rank(
        self,
        user_id: int,
        window_type: str,
        category_id: int | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_window(window_type)
        start, _ = self.period(window_type, now)
        total = await self._store.count_leaderboard(window_type, category_id, start)
        row = await self._store.get_leaderboard_row(user_id, window_type, category_id, start)
        if row is None:
            return {
                "user_id": user_id,
                "window_type": window_type,
                "category_id": category_id,
                "rank": None,
                "score": 0,
                "xp_earned": 0,
                "games_played": 0,
                "percentile": 0.0,
                "total_entries": total,
            }
        rank = await self._store.count_ranked_ahead(row) + 1
        return {
            "user_id": user_id,
            "window_type": window_type,
            "category_id": category_id,
            "rank": rank,
            "score": row.score,
            "xp_earned": row.xp_earned,
            "games_played": row.games_played,
            "percentile": calculate_percentile(rank, total),
            "total_entries": total,
        }

    async def get_user_rank(
        self,
        user_id: int,
        window_type: str,
        category_id: int | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        validate_window(window_type)
        start, _ = self.period(window_type, now)
        return await self._cache.get_with_refresh(
            user_rank_key(user_id, window_type, start, category_id),
            lambda: self.build_user_rank(user_id, window_type, category_id, now),
            ttl=self._ttls.get(window_type),
        )

    async def get_user_all_ranks(self, user_id: int, now: datetime | None = None) -> dict[str, dict[str, Any]]:
        """Global rank in every window."""
        return {
            window_type: await self.get_user_rank(user_id, window_type, None, now)
            for window_type in WINDOW_TYPES
        }

    async def build_top_players(self, limit: int = DEFAULT_TOP_PLAYERS) -> list[dict[str, Any]]:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        records = await self._store.list_top_progressions(limit)
        usernames = await self._store.get_usernames([r.user_id for r in records])
        return [
            {
                "rank": position,
                "user_id": record.user_id,
                "username": usernames.get(record.user_id, f"player{record.user_id}"),
                "total_xp": record.total_xp,
                "level": record.level,
                "title": record.title,
            }
            for position, record in enumerate(records, start=1)
        ]

    async def get_top_players(self, limit: int = DEFAULT_TOP_PLAYERS) -> list[dict[str, Any]]:
        """Highest total XP overall, independent of period rows."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        return await self._cache.get_with_refresh(
            top_players_key(limit),
            lambda: self.build_top_players(limit),
            ttl=TOP_PLAYERS_TTL,
        )

    def warm_entries(self, page_size: int = DEFAULT_PAGE_SIZE) -> list[WarmEntry]:
        """Hot reads to precompute: top players and page one of each global board."""
        entries = [
            WarmEntry(top_players_key(DEFAULT_TOP_PLAYERS), lambda: self.build_top_players(DEFAULT_TOP_PLAYERS),
                      TOP_PLAYERS_TTL),
        ]
        for window_type in WINDOW_TYPES:
            start, _ = self.period(window_type)
            entries.append(
                WarmEntry(
                    leaderboard_key(window_type, start, None, limit=page_size, offset=0),
                    lambda w=window_type: self.build_leaderboard(w, None, page_size, 0),
                    self._ttls.get(window_type),
                )
            )
        return entries
