"""Cache key derivation.

Equal queries must map to the same key: parameters are sorted by name,
None values dropped and list values sorted before they are joined.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

PROGRESSION_PREFIX = "progression:"
STATISTICS_PREFIX = "stats:"
ACHIEVEMENTS_PREFIX = "achievements:"
LEADERBOARD_PREFIX = "leaderboard:"
USER_RANK_PREFIX = "user_rank:"
TOP_PLAYERS_PREFIX = "top_players:"


def _normalize(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_normalize(v) for v in value))
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def build_cache_key(namespace: str, *parts: Any, **params: Any) -> str:
    """``namespace:part1:part2:a=1:b=x,y`` with parameters in name order."""
    segments = [namespace.rstrip(":")]
    segments.extend(_normalize(p) for p in parts)
    segments.extend(
        f"{name}={_normalize(value)}"
        for name, value in sorted(params.items())
        if value is not None
    )
    return ":".join(segments)


def progression_key(user_id: int) -> str:
    return build_cache_key(PROGRESSION_PREFIX, user_id)


def statistics_key(user_id: int) -> str:
    return build_cache_key(STATISTICS_PREFIX, user_id)


def achievements_key(user_id: int) -> str:
    return build_cache_key(ACHIEVEMENTS_PREFIX, user_id)


def leaderboard_key(
    window_type: str, period_start: datetime, category_id: int | None = None, *, limit: int, offset: int
) -> str:
    return build_cache_key(
        LEADERBOARD_PREFIX,
        window_type,
        int(period_start.timestamp()),
        category=category_id,
        limit=limit,
        offset=offset,
    )


def user_rank_key(user_id: int, window_type: str, period_start: datetime, category_id: int | None = None) -> str:
    return build_cache_key(
        USER_RANK_PREFIX, user_id, window_type, int(period_start.timestamp()), category=category_id
    )


def top_players_key(limit: int) -> str:
    return build_cache_key(TOP_PLAYERS_PREFIX, limit=limit)
