"""Redis connection pool backing the shared cache tier.

An empty URL means no shared tier: the cache runs on its local fallback only.
"""

from __future__ import annotations

import redis.asyncio as redis

_pool: redis.Redis | None = None


async def init_redis(url: str, *, op_timeout: float | None = None) -> redis.Redis | None:
    """Create the pool. Returns None when the shared tier is disabled."""
    global _pool  # noqa: PLW0603
    if not url:
        _pool = None
        return None
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
        socket_connect_timeout=op_timeout,
        socket_timeout=op_timeout,
    )
    return _pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None
