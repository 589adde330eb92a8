"""Periodic cache warm-up of the hottest reads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from quizarena.cache.service import TieredCache
from quizarena.leaderboard.service import LeaderboardService
from quizarena.scheduler import PeriodicRunner

logger = structlog.get_logger()


class CacheWarmer:
    """Precomputes top players and the first page of every global board."""

    def __init__(
        self,
        cache: TieredCache,
        leaderboard: LeaderboardService,
        *,
        interval: float = 600,
        initial_delay: float = 0.0,
    ) -> None:
        self._cache = cache
        self._leaderboard = leaderboard
        self._in_progress = False
        self._last_warm: datetime | None = None
        self._last_result: dict[str, int] | None = None
        self._runner = PeriodicRunner("cache-warmer", self.warm, interval, initial_delay=initial_delay)

    def start(self) -> None:
        self._runner.start()

    async def stop(self) -> None:
        await self._runner.stop()

    async def warm(self) -> dict[str, Any]:
        if self._in_progress:
            return {"status": "skipped", "reason": "warming already in progress"}
        self._in_progress = True
        try:
            result = await self._cache.warm(self._leaderboard.warm_entries())
        finally:
            self._in_progress = False
        self._last_warm = datetime.now(timezone.utc)
        self._last_result = result
        logger.info("cache_warmed", **result)
        return {"status": "completed", **result}

    async def force_warm(self) -> dict[str, Any]:
        result = await self._runner.run_once()
        if result is None:
            return {"status": "failed", "error": self._runner.last_error}
        return result

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self._runner.running,
            "warming_in_progress": self._in_progress,
            "last_warm_time": self._last_warm.isoformat() if self._last_warm else None,
            "last_result": self._last_result,
            "warm_interval": self._runner.interval,
            "failures": self._runner.failures,
            "cache_stats": self._cache.get_stats(),
        }
