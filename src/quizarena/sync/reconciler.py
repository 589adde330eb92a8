"""Cache/store reconciliation.

On a timer, compares the cached statistics snapshot of recently active users
against a fresh computation from the authoritative store. Fields that drift
beyond tolerance are conflicts: the store value wins, the cache entry is
replaced and the conflict is recorded in a bounded log.
"""

from __future__ import annotations

import random
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from quizarena.cache.keys import statistics_key
from quizarena.cache.service import TieredCache
from quizarena.errors import ConflictDetected, ValidationError
from quizarena.progression.stats_service import StatisticsService
from quizarena.scheduler import PeriodicRunner
from quizarena.store.base import ProgressionStore

logger = structlog.get_logger()

MIN_SYNC_INTERVAL = 60
DEFAULT_SYNC_INTERVAL = 300


def _relative_tolerance(floor: float, fraction: float) -> Callable[[float, float], bool]:
    def drifted(cached: float, fresh: float) -> bool:
        return abs(cached - fresh) > max(floor, abs(fresh) * fraction)

    return drifted


def _absolute_tolerance(limit: float) -> Callable[[float, float], bool]:
    def drifted(cached: float, fresh: float) -> bool:
        return abs(cached - fresh) > limit

    return drifted


# field -> predicate(cached, fresh) that is True when the drift is a conflict
FIELD_TOLERANCES: dict[str, Callable[[float, float], bool]] = {
    "total_score": _relative_tolerance(10, 0.05),
    "total_xp": _relative_tolerance(10, 0.05),
    "accuracy": _absolute_tolerance(5),
    "games_played": _absolute_tolerance(0),
}


@dataclass(frozen=True)
class ConflictRecord:
    user_id: int
    field: str
    cached_value: float
    fresh_value: float
    detected_at: str

    @classmethod
    def from_error(cls, error: ConflictDetected, detected_at: datetime) -> ConflictRecord:
        return cls(
            user_id=error.user_id,
            field=error.field,
            cached_value=error.cached_value,
            fresh_value=error.fresh_value,
            detected_at=detected_at.isoformat(),
        )


def find_conflicts(user_id: int, cached: dict[str, Any], fresh: dict[str, Any]) -> list[ConflictDetected]:
    conflicts = []
    for field, drifted in FIELD_TOLERANCES.items():
        cached_value, fresh_value = cached.get(field), fresh.get(field)
        if not isinstance(cached_value, (int, float)) or not isinstance(fresh_value, (int, float)):
            continue
        if drifted(cached_value, fresh_value):
            conflicts.append(ConflictDetected(user_id, field, cached_value, fresh_value))
    return conflicts


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncReconciler:
    def __init__(
        self,
        store: ProgressionStore,
        statistics: StatisticsService,
        cache: TieredCache,
        *,
        interval: float = DEFAULT_SYNC_INTERVAL,
        initial_delay: float = 0.0,
        activity_window: timedelta = timedelta(hours=24),
        sample_size: int = 0,
        conflict_capacity: int = 100,
        cache_ttl: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._statistics = statistics
        self._cache = cache
        self._activity_window = activity_window
        self._sample_size = sample_size
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._conflicts: deque[ConflictRecord] = deque(maxlen=conflict_capacity)
        self._total_conflicts = 0
        self._in_progress = False
        self._runs = 0
        self._skipped = 0
        self._last_sync: datetime | None = None
        self._last_result: dict[str, Any] | None = None
        self._runner = PeriodicRunner(
            "sync-reconciler",
            self._scheduled_run,
            max(MIN_SYNC_INTERVAL, interval),
            initial_delay=initial_delay,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._runner.start()

    async def stop(self) -> None:
        await self._runner.stop()

    @property
    def running(self) -> bool:
        return self._runner.running

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def _scheduled_run(self) -> dict[str, Any]:
        return await self.run_once()

    async def run_once(self) -> dict[str, Any]:
        """Reconcile once. A run already in progress makes this a no-op.

        Raises whatever the store raises; the scheduled loop records it.
        """
        if self._in_progress:
            self._skipped += 1
            logger.info("sync_skipped_overlap")
            return {"status": "skipped", "reason": "sync already in progress"}

        self._in_progress = True
        started = time.monotonic()
        now = self._clock()
        try:
            users = await self._store.list_active_users(now - self._activity_window)
            if self._sample_size and len(users) > self._sample_size:
                users = random.sample(users, self._sample_size)

            checked = conflicted = 0
            for user_id in users:
                cached = await self._cache.get(statistics_key(user_id))
                if not isinstance(cached, dict):
                    continue
                checked += 1
                fresh = await self._statistics.build_statistics(user_id)
                conflicts = find_conflicts(user_id, cached, fresh)
                if conflicts:
                    conflicted += 1
                    await self._resolve(user_id, fresh, conflicts, now)
        finally:
            self._in_progress = False

        self._runs += 1
        self._last_sync = now
        self._last_result = {
            "status": "completed",
            "active_users": len(users),
            "checked": checked,
            "conflicted_users": conflicted,
            "duration_ms": round((time.monotonic() - started) * 1000, 2),
        }
        logger.info("sync_completed", **self._last_result)
        return self._last_result

    async def _resolve(
        self, user_id: int, fresh: dict[str, Any], conflicts: list[ConflictDetected], now: datetime
    ) -> None:
        key = statistics_key(user_id)
        await self._cache.delete(key)
        await self._cache.set(key, fresh, self._cache_ttl)
        for conflict in conflicts:
            self._conflicts.append(ConflictRecord.from_error(conflict, now))
            self._total_conflicts += 1
            logger.warning(
                "sync_conflict",
                user_id=user_id,
                field=conflict.field,
                cached=conflict.cached_value,
                fresh=conflict.fresh_value,
            )

    async def force_sync(self) -> dict[str, Any]:
        """Run now. Failures are recorded and reported, not raised."""
        result = await self._runner.run_once()
        if result is None:
            return {"status": "failed", "error": self._runner.last_error}
        return result

    # ------------------------------------------------------------------
    # Control and status
    # ------------------------------------------------------------------

    def set_sync_interval(self, seconds: float) -> float:
        if seconds < MIN_SYNC_INTERVAL:
            raise ValidationError(f"sync interval cannot be below {MIN_SYNC_INTERVAL} seconds")
        self._runner.interval = seconds
        logger.info("sync_interval_changed", interval=seconds)
        return seconds

    def clear_conflict_history(self) -> int:
        cleared = len(self._conflicts)
        self._conflicts.clear()
        return cleared

    @property
    def conflicts(self) -> list[ConflictRecord]:
        return list(self._conflicts)

    def get_status(self) -> dict[str, Any]:
        next_run = self._runner.next_run_at if self._runner.running else None
        return {
            "running": self._runner.running,
            "sync_in_progress": self._in_progress,
            "sync_interval": self._runner.interval,
            "last_sync_time": self._last_sync.isoformat() if self._last_sync else None,
            "next_sync_time": (
                datetime.fromtimestamp(next_run, tz=timezone.utc).isoformat() if next_run else None
            ),
            "runs": self._runs,
            "skipped_runs": self._skipped,
            "failures": self._runner.failures,
            "last_error": self._runner.last_error,
            "last_result": self._last_result,
            "total_conflicts": self._total_conflicts,
            "recent_conflicts": [asdict(c) for c in list(self._conflicts)[-10:]],
        }
