"""Service wiring.

Every variant decision (storage backend, XP rule set, shared cache tier) is
made here, once, and the services receive their collaborators explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from redis.asyncio import Redis

from quizarena.achievements.evaluator import AchievementEvaluator
from quizarena.cache.service import TieredCache
from quizarena.cache.warming import CacheWarmer
from quizarena.config import Settings
from quizarena.database import close_db, create_schema, get_engine, get_session_factory, init_db
from quizarena.games.pipeline import GameCompletionPipeline
from quizarena.leaderboard.service import LeaderboardService
from quizarena.progression.level_table import LevelTable
from quizarena.progression.locks import KeyedLock
from quizarena.progression.service import ProgressionService
from quizarena.progression.stats_service import StatisticsService
from quizarena.progression.xp_calculator import XpRules, get_xp_rules
from quizarena.redis_client import close_redis, init_redis
from quizarena.seed import load_level_table, seed_reference_data
from quizarena.store.base import ProgressionStore
from quizarena.store.memory import MemoryStore
from quizarena.store.sql import SqlStore
from quizarena.sync.reconciler import SyncReconciler
from quizarena.ws.manager import ConnectionManager
from quizarena.ws.notifier import Notifier

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("database", "memory")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ServiceContainer:
    settings: Settings
    store: ProgressionStore
    cache: TieredCache
    connections: ConnectionManager
    notifier: Notifier
    levels: LevelTable
    rules: XpRules
    progression: ProgressionService
    statistics: StatisticsService
    leaderboard: LeaderboardService
    achievements: AchievementEvaluator
    pipeline: GameCompletionPipeline
    reconciler: SyncReconciler
    warmer: CacheWarmer

    def start_background(self) -> None:
        if self.settings.sync_enabled:
            self.reconciler.start()
        if self.settings.cache_warm_enabled:
            self.warmer.start()

    async def stop_background(self) -> None:
        await self.reconciler.stop()
        await self.warmer.stop()


def assemble_container(
    settings: Settings,
    store: ProgressionStore,
    *,
    primary: Redis | None = None,
    levels: LevelTable | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> ServiceContainer:
    """Wire services around an already-open store and optional shared cache tier."""
    rules = get_xp_rules(settings.xp_rules)
    levels = levels or LevelTable()
    ttl = settings.cache_default_ttl_seconds
    tz_name = settings.reference_timezone

    cache = TieredCache(
        primary,
        namespace=settings.cache_namespace,
        local_capacity=settings.cache_local_capacity,
        op_timeout=settings.cache_op_timeout_seconds,
        default_ttl=ttl,
        refresh_after=settings.cache_refresh_after_seconds,
    )
    connections = ConnectionManager(send_timeout=settings.ws_send_timeout_seconds)
    notifier = Notifier(connections, clock=clock, usernames=store.get_usernames)
    locks = KeyedLock()

    progression = ProgressionService(store, levels, cache, notifier, locks, cache_ttl=ttl)
    statistics = StatisticsService(store, cache, locks, timezone_name=tz_name, cache_ttl=ttl)
    leaderboard = LeaderboardService(
        store, cache, notifier, timezone_name=tz_name, ttls=settings.leaderboard_ttls, clock=clock
    )
    achievements = AchievementEvaluator(
        store, progression, leaderboard, cache, notifier, timezone_name=tz_name, cache_ttl=ttl
    )
    pipeline = GameCompletionPipeline(
        rules, statistics, progression, achievements, leaderboard, notifier, clock=clock
    )
    reconciler = SyncReconciler(
        store,
        statistics,
        cache,
        interval=settings.sync_interval_seconds,
        initial_delay=settings.sync_initial_delay_seconds,
        activity_window=timedelta(hours=settings.sync_activity_window_hours),
        sample_size=settings.sync_sample_size,
        conflict_capacity=settings.sync_conflict_capacity,
        cache_ttl=ttl,
        clock=clock,
    )
    warmer = CacheWarmer(cache, leaderboard, interval=settings.cache_warm_interval_seconds)

    return ServiceContainer(
        settings=settings,
        store=store,
        cache=cache,
        connections=connections,
        notifier=notifier,
        levels=levels,
        rules=rules,
        progression=progression,
        statistics=statistics,
        leaderboard=leaderboard,
        achievements=achievements,
        pipeline=pipeline,
        reconciler=reconciler,
        warmer=warmer,
    )


async def build_container(settings: Settings) -> ServiceContainer:
    """Open connections for the configured variants, seed and wire everything."""
    if settings.storage_backend not in STORAGE_BACKENDS:
        msg = f"Unknown storage backend: {settings.storage_backend}"
        raise ValueError(msg)

    store: ProgressionStore
    if settings.storage_backend == "database":
        await init_db(settings.database_url)
        if settings.database_create_schema:
            await create_schema()
        store = SqlStore(get_session_factory(), dialect=get_engine().dialect.name)
    else:
        store = MemoryStore()

    primary = await init_redis(settings.redis_url, op_timeout=settings.cache_op_timeout_seconds)

    await seed_reference_data(store)
    levels = await load_level_table(store)
    logger.info(
        "Container built: storage=%s xp_rules=%s shared_cache=%s",
        settings.storage_backend, settings.xp_rules, primary is not None,
    )
    return assemble_container(settings, store, primary=primary, levels=levels)


async def close_container(container: ServiceContainer) -> None:
    await container.stop_background()
    await container.connections.close_all()
    await container.cache.aclose()
    await container.store.close()
    if container.settings.storage_backend == "database":
        await close_db()
    await close_redis()
