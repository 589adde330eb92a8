"""Maintenance arq worker: leaderboard retention and cache warming.

Import path for arq CLI: arq quizarena.workers.maintenance.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from quizarena.config import get_settings
from quizarena.container import ServiceContainer, build_container, close_container

logger = logging.getLogger(__name__)

WARM_MINUTES = set(range(0, 60, 10))


async def maintenance_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Build the service container. The in-process timers are not started here."""
    ctx["container"] = await build_container(get_settings())
    logger.info("Maintenance worker started")


async def maintenance_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    container: ServiceContainer | None = ctx.get("container")
    if container is not None:
        await close_container(container)
    logger.info("Maintenance worker shut down")


async def cleanup_leaderboards(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Nightly: drop period rows past their retention window."""
    container: ServiceContainer = ctx["container"]
    deleted = await container.leaderboard.cleanup_old_entries()
    logger.info("Leaderboard cleanup complete: %s", deleted)
    return deleted


async def warm_caches(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Every ten minutes: precompute top players and first leaderboard pages."""
    container: ServiceContainer = ctx["container"]
    return await container.warmer.warm()


class WorkerSettings:
    """arq worker settings for maintenance jobs."""

    functions = [cleanup_leaderboards, warm_caches]
    cron_jobs = [
        cron(cleanup_leaderboards, hour={get_settings().cleanup_hour_utc}, minute={0}),
        cron(warm_caches, minute=WARM_MINUTES),
    ]
    on_startup = maintenance_startup
    on_shutdown = maintenance_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 2
    job_timeout = 300  # 5 minutes max per job
