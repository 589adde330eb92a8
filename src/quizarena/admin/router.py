"""Operator endpoints for the reconciler and the cache."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from quizarena.container import ServiceContainer
from quizarena.dependencies import get_container
from quizarena.sync.reconciler import MIN_SYNC_INTERVAL

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


class SyncIntervalRequest(BaseModel):
    interval_seconds: int = Field(ge=MIN_SYNC_INTERVAL)


# ── Sync ──


@router.get("/sync/status")
async def sync_status(container: ServiceContainer = Depends(get_container)) -> dict:
    return container.reconciler.get_status()


@router.post("/sync/force")
async def force_sync(container: ServiceContainer = Depends(get_container)) -> dict:
    """Run a reconciliation now. Skipped if one is already running."""
    return await container.reconciler.force_sync()


@router.put("/sync/interval")
async def set_sync_interval(
    body: SyncIntervalRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    interval = container.reconciler.set_sync_interval(body.interval_seconds)
    return {"sync_interval": interval}


@router.delete("/sync/conflicts")
async def clear_conflicts(container: ServiceContainer = Depends(get_container)) -> dict:
    return {"cleared": container.reconciler.clear_conflict_history()}


# ── Cache ──


@router.get("/cache/stats")
async def cache_stats(container: ServiceContainer = Depends(get_container)) -> dict:
    return {
        "cache": container.cache.get_stats(),
        "warming": container.warmer.get_status(),
        "connections": container.connections.get_stats(),
    }


@router.post("/cache/warm")
async def warm_cache(container: ServiceContainer = Depends(get_container)) -> dict:
    return await container.warmer.force_warm()
