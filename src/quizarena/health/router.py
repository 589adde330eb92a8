"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends

from quizarena.config import get_settings
from quizarena.container import ServiceContainer
from quizarena.dependencies import get_container

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check, 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(container: ServiceContainer = Depends(get_container)) -> dict[str, object]:
    """Readiness check: authoritative store and shared cache tier."""
    checks: dict[str, object] = {}

    try:
        await container.store.list_level_bands()
        checks["store"] = "ok"
    except Exception as exc:
        checks["store"] = f"error: {exc}"

    cache = container.cache.get_stats()
    if not cache["primary_configured"]:
        checks["cache"] = "local only"
    else:
        checks["cache"] = "ok" if cache["primary_available"] else "degraded"

    healthy = checks["store"] == "ok" and checks["cache"] != "degraded"
    return {"status": "ready" if healthy else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "xp_rules": settings.xp_rules,
    }
