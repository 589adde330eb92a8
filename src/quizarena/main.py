"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from quizarena.admin.router import router as admin_router
from quizarena.config import get_settings
from quizarena.container import build_container, close_container
from quizarena.health.router import router as health_router
from quizarena.middleware import setup_middleware
from quizarena.progression.router import router as progression_router
from quizarena.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    container = await build_container(get_settings())
    app.state.container = container
    container.start_background()

    yield

    await close_container(container)
    app.state.container = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="QuizArena Progression API",
        description="XP, levels, achievements and leaderboards for QuizArena",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)
    app.include_router(admin_router)
    app.include_router(ws_router)

    return app


app = create_app()
