"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from quizarena.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """The service container created by the application lifespan."""
    container: ServiceContainer | None = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return container


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    """Caller identity, as asserted by the upstream auth layer in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header") from None
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return user_id
