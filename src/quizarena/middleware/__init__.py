"""Middleware registration."""

from fastapi import FastAPI

from quizarena.config import Settings
from quizarena.middleware.cors import setup_cors
from quizarena.middleware.error_handler import setup_error_handlers
from quizarena.middleware.logging import setup_logging
from quizarena.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware. Starlette runs them in reverse-add order, so CORS goes last to wrap everything."""
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
