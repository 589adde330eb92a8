"""Domain error taxonomy.

Every error raised by the progression core derives from QuizArenaError so the
HTTP layer can map the whole family in one place.
"""

from __future__ import annotations


class QuizArenaError(Exception):
    """Base class for domain errors."""

    status_code = 500


class ValidationError(QuizArenaError):
    """Malformed input, rejected before any state changes."""

    status_code = 400


class NotFoundError(QuizArenaError):
    """Missing user or record."""

    status_code = 404


class TransientCacheError(QuizArenaError):
    """Cache tier unavailable or too slow. Callers treat it as a miss."""

    status_code = 503


class ConflictDetected(QuizArenaError):
    """Cached value diverged from the authoritative store beyond tolerance."""

    status_code = 409

    def __init__(self, user_id: int, field: str, cached_value: float, fresh_value: float) -> None:
        super().__init__(
            f"user {user_id}: cached {field}={cached_value} differs from authoritative {fresh_value}"
        )
        self.user_id = user_id
        self.field = field
        self.cached_value = cached_value
        self.fresh_value = fresh_value
