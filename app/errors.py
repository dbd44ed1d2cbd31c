"""
Cadence — Typed error taxonomy.

Services raise these instead of returning error dicts or ``None`` so the
API layer can map every failure kind to a single HTTP status in one place
(see the exception handler registered in ``app.main``).
"""

from __future__ import annotations

from typing import Any


class CadenceError(Exception):
    """Base class for all domain errors raised by the matching core."""

    status_code: int = 500
    error_kind: str = "internal"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"error": self.error_kind, "detail": self.message}
        if self.context:
            payload["context"] = {k: str(v) for k, v in self.context.items()}
        return payload


class NotFoundError(CadenceError):
    """A user or taste profile does not exist."""

    status_code = 404
    error_kind = "not_found"


class InvalidArgumentError(CadenceError):
    """Self-swipe, malformed weights, empty taste sets where not permitted."""

    status_code = 422
    error_kind = "invalid_argument"


class ConflictError(CadenceError):
    """Duplicate swipe on the same ordered pair, or duplicate queue entry."""

    status_code = 409
    error_kind = "conflict"


class UnavailableError(CadenceError):
    """External rescorer or music source timed out or failed."""

    status_code = 503
    error_kind = "unavailable"


class InternalError(CadenceError):
    """Storage failure."""

    status_code = 500
    error_kind = "internal"
