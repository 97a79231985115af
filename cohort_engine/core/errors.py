"""Domain exception taxonomy.

Services raise these; they never build HTTP responses themselves.  The
handlers in api/error_handlers.py translate each one into a 4xx with a
``{error, message, timestamp}`` body.  ``error`` is a stable machine code
that clients can switch on; ``status_code`` is only a hint for that
boundary and has no meaning inside the engine.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for recoverable domain violations."""

    error = "engine_error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AlreadyCompleted(EngineError):
    error = "already_completed"
    status_code = 409
    default_message = "Already completed"

    def __init__(self, message: str | None = None, *, existing: Any = None) -> None:
        super().__init__(message)
        # The stored fact, so callers can answer a retry as a no-op success
        self.existing = existing


class MaxAttemptsReached(EngineError):
    error = "max_attempts_reached"
    status_code = 409
    default_message = "Maximum number of attempts reached"


class AttemptNotFound(EngineError):
    error = "attempt_not_found"
    status_code = 404
    default_message = "Attempt not found"


class ContentNotFound(EngineError):
    error = "not_found"
    status_code = 404
    default_message = "Content not found"


class WeekLocked(EngineError):
    error = "week_locked"
    status_code = 403
    default_message = "This week is locked"


class AccessDenied(EngineError):
    error = "access_denied"
    status_code = 403
    default_message = "Access denied"


class NotEligible(EngineError):
    error = "not_eligible"
    status_code = 422
    default_message = "Not eligible for completion yet"


class InvalidStateTransition(EngineError):
    error = "invalid_state_transition"
    status_code = 409
    default_message = "Invalid state transition"


class ValidationFailed(EngineError):
    error = "validation_failed"
    status_code = 422
    default_message = "Validation failed"
