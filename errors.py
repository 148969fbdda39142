"""Exception hierarchy for the booking and notification services.

Services raise these; ``main.py`` maps them to HTTP responses in one place.
"""
from typing import Optional


class AppError(Exception):
    """Base exception for all domain errors."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(AppError):
    """Malformed or missing input."""

    status_code = 422


class NotFoundError(AppError):
    """Referenced entity id does not resolve."""

    status_code = 404


class UnauthorizedError(AppError):
    """Actor is authenticated but has no rights over this entity."""

    status_code = 403


class InvalidOperationError(AppError):
    """State-machine rule violated."""

    status_code = 409
