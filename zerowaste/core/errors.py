# zerowaste/core/errors.py
from __future__ import annotations

from typing import Any, NamedTuple


class RescueError(Exception):
    """Base for every error the engine raises on purpose."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(RescueError):
    status_code = 404


class InvalidTransitionError(RescueError):
    status_code = 400


class ValidationError(RescueError):
    status_code = 400


class PermissionDeniedError(RescueError):
    status_code = 403


class DependencyError(RescueError):
    """Persistence or dispatch failure; safe for the caller to retry."""

    status_code = 503


class DuplicateAwardResolved(NamedTuple):
    """Not an error: an award replayed for a source that already paid out."""

    entry: Any
