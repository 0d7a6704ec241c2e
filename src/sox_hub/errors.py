"""
sox_hub.errors

Domain exception taxonomy.

Responsibilities:
- Give services a small set of typed failures with user-facing messages.
- Carry the HTTP status each failure maps to (see `api.app` exception handler).
"""

from __future__ import annotations


class SoxHubError(Exception):
    """Base exception with a user-friendly message."""

    status_code = 400


class NotFoundError(SoxHubError):
    status_code = 404


class PermissionDeniedError(SoxHubError):
    status_code = 403


class InvalidRequestError(SoxHubError):
    status_code = 422


class ConflictError(SoxHubError):
    status_code = 409


class InvalidTransitionError(ConflictError):
    pass


class InvariantViolationError(ConflictError):
    pass


class DirectoryError(SoxHubError):
    status_code = 502


class DirectoryAuthError(DirectoryError):
    pass


class DirectoryNotConfiguredError(DirectoryError):
    status_code = 503
