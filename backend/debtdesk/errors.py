"""
Domain error taxonomy.

Services raise these; the API layer renders them as
``{"success": false, "error": {"code", "message", "details"}}`` with the
matching HTTP status. Validation, conflict and authorization errors are
final: callers must not retry them. ``TransientStoreError`` is the only
retryable kind.
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Malformed input: bad dates, self-delegation, unknown case or user."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(DomainError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"


class AuthorizationError(DomainError):
    """Caller is not entitled to the action (delegate, revoke, read...)."""

    status_code = 403
    code = "AUTHORIZATION_ERROR"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND_ERROR"


class ConflictError(DomainError):
    """A case already has an active delegation."""

    status_code = 409
    code = "CONFLICT_ERROR"


class TransientStoreError(DomainError):
    """
    The store was unreachable or dropped the connection.

    Safe to retry: every writer in this package uses conditional updates, so
    re-running an interrupted sweep or revoke is a no-op for rows that
    already moved.
    """

    status_code = 503
    code = "TRANSIENT_STORE_ERROR"
