"""Domain exceptions shared by the request services.

Routers never catch these individually; ``app.main`` maps them to HTTP
responses in one place.
"""

from __future__ import annotations

from typing import Optional


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str, *, fields: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields or []


class ValidationFailed(DomainError):
    status_code = 422


class AuthenticationRequired(DomainError):
    status_code = 401


class AuthorizationError(DomainError):
    status_code = 403


class NotFound(DomainError):
    status_code = 404


class Conflict(DomainError):
    status_code = 409


class RateLimited(DomainError):
    status_code = 429

    def __init__(self, message: str, *, retry_after_seconds: int = 0) -> None:
        super().__init__(message)
        self.retry_after_seconds = max(0, int(retry_after_seconds))


class ExternalServiceError(DomainError):
    """A collaborator (record store, blob store, gateway) refused or was unreachable."""

    status_code = 502
