from __future__ import annotations

from typing import Any


class MarketplaceError(RuntimeError):
    status_code: int = 400

    def __init__(self, message: str, status_code: int | None = None, payload: Any | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload


class AuthenticationError(MarketplaceError):
    """Bad credentials, or a missing/expired/revoked access token."""

    status_code = 401


class AuthorizationError(MarketplaceError):
    """A row-level policy rejected the operation."""

    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ConflictError(MarketplaceError):
    """A uniqueness constraint was violated."""

    status_code = 409


class ValidationFailed(MarketplaceError):
    status_code = 422


class ServiceUnavailableError(MarketplaceError):
    status_code = 503
