from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - validation_error (400)
    - unauthorized (401)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Caller input failed a format rule (400)."""
    status_code = 400
    error_code = "validation_error"


class MissingTokenError(ValidationError):
    """No token was supplied where one is required (400)."""
    pass


class AuthenticationError(ServiceError):
    """Authentication failed (401)."""
    status_code = 401
    error_code = "unauthorized"


class IncorrectCredentialsError(AuthenticationError):
    """Password did not match the stored hash."""
    pass


class TokenRejectedError(AuthenticationError):
    """Token or 2FA code is expired, revoked, forged or unknown."""
    pass


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate signup (409)."""
    status_code = 409
    error_code = "conflict"


class UnexpectedError(ServiceError):
    """Failure not attributable to caller input (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "MissingTokenError",
    "AuthenticationError",
    "IncorrectCredentialsError",
    "TokenRejectedError",
    "NotFoundError",
    "ConflictError",
    "UnexpectedError",
]
