from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base class for storage-layer failures."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailableError(StoreError):
    """Backend could not be reached or returned data it should never hold."""


class UserAlreadyExistsError(StoreError):
    """Raised when a user with the same email is already stored."""


class UserNotFoundError(StoreError):
    """Raised when no user is stored for an email."""


class TwoFACodeAlreadyExistsError(StoreError):
    """Raised when a pending 2FA code is already stored for an email."""


class TwoFACodeNotFoundError(StoreError):
    """Raised when no pending 2FA code is stored for an email."""


__all__ = [
    "StoreError",
    "StoreUnavailableError",
    "UserAlreadyExistsError",
    "UserNotFoundError",
    "TwoFACodeAlreadyExistsError",
    "TwoFACodeNotFoundError",
]
