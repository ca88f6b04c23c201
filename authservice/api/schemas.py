from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from authservice.logging import get_correlation_id

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(
        default_factory=lambda: get_correlation_id() or str(uuid4())
    )


# Field formats are checked by the service so callers get the specific rule
# that failed; these models only fix the JSON shape.


class SignupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    requires_2fa: bool = Field(alias="requires2FA")


class LoginRequest(BaseModel):
    email: str
    password: str


class Verify2FARequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    login_attempt_id: str = Field(alias="loginAttemptId")
    two_fa_code: str = Field(alias="2FACode")


class VerifyTokenRequest(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class TwoFactorRequiredResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    message: str = "2FA required"
    login_attempt_id: str = Field(alias="loginAttemptId")


class TokenClaimsResponse(BaseModel):
    subject: str
    expires_at: datetime
    issued_at: Optional[datetime] = None
