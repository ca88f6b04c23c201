from __future__ import annotations

from fastapi import APIRouter, Request, Response

from authservice.api.schemas import (
    Envelope,
    LoginRequest,
    MessageResponse,
    SignupRequest,
    TokenClaimsResponse,
    TwoFactorRequiredResponse,
    Verify2FARequest,
    VerifyTokenRequest,
)
from authservice.config import Settings
from authservice.service.auth import RegularAuth
from authservice.service.runtime import get_runtime
from authservice.types import Token

router = APIRouter(tags=["auth"])


def _ok(payload) -> Envelope:
    return Envelope(status="ok", data=payload.model_dump(mode="json", by_alias=True))


def _apply_auth_cookie(response: Response, token: Token, settings: Settings) -> None:
    response.set_cookie(
        settings.jwt_cookie_name,
        token.value,
        httponly=True,
        secure=settings.jwt_cookie_secure,
        samesite="lax",
        max_age=settings.token_ttl_seconds,
        path="/",
    )


@router.post("/signup", response_model=Envelope, status_code=201)
async def signup(body: SignupRequest):
    """Register a user. Email and password must satisfy the format rules."""
    runtime = get_runtime()
    await runtime.auth.signup(body.email, body.password, body.requires_2fa)
    return _ok(MessageResponse(message="User created successfully!"))


@router.post("/login", response_model=Envelope)
async def login(body: LoginRequest, response: Response):
    """Log in with email and password.

    Accounts without 2FA get the ``jwt`` cookie immediately. Accounts with
    2FA get ``206 Partial Content`` and a ``loginAttemptId`` that must be sent
    back to ``/verify-2fa`` with the emailed code.
    """
    runtime = get_runtime()
    result = await runtime.auth.login(body.email, body.password)
    if isinstance(result, RegularAuth):
        _apply_auth_cookie(response, result.token, runtime.settings)
        return _ok(MessageResponse(message="Login successful"))
    response.status_code = 206
    return _ok(
        TwoFactorRequiredResponse(login_attempt_id=result.login_attempt_id.value)
    )


@router.post("/verify-2fa", response_model=Envelope)
async def verify_2fa(body: Verify2FARequest, response: Response):
    runtime = get_runtime()
    token = await runtime.auth.verify_2fa(
        body.email, body.login_attempt_id, body.two_fa_code
    )
    _apply_auth_cookie(response, token, runtime.settings)
    return _ok(MessageResponse(message="2FA verified"))


@router.post("/logout", response_model=Envelope)
async def logout(request: Request, response: Response):
    """Revoke the token held in the ``jwt`` cookie and clear the cookie."""
    runtime = get_runtime()
    settings = runtime.settings
    await runtime.auth.logout(request.cookies.get(settings.jwt_cookie_name))
    response.delete_cookie(
        settings.jwt_cookie_name,
        path="/",
        secure=settings.jwt_cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return _ok(MessageResponse(message="Logged out"))


@router.post("/verify-token", response_model=Envelope)
async def verify_token(body: VerifyTokenRequest):
    runtime = get_runtime()
    claims = await runtime.auth.verify_token(body.token)
    return _ok(
        TokenClaimsResponse(
            subject=claims.subject,
            expires_at=claims.expires_at,
            issued_at=claims.issued_at,
        )
    )
