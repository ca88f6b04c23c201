from __future__ import annotations

import contextlib
import hmac
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar, Union

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.service.email import EmailClient, EmailDeliveryError
from authservice.service.errors import (
    ConflictError,
    IncorrectCredentialsError,
    MissingTokenError,
    NotFoundError,
    TokenRejectedError,
    UnexpectedError,
    ValidationError,
)
from authservice.service.passwords import PasswordHashingService
from authservice.service.tokens import Claims, TokenService
from authservice.storage.banned_tokens import BannedTokenStore
from authservice.storage.errors import (
    StoreUnavailableError,
    TwoFACodeAlreadyExistsError,
    TwoFACodeNotFoundError,
    UserAlreadyExistsError,
    UserNotFoundError,
)
from authservice.storage.models import User
from authservice.storage.two_fa_codes import TwoFACodeStore
from authservice.storage.users import UserStore
from authservice.types import (
    Email,
    LoginAttemptId,
    MalformedHashError,
    Password,
    Token,
    TokenError,
    TwoFACode,
    ValueTypeError,
)

logger = get_logger(__name__)

T = TypeVar("T")

TWO_FA_EMAIL_SUBJECT = "2FA Code"


@dataclass(frozen=True)
class RegularAuth:
    token: Token


@dataclass(frozen=True)
class TwoFactorChallenge:
    login_attempt_id: LoginAttemptId


LoginResult = Union[RegularAuth, TwoFactorChallenge]


def _parse(parser: Callable[[str], T], raw: Optional[str], field: str) -> T:
    try:
        return parser(raw)
    except ValueTypeError as exc:
        raise ValidationError(
            exc.message, detail={"field": field, "rule": exc.kind.value}
        ) from exc


class AuthService:
    """Signup, login, 2FA verification, logout and token checks.

    Collaborators are injected so memory and networked backends are
    interchangeable. No lock is held here; every shared structure lives in a
    store that serializes its own access.
    """

    def __init__(
        self,
        *,
        users: UserStore,
        banned_tokens: BannedTokenStore,
        two_fa_codes: TwoFACodeStore,
        email_client: EmailClient,
        hasher: PasswordHashingService,
        tokens: TokenService,
        settings: Settings,
    ) -> None:
        self.users = users
        self.banned_tokens = banned_tokens
        self.two_fa_codes = two_fa_codes
        self.email_client = email_client
        self.hasher = hasher
        self.tokens = tokens
        self.settings = settings
        self.logger = logger

    @contextlib.contextmanager
    def _store_call(self, operation: str):
        """Surface backend failures as a generic server error."""
        try:
            yield
        except StoreUnavailableError as exc:
            self.logger.error(
                "store_unavailable", operation=operation, error=exc.message
            )
            raise UnexpectedError("internal server error") from exc

    async def signup(
        self, email: Optional[str], password: Optional[str], requires_2fa: bool = False
    ) -> User:
        email_v = _parse(Email.parse, email, "email")
        password_v = _parse(Password.parse, password, "password")
        hashed = await self.hasher.hash(password_v)
        user = User(email=email_v, password_hash=hashed, requires_2fa=requires_2fa)
        with self._store_call("add_user"):
            try:
                await self.users.add_user(user)
            except UserAlreadyExistsError as exc:
                self.logger.info("signup_duplicate", email=email_v.redacted())
                raise ConflictError(
                    "user already exists", detail={"field": "email"}
                ) from exc
        self.logger.info(
            "signup_succeeded", email=email_v.redacted(), requires_2fa=requires_2fa
        )
        return user

    async def login(self, email: Optional[str], password: Optional[str]) -> LoginResult:
        email_v = _parse(Email.parse, email, "email")
        password_v = _parse(Password.parse, password, "password")
        with self._store_call("get_user"):
            try:
                user = await self.users.get_user(email_v)
            except UserNotFoundError as exc:
                raise NotFoundError("user not found") from exc

        try:
            matches = await self.hasher.verify(user.password_hash, password_v)
        except MalformedHashError as exc:
            self.logger.error("login_hash_unparsable", email=email_v.redacted())
            raise UnexpectedError("internal server error") from exc
        if not matches:
            self.logger.info("login_incorrect_credentials", email=email_v.redacted())
            raise IncorrectCredentialsError("incorrect credentials")
        if self.hasher.needs_rehash(user.password_hash):
            self.logger.info("password_hash_outdated", email=email_v.redacted())

        if user.requires_2fa:
            return await self._start_two_factor(email_v)

        token = self.tokens.issue(email_v)
        self.logger.info("login_succeeded", email=email_v.redacted())
        return RegularAuth(token=token)

    async def _start_two_factor(self, email: Email) -> TwoFactorChallenge:
        attempt_id = LoginAttemptId.generate()
        code = TwoFACode.generate()
        with self._store_call("two_fa_add"):
            try:
                await self.two_fa_codes.add(email, attempt_id, code)
            except TwoFACodeAlreadyExistsError as exc:
                if not self.settings.two_fa_supersede_pending:
                    self.logger.info("two_fa_already_pending", email=email.redacted())
                    raise ConflictError(
                        "2FA code already pending", detail={"field": "email"}
                    ) from exc
                await self._discard_pending(email)
                try:
                    await self.two_fa_codes.add(email, attempt_id, code)
                except TwoFACodeAlreadyExistsError as retry_exc:
                    # Another login for the same email won between remove and add
                    raise ConflictError(
                        "2FA code already pending", detail={"field": "email"}
                    ) from retry_exc
                self.logger.info("two_fa_superseded", email=email.redacted())

        try:
            await self.email_client.send(
                email, TWO_FA_EMAIL_SUBJECT, f"Your 2FA code is {code.value}"
            )
        except EmailDeliveryError as exc:
            self.logger.error(
                "two_fa_email_failed", email=email.redacted(), error=str(exc)
            )
            await self._discard_pending(email, attempt_id)
            raise UnexpectedError("internal server error") from exc

        self.logger.info("two_fa_challenge_issued", email=email.redacted())
        return TwoFactorChallenge(login_attempt_id=attempt_id)

    async def _discard_pending(
        self, email: Email, attempt_id: Optional[LoginAttemptId] = None
    ) -> None:
        """Remove a pending entry, optionally only if it belongs to ``attempt_id``."""
        try:
            if attempt_id is not None:
                stored_attempt, _ = await self.two_fa_codes.get(email)
                if stored_attempt != attempt_id:
                    return
            await self.two_fa_codes.remove(email)
        except TwoFACodeNotFoundError:
            self.logger.debug("two_fa_discard_missing", email=email.redacted())
        except StoreUnavailableError as exc:
            self.logger.error(
                "two_fa_discard_failed", email=email.redacted(), error=exc.message
            )

    async def verify_2fa(
        self,
        email: Optional[str],
        login_attempt_id: Optional[str],
        code: Optional[str],
    ) -> Token:
        email_v = _parse(Email.parse, email, "email")
        attempt_v = _parse(LoginAttemptId.parse, login_attempt_id, "loginAttemptId")
        code_v = _parse(TwoFACode.parse, code, "2FACode")

        with self._store_call("two_fa_get"):
            try:
                stored_attempt, stored_code = await self.two_fa_codes.get(email_v)
            except TwoFACodeNotFoundError as exc:
                self.logger.info("two_fa_not_pending", email=email_v.redacted())
                raise TokenRejectedError("invalid 2FA code") from exc

        attempt_ok = hmac.compare_digest(
            stored_attempt.value.encode(), attempt_v.value.encode()
        )
        code_ok = hmac.compare_digest(stored_code.value.encode(), code_v.value.encode())
        if not (attempt_ok and code_ok):
            self.logger.info("two_fa_mismatch", email=email_v.redacted())
            raise TokenRejectedError("invalid 2FA code")

        # Consume before issuing; only one concurrent caller can win the remove
        with self._store_call("two_fa_remove"):
            try:
                await self.two_fa_codes.remove(email_v)
            except TwoFACodeNotFoundError as exc:
                self.logger.info("two_fa_already_consumed", email=email_v.redacted())
                raise TokenRejectedError("invalid 2FA code") from exc

        token = self.tokens.issue(email_v)
        self.logger.info("two_fa_verified", email=email_v.redacted())
        return token

    async def logout(self, token: Optional[str]) -> None:
        try:
            token_v = Token.parse(token)
        except TokenError as exc:
            raise MissingTokenError("missing token") from exc

        remaining = self.tokens.remaining_lifetime(token_v)
        if remaining is None:
            # Not signed by us; verify_token rejects it without a ban
            self.logger.info("logout_token_not_issued_here")
            return
        if remaining == 0:
            self.logger.info("logout_token_already_expired")
            return
        ttl = remaining
        with self._store_call("ban_token"):
            await self.banned_tokens.add(token_v, ttl)
        self.logger.info("logout_succeeded", ttl_seconds=ttl)

    async def verify_token(self, token: Optional[str]) -> Claims:
        try:
            token_v = Token.parse(token)
        except TokenError as exc:
            raise MissingTokenError("missing token") from exc
        with self._store_call("check_banned_token"):
            return await self.tokens.verify(token_v, self.banned_tokens)
