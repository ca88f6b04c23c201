"""Parse-and-validate wrappers for values crossing the service boundary.

Every type validates in its constructor, so holding an instance means the
value already passed its rules. ``parse`` is the public entry point; it
exists so call sites read as parsing untrusted input.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from argon2 import Parameters, extract_parameters
from argon2.exceptions import InvalidHashError

PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
PASSWORD_MIN_LENGTH = 8

TWO_FA_CODE_MIN = 100_000
TWO_FA_CODE_MAX = 999_999

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_TWO_FA_CODE_PATTERN = re.compile(r"^[0-9]{6}$")


class EmailErrorKind(str, Enum):
    EMPTY = "empty"
    MISSING_AT_SYMBOL = "missing_at_symbol"
    INVALID_FORMAT = "invalid_format"


class PasswordErrorKind(str, Enum):
    """Password policy rules, in the order they are checked."""

    EMPTY = "empty"
    IS_NOT_ASCII = "is_not_ascii"
    INCLUDES_SPACES = "includes_spaces"
    SHORT_LENGTH = "short_length"
    MISSING_CAPITAL_LETTER = "missing_capital_letter"
    MISSING_LOWERCASE_LETTER = "missing_lowercase_letter"
    MISSING_NUMBER = "missing_number"
    MISSING_SYMBOL = "missing_symbol"


class TokenErrorKind(str, Enum):
    EMPTY = "empty"


class LoginAttemptIdErrorKind(str, Enum):
    EMPTY = "empty"
    INVALID_FORMAT = "invalid_format"


class TwoFACodeErrorKind(str, Enum):
    EMPTY = "empty"
    INVALID_FORMAT = "invalid_format"


_MESSAGES: dict[Enum, str] = {
    EmailErrorKind.EMPTY: "email must not be empty",
    EmailErrorKind.MISSING_AT_SYMBOL: "email must contain an @ symbol",
    EmailErrorKind.INVALID_FORMAT: "invalid email address format",
    PasswordErrorKind.EMPTY: "password must not be empty",
    PasswordErrorKind.IS_NOT_ASCII: "password must contain only ASCII characters",
    PasswordErrorKind.INCLUDES_SPACES: "password must not contain whitespace",
    PasswordErrorKind.SHORT_LENGTH: f"password must be at least {PASSWORD_MIN_LENGTH} characters",
    PasswordErrorKind.MISSING_CAPITAL_LETTER: "password must contain an uppercase letter",
    PasswordErrorKind.MISSING_LOWERCASE_LETTER: "password must contain a lowercase letter",
    PasswordErrorKind.MISSING_NUMBER: "password must contain a digit",
    PasswordErrorKind.MISSING_SYMBOL: f"password must contain one of {PASSWORD_SYMBOLS}",
    TokenErrorKind.EMPTY: "token must not be empty",
    LoginAttemptIdErrorKind.EMPTY: "login attempt id must not be empty",
    LoginAttemptIdErrorKind.INVALID_FORMAT: "login attempt id must be a UUID",
    TwoFACodeErrorKind.EMPTY: "2FA code must not be empty",
    TwoFACodeErrorKind.INVALID_FORMAT: "2FA code must be a six digit number",
}


class ValueTypeError(ValueError):
    """A raw value failed validation; ``kind`` names the first violated rule."""

    def __init__(self, kind: Enum, message: Optional[str] = None) -> None:
        self.kind = kind
        self.message = message or _MESSAGES.get(kind, str(kind.value))
        super().__init__(self.message)


class EmailError(ValueTypeError):
    pass


class PasswordError(ValueTypeError):
    pass


class TokenError(ValueTypeError):
    pass


class LoginAttemptIdError(ValueTypeError):
    pass


class TwoFACodeError(ValueTypeError):
    pass


class MalformedHashError(ValueError):
    """A stored password hash does not carry parseable parameters."""


def _require_str(raw: Any, error: type[ValueTypeError], kind: Enum) -> str:
    if not isinstance(raw, str):
        raise error(kind)
    return raw


@dataclass(frozen=True)
class Email:
    """A trimmed, lower-cased email address. Never shown by ``repr``."""

    value: str = field(repr=False)

    def __post_init__(self) -> None:
        raw = _require_str(self.value, EmailError, EmailErrorKind.INVALID_FORMAT)
        normalized = raw.strip().lower()
        if not normalized:
            raise EmailError(EmailErrorKind.EMPTY)
        if "@" not in normalized:
            raise EmailError(EmailErrorKind.MISSING_AT_SYMBOL)
        if len(normalized) > 254:
            raise EmailError(EmailErrorKind.INVALID_FORMAT)
        local, _, domain = normalized.partition("@")
        if not local or not domain or len(local) > 64:
            raise EmailError(EmailErrorKind.INVALID_FORMAT)
        if not _EMAIL_LOCAL_PART.fullmatch(local):
            raise EmailError(EmailErrorKind.INVALID_FORMAT)
        if local.startswith(".") or local.endswith(".") or ".." in local:
            raise EmailError(EmailErrorKind.INVALID_FORMAT)
        labels = domain.split(".")
        if len(labels) < 2:
            raise EmailError(EmailErrorKind.INVALID_FORMAT)
        for label in labels:
            if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.fullmatch(label):
                raise EmailError(EmailErrorKind.INVALID_FORMAT)
        object.__setattr__(self, "value", normalized)

    @classmethod
    def parse(cls, raw: str) -> "Email":
        return cls(raw)

    def redacted(self) -> str:
        """Log-safe rendering, e.g. ``te***@example.com``."""
        local, _, domain = self.value.partition("@")
        return f"{local[:2]}***@{domain}"

    def __str__(self) -> str:
        return self.redacted()


@dataclass(frozen=True)
class Password:
    """A raw password that satisfies the policy. Kept in memory only."""

    value: str = field(repr=False)

    def __post_init__(self) -> None:
        password = _require_str(self.value, PasswordError, PasswordErrorKind.EMPTY)
        if not password:
            raise PasswordError(PasswordErrorKind.EMPTY)
        if not password.isascii():
            raise PasswordError(PasswordErrorKind.IS_NOT_ASCII)
        if any(c.isspace() for c in password):
            raise PasswordError(PasswordErrorKind.INCLUDES_SPACES)
        if len(password) < PASSWORD_MIN_LENGTH:
            raise PasswordError(PasswordErrorKind.SHORT_LENGTH)
        if not any(c.isupper() for c in password):
            raise PasswordError(PasswordErrorKind.MISSING_CAPITAL_LETTER)
        if not any(c.islower() for c in password):
            raise PasswordError(PasswordErrorKind.MISSING_LOWERCASE_LETTER)
        if not any(c.isdigit() for c in password):
            raise PasswordError(PasswordErrorKind.MISSING_NUMBER)
        if not any(c in PASSWORD_SYMBOLS for c in password):
            raise PasswordError(PasswordErrorKind.MISSING_SYMBOL)

    @classmethod
    def parse(cls, raw: str) -> "Password":
        return cls(raw)


@dataclass(frozen=True)
class HashedPassword:
    """Self-describing Argon2 PHC string (algorithm, version, costs, salt, digest)."""

    value: str = field(repr=False)
    parameters: Parameters = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or not self.value:
            raise MalformedHashError("password hash is empty")
        try:
            params = extract_parameters(self.value)
        except InvalidHashError as exc:
            raise MalformedHashError("password hash cannot be parsed") from exc
        object.__setattr__(self, "parameters", params)

    @classmethod
    def from_hash(cls, raw: str) -> "HashedPassword":
        return cls(raw)


@dataclass(frozen=True)
class Token:
    """Raw bearer token string; signature and expiry are checked elsewhere."""

    value: str = field(repr=False)

    def __post_init__(self) -> None:
        token = _require_str(self.value, TokenError, TokenErrorKind.EMPTY)
        if not token:
            raise TokenError(TokenErrorKind.EMPTY)

    @classmethod
    def parse(cls, raw: str) -> "Token":
        return cls(raw)


@dataclass(frozen=True)
class LoginAttemptId:
    value: str

    def __post_init__(self) -> None:
        raw = _require_str(self.value, LoginAttemptIdError, LoginAttemptIdErrorKind.EMPTY)
        if not raw.strip():
            raise LoginAttemptIdError(LoginAttemptIdErrorKind.EMPTY)
        try:
            parsed = uuid.UUID(raw)
        except ValueError as exc:
            raise LoginAttemptIdError(LoginAttemptIdErrorKind.INVALID_FORMAT) from exc
        object.__setattr__(self, "value", str(parsed))

    @classmethod
    def parse(cls, raw: str) -> "LoginAttemptId":
        return cls(raw)

    @classmethod
    def generate(cls) -> "LoginAttemptId":
        return cls(str(uuid.uuid4()))


@dataclass(frozen=True)
class TwoFACode:
    value: str = field(repr=False)

    def __post_init__(self) -> None:
        raw = _require_str(self.value, TwoFACodeError, TwoFACodeErrorKind.EMPTY)
        if not raw:
            raise TwoFACodeError(TwoFACodeErrorKind.EMPTY)
        if not _TWO_FA_CODE_PATTERN.fullmatch(raw):
            raise TwoFACodeError(TwoFACodeErrorKind.INVALID_FORMAT)
        if not TWO_FA_CODE_MIN <= int(raw) <= TWO_FA_CODE_MAX:
            raise TwoFACodeError(TwoFACodeErrorKind.INVALID_FORMAT)

    @classmethod
    def parse(cls, raw: str) -> "TwoFACode":
        return cls(raw)

    @classmethod
    def generate(cls) -> "TwoFACode":
        span = TWO_FA_CODE_MAX - TWO_FA_CODE_MIN + 1
        return cls(str(TWO_FA_CODE_MIN + secrets.randbelow(span)))


__all__ = [
    "PASSWORD_SYMBOLS",
    "Email",
    "EmailError",
    "EmailErrorKind",
    "HashedPassword",
    "LoginAttemptId",
    "LoginAttemptIdError",
    "LoginAttemptIdErrorKind",
    "MalformedHashError",
    "Password",
    "PasswordError",
    "PasswordErrorKind",
    "Token",
    "TokenError",
    "TokenErrorKind",
    "TwoFACode",
    "TwoFACodeError",
    "TwoFACodeErrorKind",
    "ValueTypeError",
]
