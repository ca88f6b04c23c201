from __future__ import annotations

from dataclasses import dataclass

from authservice.types import Email, HashedPassword


@dataclass(frozen=True)
class User:
    email: Email
    password_hash: HashedPassword
    requires_2fa: bool = False
