from __future__ import annotations

import base64
import hashlib
import hmac
import json
import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.service.errors import TokenRejectedError
from authservice.storage.banned_tokens import BannedTokenStore
from authservice.types import Email, Token

logger = get_logger(__name__)


@dataclass(frozen=True)
class Claims:
    subject: str
    expires_at: datetime
    issued_at: Optional[datetime]
    token_id: Optional[str]


class TokenService:
    """Issues and checks HS256 session tokens signed with ``Settings.jwt_secret``."""

    ALGORITHM = "HS256"

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self.settings.token_ttl_seconds

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        digest = hmac.new(
            self.settings.jwt_secret.encode(), signing_input.encode(), hashlib.sha256
        ).digest()
        return self._encode_segment(digest)

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": self.ALGORITHM, "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _decode_signed(self, token: str) -> Optional[dict[str, Any]]:
        """Return the payload of a correctly signed token, ignoring expiry."""
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            return None

        # Nothing unsigned reaches the JSON parser
        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            return None

        # Reject anything but HS256 so a forged "none"/RS256 header cannot pass
        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, RecursionError):
            logger.warning("jwt_header_decode_failed")
            return None
        if not isinstance(header, dict) or header.get("alg") != self.ALGORITHM:
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            return None

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, RecursionError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("iss") != self.settings.jwt_issuer:
            return None
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.settings.jwt_audience in aud
        else:
            valid_aud = aud == self.settings.jwt_audience
        if not valid_aud:
            return None
        try:
            payload["exp"] = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            return None
        if not math.isfinite(payload["exp"]):
            return None
        if not isinstance(payload.get("sub"), str):
            return None
        return payload

    def issue(self, email: Email) -> Token:
        now = int(self._clock())
        payload = {
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
            "sub": email.value,
            "iat": now,
            "exp": now + self.ttl_seconds,
            "jti": str(uuid.uuid4()),
        }
        return Token(self._encode_jwt(payload))

    def decode(self, token: Token) -> Claims:
        """Check signature, issuer, audience and expiry without consulting revocation."""
        payload = self._decode_signed(token.value)
        if payload is None or payload["exp"] <= self._clock():
            raise TokenRejectedError("invalid token")
        iat = payload.get("iat")
        return Claims(
            subject=payload["sub"],
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            issued_at=(
                datetime.fromtimestamp(float(iat), tz=timezone.utc)
                if isinstance(iat, (int, float))
                else None
            ),
            token_id=payload.get("jti"),
        )

    async def verify(self, token: Token, banned_tokens: BannedTokenStore) -> Claims:
        """Reject revoked tokens first, then validate the token itself.

        Both paths raise the same ``TokenRejectedError`` so callers cannot tell
        a revoked token from a forged one.
        """
        if await banned_tokens.exists(token):
            raise TokenRejectedError("invalid token")
        return self.decode(token)

    def remaining_lifetime(self, token: Token) -> Optional[int]:
        """Seconds until a correctly signed token expires, or None if it is not ours."""
        payload = self._decode_signed(token.value)
        if payload is None:
            return None
        return max(0, int(payload["exp"] - self._clock()))
