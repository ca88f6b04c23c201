"""Tests for session token issuing and verification."""

import base64
import json
from datetime import datetime, timezone

import pytest

from authservice.config import Settings
from authservice.service.errors import TokenRejectedError
from authservice.service.tokens import TokenService
from authservice.storage.banned_tokens import MemoryBannedTokenStore
from authservice.types import Email, Token


@pytest.fixture
def settings():
    return Settings(jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!")


@pytest.fixture
def tokens(settings, clock):
    return TokenService(settings, clock=clock)


@pytest.fixture
def banned():
    return MemoryBannedTokenStore()


def _segments(token: Token):
    header, payload, signature = token.value.split(".")
    return header, payload, signature


def _decode(segment: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))


def _encode(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


class TestIssue:
    def test_claims_layout(self, tokens, clock):
        token = tokens.issue(Email.parse("a@b.com"))
        header, payload, _ = _segments(token)
        assert _decode(header) == {"alg": "HS256", "typ": "JWT"}
        claims = _decode(payload)
        assert claims["sub"] == "a@b.com"
        assert claims["iat"] == int(clock.now)
        assert claims["exp"] == int(clock.now) + 600
        assert claims["iss"] == "authservice"
        assert claims["aud"] == "authservice-clients"
        assert claims["jti"]

    def test_tokens_are_unique(self, tokens):
        email = Email.parse("a@b.com")
        assert tokens.issue(email) != tokens.issue(email)

    def test_ttl_follows_settings(self, clock):
        settings = Settings(jwt_secret="x" * 40, token_ttl_seconds=30)
        service = TokenService(settings, clock=clock)
        _, payload, _ = _segments(service.issue(Email.parse("a@b.com")))
        assert _decode(payload)["exp"] - _decode(payload)["iat"] == 30


class TestVerify:
    async def test_fresh_token_verifies(self, tokens, banned, clock):
        token = tokens.issue(Email.parse("a@b.com"))
        claims = await tokens.verify(token, banned)
        assert claims.subject == "a@b.com"
        assert claims.expires_at == datetime.fromtimestamp(clock.now + 600, tz=timezone.utc)
        assert claims.issued_at == datetime.fromtimestamp(clock.now, tz=timezone.utc)
        assert claims.token_id

    async def test_banned_token_rejected(self, tokens, banned):
        token = tokens.issue(Email.parse("a@b.com"))
        await banned.add(token, 600)
        with pytest.raises(TokenRejectedError) as exc_info:
            await tokens.verify(token, banned)
        assert exc_info.value.status_code == 401

    async def test_ban_checked_before_signature(self, tokens):
        class RecordingStore:
            def __init__(self):
                self.calls = []

            async def add(self, token, ttl_seconds):
                raise AssertionError("not used")

            async def exists(self, token):
                self.calls.append(token)
                return True

        store = RecordingStore()
        garbage = Token.parse("not-even-a-jwt")
        with pytest.raises(TokenRejectedError) as banned_exc:
            await tokens.verify(garbage, store)
        assert store.calls == [garbage]

        # Revoked and forged tokens are indistinguishable to the caller
        with pytest.raises(TokenRejectedError) as forged_exc:
            await tokens.verify(garbage, MemoryBannedTokenStore())
        assert banned_exc.value.message == forged_exc.value.message

    async def test_expired_token_rejected(self, tokens, banned, clock):
        token = tokens.issue(Email.parse("a@b.com"))
        clock.advance(600)
        with pytest.raises(TokenRejectedError):
            await tokens.verify(token, banned)

    async def test_token_valid_until_expiry(self, tokens, banned, clock):
        token = tokens.issue(Email.parse("a@b.com"))
        clock.advance(599)
        assert (await tokens.verify(token, banned)).subject == "a@b.com"

    async def test_tampered_payload_rejected(self, tokens, banned):
        header, payload, signature = _segments(tokens.issue(Email.parse("a@b.com")))
        claims = _decode(payload)
        claims["sub"] = "attacker@evil.com"
        forged = Token.parse(f"{header}.{_encode(claims)}.{signature}")
        with pytest.raises(TokenRejectedError):
            await tokens.verify(forged, banned)

    async def test_other_secret_rejected(self, banned, clock):
        issuer = TokenService(Settings(jwt_secret="a" * 40), clock=clock)
        verifier = TokenService(Settings(jwt_secret="b" * 40), clock=clock)
        token = issuer.issue(Email.parse("a@b.com"))
        with pytest.raises(TokenRejectedError):
            await verifier.verify(token, banned)

    async def test_none_algorithm_rejected(self, tokens, banned):
        _, payload, _ = _segments(tokens.issue(Email.parse("a@b.com")))
        header = _encode({"alg": "none", "typ": "JWT"})
        with pytest.raises(TokenRejectedError):
            await tokens.verify(Token.parse(f"{header}.{payload}."), banned)

    async def test_wrong_audience_rejected(self, banned, clock):
        issuer = TokenService(
            Settings(jwt_secret="a" * 40, jwt_audience="someone-else"), clock=clock
        )
        verifier = TokenService(Settings(jwt_secret="a" * 40), clock=clock)
        token = issuer.issue(Email.parse("a@b.com"))
        with pytest.raises(TokenRejectedError):
            await verifier.verify(token, banned)

    @pytest.mark.parametrize("raw", ["abc", "a.b", "a.b.c.d", "é.é.é", "...."])
    async def test_malformed_tokens_rejected(self, tokens, banned, raw):
        with pytest.raises(TokenRejectedError):
            await tokens.verify(Token.parse(raw), banned)


class TestRemainingLifetime:
    def test_counts_down(self, tokens, clock):
        token = tokens.issue(Email.parse("a@b.com"))
        assert tokens.remaining_lifetime(token) == 600
        clock.advance(250)
        assert tokens.remaining_lifetime(token) == 350

    def test_expired_is_zero(self, tokens, clock):
        token = tokens.issue(Email.parse("a@b.com"))
        clock.advance(10_000)
        assert tokens.remaining_lifetime(token) == 0

    def test_foreign_token_is_none(self, tokens):
        assert tokens.remaining_lifetime(Token.parse("not.a.token")) is None


class TestHostileInput:
    def _nested(self) -> str:
        return base64.urlsafe_b64encode(b"[" * 200_000).decode().rstrip("=")

    async def test_unsigned_nested_header_rejected(self, tokens, banned):
        token = Token.parse(f"{self._nested()}.eyJhIjoxfQ.c2ln")
        with pytest.raises(TokenRejectedError):
            await tokens.verify(token, banned)
        assert tokens.remaining_lifetime(token) is None

    async def test_signed_nested_segments_rejected(self, tokens, banned):
        nested = self._nested()
        header = _encode({"alg": "HS256", "typ": "JWT"})
        for signing_input in (f"{nested}.{header}", f"{header}.{nested}"):
            token = Token.parse(f"{signing_input}.{tokens._sign(signing_input)}")
            with pytest.raises(TokenRejectedError):
                await tokens.verify(token, banned)
            assert tokens.remaining_lifetime(token) is None
