"""Tests for the email clients."""

import smtplib

import pytest

from authservice.config import Settings
from authservice.service import email as email_module
from authservice.service.email import (
    EmailDeliveryError,
    MockEmailClient,
    SmtpEmailClient,
)
from authservice.types import Email


class FakeSMTP:
    """Records the SMTP conversation; ``error`` is raised from ``sendmail``."""

    instances = []
    error = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def sendmail(self, from_addr, to_addr, message):
        if FakeSMTP.error is not None:
            raise FakeSMTP.error
        self.messages.append((from_addr, to_addr, message))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.error = None
    monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def recipient():
    return Email.parse("someone@example.com")


def _configured_client(**overrides):
    options = dict(
        smtp_host="smtp.example.com",
        smtp_port=2525,
        smtp_user="mailer",
        smtp_password="hunter2",
        from_email="noreply@example.com",
    )
    options.update(overrides)
    return SmtpEmailClient(**options)


class TestMockEmailClient:
    async def test_records_messages(self, recipient):
        client = MockEmailClient()
        await client.send(recipient, "2FA Code", "Your 2FA code is 123456")
        assert len(client.sent) == 1
        assert client.last_to(recipient).body == "Your 2FA code is 123456"
        assert client.last_to(Email.parse("other@example.com")) is None

    async def test_last_to_returns_newest(self, recipient):
        client = MockEmailClient()
        await client.send(recipient, "2FA Code", "first")
        await client.send(recipient, "2FA Code", "second")
        assert client.last_to(recipient).body == "second"

    async def test_fail_with_raises_delivery_error(self, recipient):
        client = MockEmailClient(fail_with=ConnectionError("down"))
        with pytest.raises(EmailDeliveryError):
            await client.send(recipient, "2FA Code", "body")
        assert client.sent == []


class TestSmtpEmailClient:
    def test_from_settings(self):
        settings = Settings(
            jwt_secret="x" * 40,
            smtp_host="smtp.example.com",
            smtp_port=465,
            smtp_use_tls=False,
            email_from_address="noreply@example.com",
        )
        client = SmtpEmailClient.from_settings(settings)
        assert client.is_configured
        assert client.smtp_port == 465
        assert client.smtp_use_tls is False

    def test_sender_defaults_to_smtp_user(self):
        client = SmtpEmailClient(smtp_host="smtp.example.com", smtp_user="mailer@example.com")
        assert client.from_email == "mailer@example.com"

    async def test_dev_mode_does_not_connect(self, fake_smtp, recipient):
        client = SmtpEmailClient()
        assert not client.is_configured
        await client.send(recipient, "2FA Code", "Your 2FA code is 123456")
        assert fake_smtp.instances == []

    async def test_sends_over_starttls(self, fake_smtp, recipient):
        client = _configured_client()
        await client.send(recipient, "2FA Code", "Your 2FA code is 123456")
        (server,) = fake_smtp.instances
        assert (server.host, server.port) == ("smtp.example.com", 2525)
        assert server.started_tls
        assert server.logged_in == ("mailer", "hunter2")
        from_addr, to_addr, message = server.messages[0]
        assert from_addr == "noreply@example.com"
        assert to_addr == "someone@example.com"
        assert "Subject: 2FA Code" in message
        assert "Your 2FA code is 123456" in message

    @pytest.mark.parametrize(
        "error",
        [
            smtplib.SMTPAuthenticationError(535, b"bad credentials"),
            smtplib.SMTPRecipientsRefused({"someone@example.com": (550, b"no")}),
            smtplib.SMTPServerDisconnected("gone"),
            ConnectionRefusedError("refused"),
        ],
    )
    async def test_transport_errors_become_delivery_errors(
        self, fake_smtp, recipient, error
    ):
        fake_smtp.error = error
        with pytest.raises(EmailDeliveryError):
            await _configured_client().send(recipient, "2FA Code", "body")
