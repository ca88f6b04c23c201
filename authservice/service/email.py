from __future__ import annotations

import asyncio
import smtplib
import ssl
import threading
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import List, Optional, Protocol

from authservice.config import Settings
from authservice.logging import get_logger
from authservice.types import Email

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    """The message could not be handed to the mail transport."""


class EmailClient(Protocol):
    async def send(self, recipient: Email, subject: str, body: str) -> None: ...


@dataclass(frozen=True)
class SentEmail:
    recipient: Email
    subject: str
    body: str


class MockEmailClient:
    """Records messages instead of sending them.

    Used in memory mode and tests; ``fail_with`` makes every send raise so
    callers' cleanup paths can be exercised.
    """

    def __init__(self, *, fail_with: Optional[Exception] = None) -> None:
        self.fail_with = fail_with
        self._lock = threading.Lock()
        self._sent: List[SentEmail] = []

    @property
    def sent(self) -> List[SentEmail]:
        with self._lock:
            return list(self._sent)

    def last_to(self, recipient: Email) -> Optional[SentEmail]:
        with self._lock:
            for message in reversed(self._sent):
                if message.recipient == recipient:
                    return message
        return None

    async def send(self, recipient: Email, subject: str, body: str) -> None:
        if self.fail_with is not None:
            raise EmailDeliveryError(str(self.fail_with)) from self.fail_with
        with self._lock:
            self._sent.append(SentEmail(recipient, subject, body))
        logger.info("email_mock_sent", to=recipient.redacted(), subject=subject)


class SmtpEmailClient:
    """SMTP sender over STARTTLS or implicit TLS.

    When no host or sender address is configured the message is logged
    instead of sent (dev mode). ``smtplib`` blocks, so each send runs on a
    worker thread.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Auth Service",
        timeout: float = 30.0,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpEmailClient":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _send_sync(self, recipient: Email, subject: str, body: str) -> None:
        to = recipient.redacted()
        if not self.is_configured:
            logger.info("email_dev_mode", to=to, subject=subject)
            return

        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = recipient.value

        context = ssl.create_default_context()
        logger.debug(
            "email_connecting",
            host=self.smtp_host,
            port=self.smtp_port,
            use_tls=self.smtp_use_tls,
            to=to,
        )
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(
                    self.smtp_host, self.smtp_port, timeout=self.timeout
                ) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, recipient.value, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, recipient.value, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=to,
                host=self.smtp_host,
                error=str(e),
                smtp_code=getattr(e, "smtp_code", None),
            )
            raise EmailDeliveryError("SMTP authentication failed") from e
        except smtplib.SMTPRecipientsRefused as e:
            logger.error("email_recipient_refused", to=to, error=str(e))
            raise EmailDeliveryError("recipient refused") from e
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=to,
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise EmailDeliveryError("SMTP error") from e
        except (ssl.SSLError, OSError) as e:
            # Covers connection refused, TLS handshake failures and timeouts
            logger.error(
                "email_connect_failed",
                to=to,
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise EmailDeliveryError("SMTP connection failed") from e
        logger.info("email_sent", to=to, subject=subject)

    async def send(self, recipient: Email, subject: str, body: str) -> None:
        await asyncio.to_thread(self._send_sync, recipient, subject, body)
