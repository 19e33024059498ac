"""
auth/mailer.py -- SMTP transport for password reset mail.

The sender is constructed once from Settings and handed to the reset
sequencer. When no SMTP host is configured (local development) the message
is logged with a redacted recipient instead of being sent.

Delivery errors are raised as EmailDeliveryError and never retried here.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import TYPE_CHECKING, Protocol

from auth.errors import EmailDeliveryError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("schooladmin.email")

_SMTP_TIMEOUT_SECONDS = 30


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpEmailSender:
    """Plain-text mail over SMTP with STARTTLS or implicit TLS."""

    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email or user

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpEmailSender:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.smtp_from,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to: str, subject: str, body: str) -> None:
        if not self.is_configured:
            logger.info("SMTP not configured; not sending '%s' to %s", subject, redact_email(to))
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        msg.set_content(body)

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=_SMTP_TIMEOUT_SECONDS) as server:
                    server.starttls(context=context)
                    if self.user and self.password:
                        server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=_SMTP_TIMEOUT_SECONDS) as server:
                    if self.user and self.password:
                        server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email to %s failed via %s:%d: %s", redact_email(to), self.host, self.port, exc)
            raise EmailDeliveryError("Failed to send email.") from exc

        logger.info("Email '%s' sent to %s", subject, redact_email(to))
