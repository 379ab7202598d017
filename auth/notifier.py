"""
auth/notifier.py -- Out-of-band delivery of verification codes.

Two implementations share one interface (Notifier):
  SmtpNotifier -- sends an HTML email through an SMTP relay (smtplib).
  LogNotifier  -- dev mode (DEBUG=true) only. Logs the code instead of
                  mailing it, so a local instance without SMTP credentials
                  can still complete registration.

Implementations raise NotificationError on delivery failure. The service
treats that as InternalError; it never retries.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("stockdash.notifier")


class NotificationError(Exception):
    """Raised when a verification code could not be delivered."""


class Notifier(Protocol):
    def send_verification_code(self, email: str, name: str, code: str) -> None: ...


def render_verification_email(name: str, code: str, expire_minutes: int) -> tuple[str, str]:
    """Return (plain text, html) bodies for the verification email."""
    text = (
        f"Hello {name},\n\n"
        "Thank you for registering. Please use the following code to verify your email:\n\n"
        f"    {code}\n\n"
        f"This code will expire in {expire_minutes} minutes.\n"
    )
    safe_name = html.escape(name)
    body = (
        f"<h1>Hello {safe_name},</h1>"
        "<p>Thank you for registering. Please use the following code to verify your email:</p>"
        '<h2 style="background-color: #f5f5f5; padding: 10px; text-align: center; font-size: 24px;">'
        f"{code}</h2>"
        f"<p>This code will expire in {expire_minutes} minutes.</p>"
    )
    return text, body


class SmtpNotifier:
    """Send verification emails over SMTP (STARTTLS by default)."""

    subject = "Verify Your Email"

    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.timeout = settings.smtp_timeout
        self.sender = f"{settings.email_from_name} <{settings.email_from}>"
        self.expire_minutes = settings.code_expire_seconds // 60

    def build_message(self, email: str, name: str, code: str) -> EmailMessage:
        text, body = render_verification_email(name, code, self.expire_minutes)
        msg = EmailMessage()
        msg["Subject"] = self.subject
        msg["From"] = self.sender
        msg["To"] = email
        msg.set_content(text)
        msg.add_alternative(body, subtype="html")
        return msg

    def send_verification_code(self, email: str, name: str, code: str) -> None:
        msg = self.build_message(email, name, code)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"SMTP delivery to {email} failed") from exc
        logger.info("Verification email sent to %s", email)


class LogNotifier:
    """Dev-mode notifier: writes the code to the log instead of sending mail."""

    def send_verification_code(self, email: str, name: str, code: str) -> None:
        logger.warning("SMTP not configured -- verification code for %s (%s): %s", email, name, code)


def build_notifier(settings: Settings) -> Notifier:
    """Pick the notifier for the configured environment.

    Logging codes instead of mailing them is a dev convenience only. In
    production mode a missing SMTP_HOST refuses to start, the same policy
    core.config applies to SECRET_KEY.
    """
    if settings.smtp_host:
        return SmtpNotifier(settings)
    if not settings.debug:
        raise ValueError(
            "SMTP_HOST is required in production mode. "
            "Set SMTP_HOST in your environment or .env file. "
            "To log verification codes instead, set DEBUG=true."
        )
    logger.warning("SMTP_HOST not set -- verification codes will be logged, not emailed")
    return LogNotifier()
