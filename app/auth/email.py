"""Email payloads for one-time codes and the senders that deliver them."""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

from app.core.config import EmailConfig

LOGGER = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    """Raised when a message could not be handed to the mail server."""


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: str


def _code_card(brand: str, heading: str, intro_html: str, code: str, ttl_minutes: int, footer: str) -> str:
    year = datetime.now(timezone.utc).year
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        f'<h1 style="color: #00afef; text-align: center;">{html.escape(brand)}</h1>'
        '<div style="background: #f9fafb; border-radius: 12px; padding: 30px; text-align: center;">'
        f"<h2>{html.escape(heading)}</h2>"
        f"{intro_html}"
        '<div style="background: #00afef; border-radius: 8px; padding: 20px; margin: 20px 0;">'
        '<span style="font-size: 32px; font-weight: bold; color: white; letter-spacing: 8px;">'
        f"{html.escape(code)}</span></div>"
        f"<p>This code will expire in <strong>{ttl_minutes} minutes</strong>.</p>"
        f'<p style="color: #9ca3af; font-size: 12px;">{html.escape(footer)}</p>'
        "</div>"
        f'<p style="color: #9ca3af; font-size: 12px; text-align: center;">&copy; {year} {html.escape(brand)}</p>'
        "</div>"
    )


def login_code_email(to: str, code: str, *, ttl_minutes: int = 10, brand: str = "Portal") -> OutgoingEmail:
    """Build the message carrying a login verification code."""
    footer = "If you did not request this code, please ignore this email."
    return OutgoingEmail(
        to=to,
        subject=f"Your Verification Code - {brand}",
        text=(
            f"Your verification code is: {code}\n\n"
            f"This code will expire in {ttl_minutes} minutes.\n\n{footer}"
        ),
        html=_code_card(
            brand,
            "Verify Your Email",
            "<p>Use the verification code below to complete your login:</p>",
            code,
            ttl_minutes,
            footer,
        ),
    )


def password_reset_email(
    to: str, code: str, *, name: str = "", ttl_minutes: int = 10, brand: str = "Portal"
) -> OutgoingEmail:
    """Build the message carrying a password reset code."""
    greeting = name or to
    footer = (
        "If you did not request this password reset, please ignore this email "
        "or contact support if you have concerns."
    )
    return OutgoingEmail(
        to=to,
        subject=f"Password Reset Code - {brand}",
        text=(
            f"Hello {greeting},\n\n"
            f"You have requested to reset your password. Your verification code is: {code}\n\n"
            f"This code will expire in {ttl_minutes} minutes.\n\n{footer}"
        ),
        html=_code_card(
            brand,
            "Password Reset Request",
            f"<p>Hello {html.escape(greeting)},</p>"
            "<p>You have requested to reset your password. Use the verification code below:</p>",
            code,
            ttl_minutes,
            footer,
        ),
    )


class EmailSender(Protocol):
    async def send(self, message: OutgoingEmail) -> None:
        """Deliver ``message`` or raise ``EmailDeliveryError``."""


class SmtpEmailSender:
    """Delivers mail through an SMTP relay on a worker thread."""

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    def _send_blocking(self, message: OutgoingEmail) -> None:
        config = self._config
        mime = EmailMessage()
        mime["From"] = formataddr((config.from_name, config.from_email or config.smtp_username))
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.set_content(message.text)
        mime.add_alternative(message.html, subtype="html")

        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=10) as server:
            if config.use_tls:
                server.starttls()
            if config.smtp_username and config.smtp_password:
                server.login(config.smtp_username, config.smtp_password)
            server.send_message(mime)

    async def send(self, message: OutgoingEmail) -> None:
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (OSError, smtplib.SMTPException) as exc:
            LOGGER.error("email_delivery_failed", exc_info=True)
            raise EmailDeliveryError(str(exc)) from exc


class ConsoleEmailSender:
    """Development sender that writes messages to the log instead of mailing them."""

    async def send(self, message: OutgoingEmail) -> None:
        LOGGER.warning(
            "email_not_delivered_smtp_unconfigured to=%s subject=%s\n%s",
            message.to,
            message.subject,
            message.text,
        )


def create_email_sender(config: EmailConfig, *, production: bool = False) -> EmailSender:
    """Pick the SMTP sender, or the console sender outside production."""
    if config.configured:
        return SmtpEmailSender(config)
    if production:
        raise RuntimeError("SMTP_HOST and EMAIL_FROM must be set when APP_ENV=production")
    LOGGER.warning("smtp_not_configured_using_console_sender")
    return ConsoleEmailSender()
