from __future__ import annotations

import pytest

from app.auth.email import (
    ConsoleEmailSender,
    SmtpEmailSender,
    create_email_sender,
    login_code_email,
    password_reset_email,
)
from app.core.config import EmailConfig


def test_login_code_email_carries_code_and_ttl() -> None:
    message = login_code_email("a@example.com", "482913", ttl_minutes=10)

    assert message.to == "a@example.com"
    assert "Your verification code is: 482913" in message.text
    assert "10 minutes" in message.text
    assert "482913" in message.html


def test_password_reset_email_greets_by_name_and_escapes_html() -> None:
    message = password_reset_email("a@example.com", "111222", name="<Ada>")

    assert message.text.startswith("Hello <Ada>,")
    assert "&lt;Ada&gt;" in message.html
    assert "<Ada>" not in message.html


def test_create_email_sender_falls_back_to_console() -> None:
    assert isinstance(create_email_sender(EmailConfig()), ConsoleEmailSender)
    configured = EmailConfig(smtp_host="smtp.test.local", from_email="noreply@test.local")
    assert isinstance(create_email_sender(configured), SmtpEmailSender)


def test_create_email_sender_refuses_console_in_production() -> None:
    with pytest.raises(RuntimeError):
        create_email_sender(EmailConfig(), production=True)

    half_configured = EmailConfig(smtp_host="smtp.test.local")
    with pytest.raises(RuntimeError):
        create_email_sender(half_configured, production=True)

    configured = EmailConfig(smtp_host="smtp.test.local", from_email="noreply@test.local")
    assert isinstance(create_email_sender(configured, production=True), SmtpEmailSender)
