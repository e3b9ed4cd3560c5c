"""Unit tests for mail/dispatcher.py -- rendering and SMTP transport.

smtplib is patched; nothing leaves the process.
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from auth.errors import EmailDeliveryError
from auth.models import Account
from core.config import Settings
from mail.dispatcher import LogMailer, SmtpMailer, build_mailer

COMMON = {
    "sender": "noreply@kamnet.pk",
    "sender_name": "Kamnet Marketplace",
    "frontend_url": "https://kamnet.pk/",
    "reset_ttl_minutes": 10,
}


def _html(message) -> str:
    return message.get_body(preferencelist=("html",)).get_content()


class TestRendering:
    def test_password_reset_link_and_expiry(self) -> None:
        mailer = LogMailer(**COMMON)
        mailer.send_password_reset(email="ann@example.com", token="abc123", name="Ann")
        message = mailer.outbox[-1]
        assert message["To"] == "ann@example.com"
        assert message["Subject"] == "Password Reset Request"
        assert "Kamnet Marketplace" in message["From"]
        html = _html(message)
        assert "https://kamnet.pk/reset-password/abc123" in html
        assert "10 minutes" in html

    def test_welcome_escapes_name(self) -> None:
        mailer = LogMailer(**COMMON)
        mailer.send_welcome(Account(name="<script>x</script>", email="ann@example.com"))
        message = mailer.outbox[-1]
        assert message["Subject"] == "Welcome to Kamnet Marketplace!"
        html = _html(message)
        assert "<script>x</script>" not in html
        assert "&lt;script&gt;" in html


class TestSmtpTransport:
    def test_starttls_login_and_send(self) -> None:
        mailer = SmtpMailer(host="smtp.example.com", port=587, user="u", password="p", **COMMON)
        with patch("mail.dispatcher.smtplib.SMTP") as smtp_cls:
            client = MagicMock()
            smtp_cls.return_value = client
            mailer.send_password_reset(email="ann@example.com", token="t", name="Ann")

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10)
        client.starttls.assert_called_once()
        client.login.assert_called_once_with("u", "p")
        client.send_message.assert_called_once()

    def test_implicit_tls_on_465(self) -> None:
        mailer = SmtpMailer(host="smtp.example.com", port=465, **COMMON)
        with patch("mail.dispatcher.smtplib.SMTP_SSL") as ssl_cls:
            client = MagicMock()
            ssl_cls.return_value = client
            mailer.send_welcome(Account(name="Ann", email="ann@example.com"))

        client.starttls.assert_not_called()
        client.login.assert_not_called()
        client.send_message.assert_called_once()

    def test_smtp_failure_becomes_delivery_error(self) -> None:
        mailer = SmtpMailer(host="smtp.example.com", port=587, **COMMON)
        with patch("mail.dispatcher.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.send_message.side_effect = smtplib.SMTPException("boom")
            with pytest.raises(EmailDeliveryError):
                mailer.send_password_reset(email="ann@example.com", token="t", name="Ann")

    def test_connection_refused_becomes_delivery_error(self) -> None:
        mailer = SmtpMailer(host="smtp.example.com", port=587, **COMMON)
        with patch("mail.dispatcher.smtplib.SMTP", side_effect=ConnectionRefusedError()):
            with pytest.raises(EmailDeliveryError):
                mailer.send_password_reset(email="ann@example.com", token="t", name="Ann")


def test_build_mailer_picks_transport() -> None:
    assert isinstance(build_mailer(Settings(smtp_host="")), LogMailer)
    mailer = build_mailer(Settings(smtp_host="smtp.example.com", smtp_port=2525))
    assert isinstance(mailer, SmtpMailer)
    assert mailer.port == 2525
