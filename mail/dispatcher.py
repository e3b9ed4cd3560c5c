"""
mail/dispatcher.py -- Welcome and password-reset emails.

Two transports share one rendering path:
  SmtpMailer -- smtplib delivery for production (STARTTLS, or implicit TLS
                on port 465).
  LogMailer  -- writes the message to the log and keeps it in an in-memory
                outbox. Used whenever SMTP_HOST is empty, i.e. local
                development and tests.

Bodies are Jinja2 templates under mail/templates/ with autoescaping on, so a
user-controlled name cannot inject markup into the message.

Every delivery failure is raised as EmailDeliveryError. Callers decide whether
that is fatal (password reset) or only worth a warning (welcome email).
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from auth.errors import EmailDeliveryError
from auth.models import Account
from core.config import Settings

logger = logging.getLogger("localmarket.mail")

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


class Mailer:
    """Base dispatcher: renders messages, delegates transport to deliver()."""

    def __init__(self, *, sender: str, sender_name: str, frontend_url: str, reset_ttl_minutes: int = 10) -> None:
        self.sender = formataddr((sender_name, sender))
        self.frontend_url = frontend_url.rstrip("/")
        self.reset_ttl_minutes = reset_ttl_minutes

    def send_welcome(self, account: Account) -> None:
        html = _templates.get_template("welcome.html").render(name=account.name, frontend_url=self.frontend_url)
        self._send(account.email, "Welcome to Kamnet Marketplace!", html)

    def send_password_reset(self, email: str, token: str, name: str) -> None:
        html = _templates.get_template("password_reset.html").render(
            name=name,
            reset_url=f"{self.frontend_url}/reset-password/{token}",
            expires_minutes=self.reset_ttl_minutes,
        )
        self._send(email, "Password Reset Request", html)

    def _send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html, subtype="html")
        self.deliver(message)

    def deliver(self, message: EmailMessage) -> None:
        raise NotImplementedError


class SmtpMailer(Mailer):
    def __init__(self, *, host: str, port: int, user: str = "", password: str = "", timeout: float = 10, **kwargs):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def deliver(self, message: EmailMessage) -> None:
        try:
            if self.port == 465:
                client = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
            else:
                client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with client:
                if self.port != 465:
                    client.starttls()
                if self.user:
                    client.login(self.user, self.password)
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", message["To"], exc)
            raise EmailDeliveryError("Email could not be sent") from exc
        logger.info("Email sent to %s: %s", message["To"], message["Subject"])


class LogMailer(Mailer):
    """Development transport: nothing leaves the process."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.outbox: list[EmailMessage] = []

    def deliver(self, message: EmailMessage) -> None:
        self.outbox.append(message)
        logger.info("Email (not sent, SMTP_HOST unset) to %s: %s", message["To"], message["Subject"])


def build_mailer(settings: Settings) -> Mailer:
    common = {
        "sender": settings.email_from,
        "sender_name": settings.email_from_name,
        "frontend_url": settings.frontend_url,
        "reset_ttl_minutes": max(1, settings.reset_token_expire_seconds // 60),
    }
    if settings.smtp_host:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            **common,
        )
    if settings.is_production:
        logger.warning("SMTP_HOST is not set in production -- emails will only be logged")
    return LogMailer(**common)
