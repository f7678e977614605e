"""
Email delivery service via SMTP (Gmail-compatible).

Uses Python's built-in smtplib with STARTTLS so it works with any
SMTP provider: Gmail App Passwords, SendGrid, Mailgun, etc.
Bodies are rendered from the Jinja2 templates in contentforge/templates.

Gmail setup:
  1. Enable 2-Step Verification on your Google account.
  2. Generate an App Password (Google Account → Security → App Passwords).
  3. Set SMTP_HOST=smtp.gmail.com, SMTP_USER=you@gmail.com and
     SMTP_PASSWORD=<app-password> in .env.

All send methods are synchronous and raise on failure; the drivers call them
through ``asyncio.to_thread`` and decide whether a failure matters.
"""

from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from contentforge.core.config import Settings
from contentforge.core.logging import get_logger
from contentforge.schemas.schemas import ContentRequest

logger = get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates"

_templates = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_template(name: str, **context) -> str:
    return _templates.get_template(name).render(**context)


class EmailService:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._settings.email_configured

    def send(self, to: str, subject: str, html: str) -> None:
        """Open SMTP connection, send, close. Raises on failure."""
        settings = self._settings
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = settings.email_sender
        msg["To"] = to
        msg.attach(MIMEText(html, "html", "utf-8"))

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            smtp.ehlo()
            smtp.starttls()
            smtp.ehlo()
            if settings.smtp_user and settings.smtp_password:
                smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.sendmail(settings.email_sender, [to], msg.as_string())

    def send_approval_request(
        self, record: ContentRequest, approve_url: str, reject_url: str
    ) -> None:
        html = render_template(
            "approval_email.html",
            record=record,
            approve_url=approve_url,
            reject_url=reject_url,
            ttl_hours=self._settings.approval_ttl_hours,
        )
        self.send(record.user_email, "Your AI-generated content is ready for review", html)
        logger.info("approval_email_sent", request_id=record.request_id)

    def send_publish_summary(self, record: ContentRequest) -> None:
        html = render_template("published_email.html", record=record)
        self.send(record.user_email, "Your content is live!", html)
        logger.info("publish_email_sent", request_id=record.request_id)
