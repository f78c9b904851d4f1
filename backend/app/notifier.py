from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from textwrap import dedent
from typing import Iterable

from .config import Settings
from .escalation import EscalationEvent

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """Raised when an escalation email cannot be delivered."""


def send_email(
    settings: Settings,
    subject: str,
    body_text: str,
    *,
    to: Iterable[str] | None = None,
) -> None:
    """Send an email using the configured SMTP credentials."""
    recipients = list(to) if to else [addr for addr in [settings.escalation_email_to] if addr]
    if not recipients:
        raise NotificationError("No recipients specified for email. Set ESCALATION_EMAIL_TO.")
    sender = settings.escalation_email_from or settings.smtp_username
    if not sender or not settings.smtp_username or not settings.smtp_password:
        raise NotificationError("SMTP credentials are not configured.")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((settings.escalation_sender_name, sender))
    message["To"] = ", ".join(recipients)
    message.set_content(body_text)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
            smtp.starttls()
            smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        raise NotificationError(f"Failed to send email via {settings.smtp_host}: {exc}") from exc


class Notifier:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def notify(self, subject: str, body: str) -> None:
        send_email(self.settings, subject, body)
        logger.info("Sent notification '%s' to %s", subject, self.settings.escalation_email_to)

    def notify_escalation(self, event: EscalationEvent) -> None:
        body = dedent(
            """
            A chat user asked to be contacted by a person.

            User email: {email}

            Transcript:
            """
        ).strip().format(email=event.user_email)
        self.notify(
            subject=f"[Action Required] Chat escalation from {event.user_email}",
            body=f"{body}\n{event.transcript}",
        )
