from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from ..config import Settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(self, *, to: str, subject: str, html: str) -> None: ...


class LoggingEmailSender:
    """Logs the message instead of delivering it. Default outside production."""

    async def send(self, *, to: str, subject: str, html: str) -> None:
        logger.info("[SIMULATED EMAIL] to=%s subject=%r length=%d", to, subject, len(html))


class SmtpEmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def _build(self, to: str, subject: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        msg.attach(MIMEText(html, "html"))
        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, *, to: str, subject: str, html: str) -> None:
        # smtplib blocks; keep it off the event loop.
        await asyncio.to_thread(self._deliver, self._build(to, subject, html))
        logger.info("email sent to %s: %s", to, subject)


def build_email_sender(settings: Settings) -> EmailSender:
    if settings.notification_mode == "smtp":
        if not settings.smtp_user or not settings.smtp_password:
            raise RuntimeError("SMTP_USER and SMTP_PASSWORD must be set when NOTIFICATION_MODE=smtp")
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.email_from,
        )
    return LoggingEmailSender()
