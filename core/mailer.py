"""
core/mailer.py -- Fire-and-forget SMTP mail dispatch.

The auth flows send verification, password-reset and password-changed mail.
None of them may fail or stall because the mail server is slow or down, so
dispatch() hands the SMTP conversation to a small thread pool and returns
immediately. Delivery errors are logged with a redacted recipient and never
propagate to the request that triggered them.

Without SMTP_HOST (local development) messages are logged instead of sent.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from concurrent.futures import Future, ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from core.config import Settings

logger = logging.getLogger("hubauth.mail")


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    """SMTP sender with a non-blocking dispatch() front door.

    Usage:
        mailer = Mailer.from_settings(get_settings())
        mailer.dispatch("a@b.co", "Subject", "plain text", "<p>html</p>")
        mailer.close()
    """

    def __init__(
        self,
        *,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "",
        from_name: str = "SwahiliPot Hub",
        max_workers: int = 2,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mailer")

    @classmethod
    def from_settings(cls, settings: Settings) -> Mailer:
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.mail_from,
            from_name=settings.mail_from_name,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send(self, recipient: str, subject: str, text: str, html: str) -> None:
        """Deliver one message synchronously. Raises on SMTP failure."""
        if not self.is_configured:
            logger.info("Mail (dev mode, not sent) to=%s subject=%r", redact_email(recipient), subject)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = recipient
        msg.attach(MIMEText(text, "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            if self.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_email, [recipient], msg.as_string())
        logger.info("Mail sent to=%s subject=%r", redact_email(recipient), subject)

    def dispatch(self, recipient: str, subject: str, text: str, html: str) -> Future:
        """Queue a message for background delivery and return immediately."""
        future = self._executor.submit(self.send, recipient, subject, text, html)
        future.add_done_callback(lambda f: self._report(f, recipient, subject))
        return future

    @staticmethod
    def _report(future: Future, recipient: str, subject: str) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Mail delivery failed to=%s subject=%r: %s", redact_email(recipient), subject, exc)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
