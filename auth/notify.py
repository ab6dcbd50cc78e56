"""
auth/notify.py -- Out-of-band delivery of one-time codes.

Two sinks, chosen once at startup by build_notification_sink():

  SmtpNotificationSink -- sends an HTML + plain-text email over SMTP.
      Every network call is bounded by Settings.smtp_timeout_seconds.

  LoggingNotificationSink -- used when SMTP_HOST is empty. Logs that a code
      was issued; the code itself is only logged when DEBUG=true so local
      development can complete the reset flow without a mail server.

Sinks may raise. Containing the failure is the caller's job: the session
manager catches it at the forgot-password boundary so delivery problems never
change the response.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from auth.protocols import NotificationSink
from core.config import Settings

logger = logging.getLogger("sessionkeeper.notify")

_SUBJECT = "Your password reset code"


def _render(code: str, ttl_minutes: int) -> tuple[str, str]:
    html_body = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2 style="color: #333;">Password reset request</h2>
        <p>Use the following code to reset your password:</p>
        <div style="background-color: #f5f5f5; padding: 20px; text-align: center; margin: 20px 0;">
            <span style="font-size: 32px; letter-spacing: 6px; font-family: monospace;">{code}</span>
        </div>
        <p><strong>This code expires in {ttl_minutes} minutes.</strong></p>
        <p>If you did not request a password reset, you can ignore this email.</p>
    </div>
    """
    text_body = (
        "Password reset request\n\n"
        f"Your code: {code}\n"
        f"This code expires in {ttl_minutes} minutes.\n\n"
        "If you did not request a password reset, you can ignore this email.\n"
    )
    return html_body, text_body


class SmtpNotificationSink:
    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._username = settings.smtp_username
        self._password = settings.smtp_password
        self._sender = settings.smtp_from
        self._use_tls = settings.smtp_use_tls
        self._timeout = settings.smtp_timeout_seconds
        self._ttl_minutes = max(1, settings.one_time_code_ttl_seconds // 60)

    def send_one_time_code(self, email: str, code: str) -> None:
        html_body, text_body = _render(code, self._ttl_minutes)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = _SUBJECT
        msg["From"] = self._sender
        msg["To"] = email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        if self._port == 465:
            server: smtplib.SMTP = smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout)
        else:
            server = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        with server:
            if self._use_tls and self._port != 465:
                server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.sendmail(self._sender, [email], msg.as_string())
        logger.info("Password reset code emailed to %s", email)


class LoggingNotificationSink:
    def __init__(self, reveal_codes: bool = False) -> None:
        self._reveal_codes = reveal_codes

    def send_one_time_code(self, email: str, code: str) -> None:
        if self._reveal_codes:
            logger.warning("SMTP not configured -- password reset code for %s: %s", email, code)
        else:
            logger.warning("SMTP not configured -- password reset code for %s was not delivered", email)


def build_notification_sink(settings: Settings) -> NotificationSink:
    """Return the SMTP sink when SMTP_HOST is set, otherwise the logging sink."""
    if settings.smtp_host:
        logger.info("Email delivery via %s:%d", settings.smtp_host, settings.smtp_port)
        return SmtpNotificationSink(settings)
    logger.warning("SMTP_HOST not set -- one-time codes will be logged, not emailed")
    return LoggingNotificationSink(reveal_codes=settings.debug)
