# backend/modelfolio/services/notifications.py
"""
Notifier implementations.

Handles:
- Ingestion failure alerts (failure rate above threshold)

EmailNotifier sends plain-text mail over SMTP (configurable via settings).
LoggingNotifier writes the message to the log and is used wherever SMTP is
not configured (development, tests).

Both are blocking; async callers run them with asyncio.to_thread.
"""

import logging
import smtplib
from email.mime.text import MIMEText

from modelfolio.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Notifier that only logs. Always reports success."""

    def notify(self, recipient: str | None, subject: str, body: str) -> bool:
        logger.warning(f"ALERT to {recipient or '<no recipient>'}: {subject}")
        logger.info(f"Alert body: {body[:500]}")
        return True


class EmailNotifier:
    """
    Notifier sending email through SMTP.

    Args:
        config: Settings with the smtp_* values (default: global settings)
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or default_settings

    def notify(self, recipient: str | None, subject: str, body: str) -> bool:
        """
        Send an email using SMTP.

        Args:
            recipient: Recipient address (default: settings.alert_recipient)
            subject: Email subject
            body: Plain text body

        Returns:
            True if email was sent successfully, False otherwise
        """
        cfg = self._settings
        recipient = recipient or cfg.alert_recipient

        if not cfg.is_email_configured or not recipient:
            logger.warning(f"Email not configured. Would have sent alert to {recipient}: {subject}")
            return False

        try:
            msg = MIMEText(body, "plain")
            msg["Subject"] = subject
            msg["From"] = f"{cfg.smtp_from_name} <{cfg.smtp_from_email}>"
            msg["To"] = recipient

            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port) as server:
                server.starttls()
                server.login(cfg.smtp_user, cfg.smtp_password)
                server.send_message(msg)

            logger.info(f"Alert email sent to {recipient}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send alert email to {recipient}: {e}")
            return False


def build_notifier(config: Settings | None = None) -> EmailNotifier | LoggingNotifier:
    """EmailNotifier when SMTP is configured, LoggingNotifier otherwise."""
    cfg = config or default_settings
    if cfg.is_email_configured:
        return EmailNotifier(cfg)
    return LoggingNotifier()
