"""SMTP delivery of notification emails."""

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from app.core.config import settings
from app.core.exceptions import NotificationError

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(settings.smtp_host)


def _build_message(to: str, subject: str, html: str, text: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.smtp_from
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text)
    msg.add_alternative(html, subtype="html")
    return msg


def _send_sync(msg: EmailMessage) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
        smtp.starttls()
        if settings.smtp_user and settings.smtp_password:
            smtp.login(settings.smtp_user, settings.smtp_password)
        smtp.send_message(msg)


async def send_email(to: str, subject: str, html: str, text: str) -> bool:
    """Send one email. Returns False when SMTP is not configured and the message was only logged.

    Raises:
        NotificationError: if the SMTP server rejects or cannot be reached.
    """
    if not is_configured():
        logger.info("SMTP not configured, email to %s not sent: %s", to, subject)
        logger.debug("Email body:\n%s", text)
        return False

    msg = _build_message(to, subject, html, text)
    try:
        await asyncio.to_thread(_send_sync, msg)
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Failed to send email to {to}: {e}") from e
    logger.info("Email sent to %s: %s", to, subject)
    return True
