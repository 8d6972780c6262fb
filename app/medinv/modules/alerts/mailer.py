"""
Outgoing email over SMTP.

Send failures are returned as (False, message) and logged; they are never raised
into request handlers.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str | None
    password: str | None
    secure: bool
    from_email: str
    from_name: str

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)


def build_message(settings: SmtpSettings, *, to: str, subject: str, text: str, html: str | None = None) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = formataddr((settings.from_name, settings.from_email))
    msg["To"] = to
    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html")
    return msg


def send_email(settings: SmtpSettings, *, to: str, subject: str, text: str, html: str | None = None) -> tuple[bool, str]:
    if not settings.host:
        logger.warning("Email to %s not sent: SMTP host not configured", to)
        return False, "SMTP server not configured."
    if not settings.from_email:
        logger.warning("Email to %s not sent: from address not configured", to)
        return False, "Sender address not configured."

    msg = build_message(settings, to=to, subject=subject, text=text, html=html)
    try:
        with smtplib.SMTP(settings.host, int(settings.port or 587), timeout=30) as server:
            if settings.secure:
                server.starttls()
            if settings.user and settings.password:
                server.login(settings.user, settings.password)
            server.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed for %s: %s", settings.user, e)
        return False, f"SMTP authentication failed: {e}"
    except smtplib.SMTPException as e:
        logger.error("SMTP error sending to %s: %s", to, e)
        return False, f"SMTP error: {e}"
    except OSError as e:
        logger.error("SMTP connection to %s:%s failed: %s", settings.host, settings.port, e)
        return False, f"SMTP connection error: {e}"

    logger.info("Sent email to %s subject=%r", to, subject)
    return True, "sent"
