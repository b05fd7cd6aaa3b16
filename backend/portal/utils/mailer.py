"""Transactional email delivery.

Two backends are available through `MAIL_BACKEND`: `console` (default)
logs each message and keeps it in an in-memory outbox, `smtp` sends via
`smtplib`. Delivery failures raise `MailDeliveryError`.
"""

import logging
import smtplib
import threading
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import List, Optional

from ..config import settings

logger = logging.getLogger("portal.mail")


class MailDeliveryError(Exception):
    pass


class ConsoleMailer:
    """Record messages instead of sending them."""

    def __init__(self, max_outbox: int = 500):
        self.outbox: List[dict] = []
        self._lock = threading.Lock()
        self._max_outbox = max_outbox

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        message_id = make_msgid()
        with self._lock:
            self.outbox.append({"to": to, "subject": subject, "html": html, "text": text, "message_id": message_id})
            del self.outbox[: max(0, len(self.outbox) - self._max_outbox)]
        logger.info("mail queued (console) to=%s subject=%r", to, subject)
        return message_id

    def clear(self) -> None:
        with self._lock:
            self.outbox.clear()


class SmtpMailer:
    def __init__(self, host: str, port: int, user: str = "", password: str = ""):
        self.host = host
        self.port = port
        self.user = user
        self.password = password

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        msg = EmailMessage()
        msg["From"] = formataddr((settings.MAIL_FROM_NAME, settings.MAIL_FROM))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content(text or "This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("mail delivery failed to=%s subject=%r: %s", to, subject, exc)
            raise MailDeliveryError("Email could not be sent") from exc
        logger.info("mail sent to=%s subject=%r", to, subject)
        return msg["Message-ID"]


_mailer = None


def get_mailer():
    """Return the process-wide mailer for the configured backend."""
    global _mailer
    if _mailer is None:
        if settings.MAIL_BACKEND == "smtp":
            _mailer = SmtpMailer(settings.SMTP_HOST, settings.SMTP_PORT, settings.SMTP_USER, settings.SMTP_PASSWORD)
        else:
            _mailer = ConsoleMailer()
    return _mailer


def send_email(to: str, subject: str, html: str, text: Optional[str] = None) -> bool:
    """Send one message; return `False` (and log) when delivery fails."""
    try:
        get_mailer().send(to, subject, html, text)
    except MailDeliveryError:
        logger.warning("continuing without email to=%s subject=%r", to, subject)
        return False
    return True
