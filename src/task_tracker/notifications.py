"""
Notification Sender

Delivery of best-effort notifications such as assignment emails. A sender
reports its outcome as a result dict and never raises into the mutation
that triggered it.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, List, Optional, Tuple

from .config import Settings

logger = logging.getLogger(__name__)


class NotificationSender(ABC):

    @abstractmethod
    def send(self, recipient: str, subject: str, body: str) -> Dict[str, Any]:
        """Deliver a message. Returns {"success": bool, "message"|"error": str}."""


class NullNotificationSender(NotificationSender):
    """Discards messages; used when no mail server is configured."""

    def send(self, recipient: str, subject: str, body: str) -> Dict[str, Any]:
        logger.debug(f"Notification to {recipient} discarded: {subject}")
        return {"success": True, "message": "Notifications disabled"}


class RecordingNotificationSender(NotificationSender):
    """Keeps messages in memory, for tests and dry runs."""

    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    def send(self, recipient: str, subject: str, body: str) -> Dict[str, Any]:
        self.sent.append((recipient, subject, body))
        return {"success": True, "message": "Recorded"}


class SmtpNotificationSender(NotificationSender):

    def __init__(self, host: str, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, sender: Optional[str] = None,
                 timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user or "task-tracker@localhost"
        self.timeout = timeout

    def send(self, recipient: str, subject: str, body: str) -> Dict[str, Any]:
        message = EmailMessage()
        message["From"] = f'"Task Tracker" <{self.sender}>'
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email to {recipient}: {e}")
            return {"success": False, "error": str(e)}

        logger.info(f"Email sent to {recipient}: {subject}")
        return {"success": True, "message": "Email sent successfully"}


def build_notifier(settings: Settings) -> NotificationSender:
    if not settings.notifications_enabled:
        return NullNotificationSender()
    return SmtpNotificationSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        sender=settings.email_sender,
    )
