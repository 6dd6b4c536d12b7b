"""
Mail transports for forum notifications

A transport delivers one message to one recipient:
``send(recipient, subject, body, context) -> bool``. ``LogTransport`` only
logs and records messages; ``SendGridTransport`` delivers through the
SendGrid API.
"""

import html
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To

from core.error_handler import DeliveryError


logger = logging.getLogger(__name__)


@dataclass
class OutgoingMessage:
    """A message handed to a transport."""
    recipient: str
    subject: str
    body: str
    context: Dict[str, Any] = field(default_factory=dict)


class MailTransport:
    """Base class for notification transports."""

    def send(self, recipient: str, subject: str, body: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """
        Deliver a single message.

        Args:
            recipient: Recipient e-mail address
            subject: Message subject
            body: Plain text body
            context: Template values used to build the message

        Returns:
            bool: True if the message was accepted for delivery

        Raises:
            DeliveryError: If the transport failed outright
        """
        raise NotImplementedError


class LogTransport(MailTransport):
    """Writes messages to the log and keeps them in ``sent``."""

    def __init__(self):
        self.sent: List[OutgoingMessage] = []
        self._lock = threading.Lock()

    def send(self, recipient: str, subject: str, body: str, context: Optional[Dict[str, Any]] = None) -> bool:
        message = OutgoingMessage(recipient, subject, body, dict(context or {}))
        with self._lock:
            self.sent.append(message)
        logger.info(f"Mail to {recipient}: {subject}")
        return True


class SendGridTransport(MailTransport):
    """Delivers messages through SendGrid."""

    def __init__(self, api_key: str, from_address: str):
        """
        Initialize SendGrid transport.

        Args:
            api_key: SendGrid API key
            from_address: Sender address

        Raises:
            ValueError: If the API key or sender is missing
        """
        if not api_key:
            raise ValueError("SendGrid API key must be provided")
        if not from_address:
            raise ValueError("A sender address must be provided")
        self.from_address = from_address
        self.client = SendGridAPIClient(api_key)

    def send(self, recipient: str, subject: str, body: str, context: Optional[Dict[str, Any]] = None) -> bool:
        message = Mail(
            from_email=Email(self.from_address),
            to_emails=To(recipient),
            subject=subject,
            plain_text_content=body,
            html_content=self._html_body(body),
        )
        try:
            response = self.client.send(message)
        except Exception as e:
            raise DeliveryError(f"SendGrid delivery to {recipient} failed: {e}") from e

        if response.status_code >= 400:
            logger.warning(f"SendGrid rejected mail to {recipient} with status {response.status_code}")
            return False

        logger.debug(f"Mail to {recipient} accepted with status {response.status_code}")
        return True

    def _html_body(self, body: str) -> str:
        return "<br>\n".join(html.escape(line) for line in body.splitlines())


def get_transport(name: str, api_key: str = "", from_address: str = "") -> MailTransport:
    """
    Build the transport configured under ``notification.transport``.

    Args:
        name: "log" or "sendgrid"
        api_key: SendGrid API key
        from_address: Sender address

    Returns:
        MailTransport instance

    Raises:
        ValueError: If the transport name is unknown
    """
    if name == "log":
        return LogTransport()
    if name == "sendgrid":
        return SendGridTransport(api_key, from_address)
    raise ValueError(f"Unknown mail transport: {name}")
