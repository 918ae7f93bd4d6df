"""
Outbound send capability backed by Django's mail framework.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from django.core.mail import EmailMultiAlternatives, get_connection


@dataclass(frozen=True)
class OutboundEmail:
    """A fully rendered message, ready to hand to a provider."""
    to_email: str
    to_name: str
    subject: str
    html: str
    text: str

    @property
    def to_header(self) -> str:
        if self.to_name:
            return f"{self.to_name} <{self.to_email}>"
        return self.to_email


class EmailSender(Protocol):
    def send(self, email: OutboundEmail) -> None:
        """Deliver ``email`` or raise."""


class DjangoEmailSender:
    """Sends through the configured ``EMAIL_BACKEND``."""

    def __init__(self, from_email: str | None = None, timeout: float | None = None):
        self.from_email = from_email
        self.timeout = timeout

    def send(self, email: OutboundEmail) -> None:
        connection = get_connection(fail_silently=False, timeout=self.timeout)
        message = EmailMultiAlternatives(
            subject=email.subject,
            body=email.text,
            from_email=self.from_email,
            to=[email.to_header],
            connection=connection,
        )
        message.attach_alternative(email.html, "text/html")
        sent = message.send(fail_silently=False)
        if sent != 1:
            raise RuntimeError(f"Mail backend accepted {sent} messages, expected 1")
