"""
auth/messages.py -- What to send, never how.

The core composes verification links, reset links and SMS codes and hands
them to a Dispatcher. Transport (SMTP, an SMS gateway, a queue) lives behind
that interface, outside this package.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger("authsquared.messages")

_SERVICE_NAME = "Auth²"


@dataclass(frozen=True)
class Message:
    subject: str
    body: str


class Dispatcher(Protocol):
    def send(self, recipient: str, content: Message) -> bool:
        """Deliver content to recipient. Return False if delivery failed."""
        ...


class LoggingDispatcher:
    """Development dispatcher: logs the recipient and subject, delivers nothing."""

    def send(self, recipient: str, content: Message) -> bool:
        logger.info("Dispatch to %s: %s", recipient, content.subject or "(sms)")
        return True


def verification_email(firstname: str, url: str, ttl_hours: int) -> Message:
    return Message(
        subject=f"Verify your {_SERVICE_NAME} account",
        body=(
            f"Hi {firstname},\n\n"
            f"Confirm your email address by opening the link below:\n\n{url}\n\n"
            f"The link expires in {ttl_hours} hours. "
            "If you did not create an account, you can ignore this email."
        ),
    )


def password_reset_email(firstname: str, url: str, ttl_minutes: int) -> Message:
    return Message(
        subject=f"Password Reset Request - {_SERVICE_NAME}",
        body=(
            f"Hi {firstname},\n\n"
            f"A password reset was requested for your account. Use the link below:\n\n{url}\n\n"
            f"The link expires in {ttl_minutes} minutes and works once. "
            "If you did not ask for a reset, ignore this email; your password stays the same."
        ),
    )


def sms_code(code: str, ttl_minutes: int) -> Message:
    # SMS gateways ignore the subject.
    return Message(subject="", body=f"{_SERVICE_NAME} Code: {code}\nExpires in {ttl_minutes} min\nDo not share")
