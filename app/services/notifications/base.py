"""
Notification Service Abstract Base Class

Defines interface for sending SMS, WhatsApp and Email notifications.
Supports both Mock (development) and Real (production) implementations.

Senders never raise for delivery problems: they return a NotificationResult
and flag failures a retry cannot fix as ``permanent``.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_E164_RE = re.compile(r"^\+\d{10,15}$")


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"
    permanent: bool = False


def is_valid_email(address: str) -> bool:
    return bool(address) and bool(_EMAIL_RE.match(address.strip()))


def normalize_phone(phone: str, default_country_code: str = "+1") -> str:
    """
    Normalize a phone number to E.164.

    Separators are stripped; a leading 0 (national trunk prefix) or a bare
    national number gets ``default_country_code``.
    """
    cleaned = re.sub(r"[^\d+]", "", phone or "")
    if not cleaned:
        return ""
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        return "+" + cleaned[2:]
    if cleaned.startswith("0"):
        return default_country_code + cleaned[1:]
    if len(cleaned) == 10:
        return default_country_code + cleaned
    return "+" + cleaned


def is_valid_phone(phone: str) -> bool:
    """Basic E.164 check: + followed by 10-15 digits."""
    return bool(_E164_RE.match(phone))


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message to an E.164 number."""
        pass

    @abstractmethod
    async def send_whatsapp(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send a WhatsApp message to an E.164 number."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
