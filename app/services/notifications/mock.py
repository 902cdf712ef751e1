"""
Mock Notification Service

Simulates SMS, WhatsApp and Email sending for development.
No actual messages are sent - just logged. Every send is also kept in
``sent`` so tests and demos can inspect what went out.
"""

import asyncio
import random
import uuid
import logging
from typing import List, Optional, Tuple

from app.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """Mock notification service for development."""

    def __init__(self, failure_rate: float = 0.05, latency: Tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        # (channel, recipient, subject-or-message)
        self.sent: List[Tuple[str, str, str]] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def _deliver(self, channel: str, recipient: str, summary: str) -> NotificationResult:
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock {channel} failed (simulated) to {recipient}")
            return NotificationResult(
                success=False,
                error_message=f"Simulated {channel} failure",
                provider="mock"
            )

        message_id = f"{channel}_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append((channel, recipient, summary))
        logger.info(f"Mock {channel} sent to {recipient}: {summary[:50]} (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Simulate sending SMS."""
        return await self._deliver("sms", to_phone, message)

    async def send_whatsapp(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Simulate sending a WhatsApp message."""
        return await self._deliver("whatsapp", to_phone, message)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Simulate sending email."""
        return await self._deliver("email", to_email, subject)

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
