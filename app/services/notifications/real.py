"""
Real Notification Service

Production implementation using:
- Twilio for SMS and WhatsApp
- SendGrid for Email

Both SDKs are blocking, so every provider call runs in a worker thread and
never stalls the event loop shared by the worker pools.
"""

import asyncio
import logging
from typing import Optional

from python_http_client.exceptions import HTTPError as SendGridHTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client as TwilioClient

from app.core.config import Settings
from app.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


def _is_permanent_status(status: Optional[int]) -> bool:
    """4xx responses (other than throttling) will fail the same way again."""
    return status is not None and 400 <= status < 500 and status not in (408, 429)


class RealNotificationService(BaseNotificationService):
    """Production notification service using Twilio and SendGrid."""

    def __init__(self, settings: Settings):
        self.settings = settings

        # Initialize Twilio
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(
                settings.twilio_account_sid,
                settings.twilio_auth_token
            )
            self.twilio_from_number = settings.twilio_phone_number
        else:
            self.twilio_client = None
            logger.warning("Twilio credentials not configured")

        # Initialize SendGrid
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
            self.sendgrid_from_email = settings.sendgrid_from_email
        else:
            self.sendgrid_client = None
            logger.warning("SendGrid credentials not configured")

        logger.info("RealNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "real"

    async def _send_twilio(self, from_: str, to: str, message: str, channel: str) -> NotificationResult:
        try:
            result = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=from_,
                to=to,
            )

            logger.info(f"{channel} sent to {to}: {result.sid}")

            return NotificationResult(
                success=True,
                message_id=result.sid,
                provider="twilio"
            )

        except TwilioRestException as e:
            logger.error(f"Twilio error ({channel} to {to}): {e.status} {e.code} {e.msg}")
            return NotificationResult(
                success=False,
                error_message=f"{e.code}: {e.msg}",
                provider="twilio",
                permanent=_is_permanent_status(e.status),
            )
        except TwilioException as e:
            logger.error(f"Twilio error ({channel} to {to}): {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="twilio"
            )

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.twilio_client or not self.twilio_from_number:
            return NotificationResult(
                success=False,
                error_message="Twilio not configured",
                provider="twilio"
            )

        return await self._send_twilio(self.twilio_from_number, to_phone, message, "SMS")

    async def send_whatsapp(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send WhatsApp via Twilio."""
        if not self.twilio_client or not self.settings.twilio_whatsapp_number:
            return NotificationResult(
                success=False,
                error_message="Twilio WhatsApp number not configured",
                provider="twilio"
            )
        if not self.settings.twilio_whatsapp_enabled:
            return NotificationResult(
                success=False,
                error_message="WhatsApp is not enabled",
                provider="twilio",
                permanent=True,
            )

        return await self._send_twilio(
            f"whatsapp:{self.settings.twilio_whatsapp_number}",
            f"whatsapp:{to_phone}",
            message,
            "WhatsApp",
        )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return NotificationResult(
                success=False,
                error_message="SendGrid not configured",
                provider="sendgrid"
            )

        try:
            message = Mail(
                from_email=self.sendgrid_from_email,
                to_emails=to_email,
                subject=subject,
                html_content=body_html,
                plain_text_content=body_text
            )

            response = await asyncio.to_thread(self.sendgrid_client.send, message)

            logger.info(f"Email sent to {to_email}: {response.status_code}")

            return NotificationResult(
                success=response.status_code in [200, 201, 202],
                message_id=response.headers.get('X-Message-Id'),
                error_message=None if response.status_code in [200, 201, 202] else f"HTTP {response.status_code}",
                provider="sendgrid"
            )

        except SendGridHTTPError as e:
            logger.error(f"SendGrid error ({to_email}): {e.status_code} {e.body}")
            return NotificationResult(
                success=False,
                error_message=f"HTTP {e.status_code}",
                provider="sendgrid",
                permanent=_is_permanent_status(e.status_code),
            )
        except Exception as e:
            logger.error(f"SendGrid error ({to_email}): {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="sendgrid"
            )

    async def health_check(self) -> bool:
        """Check the Twilio account is reachable."""
        if not self.twilio_client:
            return False
        try:
            await asyncio.to_thread(
                self.twilio_client.api.accounts(self.settings.twilio_account_sid).fetch
            )
            return True
        except TwilioException as e:
            logger.warning(f"Twilio health check failed: {e}")
            return False
