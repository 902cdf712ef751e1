"""
Notification Service Factory

Returns Mock or Real notification service based on ENV_MODE.
"""

import logging

from app.core.config import Settings
from app.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    is_valid_email,
    is_valid_phone,
    normalize_phone,
)
from app.services.notifications.mock import MockNotificationService
from app.services.notifications.real import RealNotificationService
from app.services.notifications.templates import EmailRenderer, RenderedEmail

logger = logging.getLogger(__name__)


def create_notification_service(settings: Settings) -> BaseNotificationService:
    """Build the configured notification service."""
    if settings.is_development:
        logger.info("Notification Service: Using MockNotificationService (development mode)")
        return MockNotificationService(failure_rate=0.05)

    logger.info(f"Notification Service: Using RealNotificationService ({settings.env_mode.value} mode)")
    return RealNotificationService(settings)


__all__ = [
    "create_notification_service",
    "BaseNotificationService",
    "MockNotificationService",
    "RealNotificationService",
    "NotificationResult",
    "EmailRenderer",
    "RenderedEmail",
    "is_valid_email",
    "is_valid_phone",
    "normalize_phone",
]
