# tests/helpers/fakes.py
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from app.realtime.events import EventPublisher
from app.services.notifications import BaseNotificationService, NotificationResult


class FakeClock:
    """Settable naive-UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMonotonic:
    def __init__(self, start: float = 100.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class RecordingPublisher(EventPublisher):
    """Keeps every published envelope as (room, event, payload); broadcasts have room None."""

    def __init__(self, fail: bool = False):
        self.events: List[Tuple[Optional[str], str, Dict[str, Any]]] = []
        self.fail = fail

    async def publish(self, room, event, payload):
        if self.fail:
            raise ConnectionError("publisher down")
        self.events.append((str(room), getattr(event, "value", event), payload))
        return 1

    async def broadcast(self, event, payload):
        if self.fail:
            raise ConnectionError("publisher down")
        self.events.append((None, getattr(event, "value", event), payload))
        return 1

    def of(self, event: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(room, payload) for room, name, payload in self.events if name == event]


class ScriptedNotifications(BaseNotificationService):
    """
    Notification double with per-recipient outcomes.

    ``transient`` recipients fail retryably until removed from the set;
    ``permanent`` ones are rejected by the "provider".
    """

    def __init__(self, transient: Optional[Set[str]] = None, permanent: Optional[Set[str]] = None):
        self.transient = set(transient or ())
        self.permanent = set(permanent or ())
        self.calls: List[Tuple[str, str]] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def _send(self, channel: str, recipient: str) -> NotificationResult:
        self.calls.append((channel, recipient))
        await asyncio.sleep(0)
        if recipient in self.transient:
            return NotificationResult(success=False, error_message="timeout", provider="scripted")
        if recipient in self.permanent:
            return NotificationResult(
                success=False, error_message="unsubscribed", provider="scripted", permanent=True
            )
        return NotificationResult(success=True, message_id=f"{channel}-{len(self.calls)}", provider="scripted")

    async def send_sms(self, to_phone, message):
        return await self._send("sms", to_phone)

    async def send_whatsapp(self, to_phone, message):
        return await self._send("whatsapp", to_phone)

    async def send_email(self, to_email, subject, body_html, body_text=None):
        return await self._send("email", to_email)

    async def health_check(self) -> bool:
        return True

    def recipients(self, channel: str) -> List[str]:
        return [r for c, r in self.calls if c == channel]
