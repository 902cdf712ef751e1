"""
Real-time broadcast: rooms, the in-memory hub, the event catalog and the
Redis relay used when several processes serve WebSockets.
"""

from app.realtime.events import (
    EventPublisher,
    HubEvent,
    LocalEventPublisher,
    RealtimeNotifier,
)
from app.realtime.hub import BroadcastHub, UnknownConnection
from app.realtime.rooms import InvalidRoom, Room, RoomKind

__all__ = [
    "BroadcastHub",
    "UnknownConnection",
    "EventPublisher",
    "LocalEventPublisher",
    "RealtimeNotifier",
    "HubEvent",
    "Room",
    "RoomKind",
    "InvalidRoom",
]
