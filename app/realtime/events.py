"""
Real-time event catalog and producer-side publishing.

Producers (order pipeline, deduction engine, scans, table service) talk to
a ``RealtimeNotifier``, which knows which room each event belongs in. The
notifier hands envelopes to an ``EventPublisher``: straight into the local
hub, or through Redis when several API processes serve WebSockets.
System-wide notices skip rooms and reach every connection.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from app.realtime.hub import BroadcastHub
from app.realtime.rooms import Room

logger = logging.getLogger(__name__)


class HubEvent(str, Enum):
    ORDER_CREATED = "order:created"
    ORDER_STATUS_CHANGED = "order:status-changed"
    KITCHEN_NEW_ORDER = "kitchen:new-order"
    KITCHEN_ORDER_UPDATED = "kitchen:order-updated"
    KITCHEN_ORDER_BUMPED = "kitchen:order-bumped"
    KITCHEN_ITEM_READY = "kitchen:item-ready"
    INVENTORY_LOW_STOCK = "inventory:low-stock"
    INVENTORY_LOT_EXPIRING = "inventory:lot-expiring"
    INVENTORY_STOCK_UPDATED = "inventory:stock-updated"
    TABLE_STATUS_CHANGED = "table:status-changed"
    TABLE_OCCUPIED = "table:occupied"
    TABLE_CLEARED = "table:cleared"
    ORDER_PAYMENT_RECEIVED = "order:payment-received"
    RESERVATION_CREATED = "reservation:created"
    RESERVATION_UPDATED = "reservation:updated"
    RESERVATION_SEATED = "reservation:seated"
    WAITLIST_UPDATED = "waitlist:updated"
    WAITLIST_POSITION_CHANGED = "waitlist:position-changed"
    WAITLIST_NOTIFICATION_SENT = "waitlist:notification-sent"
    POS_SHIFT_OPENED = "pos:shift-opened"
    POS_SHIFT_CLOSED = "pos:shift-closed"
    SYSTEM_NOTIFICATION = "system:notification"


def to_jsonable(value: Any) -> Any:
    """Make payload values JSON-safe (Decimal, datetime, nested containers)."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return value


class EventPublisher(ABC):
    """Where producers send envelopes."""

    @abstractmethod
    async def publish(self, room: Union[str, Room], event: HubEvent, payload: Dict[str, Any]) -> int:
        """Publish one event; returns local deliveries (-1 when not knowable)."""
        pass

    @abstractmethod
    async def broadcast(self, event: HubEvent, payload: Dict[str, Any]) -> int:
        """Publish one event to every connection regardless of rooms."""
        pass

    async def close(self) -> None:
        pass


class LocalEventPublisher(EventPublisher):
    """Publishes straight into an in-process hub."""

    def __init__(self, hub: BroadcastHub):
        self.hub = hub

    async def publish(self, room, event, payload):
        return self.hub.publish(room, event, payload)

    async def broadcast(self, event, payload):
        return self.hub.broadcast(event, payload)


class RealtimeNotifier:
    """One emit method per catalog event, each routed to its room(s)."""

    def __init__(self, publisher: EventPublisher):
        self.publisher = publisher

    async def _emit(self, room: Optional[Room], event: HubEvent, payload: Dict[str, Any]) -> int:
        """Publish into ``room``, or to every connection when it is None."""
        try:
            if room is None:
                return await self.publisher.broadcast(event, to_jsonable(payload))
            return await self.publisher.publish(room, event, to_jsonable(payload))
        except Exception as e:
            # Live-state events are best effort; the producer's own work stands
            logger.error(f"Failed to publish {event.value} to {room or 'all connections'}: {e}")
            return 0

    # --- orders ---

    async def order_created(self, location_id, order: Dict[str, Any]) -> int:
        return await self._emit(Room.location(location_id), HubEvent.ORDER_CREATED, order)

    async def order_status_changed(self, location_id, order_id, status: str) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.ORDER_STATUS_CHANGED,
            {"order_id": order_id, "status": status, "location_id": location_id},
        )

    async def order_payment_received(self, location_id, order_id, amount, status: str) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.ORDER_PAYMENT_RECEIVED,
            {"order_id": order_id, "amount": amount, "status": status},
        )

    # --- kitchen ---

    async def kitchen_new_order(self, station_id, ticket: Dict[str, Any]) -> int:
        return await self._emit(Room.kitchen_station(station_id), HubEvent.KITCHEN_NEW_ORDER, ticket)

    async def kitchen_order_updated(self, station_id, kitchen_order_id, status: str) -> int:
        return await self._emit(
            Room.kitchen_station(station_id),
            HubEvent.KITCHEN_ORDER_UPDATED,
            {"kitchen_order_id": kitchen_order_id, "status": status, "station_id": station_id},
        )

    async def kitchen_order_bumped(self, station_id, kitchen_order_id) -> int:
        return await self._emit(
            Room.kitchen_station(station_id),
            HubEvent.KITCHEN_ORDER_BUMPED,
            {"kitchen_order_id": kitchen_order_id, "station_id": station_id},
        )

    async def kitchen_item_ready(self, station_id, kitchen_order_id, item_id) -> int:
        return await self._emit(
            Room.kitchen_station(station_id),
            HubEvent.KITCHEN_ITEM_READY,
            {"kitchen_order_id": kitchen_order_id, "item_id": item_id},
        )

    # --- inventory ---

    async def low_stock(self, location_id, item_id, item_name: str, current_stock, minimum_stock) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.INVENTORY_LOW_STOCK,
            {
                "item_id": item_id,
                "item_name": item_name,
                "current_stock": current_stock,
                "minimum_stock": minimum_stock,
            },
        )

    async def lot_expiring(self, location_id, lot_id, item_name: str, expiry_date, days_until_expiry: int) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.INVENTORY_LOT_EXPIRING,
            {
                "lot_id": lot_id,
                "item_name": item_name,
                "expiry_date": expiry_date,
                "days_until_expiry": days_until_expiry,
            },
        )

    async def stock_updated(self, location_id, item_id, new_stock) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.INVENTORY_STOCK_UPDATED,
            {"item_id": item_id, "location_id": location_id, "new_stock": new_stock},
        )

    # --- tables ---

    async def table_status_changed(self, location_id, table_id, status: str, area_id=None) -> int:
        payload = {"table_id": table_id, "status": status, "area_id": area_id}
        delivered = await self._emit(Room.location(location_id), HubEvent.TABLE_STATUS_CHANGED, payload)
        delivered += await self._emit(Room.table(table_id), HubEvent.TABLE_STATUS_CHANGED, payload)
        return delivered

    async def table_occupied(self, location_id, table_id, order_id=None) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.TABLE_OCCUPIED,
            {"table_id": table_id, "order_id": order_id},
        )

    async def table_cleared(self, location_id, table_id) -> int:
        return await self._emit(Room.location(location_id), HubEvent.TABLE_CLEARED, {"table_id": table_id})

    # --- reservations & waitlist ---

    async def reservation_created(self, location_id, reservation: Dict[str, Any]) -> int:
        return await self._emit(Room.location(location_id), HubEvent.RESERVATION_CREATED, reservation)

    async def reservation_updated(self, location_id, reservation_id, status: str) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.RESERVATION_UPDATED,
            {"reservation_id": reservation_id, "status": status},
        )

    async def reservation_seated(self, location_id, reservation_id, table_id) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.RESERVATION_SEATED,
            {"reservation_id": reservation_id, "table_id": table_id},
        )

    async def waitlist_updated(self, location_id, entry: Dict[str, Any]) -> int:
        return await self._emit(Room.location(location_id), HubEvent.WAITLIST_UPDATED, entry)

    async def waitlist_position_changed(self, location_id, entry_id, position: int) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.WAITLIST_POSITION_CHANGED,
            {"entry_id": entry_id, "position": position},
        )

    async def waitlist_notification_sent(self, location_id, entry_id, method: str) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.WAITLIST_NOTIFICATION_SENT,
            {"entry_id": entry_id, "method": method},
        )

    # --- point of sale ---

    async def shift_opened(self, location_id, shift_id, terminal_id, user_id) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.POS_SHIFT_OPENED,
            {"shift_id": shift_id, "terminal_id": terminal_id, "user_id": user_id},
        )

    async def shift_closed(self, location_id, shift_id, terminal_id) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.POS_SHIFT_CLOSED,
            {"shift_id": shift_id, "terminal_id": terminal_id},
        )

    # --- system ---

    async def system_notification(
        self,
        location_id,
        type: str,
        message: str,
        severity: str = "info",
    ) -> int:
        return await self._emit(
            Room.location(location_id),
            HubEvent.SYSTEM_NOTIFICATION,
            {"type": type, "message": message, "severity": severity},
        )

    async def broadcast_system_notification(self, type: str, message: str, severity: str = "info") -> int:
        return await self._emit(
            None,
            HubEvent.SYSTEM_NOTIFICATION,
            {"type": type, "message": message, "severity": severity},
        )
