"""
Real-time Broadcast Hub

In-memory registry of live connections and the rooms they joined.

Every connection owns a bounded outbox drained by its own sender task, so
``publish`` only enqueues and never waits on a subscriber. Events from one
producer to one room reach each subscriber in publish order because the
outbox is FIFO. A full outbox drops the event for that subscriber only; a
failing send closes that connection and purges it from every room.
"""

import asyncio
import contextlib
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from app.realtime.rooms import Room

logger = logging.getLogger(__name__)

SendFn = Callable[[dict], Awaitable[None]]


class UnknownConnection(LookupError):
    pass


class _Connection:
    def __init__(self, connection_id: str, send: SendFn, outbox_size: int):
        self.id = connection_id
        self.send = send
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.rooms: Set[str] = set()
        self.dropped = 0
        self.sender: Optional[asyncio.Task] = None


class BroadcastHub:
    def __init__(self, outbox_size: int = 256):
        self.outbox_size = outbox_size
        self._connections: Dict[str, _Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    async def connect(self, send: SendFn, connection_id: Optional[str] = None) -> str:
        """Register a live connection; ``send`` delivers one envelope to it."""
        connection_id = connection_id or uuid.uuid4().hex
        if connection_id in self._connections:
            raise ValueError(f"Connection {connection_id} already registered")

        conn = _Connection(connection_id, send, self.outbox_size)
        conn.sender = asyncio.create_task(self._sender(conn), name=f"hub-sender-{connection_id}")
        self._connections[connection_id] = conn
        logger.debug(f"Connection {connection_id} registered")
        return connection_id

    def _purge(self, connection_id: str) -> Optional[_Connection]:
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return None
        for key in conn.rooms:
            members = self._rooms.get(key)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._rooms[key]
        conn.rooms.clear()
        return conn

    async def disconnect(self, connection_id: str) -> None:
        """Drop a connection and its membership in every room. Idempotent."""
        conn = self._purge(connection_id)
        if conn is None:
            return
        if conn.sender is not None and conn.sender is not asyncio.current_task():
            conn.sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await conn.sender
        logger.debug(f"Connection {connection_id} disconnected")

    async def close(self) -> None:
        for connection_id in list(self._connections):
            await self.disconnect(connection_id)

    async def _sender(self, conn: _Connection) -> None:
        while True:
            envelope = await conn.outbox.get()
            try:
                await conn.send(envelope)
            except Exception as e:
                logger.warning(f"Send to {conn.id} failed, closing connection: {e}")
                self._purge(conn.id)
                return
            finally:
                conn.outbox.task_done()

    # =========================================================================
    # MEMBERSHIP
    # =========================================================================

    def _get(self, connection_id: str) -> _Connection:
        conn = self._connections.get(connection_id)
        if conn is None:
            raise UnknownConnection(connection_id)
        return conn

    def join(self, connection_id: str, room: Union[str, Room]) -> Room:
        parsed = Room.parse(room)
        conn = self._get(connection_id)
        key = str(parsed)
        conn.rooms.add(key)
        self._rooms.setdefault(key, set()).add(connection_id)
        logger.debug(f"{connection_id} joined {key}")
        return parsed

    def leave(self, connection_id: str, room: Union[str, Room]) -> bool:
        """Returns False when the connection was not a member."""
        key = str(Room.parse(room))
        conn = self._get(connection_id)
        if key not in conn.rooms:
            return False
        conn.rooms.discard(key)
        members = self._rooms.get(key)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[key]
        logger.debug(f"{connection_id} left {key}")
        return True

    def members(self, room: Union[str, Room]) -> Set[str]:
        return set(self._rooms.get(str(Room.parse(room)), ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._get(connection_id).rooms)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    def publish(self, room: Union[str, Room], event: Any, payload: Any) -> int:
        """
        Fan an event out to the room's current members.

        Returns the number of subscribers the event was queued for. Members
        joining later never see it.
        """
        key = str(Room.parse(room))
        envelope = {"event": getattr(event, "value", event), "room": key, "payload": payload}

        delivered = 0
        for connection_id in list(self._rooms.get(key, ())):
            conn = self._connections.get(connection_id)
            if conn is None:
                continue
            try:
                conn.outbox.put_nowait(envelope)
                delivered += 1
            except asyncio.QueueFull:
                conn.dropped += 1
                logger.warning(
                    f"Outbox full for {connection_id}, dropped {envelope['event']} "
                    f"({conn.dropped} dropped so far)"
                )
        return delivered

    def broadcast(self, event: Any, payload: Any) -> int:
        """Queue an event for every live connection, whatever its rooms."""
        envelope = {"event": getattr(event, "value", event), "room": None, "payload": payload}

        delivered = 0
        for conn in list(self._connections.values()):
            try:
                conn.outbox.put_nowait(envelope)
                delivered += 1
            except asyncio.QueueFull:
                conn.dropped += 1
                logger.warning(f"Outbox full for {conn.id}, dropped broadcast {envelope['event']}")
        return delivered

    def send_to(self, connection_id: str, event: str, payload: Any, room: Optional[str] = None) -> bool:
        """Queue a frame for one connection (acks, errors) behind its pending events."""
        conn = self._get(connection_id)
        try:
            conn.outbox.put_nowait({"event": event, "room": room, "payload": payload})
            return True
        except asyncio.QueueFull:
            conn.dropped += 1
            logger.warning(f"Outbox full for {connection_id}, dropped {event}")
            return False

    async def flush(self) -> None:
        """Wait until every queued envelope has been handed to its transport."""
        for conn in list(self._connections.values()):
            if conn.sender is not None and not conn.sender.done():
                await conn.outbox.join()
