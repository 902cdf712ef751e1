"""
Redis fan-out for multi-process deployments.

Worker processes and API replicas publish envelopes on one Redis channel;
every API process runs a ``RedisEventRelay`` that forwards them into its
own hub. Redis pub/sub is fire-and-forget, which matches the hub's
live-state semantics: a process that is down misses the events.
"""

import asyncio
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from app.realtime.events import EventPublisher
from app.realtime.hub import BroadcastHub
from app.realtime.rooms import InvalidRoom, Room

logger = logging.getLogger(__name__)


class RedisEventPublisher(EventPublisher):
    """Publishes envelopes to a Redis channel."""

    def __init__(self, redis: aioredis.Redis, channel: str):
        self.redis = redis
        self.channel = channel

    @classmethod
    def from_url(cls, redis_url: str, channel: str) -> "RedisEventPublisher":
        return cls(aioredis.from_url(redis_url, decode_responses=True), channel)

    async def publish(self, room, event, payload):
        return await self._send(str(Room.parse(room)), event, payload)

    async def broadcast(self, event, payload):
        return await self._send(None, event, payload)

    async def _send(self, room: Optional[str], event, payload) -> int:
        envelope = {
            "room": room,
            "event": getattr(event, "value", event),
            "payload": payload,
        }
        await self.redis.publish(self.channel, json.dumps(envelope))
        # Subscribers live in other processes
        return -1

    async def close(self) -> None:
        await self.redis.aclose()


class RedisEventRelay:
    """Subscribes to the event channel and republishes into the local hub."""

    def __init__(self, redis_url: str, channel: str, hub: BroadcastHub):
        self.redis_url = redis_url
        self.channel = channel
        self.hub = hub
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self.run(), name="redis-event-relay")

    async def stop(self) -> None:
        self._shutdown.set()
        if self._task is not None:
            await self._task

    def _forward(self, raw: str) -> None:
        try:
            envelope = json.loads(raw)
            if envelope["room"] is None:
                self.hub.broadcast(envelope["event"], envelope.get("payload"))
            else:
                self.hub.publish(envelope["room"], envelope["event"], envelope.get("payload"))
        except (ValueError, KeyError, TypeError, InvalidRoom) as e:
            logger.warning(f"Dropping malformed envelope from {self.channel}: {e}")

    async def run(self) -> None:
        """Relay until stopped; reconnects after Redis errors."""
        while not self._shutdown.is_set():
            client = aioredis.from_url(self.redis_url, decode_responses=True)
            pubsub = client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info(f"Relaying realtime events from Redis channel {self.channel}")

                while not self._shutdown.is_set():
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message and message["type"] == "message":
                        self._forward(message["data"])

            except aioredis.RedisError as e:
                logger.error(f"Redis relay error, reconnecting: {e}")
                await asyncio.sleep(1.0)
            finally:
                await pubsub.aclose()
                await client.aclose()
