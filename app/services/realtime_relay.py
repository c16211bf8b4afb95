"""
Great Pearl Coffee Finance - Realtime Relay

WebSocket connections live in the API process, but notification delivery
runs in Celery workers. Workers publish change events to a Redis pub/sub
channel; the API process listens on it and fans the events out through its
local RealtimeBroker.

The relay exposes the same publish/send_notification pair as the broker, so
the delivery code does not care which side of the process boundary it runs
on. Notification visibility is decided by the API-side broker, which knows
who is behind each connection.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import settings
from app.services.realtime import ChangeAction, ChangeEvent, RealtimeBroker

logger = logging.getLogger(__name__)

RELAY_CHANNEL = "greatpearl:realtime"
RECONNECT_DELAY_SECONDS = 5


def encode_change(event: ChangeEvent) -> str:
    return json.dumps({"kind": "change", "event": event.to_dict()})


def encode_notification(notification: Dict[str, Any]) -> str:
    return json.dumps({"kind": "notification", "notification": notification})


def decode_change(payload: Dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(
        table=payload["table"],
        action=ChangeAction(payload["action"]),
        row=payload["row"],
        occurred_at=datetime.fromisoformat(payload["occurred_at"]),
    )


class RedisRealtimeRelay:
    """Redis pub/sub bridge between worker processes and the API's broker."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._client: Optional[redis.Redis] = None

    async def get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # PUBLISHING (worker side)
    # =========================================================================

    async def publish(self, event: ChangeEvent) -> int:
        """Relay a change event. Returns the number of listening API processes."""
        client = await self.get_client()
        return await client.publish(RELAY_CHANNEL, encode_change(event))

    async def send_notification(self, notification: Dict[str, Any]) -> int:
        """Relay a notification row; the API process filters recipients."""
        client = await self.get_client()
        return await client.publish(RELAY_CHANNEL, encode_notification(notification))

    # =========================================================================
    # LISTENING (API side)
    # =========================================================================

    async def dispatch(self, broker: RealtimeBroker, raw: str) -> None:
        """Hand one relayed message to the local broker."""
        try:
            message = json.loads(raw)
            kind = message.get("kind")
            if kind == "change":
                await broker.publish(decode_change(message["event"]))
            elif kind == "notification":
                await broker.send_notification(message["notification"])
            else:
                logger.warning(f"Unknown relay message kind: {kind}")
        except (ValueError, KeyError) as e:
            logger.warning(f"Dropping malformed relay message: {e}")

    async def listen(self, broker: RealtimeBroker) -> None:
        """
        Forward relayed messages to the broker until cancelled.

        Reconnects after Redis errors.
        """
        while True:
            try:
                client = await self.get_client()
                async with client.pubsub() as pubsub:
                    await pubsub.subscribe(RELAY_CHANNEL)
                    logger.info(f"Realtime relay listening on {RELAY_CHANNEL}")
                    async for message in pubsub.listen():
                        if message.get("type") == "message":
                            await self.dispatch(broker, message["data"])
            except (RedisError, OSError) as e:
                logger.warning(f"Realtime relay lost Redis connection: {e}; retrying in {RECONNECT_DELAY_SECONDS}s")
                await self.close()
                await asyncio.sleep(RECONNECT_DELAY_SECONDS)
