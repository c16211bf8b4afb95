"""
Great Pearl Coffee Finance - Realtime Change Feed

Typed change events pushed to WebSocket clients.

Each event carries the table, the action (insert/update/delete) and the
changed row, so clients can patch their local state instead of refetching
whole tables.

Channels are table names (approval_requests, finance_cash_transactions,
money_requests, ...). Notifications are not a channel: each one is pushed
only to connections whose employee may see it.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from fastapi import WebSocket
from fastapi.websockets import WebSocketState
from sqlalchemy import inspect

from app.utils.datetime_utils import serialize_dates, utcnow
from app.utils.permissions import notification_visible_to

if TYPE_CHECKING:
    from app.models.employee import Employee

logger = logging.getLogger(__name__)


class ChangeAction(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def row_to_dict(instance: Any) -> Dict[str, Any]:
    """JSON-safe dict of a mapped instance's column attributes."""
    mapper = inspect(instance).mapper
    row = {attr.key: getattr(instance, attr.key) for attr in mapper.column_attrs}
    return serialize_dates(row)


@dataclass
class ChangeEvent:
    """A single row change."""
    table: str
    action: ChangeAction
    row: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_instance(cls, action: ChangeAction, instance: Any) -> "ChangeEvent":
        return cls(table=instance.__tablename__, action=action, row=row_to_dict(instance))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "action": self.action.value,
            "row": self.row,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass
class ClientConnection:
    """Represents a WebSocket connection."""
    websocket: WebSocket
    user_email: str
    channels: Set[str] = field(default_factory=set)
    employee: Optional["Employee"] = None
    connected_at: datetime = field(default_factory=utcnow)
    last_heartbeat: datetime = field(default_factory=utcnow)


class RealtimeBroker:
    """
    Fans change events out to subscribed WebSocket connections.

    Implements:
    - Connection tracking by user
    - Table-channel pub/sub
    - Direct user delivery
    - Per-employee notification delivery
    """

    _instance: Optional["RealtimeBroker"] = None

    def __new__(cls):
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        # connection_id -> ClientConnection
        self._connections: Dict[str, ClientConnection] = {}

        # Index by user email
        self._user_connections: Dict[str, Set[str]] = {}

        # Index by channel (table name)
        self._channel_connections: Dict[str, Set[str]] = {}

        self._lock = asyncio.Lock()

        self._initialized = True
        logger.info("RealtimeBroker initialized")

    async def connect(
        self,
        websocket: WebSocket,
        user_email: str,
        channels: Optional[List[str]] = None,
        employee: Optional["Employee"] = None,
    ) -> str:
        """
        Accept and register a new WebSocket connection.

        `employee` is the signed-in record; notifications are only pushed
        to connections that carry one.

        Returns:
            Connection ID
        """
        if websocket.application_state == WebSocketState.CONNECTING:
            await websocket.accept()
        connection_id = str(uuid.uuid4())

        async with self._lock:
            connection = ClientConnection(
                websocket=websocket,
                user_email=user_email,
                channels=set(channels or []),
                employee=employee,
            )
            self._connections[connection_id] = connection
            self._user_connections.setdefault(user_email, set()).add(connection_id)
            for channel in connection.channels:
                self._channel_connections.setdefault(channel, set()).add(connection_id)

        logger.info(f"Realtime client connected: user={user_email}, channels={channels}, connection_id={connection_id}")

        await self.send_to_connection(
            connection_id,
            "connected",
            {"connection_id": connection_id, "channels": sorted(connection.channels)},
        )
        return connection_id

    async def disconnect(self, connection_id: str):
        """Remove a WebSocket connection."""
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return

            user_ids = self._user_connections.get(connection.user_email)
            if user_ids is not None:
                user_ids.discard(connection_id)
                if not user_ids:
                    del self._user_connections[connection.user_email]

            for channel in connection.channels:
                channel_ids = self._channel_connections.get(channel)
                if channel_ids is not None:
                    channel_ids.discard(connection_id)
                    if not channel_ids:
                        del self._channel_connections[channel]

        logger.info(f"Realtime client disconnected: connection_id={connection_id}")

    async def subscribe(self, connection_id: str, channels: List[str]):
        """Subscribe a connection to additional tables."""
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return
            for channel in channels:
                connection.channels.add(channel)
                self._channel_connections.setdefault(channel, set()).add(connection_id)

        await self.send_to_connection(connection_id, "subscribed", {"channels": channels})

    async def unsubscribe(self, connection_id: str, channels: List[str]):
        """Unsubscribe a connection from tables."""
        async with self._lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                return
            for channel in channels:
                connection.channels.discard(channel)
                if channel in self._channel_connections:
                    self._channel_connections[channel].discard(connection_id)

        await self.send_to_connection(connection_id, "unsubscribed", {"channels": channels})

    async def send_to_connection(
        self,
        connection_id: str,
        event_type: str,
        data: Dict[str, Any],
    ) -> bool:
        """Send a message to a specific connection."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return False

        try:
            await connection.websocket.send_json({
                "event": event_type,
                "data": data,
                "timestamp": utcnow().isoformat(),
            })
            return True
        except Exception as e:
            logger.error(f"Error sending to connection {connection_id}: {e}")
            await self.disconnect(connection_id)
            return False

    async def publish(self, event: ChangeEvent) -> int:
        """
        Send a change event to every connection subscribed to its table.

        Returns:
            Number of connections the event reached
        """
        delivered = 0
        for connection_id in list(self._channel_connections.get(event.table, set())):
            if await self.send_to_connection(connection_id, "change", event.to_dict()):
                delivered += 1
        return delivered

    async def send_notification(self, notification: Dict[str, Any]) -> int:
        """
        Push a notification row to every connection allowed to see it.

        Same visibility as the notification list: rows addressed to another
        user are skipped and role broadcasts need a matching role.
        """
        delivered = 0
        for connection_id, connection in list(self._connections.items()):
            if not notification_visible_to(
                notification.get("target_user_email"),
                notification.get("target_role"),
                connection.employee,
            ):
                continue
            if await self.send_to_connection(connection_id, "notification", notification):
                delivered += 1
        return delivered

    async def heartbeat(self, connection_id: str):
        """Update heartbeat timestamp for a connection."""
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.last_heartbeat = utcnow()
            await self.send_to_connection(connection_id, "pong", {"timestamp": connection.last_heartbeat.isoformat()})

    def get_stats(self) -> Dict[str, Any]:
        """Get broker statistics."""
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
            "channels": {
                channel: len(ids) for channel, ids in self._channel_connections.items()
            },
        }


# Global broker instance
realtime_broker = RealtimeBroker()


def get_realtime_broker() -> RealtimeBroker:
    """Get the global realtime broker instance."""
    return realtime_broker


async def publish_changes(*events: ChangeEvent) -> None:
    """
    Publish events after a successful commit.

    Realtime delivery is best effort; a broken socket must never fail the
    request that produced the change.
    """
    for event in events:
        try:
            await realtime_broker.publish(event)
        except Exception as e:
            logger.warning(f"Realtime publish failed for {event.table}/{event.action.value}: {e}")
