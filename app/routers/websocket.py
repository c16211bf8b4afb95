"""
Great Pearl Coffee Finance - WebSocket Router

Live change feed over WebSocket.

Endpoints:
- /ws/changes: subscribe to table channels, receive row change events
- Supports authentication via token parameter or a first auth message
- Channel subscription/unsubscription, gated like the REST routes
- Notifications pushed to the employees allowed to see them
- Heartbeat for connection health
"""

import json
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel
from sqlalchemy import select

from app.database import async_session_factory
from app.dependencies import require_admin
from app.models.employee import Employee
from app.services.realtime import get_realtime_broker
from app.utils.permissions import channel_allowed
from app.utils.security import verify_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

# Tables clients may subscribe to, with what they carry
CHANNELS = {
    "approval_requests": "Expense, requisition and salary requests",
    "money_requests": "Staff withdrawal requests",
    "finance_cash_transactions": "Cash ledger postings (finance access)",
    "finance_cash_balance": "The company cash balance (finance access)",
    "finance_cash_deposits": "Cash deposits awaiting confirmation (finance access)",
    "payment_records": "Coffee lot payments (finance access)",
    "finance_advances": "Supplier advances (finance access)",
    "finance_expenses": "The expense book (finance access)",
    "finance_settings": "Finance desk configuration (finance access)",
}

DEFAULT_CHANNELS = ["approval_requests"]


# ===========================================
# SCHEMAS
# ===========================================

class WebSocketStats(BaseModel):
    """WebSocket statistics response."""
    total_connections: int
    unique_users: int
    channels: Dict[str, int]


class ChannelInfo(BaseModel):
    name: str
    description: str


# ===========================================
# HELPER FUNCTIONS
# ===========================================

def parse_channels(raw: Optional[str]) -> List[str]:
    """Known channels from a comma-separated list; unknown names are dropped."""
    if not raw:
        return list(DEFAULT_CHANNELS)
    return [c.strip() for c in raw.split(",") if c.strip() in CHANNELS]


async def authenticate_websocket(websocket: WebSocket, token: Optional[str] = None) -> Optional[dict]:
    """
    Authenticate WebSocket connection.

    Token can be provided via:
    1. Query parameter: ?token=xxx
    2. First message after connection: {"type": "auth", "token": "..."}
       (the socket must already be accepted)
    """
    if token:
        return verify_access_token(token)

    try:
        auth_msg = await websocket.receive_json()
        if auth_msg.get("type") == "auth" and auth_msg.get("token"):
            return verify_access_token(auth_msg["token"])
    except (WebSocketDisconnect, json.JSONDecodeError) as e:
        logger.warning(f"WebSocket authentication error: {e}")

    return None


async def load_employee(email: str) -> Optional[Employee]:
    """The employee behind a socket, read in a short-lived session."""
    async with async_session_factory() as db:
        result = await db.execute(select(Employee).where(Employee.email == email))
        return result.scalar_one_or_none()


# ===========================================
# WEBSOCKET ENDPOINT
# ===========================================

@router.websocket("/changes")
async def changes_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    tables: Optional[str] = Query(None),
):
    """
    Live row changes for the subscribed tables.

    Query Parameters:
        token: JWT access token
        tables: Comma-separated list of tables to subscribe to

    Message Types (client -> server):
        - {"type": "auth", "token": "..."}: Authenticate (if token not in query)
        - {"type": "subscribe", "channels": ["money_requests"]}
        - {"type": "unsubscribe", "channels": ["money_requests"]}
        - {"type": "ping"}: Heartbeat

    Message Types (server -> client):
        - {"event": "connected", "data": {...}}
        - {"event": "change", "data": {"table", "action", "row", "occurred_at"}}
        - {"event": "notification", "data": {...}}
        - {"event": "pong", "data": {"timestamp": "..."}}
        - {"event": "error", "data": {"message": "...", ...}}

    Unknown, disabled or deleted accounts are closed with 1008. Channels the
    employee may not read are dropped at connect and refused on subscribe.
    """
    broker = get_realtime_broker()
    connection_id = None

    try:
        if not token:
            await websocket.accept()

        payload = await authenticate_websocket(websocket, token)
        if not payload or not payload.get("sub"):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            logger.warning("WebSocket authentication failed")
            return

        employee = await load_employee(payload["sub"])
        if employee is None or not employee.is_active:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            logger.warning(f"WebSocket refused for {payload['sub']}: unknown or disabled account")
            return

        connection_id = await broker.connect(
            websocket=websocket,
            user_email=employee.email,
            channels=[c for c in parse_channels(tables) if channel_allowed(c, employee)],
            employee=employee,
        )

        while True:
            try:
                data = await websocket.receive_json()
            except json.JSONDecodeError:
                await broker.send_to_connection(connection_id, "error", {"message": "Invalid JSON message"})
                continue

            msg_type = data.get("type")
            requested = [c for c in data.get("channels", []) if c in CHANNELS]

            if msg_type == "ping":
                await broker.heartbeat(connection_id)
            elif msg_type == "subscribe":
                denied = [c for c in requested if not channel_allowed(c, employee)]
                if denied:
                    await broker.send_to_connection(
                        connection_id,
                        "error",
                        {"message": "Finance access required", "channels": denied},
                    )
                await broker.subscribe(connection_id, [c for c in requested if c not in denied])
            elif msg_type == "unsubscribe":
                await broker.unsubscribe(connection_id, requested)
            else:
                await broker.send_to_connection(
                    connection_id,
                    "error",
                    {"message": f"Unknown message type: {msg_type}"},
                )

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {connection_id}")

    finally:
        if connection_id:
            await broker.disconnect(connection_id)


# ===========================================
# HTTP ENDPOINTS FOR WEBSOCKET MANAGEMENT
# ===========================================

@router.get("/stats", response_model=WebSocketStats)
async def get_websocket_stats(current_employee: Employee = Depends(require_admin)):
    """Current connection counts and channel subscriptions."""
    return WebSocketStats(**get_realtime_broker().get_stats())


@router.get("/channels", response_model=List[ChannelInfo])
async def get_available_channels():
    return [ChannelInfo(name=name, description=description) for name, description in CHANNELS.items()]
