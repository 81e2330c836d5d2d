"""
WebSocket Real-time Service
Live updates for new orders, department queues, notifications and stock alerts
"""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket, status
from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """WebSocket event types"""
    # Connection events
    CONNECTED = "connected"
    PING = "ping"
    PONG = "pong"

    # Order events
    NEW_ORDER = "new_order"
    ORDER_UPDATE = "order_update"

    # Stock events
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"

    # General
    NOTIFICATION = "notification"


class Channel(str, Enum):
    NOTIFICATIONS = "notifications"
    ORDERS = "orders"
    KITCHEN = "kitchen"
    BARISTA = "barista"
    SHISHA = "shisha"


DEPARTMENT_CHANNELS = {
    "kitchen": Channel.KITCHEN.value,
    "barista": Channel.BARISTA.value,
    "shisha": Channel.SHISHA.value,
}


def build_message(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Standard WebSocket message envelope."""
    return {
        "type": event,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class ConnectionManager:
    """Manages WebSocket connections per channel."""

    MAX_CONNECTIONS_PER_CHANNEL = 500

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.connection_metadata: Dict[int, Dict[str, Any]] = {}

    async def connect(
        self,
        websocket: WebSocket,
        channel: str,
        user_id: Optional[int] = None,
    ) -> bool:
        """Accept a WebSocket on a channel.

        Returns False (and closes the socket) when the channel is full.
        """
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        await websocket.accept()
        self.active_connections.setdefault(channel, []).append(websocket)
        self.connection_metadata[id(websocket)] = {
            "connected_at": datetime.now(timezone.utc),
            "user_id": user_id,
            "channel": channel,
        }
        logger.debug(f"WebSocket connected to channel '{channel}', user_id={user_id}")
        return True

    def disconnect(self, websocket: WebSocket, channel: str):
        if websocket in self.active_connections.get(channel, []):
            self.active_connections[channel].remove(websocket)
        self.connection_metadata.pop(id(websocket), None)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    async def broadcast(self, message: Dict[str, Any], channel: str):
        """Broadcast a message to all connections in a channel."""
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    async def broadcast_all(self, message: Dict[str, Any]):
        for channel in list(self.active_connections.keys()):
            await self.broadcast(message, channel)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        """Get the number of active connections."""
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


# Global connection manager instance
ws_manager = ConnectionManager()

# Keeps scheduled broadcasts alive until they finish
_pending: Set[asyncio.Task] = set()


def publish(event: str, data: Dict[str, Any], channels: List[str]) -> None:
    """Schedule a broadcast without blocking the caller.

    Must be called from code running on the event loop (async routes);
    outside a loop the event is dropped.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug(f"No running event loop, dropping '{event}' event")
        return

    message = build_message(event, data)
    for channel in dict.fromkeys(channels):
        task = loop.create_task(ws_manager.broadcast(message, channel))
        _pending.add(task)
        task.add_done_callback(_pending.discard)


def department_channel(department: Optional[str]) -> Optional[str]:
    return DEPARTMENT_CHANNELS.get(department or "")


def queue_event(db: Session, event: str, data: Dict[str, Any], channels: List[str]) -> None:
    """Publish an event once the session's transaction commits."""
    db.info.setdefault("ws_events", []).append((event, data, channels))


@sa_event.listens_for(Session, "after_commit")
def _publish_committed_events(session):
    for event, data, channels in session.info.pop("ws_events", []):
        publish(event, data, channels)


@sa_event.listens_for(Session, "after_rollback")
def _discard_rolled_back_events(session):
    session.info.pop("ws_events", None)
