"""
WebSocket Manager for Risk Score Updates.

Pushes "risk updated" notifications to dashboards so they can refresh
early instead of waiting for the next poll. Interval polling stays the
fallback; messages carry ids only, clients re-read scores through the
regular query.

FastAPI WebSocket: https://fastapi.tiangolo.com/advanced/websockets/
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from fastapi import WebSocket

from revcycle.services.events import Event, EventBus, EventType
from revcycle.utils.logging import get_logger

logger = get_logger(__name__)

# Narrows a batch of rescored ids to those a connection may see.
IdFilter = Callable[[list[str]], list[str]]


class ConnectionState(str, Enum):
    """WebSocket connection states."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class MessageType(str, Enum):
    """WebSocket message types."""

    CONNECTED = "connected"
    RISK_UPDATED = "risk_updated"
    PING = "ping"
    PONG = "pong"
    SUBSCRIBE = "subscribe"
    SUBSCRIBED = "subscribed"


@dataclass
class RiskStreamMessage:
    """Server -> client message."""

    type: MessageType
    ids: list[str] = field(default_factory=list)
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "ids": self.ids,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class WebSocketConnection:
    """Represents an active WebSocket connection."""

    websocket: WebSocket
    user_id: Optional[str] = None
    watched_ids: Optional[set[str]] = None  # None means every id
    visible: Optional[IdFilter] = None  # None means unrestricted (staff)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_ping: Optional[datetime] = None
    state: ConnectionState = ConnectionState.CONNECTED

    def wants(self, ids: list[str]) -> list[str]:
        if self.watched_ids is not None:
            ids = [i for i in ids if i in self.watched_ids]
        if self.visible is not None and ids:
            ids = self.visible(ids)
        return ids


class RiskEventManager:
    """
    Manages WebSocket connections for risk update pushes.

    Usage:
        manager = get_risk_event_manager()
        manager.attach(engine.events)

        # In WebSocket endpoint
        await manager.connect(websocket, user_id)
        ...
        await manager.disconnect(websocket)
    """

    def __init__(self):
        self._connections: list[WebSocketConnection] = []
        self._lock = asyncio.Lock()
        self._attached: set[int] = set()

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def attach(self, events: EventBus) -> None:
        """Forward ``risk.updated`` events from a bus. Idempotent per bus."""
        if id(events) in self._attached:
            return
        events.subscribe(EventType.RISK_UPDATED, self._on_risk_updated)
        self._attached.add(id(events))

    async def _on_risk_updated(self, event: Event) -> None:
        await self.broadcast_risk_update(list(event.payload.get("ids", [])))

    async def connect(
        self,
        websocket: WebSocket,
        user_id: Optional[str] = None,
        visible: Optional[IdFilter] = None,
    ) -> WebSocketConnection:
        """Accept a new WebSocket connection and acknowledge it."""
        await websocket.accept()
        connection = WebSocketConnection(websocket=websocket, user_id=user_id, visible=visible)

        async with self._lock:
            self._connections.append(connection)

        logger.info(f"Risk stream connected: user={user_id}, total={self.active_connections}")
        await self._send(
            websocket,
            RiskStreamMessage(type=MessageType.CONNECTED, message="Connected to risk updates"),
        )
        return connection

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections = [c for c in self._connections if c.websocket is not websocket]
        logger.info(f"Risk stream disconnected, total={self.active_connections}")

    async def broadcast_risk_update(self, ids: list[str]) -> int:
        """
        Notify every interested connection that these ids were rescored.

        Returns:
            Number of clients that received the message
        """
        if not ids:
            return 0

        sent_count = 0
        failed: list[WebSocket] = []
        for connection in list(self._connections):
            wanted = connection.wants(ids)
            if not wanted:
                continue
            try:
                await self._send(
                    connection.websocket,
                    RiskStreamMessage(type=MessageType.RISK_UPDATED, ids=wanted),
                )
                sent_count += 1
            except Exception as e:
                logger.warning(f"Failed to send to WebSocket: {e}")
                failed.append(connection.websocket)

        for ws in failed:
            await self.disconnect(ws)
        return sent_count

    async def handle_client_message(self, websocket: WebSocket, data: str) -> None:
        """
        Handle incoming message from client.

        Supports:
        - ping: respond with pong
        - subscribe: limit pushes to ``ids`` (an empty list restores all)
        """
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON received: {data[:100]}")
            return

        msg_type = str(message.get("type", "")).lower()
        connection = next((c for c in self._connections if c.websocket is websocket), None)

        if msg_type == MessageType.PING.value:
            if connection is not None:
                connection.last_ping = datetime.now(timezone.utc)
            await self._send(websocket, RiskStreamMessage(type=MessageType.PONG))
        elif msg_type == MessageType.SUBSCRIBE.value:
            ids = [str(i) for i in message.get("ids") or []]
            if connection is not None:
                connection.watched_ids = set(ids) if ids else None
            await self._send(websocket, RiskStreamMessage(type=MessageType.SUBSCRIBED, ids=ids))

    async def _send(self, websocket: WebSocket, message: RiskStreamMessage) -> None:
        await websocket.send_text(message.to_json())


# =============================================================================
# Singleton Instance
# =============================================================================

_risk_event_manager: Optional[RiskEventManager] = None


def get_risk_event_manager() -> RiskEventManager:
    """Get the global risk event manager instance."""
    global _risk_event_manager
    if _risk_event_manager is None:
        _risk_event_manager = RiskEventManager()
    return _risk_event_manager
