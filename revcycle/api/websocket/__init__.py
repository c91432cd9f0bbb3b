"""
WebSocket module for real-time risk score updates.
"""

from revcycle.api.websocket.manager import (
    ConnectionState,
    IdFilter,
    MessageType,
    RiskEventManager,
    RiskStreamMessage,
    get_risk_event_manager,
)

__all__ = [
    "ConnectionState",
    "IdFilter",
    "MessageType",
    "RiskEventManager",
    "RiskStreamMessage",
    "get_risk_event_manager",
]
