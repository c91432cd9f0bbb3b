"""
In-process event bus.

Lifecycle notifications (claim approved, risk updated, invoice settled)
fan out to subscribers: the invoice builder's awaiting-invoice queue and
the websocket push channel.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events published by the engine."""

    CLAIM_SUBMITTED = "claim.submitted"
    CLAIM_APPROVED = "claim.approved"
    CLAIM_DENIED = "claim.denied"
    RISK_UPDATED = "risk.updated"
    INVOICE_CREATED = "invoice.created"
    INVOICE_SETTLED = "invoice.settled"


@dataclass
class Event:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """Publish/subscribe by event type. Handler failures are logged, not raised."""

    def __init__(self):
        self._handlers: dict[EventType, list[EventHandler]] = {}
        self._history: list[Event] = []
        self._history_limit = 500

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(self, event_type: EventType, **payload: Any) -> Event:
        event = Event(type=event_type, payload=payload)
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        for handler in list(self._handlers.get(event_type, [])):
            try:
                outcome = handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Event handler error on {event_type.value}: {e}")
        return event

    def recent(self, event_type: Optional[EventType] = None) -> list[Event]:
        """Recently published events, oldest first."""
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]
