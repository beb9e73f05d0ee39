"""Session update channel for UIs that want to observe conversations."""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from storefront_assistant.telemetry import get_logger

log = get_logger(__name__)


class SessionEventKind(str, Enum):
    SESSION_CREATED = "session_created"
    SESSION_CLEARED = "session_cleared"
    SESSION_EXPIRED = "session_expired"
    TURN_COMPLETED = "turn_completed"
    ORDER_FLOW_CHANGED = "order_flow_changed"
    TERMS_INTERRUPT = "terms_interrupt"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class SessionEventBus:
    """Fan-out of session events to subscriber queues.

    Publishing never blocks: a subscriber whose queue is full misses the event.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self._max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue[SessionEvent]] = []

    def subscribe(self) -> "asyncio.Queue[SessionEvent]":
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[SessionEvent]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, kind: SessionEventKind, session_id: str, **data: Any) -> None:
        event = SessionEvent(kind=kind, session_id=session_id, data=data)
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                log.warning("session_event_dropped", kind=kind.value, session_id=session_id)
