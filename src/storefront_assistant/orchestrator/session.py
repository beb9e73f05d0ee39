"""Conversation sessions and their store.

Sessions live in memory. The store runs a background sweep that evicts
sessions idle for longer than the timeout; it must be started and stopped
explicitly (or used as an async context manager).
"""

import asyncio
import contextlib
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from storefront_assistant.orchestrator.events import SessionEventBus, SessionEventKind
from storefront_assistant.orchestrator.order_flow import OrderFlowState, PendingInterrupt
from storefront_assistant.orchestrator.types import TurnState
from storefront_assistant.providers.types import Message, Role
from storefront_assistant.telemetry import SESSION_CLEARED, SESSION_CREATED, SESSION_SWEEP, get_logger

log = get_logger(__name__)

DEFAULT_MAX_HISTORY = 20


def truncate_history(history: list[Message], max_history: int) -> list[Message]:
    """Cap a history at ``max_history`` messages.

    The first system message survives; the most recent ``max_history - 1``
    other messages are kept. Tool results whose originating assistant message
    was evicted are dropped from the front.
    """
    if len(history) <= max_history:
        return history

    system = next((m for m in history if m.role == Role.SYSTEM), None)
    recent = [m for m in history if m is not system][-(max_history - 1) :]
    while recent and recent[0].role == Role.TOOL:
        recent.pop(0)
    return [system, *recent] if system is not None else recent


@dataclass
class Session:
    """A single conversation session.

    Attributes:
        session_id: Unique identifier.
        history: Messages, oldest first; index 0 holds the system prompt once set.
        max_history: Cap applied on every append.
        order_flow: Active guided checkout, if any.
        pending_interrupt: Order placement waiting for a terms decision, if any.
        turn_state: Where the session is within a turn.
        created_at: UTC creation time.
        lock: Serialises turns on this session.
    """

    session_id: str
    history: list[Message] = field(default_factory=list)
    max_history: int = DEFAULT_MAX_HISTORY
    order_flow: OrderFlowState | None = None
    pending_interrupt: PendingInterrupt | None = None
    turn_state: TurnState = TurnState.IDLE
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def append(self, *messages: Message) -> None:
        self.history.extend(messages)
        self.history = truncate_history(self.history, self.max_history)

    def set_system_prompt(self, content: str) -> None:
        """Install or refresh the system prompt at the head of the history."""
        if self.history and self.history[0].role == Role.SYSTEM:
            self.history[0] = Message.system(content)
        else:
            self.history.insert(0, Message.system(content))
            self.history = truncate_history(self.history, self.max_history)

    @property
    def last_activity(self) -> datetime:
        """Timestamp of the newest message, or creation time for an empty session."""
        return self.history[-1].timestamp if self.history else self.created_at

    def summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "message_count": len(self.history),
            "last_activity": self.last_activity.isoformat(),
            "has_system_prompt": bool(self.history) and self.history[0].role == Role.SYSTEM,
            "turn_state": self.turn_state.value,
            "order_flow": self.order_flow.to_status() if self.order_flow else None,
            "awaiting_terms": self.pending_interrupt is not None,
        }


class SessionStore:
    """In-memory session registry with idle eviction.

    Args:
        max_history: History cap for new sessions.
        session_timeout_s: Idle time after which a session is evicted.
        cleanup_interval_s: Interval between sweeps.
        events: Optional bus notified of creations, clears and expiries.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        *,
        max_history: int = DEFAULT_MAX_HISTORY,
        session_timeout_s: float = 1800.0,
        cleanup_interval_s: float = 300.0,
        events: SessionEventBus | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.max_history = max_history
        self.session_timeout = timedelta(seconds=session_timeout_s)
        self.cleanup_interval_s = cleanup_interval_s
        self.events = events or SessionEventBus()
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._sweep_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the periodic sweep. Idempotent."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweep_task
        self._sweep_task = None

    async def __aenter__(self) -> "SessionStore":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str | None = None) -> Session:
        """Return the session with ``session_id``, creating it (with a fresh id if None)."""
        if session_id is not None and session_id in self._sessions:
            return self._sessions[session_id]

        session = Session(session_id=session_id or str(uuid.uuid4()), max_history=self.max_history)
        self._sessions[session.session_id] = session
        log.info(SESSION_CREATED, session_id=session.session_id)
        self.events.publish(SessionEventKind.SESSION_CREATED, session.session_id)
        return session

    def clear(self, session_id: str) -> bool:
        """Drop a session and everything attached to it. Unknown ids are a no-op.

        Returns:
            True if a session was removed.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        log.info(SESSION_CLEARED, session_id=session_id)
        self.events.publish(SessionEventKind.SESSION_CLEARED, session_id)
        return True

    def list_sessions(self) -> list[Session]:
        """All sessions, most recently active first."""
        return sorted(self._sessions.values(), key=lambda s: s.last_activity, reverse=True)

    def sweep_expired(self, now: datetime | None = None) -> list[str]:
        """Evict sessions idle longer than the timeout.

        Sessions with a turn in progress are skipped.

        Returns:
            Ids of the evicted sessions.
        """
        now = now or self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_activity > self.session_timeout and not session.lock.locked()
        ]
        for session_id in expired:
            del self._sessions[session_id]
            self.events.publish(SessionEventKind.SESSION_EXPIRED, session_id)

        log.info(SESSION_SWEEP, expired=len(expired), remaining=len(self._sessions))
        return expired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_s)
            self.sweep_expired()
