"""Core types for the orchestrator.

- TurnState: where a session is within a turn
- TurnResult: what ``send_turn`` hands back to the caller
"""

from dataclasses import dataclass, field
from enum import Enum

from storefront_assistant.providers.types import ErrorKind


class TurnState(str, Enum):
    """Per-session turn state."""

    IDLE = "idle"
    AWAITING_PROVIDER = "awaiting_provider"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_TERMS_DECISION = "awaiting_terms_decision"


@dataclass
class TurnResult:
    """Outcome of one conversational turn.

    Attributes:
        answer: Text shown to the customer.
        session_id: Session the turn belongs to (new id when one was created).
        provider_id: Provider that produced the answer ("fallback" for rule-based).
        degraded: True when the answer did not come from the active provider as planned.
        error_kind: Failure classification behind a degraded answer, if any.
        tools_used: Names of the tools executed during the turn.
    """

    answer: str
    session_id: str
    provider_id: str
    degraded: bool = False
    error_kind: ErrorKind | None = None
    tools_used: list[str] = field(default_factory=list)
