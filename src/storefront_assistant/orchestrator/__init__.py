"""Conversation orchestration: sessions, checkout flow and the turn loop."""

from storefront_assistant.orchestrator.events import SessionEvent, SessionEventBus, SessionEventKind
from storefront_assistant.orchestrator.factory import create_orchestrator
from storefront_assistant.orchestrator.order_flow import (
    OrderFlowState,
    OrderStep,
    PendingInterrupt,
    detect_order_intent,
    is_order_placement_tool,
    is_terms_acceptance,
    is_terms_error,
)
from storefront_assistant.orchestrator.orchestrator import ConversationOrchestrator
from storefront_assistant.orchestrator.session import Session, SessionStore, truncate_history
from storefront_assistant.orchestrator.types import TurnResult, TurnState

__all__ = [
    "ConversationOrchestrator",
    "create_orchestrator",
    "Session",
    "SessionStore",
    "truncate_history",
    "SessionEvent",
    "SessionEventBus",
    "SessionEventKind",
    "OrderFlowState",
    "OrderStep",
    "PendingInterrupt",
    "detect_order_intent",
    "is_order_placement_tool",
    "is_terms_acceptance",
    "is_terms_error",
    "TurnResult",
    "TurnState",
]
