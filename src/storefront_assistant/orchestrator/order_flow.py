"""Guided checkout state and the terms-and-conditions interrupt."""

import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from storefront_assistant.providers.types import ToolCall

ORDER_INTENT_PHRASES = (
    "place order",
    "place my order",
    "checkout",
    "check out",
    "complete order",
    "finish order",
    "buy now",
)

_ACCEPT_WORDS = re.compile(r"\b(yes|accept|accepted|agree|ok|okay)\b")
_ORDER_PLACEMENT_TOOL = re.compile(r"place[-_]?order")


class OrderStep(str, Enum):
    """Checkout steps, in order."""

    PAYMENT = "payment"
    ADDRESS = "address"
    DELIVERY = "delivery"
    CONFIRMATION = "confirmation"
    COMPLETE = "complete"


_STEP_SEQUENCE = list(OrderStep)


@dataclass
class OrderFlowState:
    """Progress of a guided checkout.

    Attributes:
        step: Current step; only moves forward.
        collected: Data gathered so far (payment type, address id, delivery mode, ...).
        available_options: Choices offered to the customer (addresses, delivery modes).
        started_at: UTC start time.
    """

    step: OrderStep = OrderStep.PAYMENT
    collected: dict[str, Any] = field(default_factory=dict)
    available_options: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def advance(self) -> OrderStep:
        """Move to the next step; COMPLETE stays COMPLETE."""
        index = _STEP_SEQUENCE.index(self.step)
        self.step = _STEP_SEQUENCE[min(index + 1, len(_STEP_SEQUENCE) - 1)]
        return self.step

    def update(self, data: dict[str, Any]) -> None:
        """Merge ``data`` into the collected values; existing keys not in ``data`` are kept."""
        self.collected.update(data)

    def set_options(self, options: dict[str, Any]) -> None:
        self.available_options.update(options)

    def as_context_message(self) -> str:
        """Render the ephemeral system message describing the checkout state."""
        return (
            "[ORDER FLOW CONTEXT] "
            f"Current step: {self.step.value}. "
            f"Collected data: {json.dumps(self.collected, default=str)}. "
            f"Available options: {json.dumps(self.available_options, default=str)}."
        )

    def to_status(self) -> dict[str, Any]:
        return {
            "active": True,
            "step": self.step.value,
            "collected": dict(self.collected),
            "available_options": dict(self.available_options),
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class PendingInterrupt:
    """An order-placement call paused until the customer answers the terms question.

    Attributes:
        tool_call: The call that failed, replayed on acceptance.
        terms_message: Tool error text shown to the customer.
    """

    tool_call: ToolCall
    terms_message: str


def detect_order_intent(text: str) -> bool:
    """Whether a message asks to place an order."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in ORDER_INTENT_PHRASES)


def is_terms_acceptance(text: str) -> bool:
    """Classify an answer to the terms question; anything not accepting is a decline."""
    lowered = text.strip().lower()
    return lowered == "y" or bool(_ACCEPT_WORDS.search(lowered))


def is_order_placement_tool(tool_name: str) -> bool:
    return bool(_ORDER_PLACEMENT_TOOL.search(tool_name.lower()))


def is_terms_error(text: str) -> bool:
    """Whether a tool error asks for terms-and-conditions acceptance."""
    lowered = text.lower()
    return "terms" in lowered and "condition" in lowered


def with_terms_accepted(call: ToolCall) -> ToolCall:
    """Copy of ``call`` with ``termsChecked: true`` added to its arguments."""
    arguments = call.parsed_arguments()
    arguments["termsChecked"] = True
    return ToolCall(id=call.id, name=call.name, arguments=json.dumps(arguments))
