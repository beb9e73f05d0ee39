"""Tests for checkout state and terms helpers."""

import pytest

from storefront_assistant.orchestrator.order_flow import (
    OrderFlowState,
    OrderStep,
    detect_order_intent,
    is_order_placement_tool,
    is_terms_acceptance,
    is_terms_error,
    with_terms_accepted,
)
from storefront_assistant.providers.types import ToolCall


def test_steps_advance_monotonically() -> None:
    """Steps follow payment → address → delivery → confirmation → complete and stop there."""
    flow = OrderFlowState()

    steps = [flow.advance() for _ in range(6)]

    assert steps == [
        OrderStep.ADDRESS,
        OrderStep.DELIVERY,
        OrderStep.CONFIRMATION,
        OrderStep.COMPLETE,
        OrderStep.COMPLETE,
        OrderStep.COMPLETE,
    ]


def test_update_merges() -> None:
    """Collected data accumulates; later keys overwrite earlier ones."""
    flow = OrderFlowState()
    flow.update({"paymentType": "ACCOUNT"})
    flow.update({"purchaseOrderNumber": "PO-1"})
    flow.update({"paymentType": "CARD"})

    assert flow.collected == {"paymentType": "CARD", "purchaseOrderNumber": "PO-1"}


def test_context_message() -> None:
    """The context message names the step and the collected data."""
    flow = OrderFlowState()
    flow.update({"addressId": "addr-1"})

    message = flow.as_context_message()

    assert message.startswith("[ORDER FLOW CONTEXT]")
    assert "payment" in message
    assert "addr-1" in message


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("I want to checkout", True),
        ("Please PLACE MY ORDER", True),
        ("buy now", True),
        ("what is your return policy?", False),
    ],
)
def test_detect_order_intent(text: str, expected: bool) -> None:
    """Order intent is a case-insensitive phrase match."""
    assert detect_order_intent(text) is expected


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("yes", True),
        ("Y", True),
        ("I accept", True),
        ("ok", True),
        ("I agree to the terms", True),
        ("no", False),
        ("yesterday I ordered", False),
        ("maybe later", False),
        ("", False),
    ],
)
def test_is_terms_acceptance(text: str, expected: bool) -> None:
    """Acceptance is a whole-word match; everything else declines."""
    assert is_terms_acceptance(text) is expected


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("mcp_place-order", True),
        ("mcp_place_order", True),
        ("mcp_placeOrder", True),
        ("mcp_get-orders", False),
    ],
)
def test_is_order_placement_tool(name: str, expected: bool) -> None:
    """Order placement tools are recognised by name."""
    assert is_order_placement_tool(name) is expected


def test_is_terms_error() -> None:
    """Terms errors mention both terms and conditions."""
    assert is_terms_error("Tool Error: Terms and Conditions not accepted")
    assert not is_terms_error("Tool Error: payment terms invalid")


def test_with_terms_accepted_preserves_arguments() -> None:
    """The retry carries the stored arguments plus termsChecked."""
    call = ToolCall(id="c1", name="mcp_place-order", arguments='{"cartId": "c9"}')

    retry = with_terms_accepted(call)

    assert retry.id == "c1"
    assert retry.parsed_arguments() == {"cartId": "c9", "termsChecked": True}
    assert call.parsed_arguments() == {"cartId": "c9"}
