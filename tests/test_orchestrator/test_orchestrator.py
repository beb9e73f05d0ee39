"""Tests for ConversationOrchestrator turn handling."""

import asyncio
import json

import httpx
import pytest

from storefront_assistant.config.schema import LLMConfig, MCPServerConfig, ProviderConfig
from storefront_assistant.mcp.client import MCPToolClient
from storefront_assistant.mcp.context import SiteContext
from storefront_assistant.mcp.types import (
    ConnectionStatus,
    ServerConnection,
    ToolResult,
    ToolTransportError,
)
from storefront_assistant.orchestrator.events import SessionEventKind
from storefront_assistant.orchestrator.order_flow import OrderStep
from storefront_assistant.orchestrator.orchestrator import ConversationOrchestrator
from storefront_assistant.orchestrator.prompts import TERMS_DECLINED_REPLY
from storefront_assistant.orchestrator.session import SessionStore
from storefront_assistant.orchestrator.types import TurnState
from storefront_assistant.providers.base import ProviderAdapter
from storefront_assistant.providers.fallback import RuleBasedResponder
from storefront_assistant.providers.local import LocalProvider
from storefront_assistant.providers.registry import ProviderRegistry
from storefront_assistant.providers.types import (
    ErrorKind,
    Message,
    ProviderError,
    ProviderResponse,
    ProviderUnavailable,
    Role,
    ToolCall,
    ToolDefinition,
)

SERVER = MCPServerConfig(id="commerce-tools", name="Commerce tools", url="http://tools.test/mcp")
TOOLS = [
    ToolDefinition(name="mcp_search-products", description="Search the catalog"),
    ToolDefinition(name="mcp_get-delivery-modes", description="Delivery options"),
    ToolDefinition(name="mcp_place-order", description="Place the order"),
]
TERMS_ERROR = ToolResult.error("Order cannot be placed: terms and conditions must be accepted")


def _answer(content: str = "", tool_calls: list[ToolCall] | None = None) -> ProviderResponse:
    return ProviderResponse(content=content, tool_calls=tool_calls or [], model="scripted", usage=None)


class ScriptedProvider(ProviderAdapter):
    """Provider that replays queued answers (or errors) and records every request."""

    provider_id = "local"
    display_name = "Scripted"
    default_api_url = "http://scripted.invalid"
    default_model = "scripted"

    def __init__(self, *script: ProviderResponse | ProviderError, available: bool = True) -> None:
        super().__init__(ProviderConfig())
        self.script = list(script)
        self.available = available
        self.calls: list[tuple[list[Message], list[ToolDefinition] | None]] = []

    async def _check_reachable(self) -> bool:
        return self.available

    async def generate_response(
        self, messages: list[Message], tools: list[ToolDefinition] | None = None
    ) -> ProviderResponse:
        self.calls.append((list(messages), tools))
        step = self.script.pop(0) if self.script else _answer("default answer")
        if isinstance(step, ProviderError):
            raise step
        return step


class FakeToolClient(MCPToolClient):
    """Tool client with canned results per tool name."""

    def __init__(self, results: dict[str, ToolResult | Exception] | None = None) -> None:
        super().__init__(SiteContext(base_site_id="powertools", base_site_url="https://shop.test"))
        self.results = results or {}
        self.calls: list[ToolCall] = []
        self.connect_count = 0

    async def connect(self, server: MCPServerConfig) -> ServerConnection:
        self.connect_count += 1
        self._server = server
        self._connection = ServerConnection(
            server_id=server.id, status=ConnectionStatus.CONNECTED, tools=TOOLS
        )
        return self._connection

    async def call_tool(self, call: ToolCall) -> ToolResult:
        self.calls.append(call)
        outcome = self.results.get(call.name, ToolResult.model_validate({"content": [{"type": "text", "text": "ok"}]}))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def disconnect(self) -> None:
        self._connection = ServerConnection(server_id=SERVER.id, status=ConnectionStatus.DISCONNECTED)


class GatedToolClient(FakeToolClient):
    """Tool client whose calls only finish once ``expected`` calls are running at the same time."""

    def __init__(self, expected: int) -> None:
        super().__init__()
        self.expected = expected
        self.in_flight = 0
        self.max_in_flight = 0
        self.all_started = asyncio.Event()

    async def call_tool(self, call: ToolCall) -> ToolResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        if self.in_flight >= self.expected:
            self.all_started.set()
        await self.all_started.wait()
        self.in_flight -= 1
        return await super().call_tool(call)


async def _orchestrator(
    provider: ProviderAdapter,
    tool_client: FakeToolClient | None = None,
    *,
    max_history: int = 20,
) -> ConversationOrchestrator:
    registry = ProviderRegistry(
        LLMConfig(primary_provider="local", enable_fallback=False),
        providers={"local": provider},
        responder=RuleBasedResponder(store_name="Power Tools Co"),
    )
    orchestrator = ConversationOrchestrator(
        registry,
        SessionStore(max_history=max_history),
        tool_client=tool_client,
        mcp_server=SERVER if tool_client is not None else None,
        store_name="Power Tools Co",
    )
    await orchestrator.initialize()
    return orchestrator


def _place_order_call(**arguments) -> ToolCall:
    return ToolCall(id="call_po", name="mcp_place-order", arguments=json.dumps(arguments))


class TestBasicTurns:
    """Test turns without tools."""

    @pytest.mark.asyncio
    async def test_greeting_with_no_provider_reachable(self) -> None:
        """With every provider down the built-in responder greets and a session is created."""
        orchestrator = await _orchestrator(ScriptedProvider(available=False))

        result = await orchestrator.send_turn("hello")

        assert result.answer.startswith("Hello! Welcome to Power Tools Co")
        assert result.session_id
        assert result.provider_id == "fallback"
        assert result.degraded is True
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_history_and_system_prompt(self) -> None:
        """The system prompt leads the history, followed by the exchange."""
        provider = ScriptedProvider(_answer("We stock 12 drills."))
        orchestrator = await _orchestrator(provider, FakeToolClient())

        result = await orchestrator.send_turn("How many drills?")
        session = orchestrator.sessions.get(result.session_id)

        assert session is not None
        assert [m.role for m in session.history] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert "Power Tools Co" in session.history[0].content
        assert "https://shop.test" in session.history[0].content
        assert result.answer == "We stock 12 drills."
        assert provider.calls[0][1] == TOOLS
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_same_session_continues(self) -> None:
        """Passing the session id back continues the conversation."""
        orchestrator = await _orchestrator(ScriptedProvider(_answer("one"), _answer("two")))

        first = await orchestrator.send_turn("first")
        second = await orchestrator.send_turn("second", first.session_id)

        assert second.session_id == first.session_id
        summary = orchestrator.get_session_summary(first.session_id)
        assert summary is not None
        assert summary["message_count"] == 5
        assert summary["has_system_prompt"] is True
        assert summary["turn_state"] == "idle"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_history_capped(self) -> None:
        """Long conversations keep the system prompt and the newest messages."""
        orchestrator = await _orchestrator(ScriptedProvider(), max_history=6)

        session_id = None
        for i in range(10):
            session_id = (await orchestrator.send_turn(f"message {i}", session_id)).session_id

        session = orchestrator.sessions.get(session_id)
        assert session is not None
        assert len(session.history) == 6
        assert session.history[0].role == Role.SYSTEM
        assert session.history[-2].content == "message 9"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_provider_failure_degrades(self) -> None:
        """A failing provider yields the apology and keeps the session usable."""
        orchestrator = await _orchestrator(
            ScriptedProvider(ProviderUnavailable("down", provider="local"), _answer("back again"))
        )

        failed = await orchestrator.send_turn("Any saws in stock?")
        recovered = await orchestrator.send_turn("hello?", failed.session_id)

        assert failed.degraded is True
        assert failed.error_kind is ErrorKind.UNAVAILABLE
        assert '"Any saws in stock?"' in failed.answer
        assert recovered.answer == "back again"
        assert recovered.degraded is False
        await orchestrator.shutdown()


class TestToolExecution:
    """Test tool-calling turns."""

    @pytest.mark.asyncio
    async def test_tool_results_feed_follow_up(self) -> None:
        """Tool output is appended and the provider is asked again without tools."""
        provider = ScriptedProvider(
            _answer("", [ToolCall(id="c1", name="mcp_search-products", arguments='{"query": "drill"}')]),
            _answer("Found 3 drills."),
        )
        tools = FakeToolClient(
            {"mcp_search-products": ToolResult.model_validate({"content": [{"type": "text", "text": "3 drills"}]})}
        )
        orchestrator = await _orchestrator(provider, tools)

        result = await orchestrator.send_turn("show me drills")

        assert result.answer == "Found 3 drills."
        assert result.tools_used == ["mcp_search-products"]
        follow_up_messages, follow_up_tools = provider.calls[1]
        assert follow_up_tools is None
        assert follow_up_messages[-1].role == Role.TOOL
        assert follow_up_messages[-1].tool_call_id == "c1"
        assert follow_up_messages[-1].content == "3 drills"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_failed_tools_become_error_messages(self) -> None:
        """Transport failures of parallel tools are answered with synthetic error results."""
        provider = ScriptedProvider(
            _answer(
                "",
                [
                    ToolCall(id="a", name="mcp_search-products"),
                    ToolCall(id="b", name="mcp_get-delivery-modes"),
                ],
            ),
            _answer("Sorry, the store systems are unreachable."),
        )
        tools = FakeToolClient(
            {
                "mcp_search-products": ToolTransportError("down"),
                "mcp_get-delivery-modes": ToolTransportError("down"),
            }
        )
        orchestrator = await _orchestrator(provider, tools)

        result = await orchestrator.send_turn("drills and delivery options?")

        tool_messages = [m for m in provider.calls[1][0] if m.role == Role.TOOL]
        assert [m.tool_call_id for m in tool_messages] == ["a", "b"]
        assert all(m.content.startswith("Error executing tool mcp_") for m in tool_messages)
        assert result.answer == "Sorry, the store systems are unreachable."
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_tool_error_becomes_error_message(self) -> None:
        """Exceptions outside the tool error family still yield a tool message and an answer."""
        provider = ScriptedProvider(
            _answer("", [ToolCall(id="a", name="mcp_search-products")]),
            _answer("Search is unavailable right now."),
        )
        orchestrator = await _orchestrator(
            provider, FakeToolClient({"mcp_search-products": RuntimeError("cart service down")})
        )

        result = await orchestrator.send_turn("drills?")

        tool_messages = [m for m in provider.calls[1][0] if m.role == Role.TOOL]
        assert tool_messages[0].content.startswith("Error executing tool mcp_search-products")
        assert result.answer == "Search is unavailable right now."
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_tool_batch_runs_concurrently(self) -> None:
        """Every call of a batch is in flight before any of them completes."""
        provider = ScriptedProvider(
            _answer(
                "",
                [
                    ToolCall(id="a", name="mcp_search-products"),
                    ToolCall(id="b", name="mcp_get-delivery-modes"),
                ],
            ),
            _answer("Both done."),
        )
        tools = GatedToolClient(expected=2)
        orchestrator = await _orchestrator(provider, tools)

        result = await asyncio.wait_for(orchestrator.send_turn("drills and delivery?"), timeout=1)

        assert result.answer == "Both done."
        assert tools.max_in_flight == 2
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_malformed_vendor_body_degrades(self) -> None:
        """A vendor answer with the wrong shape falls back to the built-in responder."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"data": []})
            return httpx.Response(200, json={"choices": [{"message": "hello"}]})

        provider = LocalProvider(
            ProviderConfig(api_url="http://llm.test/v1", api_type="openai-compatible"),
            transport=httpx.MockTransport(handler),
        )
        orchestrator = await _orchestrator(provider)

        result = await orchestrator.send_turn("Any saws in stock?")

        assert result.provider_id == "fallback"
        assert result.degraded is True
        assert result.error_kind is ErrorKind.UNAVAILABLE
        assert '"Any saws in stock?"' in result.answer
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_empty_follow_up_gets_default_reply(self) -> None:
        """An empty final answer is replaced by a completion message."""
        provider = ScriptedProvider(
            _answer("", [ToolCall(id="c1", name="mcp_search-products")]), _answer("")
        )
        orchestrator = await _orchestrator(provider, FakeToolClient())

        result = await orchestrator.send_turn("search")

        assert result.answer.startswith("I've completed the requested actions")
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_tool_client_connected_lazily(self) -> None:
        """A dropped tool connection is re-established before the next turn."""
        tools = FakeToolClient()
        orchestrator = await _orchestrator(ScriptedProvider(), tools)
        await tools.disconnect()

        await orchestrator.send_turn("hi")

        assert tools.connect_count == 2
        assert tools.is_ready
        await orchestrator.shutdown()


class TestOrderFlow:
    """Test the guided checkout API."""

    @pytest.mark.asyncio
    async def test_order_intent_starts_flow(self) -> None:
        """Asking to place an order starts the checkout at the payment step."""
        orchestrator = await _orchestrator(ScriptedProvider(_answer("Which payment type?")))

        result = await orchestrator.send_turn("I'd like to place my order")

        status = orchestrator.get_order_flow_status(result.session_id)
        assert status["active"] is True
        assert status["step"] == "payment"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_collected_data_merges(self) -> None:
        """Later updates add to earlier ones."""
        orchestrator = await _orchestrator(ScriptedProvider())
        session_id = orchestrator.start_order_flow()["session_id"]

        orchestrator.update_order_flow_data(session_id, {"paymentType": "ACCOUNT"})
        status = orchestrator.update_order_flow_data(session_id, {"purchaseOrderNumber": "PO-1"})

        assert status["collected"] == {"paymentType": "ACCOUNT", "purchaseOrderNumber": "PO-1"}
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_context_is_ephemeral(self) -> None:
        """The checkout summary reaches the provider but never the stored history."""
        provider = ScriptedProvider(_answer("Noted."))
        orchestrator = await _orchestrator(provider)
        session_id = orchestrator.start_order_flow()["session_id"]
        orchestrator.update_order_flow_data(session_id, {"paymentType": "ACCOUNT"})

        await orchestrator.send_turn("Pay on account", session_id)

        sent = provider.calls[0][0]
        assert sent[1].role == Role.SYSTEM
        assert sent[1].content.startswith("[ORDER FLOW CONTEXT]")
        assert "ACCOUNT" in sent[1].content
        session = orchestrator.sessions.get(session_id)
        assert session is not None
        assert not any("[ORDER FLOW CONTEXT]" in m.content for m in session.history)
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_advance_and_cancel(self) -> None:
        """Steps advance in order; cancelling clears the flow."""
        orchestrator = await _orchestrator(ScriptedProvider())
        session_id = orchestrator.start_order_flow()["session_id"]

        assert orchestrator.advance_order_step(session_id) is OrderStep.ADDRESS
        orchestrator.set_order_options(session_id, {"deliveryModes": ["standard", "express"]})
        assert orchestrator.get_order_flow_status(session_id)["available_options"] == {
            "deliveryModes": ["standard", "express"]
        }

        assert orchestrator.cancel_order_flow(session_id) is True
        assert orchestrator.cancel_order_flow(session_id) is False
        assert orchestrator.get_order_flow_status(session_id) == {"active": False}
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_operations_without_flow_raise(self) -> None:
        """Updating a missing session or flow is a ValueError."""
        orchestrator = await _orchestrator(ScriptedProvider())
        result = await orchestrator.send_turn("hi")

        with pytest.raises(ValueError):
            orchestrator.update_order_flow_data("missing", {"a": 1})
        with pytest.raises(ValueError):
            orchestrator.advance_order_step(result.session_id)
        await orchestrator.shutdown()


class TestTermsInterrupt:
    """Test the terms-and-conditions interrupt around order placement."""

    async def _interrupted(
        self, tools: FakeToolClient, *script: ProviderResponse
    ) -> tuple[ConversationOrchestrator, ScriptedProvider, str]:
        provider = ScriptedProvider(
            _answer("", [_place_order_call(cartId="c1", paymentType="ACCOUNT")]),
            _answer("Do you accept the terms and conditions?"),
            *script,
        )
        orchestrator = await _orchestrator(provider, tools)
        result = await orchestrator.send_turn("Yes, place the order now")
        return orchestrator, provider, result.session_id

    @pytest.mark.asyncio
    async def test_terms_error_sets_interrupt(self) -> None:
        """A terms error from the order tool pauses the session for a decision."""
        tools = FakeToolClient({"mcp_place-order": TERMS_ERROR})
        orchestrator, _, session_id = await self._interrupted(tools)

        session = orchestrator.sessions.get(session_id)
        assert session is not None
        assert session.pending_interrupt is not None
        assert session.turn_state == TurnState.AWAITING_TERMS_DECISION
        assert orchestrator.get_session_summary(session_id)["awaiting_terms"] is True
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_acceptance_retries_with_terms_checked(self) -> None:
        """'yes' replays the same call with termsChecked and no new provider call."""
        tools = FakeToolClient({"mcp_place-order": TERMS_ERROR})
        orchestrator, provider, session_id = await self._interrupted(tools)
        tools.results["mcp_place-order"] = ToolResult.model_validate(
            {"content": [{"type": "text", "text": "Order 00042 placed"}]}
        )
        orchestrator.start_order_flow(session_id)

        result = await orchestrator.send_turn("yes", session_id)

        retry = tools.calls[-1]
        assert retry.name == "mcp_place-order"
        assert retry.parsed_arguments() == {"cartId": "c1", "paymentType": "ACCOUNT", "termsChecked": True}
        assert result.answer.startswith("Thank you for accepting the terms and conditions")
        assert "Order 00042 placed" in result.answer
        assert len(provider.calls) == 2
        session = orchestrator.sessions.get(session_id)
        assert session is not None
        assert session.pending_interrupt is None
        assert session.turn_state == TurnState.IDLE
        assert orchestrator.get_order_flow_status(session_id)["step"] == "complete"
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_failed_retry_is_reported(self) -> None:
        """An unexpected failure of the accepted retry is answered, not raised."""
        tools = FakeToolClient({"mcp_place-order": TERMS_ERROR})
        orchestrator, _, session_id = await self._interrupted(tools)
        tools.results["mcp_place-order"] = RuntimeError("socket closed")

        result = await orchestrator.send_turn("yes", session_id)

        assert result.answer.startswith("I've recorded your acceptance of the terms")
        assert result.tools_used == ["mcp_place-order"]
        assert orchestrator.sessions.get(session_id).turn_state == TurnState.IDLE
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_decline_does_not_retry(self) -> None:
        """Any other answer declines and clears the interrupt."""
        tools = FakeToolClient({"mcp_place-order": TERMS_ERROR})
        orchestrator, _, session_id = await self._interrupted(tools)

        result = await orchestrator.send_turn("no thanks", session_id)

        assert result.answer == TERMS_DECLINED_REPLY
        assert len(tools.calls) == 1
        assert orchestrator.sessions.get(session_id).pending_interrupt is None
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_follow_up_without_terms_is_replaced(self) -> None:
        """If the model forgets to ask, the terms question is asked anyway."""
        provider = ScriptedProvider(_answer("", [_place_order_call()]), _answer("Something went wrong."))
        orchestrator = await _orchestrator(provider, FakeToolClient({"mcp_place-order": TERMS_ERROR}))

        result = await orchestrator.send_turn("place order")

        assert "Do you accept the terms and conditions?" in result.answer
        assert "must be accepted" in result.answer
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_other_tool_terms_error_ignored(self) -> None:
        """Terms errors from tools other than order placement do not interrupt."""
        provider = ScriptedProvider(
            _answer("", [ToolCall(id="c1", name="mcp_search-products")]), _answer("Done.")
        )
        orchestrator = await _orchestrator(provider, FakeToolClient({"mcp_search-products": TERMS_ERROR}))

        result = await orchestrator.send_turn("search")

        assert orchestrator.sessions.get(result.session_id).pending_interrupt is None
        await orchestrator.shutdown()


class TestSessions:
    """Test session management through the orchestrator."""

    @pytest.mark.asyncio
    async def test_clear_session_idempotent(self) -> None:
        """Clearing twice is harmless; the summary disappears."""
        orchestrator = await _orchestrator(ScriptedProvider())
        result = await orchestrator.send_turn("hi")

        orchestrator.clear_session(result.session_id)
        orchestrator.clear_session(result.session_id)

        assert orchestrator.get_session_summary(result.session_id) is None
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_events_published(self) -> None:
        """Subscribers see session creation and completed turns."""
        orchestrator = await _orchestrator(ScriptedProvider())
        queue = orchestrator.subscribe()

        result = await orchestrator.send_turn("hi")

        created = await asyncio.wait_for(queue.get(), timeout=1)
        completed = await asyncio.wait_for(queue.get(), timeout=1)
        assert created.kind is SessionEventKind.SESSION_CREATED
        assert completed.kind is SessionEventKind.TURN_COMPLETED
        assert completed.session_id == result.session_id
        await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_sessions_are_isolated(self) -> None:
        """Turns on different sessions run independently."""
        orchestrator = await _orchestrator(ScriptedProvider())

        results = await asyncio.gather(*(orchestrator.send_turn(f"hi {i}") for i in range(3)))

        assert len({result.session_id for result in results}) == 3
        for result in results:
            assert orchestrator.get_session_summary(result.session_id)["message_count"] == 3
        await orchestrator.shutdown()
