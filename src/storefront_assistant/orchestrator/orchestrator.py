"""Conversation orchestrator.

Drives one customer turn end to end:

1. a pending terms question consumes the turn as accept/decline
2. order intent starts a guided checkout
3. the user message joins the capped history; the system prompt is refreshed
4. the active provider answers, with the tool catalog and an ephemeral
   checkout summary
5. requested tools run concurrently, results are appended, and the provider is
   asked once more for the final answer
6. a terms error from an order-placement tool sets the terms interrupt

Provider and tool failures never escape ``send_turn``; they degrade the answer
and are reported on the TurnResult.
"""

import asyncio
from typing import Any

from storefront_assistant.config.schema import MCPServerConfig
from storefront_assistant.mcp.client import MCPToolClient
from storefront_assistant.mcp.types import (
    ConnectionNotReadyError,
    ServerConnection,
    ToolClientError,
    ToolResult,
    format_tool_result,
    tool_result_text,
)
from storefront_assistant.orchestrator.events import SessionEvent, SessionEventKind
from storefront_assistant.orchestrator.order_flow import (
    OrderFlowState,
    OrderStep,
    PendingInterrupt,
    detect_order_intent,
    is_order_placement_tool,
    is_terms_acceptance,
    is_terms_error,
    with_terms_accepted,
)
from storefront_assistant.orchestrator.prompts import (
    TERMS_ACCEPTED_PREFIX,
    TERMS_DECLINED_REPLY,
    TOOLS_COMPLETED_REPLY,
    build_system_prompt,
    build_terms_question,
)
from storefront_assistant.orchestrator.session import Session, SessionStore
from storefront_assistant.orchestrator.types import TurnResult, TurnState
from storefront_assistant.providers.registry import ProviderRegistry
from storefront_assistant.providers.types import Message, ToolCall, ToolDefinition
from storefront_assistant.security import sanitize_error_message
from storefront_assistant.telemetry import (
    ORDER_FLOW_CANCELLED,
    ORDER_FLOW_STARTED,
    ORDER_STEP_ADVANCED,
    TERMS_ACCEPTED,
    TERMS_DECLINED,
    TERMS_INTERRUPT_SET,
    TOOL_CALL_FAILED,
    TURN_COMPLETED,
    TURN_DEGRADED,
    TURN_STARTED,
    get_logger,
)

log = get_logger(__name__)


class ConversationOrchestrator:
    """Session-scoped chat API over the provider registry and the tool client.

    Args:
        registry: Provider selection and failover.
        sessions: Session store (its sweep is started by ``initialize``).
        tool_client: MCP tool client, or None to run without tools.
        mcp_server: Server the tool client (re)connects to.
        store_name: Store name used in the system prompt.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        sessions: SessionStore,
        *,
        tool_client: MCPToolClient | None = None,
        mcp_server: MCPServerConfig | None = None,
        store_name: str = "our store",
    ) -> None:
        self.registry = registry
        self.sessions = sessions
        self.tool_client = tool_client
        self.mcp_server = mcp_server
        self.store_name = store_name

    async def initialize(self) -> None:
        """Select a provider, connect the tool server and start the session sweep."""
        await self.registry.initialize()
        await self._ensure_tool_connection()
        await self.sessions.start()

    async def shutdown(self) -> None:
        await self.sessions.stop()
        if self.tool_client is not None:
            await self.tool_client.disconnect()

    async def __aenter__(self) -> "ConversationOrchestrator":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    def subscribe(self) -> "asyncio.Queue[SessionEvent]":
        """Queue receiving session updates."""
        return self.sessions.events.subscribe()

    async def send_turn(self, utterance: str, session_id: str | None = None) -> TurnResult:
        """Process one customer message.

        Args:
            utterance: The customer's text.
            session_id: Existing session, or None to start a new one.

        Returns:
            TurnResult carrying the answer and the session id.
        """
        session = self.sessions.get_or_create(session_id)
        async with session.lock:
            log.info(
                TURN_STARTED,
                session_id=session.session_id,
                awaiting_terms=session.pending_interrupt is not None,
            )
            if session.pending_interrupt is not None:
                result = await self._resolve_terms(session, utterance)
            else:
                result = await self._run_turn(session, utterance)

            if session.pending_interrupt is None:
                session.turn_state = TurnState.IDLE

        if result.degraded:
            log.warning(
                TURN_DEGRADED,
                session_id=session.session_id,
                provider=result.provider_id,
                error_kind=result.error_kind.value if result.error_kind else None,
            )
        log.info(
            TURN_COMPLETED,
            session_id=session.session_id,
            provider=result.provider_id,
            tools_used=result.tools_used,
        )
        self.sessions.events.publish(
            SessionEventKind.TURN_COMPLETED,
            session.session_id,
            provider=result.provider_id,
            degraded=result.degraded,
        )
        return result

    async def _run_turn(self, session: Session, utterance: str) -> TurnResult:
        if session.order_flow is None and detect_order_intent(utterance):
            self._start_order_flow(session)

        session.set_system_prompt(self._system_prompt())
        session.append(Message.user(utterance))

        tools = await self._available_tools()
        session.turn_state = TurnState.AWAITING_PROVIDER
        generation = await self.registry.generate(self._request_messages(session), tools or None)
        response = generation.response

        if not response["tool_calls"]:
            session.append(Message.assistant(response["content"]))
            return TurnResult(
                answer=response["content"],
                session_id=session.session_id,
                provider_id=generation.provider_id,
                degraded=generation.degraded,
                error_kind=generation.error_kind,
            )

        calls = response["tool_calls"]
        session.turn_state = TurnState.EXECUTING_TOOLS
        try:
            await self._ensure_tool_connection()
        except Exception as e:
            log.error("tool_connection_failed", error=str(e), exc_info=True)
        outcomes = await asyncio.gather(*(self._execute_tool(call) for call in calls))

        session.append(
            Message.assistant(response["content"], calls),
            *(Message.tool(call.id, call.name, text) for call, _, text in outcomes),
        )

        interrupt = self._detect_terms_interrupt(outcomes)
        if interrupt is not None:
            session.pending_interrupt = interrupt
            session.turn_state = TurnState.AWAITING_TERMS_DECISION
            log.info(TERMS_INTERRUPT_SET, session_id=session.session_id, tool=interrupt.tool_call.name)
            self.sessions.events.publish(
                SessionEventKind.TERMS_INTERRUPT, session.session_id, message=interrupt.terms_message
            )
        else:
            session.turn_state = TurnState.AWAITING_PROVIDER

        follow_up = await self.registry.generate(self._request_messages(session))
        answer = follow_up.response["content"] or TOOLS_COMPLETED_REPLY
        if interrupt is not None and "terms" not in answer.lower():
            answer = build_terms_question(interrupt.terms_message)
        session.append(Message.assistant(answer))

        return TurnResult(
            answer=answer,
            session_id=session.session_id,
            provider_id=follow_up.provider_id,
            degraded=generation.degraded or follow_up.degraded,
            error_kind=follow_up.error_kind or generation.error_kind,
            tools_used=[call.name for call in calls],
        )

    async def _resolve_terms(self, session: Session, utterance: str) -> TurnResult:
        interrupt = session.pending_interrupt
        assert interrupt is not None
        session.pending_interrupt = None
        session.append(Message.user(utterance))
        provider_id = self.registry.current_provider_id

        if not is_terms_acceptance(utterance):
            log.info(TERMS_DECLINED, session_id=session.session_id)
            session.append(Message.assistant(TERMS_DECLINED_REPLY))
            return TurnResult(
                answer=TERMS_DECLINED_REPLY, session_id=session.session_id, provider_id=provider_id
            )

        log.info(TERMS_ACCEPTED, session_id=session.session_id, tool=interrupt.tool_call.name)
        retry = with_terms_accepted(interrupt.tool_call)
        session.turn_state = TurnState.EXECUTING_TOOLS
        try:
            await self._ensure_tool_connection()
            result = await self._call_tool(retry)
        except Exception as e:
            self._log_tool_failure(retry, e, session.session_id)
            answer = (
                "I've recorded your acceptance of the terms, but placing the order failed: "
                f"{sanitize_error_message(e)}"
            )
        else:
            answer = TERMS_ACCEPTED_PREFIX + format_tool_result(result)
            if not result.is_error and session.order_flow is not None:
                session.order_flow.step = OrderStep.COMPLETE
                self._publish_order_flow(session)

        session.append(Message.assistant(answer))
        return TurnResult(
            answer=answer,
            session_id=session.session_id,
            provider_id=provider_id,
            tools_used=[retry.name],
        )

    def _detect_terms_interrupt(
        self, outcomes: list[tuple[ToolCall, ToolResult | None, str]]
    ) -> PendingInterrupt | None:
        for call, result, text in outcomes:
            if (
                result is not None
                and result.is_error
                and is_order_placement_tool(call.name)
                and is_terms_error(text)
            ):
                return PendingInterrupt(tool_call=call, terms_message=tool_result_text(result))
        return None

    async def _call_tool(self, call: ToolCall) -> ToolResult:
        if self.tool_client is None:
            raise ConnectionNotReadyError("No tool server is configured")
        return await self.tool_client.call_tool(call)

    async def _execute_tool(self, call: ToolCall) -> tuple[ToolCall, ToolResult | None, str]:
        """Run one call; any failure becomes a synthetic error text."""
        try:
            result = await self._call_tool(call)
        except Exception as e:
            self._log_tool_failure(call, e)
            return call, None, f"Error executing tool {call.name}: {sanitize_error_message(e)}"
        return call, result, format_tool_result(result)

    @staticmethod
    def _log_tool_failure(call: ToolCall, error: Exception, session_id: str | None = None) -> None:
        if isinstance(error, ToolClientError):
            log.warning(
                TOOL_CALL_FAILED, tool=call.name, call_id=call.id, error=str(error), session_id=session_id
            )
        else:
            log.error(
                TOOL_CALL_FAILED,
                tool=call.name,
                call_id=call.id,
                error=str(error),
                session_id=session_id,
                exc_info=True,
            )

    async def _ensure_tool_connection(self) -> None:
        if self.tool_client is None or self.mcp_server is None or self.tool_client.is_ready:
            return
        await self.tool_client.connect(self.mcp_server)

    async def _available_tools(self) -> list[ToolDefinition]:
        if self.tool_client is None:
            return []
        try:
            await self._ensure_tool_connection()
            if not self.tool_client.is_ready:
                return []
            return await self.tool_client.list_tools()
        except Exception as e:
            log.error("tool_catalog_unavailable", error=str(e), exc_info=True)
            return []

    async def force_reconnect(self) -> ServerConnection | None:
        """Drop and re-establish the tool server connection."""
        if self.tool_client is None or self.mcp_server is None:
            return None
        await self.tool_client.disconnect()
        return await self.tool_client.connect(self.mcp_server)

    def _system_prompt(self) -> str:
        context = self.tool_client.site_context if self.tool_client is not None else None
        return build_system_prompt(
            store_name=self.store_name,
            base_site=context.base_site_id if context else None,
            base_site_url=context.base_site_url if context else None,
        )

    def _request_messages(self, session: Session) -> list[Message]:
        """History plus the ephemeral checkout summary right after the system prompt."""
        messages = list(session.history)
        if session.order_flow is not None:
            messages.insert(1, Message.system(session.order_flow.as_context_message()))
        return messages

    def clear_session(self, session_id: str) -> None:
        """Forget a session entirely. Unknown ids are ignored."""
        self.sessions.clear(session_id)

    def get_session_summary(self, session_id: str) -> dict[str, Any] | None:
        session = self.sessions.get(session_id)
        return session.summary() if session else None

    def _require_session(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found")
        return session

    def _start_order_flow(self, session: Session) -> None:
        session.order_flow = OrderFlowState()
        log.info(ORDER_FLOW_STARTED, session_id=session.session_id)
        self._publish_order_flow(session)

    def _publish_order_flow(self, session: Session) -> None:
        self.sessions.events.publish(
            SessionEventKind.ORDER_FLOW_CHANGED,
            session.session_id,
            status=self._order_status(session),
        )

    @staticmethod
    def _order_status(session: Session) -> dict[str, Any]:
        if session.order_flow is None:
            return {"active": False}
        return session.order_flow.to_status()

    def start_order_flow(self, session_id: str | None = None) -> dict[str, Any]:
        """Begin a guided checkout at the payment step, replacing any active one.

        Returns:
            Order flow status including the session id.
        """
        session = self.sessions.get_or_create(session_id)
        self._start_order_flow(session)
        return {"session_id": session.session_id, **self._order_status(session)}

    def cancel_order_flow(self, session_id: str) -> bool:
        """Discard the checkout state. Returns False when none was active."""
        session = self.sessions.get(session_id)
        if session is None or session.order_flow is None:
            return False
        session.order_flow = None
        log.info(ORDER_FLOW_CANCELLED, session_id=session_id)
        self._publish_order_flow(session)
        return True

    def get_order_flow_status(self, session_id: str) -> dict[str, Any]:
        session = self.sessions.get(session_id)
        if session is None:
            return {"active": False}
        return self._order_status(session)

    def _require_order_flow(self, session_id: str) -> tuple[Session, OrderFlowState]:
        session = self._require_session(session_id)
        if session.order_flow is None:
            raise ValueError(f"Session {session_id} has no active order flow")
        return session, session.order_flow

    def update_order_flow_data(self, session_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Merge collected checkout data.

        Raises:
            ValueError: If the session or its order flow does not exist.
        """
        session, flow = self._require_order_flow(session_id)
        flow.update(data)
        self._publish_order_flow(session)
        return flow.to_status()

    def set_order_options(self, session_id: str, options: dict[str, Any]) -> dict[str, Any]:
        """Record the addresses / delivery modes offered to the customer."""
        session, flow = self._require_order_flow(session_id)
        flow.set_options(options)
        self._publish_order_flow(session)
        return flow.to_status()

    def advance_order_step(self, session_id: str) -> OrderStep:
        """Move the checkout one step forward.

        Raises:
            ValueError: If the session or its order flow does not exist.
        """
        session, flow = self._require_order_flow(session_id)
        previous = flow.step
        step = flow.advance()
        log.info(ORDER_STEP_ADVANCED, session_id=session_id, previous=previous.value, step=step.value)
        self._publish_order_flow(session)
        return step
