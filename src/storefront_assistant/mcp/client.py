"""MCP client for one streamable-HTTP tool server.

This wrapper uses the MCP SDK's ``streamable_http_client`` and ``ClientSession``,
which handle the protocol:
- ``initialize`` and the ``notifications/initialized`` notification
- the ``mcp-session-id`` header echoed on every request after ``initialize``
- JSON and server-sent-event replies
- the session DELETE when the transport closes

The SDK contexts run inside one background task for the lifetime of the
connection, so they are entered and exited by the same task no matter which
task calls ``connect``, ``call_tool`` or ``disconnect``.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx
from mcp import ClientSession
from mcp import types as mcp_types
from mcp.client.streamable_http import streamable_http_client
from mcp.shared.exceptions import McpError
from pydantic import ValidationError

from storefront_assistant.config.schema import MCPServerConfig
from storefront_assistant.mcp.context import SiteContext
from storefront_assistant.mcp.types import (
    ConnectionNotReadyError,
    ConnectionStatus,
    ServerConnection,
    ToolResult,
    ToolTransportError,
    mcp_tool_to_definition,
    normalize_tool_result,
    strip_tool_prefix,
)
from storefront_assistant.providers.types import ToolCall, ToolDefinition
from storefront_assistant.telemetry import (
    MCP_CONNECTING,
    MCP_CONNECTION_FAILED,
    MCP_DISCONNECTED,
    MCP_SESSION_INITIALIZED,
    MCP_SESSION_MISSING,
    MCP_TOOLS_DISCOVERED,
    TOOL_CALL_COMPLETED,
    TOOL_CALL_STARTED,
    get_logger,
)

log = get_logger(__name__)

CLIENT_INFO = mcp_types.Implementation(name="storefront-assistant", version="0.1.0")
SESSION_HEADER = "mcp-session-id"
# Read timeout for the server's event streams; request replies are bounded by the server timeout.
SSE_READ_TIMEOUT_S = 300.0


def _root_cause(error: BaseException) -> BaseException:
    """First leaf of a (possibly nested) exception group raised by the SDK task groups."""
    while isinstance(error, BaseExceptionGroup) and error.exceptions:
        error = error.exceptions[0]
    return error


def _describe(error: BaseException) -> str:
    cause = _root_cause(error)
    return str(cause) or type(cause).__name__


class MCPToolClient:
    """Tool client for a single HTTP MCP server.

    Args:
        site_context: Values injected into tool arguments.
        cleanup_timeout_s: How long disconnect waits for the session to close.
        transport: Optional httpx transport (tests inject httpx.MockTransport).
    """

    def __init__(
        self,
        site_context: SiteContext | None = None,
        *,
        cleanup_timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.site_context = site_context or SiteContext()
        self.cleanup_timeout_s = cleanup_timeout_s
        self._transport = transport
        self._server: MCPServerConfig | None = None
        self._session: ClientSession | None = None
        self._get_session_id: Callable[[], str | None] | None = None
        self._runner: asyncio.Task[None] | None = None
        self._closing: asyncio.Event | None = None
        self._connection = ServerConnection(server_id="")

    @property
    def server(self) -> MCPServerConfig | None:
        return self._server

    @property
    def connection(self) -> ServerConnection:
        return self._connection

    @property
    def status(self) -> ConnectionStatus:
        return self._connection.status

    @property
    def session_id(self) -> str | None:
        return self._get_session_id() if self._get_session_id is not None else None

    @property
    def is_ready(self) -> bool:
        return self._connection.status == ConnectionStatus.CONNECTED

    async def connect(self, server: MCPServerConfig) -> ServerConnection:
        """Handshake with ``server`` and discover its tools.

        Failures leave the connection in ERROR status with an empty catalog;
        they are not raised.
        """
        if self._runner is not None:
            await self.disconnect()

        self._server = server
        self._connection = ServerConnection(server_id=server.id, status=ConnectionStatus.CONNECTING)
        log.info(MCP_CONNECTING, server_id=server.id, url=server.url)

        ready: asyncio.Future[list[ToolDefinition]] = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._runner = asyncio.create_task(self._run_session(server, ready, self._closing))

        try:
            tools = await ready
        except ToolTransportError as e:
            await self._stop_runner()
            self._connection = ServerConnection(
                server_id=server.id, status=ConnectionStatus.ERROR, error=str(e)
            )
            log.warning(MCP_CONNECTION_FAILED, server_id=server.id, error=str(e))
            return self._connection

        self._connection = ServerConnection(
            server_id=server.id,
            status=ConnectionStatus.CONNECTED,
            last_connected=datetime.now(timezone.utc),
            tools=tools,
        )
        return self._connection

    async def list_tools(self) -> list[ToolDefinition]:
        """Tool catalog discovered at connect time."""
        return list(self._connection.tools)

    async def call_tool(self, call: ToolCall) -> ToolResult:
        """Invoke one tool.

        Business failures, including JSON-RPC errors, come back as
        ``ToolResult(is_error=True)``.

        Raises:
            ConnectionNotReadyError: If not connected.
            ToolTransportError: If the server cannot be reached, the reply is
                unusable or the ambient arguments cannot be resolved.
        """
        session, server, runner = self._session, self._server, self._runner
        if not self.is_ready or session is None or server is None or runner is None:
            raise ConnectionNotReadyError("Tool server connection is not ready")

        try:
            tool_name = strip_tool_prefix(call.name)
        except ValueError as e:
            return ToolResult.error(str(e))

        try:
            arguments = await self.site_context.enrich_arguments(tool_name, call.parsed_arguments())
        except Exception as e:
            raise ToolTransportError(f"Could not resolve context for {tool_name}: {e}") from e

        log.info(TOOL_CALL_STARTED, tool=tool_name, call_id=call.id, server_id=server.id)

        # The session task ends if the transport fails; waiting on it too keeps a
        # lost connection from hanging the call until the read timeout.
        pending = asyncio.ensure_future(session.call_tool(tool_name, arguments))
        done, _ = await asyncio.wait({pending, runner}, return_when=asyncio.FIRST_COMPLETED)
        if pending not in done:
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
            raise ToolTransportError(
                f"tools/call to {server.id} failed: {self._connection.error or 'connection closed'}"
            )

        try:
            reply = pending.result()
        except McpError as e:
            if e.error.code == mcp_types.CONNECTION_CLOSED:
                await asyncio.wait({runner}, timeout=self.cleanup_timeout_s)
                raise ToolTransportError(
                    f"tools/call to {server.id} failed: {self._connection.error or e.error.message}"
                ) from None
            if e.error.code == httpx.codes.REQUEST_TIMEOUT:
                raise ToolTransportError(
                    f"tools/call to {server.id} timed out after {server.timeout_ms}ms"
                ) from None
            result = ToolResult.error(f"Error: {e.error.message}")
        except Exception as e:
            raise ToolTransportError(f"{server.id} returned an unusable tools/call reply: {e}") from e
        else:
            payload = reply.model_dump(by_alias=True, mode="json", exclude_none=True)
            if not reply.content and not reply.isError and reply.structuredContent is not None:
                payload = reply.structuredContent
            try:
                result = normalize_tool_result(payload)
            except ValidationError as e:
                raise ToolTransportError(f"{server.id} returned malformed tool content: {e}") from e

        log.info(TOOL_CALL_COMPLETED, tool=tool_name, call_id=call.id, is_error=result.is_error)
        return result

    async def disconnect(self) -> None:
        """End the server session. Cleanup failures are logged, not raised."""
        server = self._server
        await self._stop_runner()
        self._connection = ServerConnection(
            server_id=server.id if server else "", status=ConnectionStatus.DISCONNECTED
        )
        log.info(MCP_DISCONNECTED, server_id=server.id if server else None)

    async def health_check(self) -> dict[str, str]:
        """Health per configured server id."""
        if self._server is None:
            return {}
        return {self._server.id: "healthy" if self.is_ready else "unhealthy"}

    def _http_client(self, server: MCPServerConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=server.headers,
            timeout=httpx.Timeout(server.timeout_ms / 1000, read=SSE_READ_TIMEOUT_S),
            transport=self._transport,
        )

    async def _run_session(
        self,
        server: MCPServerConfig,
        ready: "asyncio.Future[list[ToolDefinition]]",
        closing: asyncio.Event,
    ) -> None:
        """Hold the SDK session open until ``closing`` is set or the transport fails."""
        try:
            async with self._http_client(server) as http_client:
                async with streamable_http_client(server.url, http_client=http_client) as (
                    read_stream,
                    write_stream,
                    get_session_id,
                ):
                    async with ClientSession(
                        read_stream,
                        write_stream,
                        read_timeout_seconds=timedelta(milliseconds=server.timeout_ms),
                        client_info=CLIENT_INFO,
                    ) as session:
                        await session.initialize()
                        self._get_session_id = get_session_id
                        session_id = get_session_id()
                        if session_id:
                            log.info(MCP_SESSION_INITIALIZED, server_id=server.id, session_id=session_id)
                        else:
                            log.warning(MCP_SESSION_MISSING, server_id=server.id)

                        listing = await session.list_tools()
                        tools = [mcp_tool_to_definition(tool) for tool in listing.tools]
                        log.info(MCP_TOOLS_DISCOVERED, count=len(tools), tools=[tool.name for tool in tools])

                        self._session = session
                        ready.set_result(tools)
                        await closing.wait()
        except Exception as e:
            error = _describe(e)
            if not ready.done():
                ready.set_exception(ToolTransportError(error))
            elif not closing.is_set():
                log.warning("mcp_session_lost", server_id=server.id, error=error)
                self._connection = ServerConnection(
                    server_id=server.id, status=ConnectionStatus.ERROR, error=error
                )
            else:
                log.debug("mcp_session_close_error", server_id=server.id, error=error)
        finally:
            self._session = None
            self._get_session_id = None
            if not ready.done():
                ready.set_exception(ToolTransportError("Tool server session closed during the handshake"))

    async def _stop_runner(self) -> None:
        runner, closing = self._runner, self._closing
        self._runner = None
        self._closing = None
        if runner is None:
            return
        if closing is not None:
            closing.set()

        done, _ = await asyncio.wait({runner}, timeout=self.cleanup_timeout_s)
        if not done:
            log.warning("mcp_session_cleanup_timeout", timeout_s=self.cleanup_timeout_s)
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
