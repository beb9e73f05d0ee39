"""MCP tool server access over streamable HTTP."""

from storefront_assistant.mcp.client import SESSION_HEADER, MCPToolClient
from storefront_assistant.mcp.context import SiteContext, is_cart_operation
from storefront_assistant.mcp.types import (
    TOOL_PREFIX,
    ConnectionNotReadyError,
    ConnectionStatus,
    ContentPart,
    MCPServerConfig,
    ServerConnection,
    ToolClientError,
    ToolResult,
    ToolTransportError,
    format_tool_result,
    mcp_tool_to_definition,
    normalize_tool_result,
    strip_tool_prefix,
    tool_result_text,
)

__all__ = [
    "MCPToolClient",
    "SESSION_HEADER",
    "SiteContext",
    "is_cart_operation",
    "MCPServerConfig",
    "TOOL_PREFIX",
    "ConnectionNotReadyError",
    "ConnectionStatus",
    "ContentPart",
    "ServerConnection",
    "ToolClientError",
    "ToolResult",
    "ToolTransportError",
    "format_tool_result",
    "mcp_tool_to_definition",
    "normalize_tool_result",
    "strip_tool_prefix",
    "tool_result_text",
]
