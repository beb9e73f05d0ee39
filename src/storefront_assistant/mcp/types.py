"""MCP wire types and conversions to the provider-facing tool format."""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from mcp import types as mcp_types
from pydantic import BaseModel, ConfigDict, Field

from storefront_assistant.config.schema import MCPServerConfig
from storefront_assistant.providers.types import ToolDefinition

# Prefix applied to tool names exposed to models.
TOOL_PREFIX = "mcp_"


class ToolClientError(Exception):
    """Base exception for tool client failures."""

    pass


class ConnectionNotReadyError(ToolClientError):
    """A tool call was attempted before the connection was established."""

    pass


class ToolTransportError(ToolClientError):
    """The tool server could not be reached or answered with an unusable reply."""

    pass


class ConnectionStatus(str, Enum):
    """Lifecycle state of a tool server connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ContentPart(BaseModel):
    """One item of a tool result's content list."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = "text"
    text: str | None = None
    data: str | None = None
    mime_type: str | None = Field(default=None, alias="mimeType")
    resource: dict[str, Any] | None = None


class ToolResult(BaseModel):
    """Normalized result of a tools/call request.

    ``is_error`` marks business failures reported by the tool itself; transport
    failures raise ToolTransportError instead.
    """

    model_config = ConfigDict(populate_by_name=True)

    content: list[ContentPart] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[ContentPart(type="text", text=message)], is_error=True)


class ServerConnection(BaseModel):
    """Snapshot of the connection to one tool server."""

    server_id: str
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_connected: datetime | None = None
    error: str | None = None
    tools: list[ToolDefinition] = Field(default_factory=list)


def normalize_tool_result(result: Any) -> ToolResult:
    """Convert a raw tools/call ``result`` into a ToolResult.

    - a string becomes one text part
    - a mapping with a ``content`` list is taken as-is (``isError`` preserved)
    - anything else is JSON-encoded into one text part
    """
    if isinstance(result, str):
        return ToolResult(content=[ContentPart(type="text", text=result)])
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        parts = [
            ContentPart.model_validate(part)
            if isinstance(part, dict)
            else ContentPart(type="text", text=str(part))
            for part in result["content"]
        ]
        return ToolResult(content=parts, is_error=bool(result.get("isError", False)))
    return ToolResult(content=[ContentPart(type="text", text=json.dumps(result, indent=2, default=str))])


def tool_result_text(result: ToolResult) -> str:
    """Concatenate the readable content of a result."""
    pieces = []
    for part in result.content:
        if part.type == "text" and part.text is not None:
            pieces.append(part.text)
        elif part.type == "resource" and part.resource:
            name = part.resource.get("name") or part.resource.get("uri", "unnamed")
            pieces.append(f"Resource: {name}")
        elif part.type == "resource_link":
            extra = part.model_extra or {}
            pieces.append(f"Resource: {extra.get('name') or extra.get('uri', 'unnamed')}")
        elif part.type == "image":
            pieces.append(f"[image: {part.mime_type or 'unknown type'}]")
        elif part.text is not None:
            pieces.append(part.text)
    return "\n".join(pieces)


def format_tool_result(result: ToolResult) -> str:
    """Render a result as the content of a tool message for the model."""
    text = tool_result_text(result)
    if result.is_error:
        return f"Tool Error: {text or 'unknown error'}"
    if not text:
        return "Tool executed successfully (no output)"
    return text


def mcp_tool_to_definition(tool: mcp_types.Tool) -> ToolDefinition:
    """Expose one discovered tool with the ``mcp_`` prefix."""
    # Wire (camelCase) names are stable across SDK releases; attribute names are not.
    wire = tool.model_dump(by_alias=True, exclude_none=True)
    return ToolDefinition(
        name=f"{TOOL_PREFIX}{wire['name']}",
        description=wire.get("description") or "",
        parameters=wire.get("inputSchema") or {"type": "object", "properties": {}},
    )


def strip_tool_prefix(name: str) -> str:
    """Return the server-side tool name.

    Raises:
        ValueError: If ``name`` does not carry the ``mcp_`` prefix.
    """
    if not name.startswith(TOOL_PREFIX) or len(name) == len(TOOL_PREFIX):
        raise ValueError(f"Invalid tool name '{name}': expected '{TOOL_PREFIX}' prefix")
    return name[len(TOOL_PREFIX) :]


__all__ = [
    "MCPServerConfig",
    "TOOL_PREFIX",
    "ToolClientError",
    "ConnectionNotReadyError",
    "ToolTransportError",
    "ConnectionStatus",
    "ContentPart",
    "ToolResult",
    "ServerConnection",
    "normalize_tool_result",
    "tool_result_text",
    "format_tool_result",
    "mcp_tool_to_definition",
    "strip_tool_prefix",
]
