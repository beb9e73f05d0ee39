"""Provider-agnostic message, tool and response types plus the error taxonomy."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, NotRequired, TypedDict

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Speaker of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A model's request to invoke a tool.

    Attributes:
        id: Call identifier, echoed back on the matching tool message.
        name: Tool name as exposed to the model.
        arguments: JSON-encoded argument object.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the argument JSON; malformed or non-object payloads become {}."""
        try:
            value = json.loads(self.arguments) if self.arguments else {}
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


@dataclass
class Message:
    """One entry of a conversation history.

    Attributes:
        role: Who produced the message.
        content: Text content (may be empty for assistant tool-call messages).
        tool_calls: Tool requests carried by an assistant message.
        tool_call_id: For tool messages, the id of the call being answered.
        name: For tool messages, the tool name.
        timestamp: Creation time (UTC).
    """

    role: Role
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, name: str, content: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)


class ToolDefinition(BaseModel):
    """A tool the model may call, described with a JSON schema."""

    name: str = Field(..., description="Name exposed to the model")
    description: str = Field(default="", description="What the tool does")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema for the argument object",
    )

    def to_openai_tool(self) -> dict[str, Any]:
        """Render as an OpenAI-style function tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ProviderResponse(TypedDict):
    """Normalized response from any provider.

    Attributes:
        content: Assistant text (may be empty when only tool calls are returned).
        tool_calls: Tool requests, empty for backends without native tool calling.
        model: Model that produced the answer, if reported.
        usage: Token usage, if reported.
        finish_reason: Why generation stopped, if reported.
    """

    content: str
    tool_calls: list[ToolCall]
    model: str | None
    usage: dict[str, Any] | None
    finish_reason: NotRequired[str | None]


class HealthStatus(TypedDict):
    """Result of a provider health check."""

    status: Literal["healthy", "unhealthy", "unknown"]
    details: dict[str, Any]


class ErrorKind(str, Enum):
    """Classification shared by every provider failure."""

    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    NETWORK = "network"
    TIMEOUT = "timeout"


class ProviderError(Exception):
    """Base exception for provider failures.

    Only the five subclasses below are raised; each carries its ErrorKind.
    """

    kind: ErrorKind = ErrorKind.UNAVAILABLE

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Credentials missing, invalid or not authorised (401/403)."""

    kind = ErrorKind.AUTH


class ProviderRateLimited(ProviderError):
    """Vendor rate limit exceeded (429)."""

    kind = ErrorKind.RATE_LIMITED


class ProviderUnavailable(ProviderError):
    """Vendor returned an error status or an unusable body."""

    kind = ErrorKind.UNAVAILABLE


class ProviderNetworkError(ProviderError):
    """The vendor endpoint could not be reached."""

    kind = ErrorKind.NETWORK


class ProviderTimeout(ProviderError):
    """The request timed out."""

    kind = ErrorKind.TIMEOUT
