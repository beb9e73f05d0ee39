"""Pydantic schema for config/assistant.yaml.

The file declares the LLM providers and the MCP tool servers:

    llm:
      primary_provider: local
      fallback_provider: fallback
      enable_fallback: true
      forced_provider: local
      providers:
        local: {api_url: "http://localhost:1234", model: "llama-3.1-8b"}
    mcp_servers:
      - id: commerce-tools
        name: Commerce tools
        url: http://localhost:3001/mcp
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront_assistant.config.env_loader import Environment
from storefront_assistant.config.validators import validate_base_url

# Provider id served by the built-in keyword responder.
RULE_BASED_PROVIDER_ID = "fallback"


class ProviderConfig(BaseModel):
    """Connection and sampling settings for one LLM provider."""

    model_config = ConfigDict(extra="forbid")

    api_key: str | None = None
    api_url: str | None = None
    model: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    timeout_ms: int = Field(default=30_000, ge=1)
    api_type: Literal["ollama", "openai-compatible"] | None = None

    @field_validator("api_url")
    @classmethod
    def _check_url(cls, v: str | None) -> str | None:
        return validate_base_url(v) if v else v


class LLMConfig(BaseModel):
    """Provider selection policy plus per-provider settings."""

    model_config = ConfigDict(extra="forbid")

    primary_provider: str = "local"
    fallback_provider: str = RULE_BASED_PROVIDER_ID
    enable_fallback: bool = True
    forced_provider: str | None = Field(
        default="local",
        description="Provider pinned when user configuration is locked",
    )
    providers: dict[str, ProviderConfig] = Field(default_factory=dict)


class MCPServerConfig(BaseModel):
    """One MCP tool server reachable over HTTP."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    description: str = ""
    type: Literal["http"] = "http"
    enabled: bool = True
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = Field(default=30_000, ge=1)

    @field_validator("url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        return validate_base_url(v)


class AssistantFileConfig(BaseModel):
    """Top-level shape of assistant.yaml."""

    model_config = ConfigDict(extra="forbid")

    llm: LLMConfig = Field(default_factory=LLMConfig)
    mcp_servers: list[MCPServerConfig] = Field(default_factory=list)


class AssistantConfig(BaseModel):
    """Configuration after the environment lock has been applied.

    ``llm.primary_provider`` already reflects ``forced_provider`` when the
    configuration is locked.
    """

    environment: Environment
    allow_user_configuration: bool
    forced_provider: str | None
    llm: LLMConfig
    mcp_servers: list[MCPServerConfig]

    @property
    def primary_mcp_server(self) -> MCPServerConfig | None:
        """First enabled MCP server, if any."""
        return next((server for server in self.mcp_servers if server.enabled), None)
