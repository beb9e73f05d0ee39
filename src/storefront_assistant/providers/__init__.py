"""LLM provider adapters behind one interface, plus selection and failover."""

from storefront_assistant.providers.base import DEFAULT_PERSONA, ProviderAdapter, classify_status
from storefront_assistant.providers.fallback import RULE_BASED_DISPLAY_NAME, RuleBasedResponder
from storefront_assistant.providers.gemini import GeminiProvider
from storefront_assistant.providers.local import LocalProvider
from storefront_assistant.providers.openai import OpenAIProvider
from storefront_assistant.providers.registry import (
    PROVIDER_CLASSES,
    ConfigurationLockedError,
    GenerationResult,
    ProviderRegistry,
    build_providers,
)
from storefront_assistant.providers.types import (
    ErrorKind,
    HealthStatus,
    Message,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderResponse,
    ProviderTimeout,
    ProviderUnavailable,
    Role,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    # Types
    "Message",
    "Role",
    "ToolCall",
    "ToolDefinition",
    "ProviderResponse",
    "HealthStatus",
    # Errors
    "ErrorKind",
    "ProviderError",
    "ProviderAuthError",
    "ProviderRateLimited",
    "ProviderUnavailable",
    "ProviderNetworkError",
    "ProviderTimeout",
    "ConfigurationLockedError",
    # Adapters
    "DEFAULT_PERSONA",
    "ProviderAdapter",
    "classify_status",
    "OpenAIProvider",
    "GeminiProvider",
    "LocalProvider",
    "RuleBasedResponder",
    "RULE_BASED_DISPLAY_NAME",
    # Registry
    "PROVIDER_CLASSES",
    "ProviderRegistry",
    "GenerationResult",
    "build_providers",
]
