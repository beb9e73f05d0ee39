"""Configuration: environment settings plus the provider/tool YAML file."""

from storefront_assistant.config.assistant_loader import (
    AssistantConfigError,
    load_assistant_file,
    resolve_assistant_config,
)
from storefront_assistant.config.env_loader import Environment, get_environment, load_env_files
from storefront_assistant.config.loader import ConfigLoadError
from storefront_assistant.config.schema import (
    RULE_BASED_PROVIDER_ID,
    AssistantConfig,
    AssistantFileConfig,
    LLMConfig,
    MCPServerConfig,
    ProviderConfig,
)
from storefront_assistant.config.settings import AppConfig, get_settings, load_app_config

__all__ = [
    "AppConfig",
    "get_settings",
    "load_app_config",
    "Environment",
    "get_environment",
    "load_env_files",
    "AssistantConfig",
    "AssistantFileConfig",
    "LLMConfig",
    "MCPServerConfig",
    "ProviderConfig",
    "RULE_BASED_PROVIDER_ID",
    "load_assistant_file",
    "resolve_assistant_config",
    "ConfigLoadError",
    "AssistantConfigError",
]
