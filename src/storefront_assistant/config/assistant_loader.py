"""Load config/assistant.yaml and apply the environment lock."""

from pathlib import Path

import structlog
from pydantic import ValidationError

from storefront_assistant.config.env_loader import Environment
from storefront_assistant.config.loader import ConfigLoadError, load_yaml_file
from storefront_assistant.config.schema import AssistantConfig, AssistantFileConfig, ProviderConfig
from storefront_assistant.config.settings import AppConfig

log = structlog.get_logger(__name__)

# Environments in which runtime provider configuration is allowed.
_OPEN_ENVIRONMENTS = frozenset({Environment.DEVELOPMENT, Environment.TEST})


class AssistantConfigError(ConfigLoadError):
    """Raised when assistant configuration cannot be loaded or is invalid."""

    pass


def load_assistant_file(config_path: Path) -> AssistantFileConfig:
    """Load and validate the assistant YAML file.

    A missing file yields the default configuration (local provider, no tool servers).

    Args:
        config_path: Path to assistant.yaml.

    Returns:
        Validated AssistantFileConfig.

    Raises:
        AssistantConfigError: If the file cannot be parsed or fails validation.
    """
    if not config_path.exists():
        log.warning("assistant_config_missing", config_path=str(config_path))
        return AssistantFileConfig()

    content = load_yaml_file(config_path, error_class=AssistantConfigError)

    try:
        return AssistantFileConfig.model_validate(content)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"])
            error_messages.append(f"{field_path}: {error['msg']}")
        error_summary = "\n".join(error_messages)
        raise AssistantConfigError(
            f"Assistant configuration validation failed:\n{error_summary}"
        ) from None


def resolve_assistant_config(
    settings: AppConfig, file_config: AssistantFileConfig | None = None
) -> AssistantConfig:
    """Combine settings and the YAML file into the effective configuration.

    In staging and production the configuration is locked: the forced provider
    becomes the primary provider and runtime updates are refused. API keys from
    the environment override keys written in the file.

    Args:
        settings: Application settings.
        file_config: Parsed YAML file. Loaded from ``settings.assistant_config_path`` if None.

    Returns:
        The resolved AssistantConfig.
    """
    if file_config is None:
        file_config = load_assistant_file(settings.assistant_config_path)

    llm = file_config.llm.model_copy(deep=True)

    env_keys = {"openai": settings.openai_api_key, "gemini": settings.gemini_api_key}
    for provider_id, api_key in env_keys.items():
        if not api_key:
            continue
        if provider_id in llm.providers:
            llm.providers[provider_id].api_key = api_key
        else:
            llm.providers[provider_id] = ProviderConfig(api_key=api_key)

    allow_user_configuration = settings.environment in _OPEN_ENVIRONMENTS
    forced_provider = None if allow_user_configuration else llm.forced_provider
    if forced_provider:
        llm.primary_provider = forced_provider

    log.info(
        "assistant_config_resolved",
        environment=settings.environment.value,
        allow_user_configuration=allow_user_configuration,
        primary_provider=llm.primary_provider,
        fallback_provider=llm.fallback_provider,
        mcp_servers=[server.id for server in file_config.mcp_servers],
    )

    return AssistantConfig(
        environment=settings.environment,
        allow_user_configuration=allow_user_configuration,
        forced_provider=forced_provider,
        llm=llm,
        mcp_servers=file_config.mcp_servers,
    )
