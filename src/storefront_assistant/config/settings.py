"""Application configuration settings.

This module provides the AppConfig class and settings singleton.
"""

from pathlib import Path

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storefront_assistant.config.env_loader import Environment, get_environment, load_env_files
from storefront_assistant.config.validators import (
    resolve_path,
    validate_log_format,
    validate_log_level,
)

log = structlog.get_logger(__name__)


class AppConfig(BaseSettings):
    """Unified application configuration.

    Values come from ASSISTANT_* environment variables (after .env loading) and
    defaults. Provider and tool-server definitions live in the YAML file at
    ``assistant_config_path``.
    """

    model_config = SettingsConfigDict(
        # .env files are loaded manually via env_loader to honour priority order
        env_prefix="ASSISTANT_",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: Environment = Field(
        default_factory=get_environment, description="Current environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # Application
    project_name: str = Field(default="Storefront Assistant", description="Project name")
    version: str = Field(default="0.1.0", description="Application version")

    # Telemetry
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Console log format (json or console)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        return validate_log_level(v)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        return validate_log_format(v)

    @field_validator("assistant_config_path", mode="before")
    @classmethod
    def resolve_paths(cls, v: Path | str) -> Path:
        """Resolve relative paths to absolute."""
        return resolve_path(v)

    # Provider / tool configuration file
    assistant_config_path: Path = Field(
        default=Path("config/assistant.yaml"),
        description="YAML file with provider and MCP server definitions",
    )

    # Provider credentials (override values from the YAML file)
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    gemini_api_key: str | None = Field(default=None, description="Gemini API key")

    # Provider registry
    availability_cache_ttl_seconds: float = Field(
        default=30.0, gt=0, description="How long a provider availability check stays valid"
    )
    availability_check_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for a single availability check"
    )

    # Sessions
    session_max_history: int = Field(
        default=20, ge=2, description="Maximum messages kept per session history"
    )
    session_timeout_seconds: float = Field(
        default=1800.0, gt=0, description="Idle time after which a session is evicted"
    )
    session_cleanup_interval_seconds: float = Field(
        default=300.0, gt=0, description="Interval between idle-session sweeps"
    )

    # MCP
    mcp_cleanup_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for the session DELETE on disconnect"
    )

    # Storefront context
    store_name: str = Field(default="Commerce Storefront", description="Store name used in prompts")
    support_email: str = Field(default="support@example.com", description="Support e-mail")
    support_phone: str = Field(default="1-800-555-0100", description="Support phone number")
    base_site_id: str | None = Field(default=None, description="Current base site identifier")
    base_site_url: str | None = Field(default=None, description="Current base site URL")
    access_token: str | None = Field(default=None, description="Customer access token")
    cart_id: str | None = Field(default=None, description="Active cart identifier")


_settings: AppConfig | None = None


def load_app_config() -> AppConfig:
    """Load and validate application configuration.

    This function:
    1. Loads .env files in priority order (via env_loader)
    2. Creates AppConfig instance (reads from environment variables)
    3. Validates all values using Pydantic

    Returns:
        Validated AppConfig instance.

    Raises:
        ValidationError: If configuration validation fails.
    """
    log.info("loading_app_config", environment=get_environment().value)

    load_env_files()

    try:
        config = AppConfig()
    except Exception as e:
        log.error("app_config_load_failed", error=str(e), error_type=type(e).__name__)
        raise

    log.info(
        "app_config_loaded",
        environment=config.environment.value,
        debug=config.debug,
        log_level=config.log_level,
    )
    return config


def get_settings() -> AppConfig:
    """Get the application settings singleton.

    Returns:
        AppConfig instance (singleton pattern).
    """
    global _settings
    if _settings is None:
        _settings = load_app_config()
    return _settings
