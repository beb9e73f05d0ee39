"""Wire an orchestrator from settings and the assistant YAML file."""

from storefront_assistant.config.assistant_loader import resolve_assistant_config
from storefront_assistant.config.schema import AssistantConfig
from storefront_assistant.config.settings import AppConfig, get_settings
from storefront_assistant.mcp.client import MCPToolClient
from storefront_assistant.mcp.context import SiteContext
from storefront_assistant.orchestrator.orchestrator import ConversationOrchestrator
from storefront_assistant.orchestrator.session import SessionStore
from storefront_assistant.providers.fallback import RuleBasedResponder
from storefront_assistant.providers.registry import ProviderRegistry, build_providers


def create_orchestrator(
    settings: AppConfig | None = None,
    assistant_config: AssistantConfig | None = None,
) -> ConversationOrchestrator:
    """Build a ConversationOrchestrator (not yet initialized).

    Args:
        settings: Application settings. Defaults to the process singleton.
        assistant_config: Resolved provider/tool configuration. Loaded from
            ``settings.assistant_config_path`` if None.

    Returns:
        Orchestrator ready for ``initialize()`` or ``async with``.
    """
    settings = settings or get_settings()
    assistant_config = assistant_config or resolve_assistant_config(settings)

    registry = ProviderRegistry(
        assistant_config.llm,
        providers=build_providers(
            assistant_config.llm, check_timeout_s=settings.availability_check_timeout_seconds
        ),
        responder=RuleBasedResponder(
            store_name=settings.store_name,
            support_email=settings.support_email,
            support_phone=settings.support_phone,
        ),
        allow_user_configuration=assistant_config.allow_user_configuration,
        cache_ttl_s=settings.availability_cache_ttl_seconds,
    )
    sessions = SessionStore(
        max_history=settings.session_max_history,
        session_timeout_s=settings.session_timeout_seconds,
        cleanup_interval_s=settings.session_cleanup_interval_seconds,
    )

    server = assistant_config.primary_mcp_server
    tool_client = None
    if server is not None:
        tool_client = MCPToolClient(
            SiteContext(
                base_site_id=settings.base_site_id,
                base_site_url=settings.base_site_url,
                access_token=settings.access_token,
                cart_id=settings.cart_id,
            ),
            cleanup_timeout_s=settings.mcp_cleanup_timeout_seconds,
        )

    return ConversationOrchestrator(
        registry,
        sessions,
        tool_client=tool_client,
        mcp_server=server,
        store_name=settings.store_name,
    )
