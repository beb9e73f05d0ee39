"""Provider selection, availability caching and failover.

The registry owns the adapters and the identity of the active provider. A
generation request goes to the active provider. If that fails it goes once to
the configured fallback, and if that fails too the rule-based responder
answers. Availability checks are cached for a TTL, and concurrent checks of the
same provider share one in-flight request.
"""

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from storefront_assistant.config.schema import RULE_BASED_PROVIDER_ID, LLMConfig, ProviderConfig
from storefront_assistant.providers.base import DEFAULT_PERSONA, ProviderAdapter
from storefront_assistant.providers.fallback import RULE_BASED_DISPLAY_NAME, RuleBasedResponder
from storefront_assistant.providers.gemini import GeminiProvider
from storefront_assistant.providers.local import LocalProvider
from storefront_assistant.providers.openai import OpenAIProvider
from storefront_assistant.providers.types import (
    ErrorKind,
    HealthStatus,
    Message,
    ProviderError,
    ProviderResponse,
    ProviderUnavailable,
    Role,
    ToolDefinition,
)
from storefront_assistant.telemetry import (
    AVAILABILITY_CHECKED,
    PROVIDER_FAILOVER,
    PROVIDER_SELECTED,
    PROVIDER_SWITCHED,
    get_logger,
)

log = get_logger(__name__)

PROVIDER_CLASSES: dict[str, type[ProviderAdapter]] = {
    LocalProvider.provider_id: LocalProvider,
    OpenAIProvider.provider_id: OpenAIProvider,
    GeminiProvider.provider_id: GeminiProvider,
}

_UPDATABLE_FIELDS = frozenset({"primary_provider", "fallback_provider", "enable_fallback", "providers"})


class ConfigurationLockedError(Exception):
    """Raised when runtime provider configuration is attempted in a locked environment."""

    pass


@dataclass
class GenerationResult:
    """Outcome of one generation request.

    Attributes:
        response: The normalized answer.
        provider_id: Provider that actually answered.
        degraded: True when the answer came from a fallback or the rule-based responder.
        error_kind: Classification of the failure that caused degradation, if any.
    """

    response: ProviderResponse
    provider_id: str
    degraded: bool = False
    error_kind: ErrorKind | None = None


@dataclass
class _CacheEntry:
    available: bool
    checked_at: float


def build_providers(
    llm_config: LLMConfig,
    *,
    persona: str = DEFAULT_PERSONA,
    check_timeout_s: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, ProviderAdapter]:
    """Instantiate every known adapter with its configured settings."""
    return {
        provider_id: cls(
            llm_config.providers.get(provider_id, ProviderConfig()),
            persona=persona,
            check_timeout_s=check_timeout_s,
            transport=transport,
        )
        for provider_id, cls in PROVIDER_CLASSES.items()
    }


def _last_user_utterance(messages: list[Message]) -> str:
    for message in reversed(messages):
        if message.role == Role.USER:
            return message.content
    return ""


class ProviderRegistry:
    """Chooses and calls LLM providers.

    Args:
        llm_config: Selection policy and per-provider settings.
        providers: Adapters by id. Built from ``llm_config`` if None.
        responder: Rule-based responder used as the last resort.
        allow_user_configuration: Whether ``update_config`` is permitted.
        cache_ttl_s: Lifetime of a cached availability result.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        llm_config: LLMConfig,
        *,
        providers: Mapping[str, ProviderAdapter] | None = None,
        responder: RuleBasedResponder | None = None,
        allow_user_configuration: bool = True,
        cache_ttl_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = llm_config
        self._providers: dict[str, ProviderAdapter] = dict(
            providers if providers is not None else build_providers(llm_config)
        )
        self._responder = responder or RuleBasedResponder()
        self._allow_user_configuration = allow_user_configuration
        self._cache_ttl_s = cache_ttl_s
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future[bool]] = {}
        self._current = RULE_BASED_PROVIDER_ID

    @property
    def config(self) -> LLMConfig:
        return self._config

    @property
    def current_provider_id(self) -> str:
        return self._current

    @property
    def current_provider_name(self) -> str:
        if self._current == RULE_BASED_PROVIDER_ID:
            return RULE_BASED_DISPLAY_NAME
        adapter = self._providers.get(self._current)
        return adapter.display_name if adapter else "Unknown Provider"

    def get_provider(self, provider_id: str) -> ProviderAdapter | None:
        return self._providers.get(provider_id)

    def list_providers(self) -> list[str]:
        """Ids of all selectable providers, rule-based responder last."""
        return [*self._providers, RULE_BASED_PROVIDER_ID]

    async def initialize(self) -> str:
        """Select the starting provider.

        Primary if available, else the fallback provider if enabled and
        available, else the rule-based responder.

        Returns:
            Id of the selected provider.
        """
        primary = self._config.primary_provider
        fallback = self._config.fallback_provider

        if primary in self._providers and await self.check_availability(primary):
            selected = primary
        elif (
            self._config.enable_fallback
            and fallback in self._providers
            and await self.check_availability(fallback)
        ):
            selected = fallback
        else:
            selected = RULE_BASED_PROVIDER_ID

        self._current = selected
        log.info(PROVIDER_SELECTED, provider=selected, primary=primary, fallback=fallback)
        return selected

    async def check_availability(self, provider_id: str) -> bool:
        """Availability of a provider, served from cache while fresh.

        Concurrent callers for the same provider await a single check.
        """
        if provider_id == RULE_BASED_PROVIDER_ID:
            return True
        if provider_id not in self._providers:
            return False

        entry = self._cache.get(provider_id)
        if entry is not None and self._clock() - entry.checked_at < self._cache_ttl_s:
            return entry.available

        pending = self._inflight.get(provider_id)
        if pending is None:
            pending = asyncio.ensure_future(self._check_reachable(provider_id))
            self._inflight[provider_id] = pending
        # Shielded so one cancelled waiter does not cancel the check for the others
        return await asyncio.shield(pending)

    async def _check_reachable(self, provider_id: str) -> bool:
        try:
            available = await self._providers[provider_id].is_available()
            self._cache[provider_id] = _CacheEntry(available=available, checked_at=self._clock())
            log.info(AVAILABILITY_CHECKED, provider=provider_id, available=available)
            return available
        finally:
            self._inflight.pop(provider_id, None)

    def clear_availability_cache(self, provider_id: str | None = None) -> None:
        """Forget cached availability results for one provider, or for all."""
        if provider_id is None:
            self._cache.clear()
        else:
            self._cache.pop(provider_id, None)

    async def switch_provider(self, provider_id: str) -> bool:
        """Make ``provider_id`` active if it is available.

        The active provider changes in a single assignment after the check, so
        a failed switch leaves the previous provider in place.

        Returns:
            True if the switch happened.
        """
        if provider_id != RULE_BASED_PROVIDER_ID:
            if provider_id not in self._providers:
                log.warning("provider_unknown", provider=provider_id)
                return False
            if not await self.check_availability(provider_id):
                log.warning("provider_switch_rejected", provider=provider_id, reason="unavailable")
                return False

        previous, self._current = self._current, provider_id
        log.info(PROVIDER_SWITCHED, previous=previous, provider=provider_id)
        return True

    async def update_config(self, **changes: Any) -> bool:
        """Merge runtime configuration changes.

        Accepts ``primary_provider``, ``fallback_provider``, ``enable_fallback`` and
        ``providers`` (a mapping of provider id to partial ProviderConfig fields).
        Changing ``primary_provider`` also attempts a switch to it.

        Returns:
            True, or the result of the switch when ``primary_provider`` changed.

        Raises:
            ConfigurationLockedError: If user configuration is not allowed.
            ValueError: For unknown fields.
        """
        if not self._allow_user_configuration:
            raise ConfigurationLockedError("Provider configuration is locked in this environment")

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown configuration fields: {sorted(unknown)}")

        provider_changes: dict[str, dict[str, Any]] = changes.pop("providers", None) or {}
        merged_providers = dict(self._config.providers)
        for provider_id, partial in provider_changes.items():
            adapter = self._providers.get(provider_id)
            if adapter is not None:
                current = adapter.config
            else:
                current = merged_providers.get(provider_id, ProviderConfig())
            updated = ProviderConfig.model_validate({**current.model_dump(), **partial})
            merged_providers[provider_id] = updated
            if adapter is not None:
                adapter.configure(updated)
            self.clear_availability_cache(provider_id)

        self._config = self._config.model_copy(update={**changes, "providers": merged_providers})
        log.info(
            "provider_config_updated", fields=sorted(changes), providers=sorted(provider_changes)
        )

        if "primary_provider" in changes:
            return await self.switch_provider(changes["primary_provider"])
        return True

    async def get_provider_status(self) -> dict[str, Any]:
        """Health of every adapter plus the active provider."""
        statuses: dict[str, HealthStatus] = {}
        for provider_id, adapter in self._providers.items():
            statuses[provider_id] = await adapter.get_health_status()
        return {
            "current_provider": self._current,
            "current_provider_name": self.current_provider_name,
            "providers": statuses,
        }

    def _rule_based(self, messages: list[Message], error: ProviderError | None) -> ProviderResponse:
        content = self._responder.respond(
            _last_user_utterance(messages), error=str(error) if error is not None else None
        )
        return ProviderResponse(content=content, tool_calls=[], model=None, usage=None)

    async def _call(
        self,
        provider_id: str,
        adapter: ProviderAdapter,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
    ) -> ProviderResponse:
        """Call one adapter; failures outside the error taxonomy are reported as unavailable."""
        try:
            return await adapter.generate_response(messages, tools)
        except ProviderError:
            raise
        except Exception as e:
            log.error(
                "provider_unexpected_error", provider=provider_id, error=str(e), exc_info=True
            )
            raise ProviderUnavailable(
                f"{provider_id} failed unexpectedly: {e}", provider=provider_id
            ) from e

    async def generate(
        self, messages: list[Message], tools: list[ToolDefinition] | None = None
    ) -> GenerationResult:
        """Answer with the active provider, failing over as configured.

        Never raises for provider failures.
        """
        current = self._current
        adapter = self._providers.get(current)
        if adapter is None:
            return GenerationResult(
                response=self._rule_based(messages, None),
                provider_id=RULE_BASED_PROVIDER_ID,
                degraded=True,
            )

        try:
            response = await self._call(current, adapter, messages, tools)
            return GenerationResult(response=response, provider_id=current)
        except ProviderError as e:
            first_error = e

        fallback = self._config.fallback_provider
        log.warning(
            PROVIDER_FAILOVER,
            provider=current,
            fallback=fallback if self._config.enable_fallback else None,
            error_kind=first_error.kind.value,
        )

        fallback_adapter = self._providers.get(fallback)
        if self._config.enable_fallback and fallback != current and fallback_adapter is not None:
            try:
                response = await self._call(fallback, fallback_adapter, messages, tools)
                return GenerationResult(
                    response=response,
                    provider_id=fallback,
                    degraded=True,
                    error_kind=first_error.kind,
                )
            except ProviderError as e:
                log.warning(
                    "fallback_provider_failed", provider=fallback, error_kind=e.kind.value
                )

        return GenerationResult(
            response=self._rule_based(messages, first_error),
            provider_id=RULE_BASED_PROVIDER_ID,
            degraded=True,
            error_kind=first_error.kind,
        )
