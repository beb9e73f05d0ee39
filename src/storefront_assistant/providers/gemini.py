"""Google Gemini generateContent provider.

Gemini receives tools as a prompt-side catalog, so ``tool_calls`` is always
empty in its responses.
"""

from storefront_assistant.providers.adapters import build_gemini_request, parse_gemini_response
from storefront_assistant.providers.base import ProviderAdapter
from storefront_assistant.providers.types import (
    Message,
    ProviderAuthError,
    ProviderResponse,
    ToolDefinition,
)


class GeminiProvider(ProviderAdapter):
    provider_id = "gemini"
    display_name = "Google Gemini"
    default_api_url = "https://generativelanguage.googleapis.com/v1beta"
    default_model = "gemini-pro"
    default_max_tokens = 1000

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    @property
    def supports_native_tools(self) -> bool:
        return False

    def _params(self) -> dict[str, str]:
        return {"key": self.config.api_key or ""}

    async def _check_reachable(self) -> bool:
        return await self._reachable_get(f"{self.api_url}/models", params=self._params())

    async def generate_response(
        self, messages: list[Message], tools: list[ToolDefinition] | None = None
    ) -> ProviderResponse:
        if not self.is_configured:
            raise ProviderAuthError("Gemini API key not configured", provider=self.provider_id)

        request = build_gemini_request(
            messages,
            persona=self.persona,
            temperature=self.config.temperature,
            max_tokens=self.max_tokens,
            tools=tools,
        )
        data = await self._post_json(
            f"{self.api_url}/models/{self.model}:generateContent",
            request.to_payload(),
            params=self._params(),
        )
        return parse_gemini_response(data, self.provider_id)
