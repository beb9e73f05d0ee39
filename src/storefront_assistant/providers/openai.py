"""OpenAI chat-completions provider."""

import json
from collections.abc import AsyncIterator

from storefront_assistant.providers.adapters import (
    build_openai_chat_request,
    parse_openai_chat_response,
)
from storefront_assistant.providers.base import ProviderAdapter
from storefront_assistant.providers.types import (
    Message,
    ProviderAuthError,
    ProviderResponse,
    ToolDefinition,
)


def iter_sse_deltas(line: str) -> str | None:
    """Extract the content delta from one OpenAI server-sent-event line.

    Returns:
        The delta text, "" for frames without content, or None at ``[DONE]``.
    """
    if not line.startswith("data:"):
        return ""
    data = line[len("data:") :].strip()
    if data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        return ""
    choices = chunk.get("choices") if isinstance(chunk, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


class OpenAIProvider(ProviderAdapter):
    """Provider for api.openai.com (or any endpoint that speaks the same API with a key)."""

    provider_id = "openai"
    display_name = "OpenAI"
    default_api_url = "https://api.openai.com/v1"
    default_model = "gpt-3.5-turbo"
    default_max_tokens = 1000

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    async def _check_reachable(self) -> bool:
        return await self._reachable_get(f"{self.api_url}/models", headers=self._headers())

    async def generate_response(
        self, messages: list[Message], tools: list[ToolDefinition] | None = None
    ) -> ProviderResponse:
        if not self.is_configured:
            raise ProviderAuthError("OpenAI API key not configured", provider=self.provider_id)

        request = build_openai_chat_request(
            messages,
            model=self.model,
            persona=self.persona,
            temperature=self.config.temperature,
            max_tokens=self.max_tokens,
            tools=tools,
        )
        data = await self._post_json(f"{self.api_url}/chat/completions", request.to_payload())
        return parse_openai_chat_response(data, self.provider_id)

    async def stream_response(self, messages: list[Message]) -> AsyncIterator[str]:
        if not self.is_configured:
            raise ProviderAuthError("OpenAI API key not configured", provider=self.provider_id)

        request = build_openai_chat_request(
            messages,
            model=self.model,
            persona=self.persona,
            temperature=self.config.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        async for line in self._stream_lines(
            f"{self.api_url}/chat/completions", request.to_payload()
        ):
            delta = iter_sse_deltas(line)
            if delta is None:
                return
            if delta:
                yield delta
