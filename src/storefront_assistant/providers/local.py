"""Locally hosted models: Ollama or any OpenAI-compatible server (LM Studio, vLLM)."""

import json
from collections.abc import AsyncIterator

from storefront_assistant.providers.adapters import (
    build_ollama_request,
    build_openai_chat_request,
    parse_ollama_response,
    parse_openai_chat_response,
)
from storefront_assistant.providers.base import ProviderAdapter
from storefront_assistant.providers.openai import iter_sse_deltas
from storefront_assistant.providers.types import Message, ProviderResponse, ToolDefinition

OLLAMA = "ollama"
OPENAI_COMPATIBLE = "openai-compatible"


def detect_api_type(api_url: str) -> str:
    """Guess the server flavour from its URL (LM Studio listens on :1234)."""
    lowered = api_url.lower()
    if "1234" in lowered or "lmstudio" in lowered or lowered.endswith("/v1"):
        return OPENAI_COMPATIBLE
    return OLLAMA


class LocalProvider(ProviderAdapter):
    provider_id = "local"
    display_name = "Local LLM"
    default_api_url = "http://localhost:11434"
    default_model = "llama2"
    default_max_tokens = 2048

    @property
    def api_type(self) -> str:
        return self.config.api_type or detect_api_type(self.api_url)

    @property
    def supports_native_tools(self) -> bool:
        return self.api_type == OPENAI_COMPATIBLE

    def _openai_base(self) -> str:
        base = self.api_url
        return base if base.endswith("/v1") else f"{base}/v1"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _check_reachable(self) -> bool:
        if self.api_type == OPENAI_COMPATIBLE:
            return await self._reachable_get(f"{self._openai_base()}/models", headers=self._headers())
        return await self._reachable_get(f"{self.api_url}/api/tags")

    async def generate_response(
        self, messages: list[Message], tools: list[ToolDefinition] | None = None
    ) -> ProviderResponse:
        if self.api_type == OPENAI_COMPATIBLE:
            request = build_openai_chat_request(
                messages,
                model=self.model,
                persona=self.persona,
                temperature=self.config.temperature,
                max_tokens=self.max_tokens,
                tools=tools,
            )
            data = await self._post_json(
                f"{self._openai_base()}/chat/completions", request.to_payload()
            )
            return parse_openai_chat_response(data, self.provider_id)

        ollama_request = build_ollama_request(
            messages,
            model=self.model,
            persona=self.persona,
            temperature=self.config.temperature,
            max_tokens=self.max_tokens,
            tools=tools,
        )
        data = await self._post_json(f"{self.api_url}/api/generate", ollama_request.to_payload())
        return parse_ollama_response(data, self.provider_id)

    async def stream_response(self, messages: list[Message]) -> AsyncIterator[str]:
        if self.api_type == OPENAI_COMPATIBLE:
            request = build_openai_chat_request(
                messages,
                model=self.model,
                persona=self.persona,
                temperature=self.config.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
            async for line in self._stream_lines(
                f"{self._openai_base()}/chat/completions", request.to_payload()
            ):
                delta = iter_sse_deltas(line)
                if delta is None:
                    return
                if delta:
                    yield delta
            return

        ollama_request = build_ollama_request(
            messages,
            model=self.model,
            persona=self.persona,
            temperature=self.config.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        # Ollama streams one JSON object per line
        async for line in self._stream_lines(
            f"{self.api_url}/api/generate", ollama_request.to_payload()
        ):
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(chunk, dict):
                continue
            if isinstance(chunk.get("response"), str) and chunk["response"]:
                yield chunk["response"]
            if chunk.get("done"):
                return
