"""Common machinery for HTTP-backed LLM providers.

``ProviderAdapter`` owns the httpx plumbing: building clients, classifying
vendor failures into the ProviderError taxonomy and logging model calls.
Concrete adapters only translate messages to and from their vendor format.
"""

import json
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, ClassVar

import httpx

from storefront_assistant.config.schema import ProviderConfig
from storefront_assistant.providers.types import (
    HealthStatus,
    Message,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderRateLimited,
    ProviderResponse,
    ProviderTimeout,
    ProviderUnavailable,
    ToolDefinition,
)
from storefront_assistant.telemetry import (
    MODEL_CALL_COMPLETED,
    MODEL_CALL_ERROR,
    MODEL_CALL_STARTED,
    get_logger,
)

log = get_logger(__name__)

DEFAULT_PERSONA = (
    "You are a helpful, friendly customer service assistant for an online store. "
    "Answer questions about products, orders, shipping and returns. "
    "Be concise and accurate, and never invent order numbers, prices or stock levels."
)


def classify_status(status_code: int, provider: str, detail: str = "") -> ProviderError:
    """Map a non-2xx HTTP status to exactly one ProviderError subclass.

    Args:
        status_code: HTTP status returned by the vendor.
        provider: Provider id, for the error message.
        detail: Optional vendor error text.

    Returns:
        The matching ProviderError instance (not raised).
    """
    suffix = f": {detail}" if detail else ""
    if status_code in (401, 403):
        return ProviderAuthError(
            f"{provider} rejected the credentials ({status_code}){suffix}",
            provider=provider,
            status_code=status_code,
        )
    if status_code == 429:
        return ProviderRateLimited(
            f"{provider} rate limit exceeded{suffix}", provider=provider, status_code=status_code
        )
    return ProviderUnavailable(
        f"{provider} returned HTTP {status_code}{suffix}", provider=provider, status_code=status_code
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))[:200]
    return str(error or "")[:200]


class ProviderAdapter(ABC):
    """Uniform interface over one LLM vendor.

    Subclasses set ``provider_id``, ``display_name`` and the defaults, and
    implement ``_check_reachable`` and ``generate_response``.

    Args:
        config: Connection and sampling settings.
        persona: Fixed persona text prepended to every request.
        check_timeout_s: Timeout for availability checks.
        transport: Optional httpx transport (tests inject httpx.MockTransport).
    """

    provider_id: ClassVar[str]
    display_name: ClassVar[str]
    default_api_url: ClassVar[str]
    default_model: ClassVar[str]
    default_max_tokens: ClassVar[int] = 1000

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        persona: str = DEFAULT_PERSONA,
        check_timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ProviderConfig()
        self.persona = persona
        self.check_timeout_s = check_timeout_s
        self._transport = transport

    def configure(self, config: ProviderConfig) -> None:
        """Replace the provider settings."""
        self.config = config

    @property
    def api_url(self) -> str:
        return (self.config.api_url or self.default_api_url).rstrip("/")

    @property
    def model(self) -> str:
        return self.config.model or self.default_model

    @property
    def max_tokens(self) -> int:
        return self.config.max_tokens or self.default_max_tokens

    @property
    def supports_native_tools(self) -> bool:
        """Whether tool definitions are sent natively rather than as prompt text."""
        return True

    @property
    def is_configured(self) -> bool:
        """Whether enough settings exist to attempt a call."""
        return True

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        timeout = httpx.Timeout(connect=min(10.0, timeout_s), read=timeout_s, write=10.0, pool=10.0)
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def is_available(self) -> bool:
        """Check that the vendor answers. Never raises; any failure reads as unavailable."""
        if not self.is_configured:
            return False
        try:
            return await self._check_reachable()
        except (httpx.HTTPError, ProviderError, ValueError) as e:
            log.debug(
                "availability_check_failed",
                provider=self.provider_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    @abstractmethod
    async def _check_reachable(self) -> bool:
        """Issue the vendor-specific availability request."""

    async def _reachable_get(self, url: str, **kwargs: Any) -> bool:
        async with self._client(self.check_timeout_s) as client:
            response = await client.get(url, **kwargs)
        return response.is_success

    @abstractmethod
    async def generate_response(
        self, messages: list[Message], tools: list[ToolDefinition] | None = None
    ) -> ProviderResponse:
        """Produce one assistant answer.

        Args:
            messages: Conversation, oldest first.
            tools: Tools the model may call.

        Returns:
            Normalized response.

        Raises:
            ProviderError: One of the five concrete kinds.
        """

    async def stream_response(self, messages: list[Message]) -> AsyncIterator[str]:
        """Yield the answer incrementally.

        Adapters without a streaming endpoint yield the whole answer as one chunk.
        """
        response = await self.generate_response(messages)
        yield response["content"]

    async def get_health_status(self) -> HealthStatus:
        """Report provider health for status displays."""
        details: dict[str, Any] = {
            "provider": self.provider_id,
            "model": self.model,
            "api_url": self.api_url,
        }
        if not self.is_configured:
            details["reason"] = "not configured"
            return HealthStatus(status="unknown", details=details)
        started = time.monotonic()
        available = await self.is_available()
        details["latency_ms"] = int((time.monotonic() - started) * 1000)
        return HealthStatus(status="healthy" if available else "unhealthy", details=details)

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON response.

        Raises:
            ProviderError: Classified transport or HTTP failure.
        """
        timeout_s = self.config.timeout_ms / 1000
        start_time = time.monotonic()
        log.info(MODEL_CALL_STARTED, provider=self.provider_id, model=self.model)

        try:
            async with self._client(timeout_s) as client:
                response = await client.post(
                    url, json=payload, headers=headers or self._headers(), params=params
                )
                if not response.is_success:
                    raise classify_status(
                        response.status_code, self.provider_id, _error_detail(response)
                    )
                data = response.json()
        except httpx.TimeoutException:
            error: ProviderError = ProviderTimeout(
                f"{self.provider_id} request timed out after {timeout_s}s", provider=self.provider_id
            )
        except httpx.RequestError as e:
            error = ProviderNetworkError(
                f"Failed to reach {self.provider_id}: {e}", provider=self.provider_id
            )
        except json.JSONDecodeError:
            error = ProviderUnavailable(
                f"{self.provider_id} returned a non-JSON body", provider=self.provider_id
            )
        except ProviderError as e:
            error = e
        else:
            if not isinstance(data, dict):
                error = ProviderUnavailable(
                    f"{self.provider_id} returned an unexpected body", provider=self.provider_id
                )
            else:
                log.info(
                    MODEL_CALL_COMPLETED,
                    provider=self.provider_id,
                    model=self.model,
                    latency_ms=int((time.monotonic() - start_time) * 1000),
                )
                return data

        log.warning(
            MODEL_CALL_ERROR,
            provider=self.provider_id,
            error_kind=error.kind.value,
            status_code=error.status_code,
            error=str(error),
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )
        raise error

    async def _stream_lines(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[str]:
        """POST a streaming request and yield non-empty response lines.

        Raises:
            ProviderError: Classified transport or HTTP failure.
        """
        timeout_s = self.config.timeout_ms / 1000
        try:
            async with self._client(timeout_s) as client:
                async with client.stream(
                    "POST", url, json=payload, headers=headers or self._headers()
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        raise classify_status(
                            response.status_code, self.provider_id, _error_detail(response)
                        )
                    async for line in response.aiter_lines():
                        if line.strip():
                            yield line.strip()
        except httpx.TimeoutException:
            raise ProviderTimeout(
                f"{self.provider_id} stream timed out after {timeout_s}s", provider=self.provider_id
            ) from None
        except httpx.RequestError as e:
            raise ProviderNetworkError(
                f"Failed to reach {self.provider_id}: {e}", provider=self.provider_id
            ) from None
