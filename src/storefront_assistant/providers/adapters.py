"""Vendor wire formats.

Each backend gets a tagged request variant (``kind`` discriminates them) plus a
builder that converts the uniform Message list into it, and a parser that turns
the vendor's JSON body back into a ProviderResponse.
"""

import functools
import json
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from storefront_assistant.providers.types import (
    Message,
    ProviderResponse,
    ProviderUnavailable,
    Role,
    ToolCall,
    ToolDefinition,
)

# Acknowledgement used when persona text has to travel as a user turn.
PERSONA_ACKNOWLEDGEMENT = "Understood. I'm ready to help customers with their storefront questions."

_GEMINI_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

_Parser = Callable[[dict[str, Any], str], ProviderResponse]


def _vendor_body_parser(parser: _Parser) -> _Parser:
    """Report bodies whose fields have unexpected types as ProviderUnavailable."""

    @functools.wraps(parser)
    def wrapper(data: dict[str, Any], provider: str) -> ProviderResponse:
        try:
            return parser(data, provider)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderUnavailable(
                f"{provider} returned a malformed response body: {e}", provider=provider
            ) from e

    return wrapper


@dataclass(frozen=True)
class OpenAIChatRequest:
    """Body for OpenAI-style /chat/completions endpoints."""

    model: str
    messages: list[dict[str, Any]]
    temperature: float
    max_tokens: int | None = None
    tools: list[dict[str, Any]] | None = None
    stream: bool = False
    kind: Literal["openai_chat"] = field(default="openai_chat", init=False)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "stream": self.stream,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if self.tools:
            payload["tools"] = self.tools
            payload["tool_choice"] = "auto"
        return payload


@dataclass(frozen=True)
class GeminiGenerateRequest:
    """Body for Gemini :generateContent."""

    contents: list[dict[str, Any]]
    generation_config: dict[str, Any]
    safety_settings: list[dict[str, str]]
    kind: Literal["gemini_generate"] = field(default="gemini_generate", init=False)

    def to_payload(self) -> dict[str, Any]:
        return {
            "contents": self.contents,
            "generationConfig": self.generation_config,
            "safetySettings": self.safety_settings,
        }


@dataclass(frozen=True)
class OllamaGenerateRequest:
    """Body for Ollama /api/generate."""

    model: str
    prompt: str
    options: dict[str, Any]
    stream: bool = False
    kind: Literal["ollama_generate"] = field(default="ollama_generate", init=False)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("kind")
        return payload


VendorRequest = OpenAIChatRequest | GeminiGenerateRequest | OllamaGenerateRequest


def render_tool_catalog(tools: list[ToolDefinition]) -> str:
    """Describe tools in plain text for backends without native tool calling."""
    lines = [f"- {tool.name}: {tool.description}" for tool in tools]
    return (
        "Available tools:\n"
        + "\n".join(lines)
        + "\n\nNote: tools cannot be invoked directly in this mode. If one would help, "
        "tell the customer which information you need to look it up."
    )


def _openai_message(message: Message) -> dict[str, Any]:
    if message.role == Role.TOOL:
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id,
            "content": message.content,
        }
    if message.role == Role.ASSISTANT and message.tool_calls:
        return {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in message.tool_calls
            ],
        }
    return {"role": message.role.value, "content": message.content}


def build_openai_chat_request(
    messages: list[Message],
    *,
    model: str,
    persona: str,
    temperature: float,
    max_tokens: int | None = None,
    tools: list[ToolDefinition] | None = None,
    stream: bool = False,
) -> OpenAIChatRequest:
    """Build an OpenAI-style request with the persona as the leading system message."""
    wire_messages = [{"role": "system", "content": persona}]
    wire_messages.extend(_openai_message(m) for m in messages)
    return OpenAIChatRequest(
        model=model,
        messages=wire_messages,
        temperature=temperature,
        max_tokens=max_tokens,
        tools=[tool.to_openai_tool() for tool in tools] if tools else None,
        stream=stream,
    )


@_vendor_body_parser
def parse_openai_chat_response(data: dict[str, Any], provider: str) -> ProviderResponse:
    """Extract content and tool calls from an OpenAI-style response body.

    Raises:
        ProviderUnavailable: If the body has no usable choice.
    """
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise ProviderUnavailable("Response contained no choices", provider=provider)

    message = choices[0].get("message") or {}
    tool_calls: list[ToolCall] = []
    for index, raw_call in enumerate(message.get("tool_calls") or []):
        function = raw_call.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        tool_calls.append(
            ToolCall(
                id=raw_call.get("id") or f"call_{index}",
                name=function.get("name", ""),
                arguments=arguments,
            )
        )

    return ProviderResponse(
        content=message.get("content") or "",
        tool_calls=tool_calls,
        model=data.get("model"),
        usage=data.get("usage"),
        finish_reason=choices[0].get("finish_reason"),
    )


def _gemini_turn(role: str, text: str, contents: list[dict[str, Any]]) -> None:
    # Consecutive turns of the same role are merged; Gemini expects alternation.
    if contents and contents[-1]["role"] == role:
        contents[-1]["parts"].append({"text": text})
    else:
        contents.append({"role": role, "parts": [{"text": text}]})


def build_gemini_request(
    messages: list[Message],
    *,
    persona: str,
    temperature: float,
    max_tokens: int | None = None,
    tools: list[ToolDefinition] | None = None,
) -> GeminiGenerateRequest:
    """Build a Gemini request.

    Gemini has no system role, so persona text, system messages and the tool
    catalog travel as a leading user turn followed by a model acknowledgement.
    """
    preamble = [persona]
    preamble.extend(m.content for m in messages if m.role == Role.SYSTEM)
    if tools:
        preamble.append(render_tool_catalog(tools))

    contents: list[dict[str, Any]] = [
        {"role": "user", "parts": [{"text": "\n\n".join(preamble)}]},
        {"role": "model", "parts": [{"text": PERSONA_ACKNOWLEDGEMENT}]},
    ]
    for message in messages:
        if message.role == Role.USER:
            _gemini_turn("user", message.content, contents)
        elif message.role == Role.ASSISTANT:
            text = message.content or "Looking that up."
            _gemini_turn("model", text, contents)
        elif message.role == Role.TOOL:
            _gemini_turn("user", f"[Tool result from {message.name}]\n{message.content}", contents)

    generation_config: dict[str, Any] = {"temperature": temperature, "topK": 10, "topP": 0.8}
    if max_tokens is not None:
        generation_config["maxOutputTokens"] = max_tokens

    return GeminiGenerateRequest(
        contents=contents,
        generation_config=generation_config,
        safety_settings=[
            {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
            for category in _GEMINI_SAFETY_CATEGORIES
        ],
    )


@_vendor_body_parser
def parse_gemini_response(data: dict[str, Any], provider: str) -> ProviderResponse:
    """Join the text parts of the first candidate.

    Raises:
        ProviderUnavailable: If no candidate came back (e.g. blocked prompt).
    """
    candidates = data.get("candidates") or []
    if not candidates:
        reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
        raise ProviderUnavailable(f"Gemini returned no answer: {reason}", provider=provider)

    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    usage = data.get("usageMetadata")
    return ProviderResponse(
        content=text,
        tool_calls=[],
        model=data.get("modelVersion"),
        usage=usage,
        finish_reason=candidates[0].get("finishReason"),
    )


def build_ollama_request(
    messages: list[Message],
    *,
    model: str,
    persona: str,
    temperature: float,
    max_tokens: int | None = None,
    tools: list[ToolDefinition] | None = None,
    stream: bool = False,
) -> OllamaGenerateRequest:
    """Flatten the conversation into a single Ollama prompt."""
    sections = [persona]
    sections.extend(m.content for m in messages if m.role == Role.SYSTEM)
    if tools:
        sections.append(render_tool_catalog(tools))

    transcript = []
    for message in messages:
        if message.role == Role.USER:
            transcript.append(f"Customer: {message.content}")
        elif message.role == Role.ASSISTANT and message.content:
            transcript.append(f"Assistant: {message.content}")
        elif message.role == Role.TOOL:
            transcript.append(f"Tool ({message.name}): {message.content}")
    transcript.append("Assistant:")
    sections.append("\n".join(transcript))

    options: dict[str, Any] = {"temperature": temperature}
    if max_tokens is not None:
        options["num_predict"] = max_tokens

    return OllamaGenerateRequest(
        model=model, prompt="\n\n".join(sections), options=options, stream=stream
    )


@_vendor_body_parser
def parse_ollama_response(data: dict[str, Any], provider: str) -> ProviderResponse:
    """Read the ``response`` field of an Ollama generate body."""
    if "response" not in data:
        raise ProviderUnavailable("Ollama response missing 'response' field", provider=provider)
    usage = None
    if "eval_count" in data:
        usage = {
            "prompt_tokens": data.get("prompt_eval_count"),
            "completion_tokens": data.get("eval_count"),
        }
    return ProviderResponse(
        content=(data.get("response") or "").strip(),
        tool_calls=[],
        model=data.get("model"),
        usage=usage,
        finish_reason=data.get("done_reason"),
    )
