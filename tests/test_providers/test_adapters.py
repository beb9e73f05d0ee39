"""Tests for vendor request builders and response parsers."""

import json

import pytest

from storefront_assistant.providers.adapters import (
    PERSONA_ACKNOWLEDGEMENT,
    build_gemini_request,
    build_ollama_request,
    build_openai_chat_request,
    parse_gemini_response,
    parse_ollama_response,
    parse_openai_chat_response,
    render_tool_catalog,
)
from storefront_assistant.providers.types import (
    Message,
    ProviderUnavailable,
    ToolCall,
    ToolDefinition,
)

SEARCH_TOOL = ToolDefinition(
    name="mcp_search-products",
    description="Search the catalog",
    parameters={"type": "object", "properties": {"query": {"type": "string"}}},
)


class TestOpenAIChatRequest:
    """Test the OpenAI-style request builder."""

    def test_persona_leads_and_tools_are_native(self) -> None:
        """Persona is the first system message and tools are sent as functions."""
        request = build_openai_chat_request(
            [Message.system("store prompt"), Message.user("find drills")],
            model="gpt-test",
            persona="PERSONA",
            temperature=0.2,
            max_tokens=50,
            tools=[SEARCH_TOOL],
        )
        payload = request.to_payload()

        assert request.kind == "openai_chat"
        assert payload["messages"][0] == {"role": "system", "content": "PERSONA"}
        assert payload["messages"][1] == {"role": "system", "content": "store prompt"}
        assert payload["messages"][2] == {"role": "user", "content": "find drills"}
        assert payload["tools"][0]["function"]["name"] == "mcp_search-products"
        assert payload["tool_choice"] == "auto"
        assert payload["max_tokens"] == 50

    def test_tool_round_trip_messages(self) -> None:
        """Assistant tool calls and tool results keep their ids."""
        call = ToolCall(id="call_1", name="mcp_search-products", arguments='{"query": "saw"}')
        request = build_openai_chat_request(
            [Message.assistant("", [call]), Message.tool("call_1", call.name, "3 results")],
            model="m",
            persona="P",
            temperature=0.7,
        )
        assistant, tool = request.messages[1], request.messages[2]

        assert assistant["content"] is None
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert assistant["tool_calls"][0]["function"]["arguments"] == '{"query": "saw"}'
        assert tool == {"role": "tool", "tool_call_id": "call_1", "content": "3 results"}

    def test_no_tools_omits_tool_choice(self) -> None:
        """Requests without tools carry neither tools nor tool_choice."""
        payload = build_openai_chat_request(
            [Message.user("hi")], model="m", persona="P", temperature=0.7
        ).to_payload()
        assert "tools" not in payload
        assert "tool_choice" not in payload


class TestOpenAIChatResponse:
    """Test parsing of OpenAI-style responses."""

    def test_parses_tool_calls_with_object_arguments(self) -> None:
        """Object arguments are re-encoded as a JSON string."""
        data = {
            "model": "gpt-test",
            "choices": [
                {
                    "message": {
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "call_9",
                                "function": {"name": "mcp_get-cart", "arguments": {"cartId": "c1"}},
                            }
                        ],
                    }
                }
            ],
            "usage": {"prompt_tokens": 3},
        }
        response = parse_openai_chat_response(data, "openai")

        assert response["content"] == ""
        assert response["tool_calls"][0].id == "call_9"
        assert json.loads(response["tool_calls"][0].arguments) == {"cartId": "c1"}
        assert response["usage"] == {"prompt_tokens": 3}

    def test_missing_choices_is_unavailable(self) -> None:
        """A body without choices is an unusable answer."""
        with pytest.raises(ProviderUnavailable):
            parse_openai_chat_response({"choices": []}, "openai")

    @pytest.mark.parametrize(
        "data",
        [
            {"choices": [{"message": "hello"}]},
            {"choices": [{"message": {"content": "hi", "tool_calls": "search"}}]},
            {"choices": [{"message": {"tool_calls": [{"function": "search"}]}}]},
        ],
    )
    def test_malformed_body_is_unavailable(self, data: dict) -> None:
        """Bodies with the wrong shape are reported as unavailable, not crashes."""
        with pytest.raises(ProviderUnavailable, match="malformed"):
            parse_openai_chat_response(data, "openai")


class TestGeminiRequest:
    """Test the Gemini request builder."""

    def test_persona_travels_as_synthetic_exchange(self) -> None:
        """Persona, system prompt and tool catalog open the conversation as a user turn."""
        request = build_gemini_request(
            [Message.system("store prompt"), Message.user("hello")],
            persona="PERSONA",
            temperature=0.5,
            max_tokens=100,
            tools=[SEARCH_TOOL],
        )
        payload = request.to_payload()
        preamble = payload["contents"][0]

        assert request.kind == "gemini_generate"
        assert preamble["role"] == "user"
        assert "PERSONA" in preamble["parts"][0]["text"]
        assert "store prompt" in preamble["parts"][0]["text"]
        assert "mcp_search-products" in preamble["parts"][0]["text"]
        assert payload["contents"][1] == {"role": "model", "parts": [{"text": PERSONA_ACKNOWLEDGEMENT}]}
        assert payload["contents"][2] == {"role": "user", "parts": [{"text": "hello"}]}
        assert payload["generationConfig"] == {
            "temperature": 0.5,
            "topK": 10,
            "topP": 0.8,
            "maxOutputTokens": 100,
        }
        assert "tools" not in payload

    def test_consecutive_user_turns_merge(self) -> None:
        """Adjacent user turns become one turn with several parts."""
        request = build_gemini_request(
            [Message.user("one"), Message.user("two")], persona="P", temperature=0.7
        )
        assert request.contents[2]["parts"] == [{"text": "one"}, {"text": "two"}]
        assert len(request.contents) == 3

    def test_blocked_prompt_is_unavailable(self) -> None:
        """No candidates means no answer."""
        with pytest.raises(ProviderUnavailable, match="SAFETY"):
            parse_gemini_response({"promptFeedback": {"blockReason": "SAFETY"}}, "gemini")

    def test_malformed_candidate_is_unavailable(self) -> None:
        """A candidate that is not an object is an unusable answer."""
        with pytest.raises(ProviderUnavailable, match="malformed"):
            parse_gemini_response({"candidates": ["hello"]}, "gemini")

    def test_joins_text_parts(self) -> None:
        """Text parts of the first candidate are concatenated."""
        data = {
            "candidates": [
                {"content": {"parts": [{"text": "Hel"}, {"text": "lo"}]}, "finishReason": "STOP"}
            ]
        }
        response = parse_gemini_response(data, "gemini")
        assert response["content"] == "Hello"
        assert response["finish_reason"] == "STOP"


class TestOllamaRequest:
    """Test the Ollama prompt builder."""

    def test_transcript_prompt(self) -> None:
        """The conversation is flattened into Customer/Assistant lines."""
        request = build_ollama_request(
            [Message.user("hi"), Message.assistant("hello!"), Message.user("any drills?")],
            model="llama",
            persona="PERSONA",
            temperature=0.3,
            max_tokens=64,
            tools=[SEARCH_TOOL],
        )
        payload = request.to_payload()

        assert request.kind == "ollama_generate"
        assert payload["prompt"].startswith("PERSONA")
        assert "Customer: hi\nAssistant: hello!\nCustomer: any drills?\nAssistant:" in payload["prompt"]
        assert "Available tools:" in payload["prompt"]
        assert payload["options"] == {"temperature": 0.3, "num_predict": 64}
        assert payload["stream"] is False
        assert "kind" not in payload

    def test_parse_requires_response_field(self) -> None:
        """Bodies without 'response' are rejected."""
        with pytest.raises(ProviderUnavailable):
            parse_ollama_response({"model": "llama"}, "local")

    def test_parse_rejects_non_text_response(self) -> None:
        """A non-string 'response' is an unusable answer."""
        with pytest.raises(ProviderUnavailable):
            parse_ollama_response({"response": {"text": "hi"}}, "local")

    def test_parse_strips_and_reports_usage(self) -> None:
        """Whitespace is trimmed and token counts mapped."""
        response = parse_ollama_response(
            {"response": " Sure. ", "prompt_eval_count": 5, "eval_count": 2}, "local"
        )
        assert response["content"] == "Sure."
        assert response["usage"] == {"prompt_tokens": 5, "completion_tokens": 2}


def test_tool_catalog_lists_every_tool() -> None:
    """The plain-text catalog names each tool with its description."""
    catalog = render_tool_catalog([SEARCH_TOOL, ToolDefinition(name="mcp_get-cart")])
    assert "- mcp_search-products: Search the catalog" in catalog
    assert "- mcp_get-cart" in catalog
