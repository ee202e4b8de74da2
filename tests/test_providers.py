"""
Unit tests for provider adapters.

Every adapter runs against an httpx.MockTransport, so the wire format and
the error mapping are exercised without network access.
"""

import json

import httpx
import pytest

from ai_gateway.core.errors import ErrorKind, GatewayError
from ai_gateway.core.types import ProviderConfig, ProviderIdentity, Request
from ai_gateway.providers import (
    ClaudeAdapter,
    CustomAdapter,
    DeepSeekAdapter,
    GeminiAdapter,
    MistralAdapter,
    OpenAIAdapter,
    default_adapters,
)
from ai_gateway.providers.custom_provider import (
    KeyedFieldShape,
    OpenAIShape,
    PlainStringShape,
    RawFallbackShape,
    parse_custom_payload,
)

CUSTOM_ENDPOINT = "https://ai.example.com/v1/generate"


def openai_completion(content="Hello there", model="gpt-4", usage=True):
    body = {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
    }
    if usage:
        body["usage"] = {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}
    return body


CLAUDE_MESSAGE = {
    "id": "msg_01",
    "type": "message",
    "role": "assistant",
    "model": "claude-3-sonnet-20240229",
    "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "there"}],
    "stop_reason": "end_turn",
    "usage": {"input_tokens": 20, "output_tokens": 4},
}

GEMINI_RESULT = {
    "candidates": [{
        "content": {"role": "model", "parts": [{"text": "Hello there"}]},
        "finishReason": "STOP",
        "safetyRatings": [],
    }],
}

# provider -> (adapter class, success body)
ADAPTER_CASES = {
    ProviderIdentity.OPENAI: (OpenAIAdapter, openai_completion()),
    ProviderIdentity.DEEPSEEK: (DeepSeekAdapter, openai_completion(model="deepseek-chat")),
    ProviderIdentity.MISTRAL: (MistralAdapter, openai_completion(model="mistral-large-latest")),
    ProviderIdentity.CLAUDE: (ClaudeAdapter, CLAUDE_MESSAGE),
    ProviderIdentity.GEMINI: (GeminiAdapter, GEMINI_RESULT),
    ProviderIdentity.CUSTOM: (CustomAdapter, openai_completion(model="local-llama")),
}


def make_config(provider, **kwargs):
    defaults = dict(
        provider=provider,
        api_key="test-api-key-0123456789abcdef",
        custom_endpoint=CUSTOM_ENDPOINT if provider == ProviderIdentity.CUSTOM else None,
    )
    defaults.update(kwargs)
    return ProviderConfig(**defaults)


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, status=200, body=None, content=None, exc=None):
        self.status = status
        self.body = body
        self.content = content
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc(f"simulated {self.exc.__name__}", request=request)
        if self.content is not None:
            return httpx.Response(self.status, content=self.content, headers={"content-type": "text/plain"})
        return httpx.Response(self.status, json=self.body)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


async def run_adapter(adapter_cls, recorder, request=None, config=None, provider=None):
    provider = provider or adapter_cls.provider
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        adapter = adapter_cls(client)
        return await adapter.generate_response(
            request or Request(prompt="Say hello", system_prompt="Be brief"),
            config or make_config(provider),
        )


class TestRegistry:
    """Test the built-in adapter registry."""

    def test_all_providers_registered(self):
        adapters = default_adapters()
        assert set(adapters) == set(ProviderIdentity) - {ProviderIdentity.NONE}
        for identity, adapter in adapters.items():
            assert adapter.provider == identity

    @pytest.mark.parametrize("provider", list(ADAPTER_CASES))
    def test_capabilities_have_a_default_model(self, provider):
        adapter_cls = ADAPTER_CASES[provider][0]
        capabilities = adapter_cls().get_capabilities()
        assert capabilities.provider == provider
        assert capabilities.default_model is not None
        assert capabilities.default_model.id == adapter_cls.default_model
        assert capabilities.to_dict()["provider"] == provider.value


class TestErrorMapping:
    """Test the uniform non-2xx and transport error conventions."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", list(ADAPTER_CASES))
    @pytest.mark.parametrize("status,retryable", [(429, True), (500, True), (503, True), (400, False), (401, False)])
    async def test_status_codes(self, provider, status, retryable):
        adapter_cls = ADAPTER_CASES[provider][0]
        recorder = Recorder(status=status, body={"error": {"message": f"upstream said {status}"}})

        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(adapter_cls, recorder)

        error = exc_info.value
        assert error.provider == provider
        assert error.code == f"{provider.error_prefix}_{status}"
        assert error.retryable is retryable
        assert error.kind == ErrorKind.UPSTREAM_HTTP
        assert error.message == f"upstream said {status}"
        assert error.details["status"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", list(ADAPTER_CASES))
    async def test_default_message_without_error_body(self, provider):
        adapter_cls = ADAPTER_CASES[provider][0]
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(adapter_cls, Recorder(status=502, body={}))
        assert exc_info.value.message.endswith("API error: 502")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", list(ADAPTER_CASES))
    async def test_connection_failure(self, provider):
        adapter_cls = ADAPTER_CASES[provider][0]
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(adapter_cls, Recorder(exc=httpx.ConnectError))
        assert exc_info.value.code == f"{provider.error_prefix}_REQUEST_FAILED"
        assert exc_info.value.provider == provider
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", list(ADAPTER_CASES))
    async def test_transport_timeout_is_retryable(self, provider):
        adapter_cls = ADAPTER_CASES[provider][0]
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(adapter_cls, Recorder(exc=httpx.ReadTimeout))
        assert exc_info.value.code == f"{provider.error_prefix}_TIMEOUT"
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_secret_in_upstream_message_is_redacted(self):
        recorder = Recorder(status=401, body={"error": {"message": "Incorrect API key provided: sk-live-abcdef123456"}})
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(ClaudeAdapter, recorder)
        assert "abcdef123456" not in exc_info.value.message


class TestSuccessfulResponses:
    """Test response normalization per provider."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider", list(ADAPTER_CASES))
    async def test_token_total_invariant(self, provider):
        adapter_cls, body = ADAPTER_CASES[provider]
        response = await run_adapter(adapter_cls, Recorder(body=body))
        tokens = response.tokens_used
        assert tokens.total_tokens == tokens.prompt_tokens + tokens.completion_tokens
        assert response.provider == provider

    @pytest.mark.asyncio
    async def test_openai_request_and_response(self):
        recorder = Recorder(body=openai_completion())
        response = await run_adapter(
            OpenAIAdapter,
            recorder,
            request=Request(prompt="Say hello", system_prompt="Be brief", temperature=0.2),
            config=make_config(ProviderIdentity.OPENAI, max_tokens=512),
        )

        sent = recorder.last_json
        assert str(recorder.requests[-1].url) == "https://api.openai.com/v1/chat/completions"
        assert recorder.requests[-1].headers["authorization"] == "Bearer test-api-key-0123456789abcdef"
        assert sent["model"] == "gpt-4"
        assert sent["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Say hello"},
        ]
        assert sent["temperature"] == 0.2
        assert sent["max_tokens"] == 512

        assert response.content == "Hello there"
        assert response.tokens_used.prompt_tokens == 12
        assert response.tokens_used.completion_tokens == 3
        assert response.metadata["token_count_source"] == "exact"
        assert response.finish_reason == "stop"

    @pytest.mark.asyncio
    async def test_openai_organization_header(self):
        recorder = Recorder(body=openai_completion())
        await run_adapter(
            OpenAIAdapter,
            recorder,
            config=make_config(ProviderIdentity.OPENAI, provider_settings={"organization": "org-42"}),
        )
        assert recorder.requests[-1].headers["openai-organization"] == "org-42"

    @pytest.mark.asyncio
    async def test_openai_missing_usage_is_estimated(self):
        response = await run_adapter(OpenAIAdapter, Recorder(body=openai_completion(usage=False)))
        assert response.tokens_used.estimated is True
        assert response.metadata["token_count_source"] == "estimated"

    @pytest.mark.asyncio
    async def test_deepseek_base_url(self):
        recorder = Recorder(body=openai_completion(model="deepseek-chat"))
        await run_adapter(DeepSeekAdapter, recorder)
        assert str(recorder.requests[-1].url) == "https://api.deepseek.com/v1/chat/completions"
        assert recorder.last_json["model"] == "deepseek-chat"

    @pytest.mark.asyncio
    async def test_mistral_endpoint_override(self):
        recorder = Recorder(body=openai_completion(model="mistral-small-latest"))
        await run_adapter(
            MistralAdapter,
            recorder,
            config=make_config(
                ProviderIdentity.MISTRAL,
                model_name="mistral-small-latest",
                provider_settings={"endpoint": "https://mistral.internal.example.com/v1"},
            ),
        )
        assert str(recorder.requests[-1].url) == "https://mistral.internal.example.com/v1/chat/completions"
        assert recorder.last_json["model"] == "mistral-small-latest"

    @pytest.mark.asyncio
    async def test_claude_wire_format(self):
        recorder = Recorder(body=CLAUDE_MESSAGE)
        response = await run_adapter(ClaudeAdapter, recorder)

        request = recorder.requests[-1]
        sent = recorder.last_json
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "test-api-key-0123456789abcdef"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert sent["system"] == "Be brief"
        assert sent["messages"] == [{"role": "user", "content": "Say hello"}]
        assert sent["max_tokens"] == 2000
        assert sent["temperature"] == 0.7

        assert response.content == "Hello there"
        assert response.tokens_used.prompt_tokens == 20
        assert response.tokens_used.completion_tokens == 4
        assert response.finish_reason == "end_turn"
        assert response.metadata["id"] == "msg_01"

    @pytest.mark.asyncio
    async def test_claude_without_system_prompt_omits_field(self):
        recorder = Recorder(body=CLAUDE_MESSAGE)
        await run_adapter(ClaudeAdapter, recorder, request=Request(prompt="Hi"))
        assert "system" not in recorder.last_json

    @pytest.mark.asyncio
    async def test_claude_malformed_response(self):
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(ClaudeAdapter, Recorder(body={"unexpected": True}))
        assert exc_info.value.code == "CLAUDE_MALFORMED_RESPONSE"
        assert exc_info.value.kind == ErrorKind.UPSTREAM_MALFORMED
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_gemini_wire_format_and_estimated_tokens(self):
        recorder = Recorder(body=GEMINI_RESULT)
        response = await run_adapter(GeminiAdapter, recorder)

        request = recorder.requests[-1]
        sent = recorder.last_json
        assert str(request.url) == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
        )
        assert request.headers["x-goog-api-key"] == "test-api-key-0123456789abcdef"
        full_prompt = "Be brief\n\nUser: Say hello"
        assert sent["contents"][0]["parts"][0]["text"] == full_prompt
        assert sent["generationConfig"] == {"temperature": 0.7, "maxOutputTokens": 2000}

        # ceil(25 / 4) and ceil(11 / 4)
        assert response.tokens_used.prompt_tokens == 7
        assert response.tokens_used.completion_tokens == 3
        assert response.tokens_used.estimated is True
        assert response.metadata["token_count_source"] == "estimated"
        assert response.finish_reason == "STOP"

    @pytest.mark.asyncio
    async def test_gemini_malformed_response(self):
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(GeminiAdapter, Recorder(body={"candidates": []}))
        assert exc_info.value.code == "GEMINI_MALFORMED_RESPONSE"
        assert exc_info.value.provider == ProviderIdentity.GEMINI


class TestCustomAdapter:
    """Test the structural custom endpoint adapter."""

    @pytest.mark.asyncio
    async def test_keyed_field_fallback(self):
        response = await run_adapter(CustomAdapter, Recorder(body={"text": "hello"}))
        assert response.content == "hello"
        assert response.metadata["response_shape"] == "keyed_field"
        assert response.tokens_used.estimated is True

    @pytest.mark.asyncio
    async def test_openai_shape_uses_exact_usage(self):
        response = await run_adapter(CustomAdapter, Recorder(body=openai_completion(model="local-llama")))
        assert response.content == "Hello there"
        assert response.model == "local-llama"
        assert response.metadata["response_shape"] == "openai"
        assert response.tokens_used.estimated is False

    @pytest.mark.asyncio
    async def test_plain_string_body(self):
        response = await run_adapter(CustomAdapter, Recorder(body="just text"))
        assert response.content == "just text"
        assert response.metadata["response_shape"] == "plain_string"

    @pytest.mark.asyncio
    async def test_raw_fallback(self):
        response = await run_adapter(CustomAdapter, Recorder(body={"result": {"answer": 42}}))
        assert json.loads(response.content) == {"result": {"answer": 42}}
        assert response.metadata["response_shape"] == "raw"

    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(self):
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(CustomAdapter, Recorder(content=b"<html>oops</html>"))
        assert exc_info.value.code == "CUSTOM_MALFORMED_RESPONSE"

    @pytest.mark.asyncio
    async def test_missing_endpoint(self):
        config = make_config(ProviderIdentity.CUSTOM, custom_endpoint=None)
        recorder = Recorder(body={"text": "unused"})
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(CustomAdapter, recorder, config=config)
        assert exc_info.value.code == "CUSTOM_NO_ENDPOINT"
        assert exc_info.value.kind == ErrorKind.INVALID_CONFIG
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_openai_request_format_with_headers(self):
        recorder = Recorder(body={"text": "ok"})
        config = make_config(
            ProviderIdentity.CUSTOM,
            provider_settings={"headers": {"X-Team": "growth"}},
        )
        await run_adapter(CustomAdapter, recorder, config=config)

        request = recorder.requests[-1]
        assert str(request.url) == CUSTOM_ENDPOINT
        assert request.headers["x-team"] == "growth"
        assert request.headers["authorization"] == "Bearer test-api-key-0123456789abcdef"
        assert recorder.last_json["messages"][-1] == {"role": "user", "content": "Say hello"}
        assert recorder.last_json["model"] == "custom-model"

    @pytest.mark.asyncio
    async def test_custom_request_format_merges_settings(self):
        recorder = Recorder(body={"output": "ok"})
        config = make_config(
            ProviderIdentity.CUSTOM,
            api_key="",
            provider_settings={"request_format": "custom", "top_k": 5, "headers": {"X-A": "1"}},
        )
        await run_adapter(CustomAdapter, recorder, config=config)

        sent = recorder.last_json
        assert sent["prompt"] == "Say hello"
        assert sent["system_prompt"] == "Be brief"
        assert sent["top_k"] == 5
        assert "headers" not in sent
        assert "request_format" not in sent
        assert "authorization" not in recorder.requests[-1].headers

    @pytest.mark.asyncio
    async def test_unknown_request_format(self):
        config = make_config(ProviderIdentity.CUSTOM, provider_settings={"request_format": "xml"})
        with pytest.raises(GatewayError) as exc_info:
            await run_adapter(CustomAdapter, Recorder(body={}), config=config)
        assert exc_info.value.code == "CUSTOM_INVALID_REQUEST_FORMAT"


class TestResponseShapes:
    """Test shape matchers in isolation and their priority order."""

    def test_openai_shape_takes_priority_over_keyed_fields(self):
        payload = {"choices": [{"message": {"content": "from choices"}}], "text": "from text"}
        name, matched = parse_custom_payload(payload)
        assert name == "openai"
        assert matched.content == "from choices"

    def test_openai_shape_completion_text(self):
        assert OpenAIShape().match({"choices": [{"text": "legacy"}]}).content == "legacy"

    def test_keyed_field_order(self):
        payload = {"output": "last", "response": "third", "text": "second"}
        assert KeyedFieldShape().match(payload).content == "second"

    def test_keyed_field_skips_empty_strings(self):
        assert KeyedFieldShape().match({"content": "", "response": "filled"}).content == "filled"

    def test_shapes_reject_what_they_do_not_understand(self):
        assert OpenAIShape().match("text") is None
        assert PlainStringShape().match({"text": "x"}) is None
        assert KeyedFieldShape().match({"answer": "x"}) is None

    def test_raw_fallback_always_matches(self):
        assert RawFallbackShape().match([1, 2, 3]).content == "[1, 2, 3]"
