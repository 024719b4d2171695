"""Tests for the LLM provider variants and their factory."""

import json

import httpx
import pytest

from feedbacker.config.settings import LLMProviderSettings
from feedbacker.credentials import CredentialResolver
from feedbacker.enums import ProviderErrorKind, ProviderType
from feedbacker.exceptions import ConfigurationError, ProviderError
from feedbacker.providers.anthropic import AnthropicProvider
from feedbacker.providers.base import LLMRequest
from feedbacker.providers.factory import create_llm_provider
from feedbacker.providers.ollama import OllamaProvider
from feedbacker.providers.openai_compatible import OpenAICompatibleProvider, OpenAIProvider

REQUEST = LLMRequest(model="test-model", system_message="You edit repositories.", prompt="Fix the typo.")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _openai_body(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}], "usage": {"total_tokens": 12}}


class TestOpenAIProvider:
    """Tests for OpenAIProvider."""

    @pytest.mark.asyncio
    async def test_complete(self):
        """Should send system and user messages and return the text."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=_openai_body("--- FILE: a (delete)\n--- END FILE"))

        provider = OpenAIProvider(api_key="sk-test", client=_client(handler))
        response = await provider.complete(REQUEST)

        assert response.text.startswith("--- FILE")
        assert response.provider == ProviderType.OPENAI
        assert captured["url"] == "https://api.openai.com/v1/chat/completions"
        assert captured["auth"] == "Bearer sk-test"
        assert [m["role"] for m in captured["body"]["messages"]] == ["system", "user"]
        assert captured["body"]["model"] == "test-model"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (401, ProviderErrorKind.AUTH),
            (403, ProviderErrorKind.AUTH),
            (429, ProviderErrorKind.QUOTA),
            (500, ProviderErrorKind.TRANSIENT),
            (503, ProviderErrorKind.TRANSIENT),
            (400, ProviderErrorKind.INVALID_RESPONSE),
        ],
    )
    async def test_status_mapping(self, status, kind):
        """Should map HTTP statuses to provider error kinds."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": {"message": "nope"}})

        provider = OpenAIProvider(api_key="sk-test", client=_client(handler))

        with pytest.raises(ProviderError) as exc_info:
            await provider.complete(REQUEST)

        assert exc_info.value.error_kind == kind
        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is (kind == ProviderErrorKind.TRANSIENT)

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        """Should treat connection failures as transient."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAIProvider(api_key="sk-test", client=_client(handler))

        with pytest.raises(ProviderError) as exc_info:
            await provider.complete(REQUEST)

        assert exc_info.value.error_kind == ProviderErrorKind.TRANSIENT

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        """Should treat read timeouts as transient."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        provider = OpenAIProvider(api_key="sk-test", client=_client(handler))

        with pytest.raises(ProviderError) as exc_info:
            await provider.complete(REQUEST)

        assert exc_info.value.error_kind == ProviderErrorKind.TRANSIENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"choices": []}),
            httpx.Response(200, json=_openai_body("   ")),
            httpx.Response(200, text="<html>gateway</html>"),
            httpx.Response(200, json=["not", "an", "object"]),
        ],
    )
    async def test_invalid_responses(self, response):
        """Should reject empty or malformed completions."""
        provider = OpenAIProvider(api_key="sk-test", client=_client(lambda request: response))

        with pytest.raises(ProviderError) as exc_info:
            await provider.complete(REQUEST)

        assert exc_info.value.error_kind == ProviderErrorKind.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_compatible_provider_without_key(self):
        """Should call a custom base URL without an Authorization header."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=_openai_body("ok"))

        provider = OpenAICompatibleProvider(base_url="http://vllm.local:8000/v1/", client=_client(handler))
        response = await provider.complete(REQUEST)

        assert response.provider == ProviderType.OPENAI_COMPATIBLE
        assert captured["url"] == "http://vllm.local:8000/v1/chat/completions"
        assert captured["auth"] is None


class TestAnthropicProvider:
    """Tests for AnthropicProvider."""

    @pytest.mark.asyncio
    async def test_complete(self):
        """Should use the messages API headers and join text blocks."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": "part one "}, {"type": "text", "text": "part two"}],
                    "usage": {"output_tokens": 5},
                    "stop_reason": "end_turn",
                },
            )

        provider = AnthropicProvider(api_key="ak-test", client=_client(handler))
        response = await provider.complete(REQUEST)

        assert response.text == "part one part two"
        assert captured["headers"]["x-api-key"] == "ak-test"
        assert captured["headers"]["anthropic-version"] == "2023-06-01"
        assert captured["body"]["system"] == "You edit repositories."

    @pytest.mark.asyncio
    async def test_overloaded_is_transient(self):
        """Should treat 529 overloaded as transient."""
        provider = AnthropicProvider(
            api_key="ak-test", client=_client(lambda request: httpx.Response(529, json={"error": "overloaded"}))
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.complete(REQUEST)

        assert exc_info.value.error_kind == ProviderErrorKind.TRANSIENT


class TestOllamaProvider:
    """Tests for OllamaProvider."""

    @pytest.mark.asyncio
    async def test_complete(self):
        """Should call /api/chat without streaming."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"content": "done"}, "eval_count": 3})

        provider = OllamaProvider(client=_client(handler))
        response = await provider.complete(REQUEST)

        assert response.text == "done"
        assert captured["url"] == "http://localhost:11434/api/chat"
        assert captured["body"]["stream"] is False
        assert captured["body"]["options"]["num_predict"] == REQUEST.max_tokens


class TestCreateLLMProvider:
    """Tests for create_llm_provider."""

    def test_resolves_api_key_reference(self, monkeypatch):
        """Should resolve the api_key through the credential resolver."""
        monkeypatch.setenv("TEST_OPENAI_KEY", "resolved-key")

        provider = create_llm_provider(
            ProviderType.OPENAI, LLMProviderSettings(api_key="${TEST_OPENAI_KEY}"), CredentialResolver(), 30.0
        )

        assert isinstance(provider, OpenAIProvider)
        assert provider.api_key == "resolved-key"
        assert provider.timeout == 30.0

    def test_cloud_provider_requires_key(self):
        """Should refuse to build a cloud provider without a key."""
        with pytest.raises(ConfigurationError, match="api_key"):
            create_llm_provider(ProviderType.ANTHROPIC, None, CredentialResolver(), 30.0)

    def test_local_provider_without_key(self):
        """Should build Ollama with defaults."""
        provider = create_llm_provider(
            ProviderType.OLLAMA, LLMProviderSettings(base_url="http://gpu:11434"), CredentialResolver(), 30.0
        )

        assert isinstance(provider, OllamaProvider)
        assert provider.base_url == "http://gpu:11434"
