"""OpenAI chat completions providers.

``OpenAIProvider`` talks to api.openai.com; ``OpenAICompatibleProvider``
targets any server implementing the same API (vLLM, LM Studio, Groq,
OpenRouter, etc.).
"""

import structlog

from feedbacker.enums import ProviderType
from feedbacker.providers.base import LLMProvider, LLMRequest, LLMResponse

log = structlog.get_logger(__name__)


class OpenAIProvider(LLMProvider):
    """Chat completions against the OpenAI API."""

    provider_type = ProviderType.OPENAI
    default_base_url = "https://api.openai.com/v1"

    async def complete(self, request: LLMRequest) -> LLMResponse:
        log.info("executing_prompt", provider=self.provider_type.value, model=request.model)

        result = await self._post_json(
            f"{self.base_url}/chat/completions",
            {
                "model": request.model,
                "messages": [
                    {"role": "system", "content": request.system_message},
                    {"role": "user", "content": request.prompt},
                ],
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
        )

        choices = result.get("choices")
        if not isinstance(choices, list) or not choices:
            raise self._invalid("No choices returned from API")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        output = message.get("content") if isinstance(message, dict) else None
        if not isinstance(output, str) or not output.strip():
            raise self._invalid("Empty completion returned from API")

        usage = result.get("usage") or {}
        log.info(
            "prompt_executed",
            provider=self.provider_type.value,
            output_length=len(output),
            tokens=usage.get("total_tokens", usage.get("completion_tokens", 0)),
        )
        return LLMResponse(text=output, provider=self.provider_type, model=request.model, usage=usage)


class OpenAICompatibleProvider(OpenAIProvider):
    """Chat completions against a self-hosted or third-party endpoint.

    The API key is optional; many local servers accept unauthenticated calls.
    """

    provider_type = ProviderType.OPENAI_COMPATIBLE
    default_base_url = "http://localhost:8000/v1"
