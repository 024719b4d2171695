"""Ollama provider for local AI inference."""

import structlog

from feedbacker.enums import ProviderType
from feedbacker.providers.base import LLMProvider, LLMRequest, LLMResponse

log = structlog.get_logger(__name__)


class OllamaProvider(LLMProvider):
    """Chat endpoint of a local Ollama server."""

    provider_type = ProviderType.OLLAMA
    default_base_url = "http://localhost:11434"

    async def complete(self, request: LLMRequest) -> LLMResponse:
        log.info("executing_prompt", provider=self.provider_type.value, model=request.model)

        result = await self._post_json(
            f"{self.base_url}/api/chat",
            {
                "model": request.model,
                "messages": [
                    {"role": "system", "content": request.system_message},
                    {"role": "user", "content": request.prompt},
                ],
                "stream": False,
                "options": {
                    "temperature": request.temperature,
                    "num_predict": request.max_tokens,
                },
            },
        )

        message = result.get("message")
        output = message.get("content") if isinstance(message, dict) else None
        if not isinstance(output, str) or not output.strip():
            raise self._invalid("Empty completion returned from Ollama")

        log.info(
            "prompt_executed",
            provider=self.provider_type.value,
            output_length=len(output),
            tokens=result.get("eval_count", 0),
        )
        return LLMResponse(
            text=output,
            provider=self.provider_type,
            model=request.model,
            usage={"eval_count": result.get("eval_count", 0)},
        )
