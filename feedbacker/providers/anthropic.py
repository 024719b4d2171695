"""Anthropic messages API provider."""

import structlog

from feedbacker.enums import ProviderType
from feedbacker.providers.base import LLMProvider, LLMRequest, LLMResponse

log = structlog.get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    """Messages API over plain httpx."""

    provider_type = ProviderType.ANTHROPIC
    default_base_url = "https://api.anthropic.com/v1"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "anthropic-version": ANTHROPIC_VERSION}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    async def complete(self, request: LLMRequest) -> LLMResponse:
        log.info("executing_prompt", provider=self.provider_type.value, model=request.model)

        result = await self._post_json(
            f"{self.base_url}/messages",
            {
                "model": request.model,
                "system": request.system_message,
                "messages": [{"role": "user", "content": request.prompt}],
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
        )

        blocks = result.get("content")
        if not isinstance(blocks, list):
            raise self._invalid("Response has no content blocks")

        output = "".join(
            block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type") == "text"
        )
        if not output.strip():
            raise self._invalid("Empty completion returned from API")

        usage = result.get("usage") or {}
        log.info(
            "prompt_executed",
            provider=self.provider_type.value,
            output_length=len(output),
            tokens=usage.get("output_tokens", 0),
            stop_reason=result.get("stop_reason"),
        )
        return LLMResponse(text=output, provider=self.provider_type, model=request.model, usage=usage)
