"""Construction of LLM provider variants from configuration."""

import structlog

from feedbacker.config.settings import LLMProviderSettings
from feedbacker.credentials import CredentialResolver
from feedbacker.enums import ProviderType
from feedbacker.exceptions import ConfigurationError
from feedbacker.providers.anthropic import AnthropicProvider
from feedbacker.providers.base import LLMProvider
from feedbacker.providers.ollama import OllamaProvider
from feedbacker.providers.openai_compatible import OpenAICompatibleProvider, OpenAIProvider

log = structlog.get_logger(__name__)

PROVIDER_CLASSES: dict[ProviderType, type[LLMProvider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.OLLAMA: OllamaProvider,
    ProviderType.OPENAI_COMPATIBLE: OpenAICompatibleProvider,
}

# Cloud APIs refuse unauthenticated calls; fail at construction instead.
_REQUIRES_API_KEY = frozenset({ProviderType.OPENAI, ProviderType.ANTHROPIC})


def create_llm_provider(
    provider_type: ProviderType,
    settings: LLMProviderSettings | None,
    resolver: CredentialResolver,
    timeout: float,
) -> LLMProvider:
    """Build the provider variant for ``provider_type``.

    Args:
        provider_type: Which closed-set variant to build
        settings: Connection settings from ``llm.providers``; defaults when None
        resolver: Resolves the ``api_key`` credential reference
        timeout: Per-call timeout in seconds

    Raises:
        ConfigurationError: If the variant is unknown or needs a missing API key
        CredentialError: If the API key reference cannot be resolved
    """
    provider_class = PROVIDER_CLASSES.get(provider_type)
    if provider_class is None:
        raise ConfigurationError(f"Unsupported LLM provider: {provider_type}")

    settings = settings or LLMProviderSettings()
    api_key = resolver.resolve(settings.api_key) if settings.api_key else None
    if api_key is None and provider_type in _REQUIRES_API_KEY:
        raise ConfigurationError(f"LLM provider '{provider_type.value}' requires llm.providers.{provider_type.value}.api_key")

    log.debug("llm_provider_created", provider=provider_type.value, base_url=settings.base_url)
    return provider_class(base_url=settings.base_url, api_key=api_key, timeout=timeout)
