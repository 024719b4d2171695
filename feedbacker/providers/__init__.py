"""Provider implementations for language models and the hosting platform.

Key Components:
    - LLMProvider: Abstract base for language-model backends
    - OpenAIProvider, AnthropicProvider, OllamaProvider,
      OpenAICompatibleProvider: the closed set of backends
    - LLMGateway: selection, timeout/retry policy and proposal normalization
    - HostingProvider: Abstract base for the hosting platform API
    - GitHubRestProvider: GitHub implementation using PyGithub

Example:
    >>> from feedbacker.providers import LLMGateway
    >>> gateway = LLMGateway(settings)
    >>> proposal = await gateway.generate(project, submission, known_paths=files)
"""

from feedbacker.providers.anthropic import AnthropicProvider
from feedbacker.providers.base import HostingProvider, LLMProvider, LLMRequest, LLMResponse
from feedbacker.providers.factory import PROVIDER_CLASSES, create_llm_provider
from feedbacker.providers.gateway import LLMGateway
from feedbacker.providers.github_rest import GitHubRestProvider, github_provider_factory
from feedbacker.providers.ollama import OllamaProvider
from feedbacker.providers.openai_compatible import OpenAICompatibleProvider, OpenAIProvider

__all__ = [
    "PROVIDER_CLASSES",
    "AnthropicProvider",
    "GitHubRestProvider",
    "HostingProvider",
    "LLMGateway",
    "LLMProvider",
    "LLMRequest",
    "LLMResponse",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "create_llm_provider",
    "github_provider_factory",
]
