"""LLM provider gateway.

Resolves which provider, model and system message answer a piece of
feedback, sends the rendered prompt through the matching provider variant
and hands the text to the change proposal generator.

Selection precedence (first match wins):

1. ``llm_by_category[category]`` of the project
2. the project's ``llm`` selection
3. the deployment default ``llm.default``

A provider override requested by the submitter replaces the provider type
(and uses that provider's configured ``model``). The system message comes
from the winning selection, then the project, then the built-in template.
"""

import asyncio
from collections.abc import Callable, Collection

import structlog

from feedbacker.config.settings import FeedbackerSettings, LLMSelection, ProjectConfig
from feedbacker.credentials import CredentialResolver
from feedbacker.engine.proposal import ChangeProposalGenerator
from feedbacker.enums import ProviderErrorKind, ProviderType
from feedbacker.exceptions import ConfigurationError, ProviderError
from feedbacker.models.domain import ChangeProposal, FeedbackSubmission
from feedbacker.providers.base import LLMProvider, LLMRequest
from feedbacker.providers.factory import create_llm_provider
from feedbacker.rendering import MessageRenderer

log = structlog.get_logger(__name__)

ProviderFactory = Callable[..., LLMProvider]


class LLMGateway:
    """Uniform entry point over every configured LLM provider."""

    def __init__(
        self,
        settings: FeedbackerSettings,
        resolver: CredentialResolver | None = None,
        renderer: MessageRenderer | None = None,
        generator: ChangeProposalGenerator | None = None,
        provider_factory: ProviderFactory = create_llm_provider,
    ) -> None:
        self.settings = settings
        self.resolver = resolver or CredentialResolver()
        self.renderer = renderer or MessageRenderer()
        self.generator = generator or ChangeProposalGenerator()
        self._provider_factory = provider_factory
        self._providers: dict[ProviderType, LLMProvider] = {}

    def select(self, project: ProjectConfig, submission: FeedbackSubmission) -> LLMSelection:
        """Resolve provider, model and system message for a submission.

        Raises:
            ConfigurationError: If the requested provider override is not configured
        """
        selection = project.llm_by_category.get(submission.category) or project.llm or self.settings.llm.default

        if submission.llm_provider and submission.llm_provider != selection.provider.value:
            override = ProviderType(submission.llm_provider)
            provider_settings = self.settings.llm.providers.get(override)
            if provider_settings is None or not provider_settings.model:
                raise ConfigurationError(f"LLM provider '{override.value}' is not configured with a model")
            selection = LLMSelection(
                provider=override,
                model=provider_settings.model,
                system_message=selection.system_message,
            )

        system_message = (
            selection.system_message or project.system_message or self.renderer.system_message(project.repository)
        )
        return selection.model_copy(update={"system_message": system_message})

    async def generate(
        self,
        project: ProjectConfig,
        submission: FeedbackSubmission,
        known_paths: Collection[str] | None = None,
        selection: LLMSelection | None = None,
    ) -> ChangeProposal:
        """Ask the selected model for a change and normalize its answer.

        Args:
            project: Target project configuration
            submission: The feedback being answered
            known_paths: Repository file listing at the base branch, if known
            selection: Pre-resolved selection; resolved from config when None

        Raises:
            ProviderError: transient (after one retry), quota, auth or invalid_response
            PatchError: If the answer is not a valid proposal
        """
        selection = selection or self.select(project, submission)
        provider_settings = self.settings.llm.providers.get(selection.provider)
        request = LLMRequest(
            model=selection.model,
            system_message=selection.system_message or "",
            prompt=self.renderer.change_request_prompt(
                submission,
                base_branch=project.default_branch,
                files=list(known_paths) if known_paths is not None else None,
            ),
            temperature=provider_settings.temperature if provider_settings else 0.2,
            max_tokens=provider_settings.max_tokens if provider_settings else 8192,
        )

        provider = self._get_provider(selection.provider)
        text = await self._complete_with_retry(provider, request)
        return self.generator.normalize(text, known_paths=known_paths)

    async def _complete_with_retry(self, provider: LLMProvider, request: LLMRequest) -> str:
        """Call the provider under the configured timeout, retrying a transient failure once."""
        timeout = self.settings.llm.timeout_seconds
        for attempt in (1, 2):
            try:
                response = await asyncio.wait_for(provider.complete(request), timeout=timeout)
                return response.text
            except TimeoutError as e:
                error = ProviderError(
                    f"No response within {timeout}s",
                    ProviderErrorKind.TRANSIENT,
                    provider=provider.provider_type.value,
                )
                error.__cause__ = e
            except ProviderError as e:
                error = e

            if not error.retryable or attempt == 2:
                log.error(
                    "llm_call_failed",
                    provider=provider.provider_type.value,
                    model=request.model,
                    kind=error.error_kind.value,
                    attempt=attempt,
                )
                raise error
            log.warning("llm_call_retrying", provider=provider.provider_type.value, error=error.message)

        raise RuntimeError("Retry logic error")

    def _get_provider(self, provider_type: ProviderType) -> LLMProvider:
        provider = self._providers.get(provider_type)
        if provider is None:
            provider = self._provider_factory(
                provider_type,
                self.settings.llm.providers.get(provider_type),
                self.resolver,
                self.settings.llm.timeout_seconds,
            )
            self._providers[provider_type] = provider
        return provider

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
