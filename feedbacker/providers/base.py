"""
Abstract base classes for providers.

This module defines the two provider interfaces the engine depends on:

- ``LLMProvider``: one language-model backend behind the LLM gateway. The
  set of implementations is closed (see ``feedbacker.providers.factory``).
- ``HostingProvider``: the hosting platform API used for pull requests,
  issue comments, labels and assignment.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from feedbacker.enums import ProviderErrorKind, ProviderType
from feedbacker.exceptions import ProviderError

log = structlog.get_logger(__name__)

# Anthropic uses 529 for "overloaded".
TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 500, 502, 503, 504, 529})


@dataclass(frozen=True)
class LLMRequest:
    """One completion request, identical for every provider variant."""

    model: str
    system_message: str
    prompt: str
    temperature: float = 0.2
    max_tokens: int = 8192


@dataclass(frozen=True)
class LLMResponse:
    """Free-form text returned by a provider."""

    text: str
    provider: ProviderType
    model: str
    usage: dict[str, Any] = field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base class for language-model backends.

    Subclasses implement ``complete`` for one wire protocol and translate
    every failure into ``ProviderError`` with the matching error kind, so the
    gateway and scheduler never see transport-specific exceptions.

    Attributes:
        provider_type: The closed-set member this class implements.
        base_url: API root without trailing slash.
        timeout: Per-call timeout in seconds.
    """

    provider_type: ProviderType
    default_base_url: str = ""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @abstractmethod
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send the system message and prompt, return the model's text.

        Raises:
            ProviderError: With kind transient, quota, auth or invalid_response
        """

    async def close(self) -> None:
        await self.client.aclose()

    async def _post_json(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON object.

        Raises:
            ProviderError: On transport failures, error statuses and bodies
                that are not JSON objects
        """
        try:
            response = await self.client.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response) from e
        except httpx.TimeoutException as e:
            raise ProviderError(
                f"Request timed out after {self.timeout}s",
                ProviderErrorKind.TRANSIENT,
                provider=self.provider_type.value,
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"Connection to {self.base_url} failed: {e}",
                ProviderErrorKind.TRANSIENT,
                provider=self.provider_type.value,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                "Provider returned a non-JSON body",
                ProviderErrorKind.INVALID_RESPONSE,
                provider=self.provider_type.value,
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise self._invalid("Provider returned an unexpected JSON document")
        return data

    def _status_error(self, response: httpx.Response) -> ProviderError:
        status = response.status_code
        detail = _error_detail(response)

        if status in (401, 403):
            kind = ProviderErrorKind.AUTH
        elif status == 429:
            kind = ProviderErrorKind.QUOTA
        elif status in TRANSIENT_STATUS_CODES or status >= 500:
            kind = ProviderErrorKind.TRANSIENT
        else:
            kind = ProviderErrorKind.INVALID_RESPONSE

        log.warning(
            "llm_provider_http_error",
            provider=self.provider_type.value,
            status_code=status,
            kind=kind.value,
        )
        return ProviderError(
            f"API error ({status}): {detail}",
            kind,
            provider=self.provider_type.value,
            status_code=status,
        )

    def _invalid(self, message: str) -> ProviderError:
        return ProviderError(message, ProviderErrorKind.INVALID_RESPONSE, provider=self.provider_type.value)


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.reason_phrase


class HostingProvider(ABC):
    """Abstract base class for the hosting platform API.

    Every instance is bound to one repository and one automation credential;
    the credential is passed in at construction and never read from global
    state. All methods raise ``HostError`` (transient or not) or
    ``CredentialError`` when the platform rejects the credential.
    """

    @abstractmethod
    async def list_files(self, ref: str) -> list[str]:
        """Return every file path in the repository tree at ``ref``."""

    @abstractmethod
    async def find_pull_request(self, head_branch: str) -> dict[str, Any] | None:
        """Return the pull request whose head is ``head_branch`` in any state, if any.

        Returns:
            Dict with ``number``, ``url``, ``labels``, ``state`` and ``merged``, or None
        """

    @abstractmethod
    async def create_pull_request(self, title: str, body: str, head: str, base: str) -> dict[str, Any]:
        """Open a pull request and return ``number`` and ``url``."""

    @abstractmethod
    async def update_pull_request(self, number: int, title: str, body: str, reopen: bool = False) -> dict[str, Any]:
        """Replace the title and description of an existing pull request, reopening it on request."""

    @abstractmethod
    async def add_labels(self, issue_number: int, labels: list[str]) -> list[str]:
        """Add labels to an issue or pull request; return the resulting label set."""

    @abstractmethod
    async def add_comment(self, issue_number: int, body: str) -> dict[str, Any]:
        """Post a comment and return its ``id`` and ``url``."""

    @abstractmethod
    async def add_assignees(self, issue_number: int, assignees: list[str]) -> None:
        """Assign users to an issue."""

    @abstractmethod
    async def close_issue(self, issue_number: int) -> None:
        """Close an issue."""

    async def close(self) -> None:
        """Release client resources. No-op by default."""
        return None
