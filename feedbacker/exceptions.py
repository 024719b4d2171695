"""Custom exception hierarchy for the feedbacker service.

This module defines a structured exception hierarchy that lets the job
scheduler decide, from the exception alone, whether a failure is worth
retrying and what to record on the job for the polling UI.

Exception Hierarchy:
    FeedbackerError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── JobNotFoundError
    ├── CredentialError
    │   ├── CredentialNotFoundError
    │   ├── CredentialFormatError
    │   └── BackendNotAvailableError
    ├── ProviderError
    ├── PatchError
    ├── GitOperationError
    │   └── GitConflictError
    ├── HostError
    └── WebhookError
        ├── WebhookSignatureError
        ├── WebhookPayloadError
        └── DuplicateEventError

Every error carries a stable ``kind`` string (recorded on failed jobs) and a
``retryable`` flag consulted by the scheduler.

Example Usage:
    >>> from feedbacker.exceptions import PatchError
    >>> try:
    ...     proposal = generator.normalize(raw_output)
    ... except PatchError as e:
    ...     job.record_failure(e)
"""

from typing import Any

from feedbacker.enums import ProviderErrorKind


class FeedbackerError(Exception):
    """Base exception for all feedbacker errors.

    Attributes:
        message: Human-readable error description
    """

    kind = "feedbacker_error"

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether the scheduler may retry the failed operation."""
        return False


class ConfigurationError(FeedbackerError):
    """Configuration-related errors.

    Raised when configuration files are invalid, missing, or reference
    projects and providers that do not exist.
    """

    kind = "configuration_error"


class ValidationError(FeedbackerError):
    """A feedback submission or request payload is malformed.

    Raised at intake; no job is created.

    Attributes:
        errors: Every validation problem found, not just the first one
    """

    kind = "validation_error"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = list(errors or [])
        super().__init__(message)


class JobNotFoundError(FeedbackerError):
    """No job exists with the requested id."""

    kind = "job_not_found"

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class CredentialError(FeedbackerError):
    """Credential-related errors.

    Raised when the automation credential cannot be resolved or is rejected
    by the remote. Always fatal for a job.

    Attributes:
        message: Human-readable error description
        reference: The credential reference that failed (e.g., "@keyring:github/token")
        suggestion: Optional suggestion for resolution
    """

    kind = "credential_error"

    def __init__(
        self,
        message: str,
        reference: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            reference: The credential reference that failed
            suggestion: Optional suggestion for resolution
        """
        self.reference = reference
        self.suggestion = suggestion

        full_message = message
        if reference:
            full_message = f"{message} (reference: {reference})"
        if suggestion:
            full_message = f"{full_message}\nSuggestion: {suggestion}"

        super().__init__(full_message)
        # Preserve original message (super sets self.message to full_message)
        self.message = message


class CredentialNotFoundError(CredentialError):
    """Credential exists in config but not in storage backend."""

    pass


class CredentialFormatError(CredentialError):
    """Credential reference has invalid format."""

    pass


class BackendNotAvailableError(CredentialError):
    """Requested backend is not available on this system."""

    pass


class ProviderError(FeedbackerError):
    """A language-model provider call failed.

    Attributes:
        error_kind: transient, quota, auth or invalid_response
        provider: Provider type that failed (e.g., "openai")
        status_code: HTTP status returned by the provider, if any
    """

    def __init__(
        self,
        message: str,
        error_kind: ProviderErrorKind,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.error_kind = error_kind
        self.provider = provider
        self.status_code = status_code

        parts = [f"kind: {error_kind.value}"]
        if provider:
            parts.append(f"provider: {provider}")
        super().__init__(f"{message} ({', '.join(parts)})")
        self.message = message

    @property
    def kind(self) -> str:  # type: ignore[override]
        return f"provider_error.{self.error_kind.value}"

    @property
    def retryable(self) -> bool:
        return self.error_kind == ProviderErrorKind.TRANSIENT


class PatchError(FeedbackerError):
    """The model output could not be turned into a safe, applicable proposal.

    The raw model output is kept on the exception so it can be stored on the
    job for manual inspection.

    Attributes:
        raw_output: Unmodified text returned by the model
        path: Offending path, when the failure concerns a single edit
    """

    kind = "patch_error"

    def __init__(self, message: str, raw_output: str | None = None, path: str | None = None) -> None:
        self.raw_output = raw_output
        self.path = path
        super().__init__(f"{message}: {path}" if path else message)
        self.message = message


class GitOperationError(FeedbackerError):
    """Git command failures (clone, fetch, commit, push).

    Attributes:
        command: The git subcommand that failed (e.g., "push")
        stderr: Captured stderr with credentials redacted
        transient: True for network-level failures worth retrying
    """

    kind = "git_error"

    def __init__(
        self,
        message: str,
        command: str | None = None,
        stderr: str | None = None,
        transient: bool = False,
    ) -> None:
        self.command = command
        self.stderr = stderr
        self.transient = transient
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.transient


class GitConflictError(GitOperationError):
    """The proposal no longer applies, or the push was rejected twice.

    Requires a human to resubmit the feedback.
    """

    kind = "git_conflict"

    def __init__(self, message: str, command: str | None = None, stderr: str | None = None) -> None:
        super().__init__(message, command=command, stderr=stderr, transient=False)


class HostError(FeedbackerError):
    """Hosting platform API failure (pull requests, issues, labels).

    Attributes:
        status_code: HTTP status code (if applicable)
        response_data: Parsed response body (if applicable)
        transient: True for 5xx, secondary rate limits and connection failures
    """

    kind = "host_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: Any | None = None,
        transient: bool = False,
    ) -> None:
        self.status_code = status_code
        self.response_data = response_data
        self.transient = transient

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)

    @property
    def retryable(self) -> bool:
        return self.transient


class WebhookError(FeedbackerError):
    """Base class for inbound webhook handling errors."""

    kind = "webhook_error"


class WebhookSignatureError(WebhookError):
    """Missing or mismatched webhook signature. The request is not processed."""

    kind = "webhook_signature_error"


class WebhookPayloadError(WebhookError):
    """The webhook body is not a well-formed event payload."""

    kind = "webhook_payload_error"


class DuplicateEventError(WebhookError):
    """A delivery id that was already processed (platform redelivery)."""

    kind = "duplicate_event"

    def __init__(self, delivery_id: str) -> None:
        self.delivery_id = delivery_id
        super().__init__(f"Delivery already processed: {delivery_id}")
