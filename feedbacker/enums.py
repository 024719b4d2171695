"""Enumerations shared across the feedbacker service."""

from enum import Enum


class ProviderType(str, Enum):
    """Language-model backends supported by the LLM gateway.

    The set is closed: adding a backend means adding a member here and a
    provider class registered for it in ``feedbacker.providers.factory``.

    - openai: OpenAI chat completions API
    - anthropic: Anthropic messages API
    - ollama: Local Ollama server
    - openai-compatible: Any OpenAI-compatible endpoint
      (Groq, OpenRouter, vLLM, LM Studio, etc.)
    """

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    OPENAI_COMPATIBLE = "openai-compatible"

    def __str__(self) -> str:
        return self.value

    @property
    def is_local(self) -> bool:
        """Check if this provider runs locally (vs cloud API)."""
        return self == ProviderType.OLLAMA


class FeedbackCategory(str, Enum):
    """Kinds of feedback accepted at intake."""

    BUG_REPORT = "bug_report"
    FEATURE_REQUEST = "feature_request"
    IMPROVEMENT = "improvement"
    DOCUMENTATION = "documentation"
    QUESTION = "question"
    OTHER = "other"

    def __str__(self) -> str:
        return self.value


class JobStatus(str, Enum):
    """Lifecycle of a feedback-to-pull-request job.

    The happy path is QUEUED -> RUNNING -> COMPLETED. CANCELLED is only
    reachable before the git phase starts.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobPhase(str, Enum):
    """Finer-grained progress marker reported next to the job status."""

    QUEUED = "queued"
    GENERATING = "generating"
    APPLYING = "applying"
    PUBLISHING = "publishing"
    DONE = "done"


class EditOperation(str, Enum):
    """Operation a single file edit performs."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class ProviderErrorKind(str, Enum):
    """Failure classes surfaced by the LLM gateway.

    Only TRANSIENT is retried; the others fail the job immediately.
    """

    TRANSIENT = "transient"
    QUOTA = "quota"
    AUTH = "auth"
    INVALID_RESPONSE = "invalid_response"
