"""
Domain models for the feedbacker service.

This module contains the data classes representing the core entities of the
feedback-to-pull-request pipeline (submissions, jobs, change proposals, push
and pull request results) and of the issue automation workflow (inbound issue
events). Provider-specific payloads are converted into these models at the
edges; the engine works exclusively with them.

Example:
    Creating a submission and deriving its dedup key::

        submission = FeedbackSubmission(
            project="acme/widgets",
            category=FeedbackCategory.BUG_REPORT,
            title="Memory leak",
            description="The worker grows by 50MB per hour.",
        )
        submission.fingerprint  # stable sha256 hex digest
"""

import hashlib
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from feedbacker.enums import EditOperation, FeedbackCategory, JobPhase, JobStatus
from feedbacker.exceptions import FeedbackerError, WebhookPayloadError

_WHITESPACE = re.compile(r"\s+")
_BRANCH_UNSAFE = re.compile(r"[^a-z0-9._-]+")

DEFAULT_BRANCH_PREFIX = "feedback/"
PREVIEW_LENGTH = 200


def normalize_text(text: str) -> str:
    """Casefold and collapse whitespace so cosmetic edits do not change identity."""
    return _WHITESPACE.sub(" ", text).strip().casefold()


def new_feedback_id() -> str:
    """Generate a new feedback id."""
    return uuid.uuid4().hex


def branch_identity(feedback_id: str, prefix: str = DEFAULT_BRANCH_PREFIX) -> str:
    """Derive the deterministic branch name for a feedback id.

    The result depends on nothing but its arguments, so every attempt for the
    same feedback targets the same branch.

    Example:
        >>> branch_identity("3F2A-91")
        'feedback/3f2a-91'
    """
    slug = _BRANCH_UNSAFE.sub("-", feedback_id.lower()).strip("-.")
    if not slug:
        raise ValueError(f"Cannot derive a branch name from feedback id {feedback_id!r}")
    return f"{prefix}{slug}"


def truncate_content(content: str, max_length: int = PREVIEW_LENGTH) -> str:
    """Shorten content for previews, marking the cut with an ellipsis."""
    if len(content) <= max_length:
        return content
    return f"{content[:max_length]}..."


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class FeedbackSubmission:
    """Immutable feedback record accepted at intake.

    Attributes:
        project: Target repository in ``owner/repo`` form
        category: Kind of feedback, drives model selection and commit type
        title: One-line summary
        description: Full feedback text
        examples: Optional illustrative snippets supplied by the submitter
        attachments: Optional attachment references (URLs or file names)
        llm_provider: Optional provider override requested by the submitter
        contact_email: Optional email for notifications
        feedback_id: Id assigned at intake; also the job id
    """

    project: str
    category: FeedbackCategory
    title: str
    description: str
    examples: tuple[str, ...] = ()
    attachments: tuple[str, ...] = ()
    llm_provider: str | None = None
    contact_email: str | None = None
    feedback_id: str = field(default_factory=new_feedback_id)

    @property
    def fingerprint(self) -> str:
        """Stable hash of project and normalized content, used for deduplication.

        The feedback id, provider override and contact email are not part of
        the content and do not affect the fingerprint.
        """
        parts = [
            self.project.strip().lower(),
            self.category.value,
            normalize_text(self.title),
            normalize_text(self.description),
            *(normalize_text(example) for example in self.examples),
            *sorted(attachment.strip() for attachment in self.attachments),
        ]
        return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Replacement:
    """One SEARCH/REPLACE hunk of a modify edit."""

    search: str
    replace: str


@dataclass(frozen=True)
class FileEdit:
    """A single file change proposed by the model.

    For ``modify`` edits, ``replacements`` holds ordered SEARCH/REPLACE hunks;
    when it is empty, ``content`` replaces the whole file.
    """

    path: str
    operation: EditOperation
    content: str = ""
    replacements: tuple[Replacement, ...] = ()

    @property
    def is_full_rewrite(self) -> bool:
        return self.operation == EditOperation.MODIFY and not self.replacements


@dataclass(frozen=True)
class ChangeProposal:
    """Normalized, validated model output: ordered edits plus rationale."""

    edits: tuple[FileEdit, ...]
    rationale: str
    raw_output: str = ""

    @property
    def paths(self) -> list[str]:
        seen: dict[str, None] = {}
        for edit in self.edits:
            seen.setdefault(edit.path, None)
        return list(seen)


@dataclass(frozen=True)
class AutomationCredential:
    """Credential of the automation identity for one project.

    Passed explicitly into the git engine and hosting provider for every call;
    the token is excluded from ``repr`` so it never reaches logs.
    """

    username: str
    email: str
    token: str = field(repr=False)
    ssh_key_path: str | None = None


@dataclass(frozen=True)
class PushResult:
    """Outcome of materializing a proposal as a pushed branch."""

    branch: str
    commit_sha: str
    base_branch: str
    pushed: bool
    created_branch: bool
    rebased: bool = False


@dataclass(frozen=True)
class PullRequestRecord:
    """Pull request associated 1:1 with a branch identity."""

    number: int
    url: str
    branch: str
    created: bool
    labels: tuple[str, ...] = ()


@dataclass
class Job:
    """Tracks one feedback-to-pull-request attempt.

    The job id equals the feedback id, so retries of the same feedback keep
    targeting the same branch.
    """

    submission: FeedbackSubmission
    branch_name: str
    status: JobStatus = JobStatus.QUEUED
    phase: JobPhase = JobPhase.QUEUED
    attempts: int = 0
    provider: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
    raw_output: str | None = None
    proposal: ChangeProposal | None = None
    push_result: PushResult | None = None
    pull_request: PullRequestRecord | None = None
    cancel_requested: bool = False
    git_phase_started: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def id(self) -> str:
        return self.submission.feedback_id

    @property
    def project(self) -> str:
        return self.submission.project

    @property
    def fingerprint(self) -> str:
        return self.submission.fingerprint

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def mark_running(self, phase: JobPhase) -> None:
        self.status = JobStatus.RUNNING
        self.phase = phase
        self.touch()

    def mark_completed(self) -> None:
        self.status = JobStatus.COMPLETED
        self.phase = JobPhase.DONE
        self.error_kind = None
        self.error_message = None
        self.completed_at = _utcnow()
        self.touch()

    def mark_cancelled(self) -> None:
        self.status = JobStatus.CANCELLED
        self.completed_at = _utcnow()
        self.touch()

    def record_failure(self, error: Exception, terminal: bool = True) -> None:
        """Record the error on the job; keep raw model output from patch errors."""
        if isinstance(error, FeedbackerError):
            self.error_kind = error.kind
            self.error_message = error.message
            raw_output = getattr(error, "raw_output", None)
            if raw_output:
                self.raw_output = raw_output
        else:
            self.error_kind = "internal_error"
            self.error_message = str(error) or type(error).__name__
        if terminal:
            self.status = JobStatus.FAILED
            self.completed_at = _utcnow()
        self.touch()

    def reset_for_retry(self) -> None:
        self.status = JobStatus.QUEUED
        self.phase = JobPhase.QUEUED
        self.cancel_requested = False
        self.git_phase_started = False
        self.proposal = None
        self.push_result = None
        self.pull_request = None
        self.error_kind = None
        self.error_message = None
        self.completed_at = None
        self.touch()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the polling API."""
        return {
            "id": self.id,
            "repository": self.project,
            "category": self.submission.category.value,
            "title": self.submission.title,
            "content_preview": truncate_content(self.submission.description),
            "status": self.status.value,
            "phase": self.phase.value,
            "branch_name": self.branch_name,
            "pull_request_url": self.pull_request.url if self.pull_request else None,
            "pull_request_number": self.pull_request.number if self.pull_request else None,
            "llm_provider": self.provider,
            "attempts": self.attempts,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class IssueEvent:
    """One inbound issue webhook delivery, normalized from the platform payload.

    Attributes:
        delivery_id: Unique id of the delivery (``X-GitHub-Delivery``)
        event_type: Platform event name (``issues``, ``issue_comment``)
        action: Event action (``opened``, ``closed``, ``labeled``, ...)
        repository: ``owner/repo`` the issue belongs to
        issue_number: Issue number
        title: Issue title
        body: Issue body (empty string when absent)
        labels: Label names currently on the issue
        sender: Login of the account that triggered the event
        label: Label added or removed, for label events
        comment_body: Comment text, for comment events
        is_pull_request: True when the "issue" is a pull request
    """

    delivery_id: str
    event_type: str
    action: str
    repository: str
    issue_number: int
    title: str
    body: str = ""
    labels: tuple[str, ...] = ()
    sender: str | None = None
    label: str | None = None
    comment_body: str | None = None
    is_pull_request: bool = False

    @classmethod
    def from_payload(cls, event_type: str, delivery_id: str, payload: dict[str, Any]) -> "IssueEvent":
        """Build an event from a GitHub-style webhook payload.

        Raises:
            WebhookPayloadError: If required fields are missing or mistyped
        """
        if not delivery_id:
            raise WebhookPayloadError("Missing delivery id")
        if not isinstance(payload, dict):
            raise WebhookPayloadError("Webhook payload must be a JSON object")

        action = payload.get("action")
        issue = payload.get("issue")
        repository = payload.get("repository")
        if not isinstance(action, str) or not action:
            raise WebhookPayloadError("Webhook payload has no action")
        if not isinstance(issue, dict) or not isinstance(issue.get("number"), int):
            raise WebhookPayloadError("Webhook payload has no issue number")
        if not isinstance(repository, dict) or not repository.get("full_name"):
            raise WebhookPayloadError("Webhook payload has no repository full_name")

        labels = tuple(
            label["name"] for label in issue.get("labels") or [] if isinstance(label, dict) and "name" in label
        )
        label = payload.get("label") or {}
        comment = payload.get("comment") or {}
        sender = payload.get("sender") or {}

        return cls(
            delivery_id=delivery_id,
            event_type=event_type,
            action=action,
            repository=repository["full_name"],
            issue_number=issue["number"],
            title=issue.get("title") or "",
            body=issue.get("body") or "",
            labels=labels,
            sender=sender.get("login"),
            label=label.get("name"),
            comment_body=comment.get("body"),
            is_pull_request="pull_request" in issue,
        )
