"""Core domain models for the feedbacker service.

Key Models:
    - FeedbackSubmission: Immutable feedback accepted at intake
    - Job: One feedback-to-pull-request attempt and its status
    - ChangeProposal: Normalized model output (ordered file edits + rationale)
    - FileEdit / Replacement: A single file change and its SEARCH/REPLACE hunks
    - PushResult: Branch and commit produced by the git engine
    - PullRequestRecord: Pull request upserted for a branch
    - AutomationCredential: Credential of the automation identity
    - IssueEvent: Normalized inbound issue webhook delivery

Example:
    >>> from feedbacker.models import FeedbackSubmission, branch_identity
    >>> branch_identity("abc123")
    'feedback/abc123'
"""

from feedbacker.models.domain import (
    AutomationCredential,
    ChangeProposal,
    FeedbackSubmission,
    FileEdit,
    IssueEvent,
    Job,
    PullRequestRecord,
    PushResult,
    Replacement,
    branch_identity,
)

__all__ = [
    "AutomationCredential",
    "ChangeProposal",
    "FeedbackSubmission",
    "FileEdit",
    "IssueEvent",
    "Job",
    "PullRequestRecord",
    "PushResult",
    "Replacement",
    "branch_identity",
]
