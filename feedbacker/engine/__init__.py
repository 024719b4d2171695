"""Feedback-to-pull-request engine and issue automation.

Key Components:
    - ChangeProposalGenerator: model output -> validated edits
    - GitMutationEngine: edits -> pushed branch, in a job-scoped workspace
    - PullRequestOrchestrator: idempotent pull request upsert per branch
    - FeedbackPipeline: the three job phases wired together
    - FeedbackScheduler: intake, dedup, worker pool, per-project git lock
    - IssueAutomation: webhook event -> labels, comments, assignment

Modules are imported directly (``from feedbacker.engine.scheduler import
FeedbackScheduler``); this package only re-exports the proposal generator,
which has no dependency on providers.
"""

from feedbacker.engine.proposal import ChangeProposalGenerator, normalize_repo_path

__all__ = ["ChangeProposalGenerator", "normalize_repo_path"]
