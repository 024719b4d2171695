"""Pull request orchestrator: one pull request per branch identity, upserted.

The orchestrator looks the pull request up by head branch before doing
anything, so calling ``upsert`` again after a retry (or after a crash between
push and PR creation) updates the existing pull request instead of opening a
second one. A closed, unmerged pull request is reopened; a merged one is
updated in place and never replaced.
"""

from typing import Any

import structlog

from feedbacker.config.settings import GitConfig, ProjectConfig
from feedbacker.exceptions import HostError
from feedbacker.models.domain import ChangeProposal, FeedbackSubmission, PullRequestRecord, PushResult
from feedbacker.providers.base import HostingProvider
from feedbacker.rendering import MessageRenderer
from feedbacker.utils.retry import retry_async

log = structlog.get_logger(__name__)


def tracking_url(public_url: str, feedback_id: str) -> str:
    """Polling URL of a job, absolute when the service's public URL is known."""
    return f"{public_url.rstrip('/')}/api/feedback/{feedback_id}"


class PullRequestOrchestrator:
    """Opens or updates the pull request for a pushed feedback branch."""

    def __init__(
        self,
        git_config: GitConfig,
        renderer: MessageRenderer | None = None,
        public_url: str = "",
        max_attempts: int = 3,
        backoff_factor: float = 2.0,
    ) -> None:
        self.git_config = git_config
        self.renderer = renderer or MessageRenderer()
        self.public_url = public_url
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor

    async def upsert(
        self,
        host: HostingProvider,
        project: ProjectConfig,
        submission: FeedbackSubmission,
        proposal: ChangeProposal,
        push: PushResult,
        author_name: str,
    ) -> PullRequestRecord:
        """Create or update the pull request for ``push.branch``.

        Transient host failures are retried with exponential backoff; the
        whole operation is idempotent, so a retry starts from the lookup.

        Raises:
            HostError: If the hosting API keeps failing or rejects the request
            CredentialError: If the automation credential is rejected
        """
        commit_type = self.git_config.commit_type_by_category.get(submission.category, "chore")
        title = self.renderer.pull_request_title(submission, commit_type)
        body = self.renderer.pull_request_body(
            submission,
            proposal,
            author_name=author_name,
            tracking_url=tracking_url(self.public_url, submission.feedback_id) if self.public_url else None,
        )

        return await retry_async(
            lambda: self._upsert_once(host, project, push, title, body),
            name="pull_request_upsert",
            max_attempts=self.max_attempts,
            backoff_factor=self.backoff_factor,
        )

    async def _upsert_once(
        self,
        host: HostingProvider,
        project: ProjectConfig,
        push: PushResult,
        title: str,
        body: str,
    ) -> PullRequestRecord:
        existing = await host.find_pull_request(push.branch)
        created = existing is None

        if existing is not None:
            merged = bool(existing.get("merged"))
            reopen = existing.get("state", "open") != "open" and not merged
            pull = await host.update_pull_request(existing["number"], title, body, reopen=reopen)
            if merged:
                log.warning("pull_request_already_merged", number=pull["number"], branch=push.branch)
            log.info("pull_request_updated", number=pull["number"], branch=push.branch, reopened=reopen)
        else:
            pull = await self._create(host, push, title, body)
            created = pull.get("created", True)

        labels = list(pull.get("labels") or [])
        missing = [label for label in project.pull_request_labels if label not in labels]
        if missing:
            labels = await host.add_labels(pull["number"], missing)

        return PullRequestRecord(
            number=pull["number"],
            url=pull["url"],
            branch=push.branch,
            created=created,
            labels=tuple(labels),
        )

    @staticmethod
    async def _create(host: HostingProvider, push: PushResult, title: str, body: str) -> dict[str, Any]:
        try:
            pull = await host.create_pull_request(title, body, head=push.branch, base=push.base_branch)
        except HostError as e:
            # 422: another writer opened it between our lookup and create
            if e.status_code != 422:
                raise
            pull = await host.find_pull_request(push.branch)
            if pull is None:
                raise
            log.info("pull_request_already_exists", number=pull["number"], branch=push.branch)
            return {**pull, "created": False}

        log.info("pull_request_created", number=pull["number"], branch=push.branch)
        return pull
