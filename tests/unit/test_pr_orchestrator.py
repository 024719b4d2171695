"""Tests for feedbacker/engine/pr_orchestrator.py."""

import pytest

from feedbacker.config.settings import GitConfig, ProjectConfig
from feedbacker.engine.pr_orchestrator import PullRequestOrchestrator, tracking_url
from feedbacker.exceptions import CredentialError, HostError
from feedbacker.models.domain import PushResult

BRANCH = "feedback/abc123"


@pytest.fixture
def orchestrator(renderer) -> PullRequestOrchestrator:
    return PullRequestOrchestrator(
        GitConfig(), renderer, public_url="https://feedback.example.com", max_attempts=3, backoff_factor=0.0
    )


@pytest.fixture
def project() -> ProjectConfig:
    return ProjectConfig(repository="acme/widgets", pull_request_labels=["feedback", "automated"])


@pytest.fixture
def push() -> PushResult:
    return PushResult(BRANCH, "deadbeef", "main", pushed=True, created_branch=True)


class TestTrackingUrl:
    """Tests for tracking_url."""

    def test_absolute(self):
        assert tracking_url("https://fb.example.com/", "abc") == "https://fb.example.com/api/feedback/abc"

    def test_relative(self):
        assert tracking_url("", "abc") == "/api/feedback/abc"


class TestUpsert:
    """Tests for PullRequestOrchestrator.upsert."""

    @pytest.mark.asyncio
    async def test_creates_pull_request(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should open a labeled pull request against the base branch."""
        record = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="feedbacker-bot")

        assert record.created
        assert record.branch == BRANCH
        assert record.labels == ("feedback", "automated")
        pull = fake_host.pulls[BRANCH]
        assert pull["title"] == "fix: Greeting has a typo"
        assert pull["base"] == "main"
        assert submission.feedback_id in pull["body"]
        assert f"https://feedback.example.com/api/feedback/{submission.feedback_id}" in pull["body"]

    @pytest.mark.asyncio
    async def test_second_upsert_updates(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should update the existing pull request instead of opening another."""
        first = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")
        second = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

        assert second.number == first.number
        assert second.created is False
        assert len(fake_host.pulls) == 1
        assert fake_host.calls.count("create_pull_request") == 1
        assert fake_host.calls.count("update_pull_request") == 1
        assert fake_host.calls.count("add_labels") == 1

    @pytest.mark.asyncio
    async def test_create_race_recovers(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should adopt a pull request another writer opened between lookup and create."""
        fake_host.pulls[BRANCH] = {"number": 7, "url": "https://github.com/acme/widgets/pull/7"}
        original_find = fake_host.find_pull_request
        lookups = []

        async def find_once_missing(head_branch):
            lookups.append(head_branch)
            if len(lookups) == 1:
                return None
            return await original_find(head_branch)

        fake_host.find_pull_request = find_once_missing

        record = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

        assert record.number == 7
        assert record.created is False
        assert len(lookups) == 2

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should retry transient host failures from the lookup."""
        fake_host.failures["create_pull_request"] = [HostError("Bad gateway", status_code=502, transient=True)]

        record = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

        assert record.created
        assert fake_host.calls.count("find_pull_request") == 2
        assert len(fake_host.pulls) == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should not retry non-transient host failures."""
        fake_host.failures["create_pull_request"] = [HostError("Base branch missing", status_code=404)]

        with pytest.raises(HostError):
            await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

        assert fake_host.calls.count("create_pull_request") == 1

    @pytest.mark.asyncio
    async def test_credential_rejection_propagates(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should propagate credential errors untouched."""
        fake_host.failures["find_pull_request"] = [CredentialError("automation credential rejected")]

        with pytest.raises(CredentialError):
            await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

    @pytest.mark.asyncio
    async def test_closed_pull_request_reopened(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should reopen the branch's closed pull request instead of opening a second one."""
        fake_host.pulls[BRANCH] = {
            "number": 7,
            "url": "https://github.com/acme/widgets/pull/7",
            "state": "closed",
            "merged": False,
        }

        record = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

        assert record.number == 7
        assert record.created is False
        assert fake_host.pulls[BRANCH]["state"] == "open"
        assert "create_pull_request" not in fake_host.calls

    @pytest.mark.asyncio
    async def test_merged_pull_request_kept(self, orchestrator, fake_host, project, submission, proposal, push):
        """Should keep a merged pull request as the branch's record without reopening it."""
        fake_host.pulls[BRANCH] = {
            "number": 7,
            "url": "https://github.com/acme/widgets/pull/7",
            "state": "closed",
            "merged": True,
        }

        record = await orchestrator.upsert(fake_host, project, submission, proposal, push, author_name="bot")

        assert record.number == 7
        assert fake_host.pulls[BRANCH]["state"] == "closed"
        assert "create_pull_request" not in fake_host.calls
