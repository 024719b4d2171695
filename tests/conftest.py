"""Pytest configuration and shared fixtures."""

from typing import Any

import pytest

from feedbacker.config.settings import FeedbackerSettings
from feedbacker.enums import EditOperation, FeedbackCategory
from feedbacker.exceptions import HostError
from feedbacker.models.domain import ChangeProposal, FeedbackSubmission, FileEdit, Replacement
from feedbacker.providers.base import HostingProvider
from feedbacker.rendering import MessageRenderer

SAMPLE_OUTPUT = """Fix the greeting typo in the README.

--- FILE: README.md (modify)
<<<<<<< SEARCH
Helo world
=======
Hello world
>>>>>>> REPLACE
--- END FILE
"""


class FakeHost(HostingProvider):
    """In-memory hosting API for one repository.

    ``failures`` maps an operation name to exceptions raised (in order) by
    the next calls of that operation.
    """

    def __init__(self, files: list[str] | None = None) -> None:
        self.files = list(files or ["README.md", "src/app.py"])
        self.pulls: dict[str, dict[str, Any]] = {}
        self.labels: dict[int, list[str]] = {}
        self.comments: list[tuple[int, str]] = []
        self.assignees: dict[int, list[str]] = {}
        self.closed: set[int] = set()
        self.calls: list[str] = []
        self.failures: dict[str, list[Exception]] = {}
        self.closed_clients = 0
        self._next_number = 100

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    async def list_files(self, ref: str) -> list[str]:
        self._record("list_files")
        return list(self.files)

    async def find_pull_request(self, head_branch: str) -> dict[str, Any] | None:
        self._record("find_pull_request")
        pull = self.pulls.get(head_branch)
        if pull is None:
            return None
        return {**pull, "labels": list(self.labels.get(pull["number"], []))}

    async def create_pull_request(self, title: str, body: str, head: str, base: str) -> dict[str, Any]:
        self._record("create_pull_request")
        if head in self.pulls:
            raise HostError("A pull request already exists", status_code=422)
        self._next_number += 1
        number = self._next_number
        self.pulls[head] = {
            "number": number,
            "url": f"https://github.com/acme/widgets/pull/{number}",
            "title": title,
            "body": body,
            "base": base,
            "state": "open",
            "merged": False,
        }
        return {**self.pulls[head], "labels": []}

    async def update_pull_request(self, number: int, title: str, body: str, reopen: bool = False) -> dict[str, Any]:
        self._record("update_pull_request")
        for pull in self.pulls.values():
            if pull["number"] == number:
                pull.update(title=title, body=body)
                if reopen:
                    pull["state"] = "open"
                return {**pull, "labels": list(self.labels.get(number, []))}
        raise HostError("Not Found", status_code=404)

    async def add_labels(self, issue_number: int, labels: list[str]) -> list[str]:
        self._record("add_labels")
        current = self.labels.setdefault(issue_number, [])
        current.extend(label for label in labels if label not in current)
        return list(current)

    async def add_comment(self, issue_number: int, body: str) -> dict[str, Any]:
        self._record("add_comment")
        self.comments.append((issue_number, body))
        return {"id": len(self.comments), "url": f"https://github.com/acme/widgets/issues/{issue_number}"}

    async def add_assignees(self, issue_number: int, assignees: list[str]) -> None:
        self._record("add_assignees")
        self.assignees.setdefault(issue_number, []).extend(assignees)

    async def close_issue(self, issue_number: int) -> None:
        self._record("close_issue")
        self.closed.add(issue_number)

    async def close(self) -> None:
        self.closed_clients += 1


@pytest.fixture
def settings() -> FeedbackerSettings:
    """Settings with two projects and literal credentials."""
    return FeedbackerSettings(
        identity={"username": "feedbacker-bot", "email": "bot@example.com", "token": "test-token"},
        server={"webhook_secret": "s3cret", "public_url": "https://feedback.example.com"},
        llm={
            "providers": {
                "openai": {"api_key": "test-openai-key", "model": "gpt-4o-mini"},
                "ollama": {"model": "llama3"},
            },
            "default": {"provider": "openai", "model": "gpt-4o"},
        },
        scheduler={"max_workers": 4, "max_attempts": 3, "backoff_factor": 2.0},
        projects=[
            {"repository": "acme/widgets", "default_branch": "main"},
            {"repository": "acme/gadgets", "default_branch": "main"},
        ],
    )


@pytest.fixture
def submission() -> FeedbackSubmission:
    """A bug report against acme/widgets."""
    return FeedbackSubmission(
        project="acme/widgets",
        category=FeedbackCategory.BUG_REPORT,
        title="Greeting has a typo",
        description="The README says 'Helo world' instead of 'Hello world'.",
    )


@pytest.fixture
def proposal() -> ChangeProposal:
    """Proposal fixing the README typo."""
    return ChangeProposal(
        edits=(FileEdit("README.md", EditOperation.MODIFY, replacements=(Replacement("Helo world", "Hello world"),)),),
        rationale="Fix the greeting typo in the README.",
        raw_output=SAMPLE_OUTPUT,
    )


@pytest.fixture
def renderer() -> MessageRenderer:
    return MessageRenderer()


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()
