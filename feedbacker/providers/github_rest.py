"""GitHub hosting provider implementation using PyGithub."""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from github import Auth, Github, GithubException, RateLimitExceededException  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from feedbacker.exceptions import CredentialError, HostError
from feedbacker.models.domain import AutomationCredential
from feedbacker.providers.base import HostingProvider

log = structlog.get_logger(__name__)

T = TypeVar("T")


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


def _translate(error: Exception, operation: str) -> Exception:
    """Map PyGithub and transport exceptions onto the service's error taxonomy."""
    if isinstance(error, RateLimitExceededException):
        return HostError(f"{operation}: rate limited", status_code=error.status, transient=True)
    if isinstance(error, GithubException):
        status = error.status
        data = error.data if isinstance(error.data, dict) else None
        message = (data or {}).get("message") or str(error)
        if status in (401, 403):
            return CredentialError(f"{operation}: automation credential rejected ({status}: {message})")
        transient = status is not None and (status >= 500 or status == 429)
        return HostError(f"{operation}: {message}", status_code=status, response_data=data, transient=transient)
    # requests' connection errors and timeouts derive from OSError
    if isinstance(error, OSError):
        return HostError(f"{operation}: connection failed: {error}", transient=True)
    return error


class GitHubRestProvider(HostingProvider):
    """GitHub implementation bound to one repository and one credential."""

    def __init__(
        self,
        credential: AutomationCredential,
        owner: str,
        repo: str,
        base_url: str = "https://api.github.com",
    ):
        """Initialize GitHub provider.

        Args:
            credential: Automation identity credential used for every call
            owner: Repository owner (user or organization)
            repo: Repository name
            base_url: GitHub API base URL (for GitHub Enterprise)
        """
        self.credential = credential
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self._client: Github | None = None
        self._repo: GHRepository | None = None
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize GitHub client."""

        def _connect() -> tuple[Github, GHRepository]:
            client = Github(auth=Auth.Token(self.credential.token.strip()), base_url=self.base_url)
            repo = client.get_repo(f"{self.owner}/{self.repo}")
            return client, repo

        try:
            self._client, self._repo = await _run_sync(_connect)
        except (GithubException, OSError) as e:
            raise _translate(e, "connect") from e
        log.info(
            "github_connected",
            base_url=self.base_url,
            owner=self.owner,
            repo=self.repo,
        )

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None
            self._repo = None

    async def _repository(self) -> GHRepository:
        async with self._connect_lock:
            if self._repo is None:
                await self.connect()
        return self._repo

    async def _call(self, operation: str, func: Callable[[GHRepository], T]) -> T:
        repo = await self._repository()
        try:
            return await _run_sync(lambda: func(repo))
        except (GithubException, OSError) as e:
            log.error("github_call_failed", operation=operation, error=str(e))
            raise _translate(e, operation) from e

    async def list_files(self, ref: str) -> list[str]:
        log.info("list_files", ref=ref)

        def _list(repo: GHRepository) -> list[str]:
            tree = repo.get_git_tree(ref, recursive=True)
            if tree.raw_data.get("truncated"):
                log.warning("github_tree_truncated", ref=ref)
            return [entry.path for entry in tree.tree if entry.type == "blob"]

        return await self._call("list_files", _list)

    async def find_pull_request(self, head_branch: str) -> dict[str, Any] | None:
        log.info("find_pull_request", head=head_branch)

        def _find(repo: GHRepository) -> dict[str, Any] | None:
            # Closed ones count too: a branch keeps its pull request for life
            pulls = list(repo.get_pulls(state="all", head=f"{self.owner}:{head_branch}"))
            if not pulls:
                return None
            chosen = next((pr for pr in pulls if pr.state == "open"), pulls[0])
            return self._convert_pull_request(chosen)

        return await self._call("find_pull_request", _find)

    async def create_pull_request(self, title: str, body: str, head: str, base: str) -> dict[str, Any]:
        log.info("create_pull_request", title=title, head=head, base=base)
        return await self._call(
            "create_pull_request",
            lambda repo: self._convert_pull_request(repo.create_pull(title=title, body=body, head=head, base=base)),
        )

    async def update_pull_request(self, number: int, title: str, body: str, reopen: bool = False) -> dict[str, Any]:
        log.info("update_pull_request", number=number, reopen=reopen)

        def _update(repo: GHRepository) -> dict[str, Any]:
            pr = repo.get_pull(number)
            if reopen:
                pr.edit(title=title, body=body, state="open")
            else:
                pr.edit(title=title, body=body)
            return self._convert_pull_request(repo.get_pull(number))

        return await self._call("update_pull_request", _update)

    async def add_labels(self, issue_number: int, labels: list[str]) -> list[str]:
        log.info("add_labels", number=issue_number, labels=labels)

        def _add(repo: GHRepository) -> list[str]:
            issue = repo.get_issue(issue_number)
            issue.add_to_labels(*labels)
            return [label.name for label in issue.get_labels()]

        return await self._call("add_labels", _add)

    async def add_comment(self, issue_number: int, body: str) -> dict[str, Any]:
        log.info("add_comment", number=issue_number)

        def _comment(repo: GHRepository) -> dict[str, Any]:
            comment = repo.get_issue(issue_number).create_comment(body)
            return {"id": comment.id, "url": comment.html_url}

        return await self._call("add_comment", _comment)

    async def add_assignees(self, issue_number: int, assignees: list[str]) -> None:
        log.info("add_assignees", number=issue_number, assignees=assignees)
        await self._call("add_assignees", lambda repo: repo.get_issue(issue_number).add_to_assignees(*assignees))

    async def close_issue(self, issue_number: int) -> None:
        log.info("close_issue", number=issue_number)
        await self._call("close_issue", lambda repo: repo.get_issue(issue_number).edit(state="closed"))

    async def close(self) -> None:
        await self.disconnect()

    @staticmethod
    def _convert_pull_request(gh_pr: Any) -> dict[str, Any]:
        return {
            "number": gh_pr.number,
            "url": gh_pr.html_url,
            "labels": [label.name for label in gh_pr.labels],
            "state": gh_pr.state,
            "merged": bool(gh_pr.merged),
        }


def github_provider_factory(api_base_url: str) -> Callable[[AutomationCredential, str], GitHubRestProvider]:
    """Return a factory building per-repository providers for an API endpoint."""

    def build(credential: AutomationCredential, repository: str) -> GitHubRestProvider:
        owner, name = repository.split("/", 1)
        return GitHubRestProvider(credential, owner, name, base_url=api_base_url)

    return build
