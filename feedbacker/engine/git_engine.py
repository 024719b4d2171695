"""
Git mutation engine: materializes a change proposal as a pushed branch.

Each call owns a fresh workspace (a temporary directory holding a clone of
the target repository) that is removed on every exit path. The automation
credential is handed to git through environment variables only, so it never
appears in argv, in the clone URL or in logs.

Steps:
    1. Clone the repository into the workspace.
    2. Check out the deterministic branch: from ``origin/<branch>`` when it
       already exists (discarding any local leftovers), else from the base
       branch.
    3. Compute every edit in memory; a SEARCH text that is no longer present
       is a conflict and nothing is written. Edits an earlier attempt already
       pushed are recognized and skipped.
    4. Commit as the automation identity.
    5. Push without force. A non-fast-forward rejection triggers one
       fetch + rebase + push; a second rejection is a ``GitConflictError``.

Push is the last step, so a failure anywhere leaves the remote untouched.
"""

import asyncio
import base64
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path

import aiofiles
import structlog

from feedbacker.config.settings import GitConfig, ProjectConfig
from feedbacker.engine.proposal import VCS_METADATA_DIR, normalize_repo_path
from feedbacker.enums import EditOperation
from feedbacker.exceptions import CredentialError, GitConflictError, GitOperationError, PatchError
from feedbacker.models.domain import AutomationCredential, ChangeProposal, FeedbackSubmission, FileEdit, PushResult
from feedbacker.rendering import MessageRenderer
from feedbacker.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

NON_FAST_FORWARD_MARKERS = ("[rejected]", "non-fast-forward", "fetch first")
AUTH_FAILURE_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "invalid username or password",
    "returned error: 401",
    "returned error: 403",
    "terminal prompts disabled",
)
NETWORK_FAILURE_MARKERS = (
    "could not resolve host",
    "connection timed out",
    "connection refused",
    "connection reset",
    "operation timed out",
    "the remote end hung up unexpectedly",
    "early eof",
    "rpc failed",
    "returned error: 5",
)

RemoteUrlBuilder = Callable[[str, AutomationCredential], str]


def default_remote_url(git_host: str) -> RemoteUrlBuilder:
    """Clone URL without embedded credentials: SSH when a key is configured, else HTTPS."""

    def build(repository: str, credential: AutomationCredential) -> str:
        if credential.ssh_key_path:
            return f"git@{git_host}:{repository}.git"
        return f"https://{git_host}/{repository}.git"

    return build


class GitMutationEngine:
    """Applies proposals to repositories under the automation identity."""

    def __init__(
        self,
        config: GitConfig,
        remote_url: RemoteUrlBuilder,
        renderer: MessageRenderer | None = None,
    ) -> None:
        self.config = config
        self.remote_url = remote_url
        self.renderer = renderer or MessageRenderer()

    async def apply(
        self,
        credential: AutomationCredential,
        project: ProjectConfig,
        submission: FeedbackSubmission,
        proposal: ChangeProposal,
        branch: str,
    ) -> PushResult:
        """Materialize ``proposal`` on ``branch`` and push it.

        Raises:
            PatchError: If an edit is unsafe or the proposal changes nothing
            GitConflictError: If an edit no longer applies or the push is
                rejected after one rebase
            CredentialError: If the remote rejects the credential
            GitOperationError: For other git failures (``transient`` for network errors)
        """
        if self.config.workspace_dir:
            Path(self.config.workspace_dir).mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix="feedbacker-", dir=self.config.workspace_dir))
        env = self._auth_env(credential)
        repo_dir = workspace / "repo"
        log.info("workspace_acquired", branch=branch, project=project.repository)

        try:
            url = self.remote_url(project.repository, credential)
            await self._git(credential, env, workspace, "clone", "--no-tags", url, str(repo_dir), command="clone")

            base_ref = f"refs/remotes/origin/{project.default_branch}"
            if not await self._ref_exists(repo_dir, base_ref):
                raise GitOperationError(f"Base branch not found: {project.default_branch}", command="clone")

            existed = await self._ref_exists(repo_dir, f"refs/remotes/origin/{branch}")
            start_point = f"origin/{branch}" if existed else f"origin/{project.default_branch}"
            await self._git(credential, env, repo_dir, "checkout", "-B", branch, start_point, command="checkout")
            log.info("branch_checked_out", branch=branch, reused=existed)

            changed = await self._apply_edits(repo_dir, proposal)
            await self._git(credential, env, repo_dir, "add", "-A", command="add")
            status = await self._git(credential, env, repo_dir, "status", "--porcelain", command="status")

            if not status.strip():
                if not existed:
                    raise PatchError("Proposal does not change any file", raw_output=proposal.raw_output)
                head = await self._head(repo_dir)
                log.info("branch_already_up_to_date", branch=branch, commit=head)
                return PushResult(branch, head, project.default_branch, pushed=False, created_branch=False)

            commit_type = self.config.commit_type_by_category.get(submission.category, "chore")
            message = self.renderer.commit_message(
                submission, commit_type, proposal, author_name=credential.username, author_email=credential.email
            )
            await self._git(
                credential,
                env,
                repo_dir,
                "-c",
                f"user.name={credential.username}",
                "-c",
                f"user.email={credential.email}",
                "commit",
                "-q",
                "-m",
                message,
                command="commit",
            )
            log.info("changes_committed", branch=branch, files=changed)

            rebased = await self._push(credential, env, repo_dir, branch)
            head = await self._head(repo_dir)
            log.info("branch_pushed", branch=branch, commit=head, rebased=rebased)
            return PushResult(
                branch,
                head,
                project.default_branch,
                pushed=True,
                created_branch=not existed,
                rebased=rebased,
            )
        finally:
            await asyncio.to_thread(shutil.rmtree, workspace, ignore_errors=True)
            log.info("workspace_released", branch=branch)

    async def _apply_edits(self, repo_dir: Path, proposal: ChangeProposal) -> list[str]:
        """Compute all new file contents first, then write them; return changed paths."""
        root = repo_dir.resolve()
        planned: dict[Path, str | None] = {}
        current: dict[Path, str | None] = {}

        for edit in proposal.edits:
            relative = normalize_repo_path(edit.path, proposal.raw_output)
            target = self._checked_target(root, relative, proposal.raw_output)

            if target not in current:
                current[target] = await self._read(target, relative, proposal.raw_output)
            before = planned[target] if target in planned else current[target]
            planned[target] = self._edit_result(edit, relative, before)

        changed: list[str] = []
        for target, content in planned.items():
            if content == current[target]:
                continue
            changed.append(str(target.relative_to(root)))
            if content is None:
                await asyncio.to_thread(target.unlink)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(target, "w", encoding="utf-8", newline="") as f:
                    await f.write(content)
        return changed

    @staticmethod
    def _checked_target(root: Path, relative: str, raw_output: str) -> Path:
        """Absolute path for ``relative`` inside the checkout.

        No component of the path may be a symlink, so the file written is the
        one named and never something under ``.git``.

        Raises:
            PatchError: If the path crosses a symlink or lands outside the
                working tree
        """
        current = root
        for part in Path(relative).parts:
            current = current / part
            if current.is_symlink():
                raise PatchError("Edits through symlinks are not allowed", raw_output=raw_output, path=relative)

        target = current.resolve()
        if not target.is_relative_to(root):
            raise PatchError("Path resolves outside the repository", raw_output=raw_output, path=relative)
        if any(part.lower() == VCS_METADATA_DIR for part in target.relative_to(root).parts):
            raise PatchError("Edits under .git are not allowed", raw_output=raw_output, path=relative)
        return target

    @staticmethod
    def _edit_result(edit: FileEdit, path: str, before: str | None) -> str | None:
        """New content of ``path`` after ``edit`` (None means deleted).

        Raises:
            GitConflictError: If the file changed in a way the edit cannot follow
        """
        if edit.operation == EditOperation.DELETE:
            return None

        if edit.operation == EditOperation.CREATE:
            if before is not None and before != edit.content:
                raise GitConflictError(f"File already exists with different content: {path}", command="apply")
            return edit.content

        if before is None:
            raise GitConflictError(f"File to modify does not exist: {path}", command="apply")
        if edit.is_full_rewrite:
            return edit.content

        text = before
        for hunk in edit.replacements:
            if hunk.search in text:
                text = text.replace(hunk.search, hunk.replace, 1)
            elif hunk.replace and hunk.replace in text:
                continue
            else:
                raise GitConflictError(f"SEARCH text no longer matches: {path}", command="apply")
        return text

    @staticmethod
    async def _read(target: Path, path: str, raw_output: str) -> str | None:
        if not target.exists():
            return None
        if not target.is_file():
            raise PatchError("Path is not a regular file", raw_output=raw_output, path=path)
        try:
            async with aiofiles.open(target, encoding="utf-8", newline="") as f:
                return await f.read()
        except UnicodeDecodeError as e:
            raise PatchError("Cannot edit a non-text file", raw_output=raw_output, path=path) from e

    async def _push(
        self,
        credential: AutomationCredential,
        env: dict[str, str],
        repo_dir: Path,
        branch: str,
    ) -> bool:
        """Push without force; rebase and retry once on a non-fast-forward rejection.

        Returns:
            True if a rebase was needed
        """
        refspec = f"HEAD:refs/heads/{branch}"
        stderr = await self._try_push(credential, env, repo_dir, refspec)
        if stderr is None:
            return False

        log.warning("push_rejected_non_fast_forward", branch=branch)
        await self._git(credential, env, repo_dir, "fetch", "origin", branch, command="fetch")
        _, rebase_err, code = await run_command(
            "git",
            "-c",
            f"user.name={credential.username}",
            "-c",
            f"user.email={credential.email}",
            "rebase",
            f"origin/{branch}",
            cwd=repo_dir,
            check=False,
            timeout=self.config.command_timeout,
            env=env,
        )
        if code != 0:
            await run_command("git", "rebase", "--abort", cwd=repo_dir, check=False, timeout=self.config.command_timeout)
            raise GitConflictError(
                f"Rebase onto origin/{branch} failed",
                command="rebase",
                stderr=self._redact(rebase_err, credential),
            )

        stderr = await self._try_push(credential, env, repo_dir, refspec)
        if stderr is not None:
            raise GitConflictError(
                f"Push to {branch} rejected again after rebase",
                command="push",
                stderr=stderr,
            )
        return True

    async def _try_push(
        self,
        credential: AutomationCredential,
        env: dict[str, str],
        repo_dir: Path,
        refspec: str,
    ) -> str | None:
        """Push once; return redacted stderr on a non-fast-forward rejection, None on success."""
        try:
            await self._git(credential, env, repo_dir, "push", "--porcelain", "origin", refspec, command="push")
        except GitOperationError as e:
            stderr = (e.stderr or "").lower()
            if not e.transient and any(marker in stderr for marker in NON_FAST_FORWARD_MARKERS):
                return e.stderr
            raise
        return None

    async def _git(
        self,
        credential: AutomationCredential,
        env: dict[str, str],
        cwd: Path,
        *args: str,
        command: str,
    ) -> str:
        """Run git and translate failures.

        Raises:
            CredentialError: On authentication failures
            GitOperationError: Otherwise (``transient`` for network errors and timeouts)
        """
        try:
            stdout, stderr, code = await run_command(
                "git", *args, cwd=cwd, check=False, timeout=self.config.command_timeout, env=env
            )
        except TimeoutError as e:
            raise GitOperationError(
                f"git {command} timed out after {self.config.command_timeout}s", command=command, transient=True
            ) from e

        if code == 0:
            return stdout

        # push --porcelain reports rejections on stdout
        detail = self._redact(f"{stderr}\n{stdout}".strip(), credential)
        lowered = detail.lower()
        log.warning("git_command_failed", command=command, exit_code=code, stderr=detail[-2000:])

        if any(marker in lowered for marker in AUTH_FAILURE_MARKERS):
            raise CredentialError(f"git {command} was rejected by the remote: check the automation credential")
        transient = any(marker in lowered for marker in NETWORK_FAILURE_MARKERS)
        raise GitOperationError(f"git {command} failed (exit {code})", command=command, stderr=detail, transient=transient)

    async def _ref_exists(self, repo_dir: Path, ref: str) -> bool:
        _, _, code = await run_command(
            "git", "rev-parse", "--verify", "--quiet", ref, cwd=repo_dir, check=False, timeout=self.config.command_timeout
        )
        return code == 0

    async def _head(self, repo_dir: Path) -> str:
        stdout, _, _ = await run_command("git", "rev-parse", "HEAD", cwd=repo_dir, timeout=self.config.command_timeout)
        return stdout.strip()

    @staticmethod
    def _auth_env(credential: AutomationCredential) -> dict[str, str]:
        """Environment handing the credential to git without touching argv or config files."""
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if credential.ssh_key_path:
            env["GIT_SSH_COMMAND"] = (
                f"ssh -i {credential.ssh_key_path} -o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
            )
        elif credential.token:
            basic = base64.b64encode(f"x-access-token:{credential.token}".encode()).decode()
            env.update(
                {
                    "GIT_CONFIG_COUNT": "1",
                    "GIT_CONFIG_KEY_0": "http.extraHeader",
                    "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
                }
            )
        return env

    @staticmethod
    def _redact(text: str, credential: AutomationCredential) -> str:
        if not text or not credential.token:
            return text
        basic = base64.b64encode(f"x-access-token:{credential.token}".encode()).decode()
        return text.replace(credential.token, "***").replace(basic, "***")
