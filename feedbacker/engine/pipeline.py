"""The three phases of a feedback job, wired to their collaborators.

The scheduler decides *when* each phase runs (and under which lock); this
module decides *what* each phase does:

- ``generate``: fetch the repository file listing, ask the LLM gateway for a
  change proposal. No repository mutation.
- ``apply``: materialize the proposal on the job's branch and push it.
- ``publish``: upsert the pull request for the pushed branch.

The automation credential is looked up per phase and passed explicitly to
the git engine and the hosting provider.
"""

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog

from feedbacker.config.settings import ProjectConfig
from feedbacker.credentials.provider import CredentialProvider
from feedbacker.engine.git_engine import GitMutationEngine
from feedbacker.engine.pr_orchestrator import PullRequestOrchestrator
from feedbacker.models.domain import AutomationCredential, ChangeProposal, Job, PullRequestRecord, PushResult
from feedbacker.providers.base import HostingProvider
from feedbacker.providers.gateway import LLMGateway

log = structlog.get_logger(__name__)

HostFactory = Callable[[AutomationCredential, str], HostingProvider]


class FeedbackPipeline:
    """Runs the generate, apply and publish phases of one job."""

    def __init__(
        self,
        gateway: LLMGateway,
        git_engine: GitMutationEngine,
        orchestrator: PullRequestOrchestrator,
        credentials: CredentialProvider,
        host_factory: HostFactory,
    ) -> None:
        self.gateway = gateway
        self.git_engine = git_engine
        self.orchestrator = orchestrator
        self.credentials = credentials
        self.host_factory = host_factory

    @asynccontextmanager
    async def hosting(self, project: ProjectConfig) -> AsyncIterator[tuple[AutomationCredential, HostingProvider]]:
        """Credential and hosting client for a project, closed on exit."""
        credential = self.credentials.get_credential(project)
        host = self.host_factory(credential, project.repository)
        try:
            yield credential, host
        finally:
            await host.close()

    async def generate(self, job: Job, project: ProjectConfig) -> ChangeProposal:
        async with self.hosting(project) as (_, host):
            files = await host.list_files(project.default_branch)

        selection = self.gateway.select(project, job.submission)
        job.provider = f"{selection.provider.value}/{selection.model}"
        log.info("generating_proposal", provider=selection.provider.value, model=selection.model, files=len(files))
        return await self.gateway.generate(project, job.submission, known_paths=files, selection=selection)

    async def apply(self, job: Job, project: ProjectConfig, proposal: ChangeProposal) -> PushResult:
        credential = self.credentials.get_credential(project)
        return await self.git_engine.apply(credential, project, job.submission, proposal, job.branch_name)

    async def publish(
        self,
        job: Job,
        project: ProjectConfig,
        proposal: ChangeProposal,
        push: PushResult,
    ) -> PullRequestRecord:
        async with self.hosting(project) as (credential, host):
            return await self.orchestrator.upsert(
                host, project, job.submission, proposal, push, author_name=credential.username
            )
