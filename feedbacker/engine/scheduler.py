"""
Feedback job scheduler.

Accepts submissions, deduplicates them by fingerprint, and runs jobs on a
bounded pool of asyncio worker tasks.

Concurrency Model:
    - ``submit`` never awaits, so the check for an existing non-terminal job
      and the registration of a new one happen atomically on the event loop.
    - The LLM phase of any number of jobs overlaps freely (bounded only by
      ``max_workers``); workers suspend while awaiting provider responses.
    - The git-mutating phase (clone through push) holds a per-project
      ``asyncio.Lock``. Locks are created lazily behind a meta-lock, one per
      project, and are never removed.
    - Pull request upsert runs after the lock is released; it is idempotent
      per branch.

Retry Policy:
    Errors flagged ``retryable`` (transient provider, network and host
    failures) are retried with exponential backoff (``backoff_factor **
    attempt`` seconds) up to ``max_attempts``. Every other error fails the
    job immediately. A proposal or push that already succeeded is reused by
    later attempts instead of being redone.

Cancellation:
    Cooperative and only before the git phase begins. Cancelling a job whose
    git phase has started is a no-op.

Retention:
    Finished jobs stay queryable until more than ``max_finished_jobs`` of
    them exist; the oldest are then forgotten. Active jobs are always kept.

Example:
    >>> scheduler = FeedbackScheduler(settings, pipeline)
    >>> await scheduler.start()
    >>> job_id = scheduler.submit(submission)
    >>> scheduler.get(job_id).status
    <JobStatus.QUEUED: 'queued'>
"""

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable

import structlog

from feedbacker.config.settings import FeedbackerSettings, ProjectConfig
from feedbacker.enums import JobPhase, JobStatus
from feedbacker.exceptions import FeedbackerError, JobNotFoundError, ValidationError
from feedbacker.models.domain import FeedbackSubmission, Job, branch_identity
from feedbacker.utils.retry import backoff_delay, is_retryable

from .pipeline import FeedbackPipeline

log = structlog.get_logger(__name__)


class _JobCancelled(Exception):
    """Raised inside a worker when a cancel request is observed."""


class FeedbackScheduler:
    """Owns every job and the worker pool that runs them."""

    def __init__(
        self,
        settings: FeedbackerSettings,
        pipeline: FeedbackPipeline,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline
        self._sleep = sleep
        self._jobs: dict[str, Job] = {}
        self._projects: dict[str, ProjectConfig] = {}
        self._active_by_fingerprint: dict[str, str] = {}
        self._finished: OrderedDict[str, None] = OrderedDict()
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._project_locks: dict[str, asyncio.Lock] = {}
        self._project_locks_lock = asyncio.Lock()

    # -- intake and queries -------------------------------------------------

    def submit(self, submission: FeedbackSubmission) -> str:
        """Queue a job for ``submission`` and return its id.

        If a non-terminal job already exists for the same fingerprint, its id
        is returned and nothing else happens.

        Raises:
            ConfigurationError: If the submission's project is not configured
        """
        fingerprint = submission.fingerprint
        existing_id = self._active_by_fingerprint.get(fingerprint)
        if existing_id is not None:
            log.info("duplicate_submission", job_id=existing_id, fingerprint=fingerprint[:12])
            return existing_id

        project = self.settings.get_project(submission.project).model_copy(deep=True)
        job = Job(
            submission=submission,
            branch_name=branch_identity(submission.feedback_id, self.settings.git.branch_prefix),
        )
        self._jobs[job.id] = job
        self._projects[job.id] = project
        self._active_by_fingerprint[fingerprint] = job.id
        self._queue.put_nowait(job.id)

        log.info("job_queued", job_id=job.id, project=project.repository, branch=job.branch_name)
        return job.id

    def get(self, job_id: str) -> Job:
        """Return the job with ``job_id``.

        Raises:
            JobNotFoundError: If no such job exists
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def cancel(self, job_id: str) -> Job:
        """Request cooperative cancellation.

        Queued jobs are cancelled at once; running jobs stop before their git
        phase. Terminal jobs and jobs already in their git phase are returned
        unchanged.

        Raises:
            JobNotFoundError: If no such job exists
        """
        job = self.get(job_id)
        if job.status.is_terminal or job.git_phase_started:
            log.info("cancel_ignored", job_id=job_id, status=job.status.value, git_phase=job.git_phase_started)
            return job

        job.cancel_requested = True
        if job.status == JobStatus.QUEUED:
            job.mark_cancelled()
            self._release(job)
        log.info("cancel_requested", job_id=job_id, status=job.status.value)
        return job

    def retry(self, job_id: str) -> str:
        """Re-queue a failed or cancelled job under the same id (and branch).

        Returns:
            The id of the job that now owns the fingerprint; another job's id
            if a new submission took it in the meantime.

        Raises:
            JobNotFoundError: If no such job exists
            ValidationError: If the job is not failed or cancelled
        """
        job = self.get(job_id)
        if job.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise ValidationError(
                "Only failed or cancelled jobs can be retried",
                [f"status: job is {job.status.value}"],
            )

        owner = self._active_by_fingerprint.get(job.fingerprint)
        if owner is not None:
            log.info("retry_redirected", job_id=job_id, active_job_id=owner)
            return owner

        job.reset_for_retry()
        self._finished.pop(job.id, None)
        self._active_by_fingerprint[job.fingerprint] = job.id
        self._queue.put_nowait(job.id)
        log.info("job_requeued", job_id=job_id)
        return job.id

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def active_jobs(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.RUNNING)

    # -- worker pool ----------------------------------------------------------

    async def start(self) -> None:
        """Start the worker pool. Calling it twice is a no-op."""
        if self._workers:
            return
        count = self.settings.scheduler.max_workers
        self._workers = [asyncio.create_task(self._worker(index), name=f"feedback-worker-{index}") for index in range(count)]
        log.info("scheduler_started", workers=count)

    async def stop(self) -> None:
        """Cancel the worker pool and wait for it to exit."""
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        log.info("scheduler_stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                # cancelled while queued and already forgotten
                job = self._jobs.get(job_id)
                if job is not None:
                    await self._run(job)
            finally:
                self._queue.task_done()

    async def _run(self, job: Job) -> None:
        if job.status != JobStatus.QUEUED:
            return

        project = self._projects[job.id]
        max_attempts = self.settings.scheduler.max_attempts
        with structlog.contextvars.bound_contextvars(job_id=job.id, project=project.repository):
            log.info("job_started", attempts=job.attempts)
            try:
                for attempt in range(1, max_attempts + 1):
                    job.attempts += 1
                    try:
                        await self._execute(job, project)
                    except _JobCancelled:
                        job.mark_cancelled()
                        log.info("job_cancelled", phase=job.phase.value)
                        return
                    except Exception as e:
                        if is_retryable(e) and attempt < max_attempts:
                            job.record_failure(e, terminal=False)
                            delay = backoff_delay(self.settings.scheduler.backoff_factor, attempt)
                            log.warning("job_retry_scheduled", attempt=attempt, delay=delay, error_kind=job.error_kind)
                            await self._sleep(delay)
                            continue

                        job.record_failure(e)
                        if isinstance(e, FeedbackerError):
                            log.error("job_failed", error_kind=job.error_kind, error=job.error_message)
                        else:
                            log.exception("job_crashed", error=str(e))
                        return

                    job.mark_completed()
                    log.info(
                        "job_completed",
                        pr=job.pull_request.url if job.pull_request else None,
                        branch=job.branch_name,
                    )
                    return
            finally:
                if job.status.is_terminal:
                    self._release(job)

    async def _execute(self, job: Job, project: ProjectConfig) -> None:
        if job.proposal is None:
            job.mark_running(JobPhase.GENERATING)
            job.proposal = await self.pipeline.generate(job, project)
            job.raw_output = job.proposal.raw_output

        if job.push_result is None:
            if job.cancel_requested:
                raise _JobCancelled()
            lock = await self._project_lock(project.repository)
            async with lock:
                if job.cancel_requested:
                    raise _JobCancelled()
                job.git_phase_started = True
                job.mark_running(JobPhase.APPLYING)
                job.push_result = await self.pipeline.apply(job, project, job.proposal)

        job.mark_running(JobPhase.PUBLISHING)
        job.pull_request = await self.pipeline.publish(job, project, job.proposal, job.push_result)

    async def _project_lock(self, repository: str) -> asyncio.Lock:
        """Get or create the git-phase lock of a project."""
        key = repository.lower()
        async with self._project_locks_lock:
            if key not in self._project_locks:
                self._project_locks[key] = asyncio.Lock()
            return self._project_locks[key]

    def _release(self, job: Job) -> None:
        """Drop the fingerprint index entry if this job owns it and retire the job.

        Only the newest ``max_finished_jobs`` terminal jobs stay queryable.
        """
        if self._active_by_fingerprint.get(job.fingerprint) == job.id:
            del self._active_by_fingerprint[job.fingerprint]

        self._finished[job.id] = None
        self._finished.move_to_end(job.id)
        while len(self._finished) > self.settings.scheduler.max_finished_jobs:
            evicted, _ = self._finished.popitem(last=False)
            self._jobs.pop(evicted, None)
            self._projects.pop(evicted, None)
            log.debug("job_evicted", job_id=evicted)
