"""HTTP surface of the service.

Routes:
    POST /api/feedback                               submit feedback
    GET  /api/feedback/{id}                          poll a job
    POST /api/feedback/{id}/retry                    re-queue a failed/cancelled job
    POST /api/feedback/{id}/cancel                   cooperative cancel
    POST /api/webhook/issues                         signed issue events
    POST /api/issues/{owner}/{repo}/{number}/comment manual comment
    POST /api/issues/{owner}/{repo}/{number}/labels  manual labels
    POST /api/issues/{owner}/{repo}/{number}/close   manual close (with comment)
    GET  /api/health                                 liveness and queue depth
"""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from feedbacker import __version__
from feedbacker.config.settings import FeedbackerSettings, ProjectConfig
from feedbacker.credentials import CredentialResolver, ResolverCredentialProvider
from feedbacker.engine.dedup import DeliveryDeduplicator
from feedbacker.engine.git_engine import GitMutationEngine, default_remote_url
from feedbacker.engine.intake import build_submission
from feedbacker.engine.issue_automation import IssueAutomation
from feedbacker.engine.pipeline import FeedbackPipeline
from feedbacker.engine.pr_orchestrator import PullRequestOrchestrator, tracking_url
from feedbacker.engine.scheduler import FeedbackScheduler
from feedbacker.exceptions import (
    ConfigurationError,
    CredentialError,
    DuplicateEventError,
    FeedbackerError,
    HostError,
    JobNotFoundError,
    ValidationError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from feedbacker.models.domain import IssueEvent
from feedbacker.providers.gateway import LLMGateway
from feedbacker.providers.github_rest import github_provider_factory
from feedbacker.rendering import MessageRenderer
from feedbacker.utils.signatures import verify_signature

log = structlog.get_logger(__name__)


@dataclass
class Services:
    """Long-lived collaborators shared by all requests."""

    settings: FeedbackerSettings
    scheduler: FeedbackScheduler
    automation: IssueAutomation
    deduplicator: DeliveryDeduplicator
    webhook_secret: str | None = None
    gateway: LLMGateway | None = None


def build_services(settings: FeedbackerSettings) -> Services:
    """Wire the production object graph from configuration.

    Raises:
        CredentialError: If the webhook secret reference cannot be resolved
    """
    resolver = CredentialResolver()
    renderer = MessageRenderer()
    credentials = ResolverCredentialProvider(settings.identity, resolver)
    host_factory = github_provider_factory(settings.identity.api_base_url)

    gateway = LLMGateway(settings, resolver=resolver, renderer=renderer)
    pipeline = FeedbackPipeline(
        gateway=gateway,
        git_engine=GitMutationEngine(settings.git, default_remote_url(settings.identity.git_host), renderer),
        orchestrator=PullRequestOrchestrator(
            settings.git,
            renderer,
            public_url=settings.server.public_url,
            max_attempts=settings.scheduler.max_attempts,
            backoff_factor=settings.scheduler.backoff_factor,
        ),
        credentials=credentials,
        host_factory=host_factory,
    )
    deduplicator = DeliveryDeduplicator(settings.webhook.dedup_ttl_seconds, settings.webhook.dedup_max_entries)

    webhook_secret = None
    if settings.server.webhook_secret:
        webhook_secret = resolver.resolve(settings.server.webhook_secret)
    else:
        log.warning("webhook_secret_not_configured", detail="all webhook deliveries will be rejected")

    return Services(
        settings=settings,
        scheduler=FeedbackScheduler(settings, pipeline),
        automation=IssueAutomation(settings, credentials, host_factory, deduplicator, renderer),
        deduplicator=deduplicator,
        webhook_secret=webhook_secret,
        gateway=gateway,
    )


class CommentRequest(BaseModel):
    body: str = Field(..., min_length=1)


class LabelsRequest(BaseModel):
    labels: list[str] = Field(..., min_length=1)


class CloseRequest(BaseModel):
    comment: str | None = None


def _error(status_code: int, error: FeedbackerError, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error.message, "kind": error.kind, **extra})


def create_app(services: Services) -> FastAPI:
    """Build the FastAPI application around already-wired services."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        await services.scheduler.start()
        pruner = asyncio.create_task(
            services.deduplicator.run_pruner(services.settings.webhook.prune_interval_seconds)
        )
        log.info("server_started", version=__version__, projects=len(services.settings.projects))

        yield

        pruner.cancel()
        try:
            await pruner
        except asyncio.CancelledError:
            pass
        await services.scheduler.stop()
        if services.gateway is not None:
            await services.gateway.close()
        log.info("server_stopped")

    app = FastAPI(title="Feedbacker", version=__version__, lifespan=lifespan)
    app.state.services = services
    settings = services.settings

    @app.exception_handler(ValidationError)
    async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, exc, details=exc.errors)

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(_request: Request, exc: JobNotFoundError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(WebhookSignatureError)
    async def signature_error_handler(_request: Request, exc: WebhookSignatureError) -> JSONResponse:
        log.warning("webhook_signature_rejected", reason=exc.message)
        return _error(401, exc)

    @app.exception_handler(WebhookPayloadError)
    async def payload_error_handler(_request: Request, exc: WebhookPayloadError) -> JSONResponse:
        log.warning("webhook_payload_rejected", reason=exc.message)
        return _error(400, exc)

    def job_view(job_id: str) -> dict[str, Any]:
        job = services.scheduler.get(job_id)
        return {**job.to_dict(), "tracking_url": tracking_url(settings.server.public_url, job.id)}

    async def run_manual(
        owner: str,
        repo: str,
        operation: str,
        call: Callable[[ProjectConfig], Awaitable[list[str]]],
    ) -> dict[str, Any] | JSONResponse:
        project = settings.find_project(f"{owner}/{repo}")
        if project is None:
            return _error(404, ConfigurationError(f"Project not configured: {owner}/{repo}"))
        try:
            executed = await call(project)
        except (HostError, CredentialError) as e:
            log.error("manual_issue_operation_failed", operation=operation, error=e.message)
            return _error(502, e)
        return {"status": "ok", "actions": executed}

    @app.post("/api/feedback", status_code=201)
    async def submit_feedback(request: Request) -> JSONResponse:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError("Invalid feedback submission", ["body: not valid JSON"]) from e

        submission = build_submission(payload, settings)
        job_id = services.scheduler.submit(submission)
        duplicate = job_id != submission.feedback_id
        job = services.scheduler.get(job_id)
        return JSONResponse(
            status_code=200 if duplicate else 201,
            content={
                "id": job.id,
                "status": job.status.value,
                "phase": job.phase.value,
                "branch_name": job.branch_name,
                "duplicate": duplicate,
                "tracking_url": tracking_url(settings.server.public_url, job.id),
            },
        )

    @app.get("/api/feedback/{job_id}")
    async def get_feedback(job_id: str) -> dict[str, Any]:
        return job_view(job_id)

    @app.post("/api/feedback/{job_id}/retry", status_code=202)
    async def retry_feedback(job_id: str) -> dict[str, Any]:
        return job_view(services.scheduler.retry(job_id))

    @app.post("/api/feedback/{job_id}/cancel")
    async def cancel_feedback(job_id: str) -> dict[str, Any]:
        services.scheduler.cancel(job_id)
        return job_view(job_id)

    @app.post("/api/webhook/issues")
    async def issue_webhook(request: Request) -> dict[str, Any]:
        body = await request.body()
        verify_signature(body, services.webhook_secret or "", request.headers.get("X-Hub-Signature-256"))

        event_type = request.headers.get("X-GitHub-Event")
        delivery_id = request.headers.get("X-GitHub-Delivery")
        if not event_type:
            raise WebhookPayloadError("Missing X-GitHub-Event header")
        if event_type == "ping":
            return {"status": "pong"}

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise WebhookPayloadError("Webhook body is not valid JSON") from e

        event = IssueEvent.from_payload(event_type, delivery_id or "", payload)
        log.info("webhook_received", event_type=event_type, action=event.action, delivery_id=event.delivery_id)

        try:
            outcome = await services.automation.handle(event)
        except DuplicateEventError:
            log.info("webhook_duplicate_ignored", delivery_id=event.delivery_id)
            return {"status": "duplicate", "delivery_id": event.delivery_id}
        except FeedbackerError as e:
            log.error("webhook_processing_failed", error_kind=e.kind, error=e.message)
            return {"status": "error", "kind": e.kind, "delivery_id": event.delivery_id}
        except Exception as e:
            log.exception("webhook_processing_unexpected", error=str(e))
            return {"status": "error", "kind": "internal_error", "delivery_id": event.delivery_id}

        return {**outcome.to_dict(), "delivery_id": event.delivery_id}

    @app.post("/api/issues/{owner}/{repo}/{number}/comment")
    async def comment_issue(owner: str, repo: str, number: int, request: CommentRequest) -> Any:
        return await run_manual(
            owner, repo, "comment", lambda project: services.automation.comment(project, number, request.body)
        )

    @app.post("/api/issues/{owner}/{repo}/{number}/labels")
    async def label_issue(owner: str, repo: str, number: int, request: LabelsRequest) -> Any:
        return await run_manual(
            owner, repo, "labels", lambda project: services.automation.label(project, number, request.labels)
        )

    @app.post("/api/issues/{owner}/{repo}/{number}/close")
    async def close_issue(owner: str, repo: str, number: int, request: CloseRequest) -> Any:
        return await run_manual(
            owner, repo, "close", lambda project: services.automation.close(project, number, request.comment)
        )

    @app.get("/api/health")
    async def health_check() -> dict[str, Any]:
        return {
            "status": "healthy",
            "service": "feedbacker",
            "version": __version__,
            "queue_depth": services.scheduler.queue_depth,
            "active_jobs": services.scheduler.active_jobs,
            "dedup_entries": len(services.deduplicator),
        }

    return app
