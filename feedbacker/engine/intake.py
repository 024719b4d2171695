"""Feedback intake: request payload -> validated ``FeedbackSubmission``.

All problems are collected and reported together in one ``ValidationError``;
no job is created for an invalid submission.
"""

from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from feedbacker.config.settings import FeedbackerSettings
from feedbacker.enums import FeedbackCategory, ProviderType
from feedbacker.exceptions import ValidationError
from feedbacker.models.domain import FeedbackSubmission

MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 10_000
MAX_TITLE_LENGTH = 256
MAX_EMAIL_LENGTH = 255


class FeedbackRequest(BaseModel):
    """JSON body accepted by ``POST /api/feedback``."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    project: str = Field(..., description="Target repository in owner/repo form")
    category: FeedbackCategory
    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str = Field(..., min_length=MIN_DESCRIPTION_LENGTH, max_length=MAX_DESCRIPTION_LENGTH)
    examples: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    llm_provider: ProviderType | None = None
    email: str | None = Field(default=None, max_length=MAX_EMAIL_LENGTH)


def _format_pydantic_errors(error: pydantic.ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "body"
        messages.append(f"{location}: {item['msg']}")
    return messages


def build_submission(payload: Any, settings: FeedbackerSettings) -> FeedbackSubmission:
    """Validate a submission payload against the request schema and the configuration.

    Raises:
        ValidationError: With every problem found
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid feedback submission", ["body: must be a JSON object"])

    errors: list[str] = []
    try:
        request = FeedbackRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        errors.extend(_format_pydantic_errors(e))
        request = None

    project = payload.get("project")
    if isinstance(project, str) and project.strip():
        if "/" not in project.strip():
            errors.append("project: must be in owner/repo format")
        elif settings.find_project(project) is None:
            errors.append(f"project: repository is not configured: {project.strip()}")

    email = payload.get("email")
    if isinstance(email, str) and email.strip() and "@" not in email:
        errors.append("email: must contain '@'")

    if request is not None and request.llm_provider is not None:
        if request.llm_provider not in settings.llm.providers:
            errors.append(f"llm_provider: provider is not configured: {request.llm_provider.value}")

    if errors or request is None:
        raise ValidationError("Invalid feedback submission", errors)

    repository = settings.get_project(request.project).repository
    return FeedbackSubmission(
        project=repository,
        category=request.category,
        title=request.title,
        description=request.description,
        examples=tuple(example for example in request.examples if example.strip()),
        attachments=tuple(attachment for attachment in request.attachments if attachment.strip()),
        llm_provider=request.llm_provider.value if request.llm_provider else None,
        contact_email=request.email or None,
    )
