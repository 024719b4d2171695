"""Rendering of every text the service sends out.

``MessageRenderer`` is the high-level API used by the engine; it builds the
template context from domain objects and delegates to ``SecureTemplateEngine``.

Example:
    >>> from feedbacker.rendering import MessageRenderer
    >>> renderer = MessageRenderer()
    >>> renderer.thank_you_comment(issue_number=12, sender="ada")
"""

from pathlib import Path

from feedbacker.models.domain import ChangeProposal, FeedbackSubmission, truncate_content

from .engine import SecureTemplateEngine

__all__ = ["MessageRenderer", "SecureTemplateEngine"]

# Keeps prompts bounded for very large repositories.
MAX_LISTED_FILES = 2000


class MessageRenderer:
    """Renders prompts, commit messages, pull request bodies and issue comments."""

    def __init__(self, template_dir: Path | None = None) -> None:
        self.engine = SecureTemplateEngine(template_dir=template_dir)

    def system_message(self, repository: str) -> str:
        """Built-in system message used when no project or selection overrides it."""
        return self.engine.render("prompts/system.md.j2", {"repository": repository}).strip()

    def change_request_prompt(
        self,
        submission: FeedbackSubmission,
        base_branch: str,
        files: list[str] | None = None,
    ) -> str:
        """User prompt describing the feedback and the repository layout."""
        listed = sorted(files or [])
        return self.engine.render(
            "prompts/change_request.md.j2",
            {
                "repository": submission.project,
                "category": submission.category.value,
                "title": submission.title,
                "description": submission.description,
                "examples": list(submission.examples),
                "attachments": list(submission.attachments),
                "base_branch": base_branch,
                "files": listed[:MAX_LISTED_FILES],
                "files_truncated": max(0, len(listed) - MAX_LISTED_FILES),
            },
        )

    def commit_message(
        self,
        submission: FeedbackSubmission,
        commit_type: str,
        proposal: ChangeProposal,
        author_name: str,
        author_email: str,
    ) -> str:
        return self.engine.render(
            "git/commit_message.txt.j2",
            {
                "commit_type": commit_type,
                "title": submission.title.strip(),
                "category": submission.category.value,
                "feedback_id": submission.feedback_id,
                "rationale": proposal.rationale.strip(),
                "author_name": author_name,
                "author_email": author_email,
            },
        )

    @staticmethod
    def pull_request_title(submission: FeedbackSubmission, commit_type: str) -> str:
        return f"{commit_type}: {submission.title.strip()}"

    def pull_request_body(
        self,
        submission: FeedbackSubmission,
        proposal: ChangeProposal,
        author_name: str,
        tracking_url: str | None = None,
    ) -> str:
        """Description built from the rationale and the originating feedback."""
        return self.engine.render(
            "pull_requests/body.md.j2",
            {
                "rationale": proposal.rationale.strip(),
                "feedback_id": submission.feedback_id,
                "category": submission.category.value,
                "title": submission.title.strip(),
                "description_preview": truncate_content(" ".join(submission.description.split())),
                "tracking_url": tracking_url,
                "edits": list(proposal.edits),
                "author_name": author_name,
            },
        )

    def welcome_comment(self, category: str | None, labels: list[str], sender: str | None = None) -> str:
        return self.engine.render(
            "issues/welcome.md.j2",
            {"category": category or "", "labels": labels, "sender": sender},
        )

    def thank_you_comment(self, issue_number: int, sender: str | None = None) -> str:
        return self.engine.render("issues/thank_you.md.j2", {"issue_number": issue_number, "sender": sender})
