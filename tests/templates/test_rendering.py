"""Tests for template rendering and the message renderer."""

import dataclasses

import pytest
from jinja2 import TemplateNotFound, UndefinedError
from jinja2.exceptions import SecurityError

from feedbacker.rendering import MessageRenderer
from feedbacker.rendering.engine import SecureTemplateEngine


class TestSecureTemplateEngine:
    """Tests for SecureTemplateEngine."""

    @pytest.fixture
    def engine(self, tmp_path):
        (tmp_path / "hello.j2").write_text("Hello {{ name }}!")
        (tmp_path / "attr.j2").write_text("{{ obj.__class__.__mro__ }}")
        return SecureTemplateEngine(template_dir=tmp_path)

    def test_render(self, engine):
        assert engine.render("hello.j2", {"name": "ada"}) == "Hello ada!"

    def test_strict_undefined(self, engine):
        """Should fail fast on missing variables."""
        with pytest.raises(UndefinedError):
            engine.render("hello.j2", {})

    def test_user_text_not_evaluated(self, engine):
        """Should render template syntax inside values verbatim."""
        assert engine.render("hello.j2", {"name": "{{ 7 * 7 }}"}) == "Hello {{ 7 * 7 }}!"

    def test_sandbox_blocks_dunder_access(self, engine):
        with pytest.raises(SecurityError):
            engine.render("attr.j2", {"obj": object()})

    @pytest.mark.parametrize("name", ["../outside.j2", "issues/../../outside.j2", "/etc/passwd"])
    def test_path_traversal(self, engine, name):
        """Should refuse names outside the template directory."""
        with pytest.raises(ValueError, match="escapes"):
            engine.render(name, {})

    def test_missing_template(self, engine):
        with pytest.raises(TemplateNotFound):
            engine.render("absent.j2", {})

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ValueError):
            SecureTemplateEngine(template_dir=tmp_path / "absent")

    def test_builtin_templates_listed(self):
        templates = SecureTemplateEngine().list_templates()

        assert "issues/welcome.md.j2" in templates
        assert "pull_requests/body.md.j2" in templates


class TestMessageRenderer:
    """Tests for MessageRenderer."""

    def test_change_request_prompt(self, renderer, submission):
        """Should include the feedback and the file listing."""
        prompt = renderer.change_request_prompt(submission, "main", files=["src/app.py", "README.md"])

        assert submission.title in prompt
        assert "Helo world" in prompt
        assert prompt.index("README.md") < prompt.index("src/app.py")

    def test_system_message_names_repository(self, renderer):
        assert "acme/widgets" in renderer.system_message("acme/widgets")

    def test_commit_message(self, renderer, submission, proposal):
        """Should start with the conventional commit subject and carry the feedback id."""
        message = renderer.commit_message(submission, "fix", proposal, "feedbacker-bot", "bot@example.com")

        assert message.splitlines()[0] == "fix: Greeting has a typo"
        assert f"Feedback-Id: {submission.feedback_id}" in message

    def test_pull_request_body(self, renderer, submission, proposal):
        body = renderer.pull_request_body(submission, proposal, "feedbacker-bot", tracking_url="https://x/api/feedback/1")

        assert "`README.md` (modify)" in body
        assert "https://x/api/feedback/1" in body
        assert submission.feedback_id in body

    def test_pull_request_body_truncates_description(self, renderer, submission, proposal):
        """Should quote at most a preview of long descriptions."""
        long_submission = dataclasses.replace(submission, description="word " * 200)

        body = renderer.pull_request_body(long_submission, proposal, "feedbacker-bot")

        assert "..." in body
        assert "Tracking" not in body

    def test_pull_request_title(self, submission):
        assert MessageRenderer.pull_request_title(submission, "fix") == "fix: Greeting has a typo"

    @pytest.mark.parametrize(
        ("category", "phrase"),
        [("bug", "bug report"), ("question", "question"), (None, "triage")],
    )
    def test_welcome_comment(self, renderer, category, phrase):
        comment = renderer.welcome_comment(category, ["bug"] if category == "bug" else [], sender="ada")

        assert "@ada" in comment
        assert phrase in comment

    def test_thank_you_comment(self, renderer):
        comment = renderer.thank_you_comment(12)

        assert "#12" in comment
        assert "@" not in comment
