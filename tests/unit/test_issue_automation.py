"""Tests for feedbacker/engine/issue_automation.py."""

import pytest

from feedbacker.config.settings import LabelRuleConfig
from feedbacker.credentials.provider import ResolverCredentialProvider
from feedbacker.engine.dedup import DeliveryDeduplicator
from feedbacker.engine.issue_automation import (
    AddLabels,
    AssignIssue,
    IssueAutomation,
    PostComment,
    classify,
    plan_actions,
)
from feedbacker.exceptions import CredentialError, DuplicateEventError, HostError
from feedbacker.models.domain import IssueEvent


def _event(
    action: str = "opened",
    title: str = "How do I configure logging?",
    body: str = "",
    delivery_id: str = "delivery-1",
    repository: str = "acme/widgets",
    sender: str = "ada",
    event_type: str = "issues",
    is_pull_request: bool = False,
    labels: tuple[str, ...] = (),
) -> IssueEvent:
    return IssueEvent(
        delivery_id=delivery_id,
        event_type=event_type,
        action=action,
        repository=repository,
        issue_number=42,
        title=title,
        body=body,
        labels=labels,
        sender=sender,
        is_pull_request=is_pull_request,
    )


@pytest.fixture
def deduplicator() -> DeliveryDeduplicator:
    return DeliveryDeduplicator(ttl_seconds=60)


@pytest.fixture
def host_factory(fake_host):
    created = []

    def factory(credential, repository):
        created.append((credential, repository))
        return fake_host

    factory.created = created
    return factory


@pytest.fixture
def automation(settings, host_factory, deduplicator, renderer) -> IssueAutomation:
    return IssueAutomation(
        settings,
        ResolverCredentialProvider(settings.identity),
        host_factory,
        deduplicator,
        renderer,
    )


class TestClassify:
    """Tests for the default classification table."""

    @pytest.mark.parametrize(
        ("title", "body", "labels"),
        [
            ("How do I configure logging?", "", ["question"]),
            ("App crashes on startup", "Traceback below", ["bug"]),
            ("Urgent: login broken", "Production users cannot log in.", ["bug", "priority: high"]),
            ("Feature request: dark mode", "", ["enhancement"]),
            ("Typo in README", "", ["documentation"]),
            ("Dashboard is slow", "", ["performance"]),
            ("Thanks for the release", "", []),
        ],
    )
    def test_labels(self, title, body, labels):
        """Should apply every matching rule in table order."""
        assert classify(title, body).labels == labels

    def test_keywords_match_whole_words(self):
        """Should not match keywords inside longer words."""
        assert classify("Debugging tips", "").labels == []

    def test_primary_category_is_first_fired(self):
        """Should use the first fired rule as the primary category."""
        assert classify("Urgent crash", "").primary_category == "bug"
        assert classify("Nothing to see", "").primary_category is None


class TestPlanActions:
    """Tests for plan_actions."""

    def test_opened_question(self, settings, renderer):
        """Should label and welcome a newly opened question."""
        actions = plan_actions(_event(), settings.get_project("acme/widgets"), renderer)

        assert actions[0] == AddLabels(("question",))
        assert isinstance(actions[1], PostComment)
        assert "question" in actions[1].body
        assert "@ada" in actions[1].body
        assert len(actions) == 2

    def test_pure(self, settings, renderer):
        """Should return equal plans for equal inputs."""
        project = settings.get_project("acme/widgets")

        assert plan_actions(_event(), project, renderer) == plan_actions(_event(), project, renderer)

    def test_existing_labels_skipped(self, settings, renderer):
        """Should not re-add labels the issue already carries."""
        actions = plan_actions(_event(labels=("question",)), settings.get_project("acme/widgets"), renderer)

        assert not any(isinstance(action, AddLabels) for action in actions)
        assert isinstance(actions[0], PostComment)

    def test_unmatched_issue_still_welcomed(self, settings, renderer):
        """Should post the generic welcome when no rule fires."""
        actions = plan_actions(_event(title="Thanks!!"), settings.get_project("acme/widgets"), renderer)

        assert len(actions) == 1
        assert "triage" in actions[0].body

    def test_closed_thanks(self, settings, renderer):
        """Should thank the reporter when an issue is closed."""
        actions = plan_actions(_event(action="closed"), settings.get_project("acme/widgets"), renderer)

        assert len(actions) == 1
        assert "#42" in actions[0].body

    @pytest.mark.parametrize(
        "event",
        [
            _event(is_pull_request=True),
            _event(sender="Feedbacker-Bot"),
            _event(action="labeled"),
            _event(event_type="issue_comment", action="created"),
        ],
    )
    def test_ignored(self, settings, renderer, event):
        """Should not act on pull requests, own events or other actions."""
        assert plan_actions(event, settings.get_project("acme/widgets"), renderer, "feedbacker-bot") == []

    def test_assignee_mapping(self, settings, renderer):
        """Should assign the owner of the first fired category."""
        project = settings.get_project("acme/widgets").model_copy(update={"assignees": {"bug": "grace"}})

        actions = plan_actions(_event(title="Crash when saving"), project, renderer)

        assert actions[-1] == AssignIssue(("grace",))

    def test_custom_label_rules(self, settings, renderer):
        """Should use the project's own table instead of the defaults."""
        project = settings.get_project("acme/widgets").model_copy(
            update={"label_rules": [LabelRuleConfig(label="area: billing", keywords=["invoice", "refund"])]}
        )

        actions = plan_actions(_event(title="Refund never arrived?"), project, renderer)

        assert actions[0] == AddLabels(("area: billing",))


class TestIssueAutomation:
    """Tests for IssueAutomation.handle and the manual operations."""

    @pytest.mark.asyncio
    async def test_opened_issue_processed(self, automation, fake_host, host_factory):
        """Should execute the planned actions with the automation credential."""
        outcome = await automation.handle(_event())

        assert outcome.status == "processed"
        assert outcome.actions == ["AddLabels", "PostComment"]
        assert outcome.labels == ["question"]
        assert fake_host.labels[42] == ["question"]
        assert len(fake_host.comments) == 1
        credential, repository = host_factory.created[0]
        assert credential.token == "test-token"
        assert repository == "acme/widgets"
        assert fake_host.closed_clients == 1

    @pytest.mark.asyncio
    async def test_redelivery_rejected(self, automation, fake_host):
        """Should process a delivery id only once."""
        await automation.handle(_event())

        with pytest.raises(DuplicateEventError):
            await automation.handle(_event())

        assert len(fake_host.comments) == 1

    @pytest.mark.asyncio
    async def test_bug_with_urgency(self, automation, fake_host):
        """Should apply both the bug and the priority label."""
        outcome = await automation.handle(_event(title="URGENT: checkout crashes", body="Every order fails."))

        assert outcome.labels == ["bug", "priority: high"]
        assert fake_host.labels[42] == ["bug", "priority: high"]

    @pytest.mark.asyncio
    async def test_unconfigured_repository_ignored(self, automation, fake_host):
        """Should ignore events for repositories that are not configured."""
        outcome = await automation.handle(_event(repository="someone/else"))

        assert outcome.status == "ignored"
        assert fake_host.calls == []

    @pytest.mark.asyncio
    async def test_own_event_ignored(self, automation, fake_host):
        """Should ignore events sent by the automation identity."""
        outcome = await automation.handle(_event(sender="feedbacker-bot"))

        assert outcome.status == "ignored"
        assert fake_host.calls == []

    @pytest.mark.asyncio
    async def test_first_action_failure_forgets_delivery(self, automation, fake_host, deduplicator):
        """Should let a redelivery retry when nothing was executed."""
        fake_host.failures["add_labels"] = [HostError("Bad gateway", status_code=502, transient=True)]

        with pytest.raises(HostError):
            await automation.handle(_event())

        assert "delivery-1" not in deduplicator
        outcome = await automation.handle(_event())
        assert outcome.status == "processed"

    @pytest.mark.asyncio
    async def test_later_action_failure_keeps_delivery(self, automation, fake_host, deduplicator):
        """Should keep the delivery recorded once a side effect happened."""
        fake_host.failures["add_comment"] = [HostError("Bad gateway", status_code=502, transient=True)]

        with pytest.raises(HostError):
            await automation.handle(_event())

        assert "delivery-1" in deduplicator
        assert fake_host.labels[42] == ["question"]

    @pytest.mark.asyncio
    async def test_credential_failure(self, settings, host_factory, deduplicator, fake_host, monkeypatch):
        """Should surface unresolvable credentials without touching the host."""
        monkeypatch.delenv("MISSING_AUTOMATION_TOKEN", raising=False)
        settings.identity.token = "${MISSING_AUTOMATION_TOKEN}"
        automation = IssueAutomation(settings, ResolverCredentialProvider(settings.identity), host_factory, deduplicator)

        with pytest.raises(CredentialError):
            await automation.handle(_event())

        assert fake_host.calls == []
        assert "delivery-1" not in deduplicator

    @pytest.mark.asyncio
    async def test_manual_close_with_comment(self, automation, fake_host, settings):
        """Should comment before closing."""
        executed = await automation.close(settings.get_project("acme/widgets"), 42, comment="Fixed in 1.2.")

        assert executed == ["PostComment", "CloseIssue"]
        assert fake_host.calls == ["add_comment", "close_issue"]
        assert 42 in fake_host.closed

    @pytest.mark.asyncio
    async def test_manual_label(self, automation, fake_host, settings):
        """Should apply labels directly."""
        executed = await automation.label(settings.get_project("acme/widgets"), 7, ["triaged"])

        assert executed == ["AddLabels"]
        assert fake_host.labels[7] == ["triaged"]