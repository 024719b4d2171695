"""
Issue webhook state machine.

An issue moves ``Open -> (Labeled, Commented)* -> Closed``. Each verified,
deduplicated ``IssueEvent`` is turned into a list of explicit actions by the
pure function ``plan_actions``; ``IssueAutomation`` executes them against the
hosting API.

Reactions:
    - opened: labels from the ordered rule table (every matching rule fires),
      one welcome comment for the primary category, optional assignment
    - closed: one thank-you comment
    - labeled, comments and everything else: logged only

Events on pull requests and events sent by the automation identity itself
are ignored.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import structlog

from feedbacker.config.settings import FeedbackerSettings, LabelRuleConfig, ProjectConfig
from feedbacker.credentials.provider import CredentialProvider
from feedbacker.engine.dedup import DeliveryDeduplicator
from feedbacker.engine.pipeline import HostFactory
from feedbacker.exceptions import DuplicateEventError
from feedbacker.models.domain import IssueEvent, normalize_text
from feedbacker.providers.base import HostingProvider
from feedbacker.rendering import MessageRenderer

log = structlog.get_logger(__name__)

HANDLED_EVENT_TYPES = frozenset({"issues", "issue_comment"})


@dataclass(frozen=True)
class LabelRule:
    """Predicate over normalized issue text -> label."""

    label: str
    keywords: tuple[str, ...] = ()
    pattern: re.Pattern[str] | None = None
    category: str = ""

    @property
    def name(self) -> str:
        return self.category or self.label

    def matches(self, text: str) -> bool:
        for keyword in self.keywords:
            if re.search(rf"(?<!\w){re.escape(normalize_text(keyword))}(?!\w)", text):
                return True
        return self.pattern is not None and self.pattern.search(text) is not None

    @classmethod
    def from_config(cls, config: LabelRuleConfig) -> "LabelRule":
        return cls(
            label=config.label,
            keywords=tuple(config.keywords),
            pattern=re.compile(config.pattern, re.IGNORECASE | re.MULTILINE) if config.pattern else None,
            category=config.category or config.label,
        )


_QUESTION_PATTERN = re.compile(
    r"^(how|what|why|when|where|which|who|can|could|does|do|is|are|should)\b|\?",
    re.IGNORECASE | re.MULTILINE,
)

DEFAULT_LABEL_RULES: tuple[LabelRule, ...] = (
    LabelRule(
        "bug",
        ("bug", "error", "crash", "crashes", "broken", "exception", "fails", "failure", "traceback", "regression"),
        category="bug",
    ),
    LabelRule(
        "enhancement",
        ("feature", "enhancement", "add support", "feature request", "would be nice", "proposal"),
        category="enhancement",
    ),
    LabelRule("documentation", ("docs", "documentation", "readme", "typo", "docstring"), category="documentation"),
    LabelRule("question", ("question",), pattern=_QUESTION_PATTERN, category="question"),
    LabelRule("performance", ("slow", "performance", "latency", "memory leak", "cpu usage"), category="performance"),
    LabelRule(
        "priority: high",
        ("urgent", "critical", "asap", "blocker", "security", "vulnerability", "production down"),
        category="urgent",
    ),
)


@dataclass(frozen=True)
class Classification:
    """Rules fired for an issue, in table order."""

    fired: tuple[LabelRule, ...] = ()

    @property
    def labels(self) -> list[str]:
        return list(dict.fromkeys(rule.label for rule in self.fired))

    @property
    def primary_category(self) -> str | None:
        return self.fired[0].name if self.fired else None


def classify(title: str, body: str, rules: Sequence[LabelRule] = DEFAULT_LABEL_RULES) -> Classification:
    """Evaluate every rule against the normalized title and body."""
    # Title and body stay on separate lines for anchored patterns
    text = f"{normalize_text(title)}\n{normalize_text(body)}"
    return Classification(fired=tuple(rule for rule in rules if rule.matches(text)))


@dataclass(frozen=True)
class AddLabels:
    labels: tuple[str, ...]

    async def execute(self, host: HostingProvider, issue_number: int) -> None:
        await host.add_labels(issue_number, list(self.labels))


@dataclass(frozen=True)
class PostComment:
    body: str

    async def execute(self, host: HostingProvider, issue_number: int) -> None:
        await host.add_comment(issue_number, self.body)


@dataclass(frozen=True)
class AssignIssue:
    assignees: tuple[str, ...]

    async def execute(self, host: HostingProvider, issue_number: int) -> None:
        await host.add_assignees(issue_number, list(self.assignees))


@dataclass(frozen=True)
class CloseIssue:
    async def execute(self, host: HostingProvider, issue_number: int) -> None:
        await host.close_issue(issue_number)


Action = AddLabels | PostComment | AssignIssue | CloseIssue


def rules_for(project: ProjectConfig) -> tuple[LabelRule, ...]:
    if project.label_rules is None:
        return DEFAULT_LABEL_RULES
    return tuple(LabelRule.from_config(rule) for rule in project.label_rules)


def choose_assignee(classification: Classification, assignees: dict[str, str]) -> str | None:
    """First fired rule whose category or label has an assignee mapping."""
    for rule in classification.fired:
        for key in (rule.name, rule.label):
            if key in assignees:
                return assignees[key]
    return None


def plan_actions(
    event: IssueEvent,
    project: ProjectConfig,
    renderer: MessageRenderer,
    automation_username: str | None = None,
) -> list[Action]:
    """Decide the side effects for one event. Performs no I/O."""
    if event.is_pull_request:
        return []
    if automation_username and event.sender and event.sender.lower() == automation_username.lower():
        return []
    if event.event_type != "issues":
        return []

    if event.action == "opened":
        classification = classify(event.title, event.body, rules_for(project))
        labels = [label for label in classification.labels if label not in event.labels]
        actions: list[Action] = []
        if labels:
            actions.append(AddLabels(tuple(labels)))
        actions.append(
            PostComment(renderer.welcome_comment(classification.primary_category, classification.labels, event.sender))
        )
        assignee = choose_assignee(classification, project.assignees)
        if assignee:
            actions.append(AssignIssue((assignee,)))
        return actions

    if event.action == "closed":
        return [PostComment(renderer.thank_you_comment(event.issue_number, event.sender))]

    return []


@dataclass
class EventOutcome:
    """What handling one delivery did, reported back to the webhook caller."""

    status: str
    actions: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"status": self.status, "actions": self.actions, "labels": self.labels}


class IssueAutomation:
    """Executes planned actions for inbound issue events, exactly once per delivery."""

    def __init__(
        self,
        settings: FeedbackerSettings,
        credentials: CredentialProvider,
        host_factory: HostFactory,
        deduplicator: DeliveryDeduplicator,
        renderer: MessageRenderer | None = None,
    ) -> None:
        self.settings = settings
        self.credentials = credentials
        self.host_factory = host_factory
        self.deduplicator = deduplicator
        self.renderer = renderer or MessageRenderer()

    async def handle(self, event: IssueEvent) -> EventOutcome:
        """Process one delivery.

        Raises:
            DuplicateEventError: If the delivery id was already handled
            HostError, CredentialError: If executing an action fails
        """
        if not self.deduplicator.mark(event.delivery_id):
            raise DuplicateEventError(event.delivery_id)

        with structlog.contextvars.bound_contextvars(
            delivery_id=event.delivery_id, repository=event.repository, issue=event.issue_number
        ):
            project = self.settings.find_project(event.repository)
            if project is None:
                log.info("issue_event_ignored", reason="project_not_configured")
                return EventOutcome("ignored")

            if event.event_type not in HANDLED_EVENT_TYPES or event.action not in ("opened", "closed"):
                log.info("issue_event_logged", event_type=event.event_type, action=event.action, label=event.label)

            actions = plan_actions(event, project, self.renderer, self.settings.identity.username)
            if not actions:
                return EventOutcome("ignored")

            executed = await self.execute(project, event.issue_number, actions, delivery_id=event.delivery_id)
            labels = [label for action in actions if isinstance(action, AddLabels) for label in action.labels]
            log.info("issue_event_processed", action=event.action, executed=executed, labels=labels)
            return EventOutcome("processed", actions=executed, labels=labels)

    async def execute(
        self,
        project: ProjectConfig,
        issue_number: int,
        actions: Iterable[Action],
        delivery_id: str | None = None,
    ) -> list[str]:
        """Run actions in order against the hosting API; return their names.

        If the very first action fails, the delivery id (when given) is
        forgotten so a redelivery can try again; once any side effect has
        happened it stays recorded.
        """
        executed: list[str] = []
        host: HostingProvider | None = None
        try:
            credential = self.credentials.get_credential(project)
            host = self.host_factory(credential, project.repository)
            for action in actions:
                await action.execute(host, issue_number)
                executed.append(type(action).__name__)
        except Exception:
            if delivery_id is not None and not executed:
                self.deduplicator.forget(delivery_id)
            log.error("issue_actions_failed", executed=executed, exc_info=True)
            raise
        finally:
            if host is not None:
                await host.close()
        return executed

    # Manual issue management uses the same actions as the webhook path.

    async def comment(self, project: ProjectConfig, issue_number: int, body: str) -> list[str]:
        return await self.execute(project, issue_number, [PostComment(body)])

    async def label(self, project: ProjectConfig, issue_number: int, labels: list[str]) -> list[str]:
        return await self.execute(project, issue_number, [AddLabels(tuple(labels))])

    async def close(self, project: ProjectConfig, issue_number: int, comment: str | None = None) -> list[str]:
        actions: list[Action] = [PostComment(comment)] if comment else []
        actions.append(CloseIssue())
        return await self.execute(project, issue_number, actions)
