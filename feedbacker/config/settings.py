"""
Configuration system using Pydantic for type-safe settings management.

This module provides configuration classes for every part of the service:
the HTTP server, the automation identity, language-model providers, the job
scheduler, the git engine, webhook deduplication, logging, and the list of
projects feedback may target.

Secrets (tokens, API keys, the webhook secret) are stored as credential
references (``${ENV_VAR}``, ``@keyring:service/key``) and resolved through
``feedbacker.credentials.CredentialResolver`` when they are needed.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedbacker.enums import FeedbackCategory, ProviderType
from feedbacker.exceptions import ConfigurationError

_REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="127.0.0.1", description="Address to bind")
    port: int = Field(default=3000, ge=1, le=65535, description="Port to bind")
    webhook_secret: str | None = Field(
        default=None,
        description="Shared secret for webhook signatures (supports @keyring:, ${ENV})",
    )
    public_url: str = Field(default="", description="Public base URL used in tracking links")


class IdentityConfig(BaseModel):
    """The automation identity under which every repository mutation is made.

    Supports credential references for token:
    - token: "@keyring:github/token"
    - token: "${GITHUB_TOKEN}"
    """

    username: str = Field(default="feedbacker-bot", description="Account login of the automation identity")
    email: str = Field(default="feedbacker-bot@users.noreply.github.com", description="Commit email")
    token: str = Field(..., description="API/HTTPS token (supports @keyring:, ${ENV})")
    ssh_key_path: str | None = Field(default=None, description="Private key for SSH git transport")
    api_base_url: str = Field(default="https://api.github.com", description="Hosting API base URL")
    git_host: str = Field(default="github.com", description="Host used for clone/push URLs")


class LLMProviderSettings(BaseModel):
    """Connection settings for one provider type."""

    api_key: str | None = Field(default=None, description="API key (supports @keyring:, ${ENV})")
    base_url: str | None = Field(default=None, description="Override the provider's default endpoint")
    model: str | None = Field(default=None, description="Model used when a submission requests this provider")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=8192, ge=1, description="Maximum tokens in the response")


class LLMSelection(BaseModel):
    """Which provider, model and system message answer a piece of feedback."""

    provider: ProviderType = Field(default=ProviderType.OPENAI, description="Provider type")
    model: str = Field(default="gpt-4o", description="Model identifier")
    system_message: str | None = Field(default=None, description="System message; falls back to the built-in one")


class LLMConfig(BaseModel):
    """Language-model gateway configuration."""

    providers: dict[ProviderType, LLMProviderSettings] = Field(
        default_factory=dict, description="Per provider-type connection settings"
    )
    default: LLMSelection = Field(default_factory=LLMSelection, description="Deployment-wide default selection")
    timeout_seconds: float = Field(default=120.0, gt=0, description="Per-call timeout")


class SchedulerConfig(BaseModel):
    """Feedback job scheduler configuration."""

    max_workers: int = Field(default=4, ge=1, le=64, description="Size of the global worker pool")
    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per job for transient failures")
    backoff_factor: float = Field(default=2.0, ge=0.0, description="Exponential backoff base in seconds")
    max_finished_jobs: int = Field(
        default=1000, ge=1, description="Finished jobs kept for polling; the oldest are forgotten beyond this"
    )


class GitConfig(BaseModel):
    """Git mutation engine configuration."""

    branch_prefix: str = Field(default="feedback/", description="Prefix for deterministic branch names")
    workspace_dir: str | None = Field(default=None, description="Parent directory for job workspaces")
    command_timeout: float = Field(default=300.0, gt=0, description="Timeout per git command in seconds")
    commit_type_by_category: dict[FeedbackCategory, str] = Field(
        default_factory=lambda: {
            FeedbackCategory.BUG_REPORT: "fix",
            FeedbackCategory.FEATURE_REQUEST: "feat",
            FeedbackCategory.IMPROVEMENT: "refactor",
            FeedbackCategory.DOCUMENTATION: "docs",
            FeedbackCategory.QUESTION: "docs",
            FeedbackCategory.OTHER: "chore",
        },
        description="Conventional commit type per feedback category",
    )


class WebhookConfig(BaseModel):
    """Issue webhook handling configuration."""

    dedup_ttl_seconds: float = Field(default=3600.0, gt=0, description="How long a delivery id is remembered")
    dedup_max_entries: int = Field(default=10000, ge=1, description="Upper bound on remembered delivery ids")
    prune_interval_seconds: float = Field(default=60.0, gt=0, description="Background pruning interval")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Minimum log level")
    format: Literal["json", "console"] = Field(default="json", description="Renderer")


class LabelRuleConfig(BaseModel):
    """One entry of an ordered issue classification table.

    A rule fires when any keyword occurs as a whole word in the normalized
    issue text, or when ``pattern`` matches it.
    """

    label: str = Field(..., description="Label applied when the rule fires")
    keywords: list[str] = Field(default_factory=list, description="Whole-word keywords (case-insensitive)")
    pattern: str | None = Field(default=None, description="Regular expression over the normalized text")
    category: str | None = Field(default=None, description="Category name; defaults to the label")

    @model_validator(mode="after")
    def validate_predicate(self) -> LabelRuleConfig:
        """A rule needs at least one way to match."""
        if not self.keywords and not self.pattern:
            raise ValueError(f"Label rule '{self.label}' needs keywords or a pattern")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"Invalid pattern for label rule '{self.label}': {e}") from e
        return self


class ProjectConfig(BaseModel):
    """A repository feedback may target. Read-only to the engine."""

    repository: str = Field(..., description="Repository in owner/repo form")
    default_branch: str = Field(default="main", description="Base branch for feedback branches")
    credential: str | None = Field(
        default=None,
        description="Per-project token reference overriding the identity token",
    )
    llm: LLMSelection | None = Field(default=None, description="Project default selection")
    llm_by_category: dict[FeedbackCategory, LLMSelection] = Field(
        default_factory=dict, description="Selection overrides per feedback category"
    )
    system_message: str | None = Field(default=None, description="Project-wide system message")
    pull_request_labels: list[str] = Field(
        default_factory=lambda: ["feedback", "automated"], description="Labels applied to pull requests"
    )
    label_rules: list[LabelRuleConfig] | None = Field(
        default=None, description="Ordered issue classification table; built-in table when absent"
    )
    assignees: dict[str, str] = Field(default_factory=dict, description="Category or label -> assignee login")

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, value: str) -> str:
        if not _REPOSITORY_PATTERN.match(value):
            raise ValueError(f"Repository must be in 'owner/repo' format, got: {value}")
        return value

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repository.split("/", 1)[1]


class FeedbackerSettings(BaseSettings):
    """Main service settings.

    Combines all configuration sections and provides loading from YAML files
    with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="FEEDBACKER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    identity: IdentityConfig
    server: ServerConfig = Field(default_factory=ServerConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    projects: list[ProjectConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_projects(self) -> FeedbackerSettings:
        """Project repositories must be unique (case-insensitive)."""
        seen: set[str] = set()
        for project in self.projects:
            key = project.repository.lower()
            if key in seen:
                raise ValueError(f"Duplicate project repository: {project.repository}")
            seen.add(key)
        return self

    def get_project(self, repository: str) -> ProjectConfig:
        """Look up a configured project by ``owner/repo`` (case-insensitive).

        Raises:
            ConfigurationError: If the repository is not configured
        """
        project = self.find_project(repository)
        if project is None:
            raise ConfigurationError(f"Project not configured: {repository}")
        return project

    def find_project(self, repository: str) -> ProjectConfig | None:
        key = repository.strip().lower()
        for project in self.projects:
            if project.repository.lower() == key:
                return project
        return None

    @classmethod
    def from_yaml(cls, config_path: str) -> FeedbackerSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            FeedbackerSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file) as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except TypeError as e:
            raise ConfigurationError(f"Missing or invalid configuration fields: {e}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        Values that must stay references for the credential resolver can be
        written as ``$${VAR_NAME}``, which is left as ``${VAR_NAME}``.

        Raises:
            ValueError: If a required environment variable is not set

        Note:
            YAML comment lines (starting with #) are preserved unchanged.
        """
        pattern = re.compile(r"(?<!\$)\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            stripped = line.lstrip()
            if stripped.startswith("#"):
                return line
            return pattern.sub(replace_var, line).replace("$${", "${")

        return "\n".join(process_line(line) for line in content.split("\n"))
