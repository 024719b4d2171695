"""Configuration system for the feedbacker service.

This package provides type-safe configuration management using Pydantic,
including settings for the server, automation identity, LLM providers,
scheduler, git engine, webhook handling and target projects.

Key Components:
    - FeedbackerSettings: Main configuration container with YAML loading support
    - ProjectConfig: A repository feedback may target
    - LLMSelection: Provider/model/system-message choice
    - LabelRuleConfig: One row of the issue classification table

Example:
    >>> from feedbacker.config import FeedbackerSettings
    >>> settings = FeedbackerSettings.from_yaml("feedbacker.yaml")
    >>> project = settings.get_project("acme/widgets")
"""

from feedbacker.config.settings import (
    FeedbackerSettings,
    LabelRuleConfig,
    LLMSelection,
    ProjectConfig,
)

__all__ = [
    "FeedbackerSettings",
    "LLMSelection",
    "LabelRuleConfig",
    "ProjectConfig",
]
