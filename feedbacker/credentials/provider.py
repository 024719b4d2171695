"""Per-project automation credential lookup."""

import logging
from typing import Protocol

from feedbacker.config.settings import IdentityConfig, ProjectConfig
from feedbacker.models.domain import AutomationCredential

from .resolver import CredentialResolver

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Source of the automation credential for a project."""

    def get_credential(self, project: ProjectConfig) -> AutomationCredential:
        """Return the credential to use for the project.

        Raises:
            CredentialError: If the credential cannot be resolved
        """
        ...


class ResolverCredentialProvider:
    """Builds credentials from the identity config and per-project overrides.

    The project's ``credential`` reference, when set, replaces the identity
    token; the identity's username, email and SSH key are always used.
    """

    def __init__(self, identity: IdentityConfig, resolver: CredentialResolver | None = None) -> None:
        self.identity = identity
        self.resolver = resolver or CredentialResolver()

    def get_credential(self, project: ProjectConfig) -> AutomationCredential:
        reference = project.credential or self.identity.token
        token = self.resolver.resolve(reference)
        logger.debug(f"Resolved automation credential for {project.repository}")
        return AutomationCredential(
            username=self.identity.username,
            email=self.identity.email,
            token=token,
            ssh_key_path=self.identity.ssh_key_path,
        )
