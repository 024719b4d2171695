"""Credential references and the stores they point into.

A reference names where a secret lives instead of carrying it:

    ${GITHUB_TOKEN}         environment variable
    @keyring:github/token   OS keyring entry ``feedbacker/github``, key ``token``

Anything else is a literal value.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Protocol

import keyring
from keyring.errors import KeyringError, NoKeyringError

from feedbacker.exceptions import BackendNotAvailableError, CredentialError, CredentialFormatError

logger = logging.getLogger(__name__)

KEYRING_NAMESPACE = "feedbacker"

_ENV_REFERENCE = re.compile(r"^\$\{([A-Z_][A-Z0-9_]*)\}$")
_KEYRING_REFERENCE = re.compile(r"^@keyring:([^/]+)/(.+)$")


@dataclass(frozen=True)
class CredentialReference:
    """Parsed form of a configured secret.

    Attributes:
        scheme: ``env``, ``keyring`` or ``literal``
        location: Variable name, ``service/key`` pair, or the literal value
        raw: The configured string
    """

    scheme: str
    location: str
    raw: str

    @classmethod
    def parse(cls, value: str) -> "CredentialReference":
        """Classify a configured value.

        Raises:
            CredentialFormatError: If the value is empty or looks like a
                reference but does not match a known scheme
        """
        if not value or not value.strip():
            raise CredentialFormatError("Credential reference is empty")

        if match := _ENV_REFERENCE.match(value):
            return cls("env", match.group(1), value)
        if match := _KEYRING_REFERENCE.match(value):
            return cls("keyring", f"{match.group(1)}/{match.group(2)}", value)
        if value.startswith(("@", "${")):
            raise CredentialFormatError(
                "Unrecognized credential reference",
                reference=value,
                suggestion="Use ${VAR_NAME} or @keyring:service/key",
            )
        return cls("literal", value, value)

    def __str__(self) -> str:
        return self.raw if self.scheme != "literal" else "<literal>"


class CredentialBackend(Protocol):
    """A secret store serving one reference scheme."""

    scheme: str

    @property
    def available(self) -> bool: ...

    def lookup(self, reference: CredentialReference) -> str | None:
        """Return the secret, or None when the store has no such entry."""
        ...


class EnvironmentBackend:
    """Secrets injected as environment variables (containers, CI)."""

    scheme = "env"

    @property
    def available(self) -> bool:
        return True

    def lookup(self, reference: CredentialReference) -> str | None:
        return os.environ.get(reference.location)


class KeyringBackend:
    """Secrets in the OS keyring, namespaced under ``feedbacker/<service>``.

    Headless servers usually only have keyring's fail backend; it reports a
    priority below zero and is treated as unavailable.
    """

    scheme = "keyring"

    @property
    def available(self) -> bool:
        try:
            backend = keyring.get_keyring()
        except KeyringError as e:
            logger.debug(f"Keyring not available: {e}")
            return False
        return getattr(backend, "priority", 1) > 0

    def lookup(self, reference: CredentialReference) -> str | None:
        service, key = reference.location.split("/", 1)
        try:
            return keyring.get_password(f"{KEYRING_NAMESPACE}/{service}", key)
        except NoKeyringError as e:
            raise BackendNotAvailableError("No keyring backend is installed", reference=reference.raw) from e
        except KeyringError as e:
            raise CredentialError(f"Keyring lookup failed: {e}", reference=reference.raw) from e
