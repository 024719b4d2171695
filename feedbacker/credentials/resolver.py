"""Turns configured credential references into secret values."""

import logging
from collections.abc import Iterable

from feedbacker.exceptions import BackendNotAvailableError, CredentialNotFoundError

from .backends import CredentialBackend, CredentialReference, EnvironmentBackend, KeyringBackend

logger = logging.getLogger(__name__)

_TOKEN_PREFIXES = ("ghp_", "gho_", "ghu_", "ghs_", "ghr_", "github_pat_", "sk-")


class CredentialResolver:
    """Resolves ``${VAR}``, ``@keyring:service/key`` and literal values.

    Each reference scheme is served by exactly one backend. Resolved values
    are cached per raw reference until :meth:`clear_cache` is called, so a
    rotated secret needs a cache clear or ``cache=False``.
    """

    def __init__(self, backends: Iterable[CredentialBackend] | None = None) -> None:
        chosen = list(backends) if backends is not None else [EnvironmentBackend(), KeyringBackend()]
        self._backends: dict[str, CredentialBackend] = {backend.scheme: backend for backend in chosen}
        self._cache: dict[str, str] = {}

    @property
    def schemes(self) -> list[str]:
        return sorted(self._backends)

    def resolve(self, value: str, cache: bool = True) -> str:
        """Return the secret a reference points to.

        Raises:
            CredentialFormatError: Empty or malformed reference
            CredentialNotFoundError: The backend has no such entry
            BackendNotAvailableError: No usable backend for the scheme
        """
        if cache and value in self._cache:
            return self._cache[value]

        reference = CredentialReference.parse(value)
        if reference.scheme == "literal":
            if reference.location.startswith(_TOKEN_PREFIXES):
                logger.warning("Credential configured as a literal token; prefer ${VAR} or @keyring:")
            return reference.location

        secret = self._lookup(reference)
        if cache:
            self._cache[value] = secret
        return secret

    def _lookup(self, reference: CredentialReference) -> str:
        backend = self._backends.get(reference.scheme)
        if backend is None:
            raise BackendNotAvailableError(f"No {reference.scheme} backend configured", reference=reference.raw)
        if not backend.available:
            raise BackendNotAvailableError(
                f"The {reference.scheme} backend is not available on this host",
                reference=reference.raw,
                suggestion="Reference an environment variable instead: ${VAR_NAME}",
            )

        secret = backend.lookup(reference)
        if secret is None:
            if reference.scheme == "env":
                raise CredentialNotFoundError(
                    f"Environment variable not set: {reference.location}",
                    reference=reference.raw,
                    suggestion=f"export {reference.location}='...'",
                )
            raise CredentialNotFoundError(f"No {reference.scheme} entry for {reference.location}", reference=reference.raw)

        logger.debug(f"Resolved credential {reference}")
        return secret

    def clear_cache(self) -> None:
        self._cache.clear()
