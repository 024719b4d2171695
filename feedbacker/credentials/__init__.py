"""Secrets for the automation identity and language-model providers.

Configuration carries references, never secrets: ``${VAR_NAME}`` reads the
environment, ``@keyring:service/key`` reads the OS keyring under
``feedbacker/<service>``. Other values are used as given.
"""

from .backends import CredentialBackend, CredentialReference, EnvironmentBackend, KeyringBackend
from .provider import CredentialProvider, ResolverCredentialProvider
from .resolver import CredentialResolver

__all__ = [
    "CredentialBackend",
    "CredentialProvider",
    "CredentialReference",
    "CredentialResolver",
    "EnvironmentBackend",
    "KeyringBackend",
    "ResolverCredentialProvider",
]
