"""Credential storage for remote repository access tokens.

Tokens are handed to a ``CredentialProvider`` and never travel back out
through API responses. The default provider keeps them Fernet-encrypted in
the ``projects.credential`` column, keyed from the application secret.
"""

from __future__ import annotations

import base64
import hashlib
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from cryptography.fernet import Fernet, InvalidToken

from docsync.exceptions import PersistenceError

if TYPE_CHECKING:
    from docsync.models.project import Project


@runtime_checkable
class CredentialProvider(Protocol):
    """Stores and resolves the remote credential bound to a project."""

    def store(self, project: Project, credential: str) -> None:
        """Attach ``credential`` to ``project``. The caller commits the session."""
        ...

    def load(self, project: Project) -> str | None:
        """Return the plaintext credential, or None when the project has none."""
        ...

    def clear(self, project: Project) -> None:
        """Remove any credential from ``project``."""
        ...


def _derive_key(secret_key: str) -> bytes:
    """Derive a Fernet key from the application secret using SHA-256."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return base64.urlsafe_b64encode(digest)


class EncryptedCredentialProvider:
    """Keeps credentials encrypted at rest on the project row."""

    def __init__(self, secret_key: str) -> None:
        self._fernet = Fernet(_derive_key(secret_key))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored credential. Raises PersistenceError on a bad token."""
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as exc:
            raise PersistenceError("Failed to decrypt stored credential") from exc

    def store(self, project: Project, credential: str) -> None:
        project.credential = self.encrypt(credential)

    def load(self, project: Project) -> str | None:
        if not project.credential:
            return None
        return self.decrypt(project.credential)

    def clear(self, project: Project) -> None:
        project.credential = None
