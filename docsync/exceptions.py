"""Application-level exception types.

Convention:
- ``InternalServerError``: errors whose details must never reach clients
  (ledger corruption, storage failures, etc.). The global handler logs the
  full message at ERROR and returns a generic "Internal server error" (500).
- ``ValidationError``: a ``ValueError`` for input the caller can fix (missing
  fields, a repository or credential the remote rejected). The message is
  safe to forward and is returned as a 400.
- ``AuthorizationError``: project-not-found (404) and access-denied (403).
- ``RemoteAPIError``: the remote hosting API answered with a non-2xx status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docsync.services.outcomes import ItemOutcome


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``docsync/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class PersistenceError(InternalServerError):
    """Relational store or object store failed to read or write."""


class LedgerStateError(InternalServerError):
    """A ledger write tried to leave a terminal state."""


class ValidationError(ValueError):
    """Caller-fixable input error, optionally carrying the remote's status code."""

    def __init__(self, message: str, remote_status: int | None = None) -> None:
        super().__init__(message)
        self.remote_status = remote_status


class NothingToCommitError(ValidationError):
    """A push produced no tree entries; carries the per-file outcomes."""

    def __init__(self, operation_id: str, outcomes: list[ItemOutcome]) -> None:
        super().__init__("No valid files to commit")
        self.operation_id = operation_id
        self.outcomes = outcomes


class AuthorizationError(Exception):
    """Base class for project access failures."""


class ProjectNotFoundError(AuthorizationError):
    """Project does not exist, or the caller has no role on it."""


class AccessDeniedError(AuthorizationError):
    """Caller has a role on the project, but not one with the needed capability."""


class RemoteAPIError(Exception):
    """The remote repository API returned a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{message} (remote status {status_code})")
        self.status_code = status_code
        self.message = message


class RefUpdateRejectedError(RemoteAPIError):
    """A non-force branch update was rejected because the branch moved."""
