"""Repository connector: bind a project to a remote repository and credential."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from docsync.exceptions import ProjectNotFoundError, RemoteAPIError, ValidationError
from docsync.models.project import Project
from docsync.remote.github import is_valid_repo_identifier
from docsync.services.access_service import Capability, authorize
from docsync.services.datetime_service import now_formatted
from docsync.services.ledger_service import OperationStatus, OperationType, record_operation

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from docsync.models.user import User
    from docsync.remote.base import RemoteFactory
    from docsync.services.secret_service import CredentialProvider

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"

# Conservative subset of git-check-ref-format.
_BRANCH_RE = re.compile(r"^(?!/)(?!.*//)(?!.*\.\.)(?!.*@\{)[A-Za-z0-9._/-]+(?<![./])$")


@dataclass(frozen=True)
class ConnectResult:
    repo_identifier: str
    branch: str


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    repo_identifier: str | None
    branch: str | None
    last_sync_at: str | None
    sync_status: str | None


@dataclass(frozen=True)
class RemoteBinding:
    """A connected project together with its resolved credential."""

    project: Project
    repo_identifier: str
    branch: str
    credential: str


def validate_branch(branch: str) -> None:
    if not _BRANCH_RE.fullmatch(branch) or branch.endswith(".lock"):
        msg = f"Invalid branch name: {branch!r}"
        raise ValidationError(msg)


async def _get_project(session: AsyncSession, project_id: str) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


async def connect(
    session: AsyncSession,
    project_id: str,
    actor: User,
    *,
    repo_identifier: str,
    credential: str,
    branch: str | None,
    remote_factory: RemoteFactory,
    credentials: CredentialProvider,
) -> ConnectResult:
    """Connect a project to a remote repository.

    The repository and credential are checked with one read-only remote call
    before anything is stored. A remote rejection raises ValidationError with
    the remote status; the project row is left untouched.
    """
    await authorize(session, project_id, actor.id, Capability.ADMIN)

    # Stored exactly as given; surrounding whitespace fails the format checks.
    branch = branch or DEFAULT_BRANCH
    if not repo_identifier:
        raise ValidationError("Repository is required")
    if not is_valid_repo_identifier(repo_identifier):
        msg = f"Repository must be in owner/name form: {repo_identifier!r}"
        raise ValidationError(msg)
    if not credential or not credential.strip():
        raise ValidationError("Access token is required")
    validate_branch(branch)

    try:
        async with remote_factory(repo_identifier, credential) as remote:
            await remote.get_repository()
    except RemoteAPIError as exc:
        logger.warning(
            "Remote rejected repository %s for project %s (status %d)",
            repo_identifier,
            project_id,
            exc.status_code,
        )
        raise ValidationError(
            "Invalid repository or access token", remote_status=exc.status_code
        ) from exc

    project = await _get_project(session, project_id)
    project.repo_identifier = repo_identifier
    project.branch = branch
    project.updated_at = now_formatted()
    credentials.store(project, credential)
    record_operation(
        session,
        project_id,
        OperationType.CONNECT,
        actor.id,
        OperationStatus.SUCCESS,
        f"Connected to repository {repo_identifier}",
    )
    await session.commit()
    logger.info("Project %s connected to %s@%s", project_id, repo_identifier, branch)
    return ConnectResult(repo_identifier=repo_identifier, branch=branch)


async def disconnect(
    session: AsyncSession,
    project_id: str,
    actor: User,
    credentials: CredentialProvider,
) -> None:
    """Remove the repository binding and stored credential."""
    await authorize(session, project_id, actor.id, Capability.ADMIN)
    project = await _get_project(session, project_id)
    project.repo_identifier = None
    project.branch = None
    project.updated_at = now_formatted()
    credentials.clear(project)
    await session.commit()
    logger.info("Project %s disconnected from its repository", project_id)


async def get_connection_status(
    session: AsyncSession, project_id: str, actor: User
) -> ConnectionStatus:
    await authorize(session, project_id, actor.id, Capability.READ)
    project = await _get_project(session, project_id)
    return ConnectionStatus(
        connected=project.is_connected,
        repo_identifier=project.repo_identifier,
        branch=project.branch,
        last_sync_at=project.last_sync_at,
        sync_status=project.sync_status,
    )


async def load_binding(
    session: AsyncSession,
    project_id: str,
    credentials: CredentialProvider,
) -> RemoteBinding:
    """Resolve the repository, branch and credential for a connected project.

    Raises ValidationError if the project is not connected.
    """
    project = await _get_project(session, project_id)
    credential = credentials.load(project)
    if not project.repo_identifier or not credential:
        raise ValidationError("Project not connected to a remote repository")
    return RemoteBinding(
        project=project,
        repo_identifier=project.repo_identifier,
        branch=project.branch or DEFAULT_BRANCH,
        credential=credential,
    )


def mark_synced(project: Project, synced_at: str) -> None:
    """Record a successful sync on the project row. The caller commits."""
    project.last_sync_at = synced_at
    project.sync_status = OperationStatus.SUCCESS
