"""Project access control: resolve a caller's role and check capabilities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import select

from docsync.exceptions import AccessDeniedError, ProjectNotFoundError
from docsync.models.project import Project, ProjectMember
from docsync.models.user import OrganizationMember

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class Role(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"
    NONE = "none"


class Capability(StrEnum):
    """What an operation needs from the caller's role."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.OWNER: frozenset({Capability.READ, Capability.WRITE, Capability.ADMIN}),
    Role.ADMIN: frozenset({Capability.READ, Capability.WRITE, Capability.ADMIN}),
    Role.EDITOR: frozenset({Capability.READ, Capability.WRITE}),
    Role.VIEWER: frozenset({Capability.READ}),
    Role.NONE: frozenset(),
}

_CAPABILITY_ERRORS = {
    Capability.READ: "Read access required",
    Capability.WRITE: "Write access required",
    Capability.ADMIN: "Admin access required",
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    role: Role


def _project_role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError:
        logger.warning("Unknown project role %r, treating as viewer", value)
        return Role.VIEWER


def _organization_role(value: str) -> Role:
    """Organization owners and admins keep their rank; every other member views."""
    if value == "owner":
        return Role.OWNER
    if value == "admin":
        return Role.ADMIN
    return Role.VIEWER


async def resolve_role(session: AsyncSession, project_id: str, user_id: str) -> Role:
    """Resolve the caller's role on a project.

    Project membership wins over organization membership. Raises
    ProjectNotFoundError if the project does not exist.
    """
    project = await session.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)

    stmt = select(ProjectMember.role).where(
        ProjectMember.project_id == project_id,
        ProjectMember.user_id == user_id,
    )
    project_role = (await session.execute(stmt)).scalar_one_or_none()
    if project_role is not None:
        return _project_role(project_role)

    if project.organization_id is None:
        return Role.NONE

    stmt = select(OrganizationMember.role).where(
        OrganizationMember.organization_id == project.organization_id,
        OrganizationMember.user_id == user_id,
    )
    org_role = (await session.execute(stmt)).scalar_one_or_none()
    if org_role is None:
        return Role.NONE
    return _organization_role(org_role)


async def authorize(
    session: AsyncSession,
    project_id: str,
    user_id: str,
    capability: Capability,
) -> AccessDecision:
    """Check that the caller may exercise ``capability`` on the project.

    Raises ProjectNotFoundError when the project is missing or the caller has
    no role at all, so the two cases look the same from outside. Raises
    AccessDeniedError when the role is known but insufficient.
    """
    role = await resolve_role(session, project_id, user_id)
    if role == Role.NONE:
        raise ProjectNotFoundError(project_id)
    if capability not in _CAPABILITIES[role]:
        logger.info(
            "Denied %s on project %s to user %s (role=%s)", capability, project_id, user_id, role
        )
        raise AccessDeniedError(_CAPABILITY_ERRORS[capability])
    return AccessDecision(allowed=True, role=role)
