"""SQLAlchemy ORM models for DocSync."""

from docsync.models.base import Base
from docsync.models.file import File, FileGitStatus
from docsync.models.operation import GitOperation
from docsync.models.project import Project, ProjectMember
from docsync.models.user import Organization, OrganizationMember, User

__all__ = [
    "Base",
    "File",
    "FileGitStatus",
    "GitOperation",
    "Organization",
    "OrganizationMember",
    "Project",
    "ProjectMember",
    "User",
]
