"""Project and project membership models."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docsync.models.base import Base

if TYPE_CHECKING:
    from docsync.models.file import File
    from docsync.models.operation import GitOperation
    from docsync.models.user import Organization


class Project(Base):
    """A workspace bound to at most one remote repository."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    organization_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    repo_identifier: Mapped[str | None] = mapped_column(String, nullable=True)
    branch: Mapped[str | None] = mapped_column(String, nullable=True)
    # Fernet ciphertext written by the credential provider, never plaintext.
    credential: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_status: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    organization: Mapped[Organization | None] = relationship(back_populates="projects")
    members: Mapped[list[ProjectMember]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )
    files: Mapped[list[File]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )
    operations: Mapped[list[GitOperation]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )

    @property
    def is_connected(self) -> bool:
        return bool(self.repo_identifier and self.credential)


class ProjectMember(Base):
    """Project-level role: owner, admin, editor or viewer."""

    __tablename__ = "project_members"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)

    project: Mapped[Project] = relationship(back_populates="members")

    __table_args__ = (UniqueConstraint("project_id", "user_id"),)
