"""Tracked document models."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docsync.models.base import Base

if TYPE_CHECKING:
    from docsync.models.project import Project


class File(Base):
    """A tracked document. Content lives in the object store under ``storage_key``."""

    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    git_status: Mapped[str] = mapped_column(String, nullable=False, default="new")
    last_commit_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    project: Mapped[Project] = relationship(back_populates="files")
    git_detail: Mapped[FileGitStatus | None] = relationship(
        back_populates="file", cascade="all, delete-orphan", uselist=False
    )

    __table_args__ = (UniqueConstraint("project_id", "path"),)


class FileGitStatus(Base):
    """Per-file sync detail mirrored from ``File``."""

    __tablename__ = "file_git_status"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    file_id: Mapped[str] = mapped_column(
        String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    git_status: Mapped[str] = mapped_column(String, nullable=False)
    last_commit_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    last_commit_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_commit_author: Mapped[str | None] = mapped_column(String, nullable=True)
    last_commit_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False)

    file: Mapped[File] = relationship(back_populates="git_detail")
