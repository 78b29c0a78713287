"""Git operation ledger model."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docsync.models.base import Base

if TYPE_CHECKING:
    from docsync.models.project import Project
    from docsync.models.user import User


class GitOperation(Base):
    """Audit record of one connect, pull or push attempt."""

    __tablename__ = "git_operations"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    operation_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="in_progress")
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    commit_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(
        String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    started_at: Mapped[str] = mapped_column(Text, nullable=False)
    completed_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    project: Mapped[Project] = relationship(back_populates="operations")
    performer: Mapped[User | None] = relationship()
