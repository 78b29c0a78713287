"""Operation ledger: audit records of connect, pull and push attempts.

Every record moves ``in_progress -> success | failed`` exactly once. Writes
that would leave a terminal state raise ``LedgerStateError``.
"""

from __future__ import annotations

import logging
import uuid
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from docsync.exceptions import LedgerStateError
from docsync.models.operation import GitOperation
from docsync.services.datetime_service import now_formatted

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class OperationType(StrEnum):
    CONNECT = "connect"
    PULL = "pull"
    PUSH = "push"


class OperationStatus(StrEnum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationStatus.IN_PROGRESS


async def open_operation(
    session: AsyncSession,
    project_id: str,
    operation_type: OperationType,
    actor_id: str,
    message: str,
) -> str:
    """Insert an ``in_progress`` record and commit it. Returns the operation id."""
    operation = GitOperation(
        id=str(uuid.uuid4()),
        project_id=project_id,
        operation_type=operation_type,
        status=OperationStatus.IN_PROGRESS,
        message=message,
        performed_by=actor_id,
        started_at=now_formatted(),
    )
    session.add(operation)
    await session.commit()
    logger.info("Opened %s operation %s for project %s", operation_type, operation.id, project_id)
    return operation.id


async def complete_operation(
    session: AsyncSession,
    operation_id: str,
    status: OperationStatus,
    message: str,
    commit_hash: str | None = None,
) -> None:
    """Write the terminal status of an operation and commit it.

    Raises LedgerStateError if ``status`` is not terminal, the operation does
    not exist, or it has already been completed.
    """
    if not status.is_terminal:
        msg = f"Cannot complete operation {operation_id} with non-terminal status {status}"
        raise LedgerStateError(msg)

    operation = await session.get(GitOperation, operation_id)
    if operation is None:
        msg = f"Operation {operation_id} does not exist"
        raise LedgerStateError(msg)
    if operation.completed_at is not None or operation.status != OperationStatus.IN_PROGRESS:
        msg = f"Operation {operation_id} is already {operation.status}"
        raise LedgerStateError(msg)

    operation.status = status
    operation.message = message
    operation.commit_hash = commit_hash
    operation.completed_at = now_formatted()
    await session.commit()
    log = logger.info if status == OperationStatus.SUCCESS else logger.error
    log("Operation %s finished %s: %s", operation_id, status, message)


def record_operation(
    session: AsyncSession,
    project_id: str,
    operation_type: OperationType,
    actor_id: str,
    status: OperationStatus,
    message: str,
) -> str:
    """Insert an already-terminal record without committing.

    Used when the operation completes in the same transaction as its effect.
    """
    if not status.is_terminal:
        msg = f"record_operation requires a terminal status, got {status}"
        raise LedgerStateError(msg)
    now = now_formatted()
    operation = GitOperation(
        id=str(uuid.uuid4()),
        project_id=project_id,
        operation_type=operation_type,
        status=status,
        message=message,
        performed_by=actor_id,
        started_at=now,
        completed_at=now,
    )
    session.add(operation)
    return operation.id


async def list_operations(
    session: AsyncSession,
    project_id: str,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[GitOperation]:
    """List a project's operations, newest first."""
    stmt = (
        select(GitOperation)
        .options(selectinload(GitOperation.performer))
        .where(GitOperation.project_id == project_id)
        .order_by(GitOperation.started_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_operation(
    session: AsyncSession,
    project_id: str,
    operation_id: str,
) -> GitOperation | None:
    """Return one operation of the project, or None."""
    stmt = (
        select(GitOperation)
        .options(selectinload(GitOperation.performer))
        .where(GitOperation.id == operation_id, GitOperation.project_id == project_id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def fail_operation(
    session: AsyncSession,
    operation_id: str,
    message: str,
    commit_hash: str | None = None,
) -> None:
    """Discard pending changes of the aborted work and close the record as failed.

    ``commit_hash`` is set when the remote already holds a commit the local
    metadata could not record.
    """
    await session.rollback()
    await complete_operation(
        session, operation_id, OperationStatus.FAILED, message, commit_hash=commit_hash
    )
