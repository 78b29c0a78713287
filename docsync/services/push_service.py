"""Push engine: export local document content as a new commit on the remote branch.

The commit is assembled from git objects through the hosting API: one blob
per file, a tree layered over the branch head's tree, a commit, and finally a
non-force ref update. The ref update is the linearization point: if the
branch moved after it was read, the update is rejected and nothing local
changes. Only files that made it into the committed tree are marked synced.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from docsync.exceptions import (
    NothingToCommitError,
    PersistenceError,
    RemoteAPIError,
    ValidationError,
)
from docsync.models.file import File, FileGitStatus
from docsync.remote.base import NewTreeEntry
from docsync.services.access_service import Capability, authorize
from docsync.services.connector_service import load_binding, mark_synced
from docsync.services.datetime_service import now_formatted
from docsync.services.ledger_service import (
    OperationStatus,
    OperationType,
    complete_operation,
    fail_operation,
    open_operation,
)
from docsync.services.outcomes import ItemOutcome, OutcomeStatus, PushResult, SkipReason
from docsync.services.worker_pool import run_bounded

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from docsync.models.user import User
    from docsync.remote.base import RemoteFactory, RemoteRepository
    from docsync.services.connector_service import RemoteBinding
    from docsync.services.secret_service import CredentialProvider
    from docsync.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

SYNCED = "synced"
MAX_COMMIT_MESSAGE_LENGTH = 10_000


@dataclass
class _BuiltEntry:
    file: File
    tree_entry: NewTreeEntry


class _UnrecordedCommitError(Exception):
    """The branch now points at ``commit_sha`` but local metadata was not written."""

    def __init__(self, commit_sha: str) -> None:
        super().__init__(f"Commit {commit_sha} landed but was not recorded")
        self.commit_sha = commit_sha


def _dedupe(file_ids: list[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for file_id in file_ids:
        if file_id not in seen:
            seen.add(file_id)
            unique.append(file_id)
    return unique


def validate_push_request(commit_message: str, file_ids: list[str]) -> tuple[str, list[str]]:
    """Normalize and validate push input. Raises ValidationError."""
    message = commit_message.strip()
    if not message:
        raise ValidationError("Commit message is required")
    if len(message) > MAX_COMMIT_MESSAGE_LENGTH:
        msg = f"Commit message exceeds {MAX_COMMIT_MESSAGE_LENGTH} characters"
        raise ValidationError(msg)
    ids = _dedupe([f for f in file_ids if f])
    if not ids:
        raise ValidationError("Files to commit are required")
    return message, ids


async def _build_blob(
    remote: RemoteRepository,
    object_store: ObjectStore,
    file: File,
) -> _BuiltEntry | ItemOutcome:
    try:
        data = await object_store.get(file.storage_key)
    except (OSError, ValueError) as exc:
        logger.warning("Push: skipping %s, object store read failed: %s", file.path, exc)
        return ItemOutcome(
            path=file.path,
            status=OutcomeStatus.SKIPPED,
            file_id=file.id,
            reason=SkipReason.STORAGE_FAILED,
            detail=str(exc),
        )
    if data is None:
        logger.warning("Push: skipping %s, no content in object store", file.path)
        return ItemOutcome(
            path=file.path,
            status=OutcomeStatus.SKIPPED,
            file_id=file.id,
            reason=SkipReason.CONTENT_MISSING,
        )

    try:
        blob_sha = await remote.create_blob(data)
    except RemoteAPIError as exc:
        logger.warning("Push: skipping %s, blob creation failed: %s", file.path, exc)
        return ItemOutcome(
            path=file.path,
            status=OutcomeStatus.SKIPPED,
            file_id=file.id,
            reason=SkipReason.BLOB_FAILED,
            detail=str(exc),
        )
    return _BuiltEntry(file=file, tree_entry=NewTreeEntry(path=file.path, sha=blob_sha))


async def _load_files(
    session: AsyncSession,
    project_id: str,
    file_ids: list[str],
) -> tuple[list[File], list[ItemOutcome]]:
    """Load requested files of this project; unknown ids become skip outcomes."""
    stmt = select(File).where(File.project_id == project_id, File.id.in_(file_ids))
    found = {f.id: f for f in (await session.execute(stmt)).scalars().all()}
    missing = [
        ItemOutcome(
            path=None,
            status=OutcomeStatus.SKIPPED,
            file_id=file_id,
            reason=SkipReason.NOT_FOUND,
        )
        for file_id in file_ids
        if file_id not in found
    ]
    for outcome in missing:
        logger.warning("Push: skipping unknown file id %s", outcome.file_id)
    return sorted(found.values(), key=lambda f: f.path), missing


async def _mark_committed(
    session: AsyncSession,
    built: list[_BuiltEntry],
    actor: User,
    commit_hash: str,
    commit_message: str,
    now: str,
) -> None:
    author = actor.name or actor.email
    for item in built:
        file = item.file
        file.git_status = SYNCED
        file.last_commit_hash = commit_hash
        file.updated_at = now
        file.updated_by = actor.id

        stmt = select(FileGitStatus).where(FileGitStatus.file_id == file.id)
        detail = (await session.execute(stmt)).scalar_one_or_none()
        if detail is None:
            detail = FileGitStatus(id=str(uuid.uuid4()), file_id=file.id)
            session.add(detail)
        detail.git_status = SYNCED
        detail.last_commit_hash = commit_hash
        detail.last_commit_message = commit_message
        detail.last_commit_author = author
        detail.last_commit_date = now
        detail.updated_at = now
    await session.flush()


async def push(
    session: AsyncSession,
    project_id: str,
    actor: User,
    *,
    commit_message: str,
    file_ids: list[str],
    remote_factory: RemoteFactory,
    credentials: CredentialProvider,
    object_store: ObjectStore,
    max_workers: int = 4,
) -> PushResult:
    """Commit the requested files to the project's branch.

    Raises NothingToCommitError if no file could be turned into a blob, and
    RefUpdateRejectedError if the branch advanced since it was read. Both
    leave the ledger record ``failed`` and file metadata unchanged.
    """
    await authorize(session, project_id, actor.id, Capability.WRITE)
    message, ids = validate_push_request(commit_message, file_ids)
    binding = await load_binding(session, project_id, credentials)
    target = f"{binding.repo_identifier}:{binding.branch}"

    operation_id = await open_operation(
        session,
        project_id,
        OperationType.PUSH,
        actor.id,
        f"Pushing to {target} - {message}",
    )
    try:
        result = await _run_push(
            session,
            binding,
            actor,
            operation_id,
            commit_message=message,
            file_ids=ids,
            remote_factory=remote_factory,
            object_store=object_store,
            max_workers=max_workers,
        )
    except NothingToCommitError as exc:
        await fail_operation(session, operation_id, str(exc))
        raise
    except _UnrecordedCommitError as exc:
        await fail_operation(
            session,
            operation_id,
            f"Committed {exc.commit_sha} to {target} but failed to record metadata",
            commit_hash=exc.commit_sha,
        )
        raise PersistenceError(f"Push {operation_id} failed to persist metadata") from exc
    except SQLAlchemyError as exc:
        await fail_operation(session, operation_id, f"Error pushing to {target}: database error")
        raise PersistenceError(f"Push {operation_id} failed to persist metadata") from exc
    except Exception as exc:
        await fail_operation(session, operation_id, f"Failed to push to {target}: {exc}")
        raise
    return result


async def _run_push(
    session: AsyncSession,
    binding: RemoteBinding,
    actor: User,
    operation_id: str,
    *,
    commit_message: str,
    file_ids: list[str],
    remote_factory: RemoteFactory,
    object_store: ObjectStore,
    max_workers: int,
) -> PushResult:
    files, outcomes = await _load_files(session, binding.project.id, file_ids)

    async with remote_factory(binding.repo_identifier, binding.credential) as remote:
        head_sha = await remote.get_ref(binding.branch)
        base_tree = await remote.get_commit_tree(head_sha)

        async def build(file: File) -> _BuiltEntry | ItemOutcome:
            return await _build_blob(remote, object_store, file)

        built: list[_BuiltEntry] = []
        for item in await run_bounded(files, build, max_workers):
            if isinstance(item, ItemOutcome):
                outcomes.append(item)
            else:
                built.append(item)

        if not built:
            raise NothingToCommitError(operation_id, outcomes)

        tree_sha = await remote.create_tree(base_tree, [b.tree_entry for b in built])
        commit_sha = await remote.create_commit(commit_message, tree_sha, [head_sha])
        await remote.update_ref(binding.branch, commit_sha, force=False)

    logger.info(
        "Push %s: committed %d files as %s on %s:%s",
        operation_id,
        len(built),
        commit_sha,
        binding.repo_identifier,
        binding.branch,
    )

    try:
        await _record_push(
            session, binding, actor, operation_id, built, outcomes, commit_sha, commit_message
        )
    except SQLAlchemyError as exc:
        raise _UnrecordedCommitError(commit_sha) from exc
    return PushResult(operation_id=operation_id, commit_hash=commit_sha, outcomes=outcomes)


async def _record_push(
    session: AsyncSession,
    binding: RemoteBinding,
    actor: User,
    operation_id: str,
    built: list[_BuiltEntry],
    outcomes: list[ItemOutcome],
    commit_sha: str,
    commit_message: str,
) -> None:
    now = now_formatted()
    await _mark_committed(session, built, actor, commit_sha, commit_message, now)
    outcomes.extend(
        ItemOutcome(path=b.file.path, status=OutcomeStatus.COMMITTED, file_id=b.file.id)
        for b in built
    )
    outcomes.sort(key=lambda o: (o.path is None, o.path or "", o.file_id or ""))

    mark_synced(binding.project, now)
    skipped = sum(1 for o in outcomes if o.skipped)
    message = (
        f"Successfully pushed {len(built)} files to {binding.repo_identifier}:{binding.branch}"
    )
    if skipped:
        message += f" ({skipped} skipped)"
    await complete_operation(
        session, operation_id, OperationStatus.SUCCESS, message, commit_hash=commit_sha
    )
