"""Pull engine: import the remote branch's tracked documents into local storage.

Remote reads and object-store writes for individual files run through a
bounded worker pool; metadata upserts then run sequentially in path order on
the request's session. A file that cannot be fetched, decoded or stored is
skipped and reported, the rest of the pull continues.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from docsync.exceptions import PersistenceError, RemoteAPIError
from docsync.models.file import File, FileGitStatus
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
from docsync.services.outcomes import ItemOutcome, OutcomeStatus, PullResult, SkipReason
from docsync.services.worker_pool import run_bounded
from docsync.storage.object_store import storage_key

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from docsync.models.user import User
    from docsync.remote.base import RemoteContent, RemoteFactory, RemoteRepository, TreeEntry
    from docsync.services.connector_service import RemoteBinding
    from docsync.services.secret_service import CredentialProvider
    from docsync.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

SYNCED = "synced"


@dataclass
class _FetchedFile:
    entry: TreeEntry
    key: str
    size: int


def is_tracked(path: str, extensions: Iterable[str]) -> bool:
    """Return True if ``path`` has one of the tracked document suffixes."""
    lowered = path.lower()
    return any(lowered.endswith(ext.lower()) for ext in extensions if ext)


def select_tracked_entries(
    entries: Iterable[TreeEntry], extensions: Iterable[str]
) -> list[TreeEntry]:
    """Keep blob entries with a tracked suffix, sorted by path."""
    exts = tuple(extensions)
    return sorted(
        (e for e in entries if e.is_blob and is_tracked(e.path, exts)),
        key=lambda e: e.path,
    )


def decode_content(content: RemoteContent) -> bytes:
    """Decode the remote's transport encoding. Raises ValueError if unsupported."""
    encoding = (content.encoding or "").lower()
    if encoding == "base64":
        try:
            return base64.b64decode(content.content)
        except binascii.Error as exc:
            msg = f"Invalid base64 content for {content.path}"
            raise ValueError(msg) from exc
    if encoding in ("utf-8", "utf8"):
        return content.content.encode("utf-8")
    msg = f"Unsupported content encoding {content.encoding!r} for {content.path}"
    raise ValueError(msg)


async def _fetch_and_store(
    remote: RemoteRepository,
    object_store: ObjectStore,
    binding: RemoteBinding,
    head: str,
    entry: TreeEntry,
) -> _FetchedFile | ItemOutcome:
    try:
        content = await remote.get_content(entry.path, head)
    except RemoteAPIError as exc:
        logger.warning("Pull: skipping %s, content fetch failed: %s", entry.path, exc)
        return ItemOutcome(
            path=entry.path,
            status=OutcomeStatus.SKIPPED,
            reason=SkipReason.CONTENT_FETCH_FAILED,
            detail=str(exc),
        )

    try:
        data = decode_content(content)
    except ValueError as exc:
        logger.warning("Pull: skipping %s, %s", entry.path, exc)
        return ItemOutcome(
            path=entry.path,
            status=OutcomeStatus.SKIPPED,
            reason=SkipReason.DECODE_FAILED,
            detail=str(exc),
        )

    key = storage_key(binding.project.id, entry.path)
    try:
        await object_store.put(key, data)
    except (OSError, ValueError) as exc:
        logger.warning("Pull: skipping %s, object store write failed: %s", entry.path, exc)
        return ItemOutcome(
            path=entry.path,
            status=OutcomeStatus.SKIPPED,
            reason=SkipReason.STORAGE_FAILED,
            detail=str(exc),
        )
    return _FetchedFile(entry=entry, key=key, size=len(data))


async def _upsert_file(
    session: AsyncSession,
    project_id: str,
    actor: User,
    fetched: _FetchedFile,
    now: str,
) -> ItemOutcome:
    """Insert or update the File row and its mirrored git status for one path.

    Both writes are single ``INSERT ... ON CONFLICT DO UPDATE`` statements, so
    pulls racing on the same project converge on one row per path.
    """
    path = fetched.entry.path
    proposed_id = str(uuid.uuid4())
    file_stmt = (
        sqlite_insert(File)
        .values(
            id=proposed_id,
            project_id=project_id,
            name=path.rsplit("/", 1)[-1],
            path=path,
            storage_key=fetched.key,
            size=fetched.size,
            git_status=SYNCED,
            last_commit_hash=fetched.entry.sha,
            created_by=actor.id,
            updated_by=actor.id,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=[File.project_id, File.path],
            set_={
                "storage_key": fetched.key,
                "size": fetched.size,
                "git_status": SYNCED,
                "last_commit_hash": fetched.entry.sha,
                "updated_by": actor.id,
                "updated_at": now,
            },
        )
        .returning(File.id)
    )
    file_id = (await session.execute(file_stmt)).scalar_one()

    detail_stmt = (
        sqlite_insert(FileGitStatus)
        .values(
            id=str(uuid.uuid4()),
            file_id=file_id,
            git_status=SYNCED,
            last_commit_hash=fetched.entry.sha,
            updated_at=now,
        )
        .on_conflict_do_update(
            index_elements=[FileGitStatus.file_id],
            set_={"git_status": SYNCED, "last_commit_hash": fetched.entry.sha, "updated_at": now},
        )
        .returning(FileGitStatus.id)
    )
    detail_id = (await session.execute(detail_stmt)).scalar_one()

    # Core statements bypass the identity map; reload rows this session already holds.
    await session.get(File, file_id, populate_existing=True)
    await session.get(FileGitStatus, detail_id, populate_existing=True)

    status = OutcomeStatus.CREATED if file_id == proposed_id else OutcomeStatus.UPDATED
    return ItemOutcome(path=path, status=status, file_id=file_id)


async def pull(
    session: AsyncSession,
    project_id: str,
    actor: User,
    *,
    remote_factory: RemoteFactory,
    credentials: CredentialProvider,
    object_store: ObjectStore,
    tracked_extensions: Iterable[str],
    max_workers: int = 4,
) -> PullResult:
    """Pull every tracked document at the branch head into the project.

    A failure to list the remote tree aborts the pull: the ledger record is
    closed ``failed`` and no file metadata changes. Per-file failures are
    skipped and returned in ``PullResult.skipped``.
    """
    await authorize(session, project_id, actor.id, Capability.WRITE)
    binding = await load_binding(session, project_id, credentials)
    target = f"{binding.repo_identifier}:{binding.branch}"

    operation_id = await open_operation(
        session, project_id, OperationType.PULL, actor.id, f"Pulling from {target}"
    )
    try:
        result = await _run_pull(
            session,
            binding,
            actor,
            operation_id,
            remote_factory=remote_factory,
            object_store=object_store,
            tracked_extensions=tracked_extensions,
            max_workers=max_workers,
        )
    except SQLAlchemyError as exc:
        await fail_operation(session, operation_id, f"Error pulling from {target}: database error")
        raise PersistenceError(f"Pull {operation_id} failed to persist metadata") from exc
    except Exception as exc:
        await fail_operation(session, operation_id, f"Failed to pull from {target}: {exc}")
        raise
    return result


async def _run_pull(
    session: AsyncSession,
    binding: RemoteBinding,
    actor: User,
    operation_id: str,
    *,
    remote_factory: RemoteFactory,
    object_store: ObjectStore,
    tracked_extensions: Iterable[str],
    max_workers: int,
) -> PullResult:
    project_id = binding.project.id

    async with remote_factory(binding.repo_identifier, binding.credential) as remote:
        # Tree and contents are read at one commit even if the branch moves meanwhile.
        head = await remote.get_ref(binding.branch)
        tree = await remote.get_tree(head, recursive=True)
        candidates = select_tracked_entries(tree, tracked_extensions)
        logger.info(
            "Pull %s at %s: %d of %d tree entries are tracked documents",
            operation_id,
            head[:12],
            len(candidates),
            len(tree),
        )

        async def fetch(entry: TreeEntry) -> _FetchedFile | ItemOutcome:
            return await _fetch_and_store(remote, object_store, binding, head, entry)

        fetched = await run_bounded(candidates, fetch, max_workers)

    now = now_formatted()
    result = PullResult(operation_id=operation_id)
    for item in fetched:
        if isinstance(item, ItemOutcome):
            result.skipped.append(item)
            continue
        result.files.append(await _upsert_file(session, project_id, actor, item, now))

    mark_synced(binding.project, now)
    message = (
        f"Successfully pulled {result.files_processed} files from "
        f"{binding.repo_identifier}:{binding.branch}"
    )
    if result.skipped:
        message += f" ({len(result.skipped)} skipped)"
    await complete_operation(session, operation_id, OperationStatus.SUCCESS, message)
    return result
