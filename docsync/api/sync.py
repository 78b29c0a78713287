"""Repository sync API endpoints: connect, pull, push and the operation ledger."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from docsync.api.deps import (
    get_credential_provider,
    get_object_store,
    get_remote_factory,
    get_session,
    get_settings,
    require_auth,
)
from docsync.config import Settings
from docsync.models.user import User
from docsync.remote.base import RemoteFactory
from docsync.schemas.sync import (
    ConnectionStatusResponse,
    ConnectRequest,
    ConnectResponse,
    GitOperationListResponse,
    GitOperationResponse,
    ItemOutcomeResponse,
    PullResponse,
    PushRequest,
    PushResponse,
)
from docsync.services import connector_service, ledger_service, pull_service, push_service
from docsync.services.access_service import Capability, authorize
from docsync.services.secret_service import CredentialProvider
from docsync.storage.object_store import ObjectStore

if TYPE_CHECKING:
    from docsync.models.operation import GitOperation
    from docsync.services.outcomes import ItemOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects/{project_id}/git", tags=["git"])


def outcome_response(outcome: ItemOutcome) -> ItemOutcomeResponse:
    return ItemOutcomeResponse(
        id=outcome.file_id,
        path=outcome.path,
        status=outcome.status,
        reason=outcome.reason,
        detail=outcome.detail,
    )


def _operation_response(operation: GitOperation) -> GitOperationResponse:
    performer = operation.performer
    return GitOperationResponse(
        id=operation.id,
        project_id=operation.project_id,
        operation_type=operation.operation_type,
        status=operation.status,
        message=operation.message,
        commit_hash=operation.commit_hash,
        performed_by=operation.performed_by,
        performer_name=(performer.name or performer.email) if performer is not None else None,
        started_at=operation.started_at,
        completed_at=operation.completed_at,
    )


@router.post("/connect", response_model=ConnectResponse)
async def connect_endpoint(
    project_id: str,
    body: ConnectRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    remote_factory: Annotated[RemoteFactory, Depends(get_remote_factory)],
    credentials: Annotated[CredentialProvider, Depends(get_credential_provider)],
    user: Annotated[User, Depends(require_auth)],
) -> ConnectResponse:
    """Connect the project to a remote repository after validating the credential."""
    result = await connector_service.connect(
        session,
        project_id,
        user,
        repo_identifier=body.repo_identifier,
        credential=body.credential,
        branch=body.branch,
        remote_factory=remote_factory,
        credentials=credentials,
    )
    return ConnectResponse(repo_identifier=result.repo_identifier, branch=result.branch)


@router.delete("/connect", status_code=204)
async def disconnect_endpoint(
    project_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    credentials: Annotated[CredentialProvider, Depends(get_credential_provider)],
    user: Annotated[User, Depends(require_auth)],
) -> None:
    """Remove the repository binding and stored credential."""
    await connector_service.disconnect(session, project_id, user, credentials)


@router.get("/status", response_model=ConnectionStatusResponse)
async def status_endpoint(
    project_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> ConnectionStatusResponse:
    conn = await connector_service.get_connection_status(session, project_id, user)
    return ConnectionStatusResponse(
        connected=conn.connected,
        repo_identifier=conn.repo_identifier,
        branch=conn.branch,
        last_sync_at=conn.last_sync_at,
        sync_status=conn.sync_status,
    )


@router.post("/pull", response_model=PullResponse)
async def pull_endpoint(
    project_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    remote_factory: Annotated[RemoteFactory, Depends(get_remote_factory)],
    credentials: Annotated[CredentialProvider, Depends(get_credential_provider)],
    object_store: Annotated[ObjectStore, Depends(get_object_store)],
    user: Annotated[User, Depends(require_auth)],
) -> PullResponse:
    """Import tracked documents from the connected branch."""
    result = await pull_service.pull(
        session,
        project_id,
        user,
        remote_factory=remote_factory,
        credentials=credentials,
        object_store=object_store,
        tracked_extensions=settings.tracked_extensions,
        max_workers=settings.sync_max_workers,
    )
    return PullResponse(
        operation_id=result.operation_id,
        files_processed=result.files_processed,
        files=[outcome_response(o) for o in result.files],
        skipped=[outcome_response(o) for o in result.skipped],
    )


@router.post("/push", response_model=PushResponse)
async def push_endpoint(
    project_id: str,
    body: PushRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    remote_factory: Annotated[RemoteFactory, Depends(get_remote_factory)],
    credentials: Annotated[CredentialProvider, Depends(get_credential_provider)],
    object_store: Annotated[ObjectStore, Depends(get_object_store)],
    user: Annotated[User, Depends(require_auth)],
) -> PushResponse:
    """Commit the requested files to the connected branch."""
    result = await push_service.push(
        session,
        project_id,
        user,
        commit_message=body.commit_message,
        file_ids=body.file_ids,
        remote_factory=remote_factory,
        credentials=credentials,
        object_store=object_store,
        max_workers=settings.sync_max_workers,
    )
    return PushResponse(
        operation_id=result.operation_id,
        commit_hash=result.commit_hash,
        files_committed=result.files_committed,
        outcomes=[outcome_response(o) for o in result.outcomes],
    )


@router.get("/operations", response_model=GitOperationListResponse)
async def list_operations_endpoint(
    project_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> GitOperationListResponse:
    """List the most recent sync operations of the project."""
    await authorize(session, project_id, user.id, Capability.READ)
    operations = await ledger_service.list_operations(session, project_id)
    return GitOperationListResponse(operations=[_operation_response(op) for op in operations])


@router.get("/operations/{operation_id}", response_model=GitOperationResponse)
async def get_operation_endpoint(
    project_id: str,
    operation_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    user: Annotated[User, Depends(require_auth)],
) -> GitOperationResponse:
    await authorize(session, project_id, user.id, Capability.READ)
    operation = await ledger_service.get_operation(session, project_id, operation_id)
    if operation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Git operation not found",
        )
    return _operation_response(operation)
