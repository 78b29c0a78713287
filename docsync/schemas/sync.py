"""Repository synchronization schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ConnectRequest(BaseModel):
    """Request to bind a project to a remote repository."""

    repo_identifier: str = Field(min_length=1, description="Repository as 'owner/name'")
    branch: str | None = Field(default=None, description="Branch to sync; defaults to 'main'")
    credential: str = Field(min_length=1, description="Access token for the repository")


class ConnectResponse(BaseModel):
    success: bool = True
    repo_identifier: str
    branch: str


class ConnectionStatusResponse(BaseModel):
    connected: bool
    repo_identifier: str | None = None
    branch: str | None = None
    last_sync_at: str | None = None
    sync_status: str | None = None


class ItemOutcomeResponse(BaseModel):
    """Outcome of one file within a pull or push."""

    id: str | None = None
    path: str | None = None
    status: str
    reason: str | None = None
    detail: str | None = None


class PullResponse(BaseModel):
    success: bool = True
    operation_id: str
    files_processed: int
    files: list[ItemOutcomeResponse]
    skipped: list[ItemOutcomeResponse] = Field(default_factory=list)


class PushRequest(BaseModel):
    """Request to commit files to the connected branch."""

    commit_message: str = Field(min_length=1, description="Commit message")
    file_ids: list[str] = Field(min_length=1, description="Ids of the files to commit")


class PushResponse(BaseModel):
    success: bool = True
    operation_id: str
    commit_hash: str
    files_committed: int
    outcomes: list[ItemOutcomeResponse] = Field(default_factory=list)


class GitOperationResponse(BaseModel):
    """One ledger record."""

    id: str
    project_id: str
    operation_type: str
    status: str
    message: str
    commit_hash: str | None = None
    performed_by: str | None = None
    performer_name: str | None = None
    started_at: str
    completed_at: str | None = None


class GitOperationListResponse(BaseModel):
    operations: list[GitOperationResponse]
