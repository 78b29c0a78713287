"""Remote repository protocol and the Git object shapes it exchanges."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, Self, runtime_checkable

BLOB_MODE = "100644"


@dataclass(frozen=True)
class TreeEntry:
    """One entry of a recursive tree listing."""

    path: str
    type: str  # "blob", "tree" or "commit" (submodule)
    sha: str
    mode: str = BLOB_MODE
    size: int | None = None

    @property
    def is_blob(self) -> bool:
        return self.type == "blob"


@dataclass(frozen=True)
class RemoteContent:
    """File content as returned by the remote, still in its transport encoding."""

    path: str
    sha: str
    content: str
    encoding: str


@dataclass(frozen=True)
class NewTreeEntry:
    """Blob reference to place into a new tree on top of a base tree."""

    path: str
    sha: str
    mode: str = BLOB_MODE
    type: str = "blob"

    def to_payload(self) -> dict[str, str]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


@runtime_checkable
class RemoteRepository(Protocol):
    """Operations the sync engines need from a Git hosting API.

    Every method raises ``RemoteAPIError`` on a non-2xx response. Implementations
    are async context managers so one connection pool serves a whole operation.
    """

    repo: str

    async def __aenter__(self) -> Self: ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...  # type: ignore[no-untyped-def]

    async def get_repository(self) -> dict[str, object]:
        """Read repository metadata; used to validate repo and credential."""
        ...

    async def get_tree(self, ref: str, *, recursive: bool = True) -> list[TreeEntry]:
        """List the tree at ``ref``."""
        ...

    async def get_content(self, path: str, ref: str) -> RemoteContent:
        """Read one file's content at ``ref``."""
        ...

    async def get_ref(self, branch: str) -> str:
        """Return the commit sha the branch points to."""
        ...

    async def get_commit_tree(self, commit_sha: str) -> str:
        """Return the tree sha of a commit."""
        ...

    async def create_blob(self, data: bytes) -> str:
        """Create a blob from raw bytes, returning its sha."""
        ...

    async def create_tree(self, base_tree: str, entries: list[NewTreeEntry]) -> str:
        """Create a tree layered over ``base_tree``, returning its sha."""
        ...

    async def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        """Create a commit object, returning its sha."""
        ...

    async def update_ref(self, branch: str, commit_sha: str, *, force: bool = False) -> None:
        """Move the branch. A non-force update raises RefUpdateRejectedError if rejected."""
        ...


RemoteFactory = Callable[[str, str], RemoteRepository]
