"""Shared test fixtures for DocSync."""

from __future__ import annotations

import base64
import hashlib
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Self

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docsync.config import Settings
from docsync.database import create_engine as create_db_engine
from docsync.database import init_schema
from docsync.exceptions import RefUpdateRejectedError, RemoteAPIError
from docsync.main import create_app
from docsync.models.file import File
from docsync.models.project import Project, ProjectMember
from docsync.models.user import Organization, OrganizationMember, User
from docsync.remote.base import NewTreeEntry, RemoteContent, TreeEntry
from docsync.services.auth_service import ALGORITHM
from docsync.services.datetime_service import now_formatted, now_utc
from docsync.services.secret_service import EncryptedCredentialProvider
from docsync.storage.object_store import FilesystemObjectStore, storage_key

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

logger = logging.getLogger(__name__)

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"
TEST_REPO = "acme/docs"
TEST_TOKEN = "ghp_test_token"
PROJECT_ID = "project-1"
ORG_ID = "org-1"


def _sha(kind: str, payload: bytes) -> str:
    return hashlib.sha1(kind.encode() + b"\0" + payload).hexdigest()


@dataclass
class _Commit:
    tree: str
    parents: list[str]
    message: str


@dataclass
class FakeGitHost:
    """In-memory model of a Git hosting API: blobs, flat trees, commits and refs.

    Failure knobs let tests make single calls fail the way the real API does.
    """

    token: str = TEST_TOKEN
    repo: str = TEST_REPO
    blobs: dict[str, bytes] = field(default_factory=dict)
    trees: dict[str, dict[str, str]] = field(default_factory=dict)
    commits: dict[str, _Commit] = field(default_factory=dict)
    refs: dict[str, str] = field(default_factory=dict)
    repository_status: int | None = None
    tree_status: int | None = None
    failing_content: set[str] = field(default_factory=set)
    unencoded_content: set[str] = field(default_factory=set)
    failing_blobs: set[bytes] = field(default_factory=set)
    before_update_ref: Callable[[FakeGitHost], None] | None = None
    opened: list[tuple[str, str]] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)
    _counter: itertools.count[int] = field(default_factory=itertools.count)

    def add_blob(self, data: bytes) -> str:
        sha = _sha("blob", data)
        self.blobs[sha] = data
        return sha

    def add_tree(self, entries: dict[str, str]) -> str:
        payload = "\n".join(f"{p} {s}" for p, s in sorted(entries.items())).encode()
        sha = _sha("tree", payload)
        self.trees[sha] = dict(entries)
        return sha

    def add_commit(self, tree: str, parents: list[str], message: str) -> str:
        payload = f"{tree}|{','.join(parents)}|{message}|{next(self._counter)}".encode()
        sha = _sha("commit", payload)
        self.commits[sha] = _Commit(tree=tree, parents=list(parents), message=message)
        return sha

    def commit_files(self, files: dict[str, bytes], branch: str = "main") -> str:
        """Commit ``files`` on top of the branch head (or as a root commit)."""
        parent = self.refs.get(branch)
        entries = dict(self.trees[self.commits[parent].tree]) if parent else {}
        for path, data in files.items():
            entries[path] = self.add_blob(data)
        tree = self.add_tree(entries)
        sha = self.add_commit(tree, [parent] if parent else [], "seed")
        self.refs[branch] = sha
        return sha

    def head_files(self, branch: str = "main") -> dict[str, bytes]:
        tree = self.trees[self.commits[self.refs[branch]].tree]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def factory(self, repo: str, token: str) -> FakeRemote:
        self.opened.append((repo, token))
        return FakeRemote(repo, token, self)


class FakeRemote:
    """RemoteRepository backed by a FakeGitHost."""

    def __init__(self, repo: str, token: str, host: FakeGitHost) -> None:
        self.repo = repo
        self._token = token
        self._host = host

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None

    def _check_access(self, action: str) -> None:
        self._host.calls.append(action)
        if self.repo != self._host.repo:
            raise RemoteAPIError(404, f"Failed to {action}")
        if self._token != self._host.token:
            raise RemoteAPIError(401, f"Failed to {action}")

    def _resolve(self, ref: str, action: str) -> str:
        """Accept a branch name or a commit sha, like the real API."""
        if ref in self._host.refs:
            return self._host.refs[ref]
        if ref in self._host.commits:
            return ref
        raise RemoteAPIError(404, f"Failed to {action}")

    async def get_repository(self) -> dict[str, Any]:
        self._check_access("read repository")
        if self._host.repository_status is not None:
            raise RemoteAPIError(self._host.repository_status, "Failed to read repository")
        return {"full_name": self.repo}

    async def get_tree(self, ref: str, *, recursive: bool = True) -> list[TreeEntry]:
        self._check_access("read tree")
        if self._host.tree_status is not None:
            raise RemoteAPIError(self._host.tree_status, "Failed to read tree")
        tree = self._host.trees[self._host.commits[self._resolve(ref, "read tree")].tree]
        entries: list[TreeEntry] = []
        dirs: set[str] = set()
        for path, sha in sorted(tree.items()):
            parts = path.split("/")[:-1]
            for i in range(1, len(parts) + 1):
                dirs.add("/".join(parts[:i]))
            entries.append(
                TreeEntry(path=path, type="blob", sha=sha, size=len(self._host.blobs[sha]))
            )
        entries.extend(
            TreeEntry(path=d, type="tree", sha=_sha("dir", d.encode()), mode="040000")
            for d in sorted(dirs)
        )
        return entries

    async def get_content(self, path: str, ref: str) -> RemoteContent:
        self._check_access(f"read content of {path}")
        if path in self._host.failing_content:
            raise RemoteAPIError(500, f"Failed to read content of {path}")
        commit = self._resolve(ref, f"read content of {path}")
        tree = self._host.trees[self._host.commits[commit].tree]
        if path not in tree:
            raise RemoteAPIError(404, f"Failed to read content of {path}")
        sha = tree[path]
        if path in self._host.unencoded_content:
            return RemoteContent(path=path, sha=sha, content="", encoding="none")
        encoded = base64.b64encode(self._host.blobs[sha]).decode("ascii")
        return RemoteContent(path=path, sha=sha, content=encoded, encoding="base64")

    async def get_ref(self, branch: str) -> str:
        self._check_access("get branch reference")
        if branch not in self._host.refs:
            raise RemoteAPIError(404, "Failed to get branch reference")
        return self._host.refs[branch]

    async def get_commit_tree(self, commit_sha: str) -> str:
        self._check_access("get commit")
        return self._host.commits[commit_sha].tree

    async def create_blob(self, data: bytes) -> str:
        self._check_access("create blob")
        if data in self._host.failing_blobs:
            raise RemoteAPIError(500, "Failed to create blob")
        return self._host.add_blob(data)

    async def create_tree(self, base_tree: str, entries: list[NewTreeEntry]) -> str:
        self._check_access("create tree")
        merged = dict(self._host.trees[base_tree])
        for entry in entries:
            merged[entry.path] = entry.sha
        return self._host.add_tree(merged)

    async def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        self._check_access("create commit")
        return self._host.add_commit(tree, parents, message)

    async def update_ref(self, branch: str, commit_sha: str, *, force: bool = False) -> None:
        self._check_access("update reference")
        if self._host.before_update_ref is not None:
            self._host.before_update_ref(self._host)
        current = self._host.refs.get(branch)
        parents = self._host.commits[commit_sha].parents
        if not force and (not parents or parents[0] != current):
            msg = f"Branch {branch} moved; update is not a fast forward"
            raise RefUpdateRejectedError(422, msg)
        self._host.refs[branch] = commit_sha


@dataclass
class SeedData:
    """Users and the project created by the ``seed`` fixture, keyed by role."""

    project_id: str
    users: dict[str, User]


def make_token(user_id: str, secret_key: str = TEST_SECRET_KEY, token_type: str = "access") -> str:
    payload = {
        "sub": user_id,
        "type": token_type,
        "exp": now_utc() + timedelta(minutes=15),
    }
    return jwt.encode(payload, secret_key, algorithm=ALGORITHM)


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


async def seed_database(session: AsyncSession) -> SeedData:
    """Create one organization project with a user for every role."""
    now = now_formatted()
    users = {
        key: User(id=f"user-{key}", email=f"{key}@example.com", name=key.title(), created_at=now)
        for key in ("owner", "admin", "editor", "viewer", "org_admin", "org_member", "outsider")
    }
    session.add_all(users.values())
    session.add(Organization(id=ORG_ID, name="Acme", created_at=now))
    session.add(
        Project(id=PROJECT_ID, organization_id=ORG_ID, name="Docs", created_at=now, updated_at=now)
    )
    await session.flush()
    for role in ("owner", "admin", "editor", "viewer"):
        session.add(
            ProjectMember(
                id=f"pm-{role}",
                project_id=PROJECT_ID,
                user_id=users[role].id,
                role=role,
                created_at=now,
            )
        )
    session.add(
        OrganizationMember(
            id="om-admin",
            organization_id=ORG_ID,
            user_id=users["org_admin"].id,
            role="admin",
            created_at=now,
        )
    )
    session.add(
        OrganizationMember(
            id="om-member",
            organization_id=ORG_ID,
            user_id=users["org_member"].id,
            role="member",
            created_at=now,
        )
    )
    await session.commit()
    return SeedData(project_id=PROJECT_ID, users=users)


async def add_local_file(
    session: AsyncSession,
    object_store: FilesystemObjectStore,
    project_id: str,
    path: str,
    data: bytes | None,
    *,
    git_status: str = "modified",
) -> File:
    """Create a File row; ``data=None`` leaves the object store without content."""
    key = storage_key(project_id, path)
    if data is not None:
        await object_store.put(key, data)
    now = now_formatted()
    file = File(
        id=f"file-{path.replace('/', '-')}",
        project_id=project_id,
        name=path.rsplit("/", 1)[-1],
        path=path,
        storage_key=key,
        size=len(data or b""),
        git_status=git_status,
        created_at=now,
        updated_at=now,
    )
    session.add(file)
    await session.commit()
    return file


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        object_store_dir=tmp_path / "objects",
    )


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the schema in place."""
    engine, _ = create_db_engine(test_settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(
    db_engine: AsyncEngine,
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def object_store(test_settings: Settings) -> FilesystemObjectStore:
    return FilesystemObjectStore(test_settings.object_store_dir)


@pytest.fixture
def credentials() -> EncryptedCredentialProvider:
    return EncryptedCredentialProvider(TEST_SECRET_KEY)


@pytest.fixture
def git_host() -> FakeGitHost:
    return FakeGitHost()


@pytest.fixture
async def seed(db_session: AsyncSession) -> SeedData:
    return await seed_database(db_session)


@dataclass
class ApiHarness:
    """A running test app with its seeded users."""

    client: AsyncClient
    app: FastAPI
    seed: SeedData

    async def add_file(self, path: str, data: bytes | None) -> File:
        async with self.app.state.session_factory() as session:
            return await add_local_file(
                session, self.app.state.object_store, self.seed.project_id, path, data
            )


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    git_host: FakeGitHost,
) -> AsyncGenerator[ApiHarness]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan (DB schema, object
    store directory) because ASGITransport does not trigger it. Remote calls go
    to ``git_host``.
    """
    app = create_app(settings, remote_factory=git_host.factory)
    settings.validate_runtime_security()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    await init_schema(engine)
    settings.object_store_dir.mkdir(parents=True, exist_ok=True)

    async with session_factory() as session:
        seed_data = await seed_database(session)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ApiHarness(client=ac, app=app, seed=seed_data)

    await engine.dispose()
