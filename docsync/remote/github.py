"""GitHub implementation of the remote repository protocol (REST git data API)."""

from __future__ import annotations

import base64
import logging
import re
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import quote

import httpx

from docsync.exceptions import RefUpdateRejectedError, RemoteAPIError
from docsync.remote.base import NewTreeEntry, RemoteContent, TreeEntry

if TYPE_CHECKING:
    from types import TracebackType

    from docsync.config import Settings
    from docsync.remote.base import RemoteFactory

logger = logging.getLogger(__name__)

REPO_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

# GitHub answers a rejected non-fast-forward ref update with 422; some
# deployments use 409 when the ref moved underneath the request.
_REF_REJECTED_STATUSES = frozenset({409, 422})


def is_valid_repo_identifier(repo: str) -> bool:
    """Return True for ``owner/name`` identifiers."""
    return bool(REPO_IDENTIFIER_RE.fullmatch(repo)) and ".." not in repo


class GitHubRemote:
    """Talks to one GitHub repository with a single credential.

    Use as an async context manager so that all calls of an operation share a
    connection pool::

        async with GitHubRemote("acme/docs", token) as remote:
            head = await remote.get_ref("main")
    """

    def __init__(
        self,
        repo: str,
        token: str,
        *,
        base_url: str = "https://api.github.com",
        user_agent: str = "DocSync",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not is_valid_repo_identifier(repo):
            msg = f"Invalid repository identifier: {repo!r}"
            raise ValueError(msg)
        self.repo = repo
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"token {self._token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": self._user_agent,
            },
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        if self._client is None:
            msg = "GitHubRemote must be used as an async context manager"
            raise RuntimeError(msg)
        try:
            response = await self._client.request(
                method, f"{self._base_url}/repos/{self.repo}{url}", json=json, params=params
            )
        except httpx.HTTPError as exc:
            logger.warning("GitHub %s for %s failed: %s", action, self.repo, exc)
            raise RemoteAPIError(502, f"Failed to {action}: {exc}") from exc
        if response.is_success:
            return response
        logger.warning(
            "GitHub %s for %s returned %d: %s",
            action,
            self.repo,
            response.status_code,
            response.text[:200],
        )
        raise RemoteAPIError(response.status_code, f"Failed to {action}")

    async def get_repository(self) -> dict[str, Any]:
        response = await self._request("GET", "", action="read repository")
        data: dict[str, Any] = response.json()
        return data

    async def get_tree(self, ref: str, *, recursive: bool = True) -> list[TreeEntry]:
        params = {"recursive": "1"} if recursive else None
        response = await self._request(
            "GET", f"/git/trees/{quote(ref, safe='/')}", action="read tree", params=params
        )
        data = response.json()
        if data.get("truncated"):
            logger.warning("Tree listing for %s@%s was truncated by the remote", self.repo, ref)
        return [
            TreeEntry(
                path=item["path"],
                type=item["type"],
                sha=item["sha"],
                mode=item.get("mode", "100644"),
                size=item.get("size"),
            )
            for item in data.get("tree", [])
        ]

    async def get_content(self, path: str, ref: str) -> RemoteContent:
        response = await self._request(
            "GET",
            f"/contents/{quote(path, safe='/')}",
            action=f"read content of {path}",
            params={"ref": ref},
        )
        data = response.json()
        return RemoteContent(
            path=data.get("path", path),
            sha=data.get("sha", ""),
            content=data.get("content", ""),
            encoding=data.get("encoding", "base64"),
        )

    async def get_ref(self, branch: str) -> str:
        response = await self._request(
            "GET", f"/git/ref/heads/{quote(branch, safe='/')}", action="get branch reference"
        )
        sha: str = response.json()["object"]["sha"]
        return sha

    async def get_commit_tree(self, commit_sha: str) -> str:
        response = await self._request("GET", f"/git/commits/{commit_sha}", action="get commit")
        sha: str = response.json()["tree"]["sha"]
        return sha

    async def create_blob(self, data: bytes) -> str:
        response = await self._request(
            "POST",
            "/git/blobs",
            action="create blob",
            json={"content": base64.b64encode(data).decode("ascii"), "encoding": "base64"},
        )
        sha: str = response.json()["sha"]
        return sha

    async def create_tree(self, base_tree: str, entries: list[NewTreeEntry]) -> str:
        response = await self._request(
            "POST",
            "/git/trees",
            action="create tree",
            json={"base_tree": base_tree, "tree": [e.to_payload() for e in entries]},
        )
        sha: str = response.json()["sha"]
        return sha

    async def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        response = await self._request(
            "POST",
            "/git/commits",
            action="create commit",
            json={"message": message, "tree": tree, "parents": parents},
        )
        sha: str = response.json()["sha"]
        return sha

    async def update_ref(self, branch: str, commit_sha: str, *, force: bool = False) -> None:
        try:
            await self._request(
                "PATCH",
                f"/git/refs/heads/{quote(branch, safe='/')}",
                action="update reference",
                json={"sha": commit_sha, "force": force},
            )
        except RemoteAPIError as exc:
            if not force and exc.status_code in _REF_REJECTED_STATUSES:
                raise RefUpdateRejectedError(
                    exc.status_code, f"Branch {branch} moved; update is not a fast forward"
                ) from exc
            raise


def github_remote_factory(settings: Settings) -> RemoteFactory:
    """Build a factory that opens GitHubRemote instances configured from settings."""

    def factory(repo: str, token: str) -> GitHubRemote:
        return GitHubRemote(
            repo,
            token,
            base_url=settings.remote_api_url,
            user_agent=settings.remote_user_agent,
            timeout=settings.remote_timeout_seconds,
        )

    return factory
