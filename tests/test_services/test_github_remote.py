"""Tests for the GitHub remote client against a mocked HTTP transport."""

from __future__ import annotations

import base64
import json
from typing import TYPE_CHECKING

import httpx
import pytest

from docsync.config import Settings
from docsync.exceptions import RefUpdateRejectedError, RemoteAPIError
from docsync.remote.base import NewTreeEntry
from docsync.remote.github import GitHubRemote, github_remote_factory, is_valid_repo_identifier

if TYPE_CHECKING:
    from collections.abc import Callable

BASE = "https://api.github.com/repos/acme/docs"


def _remote(handler: Callable[[httpx.Request], httpx.Response]) -> GitHubRemote:
    return GitHubRemote("acme/docs", "tok", transport=httpx.MockTransport(handler))


class TestRepoIdentifier:
    @pytest.mark.parametrize("repo", ["acme/docs", "a-b/c.d", "user_1/repo-2"])
    def test_valid(self, repo: str) -> None:
        assert is_valid_repo_identifier(repo)

    @pytest.mark.parametrize(
        "repo", ["acme", "acme/docs/x", "../x", "a/..", "a b/c", "", "acme/docs\n"]
    )
    def test_invalid(self, repo: str) -> None:
        assert not is_valid_repo_identifier(repo)

    def test_constructor_rejects_invalid(self) -> None:
        with pytest.raises(ValueError, match="Invalid repository identifier"):
            GitHubRemote("not-a-repo", "tok")


class TestGitHubRemote:
    @pytest.mark.asyncio
    async def test_sends_auth_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"full_name": "acme/docs"})

        async with _remote(handler) as remote:
            data = await remote.get_repository()

        assert data == {"full_name": "acme/docs"}
        assert str(seen[0].url) == BASE
        assert seen[0].headers["Authorization"] == "token tok"
        assert seen[0].headers["User-Agent"] == "DocSync"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_remote_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "Bad credentials"})

        async with _remote(handler) as remote:
            with pytest.raises(RemoteAPIError) as exc_info:
                await remote.get_repository()
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_502(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _remote(handler) as remote:
            with pytest.raises(RemoteAPIError) as exc_info:
                await remote.get_ref("main")
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_get_tree_parses_entries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/repos/acme/docs/git/trees/main"
            assert request.url.params["recursive"] == "1"
            return httpx.Response(
                200,
                json={
                    "sha": "t1",
                    "truncated": False,
                    "tree": [
                        {"path": "docs", "type": "tree", "sha": "d1", "mode": "040000"},
                        {
                            "path": "docs/a.md",
                            "type": "blob",
                            "sha": "b1",
                            "mode": "100644",
                            "size": 5,
                        },
                    ],
                },
            )

        async with _remote(handler) as remote:
            entries = await remote.get_tree("main")

        assert [(e.path, e.is_blob) for e in entries] == [("docs", False), ("docs/a.md", True)]
        assert entries[1].size == 5


    @pytest.mark.asyncio
    async def test_branch_with_slash_is_encoded_alike_on_every_endpoint(self) -> None:
        raw_paths: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            raw_paths.append(request.url.raw_path.split(b"?")[0])
            if "/git/ref/" in request.url.path:
                return httpx.Response(200, json={"object": {"sha": "c0"}})
            return httpx.Response(200, json={"tree": []})

        async with _remote(handler) as remote:
            await remote.get_ref("feature/x")
            await remote.get_tree("feature/x")
            await remote.update_ref("feature/x", "c1")

        assert raw_paths == [
            b"/repos/acme/docs/git/ref/heads/feature/x",
            b"/repos/acme/docs/git/trees/feature/x",
            b"/repos/acme/docs/git/refs/heads/feature/x",
        ]
    @pytest.mark.asyncio
    async def test_get_content_passes_ref(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/repos/acme/docs/contents/docs/a b.md"
            assert request.url.params["ref"] == "main"
            return httpx.Response(
                200,
                json={
                    "path": "docs/a b.md",
                    "sha": "b1",
                    "content": "aGk=\n",
                    "encoding": "base64",
                },
            )

        async with _remote(handler) as remote:
            content = await remote.get_content("docs/a b.md", "main")
        assert content.encoding == "base64"
        assert content.sha == "b1"

    @pytest.mark.asyncio
    async def test_commit_flow_payloads(self) -> None:
        bodies: dict[str, dict[str, object]] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path.removeprefix("/repos/acme/docs")
            if request.method == "GET" and path == "/git/ref/heads/main":
                return httpx.Response(200, json={"object": {"sha": "c0"}})
            if request.method == "GET" and path == "/git/commits/c0":
                return httpx.Response(200, json={"tree": {"sha": "t0"}})
            bodies[path] = json.loads(request.content)
            shas = {"/git/blobs": "b1", "/git/trees": "t1", "/git/commits": "c1"}
            if path in shas:
                return httpx.Response(201, json={"sha": shas[path]})
            return httpx.Response(200, json={"object": {"sha": "c1"}})

        async with _remote(handler) as remote:
            head = await remote.get_ref("main")
            base_tree = await remote.get_commit_tree(head)
            blob = await remote.create_blob(b"hello")
            tree = await remote.create_tree(base_tree, [NewTreeEntry(path="a.md", sha=blob)])
            commit = await remote.create_commit("msg", tree, [head])
            await remote.update_ref("main", commit)

        assert bodies["/git/blobs"] == {
            "content": base64.b64encode(b"hello").decode(),
            "encoding": "base64",
        }
        assert bodies["/git/trees"] == {
            "base_tree": "t0",
            "tree": [{"path": "a.md", "mode": "100644", "type": "blob", "sha": "b1"}],
        }
        assert bodies["/git/commits"] == {"message": "msg", "tree": "t1", "parents": ["c0"]}
        assert bodies["/git/refs/heads/main"] == {"sha": "c1", "force": False}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [409, 422])
    async def test_rejected_ref_update(self, status: int) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"message": "Update is not a fast forward"})

        async with _remote(handler) as remote:
            with pytest.raises(RefUpdateRejectedError) as exc_info:
                await remote.update_ref("main", "c1")
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_other_ref_update_failure_is_plain_remote_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with _remote(handler) as remote:
            with pytest.raises(RemoteAPIError) as exc_info:
                await remote.update_ref("main", "c1")
        assert not isinstance(exc_info.value, RefUpdateRejectedError)

    @pytest.mark.asyncio
    async def test_requires_context_manager(self) -> None:
        remote = GitHubRemote("acme/docs", "tok")
        with pytest.raises(RuntimeError, match="async context manager"):
            await remote.get_repository()


class TestFactory:
    def test_factory_uses_settings(self) -> None:
        settings = Settings(
            remote_api_url="https://git.example.com/api/v3/",
            remote_user_agent="DocSync-Test",
        )
        remote = github_remote_factory(settings)("acme/docs", "tok")
        assert isinstance(remote, GitHubRemote)
        assert remote.repo == "acme/docs"
        assert remote._base_url == "https://git.example.com/api/v3"
