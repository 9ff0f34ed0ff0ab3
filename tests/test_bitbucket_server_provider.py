"""
Tests for the Bitbucket Server provider.

Requests are served by an ``httpx.MockTransport`` router; paths include the
``/rest`` prefix the provider adds to the configured endpoint.
"""

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from vcs_bridge.error_handling.core import (
    InvalidIdentifierError,
    NotFoundError,
    RateLimitError,
    RemoteOperationError,
    RetryConfig,
    UnsupportedCapabilityError,
)
from vcs_bridge.error_handling.unsupported import (
    BITBUCKET_SERVER_COMMIT_QUERY_UNSUPPORTED,
    BITBUCKET_SERVER_LABELS_UNSUPPORTED,
    BITBUCKET_SERVER_REVIEW_COMMENTS_UNSUPPORTED,
)
from vcs_bridge.models import (
    CommentInfo,
    CommitQueryOptions,
    CommitStatus,
    ConnectionInfo,
    LabelInfo,
    Permission,
    PullRequestComment,
    PullRequestState,
    RepositoryVisibility,
    WebhookEvent,
)
from vcs_bridge.providers.bitbucket_server.bitbucket_server_provider import (
    BitbucketServerProvider,
    rest_api_endpoint,
)

from .conftest import MockRouter

ENDPOINT = "https://bitbucket.example.com"
REPO = "/rest/api/1.0/projects/PROJ/repos/repo"


def _pull_request(pr_id: int, state: str = "OPEN", version: int = 0) -> dict:
    def _ref(branch: str, project: str) -> dict:
        return {
            "id": f"refs/heads/{branch}",
            "displayId": branch,
            "repository": {"slug": "repo", "project": {"key": project}},
        }

    return {
        "id": pr_id,
        "version": version,
        "title": f"PR {pr_id}",
        "description": "pr body",
        "state": state,
        "open": state == "OPEN",
        "author": {"user": {"name": "alice"}},
        "fromRef": _ref("feature", "~ALICE"),
        "toRef": _ref("main", "PROJ"),
        "links": {"self": [{"href": f"{ENDPOINT}/projects/PROJ/repos/repo/pull-requests/{pr_id}"}]},
    }


def _commit(sha: str) -> dict:
    return {
        "id": sha,
        "author": {"name": "Alice", "emailAddress": "alice@example.com"},
        "committer": {"name": "Bob"},
        "committerTimestamp": 1704164645123,
        "message": "fix things",
        "parents": [{"id": "p1"}],
    }


@pytest.fixture
async def provider(fast_retry: RetryConfig, mock_transport: httpx.MockTransport):
    http_client = httpx.AsyncClient(
        transport=mock_transport, base_url=rest_api_endpoint(ENDPOINT)
    )
    connection = ConnectionInfo(api_endpoint=ENDPOINT, username="alice", token="secret")
    client = BitbucketServerProvider(connection, retry_config=fast_retry, http_client=http_client)
    yield client
    await client.close()


class TestRestEndpoint:
    def test_suffix_is_added_once(self) -> None:
        assert rest_api_endpoint("https://host") == "https://host/rest"
        assert rest_api_endpoint("https://host/") == "https://host/rest"
        assert rest_api_endpoint("https://host/rest") == "https://host/rest"

    def test_default_client_sends_bearer_token(self) -> None:
        connection = ConnectionInfo(api_endpoint=ENDPOINT, username="alice", token="secret")
        client = BitbucketServerProvider(connection)

        assert client.http_client.headers["Authorization"] == "Bearer secret"
        assert str(client.http_client.base_url) == "https://bitbucket.example.com/rest/"


class TestBitbucketServerConnection:
    async def test_connection(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("GET", "/rest/api/1.0/users", json_body={"values": []})

        await provider.test_connection()

        assert router.requests[0].url.params["limit"] == "1"

    async def test_connection_unauthorized(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("GET", "/rest/api/1.0/users", status_code=401, json_body={"errors": []})

        with pytest.raises(RemoteOperationError) as exc_info:
            await provider.test_connection()

        assert exc_info.value.status_code == 401
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    async def test_add_ssh_key(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("POST", "/rest/keys/1.0/projects/PROJ/repos/repo/ssh", json_body={})

        await provider.add_ssh_key_to_repository("PROJ", "repo", "deploy", "ssh-rsa AAA", Permission.READ)

        assert router.json_of(router.requests[0]) == {
            "key": {"text": "ssh-rsa AAA", "label": "deploy"},
            "permission": "REPO_READ",
        }


class TestBitbucketServerListing:
    async def test_list_repositories_includes_personal_project(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add(
            "GET",
            "/rest/api/1.0/projects",
            json_body={"values": [{"key": "PROJ"}, {"key": "EMPTY"}], "isLastPage": True},
            headers={"X-AUSERNAME": "alice"},
        )
        router.add(
            "GET",
            "/rest/api/1.0/projects/PROJ/repos",
            json_body={"values": [{"slug": "repo"}], "isLastPage": False, "nextPageStart": 1},
        )
        router.add(
            "GET",
            "/rest/api/1.0/projects/PROJ/repos",
            json_body={"values": [{"slug": "other"}], "isLastPage": True},
        )
        router.add("GET", "/rest/api/1.0/projects/EMPTY/repos", json_body={"values": [], "isLastPage": True})
        router.add(
            "GET",
            "/rest/api/1.0/projects/~ALICE/repos",
            json_body={"values": [{"slug": "dotfiles"}], "isLastPage": True},
        )

        result = await provider.list_repositories()

        assert result == {"PROJ": ["repo", "other"], "~ALICE": ["dotfiles"]}
        starts = [
            r.url.params["start"] for r in router.requests_to("GET", "/rest/api/1.0/projects/PROJ/repos")
        ]
        assert starts == ["0", "1"]

    async def test_missing_username_header(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("GET", "/rest/api/1.0/projects", json_body={"values": [], "isLastPage": True})

        with pytest.raises(RemoteOperationError, match="X-Ausername header is missing"):
            await provider.list_repositories()

    async def test_list_branches_uses_display_names(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add(
            "GET",
            f"{REPO}/branches",
            json_body={
                "values": [
                    {"id": "refs/heads/main", "displayId": "main"},
                    {"id": "refs/heads/dev", "displayId": "dev"},
                ],
                "isLastPage": True,
            },
        )

        assert await provider.list_branches("PROJ", "repo") == ["main", "dev"]


class TestBitbucketServerWebhooks:
    async def test_create_webhook(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("POST", f"{REPO}/webhooks", json_body={"id": 42})

        handle = await provider.create_webhook(
            "PROJ", "repo", "main", "https://hooks.example.com", WebhookEvent.PR_REJECTED, WebhookEvent.PUSH
        )

        assert handle.id == "42"
        assert router.json_of(router.requests[0]) == {
            "url": "https://hooks.example.com",
            "configuration": {"secret": handle.token},
            "events": ["pr:declined", "pr:deleted", "repo:refs_changed"],
        }

    async def test_update_and_delete_webhook(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("PUT", f"{REPO}/webhooks/42", json_body={"id": 42})
        router.add("DELETE", f"{REPO}/webhooks/42", status_code=204)

        await provider.update_webhook(
            "PROJ", "repo", "main", "https://new.example.com", "tok", "42", WebhookEvent.PR_MERGED
        )
        await provider.delete_webhook("PROJ", "repo", "42")

        assert router.json_of(router.requests[0])["configuration"] == {"secret": "tok"}
        assert router.json_of(router.requests[0])["events"] == ["pr:merged"]
        assert router.requests[1].method == "DELETE"

    async def test_webhook_id_must_fit_32_bits(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        with pytest.raises(InvalidIdentifierError):
            await provider.delete_webhook("PROJ", "repo", str(2**33))
        assert router.requests == []


class TestBitbucketServerCommitStatus:
    async def test_set_and_get(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        path = "/rest/build-status/1.0/commits/abc"
        router.add("POST", path, status_code=204)
        router.add(
            "GET",
            path,
            json_body={
                "values": [
                    {
                        "state": "SUCCESSFUL",
                        "key": "scan",
                        "name": "ci-bot",
                        "url": "https://ci/1",
                        "description": "done",
                        "dateAdded": 1704164645000,
                    }
                ],
                "isLastPage": True,
            },
        )

        await provider.set_commit_status(
            CommitStatus.IN_PROGRESS, "PROJ", "repo", "abc", "scan", "running", "https://ci/1"
        )
        statuses = await provider.get_commit_statuses("PROJ", "repo", "abc")

        assert router.json_of(router.requests[0]) == {
            "state": "INPROGRESS",
            "key": "scan",
            "description": "running",
            "url": "https://ci/1",
        }
        assert statuses[0].state == CommitStatus.PASS
        assert statuses[0].creator == "ci-bot"
        assert int(statuses[0].created_at.timestamp()) == 1704164645
        assert statuses[0].last_updated_at == statuses[0].created_at


class TestBitbucketServerDownload:
    async def test_download_repository(
        self,
        provider: BitbucketServerProvider,
        router: MockRouter,
        tmp_path: Path,
        tar_gz_factory: Callable[..., bytes],
    ) -> None:
        archive = tar_gz_factory({"README.md": b"hello"}, base_dir="")
        router.add("GET", f"{REPO}/archive", httpx.Response(200, content=archive))

        with patch(
            "vcs_bridge.providers.bitbucket_server.bitbucket_server_provider"
            ".create_dot_git_folder_with_remote"
        ) as create_remote:
            await provider.download_repository("PROJ", "repo", "main", str(tmp_path))

        request = router.requests[0]
        assert request.url.params["format"] == "tgz"
        assert request.url.params["at"] == "main"
        assert (tmp_path / "README.md").read_bytes() == b"hello"
        create_remote.assert_called_once_with(
            str(tmp_path), "origin", "https://bitbucket.example.com/scm/PROJ/repo.git"
        )


class TestBitbucketServerPullRequests:
    async def test_create(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("POST", f"{REPO}/pull-requests", status_code=201, json_body={"id": 1})

        await provider.create_pull_request("PROJ", "repo", "feature", "main", "T", "D")

        body = router.json_of(router.requests[0])
        assert body["fromRef"]["id"] == "refs/heads/feature"
        assert body["toRef"]["id"] == "refs/heads/main"
        assert body["toRef"]["repository"] == {"slug": "repo", "project": {"key": "PROJ"}}

    async def test_update_with_decline(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        path = f"{REPO}/pull-requests/7"
        router.add("GET", path, json_body=_pull_request(7, version=3))
        router.add("PUT", path, json_body=_pull_request(7, version=4))
        router.add("POST", f"{path}/decline", json_body=_pull_request(7, state="DECLINED", version=5))

        await provider.update_pull_request(
            "PROJ", "repo", "T", "B", "release", 7, PullRequestState.CLOSED
        )

        put_body = router.json_of(router.requests_to("PUT", path)[0])
        assert put_body["version"] == 3
        assert put_body["toRef"]["id"] == "refs/heads/release"
        decline = router.requests_to("POST", f"{path}/decline")[0]
        assert decline.url.params["version"] == "4"

    async def test_update_without_state_change(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        path = f"{REPO}/pull-requests/7"
        router.add("GET", path, json_body=_pull_request(7, version=3))
        router.add("PUT", path, json_body=_pull_request(7, version=4))

        await provider.update_pull_request("PROJ", "repo", "T", "B", "", 7, PullRequestState.OPEN)

        assert [r.method for r in router.requests] == ["GET", "PUT"]
        assert "toRef" not in router.json_of(router.requests[1])

    async def test_list_open(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add(
            "GET",
            f"{REPO}/pull-requests",
            json_body={
                "values": [_pull_request(1), _pull_request(2, state="MERGED")],
                "isLastPage": True,
            },
        )

        pull_requests = await provider.list_open_pull_requests_with_body("PROJ", "repo")

        assert [pr.id for pr in pull_requests] == [1]
        pr = pull_requests[0]
        assert router.requests[0].url.params["state"] == "OPEN"
        assert pr.body == "pr body"
        assert pr.author == "alice"
        assert pr.source.name == "feature"
        assert pr.source.owner == "~ALICE"
        assert pr.target.owner == "PROJ"
        assert pr.url.endswith("/pull-requests/1")

    async def test_get_pull_request_not_found(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("GET", f"{REPO}/pull-requests/9", status_code=404, json_body={"errors": []})

        with pytest.raises(NotFoundError):
            await provider.get_pull_request("PROJ", "repo", 9)

    async def test_get_without_source_repository_fails(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        body = _pull_request(3)
        del body["fromRef"]["repository"]
        router.add("GET", f"{REPO}/pull-requests/3", json_body=body)

        with pytest.raises(RemoteOperationError, match="source repository information is missing"):
            await provider.get_pull_request("PROJ", "repo", 3)

    async def test_get_without_target_project_key_fails(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        body = _pull_request(3)
        body["toRef"]["repository"] = {"slug": "repo", "project": {}}
        router.add("GET", f"{REPO}/pull-requests/3", json_body=body)

        with pytest.raises(RemoteOperationError, match="target repository owner name is missing"):
            await provider.get_pull_request("PROJ", "repo", 3)


class TestBitbucketServerComments:
    async def test_list_only_added_comments(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add(
            "GET",
            f"{REPO}/pull-requests/5/activities",
            json_body={
                "values": [
                    {
                        "action": "COMMENTED",
                        "commentAction": "ADDED",
                        "comment": {"id": 10, "text": "first", "createdDate": 1704164645000, "version": 2},
                    },
                    {
                        "action": "COMMENTED",
                        "commentAction": "EDITED",
                        "comment": {"id": 10, "text": "edited"},
                    },
                    {"action": "APPROVED"},
                ],
                "isLastPage": True,
            },
        )

        comments = await provider.list_pull_request_comments("PROJ", "repo", 5)

        assert len(comments) == 1
        assert comments[0].id == 10
        assert comments[0].content == "first"
        assert comments[0].version == 2
        assert int(comments[0].created.timestamp()) == 1704164645

    async def test_delete_uses_current_version(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        path = f"{REPO}/pull-requests/5/comments/10"
        router.add("GET", path, json_body={"id": 10, "version": 6})
        router.add("DELETE", path, status_code=204)

        await provider.delete_pull_request_comment("PROJ", "repo", 5, 10)

        assert router.requests_to("DELETE", path)[0].url.params["version"] == "6"

    async def test_add_comment(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("POST", f"{REPO}/pull-requests/5/comments", status_code=201, json_body={"id": 1})

        await provider.add_pull_request_comment("PROJ", "repo", "hello", 5)

        assert router.json_of(router.requests[0]) == {"text": "hello"}


class TestBitbucketServerCommits:
    async def test_latest_commit(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("GET", f"{REPO}/commits", json_body={"values": [_commit("head")]})

        commit = await provider.get_latest_commit("PROJ", "repo", "main")

        params = router.requests[0].url.params
        assert (params["limit"], params["until"]) == ("1", "main")
        assert commit.hash == "head"
        assert commit.timestamp == 1704164645
        assert commit.author_email == "alice@example.com"
        assert commit.url == f"{ENDPOINT}{REPO}/commits/head"

    async def test_latest_commit_of_empty_branch(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("GET", f"{REPO}/commits", json_body={"values": []})

        assert (await provider.get_latest_commit("PROJ", "repo", "main")).hash == ""

    async def test_commit_by_sha(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("GET", f"{REPO}/commits/abc", json_body=_commit("abc"))

        commit = await provider.get_commit_by_sha("PROJ", "repo", "abc")

        assert commit.parent_hashes == ("p1",)


class TestBitbucketServerRepository:
    async def test_repository_info(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add(
            "GET",
            REPO,
            json_body={
                "public": False,
                "links": {
                    "clone": [
                        {"name": "ssh", "href": "ssh://git@bitbucket.example.com:7999/proj/repo.git"},
                        {"name": "http", "href": "https://bitbucket.example.com/scm/proj/repo.git"},
                    ]
                },
            },
        )

        info = await provider.get_repository_info("PROJ", "repo")

        assert info.visibility == RepositoryVisibility.PRIVATE
        assert info.clone_info.http == "https://bitbucket.example.com/scm/proj/repo.git"
        assert info.clone_info.ssh == "ssh://git@bitbucket.example.com:7999/proj/repo.git"

    async def test_download_file(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("GET", f"{REPO}/raw/dir/a.txt", httpx.Response(200, content=b"content"))

        assert await provider.download_file_from_repo("PROJ", "repo", "main", "dir/a.txt") == (
            b"content",
            200,
        )
        assert router.requests[0].url.params["at"] == "main"

    async def test_modified_files(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add(
            "GET",
            f"{REPO}/diff",
            json_body={
                "diffs": [
                    {"source": None, "destination": {"toString": "new.txt"}},
                    {"source": {"toString": "old.txt"}, "destination": {"toString": "moved.txt"}},
                    {"source": {"toString": "gone.txt"}, "destination": None},
                ]
            },
        )

        paths = await provider.get_modified_files("PROJ", "repo", "before", "after")

        assert paths == ["gone.txt", "moved.txt", "new.txt", "old.txt"]
        params = router.requests[0].url.params
        assert (params["from"], params["to"]) == ("after", "before")


class TestBitbucketServerRetries:
    async def test_too_many_requests_is_retried(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("GET", f"{REPO}/branches", status_code=429)
        router.add("GET", f"{REPO}/branches", json_body={"values": [{"displayId": "main"}], "isLastPage": True})

        assert await provider.list_branches("PROJ", "repo") == ["main"]
        assert len(router.requests) == 2

    async def test_exhausted_retries(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        router.add("GET", f"{REPO}/branches", status_code=429)

        with pytest.raises(RateLimitError):
            await provider.list_branches("PROJ", "repo")
        assert len(router.requests) == 3

    async def test_server_errors_are_not_retried(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        router.add("GET", f"{REPO}/branches", status_code=500)

        with pytest.raises(RemoteOperationError):
            await provider.list_branches("PROJ", "repo")
        assert len(router.requests) == 1


class TestBitbucketServerUnsupported:
    async def test_labels(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.create_label("PROJ", "repo", LabelInfo("scan"))

        assert exc_info.value == BITBUCKET_SERVER_LABELS_UNSUPPORTED
        assert router.requests == []

    async def test_code_scanning_and_environments(self, provider: BitbucketServerProvider) -> None:
        with pytest.raises(UnsupportedCapabilityError):
            await provider.upload_code_scanning("PROJ", "repo", "main", "{}")
        with pytest.raises(UnsupportedCapabilityError):
            await provider.get_repository_environment_info("PROJ", "repo", "prod")

    async def test_review_comments(
        self, provider: BitbucketServerProvider, router: MockRouter
    ) -> None:
        comment = PullRequestComment("nit", "src/a.py", 3, 4)

        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.add_pull_request_review_comments("PROJ", "repo", 7, [comment])
        assert exc_info.value == BITBUCKET_SERVER_REVIEW_COMMENTS_UNSUPPORTED

        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.list_pull_request_review_comments("PROJ", "repo", 7)
        assert exc_info.value == BITBUCKET_SERVER_REVIEW_COMMENTS_UNSUPPORTED

        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.delete_pull_request_review_comments(
                "PROJ", "repo", 7, [CommentInfo(id=1, content="nit")]
            )
        assert exc_info.value == BITBUCKET_SERVER_REVIEW_COMMENTS_UNSUPPORTED
        assert router.requests == []

    async def test_commit_query(self, provider: BitbucketServerProvider, router: MockRouter) -> None:
        options = CommitQueryOptions(since=datetime(2024, 1, 1, tzinfo=timezone.utc))

        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.get_commits_with_query_options("PROJ", "repo", options)

        assert exc_info.value == BITBUCKET_SERVER_COMMIT_QUERY_UNSUPPORTED
        assert router.requests == []
