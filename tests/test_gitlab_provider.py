"""
Tests for the GitLab provider.

The python-gitlab client is replaced with a MagicMock; project managers are
reached through ``gl.projects.get``.
"""

import base64
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from gitlab.exceptions import GitlabCreateError, GitlabGetError, GitlabHttpError
import pytest

from vcs_bridge.error_handling.core import (
    NotFoundError,
    RemoteOperationError,
    RetryConfig,
    UnsupportedCapabilityError,
    ValidationError,
)
from vcs_bridge.error_handling.unsupported import (
    GITLAB_CODE_SCANNING_UNSUPPORTED,
    GITLAB_ENVIRONMENT_INFO_UNSUPPORTED,
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
from vcs_bridge.providers.gitlab.gitlab_provider import GitLabProvider


def _paged_response(items: list[dict], headers: dict[str, str]) -> MagicMock:
    response = MagicMock()
    response.headers = headers
    response.json.return_value = items
    return response


def _merge_request(iid: int, source_project_id: int = 1, target_project_id: int = 1):
    return SimpleNamespace(
        iid=iid,
        title=f"MR {iid}",
        description="mr body",
        web_url=f"https://gitlab.com/group/project/-/merge_requests/{iid}",
        author={"username": "alice"},
        source_branch="feature",
        target_branch="main",
        source_project_id=source_project_id,
        target_project_id=target_project_id,
        state="opened",
    )


def _commit(sha: str) -> SimpleNamespace:
    return SimpleNamespace(
        id=sha,
        author_name="Alice",
        committer_name="Bob",
        web_url=f"https://gitlab.com/group/project/-/commit/{sha}",
        committed_date="2024-01-02T03:04:05.000+00:00",
        message="fix things",
        parent_ids=["p1", "p2"],
        author_email="alice@example.com",
    )


@pytest.fixture
def gl() -> MagicMock:
    return MagicMock()


@pytest.fixture
def project(gl: MagicMock) -> MagicMock:
    return gl.projects.get.return_value


@pytest.fixture
def provider(connection: ConnectionInfo, fast_retry: RetryConfig, gl: MagicMock) -> GitLabProvider:
    return GitLabProvider(connection, retry_config=fast_retry, client=gl)


class TestGitLabConnection:
    async def test_connection(self, provider: GitLabProvider, gl: MagicMock) -> None:
        await provider.test_connection()
        gl.auth.assert_called_once_with()

    async def test_unauthorized(self, provider: GitLabProvider, gl: MagicMock) -> None:
        gl.auth.side_effect = GitlabHttpError("401 Unauthorized", response_code=401)

        with pytest.raises(RemoteOperationError) as exc_info:
            await provider.test_connection()

        assert exc_info.value.status_code == 401
        assert gl.auth.call_count == 1

    async def test_add_ssh_key(self, provider: GitLabProvider, gl: MagicMock, project: MagicMock) -> None:
        await provider.add_ssh_key_to_repository(
            "group", "project", "deploy", "ssh-rsa AAA", Permission.READ_WRITE
        )

        gl.projects.get.assert_called_with("group/project", lazy=True)
        project.keys.create.assert_called_once_with(
            {"title": "deploy", "key": "ssh-rsa AAA", "can_push": True}
        )

    def test_size_limits(self, provider: GitLabProvider) -> None:
        assert provider.pull_request_comment_size_limit == 1000000


class TestGitLabListing:
    async def test_list_repositories_over_pages(self, provider: GitLabProvider, gl: MagicMock) -> None:
        gl.http_get.side_effect = [
            _paged_response(
                [
                    {"path": "project", "namespace": {"path": "group"}},
                    {"path": "tools", "namespace": {"path": "alice"}},
                ],
                {"X-Total-Pages": "2"},
            ),
            _paged_response(
                [{"path": "other", "namespace": {"path": "group"}}], {"X-Total-Pages": "2"}
            ),
        ]

        result = await provider.list_repositories()

        assert result == {"group": ["project", "other"], "alice": ["tools"]}
        assert [call.kwargs["query_data"]["page"] for call in gl.http_get.call_args_list] == [1, 2]
        assert gl.http_get.call_args_list[0].kwargs["query_data"]["membership"] is True

    async def test_list_branches_encodes_project_path(
        self, provider: GitLabProvider, gl: MagicMock
    ) -> None:
        gl.http_get.return_value = _paged_response(
            [{"name": "main"}, {"name": "dev"}], {"X-Total-Pages": "1"}
        )

        assert await provider.list_branches("group", "project") == ["main", "dev"]
        assert gl.http_get.call_args.args[0] == "/projects/group%2Fproject/repository/branches"

    async def test_missing_total_pages_follows_next_page_header(
        self, provider: GitLabProvider, gl: MagicMock
    ) -> None:
        gl.http_get.side_effect = [
            _paged_response([{"name": "a"}], {"X-Next-Page": "2"}),
            _paged_response([{"name": "b"}], {"X-Next-Page": ""}),
        ]

        assert await provider.list_branches("group", "project") == ["a", "b"]


class TestGitLabWebhooks:
    async def test_create_webhook(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.hooks.create.return_value = SimpleNamespace(id=77)

        handle = await provider.create_webhook(
            "group",
            "project",
            "main",
            "https://hooks.example.com",
            WebhookEvent.PR_OPENED,
            WebhookEvent.PUSH,
        )

        assert handle.id == "77"
        project.hooks.create.assert_called_once_with(
            {
                "url": "https://hooks.example.com",
                "token": handle.token,
                "merge_requests_events": True,
                "push_events": True,
                "push_events_branch_filter": "main",
            }
        )

    async def test_update_webhook(self, provider: GitLabProvider, project: MagicMock) -> None:
        await provider.update_webhook(
            "group", "project", "dev", "https://new.example.com", "tok", "77", WebhookEvent.TAG_PUSHED
        )

        project.hooks.update.assert_called_once_with(
            77, {"url": "https://new.example.com", "token": "tok", "tag_push_events": True}
        )

    async def test_delete_webhook(self, provider: GitLabProvider, project: MagicMock) -> None:
        await provider.delete_webhook("group", "project", "77")
        project.hooks.delete.assert_called_once_with(77)


class TestGitLabCommitStatus:
    async def test_set_commit_status_folds_error_into_failed(
        self, provider: GitLabProvider, project: MagicMock
    ) -> None:
        await provider.set_commit_status(
            CommitStatus.ERROR, "group", "project", "abc", "scan", "broken", "https://ci"
        )

        project.commits.get.assert_called_once_with("abc", lazy=True)
        project.commits.get.return_value.statuses.create.assert_called_once_with(
            {"state": "failed", "name": "scan", "description": "broken", "target_url": "https://ci"}
        )

    async def test_get_commit_statuses(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.commits.get.return_value.statuses.list.return_value = [
            SimpleNamespace(
                status="running",
                description=None,
                target_url="https://ci/1",
                author={"name": "ci-bot"},
                created_at="2024-03-01T10:00:00Z",
                finished_at=None,
            )
        ]

        statuses = await provider.get_commit_statuses("group", "project", "abc")

        assert statuses[0].state == CommitStatus.IN_PROGRESS
        assert statuses[0].creator == "ci-bot"
        assert statuses[0].description == ""
        assert statuses[0].created_at.year == 2024
        assert statuses[0].last_updated_at is None


class TestGitLabDownload:
    async def test_download_repository(
        self,
        provider: GitLabProvider,
        gl: MagicMock,
        project: MagicMock,
        tmp_path: Path,
        tar_gz_factory: Callable[..., bytes],
    ) -> None:
        archive = tar_gz_factory({"README.md": b"hi"})
        project.repository_archive.return_value = iter([archive[:10], b"", archive[10:]])
        project.visibility = "private"
        project.http_url_to_repo = "https://gitlab.com/group/project.git"
        project.ssh_url_to_repo = "git@gitlab.com:group/project.git"

        with patch(
            "vcs_bridge.providers.gitlab.gitlab_provider.create_dot_git_folder_with_remote"
        ) as create_remote:
            await provider.download_repository("group", "project", "main", str(tmp_path))

        project.repository_archive.assert_called_once_with(
            sha="main", format="tar.gz", iterator=True
        )
        assert (tmp_path / "README.md").read_bytes() == b"hi"
        create_remote.assert_called_once_with(
            str(tmp_path), "origin", "https://gitlab.com/group/project.git"
        )


class TestGitLabMergeRequests:
    async def test_create(self, provider: GitLabProvider, project: MagicMock) -> None:
        await provider.create_pull_request("group", "project", "feature", "main", "T", "D")

        project.mergerequests.create.assert_called_once_with(
            {"title": "T", "description": "D", "source_branch": "feature", "target_branch": "main"}
        )

    async def test_update_reopens(self, provider: GitLabProvider, project: MagicMock) -> None:
        await provider.update_pull_request(
            "group", "project", "T", "B", "", 3, PullRequestState.OPEN
        )

        project.mergerequests.update.assert_called_once_with(
            3, {"title": "T", "description": "B", "state_event": "reopen"}
        )

    async def test_update_changes_target(self, provider: GitLabProvider, project: MagicMock) -> None:
        await provider.update_pull_request("group", "project", "T", "B", "release", 3, None)

        project.mergerequests.update.assert_called_once_with(
            3, {"title": "T", "description": "B", "target_branch": "release"}
        )

    async def test_list_open(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.mergerequests.list.return_value = [_merge_request(1), _merge_request(2)]

        without_body = await provider.list_open_pull_requests("group", "project")
        with_body = await provider.list_open_pull_requests_with_body("group", "project")

        project.mergerequests.list.assert_called_with(state="opened", scope="all", get_all=True)
        assert [mr.id for mr in without_body] == [1, 2]
        assert without_body[0].body == ""
        assert with_body[0].body == "mr body"
        assert with_body[0].author == "alice"
        assert with_body[0].source.owner == "group"

    async def test_fork_source_owner_is_resolved(
        self, provider: GitLabProvider, gl: MagicMock, project: MagicMock
    ) -> None:
        fork = SimpleNamespace(namespace={"name": "forker"})

        def _get(project_id, lazy=False):
            return fork if project_id == 99 else project

        gl.projects.get.side_effect = _get
        project.mergerequests.get.return_value = _merge_request(5, source_project_id=99)

        pull_request = await provider.get_pull_request("group", "project", 5)

        assert pull_request.source.owner == "forker"
        assert pull_request.target.owner == "group"

    async def test_fork_without_namespace_is_an_error(
        self, provider: GitLabProvider, gl: MagicMock, project: MagicMock
    ) -> None:
        def _get(project_id, lazy=False):
            return SimpleNamespace(namespace=None) if project_id == 99 else project

        gl.projects.get.side_effect = _get
        project.mergerequests.get.return_value = _merge_request(5, source_project_id=99)

        with pytest.raises(RemoteOperationError, match="Project ID: 99"):
            await provider.get_pull_request("group", "project", 5)

    async def test_notes(self, provider: GitLabProvider, project: MagicMock) -> None:
        merge_request = project.mergerequests.get.return_value
        merge_request.notes.list.return_value = [
            SimpleNamespace(id=8, body="looks good", created_at="2024-04-04T04:04:04Z")
        ]

        await provider.add_pull_request_comment("group", "project", "looks good", 5)
        comments = await provider.list_pull_request_comments("group", "project", 5)
        await provider.delete_pull_request_comment("group", "project", 5, 8)

        merge_request.notes.create.assert_called_once_with({"body": "looks good"})
        assert comments[0].id == 8
        assert comments[0].content == "looks good"
        merge_request.notes.delete.assert_called_once_with(8)


class TestGitLabReviewComments:
    @pytest.fixture
    def merge_request(self, project: MagicMock) -> MagicMock:
        merge_request = project.mergerequests.get.return_value
        merge_request.diffs.list.return_value = [
            SimpleNamespace(base_commit_sha="base", start_commit_sha="start", head_commit_sha="head")
        ]
        merge_request.changes.return_value = {
            "changes": [
                {"new_path": "src/a.py", "old_path": "src/a.py", "new_file": False},
                {"new_path": "src/new.py", "old_path": "src/new.py", "new_file": True},
            ]
        }
        return merge_request

    async def test_add_anchors_discussion_to_latest_version(
        self, provider: GitLabProvider, merge_request: MagicMock
    ) -> None:
        await provider.add_pull_request_review_comments(
            "group", "project", 5, [PullRequestComment("new code", "src/new.py", 3, 4)]
        )

        merge_request.discussions.create.assert_called_once_with(
            {
                "body": "new code",
                "position": {
                    "base_sha": "base",
                    "start_sha": "start",
                    "head_sha": "head",
                    "position_type": "text",
                    "new_path": "src/new.py",
                    "new_line": 3,
                },
            }
        )

    async def test_add_retries_without_old_side_when_rejected(
        self, provider: GitLabProvider, merge_request: MagicMock
    ) -> None:
        merge_request.discussions.create.side_effect = [
            GitlabCreateError("400 line_code can't be blank", response_code=400),
            None,
        ]

        await provider.add_pull_request_review_comments(
            "group", "project", 5, [PullRequestComment("fix", "src/a.py", 7, 7)]
        )

        first, second = merge_request.discussions.create.call_args_list
        assert first.args[0]["position"]["old_path"] == "src/a.py"
        assert first.args[0]["position"]["old_line"] == 7
        assert "old_path" not in second.args[0]["position"]
        assert "old_line" not in second.args[0]["position"]
        assert second.args[0]["position"]["new_line"] == 7

    async def test_add_for_file_outside_the_diff_fails(
        self, provider: GitLabProvider, merge_request: MagicMock
    ) -> None:
        with pytest.raises(RemoteOperationError, match="could not find changes to docs/readme.md"):
            await provider.add_pull_request_review_comments(
                "group", "project", 5, [PullRequestComment("x", "docs/readme.md", 1, 1)]
            )
        merge_request.discussions.create.assert_not_called()

    async def test_list_carries_discussion_id(
        self, provider: GitLabProvider, project: MagicMock
    ) -> None:
        merge_request = project.mergerequests.get.return_value
        merge_request.discussions.list.return_value = [
            SimpleNamespace(
                id="abc123",
                attributes={
                    "notes": [
                        {"id": 1, "body": "root", "created_at": "2024-04-04T04:04:04Z"},
                        {"id": 2, "body": "reply", "created_at": "2024-04-05T04:04:04Z"},
                    ]
                },
            )
        ]

        comments = await provider.list_pull_request_review_comments("group", "project", 5)

        assert [(c.id, c.content, c.thread_id) for c in comments] == [
            (1, "root", "abc123"),
            (2, "reply", "abc123"),
        ]
        merge_request.discussions.list.assert_called_once_with(get_all=True)

    async def test_delete_removes_notes_from_their_discussion(
        self, provider: GitLabProvider, project: MagicMock
    ) -> None:
        merge_request = project.mergerequests.get.return_value

        await provider.delete_pull_request_review_comments(
            "group", "project", 5, [CommentInfo(id=2, content="reply", thread_id="abc123")]
        )

        merge_request.discussions.get.assert_called_once_with("abc123", lazy=True)
        merge_request.discussions.get.return_value.notes.delete.assert_called_once_with(2)

    async def test_delete_requires_discussion_id(
        self, provider: GitLabProvider, project: MagicMock
    ) -> None:
        with pytest.raises(ValidationError):
            await provider.delete_pull_request_review_comments(
                "group", "project", 5, [CommentInfo(id=2, content="reply")]
            )
        project.mergerequests.get.assert_not_called()


class TestGitLabCommits:
    async def test_latest_commit(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.commits.list.return_value = [_commit("head")]

        commit = await provider.get_latest_commit("group", "project", "main")

        project.commits.list.assert_called_once_with(
            ref_name="main", page=1, per_page=1, get_all=False
        )
        assert commit.hash == "head"
        assert commit.parent_hashes == ("p1", "p2")
        assert commit.timestamp == 1704164645

    async def test_latest_commit_of_empty_branch_fails(
        self, provider: GitLabProvider, project: MagicMock
    ) -> None:
        project.commits.list.return_value = []

        with pytest.raises(RemoteOperationError, match="no commits were returned for <group/project/main>"):
            await provider.get_latest_commit("group", "project", "main")

    async def test_get_commits(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.commits.list.return_value = [_commit("a"), _commit("b")]

        commits = await provider.get_commits("group", "project", "main")

        assert [c.hash for c in commits] == ["a", "b"]
        assert project.commits.list.call_args.kwargs["per_page"] == 50

    async def test_commit_by_sha_not_found(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.commits.get.side_effect = GitlabGetError("Commit Not Found", response_code=404)

        with pytest.raises(NotFoundError):
            await provider.get_commit_by_sha("group", "project", "deadbeef")

    async def test_get_commits_with_query_options(
        self, provider: GitLabProvider, project: MagicMock
    ) -> None:
        project.commits.list.return_value = [_commit("a")]
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)

        commits = await provider.get_commits_with_query_options(
            "group", "project", CommitQueryOptions(since=since, page=3, per_page=20)
        )

        assert [c.hash for c in commits] == ["a"]
        kwargs = project.commits.list.call_args.kwargs
        assert kwargs["since"] == "2024-01-01T00:00:00+00:00"
        assert kwargs["until"] > kwargs["since"]
        assert (kwargs["page"], kwargs["per_page"], kwargs["get_all"]) == (3, 20, False)


class TestGitLabRepositoryInfo:
    async def test_repository_info(self, provider: GitLabProvider, gl: MagicMock, project: MagicMock) -> None:
        project.visibility = "internal"
        project.http_url_to_repo = "https://gitlab.com/group/project.git"
        project.ssh_url_to_repo = "git@gitlab.com:group/project.git"

        info = await provider.get_repository_info("group", "project")

        gl.projects.get.assert_called_with("group/project")
        assert info.visibility == RepositoryVisibility.INTERNAL
        assert info.clone_info.ssh == "git@gitlab.com:group/project.git"


class TestGitLabLabels:
    async def test_create_label_prefixes_color(self, provider: GitLabProvider, project: MagicMock) -> None:
        await provider.create_label("group", "project", LabelInfo("scan", "Run a scan", "4AB548"))

        project.labels.create.assert_called_once_with(
            {"name": "scan", "description": "Run a scan", "color": "#4AB548"}
        )

    async def test_get_label(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.labels.list.return_value = [
            SimpleNamespace(name="other", description="", color="#000000"),
            SimpleNamespace(name="scan", description="Run a scan", color="#4AB548"),
        ]

        assert await provider.get_label("group", "project", "scan") == LabelInfo(
            "scan", "Run a scan", "4AB548"
        )
        assert await provider.get_label("group", "project", "missing") is None

    async def test_merge_request_labels(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.mergerequests.get.return_value.labels = ["scan", "bug"]

        assert await provider.list_pull_request_labels("group", "project", 3) == ["scan", "bug"]
        await provider.unlabel_pull_request("group", "project", "scan", 3)

        project.mergerequests.update.assert_called_once_with(3, {"remove_labels": "scan"})


class TestGitLabUnsupported:
    async def test_code_scanning(self, provider: GitLabProvider) -> None:
        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.upload_code_scanning("group", "project", "main", "{}")
        assert exc_info.value == GITLAB_CODE_SCANNING_UNSUPPORTED

    async def test_environment_info(self, provider: GitLabProvider) -> None:
        with pytest.raises(UnsupportedCapabilityError) as exc_info:
            await provider.get_repository_environment_info("group", "project", "prod")
        assert exc_info.value == GITLAB_ENVIRONMENT_INFO_UNSUPPORTED


class TestGitLabFiles:
    async def test_download_file(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.files.get.return_value.content = base64.b64encode(b"hello").decode()

        assert await provider.download_file_from_repo("group", "project", "main", "a.txt") == (
            b"hello",
            200,
        )
        project.files.get.assert_called_once_with(file_path="a.txt", ref="main")

    async def test_modified_files(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.repository_compare.return_value = {
            "diffs": [
                {"new_path": "b.txt", "old_path": "b.txt"},
                {"new_path": "new.txt", "old_path": "old.txt"},
            ]
        }

        paths = await provider.get_modified_files("group", "project", "before", "after")

        assert paths == ["b.txt", "new.txt", "old.txt"]
        project.repository_compare.assert_called_once_with("before", "after")


class TestGitLabRetries:
    async def test_failures_are_not_retried(self, provider: GitLabProvider, project: MagicMock) -> None:
        project.hooks.create.side_effect = GitlabHttpError("429 Too Many Requests", response_code=429)

        with pytest.raises(RemoteOperationError):
            await provider.create_webhook("group", "project", "main", "https://h", WebhookEvent.PUSH)

        assert project.hooks.create.call_count == 1
