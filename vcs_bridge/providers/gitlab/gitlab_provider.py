# vcs_bridge/providers/gitlab/gitlab_provider.py

"""GitLab provider implementation on top of python-gitlab."""

import base64
from datetime import datetime, timezone
import logging
from typing import Any

import gitlab
from gitlab.utils import EncodedId

from ...archive import create_dot_git_folder_with_remote, extract_tar_gz, iterator_reader
from ...base import VcsClient
from ...error_handling.core import RemoteOperationError, RetryConfig, ValidationError
from ...error_handling.retry_manager import never_retry
from ...error_handling.unsupported import Capability
from ...models import (
    BranchInfo,
    CloneInfo,
    CommentInfo,
    CommitInfo,
    CommitQueryOptions,
    CommitStatus,
    CommitStatusInfo,
    ConnectionInfo,
    LabelInfo,
    Permission,
    PullRequestComment,
    PullRequestInfo,
    PullRequestState,
    RepositoryEnvironmentInfo,
    RepositoryInfo,
    VcsProvider,
    WebhookEvent,
    WebhookHandle,
)
from ...pagination import next_page_from_total_pages, paginate
from ...utils import (
    REMOTE_NAME,
    create_token,
    parse_int_id,
    parse_timestamp,
    sorted_unique_paths,
    validate_parameters_not_blank,
)
from ...vocabulary import (
    commit_status_from_provider,
    commit_status_to_provider,
    gitlab_hook_options,
    gitlab_visibility,
)

DEFAULT_GITLAB_API_ENDPOINT = "https://gitlab.com"
COMMITS_PAGE_SIZE = 50

_MERGE_REQUEST_STATE_EVENTS = {
    PullRequestState.OPEN: "reopen",
    PullRequestState.CLOSED: "close",
}


def get_project_id(owner: str, repository: str) -> str:
    return f"{owner}/{repository}"


class GitLabProvider(VcsClient):
    """GitLab implementation of the VcsClient interface."""

    provider = VcsProvider.GITLAB
    comment_size_limit = 1000000
    details_size_limit = 1000000

    def __init__(
        self,
        connection: ConnectionInfo,
        logger: logging.Logger | None = None,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
        client: gitlab.Gitlab | None = None,
    ) -> None:
        """Initialize the GitLab provider; ``client`` overrides the python-gitlab client."""
        super().__init__(connection, logger, retry_config, request_timeout)
        self.gl = client or gitlab.Gitlab(
            url=self.connection.api_endpoint or DEFAULT_GITLAB_API_ENDPOINT,
            private_token=self.connection.token or None,
            timeout=self.request_timeout,
        )

    def should_retry(self, error: BaseException) -> bool:
        # python-gitlab already obeys Retry-After on 429 responses.
        return never_retry(error)

    def _project(self, owner: str, repository: str) -> Any:
        return self.gl.projects.get(get_project_id(owner, repository), lazy=True)

    async def _list_in_pages(
        self, operation_name: str, path: str, query_data: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Collect every page of a GitLab list endpoint, following X-Total-Pages."""

        async def _fetch(page: int) -> tuple[list[dict[str, Any]], int | None]:
            response = await self._execute_sync_with_error_handling(
                operation_name,
                lambda: self.gl.http_get(
                    path, query_data={**(query_data or {}), "page": page}, raw=True
                ),
            )
            total_pages = response.headers.get("X-Total-Pages")
            if total_pages:
                next_page = next_page_from_total_pages(page, int(total_pages))
            else:
                # GitLab omits the total for very large collections.
                next_page = page + 1 if response.headers.get("X-Next-Page") else None
            return list(response.json() or []), next_page

        return await paginate(_fetch, 1)

    async def test_connection(self) -> None:
        """Test connection to GitLab."""
        await self._execute_sync_with_error_handling("test connection", self.gl.auth)

    async def add_ssh_key_to_repository(
        self,
        owner: str,
        repository: str,
        key_name: str,
        public_key: str,
        permission: Permission,
    ) -> None:
        validate_parameters_not_blank(
            {
                "owner": owner,
                "repository": repository,
                "key name": key_name,
                "public key": public_key,
            }
        )
        data = {
            "title": key_name,
            "key": public_key,
            "can_push": permission == Permission.READ_WRITE,
        }
        await self._execute_sync_with_error_handling(
            "add ssh key",
            lambda: self._project(owner, repository).keys.create(data),
            owner=owner,
            repository=repository,
        )

    async def list_repositories(self) -> dict[str, list[str]]:
        projects = await self._list_in_pages(
            "list repositories", "/projects", {"membership": True, "simple": True}
        )
        results: dict[str, list[str]] = {}
        for project in projects:
            results.setdefault(project["namespace"]["path"], []).append(project["path"])
        return results

    async def list_branches(self, owner: str, repository: str) -> list[str]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        project_id = EncodedId(get_project_id(owner, repository))
        branches = await self._list_in_pages(
            "list branches", f"/projects/{project_id}/repository/branches"
        )
        return [branch["name"] for branch in branches]

    async def create_webhook(
        self,
        owner: str,
        repository: str,
        branch: str,
        payload_url: str,
        *events: WebhookEvent,
    ) -> WebhookHandle:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        token = create_token()
        data = {"url": payload_url, "token": token, **gitlab_hook_options(events, branch)}
        hook = await self._execute_sync_with_error_handling(
            "create webhook",
            lambda: self._project(owner, repository).hooks.create(data),
            owner=owner,
            repository=repository,
        )
        return WebhookHandle(str(hook.id), token)

    async def update_webhook(
        self,
        owner: str,
        repository: str,
        branch: str,
        payload_url: str,
        token: str,
        webhook_id: str,
        *events: WebhookEvent,
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        hook_id = parse_int_id("webhook id", webhook_id)
        data = {"url": payload_url, "token": token, **gitlab_hook_options(events, branch)}
        await self._execute_sync_with_error_handling(
            "update webhook",
            lambda: self._project(owner, repository).hooks.update(hook_id, data),
            owner=owner,
            repository=repository,
        )

    async def delete_webhook(self, owner: str, repository: str, webhook_id: str) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        hook_id = parse_int_id("webhook id", webhook_id)
        await self._execute_sync_with_error_handling(
            "delete webhook",
            lambda: self._project(owner, repository).hooks.delete(hook_id),
            owner=owner,
            repository=repository,
        )

    async def set_commit_status(
        self,
        status: CommitStatus,
        owner: str,
        repository: str,
        ref: str,
        title: str,
        description: str,
        details_url: str,
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        data = {
            "state": commit_status_to_provider(self.provider, status),
            "name": title,
            "description": description,
            "target_url": details_url,
        }

        def _set():
            commit = self._project(owner, repository).commits.get(ref, lazy=True)
            commit.statuses.create(data)

        await self._execute_sync_with_error_handling(
            "set commit status", _set, owner=owner, repository=repository
        )

    async def get_commit_statuses(
        self, owner: str, repository: str, ref: str
    ) -> list[CommitStatusInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            commit = self._project(owner, repository).commits.get(ref, lazy=True)
            return [
                CommitStatusInfo(
                    state=commit_status_from_provider(status.status),
                    description=status.description or "",
                    details_url=status.target_url or "",
                    creator=(status.author or {}).get("name", ""),
                    created_at=parse_timestamp(status.created_at),
                    last_updated_at=parse_timestamp(status.finished_at),
                )
                for status in commit.statuses.list(get_all=True)
            ]

        return await self._execute_sync_with_error_handling(
            "get commit statuses", _get, owner=owner, repository=repository
        )

    async def download_repository(
        self, owner: str, repository: str, branch: str, local_path: str
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        chunks = await self._execute_sync_with_error_handling(
            "download repository",
            lambda: self._project(owner, repository).repository_archive(
                sha=branch, format="tar.gz", iterator=True
            ),
            owner=owner,
            repository=repository,
        )
        await self._run_sync(extract_tar_gz, iterator_reader(chunks), local_path, True)
        self.logger.info(f"{repository} repository downloaded and extracted successfully")

        repository_info = await self.get_repository_info(owner, repository)
        await self._run_sync(
            create_dot_git_folder_with_remote,
            local_path,
            REMOTE_NAME,
            repository_info.clone_info.http,
        )

    async def create_pull_request(
        self,
        owner: str,
        repository: str,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        self.logger.debug(f"Creating new merge request: {title}")
        data = {
            "title": title,
            "description": description,
            "source_branch": source_branch,
            "target_branch": target_branch,
        }
        await self._execute_sync_with_error_handling(
            "create pull request",
            lambda: self._project(owner, repository).mergerequests.create(data),
            owner=owner,
            repository=repository,
        )

    async def update_pull_request(
        self,
        owner: str,
        repository: str,
        title: str,
        body: str,
        target_branch: str,
        pull_request_id: int,
        state: PullRequestState | None,
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        self.logger.debug(f"Updating merge request {pull_request_id}")
        data: dict[str, Any] = {"title": title, "description": body}
        if target_branch:
            data["target_branch"] = target_branch
        state_event = _MERGE_REQUEST_STATE_EVENTS.get(state) if state else None
        if state_event:
            data["state_event"] = state_event
        await self._execute_sync_with_error_handling(
            "update pull request",
            lambda: self._project(owner, repository).mergerequests.update(pull_request_id, data),
            owner=owner,
            repository=repository,
        )

    async def list_open_pull_requests(
        self, owner: str, repository: str
    ) -> list[PullRequestInfo]:
        return await self._get_open_pull_requests(owner, repository, with_body=False)

    async def list_open_pull_requests_with_body(
        self, owner: str, repository: str
    ) -> list[PullRequestInfo]:
        return await self._get_open_pull_requests(owner, repository, with_body=True)

    async def _get_open_pull_requests(
        self, owner: str, repository: str, with_body: bool
    ) -> list[PullRequestInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            merge_requests = self._project(owner, repository).mergerequests.list(
                state="opened", scope="all", get_all=True
            )
            return [
                self._map_merge_request(mr, with_body, owner, repository)
                for mr in merge_requests
            ]

        return await self._execute_sync_with_error_handling(
            "list open pull requests", _list, owner=owner, repository=repository
        )

    async def get_pull_request(
        self, owner: str, repository: str, pull_request_id: int
    ) -> PullRequestInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            merge_request = self._project(owner, repository).mergerequests.get(pull_request_id)
            return self._map_merge_request(merge_request, False, owner, repository)

        return await self._execute_sync_with_error_handling(
            "get pull request", _get, owner=owner, repository=repository
        )

    def _map_merge_request(
        self, merge_request: Any, with_body: bool, owner: str, repository: str
    ) -> PullRequestInfo:
        source_owner = owner
        if merge_request.source_project_id != merge_request.target_project_id:
            source_owner = self._get_project_owner_by_id(merge_request.source_project_id)
        return PullRequestInfo(
            id=merge_request.iid,
            title=merge_request.title or "",
            body=(merge_request.description or "") if with_body else "",
            url=merge_request.web_url or "",
            author=(merge_request.author or {}).get("username", ""),
            source=BranchInfo(
                name=merge_request.source_branch,
                repository=repository,
                owner=source_owner,
            ),
            target=BranchInfo(
                name=merge_request.target_branch,
                repository=repository,
                owner=owner,
            ),
            status=merge_request.state or "",
        )

    def _get_project_owner_by_id(self, project_id: int) -> str:
        project = self.gl.projects.get(project_id)
        namespace = getattr(project, "namespace", None)
        if not namespace:
            raise RemoteOperationError(
                f"could not fetch the name of the project owner. Project ID: {project_id}"
            )
        return namespace["name"]

    async def add_pull_request_comment(
        self, owner: str, repository: str, content: str, pull_request_id: int
    ) -> None:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "content": content}
        )

        def _add():
            merge_request = self._project(owner, repository).mergerequests.get(
                pull_request_id, lazy=True
            )
            merge_request.notes.create({"body": content})

        await self._execute_sync_with_error_handling(
            "add pull request comment", _add, owner=owner, repository=repository
        )

    async def list_pull_request_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            merge_request = self._project(owner, repository).mergerequests.get(
                pull_request_id, lazy=True
            )
            return [
                CommentInfo(
                    id=note.id,
                    content=note.body or "",
                    created=parse_timestamp(note.created_at),
                )
                for note in merge_request.notes.list(get_all=True)
            ]

        return await self._execute_sync_with_error_handling(
            "list pull request comments", _list, owner=owner, repository=repository
        )

    async def delete_pull_request_comment(
        self, owner: str, repository: str, pull_request_id: int, comment_id: int
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _delete():
            merge_request = self._project(owner, repository).mergerequests.get(
                pull_request_id, lazy=True
            )
            merge_request.notes.delete(comment_id)

        await self._execute_sync_with_error_handling(
            "delete pull request comment", _delete, owner=owner, repository=repository
        )

    async def add_pull_request_review_comments(
        self,
        owner: str,
        repository: str,
        pull_request_id: int,
        comments: list[PullRequestComment],
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        if not comments:
            raise ValidationError(["comments"])

        def _add():
            merge_request = self._project(owner, repository).mergerequests.get(
                pull_request_id, lazy=True
            )
            versions = merge_request.diffs.list(get_all=False)
            if not versions:
                raise RemoteOperationError(
                    f"could not get the diff versions of merge request {pull_request_id}"
                )
            changes = merge_request.changes().get("changes") or []
            for comment in comments:
                self._create_review_discussion(merge_request, versions[0], changes, comment)

        await self._execute_sync_with_error_handling(
            "add pull request review comments", _add, owner=owner, repository=repository
        )

    def _create_review_discussion(
        self,
        merge_request: Any,
        latest_version: Any,
        changes: list[dict[str, Any]],
        comment: PullRequestComment,
    ) -> None:
        change = next((c for c in changes if c.get("new_path") == comment.new_file_path), None)
        if change is None:
            raise RemoteOperationError(
                f"could not find changes to {comment.new_file_path} in the current merge request"
            )

        position = {
            "base_sha": latest_version.base_commit_sha,
            "start_sha": latest_version.start_commit_sha,
            "head_sha": latest_version.head_commit_sha,
            "position_type": "text",
            "new_path": change["new_path"],
            "new_line": comment.new_start_line,
        }
        # New files have no old side; unchanged lines of existing files need it.
        if not change.get("new_file"):
            position["old_path"] = change.get("old_path") or ""
            position["old_line"] = comment.new_start_line

        self.logger.debug(f"Creating merge request discussion at {position}")
        try:
            merge_request.discussions.create({"body": comment.content, "position": position})
        except gitlab.GitlabCreateError:
            if "old_path" not in position:
                raise
            # Lines changed in the diff are rejected when the old side is set.
            position.pop("old_path")
            position.pop("old_line")
            self.logger.debug(f"Retrying merge request discussion without old side at {position}")
            merge_request.discussions.create({"body": comment.content, "position": position})

    async def list_pull_request_review_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            merge_request = self._project(owner, repository).mergerequests.get(
                pull_request_id, lazy=True
            )
            results = []
            for discussion in merge_request.discussions.list(get_all=True):
                for note in discussion.attributes.get("notes") or []:
                    results.append(
                        CommentInfo(
                            id=note["id"],
                            content=note.get("body") or "",
                            created=parse_timestamp(note.get("created_at")),
                            thread_id=str(discussion.id),
                        )
                    )
            return results

        return await self._execute_sync_with_error_handling(
            "list pull request review comments", _list, owner=owner, repository=repository
        )

    async def delete_pull_request_review_comments(
        self,
        owner: str,
        repository: str,
        pull_request_id: int,
        comments: list[CommentInfo],
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        for comment in comments:
            validate_parameters_not_blank({"discussion id": comment.thread_id})

        def _delete():
            merge_request = self._project(owner, repository).mergerequests.get(
                pull_request_id, lazy=True
            )
            for comment in comments:
                discussion = merge_request.discussions.get(comment.thread_id, lazy=True)
                discussion.notes.delete(comment.id)

        await self._execute_sync_with_error_handling(
            "delete pull request review comments", _delete, owner=owner, repository=repository
        )

    async def get_latest_commit(
        self, owner: str, repository: str, branch: str
    ) -> CommitInfo:
        commits = await self._list_commits(owner, repository, branch, per_page=1)
        if not commits:
            raise RemoteOperationError(
                f"no commits were returned for <{owner}/{repository}/{branch}>"
            )
        return commits[0]

    async def get_commits(self, owner: str, repository: str, branch: str) -> list[CommitInfo]:
        return await self._list_commits(owner, repository, branch, per_page=COMMITS_PAGE_SIZE)

    async def get_commits_with_query_options(
        self, owner: str, repository: str, options: CommitQueryOptions
    ) -> list[CommitInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            commits = self._project(owner, repository).commits.list(
                since=options.since.isoformat(),
                until=datetime.now(timezone.utc).isoformat(),
                page=options.page,
                per_page=options.per_page,
                get_all=False,
            )
            return [self._map_commit(commit) for commit in commits]

        return await self._execute_sync_with_error_handling(
            "get commits with query options", _list, owner=owner, repository=repository
        )

    async def _list_commits(
        self, owner: str, repository: str, branch: str, per_page: int
    ) -> list[CommitInfo]:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "branch": branch}
        )

        def _list():
            commits = self._project(owner, repository).commits.list(
                ref_name=branch, page=1, per_page=per_page, get_all=False
            )
            return [self._map_commit(commit) for commit in commits]

        return await self._execute_sync_with_error_handling(
            "get commits", _list, owner=owner, repository=repository
        )

    async def get_commit_by_sha(self, owner: str, repository: str, sha: str) -> CommitInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "sha": sha})
        return await self._execute_sync_with_error_handling(
            "get commit by sha",
            lambda: self._map_commit(self._project(owner, repository).commits.get(sha)),
            owner=owner,
            repository=repository,
        )

    @staticmethod
    def _map_commit(commit: Any) -> CommitInfo:
        committed = parse_timestamp(commit.committed_date)
        return CommitInfo(
            hash=commit.id,
            author_name=commit.author_name or "",
            committer_name=commit.committer_name or "",
            url=commit.web_url or "",
            timestamp=int(committed.timestamp()) if committed else 0,
            message=commit.message or "",
            parent_hashes=tuple(commit.parent_ids or ()),
            author_email=commit.author_email or "",
        )

    async def get_repository_info(self, owner: str, repository: str) -> RepositoryInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            project = self.gl.projects.get(get_project_id(owner, repository))
            return RepositoryInfo(
                visibility=gitlab_visibility(project.visibility),
                clone_info=CloneInfo(
                    http=project.http_url_to_repo or "", ssh=project.ssh_url_to_repo or ""
                ),
            )

        return await self._execute_sync_with_error_handling(
            "get repository info", _get, owner=owner, repository=repository
        )

    async def get_repository_environment_info(
        self, owner: str, repository: str, name: str
    ) -> RepositoryEnvironmentInfo:
        raise self._unsupported(Capability.ENVIRONMENT_INFO)

    async def create_label(self, owner: str, repository: str, label_info: LabelInfo) -> None:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "LabelInfo.name": label_info.name}
        )
        data = {
            "name": label_info.name,
            "description": label_info.description,
            "color": f"#{label_info.color}",
        }
        await self._execute_sync_with_error_handling(
            "create label",
            lambda: self._project(owner, repository).labels.create(data),
            owner=owner,
            repository=repository,
        )

    async def get_label(self, owner: str, repository: str, name: str) -> LabelInfo | None:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "name": name})
        labels = await self._execute_sync_with_error_handling(
            "get label",
            lambda: self._project(owner, repository).labels.list(get_all=True),
            owner=owner,
            repository=repository,
        )
        for label in labels:
            if label.name == name:
                return LabelInfo(
                    name=label.name,
                    description=label.description or "",
                    color=(label.color or "").removeprefix("#"),
                )
        return None

    async def list_pull_request_labels(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[str]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        merge_request = await self._execute_sync_with_error_handling(
            "list pull request labels",
            lambda: self._project(owner, repository).mergerequests.get(pull_request_id),
            owner=owner,
            repository=repository,
        )
        return list(merge_request.labels or [])

    async def unlabel_pull_request(
        self, owner: str, repository: str, name: str, pull_request_id: int
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        await self._execute_sync_with_error_handling(
            "unlabel pull request",
            lambda: self._project(owner, repository).mergerequests.update(
                pull_request_id, {"remove_labels": name}
            ),
            owner=owner,
            repository=repository,
        )

    async def upload_code_scanning(
        self, owner: str, repository: str, branch: str, sarif_content: str
    ) -> str:
        raise self._unsupported(Capability.CODE_SCANNING)

    async def download_file_from_repo(
        self, owner: str, repository: str, branch: str, path: str
    ) -> tuple[bytes, int]:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "branch": branch, "path": path}
        )
        repository_file = await self._execute_sync_with_error_handling(
            "download file",
            lambda: self._project(owner, repository).files.get(file_path=path, ref=branch),
            owner=owner,
            repository=repository,
        )
        return base64.b64decode(repository_file.content or ""), 200

    async def get_modified_files(
        self, owner: str, repository: str, ref_before: str, ref_after: str
    ) -> list[str]:
        validate_parameters_not_blank(
            {
                "owner": owner,
                "repository": repository,
                "refBefore": ref_before,
                "refAfter": ref_after,
            }
        )
        comparison = await self._execute_sync_with_error_handling(
            "get modified files",
            lambda: self._project(owner, repository).repository_compare(ref_before, ref_after),
            owner=owner,
            repository=repository,
        )
        paths: list[str | None] = []
        for diff in comparison.get("diffs", []):
            paths.extend((diff.get("new_path"), diff.get("old_path")))
        return sorted_unique_paths(paths)
