# vcs_bridge/providers/github/github_provider.py

"""
GitHub provider implementation.

This module provides a concrete implementation of the VcsClient interface for
GitHub and GitHub Enterprise, on top of PyGithub. PyGithub is synchronous, so
every SDK call runs in the default thread pool executor.
"""

from datetime import datetime, timezone
import itertools
import logging
import posixpath
from typing import Any

from github import Auth, Github, GithubException
from github.Repository import Repository
import httpx

from ...archive import create_dot_git_folder_with_remote, extract_tar_gz_stream
from ...base import VcsClient
from ...error_handling.core import RemoteOperationError, RetryConfig, ValidationError
from ...models import (
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
from ...pagination import next_page_from_last_page, paginate
from ...utils import (
    REMOTE_NAME,
    add_branch_prefix,
    check_response_status_with_body,
    create_token,
    map_pull_request_state,
    parse_int_id,
    sorted_unique_paths,
    validate_parameters_not_blank,
)
from ...vocabulary import (
    commit_status_to_provider,
    github_visibility,
    github_webhook_events,
    is_read_only,
)
from .github_utils import (
    encode_sarif,
    github_rate_limit_predicate,
    last_page_from_headers,
    map_commit,
    map_commit_status,
    map_environment,
    map_issue_comment,
    map_pull_request,
    map_review_comment,
)

DEFAULT_GITHUB_API_ENDPOINT = "https://api.github.com"
COMMITS_PAGE_SIZE = 50


class GitHubProvider(VcsClient):
    """GitHub implementation of the VcsClient interface."""

    provider = VcsProvider.GITHUB
    comment_size_limit = 65536
    details_size_limit = 65536

    def __init__(
        self,
        connection: ConnectionInfo,
        logger: logging.Logger | None = None,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
        client: Github | None = None,
    ) -> None:
        """Initialize the GitHub provider; ``client`` overrides the PyGithub client."""
        super().__init__(connection, logger, retry_config, request_timeout)
        self.client = client or self._build_client()

    def _build_client(self) -> Github:
        # Retries are driven by the retry executor, not by PyGithub.
        return Github(
            auth=Auth.Token(self.connection.token) if self.connection.token else None,
            base_url=self.connection.api_endpoint or DEFAULT_GITHUB_API_ENDPOINT,
            timeout=int(self.request_timeout),
            retry=None,
        )

    def should_retry(self, error: BaseException) -> bool:
        return github_rate_limit_predicate(error)

    async def close(self) -> None:
        self.client.close()

    def _repo(self, owner: str, repository: str) -> Repository:
        return self.client.get_repo(f"{owner}/{repository}")

    async def _list_in_pages(self, operation_name: str, path: str) -> list[dict[str, Any]]:
        """Collect every page of a GitHub list endpoint, following the Link header."""

        async def _fetch(page: int) -> tuple[list[dict[str, Any]], int | None]:
            headers, data = await self._execute_sync_with_error_handling(
                operation_name,
                lambda: self.client.requester.requestJsonAndCheck(
                    "GET", path, parameters={"page": page}
                ),
            )
            return list(data or []), next_page_from_last_page(
                page, last_page_from_headers(headers)
            )

        return await paginate(_fetch, 1)

    async def test_connection(self) -> None:
        """Test connection to GitHub."""
        await self._execute_sync_with_error_handling(
            "test connection", lambda: self.client.get_user().login
        )

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
        read_only = is_read_only(permission)

        def _create():
            self._repo(owner, repository).create_key(key_name, public_key, read_only)

        await self._execute_sync_with_error_handling(
            "add ssh key", _create, owner=owner, repository=repository
        )

    async def list_repositories(self) -> dict[str, list[str]]:
        results: dict[str, list[str]] = {}
        for repo in await self._list_in_pages("list repositories", "/user/repos"):
            results.setdefault(repo["owner"]["login"], []).append(repo["name"])
        return results

    async def list_branches(self, owner: str, repository: str) -> list[str]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        branches = await self._list_in_pages(
            "list branches", f"/repos/{owner}/{repository}/branches"
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

        def _create():
            return self._repo(owner, repository).create_hook(
                name="web",
                config=self._hook_config(payload_url, token),
                events=github_webhook_events(events),
                active=True,
            )

        hook = await self._execute_sync_with_error_handling(
            "create webhook", _create, owner=owner, repository=repository
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
        hook_id = parse_int_id("webhook id", webhook_id, bits=64)

        def _update():
            self._repo(owner, repository).get_hook(hook_id).edit(
                name="web",
                config=self._hook_config(payload_url, token),
                events=github_webhook_events(events),
                active=True,
            )

        await self._execute_sync_with_error_handling(
            "update webhook", _update, owner=owner, repository=repository
        )

    async def delete_webhook(self, owner: str, repository: str, webhook_id: str) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        hook_id = parse_int_id("webhook id", webhook_id, bits=64)

        def _delete():
            self._repo(owner, repository).get_hook(hook_id).delete()

        await self._execute_sync_with_error_handling(
            "delete webhook", _delete, owner=owner, repository=repository
        )

    @staticmethod
    def _hook_config(payload_url: str, token: str) -> dict[str, str]:
        return {"content_type": "json", "url": payload_url, "secret": token}

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

        def _set():
            self._repo(owner, repository).get_commit(ref).create_status(
                state=commit_status_to_provider(self.provider, status),
                target_url=details_url,
                description=description,
                context=title,
            )

        await self._execute_sync_with_error_handling(
            "set commit status", _set, owner=owner, repository=repository
        )

    async def get_commit_statuses(
        self, owner: str, repository: str, ref: str
    ) -> list[CommitStatusInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            combined = self._repo(owner, repository).get_commit(ref).get_combined_status()
            return [map_commit_status(status) for status in combined.statuses]

        return await self._execute_sync_with_error_handling(
            "get commit statuses", _get, owner=owner, repository=repository
        )

    async def download_repository(
        self, owner: str, repository: str, branch: str, local_path: str
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        self.logger.debug("Getting GitHub archive link to download")
        archive_link = await self._execute_sync_with_error_handling(
            "get archive link",
            lambda: self._repo(owner, repository).get_archive_link("tarball", ref=branch),
            owner=owner,
            repository=repository,
        )

        async with httpx.AsyncClient(
            follow_redirects=True, timeout=self.request_timeout
        ) as http_client:
            async with http_client.stream("GET", archive_link) as response:
                if response.status_code != 200:
                    await response.aread()
                check_response_status_with_body(
                    response,
                    200,
                    operation="download repository",
                    owner=owner,
                    repository=repository,
                )
                await extract_tar_gz_stream(response.aiter_bytes(), local_path, True)
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
        self.logger.debug(f"Creating new pull request: {title}")

        def _create():
            self._repo(owner, repository).create_pull(
                base=target_branch,
                head=f"{owner}:{source_branch}",
                title=title,
                body=description,
            )

        await self._execute_sync_with_error_handling(
            "create pull request", _create, owner=owner, repository=repository
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
        self.logger.debug(f"Updating pull request {pull_request_id}")
        changes: dict[str, Any] = {"title": title, "body": body}
        mapped_state = map_pull_request_state(state)
        if mapped_state:
            changes["state"] = mapped_state
        if target_branch:
            changes["base"] = target_branch

        def _update():
            self._repo(owner, repository).get_pull(pull_request_id).edit(**changes)

        await self._execute_sync_with_error_handling(
            "update pull request", _update, owner=owner, repository=repository
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
            pulls = self._repo(owner, repository).get_pulls(state="open")
            return [map_pull_request(pull, with_body) for pull in pulls]

        return await self._execute_sync_with_error_handling(
            "list open pull requests", _list, owner=owner, repository=repository
        )

    async def get_pull_request(
        self, owner: str, repository: str, pull_request_id: int
    ) -> PullRequestInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            pull = self._repo(owner, repository).get_pull(pull_request_id)
            return map_pull_request(pull, with_body=False)

        return await self._execute_sync_with_error_handling(
            "get pull request", _get, owner=owner, repository=repository
        )

    async def add_pull_request_comment(
        self, owner: str, repository: str, content: str, pull_request_id: int
    ) -> None:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "content": content}
        )

        def _add():
            self._repo(owner, repository).get_issue(pull_request_id).create_comment(content)

        await self._execute_sync_with_error_handling(
            "add pull request comment", _add, owner=owner, repository=repository
        )

    async def list_pull_request_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            issue = self._repo(owner, repository).get_issue(pull_request_id)
            return [map_issue_comment(comment) for comment in issue.get_comments()]

        return await self._execute_sync_with_error_handling(
            "list pull request comments", _list, owner=owner, repository=repository
        )

    async def delete_pull_request_comment(
        self, owner: str, repository: str, pull_request_id: int, comment_id: int
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _delete():
            issue = self._repo(owner, repository).get_issue(pull_request_id)
            issue.get_comment(comment_id).delete()

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
            pull_request = self._repo(owner, repository).get_pull(pull_request_id)
            commits = list(pull_request.get_commits())
            if not commits:
                raise RemoteOperationError(
                    f"could not fetch the commits list for pull request {pull_request_id}"
                )
            latest_commit = commits[-1]
            for comment in comments:
                options: dict[str, Any] = {"line": comment.new_end_line}
                # GitHub rejects start_line when it equals the end line.
                if comment.new_start_line != comment.new_end_line:
                    options["start_line"] = comment.new_start_line
                pull_request.create_review_comment(
                    body=comment.content,
                    commit=latest_commit,
                    path=posixpath.normpath(comment.new_file_path),
                    **options,
                )

        await self._execute_sync_with_error_handling(
            "add pull request review comments", _add, owner=owner, repository=repository
        )

    async def list_pull_request_review_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            pull_request = self._repo(owner, repository).get_pull(pull_request_id)
            return [map_review_comment(comment) for comment in pull_request.get_review_comments()]

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

        def _delete():
            pull_request = self._repo(owner, repository).get_pull(pull_request_id)
            for comment in comments:
                pull_request.get_review_comment(comment.id).delete()

        await self._execute_sync_with_error_handling(
            "delete pull request review comments", _delete, owner=owner, repository=repository
        )

    async def get_latest_commit(
        self, owner: str, repository: str, branch: str
    ) -> CommitInfo:
        commits = await self.get_commits(owner, repository, branch)
        if commits:
            return commits[0]
        return CommitInfo(hash="")

    async def get_commits(self, owner: str, repository: str, branch: str) -> list[CommitInfo]:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "branch": branch}
        )

        def _get():
            commits = self._repo(owner, repository).get_commits(sha=branch)
            return [map_commit(commit) for commit in itertools.islice(commits, COMMITS_PAGE_SIZE)]

        return await self._execute_sync_with_error_handling(
            "get commits", _get, owner=owner, repository=repository
        )

    async def get_commits_with_query_options(
        self, owner: str, repository: str, options: CommitQueryOptions
    ) -> list[CommitInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            commits = self._repo(owner, repository).get_commits(
                since=options.since, until=datetime.now(timezone.utc)
            )
            start = (max(options.page, 1) - 1) * options.per_page
            page = itertools.islice(commits, start, start + options.per_page)
            return [map_commit(commit) for commit in page]

        return await self._execute_sync_with_error_handling(
            "get commits with query options", _get, owner=owner, repository=repository
        )

    async def get_commit_by_sha(self, owner: str, repository: str, sha: str) -> CommitInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "sha": sha})
        return await self._execute_sync_with_error_handling(
            "get commit by sha",
            lambda: map_commit(self._repo(owner, repository).get_commit(sha)),
            owner=owner,
            repository=repository,
        )

    async def get_repository_info(self, owner: str, repository: str) -> RepositoryInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _get():
            repo = self._repo(owner, repository)
            return RepositoryInfo(
                visibility=github_visibility(repo.visibility),
                clone_info=CloneInfo(http=repo.clone_url or "", ssh=repo.ssh_url or ""),
            )

        return await self._execute_sync_with_error_handling(
            "get repository info", _get, owner=owner, repository=repository
        )

    async def get_repository_environment_info(
        self, owner: str, repository: str, name: str
    ) -> RepositoryEnvironmentInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "name": name})
        return await self._execute_sync_with_error_handling(
            "get repository environment info",
            lambda: map_environment(self._repo(owner, repository).get_environment(name)),
            owner=owner,
            repository=repository,
        )

    async def create_label(self, owner: str, repository: str, label_info: LabelInfo) -> None:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "LabelInfo.name": label_info.name}
        )

        def _create():
            self._repo(owner, repository).create_label(
                name=label_info.name,
                color=label_info.color,
                description=label_info.description,
            )

        await self._execute_sync_with_error_handling(
            "create label", _create, owner=owner, repository=repository
        )

    async def get_label(self, owner: str, repository: str, name: str) -> LabelInfo | None:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "name": name})

        def _get():
            try:
                label = self._repo(owner, repository).get_label(name)
            except GithubException as e:
                if e.status == 404:
                    return None
                raise
            return LabelInfo(
                name=label.name,
                description=label.description or "",
                color=label.color or "",
            )

        return await self._execute_sync_with_error_handling(
            "get label", _get, owner=owner, repository=repository
        )

    async def list_pull_request_labels(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[str]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _list():
            pull = self._repo(owner, repository).get_pull(pull_request_id)
            return [label.name for label in pull.get_labels()]

        return await self._execute_sync_with_error_handling(
            "list pull request labels", _list, owner=owner, repository=repository
        )

    async def unlabel_pull_request(
        self, owner: str, repository: str, name: str, pull_request_id: int
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})

        def _unlabel():
            self._repo(owner, repository).get_pull(pull_request_id).remove_from_labels(name)

        await self._execute_sync_with_error_handling(
            "unlabel pull request", _unlabel, owner=owner, repository=repository
        )

    async def upload_code_scanning(
        self, owner: str, repository: str, branch: str, sarif_content: str
    ) -> str:
        commit = await self.get_latest_commit(owner, repository, branch)
        if not commit.hash:
            raise RemoteOperationError(
                f"no commits were returned for branch {branch}",
                operation="upload code scanning",
                owner=owner,
                repository=repository,
            )

        encoded = encode_sarif(sarif_content)

        def _upload():
            _, data = self.client.requester.requestJsonAndCheck(
                "POST",
                f"/repos/{owner}/{repository}/code-scanning/sarifs",
                input={
                    "commit_sha": commit.hash,
                    "ref": add_branch_prefix(branch),
                    "sarif": encoded,
                },
            )
            return str((data or {}).get("id", ""))

        return await self._execute_sync_with_error_handling(
            "upload code scanning", _upload, owner=owner, repository=repository
        )

    async def download_file_from_repo(
        self, owner: str, repository: str, branch: str, path: str
    ) -> tuple[bytes, int]:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "branch": branch, "path": path}
        )

        def _download():
            content = self._repo(owner, repository).get_contents(path, ref=branch)
            if isinstance(content, list):
                raise IsADirectoryError(path)
            return content.decoded_content

        content = await self._execute_sync_with_error_handling(
            "download file", _download, owner=owner, repository=repository
        )
        return content, 200

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

        def _compare():
            comparison = self._repo(owner, repository).compare(ref_before, ref_after)
            paths: list[str | None] = []
            for changed in comparison.files:
                paths.extend((changed.filename, changed.previous_filename))
            return sorted_unique_paths(paths)

        return await self._execute_sync_with_error_handling(
            "get modified files", _compare, owner=owner, repository=repository
        )
