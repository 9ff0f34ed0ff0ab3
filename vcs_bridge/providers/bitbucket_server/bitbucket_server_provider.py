# vcs_bridge/providers/bitbucket_server/bitbucket_server_provider.py

"""
Bitbucket Server (Data Center) provider implementation.

Talks to the REST 1.0 API under ``<endpoint>/rest``. Listings use the
``start``/``isLastPage``/``nextPageStart`` offset scheme. Pull request updates
and comment deletions are optimistic-locked, so the current ``version`` is
read before every such write.
"""

import logging
from typing import Any

import httpx

from ...archive import create_dot_git_folder_with_remote
from ...error_handling.core import RemoteOperationError, RetryConfig
from ...models import (
    BranchInfo,
    CloneInfo,
    CommentInfo,
    CommitInfo,
    CommitStatus,
    CommitStatusInfo,
    ConnectionInfo,
    Permission,
    PullRequestInfo,
    PullRequestState,
    RepositoryInfo,
    VcsProvider,
    WebhookEvent,
    WebhookHandle,
)
from ...pagination import next_start_from_page, paginate
from ...utils import (
    REMOTE_NAME,
    add_branch_prefix,
    create_token,
    parse_int_id,
    sorted_unique_paths,
    validate_parameters_not_blank,
)
from ...vocabulary import (
    bitbucket_server_key_permission,
    bitbucket_server_visibility,
    bitbucket_server_webhook_events,
    commit_status_to_provider,
)
from ..bitbucket_common import BitbucketProvider, epoch_millis_to_datetime, parse_commit_statuses

REST_SUFFIX = "/rest"
COMMITS_PAGE_SIZE = 50


def rest_api_endpoint(api_endpoint: str) -> str:
    """Bitbucket Server REST endpoints live under ``/rest``."""
    endpoint = api_endpoint.rstrip("/")
    if not endpoint.endswith(REST_SUFFIX):
        endpoint += REST_SUFFIX
    return endpoint


def branch_display_name(ref: dict[str, Any]) -> str:
    """Prefer the short branch name over the full ``refs/heads/...`` id."""
    return ref.get("displayId") or ref.get("id") or ""


def create_hook_payload(
    token: str, payload_url: str, events: tuple[WebhookEvent, ...]
) -> dict[str, Any]:
    return {
        "url": payload_url,
        "configuration": {"secret": token},
        "events": bitbucket_server_webhook_events(events),
    }


class BitbucketServerProvider(BitbucketProvider):
    """Bitbucket Server implementation of the VcsClient interface."""

    provider = VcsProvider.BITBUCKET_SERVER

    def __init__(
        self,
        connection: ConnectionInfo,
        logger: logging.Logger | None = None,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_endpoint = rest_api_endpoint(connection.api_endpoint)
        super().__init__(connection, logger, retry_config, request_timeout, http_client)

    def _build_http_client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.connection.token:
            headers["Authorization"] = f"Bearer {self.connection.token}"
        return httpx.AsyncClient(
            base_url=self.api_endpoint, headers=headers, timeout=self.request_timeout
        )

    @staticmethod
    def _repo_path(owner: str, repository: str) -> str:
        return f"/api/1.0/projects/{owner}/repos/{repository}"

    async def _list_in_pages(
        self,
        operation_name: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        owner: str | None = None,
        repository: str | None = None,
    ) -> list[dict[str, Any]]:
        async def _fetch(start: int) -> tuple[list[dict[str, Any]], int | None]:
            body = await self._get_json(
                operation_name,
                path,
                owner=owner,
                repository=repository,
                params={**(params or {}), "start": start},
            )
            return list(body.get("values") or []), next_start_from_page(body)

        return await paginate(_fetch, 0)

    async def test_connection(self) -> None:
        await self._request("test connection", "GET", "/api/1.0/users", params={"limit": 1})

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
            "key": {"text": public_key, "label": key_name},
            "permission": bitbucket_server_key_permission(permission),
        }
        await self._request(
            "add ssh key",
            "POST",
            f"/keys/1.0/projects/{owner}/repos/{repository}/ssh",
            owner=owner,
            repository=repository,
            json=data,
        )

    async def _list_projects(self) -> list[str]:
        """
        List project keys the user can view, plus the user's personal project.

        The personal project key is ``~`` followed by the upper-cased user
        name, which Bitbucket reports in the ``X-AUSERNAME`` response header.
        """
        username = ""

        async def _fetch(start: int) -> tuple[list[str], int | None]:
            nonlocal username
            response = await self._request(
                "list projects", "GET", "/api/1.0/projects", params={"start": start}
            )
            username = response.headers.get("X-Ausername", username)
            body = response.json()
            keys = [project["key"] for project in body.get("values") or []]
            return keys, next_start_from_page(body)

        projects = await paginate(_fetch, 0)
        if not username:
            raise RemoteOperationError("X-Ausername header is missing", operation="list projects")
        projects.append(f"~{username.upper()}")
        return projects

    async def list_repositories(self) -> dict[str, list[str]]:
        results: dict[str, list[str]] = {}
        for project in await self._list_projects():
            repositories = await self._list_in_pages(
                "list repositories", f"/api/1.0/projects/{project}/repos", owner=project
            )
            if repositories:
                results[project] = [repo["slug"] for repo in repositories]
        return results

    async def list_branches(self, owner: str, repository: str) -> list[str]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        branches = await self._list_in_pages(
            "list branches",
            f"{self._repo_path(owner, repository)}/branches",
            owner=owner,
            repository=repository,
        )
        return [branch_display_name(branch) for branch in branches]

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
        response = await self._request(
            "create webhook",
            "POST",
            f"{self._repo_path(owner, repository)}/webhooks",
            owner=owner,
            repository=repository,
            json=create_hook_payload(token, payload_url, events),
        )
        return WebhookHandle(str(response.json()["id"]), token)

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
        hook_id = parse_int_id("webhook id", webhook_id, bits=32)
        await self._request(
            "update webhook",
            "PUT",
            f"{self._repo_path(owner, repository)}/webhooks/{hook_id}",
            owner=owner,
            repository=repository,
            json=create_hook_payload(token, payload_url, events),
        )

    async def delete_webhook(self, owner: str, repository: str, webhook_id: str) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        hook_id = parse_int_id("webhook id", webhook_id, bits=32)
        await self._request(
            "delete webhook",
            "DELETE",
            f"{self._repo_path(owner, repository)}/webhooks/{hook_id}",
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
        # Build statuses are global to the commit, not scoped to a repository.
        validate_parameters_not_blank({"ref": ref})
        data = {
            "state": commit_status_to_provider(self.provider, status),
            "key": title,
            "description": description,
            "url": details_url,
        }
        await self._request(
            "set commit status",
            "POST",
            f"/build-status/1.0/commits/{ref}",
            owner=owner,
            repository=repository,
            json=data,
        )

    async def get_commit_statuses(
        self, owner: str, repository: str, ref: str
    ) -> list[CommitStatusInfo]:
        validate_parameters_not_blank({"ref": ref})
        statuses = await self._list_in_pages(
            "get commit statuses",
            f"/build-status/1.0/commits/{ref}",
            owner=owner,
            repository=repository,
        )
        return parse_commit_statuses(statuses)

    async def download_repository(
        self, owner: str, repository: str, branch: str, local_path: str
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        params = {"format": "tgz"}
        branch = branch.strip()
        if branch:
            params["at"] = branch
        await self._download_and_extract(
            f"{self._repo_path(owner, repository)}/archive",
            local_path,
            False,
            owner=owner,
            repository=repository,
            params=params,
        )

        remote_url = (
            f"{self.api_endpoint.removesuffix(REST_SUFFIX)}/scm/{owner}/{repository}.git"
        )
        await self._run_sync(create_dot_git_folder_with_remote, local_path, REMOTE_NAME, remote_url)

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
        repo_ref = {"slug": repository, "project": {"key": owner}}
        data = {
            "title": title,
            "description": description,
            "fromRef": {"id": add_branch_prefix(source_branch), "repository": repo_ref},
            "toRef": {"id": add_branch_prefix(target_branch), "repository": repo_ref},
        }
        await self._request(
            "create pull request",
            "POST",
            f"{self._repo_path(owner, repository)}/pull-requests",
            owner=owner,
            repository=repository,
            json=data,
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
        pull_request_path = f"{self._repo_path(owner, repository)}/pull-requests/{pull_request_id}"
        current = await self._get_json(
            "update pull request", pull_request_path, owner=owner, repository=repository
        )

        data: dict[str, Any] = {
            "title": title,
            "description": body,
            "version": current["version"],
        }
        if target_branch:
            data["toRef"] = {
                "id": add_branch_prefix(target_branch),
                "repository": {"slug": repository, "project": {"key": owner}},
            }
        response = await self._request(
            "update pull request",
            "PUT",
            pull_request_path,
            owner=owner,
            repository=repository,
            json=data,
        )
        version = response.json().get("version", current["version"])

        current_state = current.get("state")
        action = None
        if state == PullRequestState.CLOSED and current_state == "OPEN":
            action = "decline"
        elif state == PullRequestState.OPEN and current_state == "DECLINED":
            action = "reopen"
        if action:
            await self._request(
                "update pull request",
                "POST",
                f"{pull_request_path}/{action}",
                owner=owner,
                repository=repository,
                params={"version": version},
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
        pull_requests = await self._list_in_pages(
            "list open pull requests",
            f"{self._repo_path(owner, repository)}/pull-requests",
            {"state": "OPEN"},
            owner=owner,
            repository=repository,
        )
        return [
            self._map_pull_request(pull_request, with_body)
            for pull_request in pull_requests
            if pull_request.get("open")
        ]

    async def get_pull_request(
        self, owner: str, repository: str, pull_request_id: int
    ) -> PullRequestInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        pull_request = await self._get_json(
            "get pull request",
            f"{self._repo_path(owner, repository)}/pull-requests/{pull_request_id}",
            owner=owner,
            repository=repository,
        )
        return self._map_pull_request(pull_request, with_body=False)

    @staticmethod
    def _map_pull_request(pull_request: dict[str, Any], with_body: bool) -> PullRequestInfo:
        def _branch(ref: dict[str, Any], role: str) -> BranchInfo:
            repo = ref.get("repository")
            if not repo:
                raise RemoteOperationError(
                    f"the {role} repository information is missing when fetching the pull request details"
                )
            project_key = (repo.get("project") or {}).get("key")
            if not repo.get("slug") or not project_key:
                raise RemoteOperationError(
                    f"the {role} repository owner name is missing when fetching the pull request details"
                )
            return BranchInfo(
                name=branch_display_name(ref),
                repository=repo["slug"],
                owner=project_key,
            )

        self_links = (pull_request.get("links") or {}).get("self") or [{}]
        author = (pull_request.get("author") or {}).get("user") or {}
        return PullRequestInfo(
            id=pull_request["id"],
            title=pull_request.get("title") or "",
            body=(pull_request.get("description") or "") if with_body else "",
            url=self_links[0].get("href", ""),
            author=author.get("name", ""),
            source=_branch(pull_request.get("fromRef") or {}, "source"),
            target=_branch(pull_request.get("toRef") or {}, "target"),
            status=pull_request.get("state") or "",
        )

    async def add_pull_request_comment(
        self, owner: str, repository: str, content: str, pull_request_id: int
    ) -> None:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "content": content}
        )
        await self._request(
            "add pull request comment",
            "POST",
            f"{self._repo_path(owner, repository)}/pull-requests/{pull_request_id}/comments",
            owner=owner,
            repository=repository,
            json={"text": content},
        )

    async def list_pull_request_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        activities = await self._list_in_pages(
            "list pull request comments",
            f"{self._repo_path(owner, repository)}/pull-requests/{pull_request_id}/activities",
            owner=owner,
            repository=repository,
        )
        results = []
        for activity in activities:
            # Only newly added comments; edits and replies show up as other actions.
            if activity.get("action") != "COMMENTED" or activity.get("commentAction") != "ADDED":
                continue
            comment = activity.get("comment") or {}
            created = comment.get("createdDate")
            results.append(
                CommentInfo(
                    id=comment["id"],
                    content=comment.get("text") or "",
                    created=epoch_millis_to_datetime(created) if created else None,
                    version=comment.get("version", 0),
                )
            )
        return results

    async def delete_pull_request_comment(
        self, owner: str, repository: str, pull_request_id: int, comment_id: int
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        comment_path = (
            f"{self._repo_path(owner, repository)}/pull-requests/{pull_request_id}"
            f"/comments/{comment_id}"
        )
        comment = await self._get_json(
            "delete pull request comment", comment_path, owner=owner, repository=repository
        )
        await self._request(
            "delete pull request comment",
            "DELETE",
            comment_path,
            owner=owner,
            repository=repository,
            params={"version": comment.get("version", 0)},
        )

    async def get_latest_commit(
        self, owner: str, repository: str, branch: str
    ) -> CommitInfo:
        commits = await self._get_commits(owner, repository, branch, limit=1)
        if not commits:
            return CommitInfo(hash="")
        return commits[0]

    async def get_commits(self, owner: str, repository: str, branch: str) -> list[CommitInfo]:
        return await self._get_commits(owner, repository, branch, limit=COMMITS_PAGE_SIZE)

    async def _get_commits(
        self, owner: str, repository: str, branch: str, limit: int
    ) -> list[CommitInfo]:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "branch": branch}
        )
        body = await self._get_json(
            "get commits",
            f"{self._repo_path(owner, repository)}/commits",
            owner=owner,
            repository=repository,
            params={"limit": limit, "until": branch},
        )
        return [
            self._map_commit(commit, owner, repository) for commit in body.get("values") or []
        ]

    async def get_commit_by_sha(self, owner: str, repository: str, sha: str) -> CommitInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "sha": sha})
        commit = await self._get_json(
            "get commit by sha",
            f"{self._repo_path(owner, repository)}/commits/{sha}",
            owner=owner,
            repository=repository,
        )
        return self._map_commit(commit, owner, repository)

    def _map_commit(self, commit: dict[str, Any], owner: str, repository: str) -> CommitInfo:
        author = commit.get("author") or {}
        committer = commit.get("committer") or {}
        return CommitInfo(
            hash=commit["id"],
            author_name=author.get("name", ""),
            committer_name=committer.get("name", ""),
            url=f"{self.api_endpoint}{self._repo_path(owner, repository)}/commits/{commit['id']}",
            # Bitbucket reports epoch milliseconds.
            timestamp=int(commit.get("committerTimestamp", 0)) // 1000,
            message=commit.get("message") or "",
            parent_hashes=tuple(parent["id"] for parent in commit.get("parents") or []),
            author_email=author.get("emailAddress", ""),
        )

    async def get_repository_info(self, owner: str, repository: str) -> RepositoryInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        repo = await self._get_json(
            "get repository info",
            self._repo_path(owner, repository),
            owner=owner,
            repository=repository,
        )
        http_url = ssh_url = ""
        for link in (repo.get("links") or {}).get("clone") or []:
            if link.get("name") == "http":
                http_url = link.get("href", "")
            elif link.get("name") == "ssh":
                ssh_url = link.get("href", "")
        return RepositoryInfo(
            visibility=bitbucket_server_visibility(bool(repo.get("public"))),
            clone_info=CloneInfo(http=http_url, ssh=ssh_url),
        )

    async def download_file_from_repo(
        self, owner: str, repository: str, branch: str, path: str
    ) -> tuple[bytes, int]:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "path": path}
        )
        response = await self._request(
            "download file",
            "GET",
            f"{self._repo_path(owner, repository)}/raw/{path.lstrip('/')}",
            owner=owner,
            repository=repository,
            params={"at": branch} if branch else None,
        )
        return response.content, response.status_code

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
        body = await self._get_json(
            "get modified files",
            f"{self._repo_path(owner, repository)}/diff",
            owner=owner,
            repository=repository,
            params={"contextLines": 0, "from": ref_after, "to": ref_before},
        )
        paths: list[str | None] = []
        for diff in body.get("diffs") or []:
            paths.append((diff.get("source") or {}).get("toString"))
            paths.append((diff.get("destination") or {}).get("toString"))
        return sorted_unique_paths(paths)
