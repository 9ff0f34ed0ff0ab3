# vcs_bridge/providers/bitbucket_cloud/bitbucket_cloud_provider.py

"""
Bitbucket Cloud provider implementation.

Talks to the 2.0 REST API with basic authentication (username plus app
password or token). Listings are paged by page number and are finished once
a page carries no ``next`` link.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ...archive import create_dot_git_folder_with_remote
from ...error_handling.core import RemoteOperationError, RetryConfig
from ...error_handling.unsupported import Capability
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
from ...pagination import next_page_from_link, paginate
from ...utils import (
    REMOTE_NAME,
    create_token,
    parse_timestamp,
    sorted_unique_paths,
    validate_parameters_not_blank,
)
from ...vocabulary import (
    bitbucket_cloud_visibility,
    bitbucket_cloud_webhook_events,
    commit_status_to_provider,
)
from ..bitbucket_common import BitbucketProvider, parse_commit_statuses

DEFAULT_BITBUCKET_CLOUD_API_ENDPOINT = "https://api.bitbucket.org/2.0"


def split_repository_full_name(full_name: str) -> tuple[str, str]:
    """Split ``workspace/repository``; both parts are empty when malformed."""
    parts = (full_name or "").split("/")
    if len(parts) < 2:
        return "", ""
    return parts[0], parts[1]


def strip_uuid_braces(uuid: str) -> str:
    return uuid.lstrip("{").rstrip("}")


def webhook_url_with_token(payload_url: str, token: str) -> str:
    # Bitbucket Cloud has no webhook secrets; the token rides on the URL.
    return f"{payload_url}?token={quote(token, safe='')}"


class BitbucketCloudProvider(BitbucketProvider):
    """Bitbucket Cloud implementation of the VcsClient interface."""

    provider = VcsProvider.BITBUCKET_CLOUD

    def __init__(
        self,
        connection: ConnectionInfo,
        logger: logging.Logger | None = None,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_endpoint = (
            connection.api_endpoint or DEFAULT_BITBUCKET_CLOUD_API_ENDPOINT
        ).rstrip("/")
        super().__init__(connection, logger, retry_config, request_timeout, http_client)

    def _build_http_client(self) -> httpx.AsyncClient:
        auth = None
        if self.connection.username or self.connection.token:
            auth = httpx.BasicAuth(self.connection.username, self.connection.token)
        return httpx.AsyncClient(
            base_url=self.api_endpoint,
            auth=auth,
            headers={"Accept": "application/json"},
            timeout=self.request_timeout,
        )

    @staticmethod
    def _repo_path(owner: str, repository: str) -> str:
        return f"/repositories/{owner}/{repository}"

    async def _list_in_pages(
        self,
        operation_name: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        owner: str | None = None,
        repository: str | None = None,
    ) -> list[dict[str, Any]]:
        async def _fetch(page: int) -> tuple[list[dict[str, Any]], int | None]:
            body = await self._get_json(
                operation_name,
                path,
                owner=owner,
                repository=repository,
                params={**(params or {}), "page": page},
            )
            return list(body.get("values") or []), next_page_from_link(page, body)

        return await paginate(_fetch, 1)

    async def test_connection(self) -> None:
        await self._request("test connection", "GET", "/user")

    async def add_ssh_key_to_repository(
        self,
        owner: str,
        repository: str,
        key_name: str,
        public_key: str,
        permission: Permission,
    ) -> None:
        """Add a deploy key. Bitbucket Cloud deploy keys are always read-only."""
        validate_parameters_not_blank(
            {
                "owner": owner,
                "repository": repository,
                "key name": key_name,
                "public key": public_key,
            }
        )
        await self._request(
            "add ssh key",
            "POST",
            f"{self._repo_path(owner, repository)}/deploy-keys",
            owner=owner,
            repository=repository,
            json={"label": key_name, "key": public_key},
        )

    async def list_repositories(self) -> dict[str, list[str]]:
        workspaces = await self._list_in_pages("list workspaces", "/workspaces")
        results: dict[str, list[str]] = {}
        for workspace in workspaces:
            slug = workspace["slug"]
            repositories = await self._list_in_pages(
                "list repositories", f"/repositories/{slug}", owner=slug
            )
            if repositories:
                results[slug] = [repo["slug"] for repo in repositories]
        return results

    async def list_branches(self, owner: str, repository: str) -> list[str]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        branches = await self._list_in_pages(
            "list branches",
            f"{self._repo_path(owner, repository)}/refs/branches",
            owner=owner,
            repository=repository,
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
        data = {
            "url": webhook_url_with_token(payload_url, token),
            "active": True,
            "events": bitbucket_cloud_webhook_events(events),
        }
        response = await self._request(
            "create webhook",
            "POST",
            f"{self._repo_path(owner, repository)}/hooks",
            owner=owner,
            repository=repository,
            json=data,
        )
        return WebhookHandle(strip_uuid_braces(response.json()["uuid"]), token)

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
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "webhook id": webhook_id}
        )
        data = {
            "url": webhook_url_with_token(payload_url, token),
            "active": True,
            "events": bitbucket_cloud_webhook_events(events),
        }
        await self._request(
            "update webhook",
            "PUT",
            f"{self._repo_path(owner, repository)}/hooks/{{{strip_uuid_braces(webhook_id)}}}",
            owner=owner,
            repository=repository,
            json=data,
        )

    async def delete_webhook(self, owner: str, repository: str, webhook_id: str) -> None:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "webhook id": webhook_id}
        )
        await self._request(
            "delete webhook",
            "DELETE",
            f"{self._repo_path(owner, repository)}/hooks/{{{strip_uuid_braces(webhook_id)}}}",
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
        validate_parameters_not_blank({"owner": owner, "repository": repository, "ref": ref})
        data = {
            "state": commit_status_to_provider(self.provider, status),
            "key": title,
            "description": description,
            "url": details_url,
        }
        await self._request(
            "set commit status",
            "POST",
            f"{self._repo_path(owner, repository)}/commit/{ref}/statuses/build",
            owner=owner,
            repository=repository,
            json=data,
        )

    async def get_commit_statuses(
        self, owner: str, repository: str, ref: str
    ) -> list[CommitStatusInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "ref": ref})
        statuses = await self._list_in_pages(
            "get commit statuses",
            f"{self._repo_path(owner, repository)}/commit/{ref}/statuses",
            owner=owner,
            repository=repository,
        )
        return parse_commit_statuses(statuses)

    async def download_repository(
        self, owner: str, repository: str, branch: str, local_path: str
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        self.logger.debug("Getting Bitbucket Cloud archive link to download")
        repo = await self._get_json(
            "download repository",
            self._repo_path(owner, repository),
            owner=owner,
            repository=repository,
        )
        html_link = ((repo.get("links") or {}).get("html") or {}).get("href")
        if not html_link:
            raise RemoteOperationError(
                "couldn't find repository HTML link",
                operation="download repository",
                owner=owner,
                repository=repository,
            )
        download_link = f"{html_link}/get/{branch}.tar.gz"
        self.logger.debug(f"Received archive url: {download_link}")

        await self._download_and_extract(
            download_link,
            local_path,
            True,
            owner=owner,
            repository=repository,
            expected_status=200,
        )

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
        data = {
            "title": title,
            "description": description,
            "source": {
                "branch": {"name": source_branch},
                "repository": {"full_name": f"{owner}/{repository}"},
            },
            "destination": {"branch": {"name": target_branch}},
        }
        await self._request(
            "create pull request",
            "POST",
            f"{self._repo_path(owner, repository)}/pullrequests",
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
        """
        Update a pull request.

        Bitbucket Cloud can decline a pull request but cannot reopen a
        declined one, so requesting OPEN leaves the state untouched.
        """
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        self.logger.debug(f"Updating pull request {pull_request_id}")
        pull_request_path = f"{self._repo_path(owner, repository)}/pullrequests/{pull_request_id}"
        data: dict[str, Any] = {"title": title, "description": body}
        if target_branch:
            data["destination"] = {"branch": {"name": target_branch}}
        await self._request(
            "update pull request",
            "PUT",
            pull_request_path,
            owner=owner,
            repository=repository,
            json=data,
        )
        if state == PullRequestState.CLOSED:
            await self._request(
                "update pull request",
                "POST",
                f"{pull_request_path}/decline",
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
        self.logger.debug(f"Fetching open pull requests in {repository}")
        pull_requests = await self._list_in_pages(
            "list open pull requests",
            f"{self._repo_path(owner, repository)}/pullrequests",
            {"state": "OPEN"},
            owner=owner,
            repository=repository,
        )
        return [self._map_pull_request(pr, with_body) for pr in pull_requests]

    async def get_pull_request(
        self, owner: str, repository: str, pull_request_id: int
    ) -> PullRequestInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        self.logger.debug(f"Fetching pull request {pull_request_id} in {repository}")
        pull_request = await self._get_json(
            "get pull request",
            f"{self._repo_path(owner, repository)}/pullrequests/{pull_request_id}",
            owner=owner,
            repository=repository,
        )
        return self._map_pull_request(pull_request, with_body=False)

    @staticmethod
    def _map_pull_request(pull_request: dict[str, Any], with_body: bool) -> PullRequestInfo:
        def _branch(side: dict[str, Any], role: str) -> BranchInfo:
            repository_data = side.get("repository")
            if not repository_data:
                raise RemoteOperationError(
                    f"the {role} repository information is missing when fetching the pull request details"
                )
            side_owner, side_repository = split_repository_full_name(
                repository_data.get("full_name", "")
            )
            if not side_owner or not side_repository:
                raise RemoteOperationError(
                    f"the {role} repository owner name is missing when fetching the pull request details"
                )
            return BranchInfo(
                name=(side.get("branch") or {}).get("name", ""),
                repository=side_repository,
                owner=side_owner,
            )

        links = pull_request.get("links") or {}
        return PullRequestInfo(
            id=pull_request["id"],
            title=pull_request.get("title") or "",
            body=(pull_request.get("description") or "") if with_body else "",
            url=(links.get("html") or {}).get("href", ""),
            author=(pull_request.get("author") or {}).get("display_name", ""),
            source=_branch(pull_request.get("source") or {}, "source"),
            target=_branch(pull_request.get("destination") or {}, "target"),
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
            f"{self._repo_path(owner, repository)}/pullrequests/{pull_request_id}/comments",
            owner=owner,
            repository=repository,
            json={"content": {"raw": content}},
        )

    async def list_pull_request_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        comments = await self._list_in_pages(
            "list pull request comments",
            f"{self._repo_path(owner, repository)}/pullrequests/{pull_request_id}/comments",
            owner=owner,
            repository=repository,
        )
        return [
            CommentInfo(
                id=comment["id"],
                content=(comment.get("content") or {}).get("raw") or "",
                created=parse_timestamp(comment.get("created_on")),
            )
            for comment in comments
            if not comment.get("deleted")
        ]

    async def delete_pull_request_comment(
        self, owner: str, repository: str, pull_request_id: int, comment_id: int
    ) -> None:
        validate_parameters_not_blank({"owner": owner, "repository": repository})
        await self._request(
            "delete pull request comment",
            "DELETE",
            f"{self._repo_path(owner, repository)}/pullrequests/{pull_request_id}"
            f"/comments/{comment_id}",
            owner=owner,
            repository=repository,
        )

    async def get_latest_commit(
        self, owner: str, repository: str, branch: str
    ) -> CommitInfo:
        validate_parameters_not_blank(
            {"owner": owner, "repository": repository, "branch": branch}
        )
        body = await self._get_json(
            "get latest commit",
            f"{self._repo_path(owner, repository)}/commits/{branch}",
            owner=owner,
            repository=repository,
            params={"pagelen": 1},
        )
        commits = body.get("values") or []
        if not commits:
            return CommitInfo(hash="")
        return self._map_commit(commits[0])

    async def get_commits(self, owner: str, repository: str, branch: str) -> list[CommitInfo]:
        raise self._unsupported(Capability.LIST_COMMITS)

    async def get_commit_by_sha(self, owner: str, repository: str, sha: str) -> CommitInfo:
        validate_parameters_not_blank({"owner": owner, "repository": repository, "sha": sha})
        commit = await self._get_json(
            "get commit by sha",
            f"{self._repo_path(owner, repository)}/commit/{sha}",
            owner=owner,
            repository=repository,
        )
        return self._map_commit(commit)

    @staticmethod
    def _map_commit(commit: dict[str, Any]) -> CommitInfo:
        author = commit.get("author") or {}
        date = parse_timestamp(commit.get("date"))
        return CommitInfo(
            hash=commit["hash"],
            author_name=(author.get("user") or {}).get("display_name", ""),
            # Bitbucket Cloud does not report the committer.
            committer_name="",
            url=((commit.get("links") or {}).get("self") or {}).get("href", ""),
            timestamp=int(date.timestamp()) if date else 0,
            message=commit.get("message") or "",
            parent_hashes=tuple(parent["hash"] for parent in commit.get("parents") or []),
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
            name = (link.get("name") or "").lower()
            if name == "https":
                http_url = link.get("href", "")
            elif name == "ssh":
                ssh_url = link.get("href", "")
        return RepositoryInfo(
            visibility=bitbucket_cloud_visibility(bool(repo.get("is_private"))),
            clone_info=CloneInfo(http=http_url, ssh=ssh_url),
        )

    async def download_file_from_repo(
        self, owner: str, repository: str, branch: str, path: str
    ) -> tuple[bytes, int]:
        raise self._unsupported(Capability.DOWNLOAD_FILE)

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
        # Two-dot range without a topic compares ref_after against ref_before.
        diff_stats = await self._list_in_pages(
            "get modified files",
            f"{self._repo_path(owner, repository)}/diffstat/{ref_after}..{ref_before}",
            {"renames": "true", "merge": "true"},
            owner=owner,
            repository=repository,
        )
        paths: list[str | None] = []
        for diff_stat in diff_stats:
            paths.append((diff_stat.get("new") or {}).get("path"))
            paths.append((diff_stat.get("old") or {}).get("path"))
        return sorted_unique_paths(paths)
