# vcs_bridge/providers/bitbucket_common.py

"""
Shared base for the Bitbucket Server and Bitbucket Cloud providers.

Both flavours are driven over their REST APIs with ``httpx.AsyncClient``.
Requests run through the retry executor with the HTTP 429 predicate, and
capabilities neither flavour offers (labels, code scanning, deployment
environments, review comments, commit queries) are rejected here without a
remote call.
"""

from abc import abstractmethod
from datetime import datetime, timezone
import logging
from typing import Any

import httpx

from ..archive import extract_tar_gz_stream
from ..base import VcsClient
from ..error_handling.core import RetryConfig
from ..error_handling.retry_manager import http_too_many_requests_predicate
from ..error_handling.unsupported import Capability
from ..models import (
    CommentInfo,
    CommitInfo,
    CommitQueryOptions,
    CommitStatusInfo,
    ConnectionInfo,
    LabelInfo,
    PullRequestComment,
    RepositoryEnvironmentInfo,
)
from ..utils import check_response_status_with_body, parse_timestamp
from ..vocabulary import commit_status_from_provider

BITBUCKET_SIZE_LIMIT = 32768


def parse_commit_statuses(values: list[dict[str, Any]]) -> list[CommitStatusInfo]:
    """
    Map Bitbucket build statuses.

    Server and Cloud share the payload shape. Server reports epoch
    milliseconds in ``dateAdded``; Cloud reports RFC 3339 strings.
    """
    results = []
    for status in values:
        created_at = parse_timestamp(status.get("created_on") or status.get("created_at"))
        updated_at = parse_timestamp(status.get("updated_on"))
        if created_at is None and status.get("dateAdded"):
            created_at = epoch_millis_to_datetime(status["dateAdded"])
        results.append(
            CommitStatusInfo(
                state=commit_status_from_provider(status.get("state")),
                description=status.get("description") or "",
                details_url=status.get("url") or "",
                creator=status.get("name") or "",
                created_at=created_at,
                last_updated_at=updated_at or created_at,
            )
        )
    return results


def epoch_millis_to_datetime(value: int | float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class BitbucketProvider(VcsClient):
    """Common request plumbing for both Bitbucket flavours."""

    comment_size_limit = BITBUCKET_SIZE_LIMIT
    details_size_limit = BITBUCKET_SIZE_LIMIT

    def __init__(
        self,
        connection: ConnectionInfo,
        logger: logging.Logger | None = None,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(connection, logger, retry_config, request_timeout)
        self.http_client = http_client or self._build_http_client()

    @abstractmethod
    def _build_http_client(self) -> httpx.AsyncClient:
        """Create the authenticated client for this flavour."""

    def should_retry(self, error: BaseException) -> bool:
        return http_too_many_requests_predicate(error)

    async def close(self) -> None:
        await self.http_client.aclose()

    async def _request(
        self,
        operation_name: str,
        method: str,
        url: str,
        *,
        owner: str | None = None,
        repository: str | None = None,
        retry: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request; non-2xx responses raise inside the retry executor."""

        async def _send() -> httpx.Response:
            response = await self.http_client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        self.logger.debug(f"{self.provider.display_name}: {method} {url}")
        return await self._execute_with_error_handling(
            operation_name, _send, owner=owner, repository=repository, retry=retry
        )

    async def _get_json(
        self,
        operation_name: str,
        url: str,
        *,
        owner: str | None = None,
        repository: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._request(
            operation_name, "GET", url, owner=owner, repository=repository, params=params
        )
        return response.json()

    async def _download_and_extract(
        self,
        url: str,
        local_path: str,
        remove_base_dir: bool,
        *,
        owner: str,
        repository: str,
        expected_status: int | None = None,
        **kwargs: Any,
    ) -> None:
        """
        Stream a tar.gz archive from ``url`` straight into the extractor.

        Only opening the response runs through the retry executor. With
        ``expected_status`` any other status raises ``ResponseStatusError``;
        otherwise error statuses are raised by ``raise_for_status``.
        """

        async def _open() -> httpx.Response:
            request = self.http_client.build_request("GET", url, **kwargs)
            response = await self.http_client.send(request, stream=True, follow_redirects=True)
            is_expected = (
                response.status_code == expected_status
                if expected_status is not None
                else not response.is_error
            )
            if not is_expected:
                await response.aread()
                await response.aclose()
                if expected_status is None:
                    response.raise_for_status()
                check_response_status_with_body(
                    response,
                    expected_status,
                    operation="download repository",
                    owner=owner,
                    repository=repository,
                )
            return response

        self.logger.debug(f"{self.provider.display_name}: streaming archive from {url}")
        response = await self._execute_with_error_handling(
            "download repository", _open, owner=owner, repository=repository
        )
        try:
            await extract_tar_gz_stream(response.aiter_bytes(), local_path, remove_base_dir)
        finally:
            await response.aclose()
        self.logger.info(f"{repository} repository downloaded and extracted successfully")

    # Capabilities Bitbucket does not offer
    async def create_label(self, owner: str, repository: str, label_info: LabelInfo) -> None:
        raise self._unsupported(Capability.LABELS)

    async def get_label(self, owner: str, repository: str, name: str) -> LabelInfo | None:
        raise self._unsupported(Capability.LABELS)

    async def list_pull_request_labels(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[str]:
        raise self._unsupported(Capability.LABELS)

    async def unlabel_pull_request(
        self, owner: str, repository: str, name: str, pull_request_id: int
    ) -> None:
        raise self._unsupported(Capability.LABELS)

    async def upload_code_scanning(
        self, owner: str, repository: str, branch: str, sarif_content: str
    ) -> str:
        raise self._unsupported(Capability.CODE_SCANNING)

    async def get_repository_environment_info(
        self, owner: str, repository: str, name: str
    ) -> RepositoryEnvironmentInfo:
        raise self._unsupported(Capability.ENVIRONMENT_INFO)

    async def add_pull_request_review_comments(
        self,
        owner: str,
        repository: str,
        pull_request_id: int,
        comments: list[PullRequestComment],
    ) -> None:
        raise self._unsupported(Capability.REVIEW_COMMENTS)

    async def list_pull_request_review_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        raise self._unsupported(Capability.REVIEW_COMMENTS)

    async def delete_pull_request_review_comments(
        self,
        owner: str,
        repository: str,
        pull_request_id: int,
        comments: list[CommentInfo],
    ) -> None:
        raise self._unsupported(Capability.REVIEW_COMMENTS)

    async def get_commits_with_query_options(
        self, owner: str, repository: str, options: CommitQueryOptions
    ) -> list[CommitInfo]:
        raise self._unsupported(Capability.COMMIT_QUERY)
