# vcs_bridge/base.py

"""
Abstract base class for VCS provider clients with async context manager support.
"""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Awaitable, Callable
import functools
import logging
from typing import Any, TypeVar

from .error_handling.core import RetryConfig, VcsClientError
from .error_handling.error_classification import translate_error
from .error_handling.retry_manager import RetryExecutor, RetryPredicate, never_retry
from .error_handling.unsupported import Capability, unsupported
from .models import (
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

T = TypeVar("T")


class VcsClient(ABC):
    """Abstract base class defining the operations every provider client offers."""

    provider: VcsProvider
    comment_size_limit: int = 0
    details_size_limit: int = 0

    def __init__(
        self,
        connection: ConnectionInfo,
        logger: logging.Logger | None = None,
        retry_config: RetryConfig | None = None,
        request_timeout: float = 30.0,
    ) -> None:
        """Initialize with connection details and optional logger and retry policy."""
        self.connection = connection
        self.logger = logger or logging.getLogger(self.__class__.__module__)
        self.retry_config = retry_config or RetryConfig()
        self.request_timeout = request_timeout

    # Retry classification
    def should_retry(self, error: BaseException) -> bool:
        """Decide whether a failed call may be retried. Override per provider."""
        return never_retry(error)

    # Async context manager support
    async def __aenter__(self) -> "VcsClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release transport resources held by the client."""

    @property
    def pull_request_comment_size_limit(self) -> int:
        return self.comment_size_limit

    @property
    def pull_request_details_size_limit(self) -> int:
        return self.details_size_limit

    def _unsupported(self, capability: Capability) -> VcsClientError:
        return unsupported(self.provider, capability)

    async def _run_sync(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call in the default thread pool executor."""
        return await asyncio.get_running_loop().run_in_executor(
            None, functools.partial(func, *args, **kwargs)
        )

    def _retry_executor(
        self, error_message: str = "", should_retry: RetryPredicate | None = None
    ) -> RetryExecutor:
        return RetryExecutor.from_config(
            self.retry_config,
            should_retry=should_retry or self.should_retry,
            error_message=error_message,
            log_prefix=f"{self.provider.display_name}: ",
            logger=self.logger,
        )

    async def _execute_with_error_handling(
        self,
        operation_name: str,
        func: Callable[[], Awaitable[T]],
        *,
        owner: str | None = None,
        repository: str | None = None,
        retry: bool = True,
    ) -> T:
        """
        Run one remote call through the retry executor and translate its failures.

        Args:
            operation_name: Used in log and error messages
            func: Zero-argument coroutine function performing the call
            owner: Repository owner, for error context
            repository: Repository name, for error context
            retry: Set to False for calls that must never be repeated
        """
        executor = self._retry_executor(
            error_message=f"{operation_name} failed",
            should_retry=None if retry else never_retry,
        )
        try:
            return await executor.execute(func)
        except VcsClientError:
            raise
        except Exception as e:
            raise translate_error(e, operation_name, owner, repository) from e

    async def _execute_sync_with_error_handling(
        self,
        operation_name: str,
        func: Callable[[], T],
        *,
        owner: str | None = None,
        repository: str | None = None,
        retry: bool = True,
    ) -> T:
        """Like ``_execute_with_error_handling`` for a blocking SDK call."""
        return await self._execute_with_error_handling(
            operation_name,
            lambda: self._run_sync(func),
            owner=owner,
            repository=repository,
            retry=retry,
        )

    # Connection and access
    @abstractmethod
    async def test_connection(self) -> None:
        """Issue one lightweight authenticated call. Raises when not connected."""

    @abstractmethod
    async def add_ssh_key_to_repository(
        self,
        owner: str,
        repository: str,
        key_name: str,
        public_key: str,
        permission: Permission,
    ) -> None:
        """Add a deploy key to a repository."""

    # Listing
    @abstractmethod
    async def list_repositories(self) -> dict[str, list[str]]:
        """Map every accessible owner to the names of its repositories."""

    @abstractmethod
    async def list_branches(self, owner: str, repository: str) -> list[str]:
        """List the branch names of a repository."""

    # Webhooks
    @abstractmethod
    async def create_webhook(
        self,
        owner: str,
        repository: str,
        branch: str,
        payload_url: str,
        *events: WebhookEvent,
    ) -> WebhookHandle:
        """Create a webhook and return its id with the generated secret token."""

    @abstractmethod
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
        """Replace a webhook's URL, secret and events."""

    @abstractmethod
    async def delete_webhook(self, owner: str, repository: str, webhook_id: str) -> None:
        """Delete a webhook."""

    # Commit statuses
    @abstractmethod
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
        """Report a build status on a commit."""

    @abstractmethod
    async def get_commit_statuses(
        self, owner: str, repository: str, ref: str
    ) -> list[CommitStatusInfo]:
        """List the statuses reported on a commit, in provider order."""

    # Archive download
    @abstractmethod
    async def download_repository(
        self, owner: str, repository: str, branch: str, local_path: str
    ) -> None:
        """Download and extract a branch snapshot into ``local_path``."""

    # Pull requests
    @abstractmethod
    async def create_pull_request(
        self,
        owner: str,
        repository: str,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
    ) -> None:
        """Open a pull request from ``source_branch`` into ``target_branch``."""

    @abstractmethod
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
        """Update a pull request. An empty target branch keeps the current one."""

    @abstractmethod
    async def list_open_pull_requests(
        self, owner: str, repository: str
    ) -> list[PullRequestInfo]:
        """List open pull requests without their bodies."""

    @abstractmethod
    async def list_open_pull_requests_with_body(
        self, owner: str, repository: str
    ) -> list[PullRequestInfo]:
        """List open pull requests including their bodies."""

    @abstractmethod
    async def get_pull_request(
        self, owner: str, repository: str, pull_request_id: int
    ) -> PullRequestInfo:
        """Get one pull request."""

    # Pull request comments
    @abstractmethod
    async def add_pull_request_comment(
        self, owner: str, repository: str, content: str, pull_request_id: int
    ) -> None:
        """Add a comment to a pull request."""

    @abstractmethod
    async def list_pull_request_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        """List the comments of a pull request."""

    @abstractmethod
    async def delete_pull_request_comment(
        self, owner: str, repository: str, pull_request_id: int, comment_id: int
    ) -> None:
        """Delete a pull request comment."""

    # Pull request review comments
    @abstractmethod
    async def add_pull_request_review_comments(
        self,
        owner: str,
        repository: str,
        pull_request_id: int,
        comments: list[PullRequestComment],
    ) -> None:
        """Add review comments anchored to lines of the pull request diff."""

    @abstractmethod
    async def list_pull_request_review_comments(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[CommentInfo]:
        """List review comments; ``thread_id`` is set where the provider groups them."""

    @abstractmethod
    async def delete_pull_request_review_comments(
        self,
        owner: str,
        repository: str,
        pull_request_id: int,
        comments: list[CommentInfo],
    ) -> None:
        """Delete review comments previously returned by the listing."""

    # Commits
    @abstractmethod
    async def get_latest_commit(
        self, owner: str, repository: str, branch: str
    ) -> CommitInfo:
        """Get the most recent commit of a branch."""

    @abstractmethod
    async def get_commits(self, owner: str, repository: str, branch: str) -> list[CommitInfo]:
        """Get the most recent commits of a branch."""

    @abstractmethod
    async def get_commits_with_query_options(
        self, owner: str, repository: str, options: CommitQueryOptions
    ) -> list[CommitInfo]:
        """Get one page of commits made between ``options.since`` and now."""

    @abstractmethod
    async def get_commit_by_sha(self, owner: str, repository: str, sha: str) -> CommitInfo:
        """Get one commit. Raises NotFoundError when it does not exist."""

    # Repository information
    @abstractmethod
    async def get_repository_info(self, owner: str, repository: str) -> RepositoryInfo:
        """Get clone URLs and visibility of a repository."""

    @abstractmethod
    async def get_repository_environment_info(
        self, owner: str, repository: str, name: str
    ) -> RepositoryEnvironmentInfo:
        """Get a deployment environment and its required reviewers."""

    # Labels
    @abstractmethod
    async def create_label(self, owner: str, repository: str, label_info: LabelInfo) -> None:
        """Create a repository label."""

    @abstractmethod
    async def get_label(self, owner: str, repository: str, name: str) -> LabelInfo | None:
        """Get a label by name, or None when the repository has no such label."""

    @abstractmethod
    async def list_pull_request_labels(
        self, owner: str, repository: str, pull_request_id: int
    ) -> list[str]:
        """List the label names of a pull request."""

    @abstractmethod
    async def unlabel_pull_request(
        self, owner: str, repository: str, name: str, pull_request_id: int
    ) -> None:
        """Remove a label from a pull request."""

    # Code scanning
    @abstractmethod
    async def upload_code_scanning(
        self, owner: str, repository: str, branch: str, sarif_content: str
    ) -> str:
        """Upload a SARIF report for the branch head and return its id."""

    # Files
    @abstractmethod
    async def download_file_from_repo(
        self, owner: str, repository: str, branch: str, path: str
    ) -> tuple[bytes, int]:
        """Download one file; returns its content and the HTTP status code."""

    @abstractmethod
    async def get_modified_files(
        self, owner: str, repository: str, ref_before: str, ref_after: str
    ) -> list[str]:
        """List paths changed between two refs, sorted and de-duplicated."""
