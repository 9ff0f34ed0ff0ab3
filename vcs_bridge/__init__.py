# vcs_bridge/__init__.py

"""
vcs_bridge: one asynchronous client contract over GitHub, GitLab,
Bitbucket Server and Bitbucket Cloud.

Build a client with ``ClientBuilder`` (or ``ClientBuilder.from_config``) and
call the ``VcsClient`` operations; provider vocabularies, pagination schemes,
rate-limit retries and vendor errors are translated underneath.
"""

import logging

from .base import VcsClient
from .config import VcsConnectionConfig, load_connection_config
from .error_handling import (
    Capability,
    IllegalArchivePathError,
    InvalidIdentifierError,
    NotFoundError,
    OperationCancelledError,
    OperationTimeoutError,
    RateLimitError,
    RemoteOperationError,
    ResponseStatusError,
    RetryConfig,
    RetryExecutor,
    UnsupportedCapabilityError,
    ValidationError,
    VcsClientError,
)
from .models import (
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
    RepositoryVisibility,
    VcsProvider,
    WebhookEvent,
    WebhookHandle,
)
from .provider_factory import ClientBuilder, register_provider

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Client contract and construction
    "VcsClient",
    "ClientBuilder",
    "register_provider",
    "VcsConnectionConfig",
    "load_connection_config",
    # Models
    "BranchInfo",
    "CloneInfo",
    "CommentInfo",
    "CommitInfo",
    "CommitQueryOptions",
    "CommitStatus",
    "CommitStatusInfo",
    "ConnectionInfo",
    "LabelInfo",
    "Permission",
    "PullRequestComment",
    "PullRequestInfo",
    "PullRequestState",
    "RepositoryEnvironmentInfo",
    "RepositoryInfo",
    "RepositoryVisibility",
    "VcsProvider",
    "WebhookEvent",
    "WebhookHandle",
    # Errors and retry
    "Capability",
    "IllegalArchivePathError",
    "InvalidIdentifierError",
    "NotFoundError",
    "OperationCancelledError",
    "OperationTimeoutError",
    "RateLimitError",
    "RemoteOperationError",
    "ResponseStatusError",
    "RetryConfig",
    "RetryExecutor",
    "UnsupportedCapabilityError",
    "ValidationError",
    "VcsClientError",
]
