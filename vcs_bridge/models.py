# vcs_bridge/models.py

"""Data models shared by every provider client."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import NamedTuple


class VcsProvider(str, Enum):
    """Supported hosting providers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET_SERVER = "bitbucket_server"
    BITBUCKET_CLOUD = "bitbucket_cloud"

    @property
    def display_name(self) -> str:
        return _PROVIDER_DISPLAY_NAMES[self]


_PROVIDER_DISPLAY_NAMES = {
    VcsProvider.GITHUB: "GitHub",
    VcsProvider.GITLAB: "GitLab",
    VcsProvider.BITBUCKET_SERVER: "Bitbucket Server",
    VcsProvider.BITBUCKET_CLOUD: "Bitbucket Cloud",
}


class CommitStatus(IntEnum):
    """Build status reported on a commit."""

    PASS = 0
    FAIL = 1
    ERROR = 2
    IN_PROGRESS = 3


class Permission(Enum):
    """Access level granted to a deploy key."""

    READ = "read"
    READ_WRITE = "read_write"


class RepositoryVisibility(Enum):
    """Repository visibility levels."""

    PUBLIC = "public"
    INTERNAL = "internal"
    PRIVATE = "private"


class WebhookEvent(str, Enum):
    """Repository events a webhook can subscribe to."""

    PR_OPENED = "PrOpened"
    PR_EDITED = "PrEdited"
    PR_MERGED = "PrMerged"
    PR_REJECTED = "PrRejected"
    PUSH = "Push"
    TAG_PUSHED = "TagPushed"
    TAG_REMOVED = "TagRemoved"


class PullRequestState(str, Enum):
    """Requested pull request state on update."""

    OPEN = "open"
    CLOSED = "closed"


class WebhookHandle(NamedTuple):
    """A created webhook: provider-assigned id and the client-generated secret."""

    id: str
    token: str


@dataclass(frozen=True)
class ConnectionInfo:
    """Where and how a client connects: endpoint, credentials and optional scoping."""

    api_endpoint: str = ""
    username: str = ""
    token: str = field(default="", repr=False)
    project: str = ""


@dataclass(frozen=True)
class CommitInfo:
    """Information about a single commit."""

    hash: str
    author_name: str = ""
    committer_name: str = ""
    url: str = ""
    timestamp: int = 0  # unix seconds
    message: str = ""
    parent_hashes: tuple[str, ...] = ()
    author_email: str = ""


@dataclass(frozen=True)
class BranchInfo:
    """One side of a pull request."""

    name: str
    repository: str
    owner: str = ""


@dataclass(frozen=True)
class PullRequestInfo:
    """Information about a pull (merge) request."""

    id: int
    source: BranchInfo
    target: BranchInfo
    title: str = ""
    body: str = ""
    url: str = ""
    author: str = ""
    status: str = ""


@dataclass(frozen=True)
class CommentInfo:
    """A pull request comment."""

    id: int
    content: str
    created: datetime | None = None
    thread_id: str = ""
    version: int = 0


@dataclass(frozen=True)
class PullRequestComment:
    """A review comment anchored to lines of a file in the pull request diff."""

    content: str
    new_file_path: str
    new_start_line: int
    new_end_line: int


@dataclass(frozen=True)
class CommitQueryOptions:
    """Filters for commit queries: commits since a point in time, one page at a time."""

    since: datetime
    page: int = 1
    per_page: int = 50


@dataclass(frozen=True)
class LabelInfo:
    """A repository label. Color is six hex digits without a leading '#'."""

    name: str
    description: str = ""
    color: str = ""


@dataclass(frozen=True)
class CloneInfo:
    http: str = ""
    ssh: str = ""


@dataclass(frozen=True)
class RepositoryInfo:
    """Clone URLs and visibility of a repository."""

    visibility: RepositoryVisibility
    clone_info: CloneInfo = field(default_factory=CloneInfo)


@dataclass(frozen=True)
class CommitStatusInfo:
    """A status entry reported on a commit."""

    state: CommitStatus
    description: str = ""
    details_url: str = ""
    creator: str = ""
    created_at: datetime | None = None
    last_updated_at: datetime | None = None


@dataclass(frozen=True)
class RepositoryEnvironmentInfo:
    """A deployment environment and its required reviewers."""

    name: str
    url: str = ""
    reviewers: tuple[str, ...] = ()
