# vcs_bridge/error_handling/unsupported.py

"""
Named unsupported-capability errors.

Each provider/capability gap has one named value. Adapters raise a fresh
``UnsupportedCapabilityError`` for the same pair, and callers compare with
``==`` or by ``capability`` to branch on it (e.g. skip labelling on Bitbucket).
"""

from enum import Enum

from ..models import VcsProvider
from .core import UnsupportedCapabilityError


class Capability(str, Enum):
    """Operations some providers structurally lack."""

    LABELS = "label management"
    CODE_SCANNING = "code scanning"
    ENVIRONMENT_INFO = "repository environment info"
    DOWNLOAD_FILE = "downloading a file from a repository"
    LIST_COMMITS = "listing commits"
    REVIEW_COMMENTS = "pull request review comments"
    COMMIT_QUERY = "querying commits"


def unsupported(provider: VcsProvider, capability: Capability) -> UnsupportedCapabilityError:
    """Build the unsupported error for a provider/capability pair."""
    return UnsupportedCapabilityError(provider.display_name, capability.value)


GITLAB_CODE_SCANNING_UNSUPPORTED = unsupported(VcsProvider.GITLAB, Capability.CODE_SCANNING)
GITLAB_ENVIRONMENT_INFO_UNSUPPORTED = unsupported(
    VcsProvider.GITLAB, Capability.ENVIRONMENT_INFO
)

BITBUCKET_SERVER_LABELS_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_SERVER, Capability.LABELS
)
BITBUCKET_SERVER_CODE_SCANNING_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_SERVER, Capability.CODE_SCANNING
)
BITBUCKET_SERVER_ENVIRONMENT_INFO_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_SERVER, Capability.ENVIRONMENT_INFO
)

BITBUCKET_CLOUD_LABELS_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.LABELS
)
BITBUCKET_CLOUD_CODE_SCANNING_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.CODE_SCANNING
)
BITBUCKET_CLOUD_ENVIRONMENT_INFO_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.ENVIRONMENT_INFO
)
BITBUCKET_CLOUD_DOWNLOAD_FILE_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.DOWNLOAD_FILE
)
BITBUCKET_CLOUD_LIST_COMMITS_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.LIST_COMMITS
)

BITBUCKET_SERVER_REVIEW_COMMENTS_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_SERVER, Capability.REVIEW_COMMENTS
)
BITBUCKET_SERVER_COMMIT_QUERY_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_SERVER, Capability.COMMIT_QUERY
)
BITBUCKET_CLOUD_REVIEW_COMMENTS_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.REVIEW_COMMENTS
)
BITBUCKET_CLOUD_COMMIT_QUERY_UNSUPPORTED = unsupported(
    VcsProvider.BITBUCKET_CLOUD, Capability.COMMIT_QUERY
)
