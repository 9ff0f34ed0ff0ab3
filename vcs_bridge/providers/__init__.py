# vcs_bridge/providers/__init__.py

"""
VCS provider implementations.

This package contains concrete implementations of the VcsClient interface for
GitHub, GitLab, Bitbucket Server and Bitbucket Cloud.
"""

from .bitbucket_cloud.bitbucket_cloud_provider import BitbucketCloudProvider
from .bitbucket_server.bitbucket_server_provider import BitbucketServerProvider
from .github.github_provider import GitHubProvider
from .gitlab.gitlab_provider import GitLabProvider

__all__ = [
    "BitbucketCloudProvider",
    "BitbucketServerProvider",
    "GitHubProvider",
    "GitLabProvider",
]
