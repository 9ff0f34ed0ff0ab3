# vcs_bridge/providers/gitlab/__init__.py

"""GitLab provider implementation."""

from .gitlab_provider import GitLabProvider

__all__ = ["GitLabProvider"]
