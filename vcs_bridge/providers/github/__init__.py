# vcs_bridge/providers/github/__init__.py

"""GitHub provider implementation."""

from .github_provider import GitHubProvider

__all__ = ["GitHubProvider"]
