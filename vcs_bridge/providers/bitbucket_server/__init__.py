# vcs_bridge/providers/bitbucket_server/__init__.py

"""Bitbucket Server provider implementation."""

from .bitbucket_server_provider import BitbucketServerProvider

__all__ = ["BitbucketServerProvider"]
