# vcs_bridge/providers/bitbucket_cloud/__init__.py

"""Bitbucket Cloud provider implementation."""

from .bitbucket_cloud_provider import BitbucketCloudProvider

__all__ = ["BitbucketCloudProvider"]
