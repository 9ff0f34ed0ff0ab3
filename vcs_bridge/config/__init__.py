# vcs_bridge/config/__init__.py

"""
Connection configuration for vcs_bridge clients.

Settings are pydantic-settings models read from YAML files or ``VCS_``
environment variables.
"""

from .base import BaseConfig
from .connection import RetryPolicyConfig, VcsConnectionConfig
from .errors import ConfigError, ConfigFileError, ConfigValidationError
from .loader import load_connection_config

__all__ = [
    "BaseConfig",
    "ConfigError",
    "ConfigFileError",
    "ConfigValidationError",
    "RetryPolicyConfig",
    "VcsConnectionConfig",
    "load_connection_config",
]
