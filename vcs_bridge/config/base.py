# vcs_bridge/config/base.py

"""
Base configuration class with environment variable support.
"""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class BaseConfig(BaseSettings):
    """Base configuration read from ``VCS_``-prefixed environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VCS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="forbid",
    )

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        if v.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"Log level must be one of {VALID_LOG_LEVELS}")
        return v.upper()

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level)
