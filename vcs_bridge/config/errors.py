# vcs_bridge/config/errors.py

"""
Errors raised by ``load_connection_config``.
"""

from typing import Any


class ConfigError(Exception):
    """A connection configuration file could not be turned into settings."""

    def __init__(self, message: str, config_file: str) -> None:
        super().__init__(f"{message} (file: {config_file})")
        self.config_file = config_file


class ConfigFileError(ConfigError):
    """The file is unreadable, not YAML, or not a top-level mapping."""


class ConfigValidationError(ConfigError):
    """The file parsed but its content failed pydantic validation."""

    def __init__(self, errors: list[dict[str, Any]], config_file: str) -> None:
        count = len(errors)
        noun = "error" if count == 1 else "errors"
        super().__init__(f"Invalid connection configuration: {count} validation {noun}", config_file)
        self.errors = errors

    def format_errors(self) -> str:
        """One line per failing field, dotted location first."""
        lines = [f"Configuration validation failed in {self.config_file}:"]
        for error in self.errors:
            location = ".".join(str(part) for part in error["loc"]) or "<root>"
            lines.append(f"  - {location}: {error['msg']}")
        return "\n".join(lines)
