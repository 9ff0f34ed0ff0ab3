# vcs_bridge/config/loader.py

"""
YAML loader for connection configuration.
"""

from pathlib import Path
from typing import Any

from pydantic import ValidationError
import yaml

from .connection import VcsConnectionConfig
from .errors import ConfigFileError, ConfigValidationError


def _load_yaml_mapping(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFileError(f"Invalid YAML configuration: {e}", str(config_path)) from e
    except OSError as e:
        raise ConfigFileError(
            f"Failed to read configuration file: {e}", str(config_path)
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(
            f"Top-level YAML structure must be a mapping (dict), got {type(data).__name__}",
            str(config_path),
        )
    return data


def load_connection_config(path: str | Path) -> VcsConnectionConfig:
    """
    Load and validate a connection configuration from a YAML file.

    Values in the file take precedence over ``VCS_`` environment variables.

    Raises:
        ConfigFileError: If the file cannot be read or is not a YAML mapping
        ConfigValidationError: If the content fails validation
    """
    config_path = Path(path)
    data = _load_yaml_mapping(config_path)
    try:
        return VcsConnectionConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(e.errors(), str(config_path)) from e
