"""Configuration loader and validator.

This module loads YAML/JSON configuration files and validates them against
``PipelineConfig``, turning Pydantic errors into readable messages.
"""

import json
import pathlib
from typing import Any, Union

import yaml
from pydantic import ValidationError

from pipeline_config.schema import PipelineConfig
from utils import PathValidationError, is_supported_config_format, validate_path_safe


class ConfigValidationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def load_config_file(config_path: Union[str, pathlib.Path]) -> dict:
    """Load configuration from a YAML or JSON file.

    Args:
        config_path: Path to configuration file

    Returns:
        Dictionary containing configuration

    Raises:
        ConfigValidationError: If file cannot be located, read or parsed
    """
    try:
        config_path = validate_path_safe(config_path, must_exist=True, must_be_file=True)
    except PathValidationError as e:
        raise ConfigValidationError(f"Invalid configuration path: {e}") from e
    except FileNotFoundError as e:
        raise ConfigValidationError(f"Configuration file not found: {config_path}") from e

    suffix = config_path.suffix.lower()
    if not is_supported_config_format(config_path):
        raise ConfigValidationError(
            f"Unsupported file format: {config_path.suffix}. "
            "Supported formats: .yaml, .yml, .json"
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            if suffix == ".json":
                config = json.load(f)
            else:
                config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: I/O error: {e}"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON syntax in {config_path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ConfigValidationError(
            f"Failed to decode configuration file {config_path}: Encoding error: {e}"
        ) from e

    if config is None:
        raise ConfigValidationError("Configuration file is empty")

    if not isinstance(config, dict):
        raise ConfigValidationError(
            f"Configuration must be a dictionary, got {type(config).__name__}"
        )

    return config


def validate_config(config: dict[str, Any]) -> PipelineConfig:
    """Validate a configuration dictionary.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        return PipelineConfig(**config)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed:\n{_format_validation_error(e)}"
        ) from e
    except TypeError as e:
        raise ConfigValidationError(f"Configuration validation failed: {e}") from e


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        field_path = " -> ".join(str(loc) for loc in err.get("loc", ())) or "<root>"
        lines.append(
            f"  {field_path}: {err.get('msg', 'Validation error')} ({err.get('type', 'unknown')})"
        )
    return "\n".join(lines)


def apply_overrides(config: PipelineConfig, **overrides: Any) -> PipelineConfig:
    """Return a copy of ``config`` with dotted-path overrides applied.

    ``None`` values are ignored so CLI flags that were not given leave the
    file configuration untouched.

    Example:
        ``apply_overrides(cfg, **{"target.table": "trades"})``
    """
    data = config.model_dump(mode="json")
    changed = False
    for dotted, value in overrides.items():
        if value is None:
            continue
        node = data
        *parents, leaf = dotted.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
        changed = True
    return validate_config(data) if changed else config


def load_and_validate_config(config_path: Union[str, pathlib.Path]) -> PipelineConfig:
    """Load and validate a pipeline configuration file.

    This is the main entry point for configuration handling.
    """
    return validate_config(load_config_file(config_path))
