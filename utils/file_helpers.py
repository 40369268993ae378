"""File and identifier helpers for the ETL conductor.

This module provides path validation used by every component that touches
the filesystem, plus the job-id and version generators stamped on jobs.
"""

import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Optional

from .constants import SUPPORTED_CONFIG_FORMATS, SUPPORTED_DATASET_FORMATS

logger = logging.getLogger(__name__)

_version_lock = threading.Lock()
_last_version_tick = 0

# Never written to, even when explicitly requested
_PROTECTED_DIRS = (
    "/bin",
    "/boot",
    "/dev",
    "/etc",
    "/lib",
    "/lib64",
    "/proc",
    "/sbin",
    "/sys",
    "/usr",
    "/private/etc",
    "c:/windows",
)


class PathValidationError(Exception):
    """Raised when path validation fails due to security concerns."""

    pass


def ensure_directory(path: Path) -> Path:
    """Ensure directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure

    Returns:
        Resolved Path object (for chaining)

    Raises:
        OSError: If directory creation fails
    """
    try:
        resolved_path = Path(path).resolve()
        resolved_path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Directory ensured: {resolved_path}")
        return resolved_path
    except (OSError, RuntimeError) as e:
        logger.error(f"Failed to resolve or create directory {path}: {e}")
        raise


def get_file_extension(file_path: str | Path) -> str:
    """Get lower-case file extension (without dot), empty string if none."""
    return Path(file_path).suffix.lstrip(".").lower()


def is_supported_dataset_format(file_path: str | Path) -> bool:
    return get_file_extension(file_path) in SUPPORTED_DATASET_FORMATS


def is_supported_config_format(file_path: str | Path) -> bool:
    extension = get_file_extension(file_path)
    if extension == "yml":
        extension = "yaml"
    return extension in SUPPORTED_CONFIG_FORMATS


def validate_path_safe(
    file_path: str | Path,
    base_dir: Optional[Path] = None,
    must_exist: bool = False,
    must_be_file: bool = False,
    must_be_dir: bool = False,
) -> Path:
    """Validate a path against directory traversal and resolve it.

    Args:
        file_path: Path to validate
        base_dir: Optional base directory the path must stay within
        must_exist: If True, path must exist
        must_be_file: If True, path must be a file
        must_be_dir: If True, path must be a directory

    Returns:
        Resolved Path object

    Raises:
        PathValidationError: If path contains traversal or violates constraints
        FileNotFoundError: If the path is required to exist and does not
    """
    path = Path(file_path).expanduser()

    if ".." in path.parts or ".." in str(path):
        raise PathValidationError(
            f"Path contains directory traversal sequence: {file_path}"
        )

    try:
        resolved = path.resolve()
    except (OSError, RuntimeError) as e:
        raise PathValidationError(f"Failed to resolve path {file_path}: {e}") from e

    if base_dir is not None:
        base_resolved = Path(base_dir).expanduser().resolve()
        try:
            common = os.path.commonpath([str(resolved), str(base_resolved)])
        except ValueError as e:
            raise PathValidationError(
                f"Path {file_path} cannot be validated against base directory {base_dir}"
            ) from e
        if common != str(base_resolved):
            raise PathValidationError(
                f"Path {file_path} is outside allowed base directory {base_dir}"
            )

    if must_exist and not resolved.exists():
        raise FileNotFoundError(f"Path does not exist: {file_path}")

    if must_be_file and not resolved.is_file():
        if resolved.exists():
            raise PathValidationError(f"Path is not a file: {file_path}")
        raise FileNotFoundError(f"File does not exist: {file_path}")

    if must_be_dir and not resolved.is_dir():
        if resolved.exists():
            raise PathValidationError(f"Path is not a directory: {file_path}")
        raise FileNotFoundError(f"Directory does not exist: {file_path}")

    return resolved


def sanitize_path_component(component: str) -> str:
    """Strip characters that cannot appear in a single path component.

    Args:
        component: Raw component (e.g. a dataset or table name)

    Returns:
        Sanitized path component
    """
    sanitized = "".join(
        c
        for c in str(component)
        if c.isprintable() and c not in '\x00<>:"|?*/\\'
    )
    sanitized = sanitized.strip(". ")
    return "_".join(sanitized.split())


def is_system_directory(path: Path) -> bool:
    """Check whether a resolved path falls inside a protected system directory."""
    normalized = str(path).lower().replace("\\", "/")
    return any(
        normalized == protected or normalized.startswith(protected + "/")
        for protected in _PROTECTED_DIRS
    )


def validate_output_path(
    output_path: str | Path,
    base_dir: Optional[Path] = None,
) -> Path:
    """Validate an output directory path.

    Args:
        output_path: Directory that files will be written into
        base_dir: Optional base directory to restrict output within

    Returns:
        Resolved Path object

    Raises:
        PathValidationError: If the path is unsafe, a system directory,
            or exists as a regular file
    """
    try:
        validated_path = validate_path_safe(output_path, base_dir=base_dir)
    except PathValidationError as e:
        raise PathValidationError(f"Output path validation failed: {e}") from e

    if is_system_directory(validated_path):
        raise PathValidationError(
            f"Output path cannot be a system directory: {validated_path}"
        )

    if validated_path.exists() and not validated_path.is_dir():
        raise PathValidationError(
            f"Output path exists but is not a directory: {validated_path}"
        )

    return validated_path


def generate_job_id() -> str:
    """Generate a unique, opaque job identifier."""
    return str(uuid.uuid4())


def generate_version(prefix: str) -> str:
    """Generate a monotonic, time-derived version identifier.

    Successive calls within the process never return the same or a smaller
    tick, even when the wall clock does not advance between calls.

    Args:
        prefix: Version prefix (e.g. ``"v"`` for datasets, ``"m"`` for mappings)

    Returns:
        Version string such as ``v1718112345123456``
    """
    global _last_version_tick
    with _version_lock:
        tick = max(time.time_ns() // 1000, _last_version_tick + 1)
        _last_version_tick = tick
    return f"{prefix}{tick}"
