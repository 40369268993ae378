"""Persistence of terminal job state for Level 6."""

import json
from pathlib import Path
from typing import Any, Optional, Protocol

from utils import (
    PathValidationError,
    ensure_directory,
    get_logger,
    sanitize_path_component,
    validate_output_path,
)

logger = get_logger(__name__)


class JobStoreError(Exception):
    """Raised when job state cannot be persisted or read."""

    pass


class JobStore(Protocol):
    def save(self, job: Any) -> None:
        ...


class JsonJobStore:
    """Writes ``<root>/<job_id>.json`` with the job's ``to_dict()``.

    The file is replaced on each save so it always holds the latest
    terminal state.
    """

    def __init__(self, root: str | Path):
        try:
            self.root = ensure_directory(validate_output_path(root))
        except (PathValidationError, OSError) as e:
            raise JobStoreError(f"Invalid job store directory {root}: {e}") from e

    def path_for(self, job_id: str) -> Path:
        return self.root / f"{sanitize_path_component(job_id)}.json"

    def save(self, job: Any) -> None:
        path = self.path_for(job.job_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(job.to_dict(), f, indent=2, default=str)
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise JobStoreError(f"Failed to persist job {job.job_id} to {path}: {e}") from e
        logger.debug(f"Job state saved: {path}")

    def load(self, job_id: str) -> Optional[dict[str, Any]]:
        path = self.path_for(job_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise JobStoreError(f"Failed to read job state {path}: {e}") from e


class InMemoryJobStore:
    def __init__(self):
        self.saved: dict[str, dict[str, Any]] = {}

    def save(self, job: Any) -> None:
        self.saved[job.job_id] = job.to_dict()
