"""Lineage store for Level 6.

An append-only table of completed loads keyed by job id. The orchestrator
queries it before running a job (idempotency check) and appends to it after
a job completes. The JSON-lines implementation never rewrites earlier rows.
"""

import json
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from utils import PathValidationError, ensure_directory, get_logger, validate_path_safe

logger = get_logger(__name__)


class LineageStoreError(Exception):
    """Raised when the lineage store cannot be read or written."""

    pass


@dataclass(frozen=True)
class LineageRecord:
    """One completed load."""

    job_id: str
    target: str
    execution_time: datetime
    records_loaded: int
    dataset_version: str
    mapping_version: str
    idempotent_load: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "target": self.target,
            "execution_time": self.execution_time.isoformat(),
            "records_loaded": self.records_loaded,
            "dataset_version": self.dataset_version,
            "mapping_version": self.mapping_version,
            "idempotent_load": self.idempotent_load,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineageRecord":
        return cls(
            job_id=data["job_id"],
            target=data["target"],
            execution_time=datetime.fromisoformat(data["execution_time"]),
            records_loaded=int(data["records_loaded"]),
            dataset_version=data["dataset_version"],
            mapping_version=data["mapping_version"],
            idempotent_load=bool(data.get("idempotent_load", True)),
        )


class LineageStore(Protocol):
    def has_completed(self, job_id: str) -> bool:
        ...

    def record(self, record: LineageRecord) -> None:
        ...

    def records_for(self, job_id: str) -> list[LineageRecord]:
        ...


class InMemoryLineageStore:
    """Process-local lineage store."""

    def __init__(self):
        self._records: list[LineageRecord] = []
        self._lock = threading.Lock()

    def has_completed(self, job_id: str) -> bool:
        with self._lock:
            return any(r.job_id == job_id for r in self._records)

    def record(self, record: LineageRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records_for(self, job_id: str) -> list[LineageRecord]:
        with self._lock:
            return [r for r in self._records if r.job_id == job_id]

    def all_records(self) -> list[LineageRecord]:
        with self._lock:
            return list(self._records)


class JsonLinesLineageStore:
    """Lineage store backed by an append-only JSON-lines file.

    Args:
        path: File holding one JSON object per completed load
    """

    def __init__(self, path: str | Path):
        try:
            self.path = validate_path_safe(path)
            ensure_directory(self.path.parent)
        except (PathValidationError, OSError) as e:
            raise LineageStoreError(f"Invalid lineage store path {path}: {e}") from e
        self._lock = threading.Lock()
        logger.debug(f"JsonLinesLineageStore at {self.path}")

    def _read_all(self) -> list[LineageRecord]:
        if not self.path.exists():
            return []
        records = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        records.append(LineageRecord.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        raise LineageStoreError(
                            f"Corrupt lineage row {line_number} in {self.path}: {e}"
                        ) from e
        except OSError as e:
            raise LineageStoreError(f"Failed to read lineage store {self.path}: {e}") from e
        return records

    def has_completed(self, job_id: str) -> bool:
        with self._lock:
            return any(r.job_id == job_id for r in self._read_all())

    def record(self, record: LineageRecord) -> None:
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(record.to_dict()) + "\n")
            except OSError as e:
                raise LineageStoreError(f"Failed to append to lineage store {self.path}: {e}") from e
        logger.info(f"Lineage recorded for job {record.job_id} -> {record.target}")

    def records_for(self, job_id: str) -> list[LineageRecord]:
        with self._lock:
            return [r for r in self._read_all() if r.job_id == job_id]
