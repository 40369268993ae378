"""Job and lineage model.

The ``Job`` is the aggregate that flows through every pipeline stage. It
carries its identity, status, counters, the append-only lineage and error
logs, and the artifacts each stage produces (schema, mappings, transform
spec, findings, scores) together with the working record set.

Invariants enforced here:

- ``job_id`` is generated once and cannot be reassigned
- statistics counters never decrease
- lineage and error logs are only appended to
- status only moves forward, or to FAILED / ROLLED_BACK from a
  non-terminal state
"""

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import pandas as pd

from utils.file_helpers import generate_job_id


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InvalidTransitionError(Exception):
    """Raised when a status change would move a job backwards or out of a terminal state."""

    pass


class JobStatus(str, Enum):
    INITIATED = "INITIATED"
    SCHEMA_DISCOVERED = "SCHEMA_DISCOVERED"
    MAPPED = "MAPPED"
    TRANSFORMED = "TRANSFORMED"
    VALIDATED = "VALIDATED"
    LOADED = "LOADED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ROLLED_BACK)


_FORWARD_ORDER = [
    JobStatus.INITIATED,
    JobStatus.SCHEMA_DISCOVERED,
    JobStatus.MAPPED,
    JobStatus.TRANSFORMED,
    JobStatus.VALIDATED,
    JobStatus.LOADED,
    JobStatus.COMPLETED,
]


class StepOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class LineageEntry:
    """Audit record of one stage's terminal outcome."""

    step: str
    stage_name: str
    started_at: datetime
    duration_ms: int
    input_records: int
    output_records: int
    outcome: StepOutcome = StepOutcome.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["outcome"] = self.outcome.value
        return data


@dataclass(frozen=True)
class ErrorRecord:
    """A per-record (or per-stage) problem retained for audit."""

    record_id: str
    field_name: Optional[str]
    error_type: str
    message: str
    raw_value: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class JobStatistics:
    """Record counters. Only ever increased."""

    total_records_read: int = 0
    total_records_loaded: int = 0
    total_records_rejected: int = 0
    total_records_deduplicated: int = 0

    def increment(self, counter: str, amount: int = 1) -> None:
        """Add ``amount`` (>= 0) to a counter.

        Raises:
            ValueError: If the counter is unknown or the amount negative
        """
        if amount < 0:
            raise ValueError(f"Counters never decrease: {counter} += {amount}")
        if counter not in self.__dataclass_fields__:
            raise ValueError(f"Unknown counter: {counter}")
        setattr(self, counter, getattr(self, counter) + amount)

    def dominates(self, other: "JobStatistics") -> bool:
        """True if no counter of ``self`` is below the same counter of ``other``."""
        return all(
            getattr(self, name) >= getattr(other, name) for name in self.__dataclass_fields__
        )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class Job:
    """A single pipeline run.

    Args:
        source_path: Location token of the source
        target_dataset: Target dataset name
        target_table: Target table name
        job_id: Existing identifier to resume/re-check; generated when omitted
    """

    def __init__(
        self,
        source_path: str,
        target_dataset: Optional[str] = None,
        target_table: Optional[str] = None,
        job_id: Optional[str] = None,
    ):
        self._job_id = job_id or generate_job_id()
        self.status = JobStatus.INITIATED
        self.created_at = utc_now()
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None

        self.source_path = source_path
        self.target_dataset = target_dataset
        self.target_table = target_table
        self.audit_log_path: Optional[str] = None

        self.dataset_version: Optional[str] = None
        self.mapping_version: Optional[str] = None

        self.statistics = JobStatistics()
        self._lineage: list[LineageEntry] = []
        self._errors: list[ErrorRecord] = []

        # Stage artifacts
        self.fingerprint: Optional[str] = None
        self.schema = None
        self.schema_drift: list = []
        self.mappings: list = []
        self.transform_spec = None
        self.anomalies: list = []
        self.quality = None
        self.aggregates: dict = {}
        self.load_location: Optional[str] = None
        self.frame: Optional[pd.DataFrame] = None

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def lineage(self) -> tuple[LineageEntry, ...]:
        return tuple(self._lineage)

    @property
    def errors(self) -> tuple[ErrorRecord, ...]:
        return tuple(self._errors)

    @property
    def records_in_flight(self) -> int:
        return 0 if self.frame is None else len(self.frame)

    def record_lineage(self, entry: LineageEntry) -> None:
        self._lineage.append(entry)

    def record_error(self, error: ErrorRecord) -> None:
        self._errors.append(error)

    def record_errors(self, errors) -> None:
        self._errors.extend(errors)

    def advance_to(self, status: JobStatus) -> None:
        """Move the job to ``status``.

        Forward moves along the happy path are allowed (skipping is allowed,
        standing still is a no-op). FAILED and ROLLED_BACK are reachable
        from any non-terminal status.

        Raises:
            InvalidTransitionError: On a backward move or a move out of a
                terminal status
        """
        if status == self.status:
            return
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Job {self.job_id} is {self.status.value}; cannot move to {status.value}"
            )
        if status in (JobStatus.FAILED, JobStatus.ROLLED_BACK):
            self.status = status
            return
        if _FORWARD_ORDER.index(status) < _FORWARD_ORDER.index(self.status):
            raise InvalidTransitionError(
                f"Job {self.job_id} cannot move backwards from {self.status.value} to {status.value}"
            )
        self.status = status

    def snapshot(self) -> "Job":
        """Independent deep copy, used as the working copy for a stage attempt."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation. The working record set is omitted."""

        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "source_path": self.source_path,
            "target_dataset": self.target_dataset,
            "target_table": self.target_table,
            "audit_log_path": self.audit_log_path,
            "dataset_version": self.dataset_version,
            "mapping_version": self.mapping_version,
            "fingerprint": self.fingerprint,
            "statistics": self.statistics.to_dict(),
            "lineage": [e.to_dict() for e in self._lineage],
            "errors": [e.to_dict() for e in self._errors],
            "schema": self.schema.to_dict() if self.schema is not None else None,
            "schema_drift": [d.describe() for d in self.schema_drift],
            "mappings": [m.to_dict() for m in self.mappings],
            "transform_spec": (
                self.transform_spec.to_dict() if self.transform_spec is not None else None
            ),
            "anomalies": [a.to_dict() for a in self.anomalies],
            "quality": self.quality.to_dict() if self.quality is not None else None,
            "aggregates": self.aggregates,
            "load_location": self.load_location,
        }

    def __repr__(self) -> str:
        return f"Job(job_id={self.job_id!r}, status={self.status.value})"
