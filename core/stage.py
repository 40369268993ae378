"""Stage contract.

Every pipeline stage is a ``Stage``: a stable name, the lineage step it
records, the status the job reaches when it succeeds, and
``execute(job) -> job``. The orchestrator hands each attempt a fresh
snapshot of the last accepted job, so a stage may modify the job it
receives freely; a failed attempt leaves no trace.
"""

from typing import Iterable, Optional

from core.job import ErrorRecord, Job, JobStatus


class StageError(Exception):
    """Raised by a stage that cannot complete.

    Args:
        message: Human-readable reason
        retryable: False when another attempt cannot succeed (e.g. a
            threshold breach on deterministic data)
        errors: Error records to retain if the stage ultimately fails
    """

    def __init__(self, message: str, retryable: bool = True, errors: Iterable[ErrorRecord] = ()):
        super().__init__(message)
        self.retryable = retryable
        self.errors = tuple(errors)


class Stage:
    """Base class for pipeline stages.

    Subclasses set the class attributes and implement ``execute``.
    """

    name: str = "stage"
    step: str = "STAGE"
    completes_status: Optional[JobStatus] = None
    additive: bool = False

    def execute(self, job: Job) -> Job:
        """Run the stage on ``job`` and return the updated job.

        Raises:
            StageError: If the stage cannot complete
        """
        raise NotImplementedError

    def measure(self, before: Job, after: Job) -> tuple[int, int]:
        """Input and output record counts for the lineage entry."""
        return before.records_in_flight, after.records_in_flight

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
