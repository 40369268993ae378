"""Pipeline orchestrator (the Conductor).

The ``Conductor`` drives an ordered list of stages over a ``Job``:

1. Skip the run entirely when the lineage store already holds a completed
   load for the job id.
2. Run each stage on a snapshot of the last accepted job, retrying stage
   failures under the shared ``RetryPolicy``.
3. After a stage's final attempt, append exactly one lineage entry for
   it: SUCCESS (and advance status) or FAILED (and stop: fail-fast).
4. After the last stage, stamp versions, record the load in the lineage
   store and mark the job COMPLETED.

Anything other than a ``StageError`` escaping this loop is an
orchestration error: the job is marked ROLLED_BACK, persisted, and the
exception is re-raised.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence

from core.job import ErrorRecord, Job, JobStatus, LineageEntry, StepOutcome, utc_now
from core.retry import RetryPolicy
from core.stage import Stage, StageError
from level6_load.job_store import JobStore
from level6_load.lineage_store import LineageRecord, LineageStore
from utils import generate_version, get_logger
from utils.constants import DATASET_VERSION_PREFIX, MAPPING_VERSION_PREFIX

logger = get_logger(__name__)


class PipelineCancelledError(Exception):
    """Raised when a run is cancelled between or during stage attempts."""

    pass


class StageContractError(Exception):
    """Raised when a stage returns a job that breaks the job invariants."""

    pass


@dataclass
class BatchResult:
    """Outcome of ``Conductor.run_many``.

    ``jobs`` holds the final state of every job in submission order,
    including rolled-back ones; ``failures`` maps job ids to the
    orchestration error each rolled-back job raised.
    """

    jobs: list[Job] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[Job]:
        return [j for j in self.jobs if j.status == JobStatus.COMPLETED]


class Conductor:
    """Runs stages in fixed order with retry, lineage and idempotency.

    Args:
        stages: Ordered stages; names must be unique
        retry_policy: Shared retry policy (3 attempts, exponential backoff
            by default)
        lineage_store: Optional store used for the idempotency check and
            to record completed loads
        job_store: Optional store receiving the terminal state of each job
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        retry_policy: Optional[RetryPolicy] = None,
        lineage_store: Optional[LineageStore] = None,
        job_store: Optional[JobStore] = None,
    ):
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Stage names must be unique: {names}")
        if not stages:
            raise ValueError("At least one stage is required")

        self.stages = list(stages)
        self.retry_policy = retry_policy or RetryPolicy()
        self.lineage_store = lineage_store
        self.job_store = job_store
        self._final_states: dict[str, Job] = {}
        self._lock = threading.Lock()

        logger.info(
            f"Conductor initialized with {len(self.stages)} stages: "
            f"{' -> '.join(names)} (max_attempts={self.retry_policy.max_attempts})"
        )

    def final_state(self, job_id: str) -> Optional[Job]:
        """Last terminal state this conductor produced for ``job_id``.

        Useful after ``run`` re-raised an orchestration error, since the
        rolled-back job is not returned in that case.
        """
        with self._lock:
            return self._final_states.get(job_id)

    def run(self, job: Job, cancel_event: Optional[threading.Event] = None) -> Job:
        """Run the pipeline for one job.

        Args:
            job: Job to run (normally INITIATED)
            cancel_event: Optional event; setting it aborts the run at the
                next attempt boundary or during a backoff wait

        Returns:
            The terminal job: COMPLETED, or FAILED when a stage exhausted
            its attempts

        Raises:
            Exception: Any orchestration error, after the job has been
                marked ROLLED_BACK and persisted
        """
        accepted = job
        try:
            if self._already_executed(job):
                return job

            logger.info("=" * 60)
            logger.info(f"Job {job.job_id}: {job.source_path} -> {job.target_dataset}.{job.target_table}")
            logger.info("=" * 60)

            accepted.started_at = accepted.started_at or utc_now()
            for stage in self.stages:
                accepted, succeeded = self._run_stage(stage, accepted, cancel_event)
                if not succeeded:
                    logger.error(f"✗ Job {job.job_id} FAILED at stage '{stage.name}'")
                    self._finish(accepted)
                    return accepted

            self._complete(accepted)
            logger.info(
                f"✓ Job {job.job_id} COMPLETED: "
                f"{accepted.statistics.total_records_loaded} records loaded"
            )
            self._finish(accepted)
            return accepted

        except Exception as e:
            logger.error(f"✗ Job {job.job_id} rolled back: {type(e).__name__}: {e}")
            if not accepted.status.is_terminal:
                accepted.advance_to(JobStatus.ROLLED_BACK)
            accepted.completed_at = accepted.completed_at or utc_now()
            try:
                self._finish(accepted)
            except Exception:
                logger.exception(f"Failed to persist rolled-back state of job {job.job_id}")
            raise

    def run_many(
        self,
        jobs: Sequence[Job],
        max_workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchResult:
        """Run independent jobs concurrently, one job per worker thread.

        Each job's backoff waits block only its own worker.
        """
        result = BatchResult()
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [(job, executor.submit(self.run, job, cancel_event)) for job in jobs]
            for job, future in futures:
                try:
                    result.jobs.append(future.result())
                except Exception as e:
                    result.failures[job.job_id] = e
                    result.jobs.append(self.final_state(job.job_id) or job)
        logger.info(
            f"Batch finished: {len(result.succeeded)}/{len(result.jobs)} completed, "
            f"{len(result.failures)} rolled back"
        )
        return result

    def _already_executed(self, job: Job) -> bool:
        if self.lineage_store is None or not self.lineage_store.has_completed(job.job_id):
            return False
        logger.info(f"Job {job.job_id} already executed; skipping (idempotent re-run)")
        if not job.status.is_terminal:
            job.advance_to(JobStatus.COMPLETED)
            job.completed_at = job.completed_at or utc_now()
        return True

    def _run_stage(
        self,
        stage: Stage,
        accepted: Job,
        cancel_event: Optional[threading.Event],
    ) -> tuple[Job, bool]:
        logger.info(f"Stage: {stage.name}")
        attempt = 0
        while True:
            attempt += 1
            self._check_cancelled(cancel_event, stage)
            working = accepted.snapshot()
            started_at = utc_now()
            started = time.perf_counter()
            try:
                result = stage.execute(working)
            except StageError as e:
                duration_ms = int((time.perf_counter() - started) * 1000)
                if e.retryable and self.retry_policy.should_retry(attempt):
                    delay = self.retry_policy.delay(attempt)
                    logger.warning(
                        f"✗ {stage.name} attempt {attempt}/{self.retry_policy.max_attempts} "
                        f"failed: {e}. Retrying in {delay:.2f}s"
                    )
                    self._wait(delay, cancel_event, stage)
                    continue
                logger.error(f"✗ {stage.name} failed after {attempt} attempt(s): {e}")
                return self._fail(stage, accepted, e, started_at, duration_ms), False

            duration_ms = int((time.perf_counter() - started) * 1000)
            self._check_contract(stage, accepted, result)
            input_records, output_records = stage.measure(accepted, result)
            if output_records > input_records and not stage.additive:
                logger.warning(
                    f"{stage.name} produced more records than it received "
                    f"({input_records} -> {output_records})"
                )
            result.record_lineage(
                LineageEntry(
                    step=stage.step,
                    stage_name=stage.name,
                    started_at=started_at,
                    duration_ms=duration_ms,
                    input_records=input_records,
                    output_records=output_records,
                    outcome=StepOutcome.SUCCESS,
                )
            )
            if stage.completes_status is not None:
                result.advance_to(stage.completes_status)
            logger.info(
                f"✓ {stage.name}: {input_records} -> {output_records} records "
                f"({duration_ms} ms, attempt {attempt})"
            )
            return result, True

    def _fail(
        self,
        stage: Stage,
        accepted: Job,
        error: StageError,
        started_at,
        duration_ms: int,
    ) -> Job:
        accepted.record_errors(error.errors)
        accepted.record_error(
            ErrorRecord(
                record_id=f"stage:{stage.name}",
                field_name=None,
                error_type="STAGE_FAILURE",
                message=str(error),
            )
        )
        accepted.record_lineage(
            LineageEntry(
                step=stage.step,
                stage_name=stage.name,
                started_at=started_at,
                duration_ms=duration_ms,
                input_records=accepted.records_in_flight,
                output_records=0,
                outcome=StepOutcome.FAILED,
            )
        )
        accepted.advance_to(JobStatus.FAILED)
        accepted.completed_at = utc_now()
        return accepted

    def _complete(self, job: Job) -> None:
        # Stages that discover schema/mappings stamp versions; fill any gaps
        job.dataset_version = job.dataset_version or generate_version(DATASET_VERSION_PREFIX)
        job.mapping_version = job.mapping_version or generate_version(MAPPING_VERSION_PREFIX)
        job.completed_at = utc_now()

        if self.lineage_store is not None:
            self.lineage_store.record(
                LineageRecord(
                    job_id=job.job_id,
                    target=f"{job.target_dataset}.{job.target_table}",
                    execution_time=job.completed_at,
                    records_loaded=job.statistics.total_records_loaded,
                    dataset_version=job.dataset_version,
                    mapping_version=job.mapping_version,
                    idempotent_load=True,
                )
            )
        job.advance_to(JobStatus.COMPLETED)

    def _finish(self, job: Job) -> None:
        with self._lock:
            self._final_states[job.job_id] = job
        if self.job_store is not None:
            self.job_store.save(job)

    @staticmethod
    def _check_contract(stage: Stage, before: Job, after: Job) -> None:
        if not isinstance(after, Job):
            raise StageContractError(f"{stage.name} returned {type(after).__name__}, expected Job")
        if after.job_id != before.job_id:
            raise StageContractError(f"{stage.name} replaced job {before.job_id} with {after.job_id}")
        if not after.statistics.dominates(before.statistics):
            raise StageContractError(f"{stage.name} decreased job statistics")
        if len(after.lineage) != len(before.lineage) or len(after.errors) < len(before.errors):
            raise StageContractError(f"{stage.name} rewrote the lineage or error log")

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], stage: Stage) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelledError(f"Run cancelled before stage '{stage.name}'")

    def _wait(self, delay: float, cancel_event: Optional[threading.Event], stage: Stage) -> None:
        if cancel_event is None:
            self.retry_policy.sleep(delay)
        elif cancel_event.wait(delay):
            raise PipelineCancelledError(f"Run cancelled while retrying stage '{stage.name}'")
