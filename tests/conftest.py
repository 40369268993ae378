"""
Shared pytest fixtures for the ETL conductor tests.

Provides reusable sources, sinks, configuration and stages so unit and
integration tests do not rebuild them.
"""

import pytest

from core.job import Job
from core.retry import RetryPolicy
from core.stage import Stage, StageError
from level1_ingestion.loader import InMemoryRecordSource
from level6_load.job_store import InMemoryJobStore
from level6_load.lineage_store import InMemoryLineageStore
from level6_load.warehouse import InMemoryWarehouseSink
from pipeline_config.schema import PipelineConfig


# =============================================================================
# Record Fixtures
# =============================================================================

def make_trade_rows(count: int = 1000) -> list[dict[str, str]]:
    """Clean rows with an id, an amount and a region; no anomalies."""
    return [
        {
            "id": str(i),
            "amount": f"{100 + (i % 50)}.25",
            "region": f"R{i % 20:02d}",
        }
        for i in range(1, count + 1)
    ]


@pytest.fixture
def trade_rows():
    """1000 clean trade rows."""
    return make_trade_rows()


@pytest.fixture
def memory_source(trade_rows):
    """In-memory source serving the trade rows under ``mem://trades``."""
    return InMemoryRecordSource({"mem://trades": trade_rows})


@pytest.fixture
def memory_sink():
    return InMemoryWarehouseSink()


@pytest.fixture
def lineage_store():
    return InMemoryLineageStore()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def recorded_delays():
    """Backoff delays requested by ``instant_retry``."""
    return []


@pytest.fixture
def instant_retry(recorded_delays):
    """Default retry policy with the backoff sleep recorded instead of slept."""
    return RetryPolicy(sleep=recorded_delays.append)


@pytest.fixture
def pipeline_config():
    """Configuration for the in-memory trades source."""
    return PipelineConfig(
        source={"path": "mem://trades"},
        target={"dataset": "markets", "table": "trades"},
    )


@pytest.fixture
def trade_job():
    return Job(source_path="mem://trades", target_dataset="markets", target_table="trades")


# =============================================================================
# Stage Doubles
# =============================================================================

class AlwaysFailingStage(Stage):
    """Raises a retryable StageError on every attempt."""

    def __init__(self, name: str = "always_fails", step: str = "ALWAYS_FAILS", retryable: bool = True):
        self.name = name
        self.step = step
        self.retryable = retryable
        self.attempts = 0

    def execute(self, job):
        self.attempts += 1
        raise StageError(f"attempt {self.attempts} failed", retryable=self.retryable)


class CountingStage(Stage):
    """Succeeds and counts how often it ran."""

    def __init__(self, name: str, step: str = None, completes_status=None):
        self.name = name
        self.step = step or name.upper()
        self.completes_status = completes_status
        self.runs = 0

    def execute(self, job):
        self.runs += 1
        return job


class FlakyStage(Stage):
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int, name: str = "flaky"):
        self.name = name
        self.step = name.upper()
        self.failures = failures
        self.attempts = 0

    def execute(self, job):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StageError(f"transient failure {self.attempts}")
        job.statistics.increment("total_records_read", 1)
        return job
