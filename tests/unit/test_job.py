# =============================================================================
# Unit Tests: Job Model and Retry Policy
# =============================================================================

import pytest

from core.job import ErrorRecord, InvalidTransitionError, Job, JobStatistics, JobStatus, LineageEntry, utc_now
from core.retry import RetryPolicy
from pipeline_config.schema import BackoffStrategy, RetryConfig
from utils import generate_version


# =============================================================================
# Test: Job
# =============================================================================

def test_new_job_defaults():
    job = Job("data.csv", "markets", "trades")
    assert job.status == JobStatus.INITIATED
    assert job.job_id
    assert job.lineage == ()
    assert job.errors == ()
    assert job.records_in_flight == 0


def test_job_id_is_read_only():
    job = Job("data.csv")
    with pytest.raises(AttributeError):
        job.job_id = "other"


def test_forward_transitions_and_skips():
    job = Job("data.csv")
    job.advance_to(JobStatus.SCHEMA_DISCOVERED)
    job.advance_to(JobStatus.TRANSFORMED)
    job.advance_to(JobStatus.TRANSFORMED)
    assert job.status == JobStatus.TRANSFORMED


def test_backward_transition_rejected():
    job = Job("data.csv")
    job.advance_to(JobStatus.MAPPED)
    with pytest.raises(InvalidTransitionError, match="backwards"):
        job.advance_to(JobStatus.SCHEMA_DISCOVERED)


@pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ROLLED_BACK])
def test_terminal_states_are_final(terminal):
    job = Job("data.csv")
    job.advance_to(terminal)
    with pytest.raises(InvalidTransitionError):
        job.advance_to(JobStatus.LOADED)


def test_failure_reachable_from_any_non_terminal_state():
    job = Job("data.csv")
    job.advance_to(JobStatus.VALIDATED)
    job.advance_to(JobStatus.FAILED)
    assert job.status.is_terminal


def test_statistics_never_decrease():
    stats = JobStatistics()
    stats.increment("total_records_read", 5)
    with pytest.raises(ValueError, match="never decrease"):
        stats.increment("total_records_read", -1)
    with pytest.raises(ValueError, match="Unknown counter"):
        stats.increment("bogus")
    assert stats.dominates(JobStatistics())
    assert not JobStatistics().dominates(stats)


def test_lineage_and_errors_are_append_only_views():
    job = Job("data.csv")
    job.record_error(ErrorRecord("row-1", "x", "BAD", "bad value"))
    job.record_lineage(LineageEntry("INGESTION", "ingestion", utc_now(), 3, 0, 10))
    assert isinstance(job.lineage, tuple)
    assert isinstance(job.errors, tuple)
    assert len(job.errors) == 1


def test_snapshot_is_independent():
    job = Job("data.csv")
    copy = job.snapshot()
    copy.statistics.increment("total_records_read", 3)
    copy.record_error(ErrorRecord("row-1", None, "BAD", "bad"))
    assert job.statistics.total_records_read == 0
    assert job.errors == ()
    assert copy.job_id == job.job_id


def test_to_dict_is_json_safe():
    job = Job("data.csv", "markets", "trades")
    job.record_lineage(LineageEntry("LOAD", "load", utc_now(), 12, 10, 10))
    data = job.to_dict()
    assert data["status"] == "INITIATED"
    assert data["lineage"][0]["outcome"] == "SUCCESS"
    assert isinstance(data["lineage"][0]["started_at"], str)


def test_versions_are_monotonic():
    versions = [generate_version("v") for _ in range(50)]
    ticks = [int(v[1:]) for v in versions]
    assert ticks == sorted(set(ticks))


# =============================================================================
# Test: RetryPolicy
# =============================================================================

def test_exponential_backoff_is_default():
    policy = RetryPolicy(base_delay=1.0, max_delay=60.0)
    assert [policy.delay(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


def test_linear_backoff():
    policy = RetryPolicy(base_delay=0.5, backoff=BackoffStrategy.LINEAR)
    assert [policy.delay(a) for a in (1, 2, 3)] == [0.5, 1.0, 1.5]


def test_backoff_is_capped():
    assert RetryPolicy(base_delay=10, max_delay=15).delay(5) == 15


def test_should_retry_until_max_attempts():
    policy = RetryPolicy(max_attempts=3)
    assert [policy.should_retry(a) for a in (1, 2, 3)] == [True, True, False]


def test_policy_from_config():
    sleeps = []
    policy = RetryPolicy.from_config(RetryConfig(max_attempts=5, base_delay_seconds=2), sleep=sleeps.append)
    assert policy.max_attempts == 5
    policy.sleep(1.5)
    assert sleeps == [1.5]


def test_invalid_policy():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy().delay(0)
