# =============================================================================
# Unit Tests: Quality Scoring and Audit Report
# =============================================================================

import json

import pytest

from core.job import ErrorRecord, Job, JobStatus, LineageEntry, utc_now
from level2_quality.detectors import AnomalyDetector
from level5_audit.report import (
    AUDIT_LOG_NAME,
    MAX_LOGGED_ERRORS,
    AuditReportWriter,
    build_terminal_report,
    format_audit_log,
)
from level5_audit.scorer import QualityScorer, QualityScores


def _job_with_lineage(depth=3, target=("markets", "trades")):
    job = Job("mem://trades", *target)
    for i in range(depth):
        job.record_lineage(LineageEntry(f"STEP_{i}", f"step_{i}", utc_now(), 5, 10, 10))
    return job


# =============================================================================
# Test: Data Quality Score
# =============================================================================

def test_clean_job_scores_full_marks():
    job = _job_with_lineage()
    job.audit_log_path = "/tmp/audit.log"
    scores = QualityScorer().score(job)
    assert scores.data_quality_score == 100.0
    assert scores.compliance_score == 100.0
    assert scores.findings == []


def test_quality_penalties():
    job = _job_with_lineage()
    job.statistics.increment("total_records_rejected", 10)
    job.statistics.increment("total_records_deduplicated", 20)
    job.record_errors([ErrorRecord(f"row-{i}", None, "BAD", "bad") for i in range(4)])
    # 100 - 10*0.1 - 20*0.05 - 4*0.5
    assert QualityScorer().data_quality_score(job) == pytest.approx(96.0)


def test_quality_score_is_floored_at_zero():
    job = Job("x")
    job.record_errors([ErrorRecord(f"row-{i}", None, "BAD", "bad") for i in range(300)])
    assert QualityScorer().data_quality_score(job) == 0.0


# =============================================================================
# Test: Compliance Score
# =============================================================================

def test_compliance_deductions_accumulate():
    job = Job("x")
    job.record_error(ErrorRecord("row-1", None, "BAD", "bad"))
    score, findings = QualityScorer().compliance(job)
    assert score == 45.0
    assert len(findings) == 4


def test_shallow_lineage_only():
    job = _job_with_lineage(depth=2)
    job.audit_log_path = "audit.log"
    score, findings = QualityScorer().compliance(job)
    assert score == 85.0
    assert findings == ["Lineage has 2 entries (minimum 3)"]


# =============================================================================
# Test: Thresholds
# =============================================================================

def test_passes_without_thresholds():
    assert QualityScores(10.0, 10.0).passes()


@pytest.mark.parametrize(
    "min_quality,min_compliance,expected",
    [(90, None, True), (96, None, False), (None, 80, True), (None, 81, False)],
)
def test_passes_with_thresholds(min_quality, min_compliance, expected):
    assert QualityScores(95.0, 80.0).passes(min_quality, min_compliance) is expected


# =============================================================================
# Test: Audit Log and Terminal Report
# =============================================================================

def test_writer_creates_log_under_job_directory(tmp_path):
    job = _job_with_lineage()
    job.anomalies = AnomalyDetector().detect_missing_values("region", ["", "", "", "a", "b"])
    job.record_error(ErrorRecord("row-1", "amount", "VALIDATION_TYPE", "not a number"))
    scores = QualityScorer().score(job)

    path = AuditReportWriter(tmp_path).write(job, scores)

    assert path == tmp_path / job.job_id / AUDIT_LOG_NAME
    text = path.read_text(encoding="utf-8")
    assert f"AUDIT LOG - job {job.job_id}" in text
    assert "SCORECARD" in text
    assert "[CRITICAL] region" in text
    assert "row-1 amount VALIDATION_TYPE: not a number" in text
    assert "STEP_2 [SUCCESS]" in text


def test_audit_log_truncates_errors():
    job = Job("x")
    job.record_errors([ErrorRecord(f"row-{i}", None, "BAD", "bad") for i in range(MAX_LOGGED_ERRORS + 5)])
    text = format_audit_log(job)
    assert "... 5 more" in text
    assert "SCORECARD" not in text


def test_terminal_report_is_json_serializable():
    job = _job_with_lineage()
    job.quality = QualityScores(99.5, 100.0)
    job.aggregates = {"record_count": 3.0}
    job.advance_to(JobStatus.COMPLETED)

    report = build_terminal_report(job)
    json.dumps(report)
    assert report["status"] == "COMPLETED"
    assert report["target"] == {"dataset": "markets", "table": "trades"}
    assert report["quality"]["data_quality_score"] == 99.5
    assert len(report["lineage"]) == 3
    assert report["aggregates"] == {"record_count": 3.0}
