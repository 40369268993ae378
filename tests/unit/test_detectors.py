# =============================================================================
# Unit Tests: Anomaly Detectors and Profiler
# =============================================================================

import pandas as pd
import pytest

from level1_ingestion.schema_inferencer import infer_schema
from level2_quality.detectors import AnomalyDetector, AnomalyType, Severity
from level2_quality.profiler import scan_frame, summarize_findings
from pipeline_config.schema import AnomalyConfig


@pytest.fixture
def detector():
    return AnomalyDetector()


# =============================================================================
# Test: Outliers
# =============================================================================

def test_single_extreme_value_is_flagged(detector):
    """One value far above the rest is reported as an outlier."""
    values = [100, 102, 101, 103, 99, 100, 101, 102, 100, 500]
    findings = detector.detect_outliers("amount", values)

    assert len(findings) >= 1
    assert all(f.anomaly_type == AnomalyType.OUTLIER_Z_SCORE for f in findings)
    assert all(f.severity in (Severity.MEDIUM, Severity.CRITICAL) for f in findings)
    flagged = next(f for f in findings if f.metrics["value"] == 500)
    assert flagged.affected_records == ["9"]
    assert flagged.severity == Severity.CRITICAL
    assert flagged.suggested_actions[0] == "CAP_AT_THRESHOLD"
    assert flagged.confidence == 1.0


def test_low_outlier_suggests_replacement(detector):
    values = [50, 51, 49, 50, 52, 48, 50, 51, 49, -400]
    findings = detector.detect_outliers("price", values, record_ids=[f"r{i}" for i in range(10)])
    flagged = next(f for f in findings if f.metrics["value"] == -400)
    assert flagged.affected_records == ["r9"]
    assert flagged.suggested_actions == ["REPLACE_WITH_MEAN", "REPLACE_WITH_MEDIAN", "LOG_TRANSFORM"]


def test_zero_spread_yields_no_findings(detector):
    assert detector.detect_outliers("flat", [7, 7, 7, 7]) == []


def test_degenerate_outlier_input(detector):
    assert detector.detect_outliers("x", []) == []
    assert detector.detect_outliers("x", [1]) == []
    assert detector.detect_outliers("x", ["a", None, "", "nan"]) == []


def test_moderate_values_are_not_outliers(detector):
    assert detector.detect_outliers("x", list(range(1, 101))) == []


def test_borderline_values_scored_against_the_others(detector):
    # Whole-sequence z of the two 1s is exactly 3.0
    findings = detector.detect_outliers("flag", [0] * 18 + [1, 1])
    assert [f.affected_records for f in findings] == [["18"], ["19"]]
    assert all(f.metrics["z_score"] > 3.0 for f in findings)


def test_threshold_comes_from_config():
    strict = AnomalyDetector(AnomalyConfig(z_score_threshold=1.0, critical_z_score=2.0))
    findings = strict.detect_outliers("x", [1, 2, 3, 4, 5, 6, 7, 8, 9, 15])
    assert findings


# =============================================================================
# Test: Distribution Shape
# =============================================================================

def test_symmetric_distribution_has_no_finding(detector):
    assert detector.detect_distribution("x", [1, 2, 3, 4, 5, 5, 4, 3, 2, 1]) == []


def test_skewed_distribution_medium(detector):
    findings = detector.detect_distribution("x", [1] * 9 + [50])
    assert len(findings) == 1
    finding = findings[0]
    assert finding.anomaly_type == AnomalyType.DISTRIBUTION_SKEW
    assert finding.severity == Severity.MEDIUM
    assert finding.confidence == 0.85
    assert finding.metrics["skewness"] == pytest.approx(8 / 3)
    assert "kurtosis" in finding.metrics


def test_heavily_skewed_distribution_high(detector):
    findings = detector.detect_distribution("x", [1] * 19 + [50])
    assert findings[0].severity == Severity.HIGH


def test_distribution_needs_minimum_sample(detector):
    assert detector.detect_distribution("x", [1, 1, 1, 1, 1, 1, 1, 1, 50]) == []


# =============================================================================
# Test: Missing Values
# =============================================================================

def test_excessive_nulls(detector):
    """6 of 10 missing is 60% and CRITICAL."""
    values = ["1", "", None, "4", "", float("nan"), "  ", "8", "", "10"]
    findings = detector.detect_missing_values("x", values)

    assert len(findings) == 1
    finding = findings[0]
    assert finding.anomaly_type == AnomalyType.EXCESSIVE_NULLS
    assert finding.metrics["null_percentage"] == 60.0
    assert finding.severity == Severity.CRITICAL
    assert finding.affected_records == ["1", "2", "4", "5", "6", "8"]


def test_moderate_nulls_are_high(detector):
    values = ["a"] * 8 + ["", ""]
    (finding,) = detector.detect_missing_values("x", values)
    assert finding.severity == Severity.HIGH
    assert finding.metrics["null_percentage"] == 20.0


def test_nulls_at_threshold_are_fine(detector):
    assert detector.detect_missing_values("x", ["a"] * 9 + [""]) == []
    assert detector.detect_missing_values("x", []) == []


# =============================================================================
# Test: Cardinality
# =============================================================================

def test_low_cardinality(detector):
    (finding,) = detector.detect_cardinality("status", ["OPEN"] * 300)
    assert finding.anomaly_type == AnomalyType.LOW_CARDINALITY
    assert finding.severity == Severity.MEDIUM
    assert finding.confidence == 0.9


def test_high_cardinality(detector):
    (finding,) = detector.detect_cardinality("ref", [f"ref-{i}" for i in range(100)])
    assert finding.anomaly_type == AnomalyType.HIGH_CARDINALITY
    assert finding.severity == Severity.LOW
    assert finding.suggested_actions == ["HASH_ENCODING", "FREQUENCY_ENCODING"]


def test_ordinary_cardinality(detector):
    assert detector.detect_cardinality("region", ["N", "S", "E", "W"] * 10) == []
    assert detector.detect_cardinality("empty", ["", None]) == []


# =============================================================================
# Test: Profiler
# =============================================================================

def test_scan_frame_routes_fields_by_type():
    frame = pd.DataFrame(
        {
            "amount": ["100", "102", "101", "103", "99", "100", "101", "102", "100", "500"],
            "note": ["", "", "", "", "", "", "x", "x", "y", "y"],
        }
    )
    schema = infer_schema(frame)
    ids = [f"row-{i + 1}" for i in range(10)]
    findings = scan_frame(frame, schema, record_ids=ids, max_workers=2)

    by_field = {}
    for finding in findings:
        by_field.setdefault(finding.field_name, []).append(finding.anomaly_type)

    assert AnomalyType.OUTLIER_Z_SCORE in by_field["amount"]
    assert by_field["note"] == [AnomalyType.EXCESSIVE_NULLS]
    names = [f.field_name for f in findings]
    assert names == sorted(names)
    outlier = next(f for f in findings if f.anomaly_type == AnomalyType.OUTLIER_Z_SCORE)
    assert outlier.affected_records == ["row-10"]


def test_summarize_findings_orders_by_severity():
    findings = AnomalyDetector().detect_missing_values("x", [""] * 9 + ["a"])
    findings += AnomalyDetector().detect_cardinality("y", [f"v{i}" for i in range(50)])
    assert list(summarize_findings(findings)) == ["CRITICAL", "LOW"]
