"""Parallel anomaly scan for Level 2 quality checks.

Routes every field of a dataset to the detectors that apply to its
inferred type and runs fields concurrently. Detectors are pure, so no
coordination is needed beyond collecting results in field order.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

import pandas as pd

from level1_ingestion.schema_inferencer import FieldDescriptor, SchemaContract
from level2_quality.detectors import AnomalyDetector, AnomalyFinding, Severity

logger = logging.getLogger(__name__)


def scan_field(
    detector: AnomalyDetector,
    descriptor: FieldDescriptor,
    values: Sequence[object],
    record_ids: Optional[Sequence[str]] = None,
) -> list[AnomalyFinding]:
    """Run the applicable detectors on one field.

    Numeric fields get outlier and distribution checks, other fields get
    the cardinality check; every field gets the missing-value check.
    """
    findings = detector.detect_missing_values(descriptor.name, values, record_ids)
    if descriptor.inferred_type.is_numeric:
        findings += detector.detect_outliers(descriptor.name, values, record_ids)
        findings += detector.detect_distribution(descriptor.name, values)
    else:
        findings += detector.detect_cardinality(descriptor.name, values)
    return findings


def scan_frame(
    frame: pd.DataFrame,
    schema: SchemaContract,
    detector: Optional[AnomalyDetector] = None,
    record_ids: Optional[Sequence[str]] = None,
    max_workers: Optional[int] = None,
) -> list[AnomalyFinding]:
    """Scan every schema field present in ``frame``.

    Args:
        frame: Records to scan (raw string values)
        schema: Inferred schema contract; drives detector routing
        detector: Detector bundle (default thresholds when omitted)
        record_ids: Identifiers aligned with the frame rows
        max_workers: Thread pool size (defaults to the detector config)

    Returns:
        Findings grouped by field, in schema order
    """
    detector = detector or AnomalyDetector()
    workers = max_workers or detector.config.max_workers
    descriptors = [d for d in schema.fields if d.name in frame.columns]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        per_field = list(
            executor.map(
                lambda d: scan_field(detector, d, frame[d.name].tolist(), record_ids),
                descriptors,
            )
        )

    findings = [finding for group in per_field for finding in group]
    logger.info(
        f"Anomaly scan: {len(descriptors)} fields, {len(findings)} finding(s) "
        f"{dict(summarize_findings(findings))}"
    )
    return findings


def summarize_findings(findings: Sequence[AnomalyFinding]) -> Counter:
    """Count findings per severity, highest severity first."""
    counts = Counter(f.severity.value for f in findings)
    return Counter(
        {s.value: counts[s.value] for s in sorted(Severity, key=lambda s: -s.rank) if counts[s.value]}
    )
