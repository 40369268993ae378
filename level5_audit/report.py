"""Audit reasoning log and terminal report for Level 5.

The audit log is a plain-text account of one job: identity, scorecard,
compliance deductions, lineage, anomaly findings and error records. It is
written to ``<audit_dir>/<job_id>/audit.log``. The terminal report is the
JSON-safe summary handed back to the caller when a run ends.
"""

from pathlib import Path
from typing import Any, Optional

from core.job import Job
from level5_audit.scorer import QualityScores
from utils import PathValidationError, ensure_directory, get_logger, sanitize_path_component

logger = get_logger(__name__)

AUDIT_LOG_NAME = "audit.log"
MAX_LOGGED_ERRORS = 200


class AuditReportError(Exception):
    """Raised when the audit log cannot be written."""

    pass


class AuditReportWriter:
    """Writes audit logs under a base directory.

    Args:
        output_dir: Base audit directory (created when missing)
    """

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)

    def path_for(self, job_id: str) -> Path:
        return self.output_dir / sanitize_path_component(job_id) / AUDIT_LOG_NAME

    def write(self, job: Job, scores: Optional[QualityScores] = None) -> Path:
        """Write the audit log for ``job``.

        Raises:
            AuditReportError: If the directory or file cannot be written
        """
        path = self.path_for(job.job_id)
        try:
            ensure_directory(path.parent)
            path.write_text(format_audit_log(job, scores), encoding="utf-8")
        except (PathValidationError, OSError) as e:
            raise AuditReportError(f"Failed to write audit log {path}: {e}") from e
        logger.info(f"Audit log written: {path}")
        return path


def format_audit_log(job: Job, scores: Optional[QualityScores] = None) -> str:
    lines = [
        "=" * 60,
        f"AUDIT LOG - job {job.job_id}",
        "=" * 60,
        f"Source:          {job.source_path}",
        f"Target:          {job.target_dataset or '-'}.{job.target_table or '-'}",
        f"Status:          {job.status.value}",
        f"Dataset version: {job.dataset_version or '-'}",
        f"Mapping version: {job.mapping_version or '-'}",
        f"Fingerprint:     {job.fingerprint or '-'}",
        "",
        "STATISTICS",
    ]
    for name, value in job.statistics.to_dict().items():
        lines.append(f"  {name}: {value}")

    if scores is not None:
        lines += [
            "",
            "SCORECARD",
            f"  Data quality: {scores.data_quality_score:.2f}",
            f"  Compliance:   {scores.compliance_score:.2f}",
        ]
        for finding in scores.findings:
            lines.append(f"  - {finding}")

    if job.mappings:
        lines += ["", "MAPPINGS"]
        for m in job.mappings:
            lines.append(
                f"  {m.source_field} -> {m.target_field} ({m.target_type.value}, "
                f"confidence {m.confidence:.2f}): {m.rationale}"
            )

    lines += ["", "LINEAGE"]
    for entry in job.lineage:
        lines.append(
            f"  {entry.started_at.isoformat()} {entry.step} [{entry.outcome.value}] "
            f"{entry.input_records} -> {entry.output_records} ({entry.duration_ms} ms)"
        )

    if job.anomalies:
        lines += ["", "ANOMALIES"]
        for finding in job.anomalies:
            lines.append(f"  [{finding.severity.value}] {finding.field_name}: {finding.description}")

    lines += ["", f"ERRORS ({len(job.errors)})"]
    for error in job.errors[:MAX_LOGGED_ERRORS]:
        field_part = f" {error.field_name}" if error.field_name else ""
        lines.append(f"  {error.record_id}{field_part} {error.error_type}: {error.message}")
    if len(job.errors) > MAX_LOGGED_ERRORS:
        lines.append(f"  ... {len(job.errors) - MAX_LOGGED_ERRORS} more")

    return "\n".join(lines) + "\n"


def build_terminal_report(job: Job) -> dict[str, Any]:
    """User-visible summary of a finished job."""
    return {
        "job_id": job.job_id,
        "status": job.status.value,
        "source": job.source_path,
        "target": {"dataset": job.target_dataset, "table": job.target_table},
        "dataset_version": job.dataset_version,
        "mapping_version": job.mapping_version,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "statistics": job.statistics.to_dict(),
        "quality": job.quality.to_dict() if job.quality is not None else None,
        "audit_log": job.audit_log_path,
        "load_location": job.load_location,
        "aggregates": job.aggregates,
        "schema_drift": [d.describe() for d in job.schema_drift],
        "lineage": [entry.to_dict() for entry in job.lineage],
        "errors": [error.to_dict() for error in job.errors],
        "anomalies": [finding.to_dict() for finding in job.anomalies],
    }
