"""Quality and compliance scoring for Level 5 audit.

Both scores start at 100 and lose fixed penalties, floored at 0. They are
advisory unless a minimum threshold is configured, in which case
``QualityScores.passes`` decides whether the job may complete.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from core.job import Job

REJECTED_RECORD_PENALTY = 0.1
DEDUPLICATED_RECORD_PENALTY = 0.05
ERROR_PENALTY = 0.5

MISSING_TARGET_PENALTY = 20.0
SHALLOW_LINEAGE_PENALTY = 15.0
ERRORS_PRESENT_PENALTY = 10.0
MISSING_AUDIT_LOG_PENALTY = 10.0
MIN_LINEAGE_DEPTH = 3


def _clamp(score: float) -> float:
    return round(max(0.0, min(100.0, score)), 2)


@dataclass
class QualityScores:
    """Scorecard of a job.

    ``findings`` lists the compliance deductions applied, for the audit log.
    """

    data_quality_score: float
    compliance_score: float
    findings: list[str] = field(default_factory=list)

    def passes(
        self,
        min_quality_score: Optional[float] = None,
        min_compliance_score: Optional[float] = None,
    ) -> bool:
        """True unless a configured minimum is not met."""
        if min_quality_score is not None and self.data_quality_score < min_quality_score:
            return False
        if min_compliance_score is not None and self.compliance_score < min_compliance_score:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_quality_score": self.data_quality_score,
            "compliance_score": self.compliance_score,
            "findings": list(self.findings),
        }


class QualityScorer:
    """Derives the scorecard from job statistics, lineage and errors."""

    def data_quality_score(self, job: Job) -> float:
        stats = job.statistics
        penalty = (
            REJECTED_RECORD_PENALTY * stats.total_records_rejected
            + DEDUPLICATED_RECORD_PENALTY * stats.total_records_deduplicated
            + ERROR_PENALTY * len(job.errors)
        )
        return _clamp(100.0 - penalty)

    def compliance(self, job: Job) -> tuple[float, list[str]]:
        score = 100.0
        findings = []
        if not job.target_dataset or not job.target_table:
            score -= MISSING_TARGET_PENALTY
            findings.append("Target dataset or table is not declared")
        if len(job.lineage) < MIN_LINEAGE_DEPTH:
            score -= SHALLOW_LINEAGE_PENALTY
            findings.append(f"Lineage has {len(job.lineage)} entries (minimum {MIN_LINEAGE_DEPTH})")
        if job.errors:
            score -= ERRORS_PRESENT_PENALTY
            findings.append(f"{len(job.errors)} error record(s) present")
        if not job.audit_log_path:
            score -= MISSING_AUDIT_LOG_PENALTY
            findings.append("No audit log reference")
        return _clamp(score), findings

    def score(self, job: Job) -> QualityScores:
        compliance, findings = self.compliance(job)
        return QualityScores(
            data_quality_score=self.data_quality_score(job),
            compliance_score=compliance,
            findings=findings,
        )
