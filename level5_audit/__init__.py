"""Level 5: Audit.

This package scores finished jobs and writes their audit reasoning log.
"""

from .report import AuditReportError, AuditReportWriter, build_terminal_report, format_audit_log
from .scorer import QualityScorer, QualityScores

__all__ = [
    "AuditReportError",
    "AuditReportWriter",
    "QualityScorer",
    "QualityScores",
    "build_terminal_report",
    "format_audit_log",
]
