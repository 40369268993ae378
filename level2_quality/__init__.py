"""Level 2: Statistical quality analysis.

This package provides the numeric primitives, the four anomaly detectors
and a parallel scan that applies them across a dataset.
"""

from . import statistics
from .detectors import AnomalyDetector, AnomalyFinding, AnomalyType, Severity
from .profiler import scan_field, scan_frame, summarize_findings

__all__ = [
    "AnomalyDetector",
    "AnomalyFinding",
    "AnomalyType",
    "Severity",
    "scan_field",
    "scan_frame",
    "statistics",
    "summarize_findings",
]
