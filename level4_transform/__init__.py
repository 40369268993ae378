"""Level 4: Transformation and record validation.

This package derives the transformation plan for a mapped schema, applies
it to the records, and validates the result against the mapping rules.
"""

from .builder import build_transformation_spec
from .executor import (
    TransformationError,
    TransformationExecutor,
    TransformResult,
    compute_aggregations,
    deduplicate,
    record_ids,
)
from .spec import (
    AggregateFunction,
    AggregationRule,
    CleaningOp,
    CleaningRule,
    DedupConfig,
    NullHandling,
    Remediation,
    Survivorship,
    TransformationSpec,
)
from .validation import RecordValidator, ValidationResult, check_rule, matches_type

__all__ = [
    "AggregateFunction",
    "AggregationRule",
    "CleaningOp",
    "CleaningRule",
    "DedupConfig",
    "NullHandling",
    "RecordValidator",
    "Remediation",
    "Survivorship",
    "TransformResult",
    "TransformationError",
    "TransformationExecutor",
    "TransformationSpec",
    "ValidationResult",
    "build_transformation_spec",
    "check_rule",
    "compute_aggregations",
    "deduplicate",
    "matches_type",
    "record_ids",
]
