"""Level 3: Canonical field mapping.

This package maps inferred source fields onto the canonical model and
wraps the optional generative reasoning service behind a validating
adapter.
"""

from .agent import (
    MappingReasoner,
    MappingSuggestion,
    MappingSuggestionSet,
    ReasoningError,
    ReasoningParseError,
    apply_rationales,
    parse_suggestions,
)
from .mapper import FieldMapper, FieldMapping, MappingError, RuleType, ValidationRule, key_fields

__all__ = [
    "FieldMapper",
    "FieldMapping",
    "MappingError",
    "MappingReasoner",
    "MappingSuggestion",
    "MappingSuggestionSet",
    "ReasoningError",
    "ReasoningParseError",
    "RuleType",
    "ValidationRule",
    "apply_rationales",
    "key_fields",
    "parse_suggestions",
]
