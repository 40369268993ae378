"""Per-record validation against the rules attached to field mappings.

Every violated rule yields one ``ErrorRecord``; a record with at least one
violation is rejected from the load. Empty values are only checked by
NOT_NULL rules.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Sequence

import pandas as pd

from core.job import ErrorRecord
from level1_ingestion.schema_inferencer import TYPE_MATCHERS, FieldType
from level3_mapping.mapper import FieldMapping, RuleType, ValidationRule, key_fields
from level4_transform.executor import record_ids

logger = logging.getLogger(__name__)

_PATTERNS = dict(TYPE_MATCHERS)


@dataclass
class ValidationResult:
    frame: pd.DataFrame
    errors: list[ErrorRecord] = field(default_factory=list)
    rejected: int = 0


def _to_number(value: str) -> float:
    number = float(value.replace(",", ""))
    if not math.isfinite(number):
        raise ValueError(f"non-finite number {value!r}")
    return number


def matches_type(value: str, field_type: FieldType) -> bool:
    """Whether a cleaned, non-empty value is a valid instance of ``field_type``."""
    if field_type == FieldType.STRING:
        return True
    if field_type == FieldType.FLOAT:
        try:
            _to_number(value)
        except ValueError:
            return False
        return True
    if field_type == FieldType.DATE:
        try:
            date.fromisoformat(value)
        except ValueError:
            return False
        return True
    return bool(_PATTERNS[field_type].match(value))


def check_rule(rule: ValidationRule, value: str) -> bool:
    """Evaluate one rule; True when the value passes."""
    if rule.rule_type == RuleType.NOT_NULL:
        return value.strip() != ""
    if value == "":
        return True
    if rule.rule_type == RuleType.TYPE:
        return matches_type(value, FieldType(rule.param("type")))
    if rule.rule_type == RuleType.LENGTH:
        return len(value) <= int(rule.param("max"))
    if rule.rule_type == RuleType.RANGE:
        try:
            number = _to_number(value)
        except ValueError:
            # Non-numeric values are reported by the TYPE rule
            return True
        minimum, maximum = rule.param("min"), rule.param("max")
        return (minimum is None or number >= minimum) and (maximum is None or number <= maximum)
    logger.warning(f"Unknown rule type '{rule.rule_type}' on {rule.target_field}; skipped")
    return True


class RecordValidator:
    """Applies mapping validation rules to transformed records.

    Args:
        mappings: Field mappings carrying the rules
    """

    def __init__(self, mappings: Sequence[FieldMapping]):
        self.rules = [rule for m in mappings for rule in m.validation_rules]
        self.key_fields = key_fields(list(mappings))

    def validate(self, frame: pd.DataFrame) -> ValidationResult:
        """Split ``frame`` into valid records and error records."""
        if frame.empty or not self.rules:
            return ValidationResult(frame=frame)

        ids = record_ids(frame, self.key_fields)
        invalid = pd.Series(False, index=frame.index)
        errors: list[ErrorRecord] = []

        for rule in self.rules:
            if rule.target_field not in frame.columns:
                continue
            column = frame[rule.target_field].astype(str)
            passed = column.map(lambda v, r=rule: check_rule(r, v))
            failing = ~passed
            if not failing.any():
                continue
            invalid |= failing
            for position in failing.to_numpy().nonzero()[0]:
                errors.append(
                    ErrorRecord(
                        record_id=ids[position],
                        field_name=rule.target_field,
                        error_type=f"VALIDATION_{rule.rule_type}",
                        message=rule.error_message,
                        raw_value=_raw(column.iloc[position]),
                    )
                )

        rejected = int(invalid.sum())
        if rejected:
            logger.info(f"Validation rejected {rejected} of {len(frame)} record(s) ({len(errors)} violation(s))")
        return ValidationResult(frame=frame[~invalid], errors=errors, rejected=rejected)


def _raw(value: Any) -> str:
    return str(value)[:200]
