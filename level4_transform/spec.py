"""Transformation specification for Level 4.

A ``TransformationSpec`` is the declarative plan applied to the records:
per-field cleaning rules and null handling, deduplication with
survivorship rules, advisory remediations derived from anomaly findings,
and summary aggregations reported with the load.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from utils.file_helpers import generate_version


class CleaningOp(str, Enum):
    TRIM = "TRIM"
    UPPERCASE = "UPPERCASE"
    LOWERCASE = "LOWERCASE"
    PARSE_INTEGER = "PARSE_INTEGER"
    PARSE_NUMERIC = "PARSE_NUMERIC"
    ROUND_TO_2_DECIMALS = "ROUND_TO_2_DECIMALS"
    PARSE_BOOLEAN = "PARSE_BOOLEAN"
    PARSE_ISO_DATE = "PARSE_ISO_DATE"
    PARSE_ISO_TIMESTAMP = "PARSE_ISO_TIMESTAMP"


class NullHandling(str, Enum):
    KEEP = "KEEP"
    REJECT = "REJECT"
    ZERO = "ZERO"
    FILL_UNKNOWN = "FILL_UNKNOWN"


class Survivorship(str, Enum):
    """Which duplicate's value survives for a field."""

    KEEP_FIRST = "KEEP_FIRST"
    KEEP_LAST = "KEEP_LAST"
    KEEP_MAX = "KEEP_MAX"
    KEEP_MIN = "KEEP_MIN"
    KEEP_LATEST = "KEEP_LATEST"


class AggregateFunction(str, Enum):
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"


@dataclass(frozen=True)
class CleaningRule:
    source_field: str
    target_field: str
    operations: tuple[CleaningOp, ...] = ()
    null_handling: NullHandling = NullHandling.KEEP


@dataclass(frozen=True)
class DedupConfig:
    """Duplicates share all ``key_fields``; fields without a rule keep the first value."""

    key_fields: tuple[str, ...]
    survivorship: tuple[tuple[str, Survivorship], ...] = ()

    def rule_for(self, field_name: str) -> Survivorship:
        return dict(self.survivorship).get(field_name, Survivorship.KEEP_FIRST)


@dataclass(frozen=True)
class Remediation:
    """Advisory remediation for an anomaly. Not applied automatically."""

    target_field: str
    anomaly_type: str
    severity: str
    action: str


@dataclass(frozen=True)
class AggregationRule:
    name: str
    function: AggregateFunction
    target_field: Optional[str] = None
    group_by: tuple[str, ...] = ()


@dataclass
class TransformationSpec:
    cleaning_rules: list[CleaningRule]
    dedup: Optional[DedupConfig] = None
    remediations: list[Remediation] = field(default_factory=list)
    aggregations: list[AggregationRule] = field(default_factory=list)
    spec_id: str = field(default_factory=lambda: generate_version("t"))

    @property
    def renames(self) -> dict[str, str]:
        return {r.source_field: r.target_field for r in self.cleaning_rules}

    def to_dict(self) -> dict[str, Any]:
        return {
            "spec_id": self.spec_id,
            "cleaning_rules": [
                {
                    "source_field": r.source_field,
                    "target_field": r.target_field,
                    "operations": [op.value for op in r.operations],
                    "null_handling": r.null_handling.value,
                }
                for r in self.cleaning_rules
            ],
            "dedup": (
                {
                    "key_fields": list(self.dedup.key_fields),
                    "survivorship": {f: s.value for f, s in self.dedup.survivorship},
                }
                if self.dedup
                else None
            ),
            "remediations": [asdict(r) for r in self.remediations],
            "aggregations": [
                {
                    "name": a.name,
                    "function": a.function.value,
                    "target_field": a.target_field,
                    "group_by": list(a.group_by),
                }
                for a in self.aggregations
            ],
        }
