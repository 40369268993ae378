"""Type inference and schema contracts for Level 1 ingestion.

Each field is classified from a small sample of its raw string values
against an ordered list of matchers. The resulting ``FieldDescriptor``
objects make up the ``SchemaContract`` that later stages map, transform and
validate against. Schema drift against a previously recorded contract is
detected here as well.
"""

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence

import pandas as pd

from utils.file_helpers import generate_version

logger = logging.getLogger(__name__)

MAX_SAMPLE_VALUES = 5


class FieldType(str, Enum):
    """Inferred type tags. Declaration order is matcher order."""

    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"
    EMAIL = "EMAIL"
    UUID = "UUID"
    STRING = "STRING"

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.INTEGER, FieldType.FLOAT)


class PatternTag(str, Enum):
    """Semantic tags derived from the field name."""

    KEY_FIELD = "KEY_FIELD"
    TEMPORAL_FIELD = "TEMPORAL_FIELD"
    NUMERIC_MEASURE = "NUMERIC_MEASURE"
    CATEGORICAL_FIELD = "CATEGORICAL_FIELD"


# First match wins per value, so "1" is an INTEGER before it is a BOOLEAN.
TYPE_MATCHERS: tuple[tuple[FieldType, re.Pattern], ...] = (
    (FieldType.INTEGER, re.compile(r"^-?\d+$")),
    (FieldType.FLOAT, re.compile(r"^-?\d+\.\d+$")),
    (FieldType.BOOLEAN, re.compile(r"^(true|false|yes|no|0|1)$", re.IGNORECASE)),
    (FieldType.DATE, re.compile(r"^\d{4}-\d{2}-\d{2}$")),
    # Prefix match: fractional seconds and zone suffixes are accepted
    (FieldType.TIMESTAMP, re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}")),
    (FieldType.EMAIL, re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")),
    (
        FieldType.UUID,
        re.compile(
            r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
            re.IGNORECASE,
        ),
    ),
)

NAME_PATTERNS: tuple[tuple[PatternTag, tuple[str, ...]], ...] = (
    (PatternTag.KEY_FIELD, ("id", "key")),
    (PatternTag.TEMPORAL_FIELD, ("date", "time")),
    (PatternTag.NUMERIC_MEASURE, ("amount", "value", "price")),
    (PatternTag.CATEGORICAL_FIELD, ("code", "type")),
)


@dataclass
class FieldDescriptor:
    """Inferred description of a single field.

    ``confidence`` and ``null_percentage`` are fractions in [0, 1].
    ``is_unique`` is forced for key-like names; ``sample_distinct`` records
    whether the non-null sampled values were actually all different.
    """

    name: str
    inferred_type: FieldType
    confidence: float
    null_percentage: float
    is_unique: bool
    sample_values: list[str] = field(default_factory=list)
    patterns: frozenset[PatternTag] = field(default_factory=frozenset)
    sample_distinct: bool = False

    def has_pattern(self, tag: PatternTag) -> bool:
        return tag in self.patterns

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["inferred_type"] = self.inferred_type.value
        data["patterns"] = sorted(tag.value for tag in self.patterns)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldDescriptor":
        return cls(
            name=data["name"],
            inferred_type=FieldType(data["inferred_type"]),
            confidence=float(data.get("confidence", 0.0)),
            null_percentage=float(data.get("null_percentage", 0.0)),
            is_unique=bool(data.get("is_unique", False)),
            sample_values=list(data.get("sample_values", [])),
            patterns=frozenset(PatternTag(p) for p in data.get("patterns", [])),
            sample_distinct=bool(data.get("sample_distinct", False)),
        )


@dataclass
class SchemaContract:
    """Inferred schema of a dataset: one descriptor per field, in source order."""

    fields: list[FieldDescriptor]
    row_count: int
    fingerprint: Optional[str] = None
    schema_id: str = field(default_factory=lambda: generate_version("schema_"))
    sample_rows: list[dict[str, str]] = field(default_factory=list)

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get(self, name: str) -> Optional[FieldDescriptor]:
        for descriptor in self.fields:
            if descriptor.name == name:
                return descriptor
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_id": self.schema_id,
            "row_count": self.row_count,
            "fingerprint": self.fingerprint,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SchemaContract":
        return cls(
            fields=[FieldDescriptor.from_dict(f) for f in data.get("fields", [])],
            row_count=int(data.get("row_count", 0)),
            fingerprint=data.get("fingerprint"),
            schema_id=data.get("schema_id") or generate_version("schema_"),
        )


class DriftKind(str, Enum):
    FIELD_ADDED = "FIELD_ADDED"
    FIELD_REMOVED = "FIELD_REMOVED"
    TYPE_CHANGED = "TYPE_CHANGED"


@dataclass(frozen=True)
class SchemaDrift:
    """One divergence between a recorded schema and a newly inferred one."""

    field_name: str
    kind: DriftKind
    previous_type: Optional[str] = None
    current_type: Optional[str] = None

    def describe(self) -> str:
        if self.kind == DriftKind.TYPE_CHANGED:
            return f"{self.field_name}: type changed {self.previous_type} -> {self.current_type}"
        if self.kind == DriftKind.FIELD_ADDED:
            return f"{self.field_name}: new field ({self.current_type})"
        return f"{self.field_name}: field no longer present (was {self.previous_type})"


def is_null(value: Any) -> bool:
    """Missing, NaN, or empty after trimming."""
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return str(value).strip() == ""


def classify_value(value: str) -> FieldType:
    """Classify a single non-empty value against the ordered matchers."""
    text = str(value).strip()
    for field_type, pattern in TYPE_MATCHERS:
        if pattern.match(text):
            return field_type
    return FieldType.STRING


def detect_name_patterns(name: str) -> frozenset[PatternTag]:
    """Semantic tags from case-insensitive substrings of the field name."""
    lowered = name.lower()
    return frozenset(
        tag for tag, needles in NAME_PATTERNS if any(n in lowered for n in needles)
    )


def infer_field(name: str, samples: Sequence[Any]) -> FieldDescriptor:
    """Infer the descriptor of one field from a bounded sample.

    Args:
        name: Field name (drives the semantic pattern tags)
        samples: Raw sample values; empty strings and None count as nulls

    Returns:
        FieldDescriptor. An empty sample yields STRING with confidence 0
        and no pattern tags.
    """
    sample_size = len(samples)
    if sample_size == 0:
        return FieldDescriptor(
            name=name,
            inferred_type=FieldType.STRING,
            confidence=0.0,
            null_percentage=0.0,
            is_unique=False,
        )

    non_null = [str(v).strip() for v in samples if not is_null(v)]

    tallies: dict[FieldType, int] = {}
    for value in non_null:
        value_type = classify_value(value)
        tallies[value_type] = tallies.get(value_type, 0) + 1

    inferred_type = FieldType.STRING
    best_count = 0
    # Strict ">" keeps the earlier type on ties
    for field_type in FieldType:
        count = tallies.get(field_type, 0)
        if count > best_count:
            inferred_type, best_count = field_type, count

    distinct: list[str] = []
    for value in non_null:
        if value not in distinct:
            distinct.append(value)

    patterns = detect_name_patterns(name)
    is_unique = len(distinct) == len(non_null) or PatternTag.KEY_FIELD in patterns
    sample_distinct = bool(non_null) and len(distinct) == len(non_null)

    return FieldDescriptor(
        name=name,
        inferred_type=inferred_type,
        confidence=min(1.0, best_count / sample_size),
        null_percentage=(sample_size - len(non_null)) / sample_size,
        is_unique=is_unique,
        sample_values=distinct[:MAX_SAMPLE_VALUES],
        patterns=patterns,
        sample_distinct=sample_distinct,
    )


def infer_schema(
    frame: pd.DataFrame,
    sample_size: int = 10,
    fingerprint: Optional[str] = None,
    max_workers: int = 4,
) -> SchemaContract:
    """Infer a schema contract from the first ``sample_size`` rows.

    Fields are independent, so they are inferred on a thread pool; the
    contract keeps source column order.

    Args:
        frame: Raw records, one column per field
        sample_size: Number of leading rows sampled
        fingerprint: Content fingerprint of the source
        max_workers: Thread pool size

    Returns:
        SchemaContract for the frame
    """
    sample = frame.head(sample_size)
    columns = [str(c) for c in frame.columns]
    logger.debug(f"Inferring {len(columns)} fields from {len(sample)} sample rows")

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        descriptors = list(
            executor.map(lambda col: infer_field(col, sample[col].tolist()), columns)
        )

    for descriptor in descriptors:
        logger.debug(
            f"Field '{descriptor.name}': {descriptor.inferred_type.value} "
            f"(confidence={descriptor.confidence:.2f}, nulls={descriptor.null_percentage:.0%})"
        )

    sample_rows = [
        {str(k): ("" if is_null(v) else str(v)) for k, v in row.items()}
        for row in sample.to_dict(orient="records")
    ]
    return SchemaContract(
        fields=descriptors,
        row_count=len(frame),
        fingerprint=fingerprint,
        sample_rows=sample_rows,
    )


def detect_schema_drift(previous: SchemaContract, current: SchemaContract) -> list[SchemaDrift]:
    """Compare a recorded schema with a newly inferred one.

    Returns:
        Drift items: removed fields first (in previous order), then added
        fields and type changes (in current order)
    """
    drift: list[SchemaDrift] = []
    current_names = set(current.field_names)
    for old in previous.fields:
        if old.name not in current_names:
            drift.append(
                SchemaDrift(old.name, DriftKind.FIELD_REMOVED, previous_type=old.inferred_type.value)
            )

    for new in current.fields:
        old = previous.get(new.name)
        if old is None:
            drift.append(
                SchemaDrift(new.name, DriftKind.FIELD_ADDED, current_type=new.inferred_type.value)
            )
        elif old.inferred_type != new.inferred_type:
            drift.append(
                SchemaDrift(
                    new.name,
                    DriftKind.TYPE_CHANGED,
                    previous_type=old.inferred_type.value,
                    current_type=new.inferred_type.value,
                )
            )
    return drift


def load_schema_contract(path: str | Path) -> SchemaContract:
    """Read a schema contract previously written with ``save_schema_contract``."""
    with open(path, "r", encoding="utf-8") as f:
        return SchemaContract.from_dict(json.load(f))


def save_schema_contract(schema: SchemaContract, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(schema.to_dict(), f, indent=2)
    return path
