"""Level 1: Record ingestion and schema inference.

This package reads raw records, normalizes field names, infers a schema
contract and detects drift against a recorded one.
"""

from .loader import (
    DatasetLoadError,
    FileRecordSource,
    InMemoryRecordSource,
    RecordSource,
    SourceBatch,
)
from .normalizer import normalize_field_names, to_snake_case
from .schema_inferencer import (
    DriftKind,
    FieldDescriptor,
    FieldType,
    PatternTag,
    SchemaContract,
    SchemaDrift,
    detect_schema_drift,
    infer_field,
    infer_schema,
    load_schema_contract,
    save_schema_contract,
)

__all__ = [
    "DatasetLoadError",
    "DriftKind",
    "FieldDescriptor",
    "FieldType",
    "FileRecordSource",
    "InMemoryRecordSource",
    "PatternTag",
    "RecordSource",
    "SchemaContract",
    "SchemaDrift",
    "SourceBatch",
    "detect_schema_drift",
    "infer_field",
    "infer_schema",
    "load_schema_contract",
    "normalize_field_names",
    "save_schema_contract",
    "to_snake_case",
]
