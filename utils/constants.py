"""Constants for the ETL conductor.

This module defines shared constants used across the application.
"""

# Exit codes (matching CLI exit codes)
EXIT_SUCCESS = 0
EXIT_INVALID_CONFIG = 1
EXIT_PIPELINE_FAILED = 2
EXIT_RUNTIME_ERROR = 3

# Application metadata
APP_NAME = "ETL Conductor"
APP_VERSION = "1.0.0"

# Supported file formats
SUPPORTED_DATASET_FORMATS = ["csv", "parquet"]
SUPPORTED_CONFIG_FORMATS = ["yaml", "json"]

# Default values
DEFAULT_SAMPLE_SIZE = 10
DEFAULT_MAX_ATTEMPTS = 3

# Step names recorded in lineage
STEP_INGESTION = "INGESTION"
STEP_SCHEMA_INFERENCE = "SCHEMA_INFERENCE"
STEP_FIELD_MAPPING = "FIELD_MAPPING"
STEP_TRANSFORMATION = "TRANSFORMATION"
STEP_VALIDATION = "VALIDATION"
STEP_LOAD = "LOAD"
STEP_AUDIT = "AUDIT"

# Version prefixes stamped on completed jobs
DATASET_VERSION_PREFIX = "v"
MAPPING_VERSION_PREFIX = "m"

# Type tags produced by type inference, in matcher order, plus the fallback
FIELD_TYPES = ("INTEGER", "FLOAT", "BOOLEAN", "DATE", "TIMESTAMP", "EMAIL", "UUID", "STRING")
