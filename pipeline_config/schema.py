"""Pipeline configuration schema using Pydantic.

This module defines the immutable configuration contract for a pipeline
run. Every section has defaults, so a document holding only
``{"source": {"path": ...}}`` is a valid configuration.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from utils.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_SAMPLE_SIZE, FIELD_TYPES


class BackoffStrategy(str, Enum):
    """Delay growth between stage attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SourceConfig(_Section):
    """Where records are read from."""

    path: str = Field(..., min_length=1, description="Location token of the source file")
    sample_size: int = Field(
        default=DEFAULT_SAMPLE_SIZE, ge=1, le=10000, description="Rows sampled for type inference"
    )
    max_rows: Optional[int] = Field(default=None, ge=1, description="Upper bound on rows read")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate source path."""
        if not v.strip():
            raise ValueError("source.path cannot be empty")
        return v.strip()


class TargetConfig(_Section):
    """Where records are loaded to."""

    dataset: Optional[str] = Field(default=None, description="Target dataset name")
    table: Optional[str] = Field(default=None, description="Target table name")
    warehouse_dir: str = Field(default="warehouse", description="Root of the local warehouse")


class RetryConfig(_Section):
    """Stage retry policy."""

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1, le=20)
    base_delay_seconds: float = Field(default=1.0, ge=0.0, le=600.0)
    max_delay_seconds: float = Field(default=60.0, ge=0.0)
    backoff: BackoffStrategy = Field(default=BackoffStrategy.EXPONENTIAL)


class QualityConfig(_Section):
    """Validation and promotion thresholds.

    Scores are advisory unless a minimum is configured.
    """

    max_error_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Rejected share of the records reaching validation, after dedup, that fails the job",
    )
    min_quality_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    min_compliance_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)


class AnomalyConfig(_Section):
    """Thresholds for the anomaly detectors."""

    z_score_threshold: float = Field(default=3.0, gt=0.0)
    critical_z_score: float = Field(default=4.0, gt=0.0)
    skewness_threshold: float = Field(default=2.0, gt=0.0)
    high_skewness: float = Field(default=3.0, gt=0.0)
    min_distribution_sample: int = Field(default=10, ge=3)
    null_percentage_threshold: float = Field(default=10.0, ge=0.0, le=100.0)
    critical_null_percentage: float = Field(default=50.0, ge=0.0, le=100.0)
    low_cardinality_ratio: float = Field(default=0.01, ge=0.0, le=1.0)
    low_cardinality_max_distinct: int = Field(default=5, ge=1)
    high_cardinality_ratio: float = Field(default=0.95, ge=0.0, le=1.0)
    max_workers: int = Field(default=4, ge=1, le=64)

    @model_validator(mode="after")
    def validate_ordering(self) -> "AnomalyConfig":
        """Escalation thresholds must not be below their base threshold."""
        if self.critical_z_score < self.z_score_threshold:
            raise ValueError("critical_z_score must be >= z_score_threshold")
        if self.high_skewness < self.skewness_threshold:
            raise ValueError("high_skewness must be >= skewness_threshold")
        if self.critical_null_percentage < self.null_percentage_threshold:
            raise ValueError("critical_null_percentage must be >= null_percentage_threshold")
        return self


class CanonicalFieldConfig(_Section):
    """One field of the canonical (target) model."""

    name: str = Field(..., min_length=1)
    type: str = Field(default="STRING")
    synonyms: list[str] = Field(default_factory=list)
    is_key: bool = False
    max_length: Optional[int] = Field(default=None, ge=1)
    min_value: Optional[float] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Validate type tag."""
        tag = v.strip().upper()
        if tag not in FIELD_TYPES:
            raise ValueError(f"type must be one of {', '.join(FIELD_TYPES)}")
        return tag


DEFAULT_CANONICAL_FIELDS = (
    CanonicalFieldConfig(
        name="security_id",
        type="STRING",
        synonyms=["id", "sec_id", "security", "identifier", "instrument_id"],
        is_key=True,
        max_length=64,
    ),
    CanonicalFieldConfig(
        name="security_name",
        type="STRING",
        synonyms=["name", "security_desc", "description", "instrument_name"],
        max_length=255,
    ),
    CanonicalFieldConfig(
        name="transaction_amount",
        type="FLOAT",
        synonyms=["amount", "txn_amount", "value", "notional"],
        min_value=0.0,
    ),
    CanonicalFieldConfig(
        name="transaction_date",
        type="DATE",
        synonyms=["date", "txn_date", "trade_date", "settlement_date"],
    ),
    CanonicalFieldConfig(
        name="market_code",
        type="STRING",
        synonyms=["market", "exchange", "exchange_code", "mic"],
        max_length=16,
    ),
    CanonicalFieldConfig(
        name="currency_code",
        type="STRING",
        synonyms=["currency", "ccy", "currency_iso"],
        max_length=3,
    ),
)


class MappingConfig(_Section):
    """Canonical model and field matching thresholds."""

    min_confidence: float = Field(default=0.75, ge=0.0, le=1.0)
    canonical_fields: list[CanonicalFieldConfig] = Field(
        default_factory=lambda: list(DEFAULT_CANONICAL_FIELDS)
    )

    @field_validator("canonical_fields")
    @classmethod
    def validate_unique_names(cls, v: list[CanonicalFieldConfig]) -> list[CanonicalFieldConfig]:
        """Canonical field names must be unique."""
        names = [f.name for f in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate canonical fields: {duplicates}")
        return v


class AuditConfig(_Section):
    """Audit log output."""

    output_dir: Optional[str] = Field(default=None, description="Directory for audit logs")


class LLMConfig(_Section):
    """Optional generative reasoning service."""

    enabled: bool = False
    provider: Optional[str] = Field(default=None, pattern="^(openai|anthropic|gemini)$")


class PipelineConfig(_Section):
    """Complete pipeline configuration - immutable once validated."""

    source: SourceConfig
    target: TargetConfig = Field(default_factory=TargetConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    lineage_store_path: Optional[str] = Field(
        default=None, description="JSON-lines file backing the lineage store"
    )
    job_store_dir: Optional[str] = Field(
        default=None, description="Directory where terminal job state is persisted"
    )
    baseline_schema_path: Optional[str] = Field(
        default=None, description="Previously recorded schema contract used for drift detection"
    )
