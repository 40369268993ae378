"""Pipeline configuration: schema and loader."""

from .schema import (
    AnomalyConfig,
    AuditConfig,
    BackoffStrategy,
    CanonicalFieldConfig,
    LLMConfig,
    MappingConfig,
    PipelineConfig,
    QualityConfig,
    RetryConfig,
    SourceConfig,
    TargetConfig,
)
from .validator import (
    ConfigValidationError,
    apply_overrides,
    load_and_validate_config,
    load_config_file,
    validate_config,
)

__all__ = [
    "AnomalyConfig",
    "AuditConfig",
    "BackoffStrategy",
    "CanonicalFieldConfig",
    "ConfigValidationError",
    "LLMConfig",
    "MappingConfig",
    "PipelineConfig",
    "QualityConfig",
    "RetryConfig",
    "SourceConfig",
    "TargetConfig",
    "apply_overrides",
    "load_and_validate_config",
    "load_config_file",
    "validate_config",
]
