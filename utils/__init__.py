"""Shared utilities for the ETL conductor.

This module provides common utilities used across the application.
"""

from .constants import (
    APP_NAME,
    APP_VERSION,
    EXIT_INVALID_CONFIG,
    EXIT_PIPELINE_FAILED,
    EXIT_RUNTIME_ERROR,
    EXIT_SUCCESS,
    SUPPORTED_CONFIG_FORMATS,
    SUPPORTED_DATASET_FORMATS,
)
from .file_helpers import (
    PathValidationError,
    ensure_directory,
    generate_job_id,
    generate_version,
    get_file_extension,
    is_supported_config_format,
    is_supported_dataset_format,
    sanitize_path_component,
    validate_output_path,
    validate_path_safe,
)
from .llm_client import LLMClientError, LLMClientWrapper, get_llm_client
from .logging import get_logger, setup_logging
from .prompt_sanitizer import (
    PromptSanitizationError,
    sanitize_column_name,
    sanitize_json_for_prompt,
    sanitize_string_for_prompt,
)
from .rate_limiter import RateLimitError, RateLimiter, get_rate_limiter

__all__ = [
    "APP_NAME",
    "APP_VERSION",
    "EXIT_INVALID_CONFIG",
    "EXIT_PIPELINE_FAILED",
    "EXIT_RUNTIME_ERROR",
    "EXIT_SUCCESS",
    "SUPPORTED_CONFIG_FORMATS",
    "SUPPORTED_DATASET_FORMATS",
    "ensure_directory",
    "generate_job_id",
    "generate_version",
    "get_file_extension",
    "get_llm_client",
    "get_logger",
    "get_rate_limiter",
    "is_supported_config_format",
    "is_supported_dataset_format",
    "LLMClientError",
    "LLMClientWrapper",
    "PathValidationError",
    "PromptSanitizationError",
    "RateLimitError",
    "RateLimiter",
    "sanitize_column_name",
    "sanitize_json_for_prompt",
    "sanitize_path_component",
    "sanitize_string_for_prompt",
    "setup_logging",
    "validate_output_path",
    "validate_path_safe",
]
