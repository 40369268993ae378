"""Validating adapter for the generative reasoning service (Level 3).

The LLM is asked to explain field mappings. Its reply is untrusted text:
it is parsed and validated into typed models, and any malformed reply
raises ``ReasoningParseError``. A validated suggestion can only replace the
rationale of a mapping whose deterministic target it agrees with; it never
changes which target a field maps to.

Safety boundaries:
- The LLM sees field names, inferred types and at most a few sample values
- Every interpolated value is sanitized
- Output must validate against ``MappingSuggestionSet``
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from level1_ingestion.schema_inferencer import SchemaContract
from level3_mapping.mapper import FieldMapping
from utils import (
    LLMClientError,
    PromptSanitizationError,
    get_logger,
    sanitize_column_name,
    sanitize_json_for_prompt,
    sanitize_string_for_prompt,
)

logger = get_logger(__name__)

MAX_PROMPT_SAMPLES = 3


class ReasoningError(Exception):
    """Raised when the reasoning service cannot be used."""

    pass


class ReasoningParseError(ReasoningError):
    """Raised when the reasoning service returns output that fails validation."""

    pass


class MappingSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    source_field: str = Field(..., min_length=1, max_length=200)
    target_field: str = Field(..., min_length=1, max_length=200)
    rationale: str = Field(..., min_length=1, max_length=1000)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class MappingSuggestionSet(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    suggestions: list[MappingSuggestion]


def _strip_code_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        first_nl = text.find("\n")
        last_ticks = text.rfind("```")
        if first_nl != -1 and last_ticks > first_nl:
            return text[first_nl + 1:last_ticks].strip()
    return text


def parse_suggestions(response: Any) -> MappingSuggestionSet:
    """Parse and validate a raw reply.

    Accepts a JSON string (optionally wrapped in a Markdown code fence)
    or an already-decoded dict.

    Raises:
        ReasoningParseError: If the reply is not valid JSON or does not
            match the expected structure
    """
    if isinstance(response, str):
        try:
            response = json.loads(_strip_code_fences(response))
        except json.JSONDecodeError as e:
            logger.warning(f"Reasoning service returned invalid JSON (first 200 chars): {response[:200]!r}")
            raise ReasoningParseError(f"Reasoning service returned invalid JSON: {e}") from e

    if not isinstance(response, dict):
        raise ReasoningParseError(
            f"Reasoning service returned {type(response).__name__}, expected an object"
        )

    try:
        return MappingSuggestionSet.model_validate(response)
    except ValidationError as e:
        raise ReasoningParseError(f"Reasoning service output failed validation: {e}") from e


class MappingReasoner:
    """Requests mapping rationales from an LLM client.

    Args:
        llm_client: Object exposing ``complete(prompt, **kwargs) -> str``
    """

    def __init__(self, llm_client: Any):
        if llm_client is None:
            raise ReasoningError("No LLM client available")
        self.llm_client = llm_client

    def _construct_prompt(self, schema: SchemaContract, mappings: list[FieldMapping]) -> str:
        fields = []
        for mapping in mappings:
            descriptor = schema.get(mapping.source_field)
            fields.append(
                {
                    "source_field": sanitize_column_name(mapping.source_field),
                    "inferred_type": descriptor.inferred_type.value if descriptor else "STRING",
                    "samples": list(descriptor.sample_values[:MAX_PROMPT_SAMPLES]) if descriptor else [],
                    "proposed_target": sanitize_column_name(mapping.target_field),
                    "target_type": mapping.target_type.value,
                }
            )

        return f"""You are reviewing field mappings from a source file onto a canonical data model.

For each field, explain in one or two sentences why the proposed target is or is not appropriate.
Do not propose SQL. Do not invent fields.

FIELDS:
{sanitize_json_for_prompt(fields)}

Respond with JSON only, in exactly this shape:
{{"suggestions": [{{"source_field": "...", "target_field": "...", "rationale": "...", "confidence": 0.0}}]}}"""

    def suggest(self, schema: SchemaContract, mappings: list[FieldMapping]) -> MappingSuggestionSet:
        """Ask the reasoning service about ``mappings``.

        Raises:
            ReasoningError: If the call fails
            ReasoningParseError: If the reply fails validation
        """
        try:
            prompt = self._construct_prompt(schema, mappings)
        except PromptSanitizationError as e:
            raise ReasoningError(f"Failed to build prompt: {e}") from e

        try:
            response = self.llm_client.complete(prompt, temperature=0.2)
        except LLMClientError as e:
            raise ReasoningError(f"Failed to call reasoning service: {e}") from e

        suggestions = parse_suggestions(response)
        logger.info(f"Reasoning service returned {len(suggestions.suggestions)} suggestion(s)")
        return suggestions


def apply_rationales(
    mappings: list[FieldMapping],
    suggestions: Optional[MappingSuggestionSet],
) -> list[FieldMapping]:
    """Attach suggested rationales to mappings they confirm.

    A suggestion whose target differs from the deterministic mapping is
    ignored (and logged); targets are never changed here.
    """
    if suggestions is None:
        return list(mappings)

    by_source = {s.source_field: s for s in suggestions.suggestions}
    result = []
    for mapping in mappings:
        suggestion = by_source.get(mapping.source_field)
        if suggestion is None:
            result.append(mapping)
        elif suggestion.target_field != mapping.target_field:
            logger.info(
                f"Ignoring suggested target '{suggestion.target_field}' for "
                f"'{mapping.source_field}' (mapped to '{mapping.target_field}')"
            )
            result.append(mapping)
        else:
            result.append(mapping.with_rationale(sanitize_string_for_prompt(suggestion.rationale, 1000)))
    return result
