"""Canonical field mapping for Level 3.

Maps every inferred source field either onto a field of the canonical model
or, when nothing matches well enough, onto a pass-through snake_case name.
Each mapping carries a confidence score, a short rationale and the
validation rules later applied to every record.
"""

import logging
from dataclasses import dataclass, field, replace
from difflib import SequenceMatcher
from typing import Any, Optional

from level1_ingestion.normalizer import normalize_field_names, to_snake_case
from level1_ingestion.schema_inferencer import FieldDescriptor, FieldType, SchemaContract
from pipeline_config.schema import CanonicalFieldConfig, MappingConfig

logger = logging.getLogger(__name__)

EXACT_NAME_SCORE = 0.99
SYNONYM_SCORE = 0.95
FUZZY_WEIGHT = 0.9

# Whole snake_case tokens that mark a pass-through field as a record key
KEY_NAME_TOKENS = ("id", "key")


class MappingError(Exception):
    """Raised when a schema cannot be mapped."""

    pass


class RuleType:
    """Validation rule kinds."""

    NOT_NULL = "NOT_NULL"
    TYPE = "TYPE"
    LENGTH = "LENGTH"
    RANGE = "RANGE"


@dataclass(frozen=True)
class ValidationRule:
    """Declarative per-record rule on a mapped (target) field."""

    rule_type: str
    target_field: str
    parameters: tuple[tuple[str, Any], ...] = ()
    error_message: str = ""

    def param(self, name: str, default: Any = None) -> Any:
        return dict(self.parameters).get(name, default)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_type": self.rule_type,
            "target_field": self.target_field,
            "parameters": dict(self.parameters),
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class FieldMapping:
    """Source field -> target field decision."""

    source_field: str
    target_field: str
    target_type: FieldType
    confidence: float
    is_key: bool = False
    canonical: bool = False
    rationale: str = ""
    validation_rules: tuple[ValidationRule, ...] = field(default_factory=tuple)

    def with_rationale(self, rationale: str) -> "FieldMapping":
        return replace(self, rationale=rationale)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "target_type": self.target_type.value,
            "confidence": round(self.confidence, 4),
            "is_key": self.is_key,
            "canonical": self.canonical,
            "rationale": self.rationale,
            "validation_rules": [r.to_dict() for r in self.validation_rules],
        }


def _type_compatibility(source: FieldType, target: FieldType) -> float:
    if target == FieldType.STRING or source == target:
        return 1.0
    if source.is_numeric and target.is_numeric:
        return 1.0
    if {source, target} == {FieldType.DATE, FieldType.TIMESTAMP}:
        return 0.95
    return 0.7


def _has_key_name(name: str) -> bool:
    """True when a whole name token is ``id`` or ``key`` (``customer_id``, not ``provider``)."""
    return any(token in KEY_NAME_TOKENS for token in to_snake_case(name).split("_"))


def _build_rules(
    target_field: str,
    target_type: FieldType,
    is_key: bool,
    enforce_type: bool,
    canonical: Optional[CanonicalFieldConfig] = None,
) -> tuple[ValidationRule, ...]:
    rules = []
    if is_key:
        rules.append(
            ValidationRule(RuleType.NOT_NULL, target_field, error_message=f"{target_field} is required")
        )
    if enforce_type and target_type != FieldType.STRING:
        rules.append(
            ValidationRule(
                RuleType.TYPE,
                target_field,
                (("type", target_type.value),),
                f"{target_field} must be a valid {target_type.value}",
            )
        )
    if canonical is not None and canonical.max_length is not None:
        rules.append(
            ValidationRule(
                RuleType.LENGTH,
                target_field,
                (("max", canonical.max_length),),
                f"{target_field} exceeds {canonical.max_length} characters",
            )
        )
    if canonical is not None and canonical.min_value is not None:
        rules.append(
            ValidationRule(
                RuleType.RANGE,
                target_field,
                (("min", canonical.min_value),),
                f"{target_field} must be >= {canonical.min_value:g}",
            )
        )
    return tuple(rules)


class FieldMapper:
    """Deterministic mapper from a schema contract onto the canonical model.

    Args:
        config: Canonical model and minimum match confidence
    """

    def __init__(self, config: Optional[MappingConfig] = None):
        self.config = config or MappingConfig()
        self.canonical = {c.name: c for c in self.config.canonical_fields}

    def score(self, descriptor: FieldDescriptor, canonical: CanonicalFieldConfig) -> tuple[float, str]:
        """Match score of a source field against one canonical field, with the reason."""
        normalized = to_snake_case(descriptor.name)
        target_type = FieldType(canonical.type)
        compat = _type_compatibility(descriptor.inferred_type, target_type)

        if normalized == canonical.name:
            return EXACT_NAME_SCORE * compat, "exact name match"

        synonyms = [to_snake_case(s) for s in canonical.synonyms]
        if normalized in synonyms:
            return SYNONYM_SCORE * compat, f"synonym '{normalized}'"

        best = max(
            SequenceMatcher(None, normalized, candidate).ratio()
            for candidate in [canonical.name, *synonyms]
        )
        return best * FUZZY_WEIGHT * compat, f"name similarity {best:.2f}"

    def map_schema(self, schema: SchemaContract) -> list[FieldMapping]:
        """Map every field of ``schema``.

        Candidate pairs are assigned greedily by descending score so each
        canonical field receives at most one source field; the losers of a
        conflict fall back to pass-through.

        Returns:
            One mapping per source field, in schema order

        Raises:
            MappingError: If the schema has no fields
        """
        if not schema.fields:
            raise MappingError("Schema has no fields to map")

        candidates = []
        for position, descriptor in enumerate(schema.fields):
            for canonical in self.canonical.values():
                score, reason = self.score(descriptor, canonical)
                if score >= self.config.min_confidence:
                    candidates.append((score, position, canonical.name, reason))
        candidates.sort(key=lambda c: (-c[0], c[1]))

        assigned: dict[str, tuple[str, float, str]] = {}
        taken: set[str] = set()
        for score, position, canonical_name, reason in candidates:
            source = schema.fields[position].name
            if source in assigned or canonical_name in taken:
                if source not in assigned:
                    logger.debug(f"'{source}' lost '{canonical_name}' to a higher-scoring field")
                continue
            assigned[source] = (canonical_name, score, reason)
            taken.add(canonical_name)

        passthrough_names = normalize_field_names(schema.field_names)
        mappings = []
        for descriptor in schema.fields:
            if descriptor.name in assigned:
                canonical_name, score, reason = assigned[descriptor.name]
                mappings.append(self._canonical_mapping(descriptor, self.canonical[canonical_name], score, reason))
            else:
                target = passthrough_names[descriptor.name]
                while target in taken:
                    target = f"{target}_src"
                taken.add(target)
                mappings.append(self._passthrough_mapping(descriptor, target))

        canonical_count = sum(1 for m in mappings if m.canonical)
        logger.info(
            f"Mapped {len(mappings)} fields: {canonical_count} canonical, "
            f"{len(mappings) - canonical_count} pass-through"
        )
        return mappings

    def _canonical_mapping(
        self,
        descriptor: FieldDescriptor,
        canonical: CanonicalFieldConfig,
        score: float,
        reason: str,
    ) -> FieldMapping:
        target_type = FieldType(canonical.type)
        return FieldMapping(
            source_field=descriptor.name,
            target_field=canonical.name,
            target_type=target_type,
            confidence=min(1.0, score),
            is_key=canonical.is_key,
            canonical=True,
            rationale=(
                f"'{descriptor.name}' ({descriptor.inferred_type.value}) maps to canonical "
                f"'{canonical.name}' ({canonical.type}) by {reason}"
            ),
            validation_rules=_build_rules(
                canonical.name, target_type, canonical.is_key, enforce_type=True, canonical=canonical
            ),
        )

    def _passthrough_mapping(self, descriptor: FieldDescriptor, target: str) -> FieldMapping:
        is_key = (
            _has_key_name(descriptor.name)
            and descriptor.sample_distinct
            and descriptor.inferred_type in (FieldType.INTEGER, FieldType.STRING, FieldType.UUID)
        )
        # Only enforce a type inferred from a sample with no dissenting values
        enforce_type = descriptor.confidence + descriptor.null_percentage >= 0.999
        return FieldMapping(
            source_field=descriptor.name,
            target_field=target,
            target_type=descriptor.inferred_type,
            confidence=descriptor.confidence,
            is_key=is_key,
            canonical=False,
            rationale=(
                f"No canonical field matched '{descriptor.name}' above "
                f"{self.config.min_confidence:.2f}; passed through as '{target}'"
            ),
            validation_rules=_build_rules(target, descriptor.inferred_type, is_key, enforce_type),
        )


def key_fields(mappings: list[FieldMapping]) -> list[str]:
    """Target names of the key fields."""
    return [m.target_field for m in mappings if m.is_key]
