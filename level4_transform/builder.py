"""Derives a ``TransformationSpec`` from the schema, mappings and findings."""

import logging
from typing import Optional, Sequence

from level1_ingestion.schema_inferencer import FieldType, PatternTag, SchemaContract
from level2_quality.detectors import AnomalyFinding, Severity
from level3_mapping.mapper import FieldMapping, key_fields
from level4_transform.spec import (
    AggregateFunction,
    AggregationRule,
    CleaningOp,
    CleaningRule,
    DedupConfig,
    NullHandling,
    Remediation,
    Survivorship,
    TransformationSpec,
)

logger = logging.getLogger(__name__)

_TYPE_OPERATIONS = {
    FieldType.INTEGER: (CleaningOp.PARSE_INTEGER,),
    FieldType.FLOAT: (CleaningOp.PARSE_NUMERIC,),
    FieldType.BOOLEAN: (CleaningOp.PARSE_BOOLEAN,),
    FieldType.DATE: (CleaningOp.PARSE_ISO_DATE,),
    FieldType.TIMESTAMP: (CleaningOp.PARSE_ISO_TIMESTAMP,),
    FieldType.EMAIL: (CleaningOp.LOWERCASE,),
    FieldType.UUID: (CleaningOp.LOWERCASE,),
}


def _is_measure(mapping: FieldMapping, schema: SchemaContract) -> bool:
    if not mapping.target_type.is_numeric or mapping.is_key:
        return False
    descriptor = schema.get(mapping.source_field)
    named_measure = descriptor is not None and descriptor.has_pattern(PatternTag.NUMERIC_MEASURE)
    return named_measure or mapping.canonical


def _cleaning_rule(mapping: FieldMapping, schema: SchemaContract) -> CleaningRule:
    operations = [CleaningOp.TRIM]
    if mapping.is_key and mapping.target_type == FieldType.STRING:
        operations.append(CleaningOp.UPPERCASE)
    operations.extend(_TYPE_OPERATIONS.get(mapping.target_type, ()))
    if mapping.target_type == FieldType.FLOAT and _is_measure(mapping, schema):
        operations.append(CleaningOp.ROUND_TO_2_DECIMALS)

    return CleaningRule(
        source_field=mapping.source_field,
        target_field=mapping.target_field,
        operations=tuple(operations),
        null_handling=NullHandling.REJECT if mapping.is_key else NullHandling.KEEP,
    )


def _dedup_config(mappings: Sequence[FieldMapping], schema: SchemaContract) -> DedupConfig:
    keys = key_fields(list(mappings))
    if not keys:
        # No key: only exact duplicates collapse
        return DedupConfig(key_fields=tuple(m.target_field for m in mappings))

    rules = []
    for mapping in mappings:
        if mapping.is_key:
            continue
        if mapping.target_type in (FieldType.DATE, FieldType.TIMESTAMP):
            rules.append((mapping.target_field, Survivorship.KEEP_LATEST))
        elif _is_measure(mapping, schema):
            rules.append((mapping.target_field, Survivorship.KEEP_MAX))
        else:
            rules.append((mapping.target_field, Survivorship.KEEP_FIRST))
    return DedupConfig(key_fields=tuple(keys), survivorship=tuple(rules))


def _remediations(
    mappings: Sequence[FieldMapping], anomalies: Sequence[AnomalyFinding]
) -> list[Remediation]:
    targets = {m.source_field: m.target_field for m in mappings}
    seen = set()
    remediations = []
    for finding in anomalies:
        if finding.severity.rank < Severity.HIGH.rank or not finding.suggested_actions:
            continue
        target = targets.get(finding.field_name, finding.field_name)
        key = (target, finding.anomaly_type.value)
        if key in seen:
            continue
        seen.add(key)
        remediations.append(
            Remediation(
                target_field=target,
                anomaly_type=finding.anomaly_type.value,
                severity=finding.severity.value,
                action=finding.suggested_actions[0],
            )
        )
    return remediations


def _aggregations(mappings: Sequence[FieldMapping], schema: SchemaContract) -> list[AggregationRule]:
    temporal = next(
        (m.target_field for m in mappings if m.target_type in (FieldType.DATE, FieldType.TIMESTAMP)),
        None,
    )
    group_by = (temporal,) if temporal else ()
    rules = [AggregationRule(name="record_count", function=AggregateFunction.COUNT, group_by=group_by)]
    for mapping in mappings:
        if _is_measure(mapping, schema):
            for function in (AggregateFunction.SUM, AggregateFunction.AVG):
                rules.append(
                    AggregationRule(
                        name=f"{function.value.lower()}_{mapping.target_field}",
                        function=function,
                        target_field=mapping.target_field,
                        group_by=group_by,
                    )
                )
    return rules


def build_transformation_spec(
    schema: SchemaContract,
    mappings: Sequence[FieldMapping],
    anomalies: Optional[Sequence[AnomalyFinding]] = None,
) -> TransformationSpec:
    """Build the transformation plan for a mapped schema.

    Args:
        schema: Inferred schema contract
        mappings: Field mappings (one per source field)
        anomalies: Findings from the anomaly scan, if already available

    Returns:
        TransformationSpec with cleaning, dedup, remediation and aggregation rules
    """
    spec = TransformationSpec(
        cleaning_rules=[_cleaning_rule(m, schema) for m in mappings],
        dedup=_dedup_config(mappings, schema),
        remediations=_remediations(mappings, anomalies or ()),
        aggregations=_aggregations(mappings, schema),
    )
    logger.info(
        f"Transformation spec {spec.spec_id}: {len(spec.cleaning_rules)} cleaning rules, "
        f"dedup on {list(spec.dedup.key_fields) if spec.dedup else []}, "
        f"{len(spec.remediations)} remediation(s), {len(spec.aggregations)} aggregation(s)"
    )
    return spec
