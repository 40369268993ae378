"""Concrete pipeline stages.

Each stage wraps one level of the pipeline behind the ``Stage`` contract:

    INGESTION -> SCHEMA_INFERENCE -> FIELD_MAPPING -> TRANSFORMATION
        -> VALIDATION -> LOAD -> AUDIT

Collaborator failures are turned into ``StageError`` so the orchestrator
can retry them. Failures that another attempt cannot fix (no fields to
map, a breached error-rate or quality threshold) are raised as
non-retryable.
"""

import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from core.job import ErrorRecord, Job, JobStatus
from core.orchestrator import Conductor
from core.retry import RetryPolicy
from core.stage import Stage, StageError
from level1_ingestion.loader import DatasetLoadError, FileRecordSource, RecordSource
from level1_ingestion.schema_inferencer import (
    SchemaContract,
    detect_schema_drift,
    infer_schema,
    load_schema_contract,
)
from level2_quality.detectors import AnomalyDetector
from level2_quality.profiler import scan_frame
from level3_mapping.agent import MappingReasoner, ReasoningError, apply_rationales
from level3_mapping.mapper import FieldMapper, MappingError
from level4_transform.builder import build_transformation_spec
from level4_transform.executor import TransformationError, TransformationExecutor, compute_aggregations
from level4_transform.validation import RecordValidator
from level5_audit.report import AuditReportError, AuditReportWriter
from level5_audit.scorer import QualityScorer
from level6_load.job_store import JsonJobStore
from level6_load.lineage_store import JsonLinesLineageStore
from level6_load.warehouse import LocalWarehouseSink, WarehouseLoadError, WarehouseSink
from pipeline_config.schema import AnomalyConfig, MappingConfig, PipelineConfig, QualityConfig
from utils import generate_version, get_llm_client, get_logger
from utils.constants import (
    DATASET_VERSION_PREFIX,
    DEFAULT_SAMPLE_SIZE,
    MAPPING_VERSION_PREFIX,
    STEP_AUDIT,
    STEP_FIELD_MAPPING,
    STEP_INGESTION,
    STEP_LOAD,
    STEP_SCHEMA_INFERENCE,
    STEP_TRANSFORMATION,
    STEP_VALIDATION,
)

logger = get_logger(__name__)


def _require_frame(job: Job, stage: str):
    if job.frame is None:
        raise StageError(f"{stage} requires ingested records", retryable=False)
    return job.frame


class IngestionStage(Stage):
    """Reads the source records into the job."""

    name = "ingestion"
    step = STEP_INGESTION
    additive = True

    def __init__(self, source: RecordSource):
        self.source = source

    def execute(self, job: Job) -> Job:
        try:
            batch = self.source.read(job.source_path)
        except DatasetLoadError as e:
            raise StageError(f"Could not read source {job.source_path}: {e}") from e

        job.frame = batch.frame
        job.fingerprint = batch.fingerprint
        job.statistics.increment("total_records_read", len(batch.frame))
        return job


class SchemaInferenceStage(Stage):
    """Infers the schema contract and profiles the raw records.

    The anomaly scan runs on the raw values so its findings can shape the
    transformation plan.
    """

    name = "schema_inference"
    step = STEP_SCHEMA_INFERENCE
    completes_status = JobStatus.SCHEMA_DISCOVERED

    def __init__(
        self,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        anomaly_config: Optional[AnomalyConfig] = None,
        baseline: Optional[SchemaContract] = None,
    ):
        self.sample_size = sample_size
        self.detector = AnomalyDetector(anomaly_config)
        self.baseline = baseline

    def execute(self, job: Job) -> Job:
        frame = _require_frame(job, self.name)
        if len(frame.columns) == 0:
            raise StageError("Source has no fields", retryable=False)

        workers = self.detector.config.max_workers
        schema = infer_schema(frame, self.sample_size, job.fingerprint, max_workers=workers)
        job.schema = schema

        if self.baseline is not None:
            job.schema_drift = detect_schema_drift(self.baseline, schema)
            for drift in job.schema_drift:
                logger.warning(f"Schema drift: {drift.describe()}")

        record_ids = [f"row-{i + 1}" for i in range(len(frame))]
        job.anomalies = scan_frame(frame, schema, self.detector, record_ids, max_workers=workers)
        job.dataset_version = generate_version(DATASET_VERSION_PREFIX)
        return job


class FieldMappingStage(Stage):
    """Maps source fields onto the canonical model.

    The reasoning service, when configured, may only enrich the rationale
    of mappings it agrees with. Its failures never fail the stage.
    """

    name = "field_mapping"
    step = STEP_FIELD_MAPPING
    completes_status = JobStatus.MAPPED

    def __init__(self, config: Optional[MappingConfig] = None, reasoner: Optional[MappingReasoner] = None):
        self.mapper = FieldMapper(config)
        self.reasoner = reasoner

    def execute(self, job: Job) -> Job:
        if job.schema is None:
            raise StageError("Field mapping requires a schema contract", retryable=False)
        try:
            mappings = self.mapper.map_schema(job.schema)
        except MappingError as e:
            raise StageError(f"Field mapping failed: {e}", retryable=False) from e

        if self.reasoner is not None:
            try:
                suggestions = self.reasoner.suggest(job.schema, mappings)
                mappings = apply_rationales(mappings, suggestions)
            except ReasoningError as e:
                logger.warning(f"Reasoning service unavailable, keeping deterministic rationales: {e}")

        job.mappings = mappings
        job.mapping_version = generate_version(MAPPING_VERSION_PREFIX)
        return job


class TransformationStage(Stage):
    """Builds the transformation plan and applies it."""

    name = "transformation"
    step = STEP_TRANSFORMATION
    completes_status = JobStatus.TRANSFORMED

    def execute(self, job: Job) -> Job:
        frame = _require_frame(job, self.name)
        if job.schema is None or not job.mappings:
            raise StageError("Transformation requires a schema and field mappings", retryable=False)

        spec = build_transformation_spec(job.schema, job.mappings, job.anomalies)
        try:
            result = TransformationExecutor(spec).apply(frame)
        except TransformationError as e:
            raise StageError(f"Transformation failed: {e}") from e

        job.transform_spec = spec
        job.frame = result.frame
        job.record_errors(result.errors)
        job.statistics.increment("total_records_rejected", result.rejected)
        job.statistics.increment("total_records_deduplicated", result.deduplicated)
        return job


class ValidationStage(Stage):
    """Applies the mapping validation rules to every record.

    Invalid records are rejected and reported. When the share of rejected
    records exceeds ``max_error_rate`` the stage fails without retry.
    """

    name = "validation"
    step = STEP_VALIDATION
    completes_status = JobStatus.VALIDATED

    def __init__(self, quality: Optional[QualityConfig] = None):
        self.quality = quality or QualityConfig()

    def execute(self, job: Job) -> Job:
        frame = _require_frame(job, self.name)
        result = RecordValidator(job.mappings).validate(frame)

        error_rate = result.rejected / len(frame) if len(frame) else 0.0
        if error_rate > self.quality.max_error_rate:
            raise StageError(
                f"Error rate {error_rate:.1%} exceeds the maximum of {self.quality.max_error_rate:.1%} "
                f"({result.rejected} of {len(frame)} records invalid)",
                retryable=False,
                errors=result.errors,
            )

        job.frame = result.frame
        job.record_errors(result.errors)
        job.statistics.increment("total_records_rejected", result.rejected)
        return job


class LoadStage(Stage):
    """Loads the validated records into the warehouse sink."""

    name = "load"
    step = STEP_LOAD
    completes_status = JobStatus.LOADED

    def __init__(self, sink: WarehouseSink):
        self.sink = sink

    def execute(self, job: Job) -> Job:
        frame = _require_frame(job, self.name)
        columns = {m.target_field: m.target_type.value for m in job.mappings}
        try:
            result = self.sink.load(job.target_dataset, job.target_table, columns, frame, job.job_id)
        except WarehouseLoadError as e:
            raise StageError(f"Load into {job.target_dataset}.{job.target_table} failed: {e}") from e

        job.load_location = result.location
        job.statistics.increment("total_records_loaded", result.records_loaded)
        if job.transform_spec is not None:
            job.aggregates = compute_aggregations(frame, job.transform_spec.aggregations)
        return job


class AuditStage(Stage):
    """Scores the job and writes its audit log.

    Scores are advisory unless a minimum is configured; a job below a
    configured minimum fails here without retry.
    """

    name = "audit"
    step = STEP_AUDIT

    def __init__(self, quality: Optional[QualityConfig] = None, writer: Optional[AuditReportWriter] = None):
        self.quality = quality or QualityConfig()
        self.writer = writer
        self.scorer = QualityScorer()

    def execute(self, job: Job) -> Job:
        if self.writer is not None:
            job.audit_log_path = str(self.writer.path_for(job.job_id))

        scores = self.scorer.score(job)
        job.quality = scores
        logger.info(
            f"Scorecard: data quality {scores.data_quality_score:.2f}, "
            f"compliance {scores.compliance_score:.2f}"
        )

        if self.writer is not None:
            try:
                self.writer.write(job, scores)
            except AuditReportError as e:
                raise StageError(str(e)) from e

        if not scores.passes(self.quality.min_quality_score, self.quality.min_compliance_score):
            raise StageError(
                f"Quality gate not met: data quality {scores.data_quality_score:.2f} "
                f"(min {self.quality.min_quality_score}), compliance {scores.compliance_score:.2f} "
                f"(min {self.quality.min_compliance_score})",
                retryable=False,
                errors=[
                    ErrorRecord(
                        record_id=f"job:{job.job_id}",
                        field_name=None,
                        error_type="QUALITY_GATE",
                        message="Scorecard below the configured minimum",
                    )
                ],
            )
        return job


def build_default_stages(
    config: PipelineConfig,
    source: Optional[RecordSource] = None,
    sink: Optional[WarehouseSink] = None,
    reasoner: Optional[MappingReasoner] = None,
    baseline_schema: Optional[SchemaContract] = None,
) -> list[Stage]:
    """The standard stage list for ``config``, in execution order.

    Args:
        config: Validated pipeline configuration
        source: Record source (file source bounded by ``source.max_rows`` by default)
        sink: Warehouse sink (local warehouse under ``target.warehouse_dir`` by default)
        reasoner: Optional reasoning service adapter for mapping rationales
        baseline_schema: Schema to check for drift (loaded from
            ``baseline_schema_path`` when configured)
    """
    source = source or FileRecordSource(max_rows=config.source.max_rows)
    sink = sink or LocalWarehouseSink(config.target.warehouse_dir)
    if baseline_schema is None and config.baseline_schema_path:
        baseline_schema = load_schema_contract(config.baseline_schema_path)
    writer = AuditReportWriter(config.audit.output_dir) if config.audit.output_dir else None

    return [
        IngestionStage(source),
        SchemaInferenceStage(config.source.sample_size, config.anomaly, baseline_schema),
        FieldMappingStage(config.mapping, reasoner),
        TransformationStage(),
        ValidationStage(config.quality),
        LoadStage(sink),
        AuditStage(config.quality, writer),
    ]


def build_reasoner(config: PipelineConfig) -> Optional[MappingReasoner]:
    """Reasoning adapter when enabled and an LLM client is available."""
    if not config.llm.enabled:
        return None
    client = get_llm_client(config.llm.provider)
    if client is None:
        logger.warning("LLM reasoning enabled but no client is available; continuing without it")
        return None
    return MappingReasoner(client)


def build_conductor(
    config: PipelineConfig,
    stages: Optional[Sequence[Stage]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Conductor:
    """Conductor wired with the configured retry policy and stores."""
    lineage_store = JsonLinesLineageStore(config.lineage_store_path) if config.lineage_store_path else None
    job_store = JsonJobStore(Path(config.job_store_dir)) if config.job_store_dir else None
    return Conductor(
        stages if stages is not None else build_default_stages(config, reasoner=build_reasoner(config)),
        retry_policy=RetryPolicy.from_config(config.retry, sleep=sleep),
        lineage_store=lineage_store,
        job_store=job_store,
    )
