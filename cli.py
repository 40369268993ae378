"""Command-line interface for the ETL conductor.

This module provides the CLI entry point. It handles argument parsing,
configuration validation, and pipeline execution.

Commands:
    run      Run the full pipeline for one source file
    profile  Infer the schema of a file and scan it for anomalies
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from core.job import Job, JobStatus
from core.stages import build_conductor
from level1_ingestion.loader import DatasetLoadError, FileRecordSource
from level1_ingestion.schema_inferencer import infer_schema
from level2_quality.detectors import AnomalyDetector
from level2_quality.profiler import scan_frame, summarize_findings
from level5_audit.report import build_terminal_report
from pipeline_config.validator import (
    ConfigValidationError,
    apply_overrides,
    load_and_validate_config,
    validate_config,
)
from utils import (
    APP_NAME,
    APP_VERSION,
    EXIT_INVALID_CONFIG,
    EXIT_PIPELINE_FAILED,
    EXIT_RUNTIME_ERROR,
    EXIT_SUCCESS,
    get_logger,
    setup_logging,
)

logger = get_logger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description=f"{APP_NAME} - pipeline orchestration with data-quality checks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute", required=True)

    # 'run' command
    run_parser = subparsers.add_parser("run", help="Run the pipeline for a source file")
    run_parser.add_argument("--config", "-c", type=str, default=None, help="YAML or JSON configuration file")
    run_parser.add_argument("--source", "-s", type=str, default=None, help="Source file (overrides source.path)")
    run_parser.add_argument("--target-dataset", type=str, default=None, help="Target dataset name")
    run_parser.add_argument("--target-table", type=str, default=None, help="Target table name")
    run_parser.add_argument("--job-id", type=str, default=None, help="Existing job id (idempotent re-run)")
    run_parser.add_argument("--report", type=str, default=None, help="Also write the terminal report to this file")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    # 'profile' command
    profile_parser = subparsers.add_parser("profile", help="Infer schema and scan a file for anomalies")
    profile_parser.add_argument("source", type=str, help="CSV or Parquet file to profile")
    profile_parser.add_argument("--sample-size", type=int, default=10, help="Rows sampled for type inference")
    profile_parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace):
    if args.config:
        config = load_and_validate_config(args.config)
    elif args.source:
        config = validate_config({"source": {"path": args.source}})
    else:
        raise ConfigValidationError("Either --config or --source is required")

    return apply_overrides(
        config,
        **{
            "source.path": args.source,
            "target.dataset": args.target_dataset,
            "target.table": args.target_table,
        },
    )


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(args: argparse.Namespace) -> int:
    """Run the pipeline.

    Returns:
        Exit code: success, pipeline failed, or runtime error (rolled back)
    """
    try:
        config = _build_config(args)
    except ConfigValidationError as e:
        print(f"✗ Invalid configuration:\n{e}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    job = Job(
        source_path=config.source.path,
        target_dataset=config.target.dataset,
        target_table=config.target.table,
        job_id=args.job_id,
    )
    conductor = None
    try:
        conductor = build_conductor(config)
        job = conductor.run(job)
    except KeyboardInterrupt:
        print("\n✗ Pipeline interrupted by user", file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except Exception as e:
        logger.exception("Unexpected error during pipeline execution")
        print(f"✗ Runtime error: {e}", file=sys.stderr)
        if conductor is not None:
            job = conductor.final_state(job.job_id) or job
        _emit_report(job, args.report)
        return EXIT_RUNTIME_ERROR

    _emit_report(job, args.report)
    if job.status == JobStatus.COMPLETED:
        print(f"✓ Job {job.job_id} completed", file=sys.stderr)
        return EXIT_SUCCESS
    print(f"✗ Job {job.job_id} ended {job.status.value}", file=sys.stderr)
    return EXIT_PIPELINE_FAILED


def _emit_report(job: Job, report_path: Optional[str]) -> None:
    report = build_terminal_report(job)
    _print_json(report)
    if report_path:
        try:
            Path(report_path).write_text(json.dumps(report, indent=2, default=str), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write report to {report_path}: {e}")


def profile_command(args: argparse.Namespace) -> int:
    """Profile a file without running the pipeline."""
    try:
        batch = FileRecordSource().read(args.source)
    except DatasetLoadError as e:
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    schema = infer_schema(batch.frame, sample_size=args.sample_size, fingerprint=batch.fingerprint)
    record_ids = [f"row-{i + 1}" for i in range(len(batch.frame))]
    findings = scan_frame(batch.frame, schema, AnomalyDetector(), record_ids)
    _print_json(
        {
            "source": args.source,
            "rows": batch.total_rows,
            "schema": schema.to_dict(),
            "anomalies": [f.to_dict() for f in findings],
            "summary": dict(summarize_findings(findings)),
        }
    )
    return EXIT_SUCCESS


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    if args.command == "run":
        return run_command(args)
    if args.command == "profile":
        return profile_command(args)

    print(f"Unknown command: {args.command}", file=sys.stderr)
    return EXIT_RUNTIME_ERROR


if __name__ == "__main__":
    sys.exit(main())
