"""Warehouse sinks for Level 6.

A sink creates the target dataset/table if absent and bulk-loads the rows
of one job. Loads are keyed by job id, so repeating a load for the same
job replaces that job's rows instead of duplicating them.
"""

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

import pandas as pd

from utils import (
    PathValidationError,
    ensure_directory,
    get_logger,
    sanitize_path_component,
    validate_output_path,
)

logger = get_logger(__name__)


class WarehouseLoadError(Exception):
    """Raised when a load cannot be performed."""

    pass


@dataclass(frozen=True)
class LoadResult:
    records_loaded: int
    location: str


class WarehouseSink(Protocol):
    def load(
        self,
        dataset: str,
        table: str,
        columns: dict[str, str],
        frame: pd.DataFrame,
        job_id: str,
    ) -> LoadResult:
        ...


def _require_target(dataset: Optional[str], table: Optional[str]) -> tuple[str, str]:
    if not dataset or not table:
        raise WarehouseLoadError(
            f"Target dataset and table are required (got dataset={dataset!r}, table={table!r})"
        )
    return dataset, table


class LocalWarehouseSink:
    """File-backed warehouse: ``<root>/<dataset>/<table>/<job_id>.csv``.

    The table directory carries a ``_schema.json`` written on first load.
    A later load whose columns disagree with it is rejected.
    """

    def __init__(self, root: str | Path):
        try:
            self.root = validate_output_path(root)
        except PathValidationError as e:
            raise WarehouseLoadError(f"Invalid warehouse root {root}: {e}") from e
        self._lock = threading.Lock()

    def table_dir(self, dataset: str, table: str) -> Path:
        return self.root / sanitize_path_component(dataset) / sanitize_path_component(table)

    def _ensure_table(self, table_dir: Path, columns: dict[str, str]) -> None:
        schema_path = table_dir / "_schema.json"
        if schema_path.exists():
            with open(schema_path, "r", encoding="utf-8") as f:
                existing = json.load(f)
            if list(existing) != list(columns):
                raise WarehouseLoadError(
                    f"Column mismatch for {table_dir}: table has {list(existing)}, "
                    f"load has {list(columns)}"
                )
            return
        ensure_directory(table_dir)
        with open(schema_path, "w", encoding="utf-8") as f:
            json.dump(columns, f, indent=2)
        logger.info(f"Created table {table_dir.parent.name}.{table_dir.name}")

    def load(
        self,
        dataset: str,
        table: str,
        columns: dict[str, str],
        frame: pd.DataFrame,
        job_id: str,
    ) -> LoadResult:
        """Create the table if absent and write the job's rows.

        Args:
            dataset: Target dataset
            table: Target table
            columns: Ordered column name -> type tag
            frame: Rows to load
            job_id: Idempotency key of the load

        Returns:
            LoadResult with the number of rows written

        Raises:
            WarehouseLoadError: If the target is missing or the write fails
        """
        dataset, table = _require_target(dataset, table)
        table_dir = self.table_dir(dataset, table)
        path = table_dir / f"{sanitize_path_component(job_id)}.csv"
        with self._lock:
            try:
                self._ensure_table(table_dir, columns)
                replacing = path.exists()
                frame.to_csv(path, index=False, columns=list(columns))
            except (OSError, json.JSONDecodeError, KeyError) as e:
                raise WarehouseLoadError(f"Failed to load {dataset}.{table}: {e}") from e

        if replacing:
            logger.info(f"Replaced earlier load of job {job_id} in {dataset}.{table}")
        logger.info(f"Loaded {len(frame)} records into {dataset}.{table}")
        return LoadResult(records_loaded=len(frame), location=str(path))


class InMemoryWarehouseSink:
    """Keeps loaded frames in memory, keyed by target and job id."""

    def __init__(self):
        self.tables: dict[tuple[str, str], dict[str, Any]] = {}
        self.loads: dict[tuple[str, str], dict[str, pd.DataFrame]] = {}
        self._lock = threading.Lock()

    def load(
        self,
        dataset: str,
        table: str,
        columns: dict[str, str],
        frame: pd.DataFrame,
        job_id: str,
    ) -> LoadResult:
        key = _require_target(dataset, table)
        with self._lock:
            self.tables.setdefault(key, dict(columns))
            self.loads.setdefault(key, {})[job_id] = frame.copy()
        return LoadResult(records_loaded=len(frame), location=f"memory://{key[0]}/{key[1]}/{job_id}")

    def rows(self, dataset: str, table: str) -> int:
        with self._lock:
            return sum(len(f) for f in self.loads.get((dataset, table), {}).values())
