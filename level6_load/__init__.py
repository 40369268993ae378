"""Level 6: Load and lineage persistence.

This package provides the warehouse sinks, the lineage store used for the
idempotency check, and the job state store.
"""

from .job_store import InMemoryJobStore, JobStore, JobStoreError, JsonJobStore
from .lineage_store import (
    InMemoryLineageStore,
    JsonLinesLineageStore,
    LineageRecord,
    LineageStore,
    LineageStoreError,
)
from .warehouse import (
    InMemoryWarehouseSink,
    LoadResult,
    LocalWarehouseSink,
    WarehouseLoadError,
    WarehouseSink,
)

__all__ = [
    "InMemoryJobStore",
    "InMemoryLineageStore",
    "InMemoryWarehouseSink",
    "JobStore",
    "JobStoreError",
    "JsonJobStore",
    "JsonLinesLineageStore",
    "LineageRecord",
    "LineageStore",
    "LineageStoreError",
    "LoadResult",
    "LocalWarehouseSink",
    "WarehouseLoadError",
    "WarehouseSink",
]
