"""Record sources for Level 1 ingestion.

A record source turns a location token into a bounded, ordered batch of
rows whose values are raw strings, plus the total row count and a stable
content fingerprint. Values are never coerced here; type inference works
on the raw text.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional, Protocol

import pandas as pd

from utils import PathValidationError, get_logger, is_supported_dataset_format, validate_path_safe

logger = get_logger(__name__)


class DatasetLoadError(Exception):
    """Raised when dataset loading fails."""

    pass


@dataclass
class SourceBatch:
    """Rows read from a source.

    Attributes:
        frame: One column per field, all values raw strings ("" for missing)
        total_rows: Rows available at the source (may exceed ``len(frame)``
            when the read was bounded)
        fingerprint: SHA-256 hex digest of the source content
    """

    frame: pd.DataFrame
    total_rows: int
    fingerprint: str


class RecordSource(Protocol):
    def read(self, location: str) -> SourceBatch:
        ...


def fingerprint_frame(frame: pd.DataFrame) -> str:
    """Stable SHA-256 fingerprint of a frame's header and cell text."""
    digest = hashlib.sha256()
    digest.update("\x1f".join(str(c) for c in frame.columns).encode("utf-8"))
    for row in frame.itertuples(index=False, name=None):
        digest.update(b"\x1e")
        digest.update("\x1f".join(str(v) for v in row).encode("utf-8"))
    return digest.hexdigest()


def fingerprint_file(path: Path, chunk_size: int = 1 << 20) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class FileRecordSource:
    """Reads CSV or Parquet files with pandas.

    Args:
        max_rows: Optional bound on rows returned
        base_dir: Optional directory that every location must stay within
    """

    def __init__(self, max_rows: Optional[int] = None, base_dir: Optional[Path] = None):
        self.max_rows = max_rows
        self.base_dir = base_dir

    def read(self, location: str) -> SourceBatch:
        """Read a dataset file.

        Args:
            location: Path to a ``.csv`` or ``.parquet`` file

        Returns:
            SourceBatch with every value as a raw string

        Raises:
            DatasetLoadError: If the file is missing, unsupported or unreadable
        """
        try:
            file_path = validate_path_safe(
                location, base_dir=self.base_dir, must_exist=True, must_be_file=True
            )
        except PathValidationError as e:
            raise DatasetLoadError(f"Invalid dataset path: {e}") from e
        except FileNotFoundError as e:
            raise DatasetLoadError(f"Dataset file not found: {location}") from e

        suffix = file_path.suffix.lower()
        if not is_supported_dataset_format(file_path):
            raise DatasetLoadError(
                f"Unsupported file format: {suffix}. Supported formats: .csv, .parquet"
            )

        logger.info(f"Loading dataset from: {file_path}")

        try:
            if suffix == ".csv":
                frame = pd.read_csv(file_path, dtype=str, keep_default_na=False)
            else:
                frame = pd.read_parquet(file_path)
                frame = frame.astype(object).where(frame.notna(), "").astype(str)
        except OSError as e:
            raise DatasetLoadError(f"Failed to read dataset file {file_path}: I/O error: {e}") from e
        except pd.errors.EmptyDataError as e:
            raise DatasetLoadError(f"Dataset file is empty: {file_path}") from e
        except pd.errors.ParserError as e:
            raise DatasetLoadError(f"Failed to parse dataset file {file_path}: {e}") from e
        except ImportError as e:
            raise DatasetLoadError(
                f"Failed to load dataset {file_path}: Missing required library for {suffix} format: {e}"
            ) from e
        except (ValueError, MemoryError) as e:
            raise DatasetLoadError(f"Failed to load dataset {file_path}: {e}") from e

        frame.columns = [str(c) for c in frame.columns]
        total_rows = len(frame)
        if self.max_rows is not None and total_rows > self.max_rows:
            frame = frame.head(self.max_rows).reset_index(drop=True)
            logger.info(f"Read bounded to {self.max_rows} of {total_rows} rows")

        logger.info(f"Dataset loaded: {len(frame)} rows, {len(frame.columns)} columns")
        return SourceBatch(frame=frame, total_rows=total_rows, fingerprint=fingerprint_file(file_path))


class InMemoryRecordSource:
    """Serves rows registered under location tokens.

    Missing keys in a row are read as empty strings.
    """

    def __init__(self, datasets: Optional[Mapping[str, Iterable[Mapping[str, object]]]] = None):
        self._datasets: dict[str, list[dict[str, object]]] = {}
        for location, rows in (datasets or {}).items():
            self.register(location, rows)

    def register(self, location: str, rows: Iterable[Mapping[str, object]]) -> None:
        self._datasets[location] = [dict(r) for r in rows]

    def read(self, location: str) -> SourceBatch:
        if location not in self._datasets:
            raise DatasetLoadError(f"Unknown in-memory dataset: {location}")

        rows = self._datasets[location]
        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(str(key))

        frame = pd.DataFrame(
            [["" if row.get(c) is None else str(row.get(c)) for c in columns] for row in rows],
            columns=columns,
            dtype=str,
        )
        return SourceBatch(frame=frame, total_rows=len(frame), fingerprint=fingerprint_frame(frame))
