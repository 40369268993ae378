"""Applies a ``TransformationSpec`` to records (Level 4).

Cleaning works column-wise with pandas. A value that fails to parse is left
as trimmed text so validation can reject the record with the original
value attached. The frame index is the source row position throughout,
which keeps synthetic record ids stable across stages.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np
import pandas as pd

from core.job import ErrorRecord
from level4_transform.spec import (
    AggregateFunction,
    AggregationRule,
    CleaningOp,
    CleaningRule,
    DedupConfig,
    NullHandling,
    Survivorship,
    TransformationSpec,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "yes", "1", "y", "t"}
_FALSE_VALUES = {"false", "no", "0", "n", "f"}
_DATE_FALLBACK_FORMATS = ("%Y/%m/%d", "%Y%m%d", "%d.%m.%Y")


class TransformationError(Exception):
    """Raised when a transformation spec cannot be applied."""

    pass


@dataclass
class TransformResult:
    frame: pd.DataFrame
    errors: list[ErrorRecord] = field(default_factory=list)
    rejected: int = 0
    deduplicated: int = 0


def record_ids(frame: pd.DataFrame, key_fields: Sequence[str] = ()) -> list[str]:
    """Record identifiers: the key values when all are present, else ``row-<n>``."""
    keys = [k for k in key_fields if k in frame.columns]
    ids = []
    for position, (index, row) in enumerate(frame.iterrows()):
        values = [str(row[k]) for k in keys]
        if keys and all(v.strip() for v in values):
            ids.append("|".join(values))
        else:
            row_number = index + 1 if isinstance(index, (int, np.integer)) else position + 1
            ids.append(f"row-{row_number}")
    return ids


def _parse_numbers(series: pd.Series) -> pd.Series:
    cleaned = series.str.replace(",", "", regex=False)
    numbers = pd.to_numeric(cleaned.where(cleaned != ""), errors="coerce")
    return numbers.where(np.isfinite(numbers))


def _parse_dates(series: pd.Series) -> pd.Series:
    parsed = pd.to_datetime(series.where(series != ""), errors="coerce", format="ISO8601")
    for fmt in _DATE_FALLBACK_FORMATS:
        missing = parsed.isna() & (series != "")
        if not missing.any():
            break
        parsed = parsed.fillna(pd.to_datetime(series.where(missing), errors="coerce", format=fmt))
    return parsed


def apply_operation(series: pd.Series, op: CleaningOp) -> pd.Series:
    """Apply one cleaning operation to a column of strings ("" = null)."""
    if op == CleaningOp.TRIM:
        return series.str.strip()
    if op == CleaningOp.UPPERCASE:
        return series.str.upper()
    if op == CleaningOp.LOWERCASE:
        return series.str.lower()

    out = series.copy()
    if op == CleaningOp.PARSE_INTEGER:
        ok = series.str.fullmatch(r"[+-]?\d+")
        out[ok] = series[ok].map(lambda v: str(int(v)))
    elif op == CleaningOp.PARSE_NUMERIC:
        numbers = _parse_numbers(series)
        ok = numbers.notna()
        out[ok] = numbers[ok].map(lambda v: repr(float(v)))
    elif op == CleaningOp.ROUND_TO_2_DECIMALS:
        numbers = _parse_numbers(series)
        ok = numbers.notna()
        out[ok] = numbers[ok].map(lambda v: f"{round(float(v), 2):.2f}")
    elif op == CleaningOp.PARSE_BOOLEAN:
        lowered = series.str.lower()
        out[lowered.isin(_TRUE_VALUES)] = "true"
        out[lowered.isin(_FALSE_VALUES)] = "false"
    elif op == CleaningOp.PARSE_ISO_DATE:
        parsed = _parse_dates(series)
        ok = parsed.notna()
        out[ok] = parsed[ok].dt.strftime("%Y-%m-%d")
    elif op == CleaningOp.PARSE_ISO_TIMESTAMP:
        parsed = pd.to_datetime(series.where(series != ""), errors="coerce", format="ISO8601", utc=True)
        ok = parsed.notna()
        out[ok] = parsed[ok].dt.strftime("%Y-%m-%dT%H:%M:%SZ")
    else:
        raise TransformationError(f"Unsupported cleaning operation: {op}")
    return out


def _survivor_value(values: pd.Series, rule: Survivorship) -> Any:
    present = values[values != ""]
    if present.empty:
        return values.iloc[0]
    if rule == Survivorship.KEEP_FIRST:
        return present.iloc[0]
    if rule == Survivorship.KEEP_LAST:
        return present.iloc[-1]
    if rule == Survivorship.KEEP_LATEST:
        # ISO dates/timestamps order lexicographically
        return present.max()
    numbers = _parse_numbers(present)
    if numbers.notna().any():
        position = numbers.idxmax() if rule == Survivorship.KEEP_MAX else numbers.idxmin()
        return present[position]
    return present.max() if rule == Survivorship.KEEP_MAX else present.min()


def deduplicate(frame: pd.DataFrame, dedup: DedupConfig) -> tuple[pd.DataFrame, int]:
    """Collapse records sharing the key fields, applying survivorship per field.

    The survivor keeps the index (source position) of the first duplicate.

    Returns:
        (deduplicated frame, number of records removed)
    """
    keys = [k for k in dedup.key_fields if k in frame.columns]
    if frame.empty or not keys:
        return frame, 0

    groups = frame.groupby(keys, sort=False, dropna=False).indices
    if len(groups) == len(frame):
        return frame, 0

    survivors = []
    for positions in groups.values():
        group = frame.iloc[positions]
        if len(group) == 1:
            survivors.append(group.iloc[0])
            continue
        survivor = group.iloc[0].copy()
        for column in frame.columns:
            if column not in keys:
                survivor[column] = _survivor_value(group[column], dedup.rule_for(column))
        survivors.append(survivor)

    result = pd.DataFrame(survivors, columns=frame.columns)
    result = result.sort_index()
    return result, len(frame) - len(result)


def compute_aggregations(frame: pd.DataFrame, rules: Sequence[AggregationRule]) -> dict[str, Any]:
    """Evaluate aggregation rules on cleaned records.

    Returns:
        ``{rule name: value}`` for ungrouped rules, ``{rule name: {group: value}}``
        for grouped ones
    """
    results: dict[str, Any] = {}
    for rule in rules:
        group_by = [g for g in rule.group_by if g in frame.columns]
        if rule.function == AggregateFunction.COUNT:
            column = pd.Series(1, index=frame.index)
        elif rule.target_field in frame.columns:
            column = _parse_numbers(frame[rule.target_field].astype(str))
        else:
            continue

        how = {
            AggregateFunction.COUNT: "count",
            AggregateFunction.SUM: "sum",
            AggregateFunction.AVG: "mean",
            AggregateFunction.MIN: "min",
            AggregateFunction.MAX: "max",
        }[rule.function]

        if group_by:
            grouped = column.groupby([frame[g] for g in group_by], sort=True).agg(how)
            results[rule.name] = {
                str(k if not isinstance(k, tuple) else "|".join(map(str, k))): _plain(v)
                for k, v in grouped.items()
            }
        else:
            results[rule.name] = _plain(column.agg(how))
    return results


def _plain(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    return round(float(value), 6)


class TransformationExecutor:
    """Applies cleaning, null handling and deduplication.

    Args:
        spec: Transformation plan
    """

    def __init__(self, spec: TransformationSpec):
        self.spec = spec

    def apply(self, frame: pd.DataFrame) -> TransformResult:
        """Transform raw records into target records.

        Steps:
        1. Rename source fields to their targets (unmapped fields are dropped)
        2. Clean each field and apply its null handling; rejected records
           get one error record per offending field
        3. Deduplicate on the key fields

        Raises:
            TransformationError: If a mapped source field is missing
        """
        missing = [r.source_field for r in self.spec.cleaning_rules if r.source_field not in frame.columns]
        if missing:
            raise TransformationError(f"Source fields missing from records: {missing}")

        renames = self.spec.renames
        work = frame[list(renames)].rename(columns=renames).astype(str)

        rejected_mask = pd.Series(False, index=work.index)
        errors: list[ErrorRecord] = []
        key_fields = self.spec.dedup.key_fields if self.spec.dedup else ()

        for rule in self.spec.cleaning_rules:
            column = work[rule.target_field]
            for op in rule.operations:
                column = apply_operation(column, op)
            work[rule.target_field] = column
            rejected_mask = rejected_mask | self._handle_nulls(work, rule, errors, key_fields)

        rejected = int(rejected_mask.sum())
        kept = work[~rejected_mask]

        deduplicated = 0
        if self.spec.dedup is not None:
            kept, deduplicated = deduplicate(kept, self.spec.dedup)

        logger.info(
            f"Transformation applied: {len(frame)} in, {len(kept)} out "
            f"({rejected} rejected, {deduplicated} deduplicated)"
        )
        return TransformResult(frame=kept, errors=errors, rejected=rejected, deduplicated=deduplicated)

    @staticmethod
    def _handle_nulls(
        work: pd.DataFrame,
        rule: CleaningRule,
        errors: list[ErrorRecord],
        key_fields: Sequence[str],
    ) -> pd.Series:
        """Fill or reject empty values of one field; returns the rows to reject."""
        nulls = work[rule.target_field] == ""
        if not nulls.any() or rule.null_handling == NullHandling.KEEP:
            return pd.Series(False, index=work.index)

        if rule.null_handling == NullHandling.ZERO:
            work.loc[nulls, rule.target_field] = "0"
        elif rule.null_handling == NullHandling.FILL_UNKNOWN:
            work.loc[nulls, rule.target_field] = "UNKNOWN"
        elif rule.null_handling == NullHandling.REJECT:
            ids = record_ids(work[nulls], key_fields)
            errors.extend(
                ErrorRecord(
                    record_id=record_id,
                    field_name=rule.target_field,
                    error_type="MISSING_REQUIRED_VALUE",
                    message=f"{rule.target_field} is empty and records without it are rejected",
                    raw_value="",
                )
                for record_id in ids
            )
            return nulls
        return pd.Series(False, index=work.index)
