"""Anomaly detectors for Level 2 quality analysis.

Four independent, stateless detectors report on a single field's values:

- outliers (z-score)
- distribution shape (skewness)
- missing values
- cardinality

They never modify their input and never raise on malformed or degenerate
input; such input simply produces no findings.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

import numpy as np

from level2_quality import statistics
from pipeline_config.schema import AnomalyConfig

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(Severity).index(self)


class AnomalyType(str, Enum):
    OUTLIER_Z_SCORE = "OUTLIER_Z_SCORE"
    DISTRIBUTION_SKEW = "DISTRIBUTION_SKEW"
    EXCESSIVE_NULLS = "EXCESSIVE_NULLS"
    LOW_CARDINALITY = "LOW_CARDINALITY"
    HIGH_CARDINALITY = "HIGH_CARDINALITY"


@dataclass
class AnomalyFinding:
    """A single anomaly reported for a field.

    ``suggested_actions`` is ranked, most appropriate first.
    """

    field_name: str
    anomaly_type: AnomalyType
    severity: Severity
    description: str
    affected_records: list[str] = field(default_factory=list)
    suggested_actions: list[str] = field(default_factory=list)
    metrics: dict[str, float] = field(default_factory=dict)
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["anomaly_type"] = self.anomaly_type.value
        data["severity"] = self.severity.value
        return data


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value.strip() == ""


def _numeric_pairs(
    values: Sequence[Any], record_ids: Optional[Sequence[str]]
) -> tuple[np.ndarray, list[str]]:
    """Finite numeric values paired with their record ids; the rest is skipped."""
    numbers: list[float] = []
    ids: list[str] = []
    for position, value in enumerate(values):
        if _is_missing(value) or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(number):
            continue
        numbers.append(number)
        ids.append(str(record_ids[position]) if record_ids is not None else str(position))
    return np.asarray(numbers, dtype=float), ids


class AnomalyDetector:
    """Bundle of the four detectors sharing one threshold configuration.

    Args:
        config: Detector thresholds (defaults when omitted)
    """

    def __init__(self, config: Optional[AnomalyConfig] = None):
        self.config = config or AnomalyConfig()

    def detect_outliers(
        self,
        field_name: str,
        values: Sequence[Any],
        record_ids: Optional[Sequence[str]] = None,
    ) -> list[AnomalyFinding]:
        """Flag values whose z-score exceeds the threshold.

        Each value is scored against the mean and population std-dev of the
        other values (leave-one-out), not the plain ``|value - mean| / stddev``
        over the whole sequence. A single extreme value therefore cannot
        mask itself by inflating the spread: the 500 in
        ``[100, 102, 101, 103, 99, 100, 101, 102, 100, 500]`` scores about 3
        against the whole sequence and far above it here. The
        two rules disagree on borderline data; ``[0] * 18 + [1, 1]`` has a
        whole-sequence z of exactly 3.0 but is flagged here. When the other
        values have no spread the whole sequence is used as reference.

        Args:
            field_name: Field being analysed
            values: Numeric values; missing or non-numeric entries are skipped
            record_ids: Optional identifiers aligned with ``values``;
                positions are used otherwise

        Returns:
            One finding per outlying value
        """
        numbers, ids = _numeric_pairs(values, record_ids)
        n = numbers.size
        if n < 2:
            return []

        overall_mean = statistics.mean(numbers)
        overall_std = statistics.population_std_dev(numbers)
        if overall_std == 0:
            return []

        deviations = numbers - overall_mean
        sum_sq = float(np.sum(deviations**2))
        findings = []
        for position in range(n):
            d = float(deviations[position])
            ref_mean, ref_std = overall_mean, overall_std
            if n > 2:
                loo_shift = d / (n - 1)
                loo_var = (sum_sq - d * d) / (n - 1) - loo_shift * loo_shift
                loo_std = math.sqrt(max(loo_var, 0.0))
                if loo_std > overall_std * 1e-9:
                    ref_mean, ref_std = overall_mean - loo_shift, loo_std

            value = float(numbers[position])
            z = abs(value - ref_mean) / ref_std
            if z <= self.config.z_score_threshold:
                continue

            below = value < ref_mean
            severity = Severity.CRITICAL if z > self.config.critical_z_score else Severity.MEDIUM
            findings.append(
                AnomalyFinding(
                    field_name=field_name,
                    anomaly_type=AnomalyType.OUTLIER_Z_SCORE,
                    severity=severity,
                    description=(
                        f"Value {value:g} in '{field_name}' is {z:.2f} standard deviations "
                        f"{'below' if below else 'above'} the mean {ref_mean:.4g}"
                    ),
                    affected_records=[ids[position]],
                    suggested_actions=(
                        ["REPLACE_WITH_MEAN", "REPLACE_WITH_MEDIAN", "LOG_TRANSFORM"]
                        if below
                        else ["CAP_AT_THRESHOLD", "QUANTILE_NORMALIZE"]
                    ),
                    metrics={
                        "z_score": z,
                        "value": value,
                        "mean": ref_mean,
                        "stddev": ref_std,
                        "median": statistics.median(numbers),
                    },
                    confidence=min(1.0, z / 5.0),
                )
            )

        if findings:
            logger.debug(f"{len(findings)} outlier(s) in '{field_name}'")
        return findings

    def detect_distribution(self, field_name: str, values: Sequence[Any]) -> list[AnomalyFinding]:
        """Flag strongly skewed numeric distributions."""
        numbers, _ = _numeric_pairs(values, None)
        if numbers.size < self.config.min_distribution_sample:
            return []

        skew = statistics.skewness(numbers)
        if abs(skew) <= self.config.skewness_threshold:
            return []

        kurt = statistics.kurtosis(numbers)
        severity = Severity.HIGH if abs(skew) > self.config.high_skewness else Severity.MEDIUM
        direction = "right" if skew > 0 else "left"
        return [
            AnomalyFinding(
                field_name=field_name,
                anomaly_type=AnomalyType.DISTRIBUTION_SKEW,
                severity=severity,
                description=(
                    f"'{field_name}' is heavily {direction}-skewed "
                    f"(skewness={skew:.2f}, excess kurtosis={kurt:.2f})"
                ),
                suggested_actions=["LOG_TRANSFORM", "BOX_COX_TRANSFORM", "QUANTILE_NORMALIZATION"],
                metrics={"skewness": skew, "kurtosis": kurt, "sample_size": float(numbers.size)},
                confidence=0.85,
            )
        ]

    def detect_missing_values(
        self,
        field_name: str,
        values: Sequence[Any],
        record_ids: Optional[Sequence[str]] = None,
    ) -> list[AnomalyFinding]:
        """Flag fields whose share of missing values is excessive.

        ``None``, NaN and blank strings all count as missing.
        """
        total = len(values)
        if total == 0:
            return []

        missing_positions = [i for i, v in enumerate(values) if _is_missing(v)]
        null_percentage = len(missing_positions) * 100.0 / total
        if null_percentage <= self.config.null_percentage_threshold:
            return []

        severity = (
            Severity.CRITICAL
            if null_percentage > self.config.critical_null_percentage
            else Severity.HIGH
        )
        affected = [
            str(record_ids[i]) if record_ids is not None else str(i) for i in missing_positions
        ]
        return [
            AnomalyFinding(
                field_name=field_name,
                anomaly_type=AnomalyType.EXCESSIVE_NULLS,
                severity=severity,
                description=(
                    f"{null_percentage:.1f}% of '{field_name}' values are missing "
                    f"({len(missing_positions)} of {total})"
                ),
                affected_records=affected,
                suggested_actions=["REMOVE_FIELD", "IMPUTE_MEAN", "IMPUTE_MEDIAN", "IMPUTE_FORWARD_FILL"],
                metrics={
                    "null_percentage": null_percentage,
                    "null_count": float(len(missing_positions)),
                },
                confidence=0.95,
            )
        ]

    def detect_cardinality(self, field_name: str, values: Sequence[Any]) -> list[AnomalyFinding]:
        """Flag near-constant or near-unique categorical fields."""
        present = [str(v).strip() for v in values if not _is_missing(v)]
        total = len(present)
        if total == 0:
            return []

        unique_count = len(set(present))
        ratio = unique_count / total
        metrics = {"unique_count": float(unique_count), "cardinality_ratio": ratio}

        if ratio < self.config.low_cardinality_ratio and unique_count < self.config.low_cardinality_max_distinct:
            return [
                AnomalyFinding(
                    field_name=field_name,
                    anomaly_type=AnomalyType.LOW_CARDINALITY,
                    severity=Severity.MEDIUM,
                    description=(
                        f"'{field_name}' has only {unique_count} distinct value(s) "
                        f"across {total} records"
                    ),
                    suggested_actions=["DROP_FIELD", "CONSOLIDATE_CATEGORIES"],
                    metrics=metrics,
                    confidence=0.9,
                )
            ]

        if ratio > self.config.high_cardinality_ratio:
            return [
                AnomalyFinding(
                    field_name=field_name,
                    anomaly_type=AnomalyType.HIGH_CARDINALITY,
                    severity=Severity.LOW,
                    description=(
                        f"'{field_name}' is nearly unique per record "
                        f"({unique_count} distinct of {total})"
                    ),
                    suggested_actions=["HASH_ENCODING", "FREQUENCY_ENCODING"],
                    metrics=metrics,
                    confidence=0.85,
                )
            ]

        return []
