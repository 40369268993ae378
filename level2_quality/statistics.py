"""Numeric primitives shared by the anomaly detectors.

All functions work on population moments and return 0.0 for degenerate
input (fewer than two values, or zero spread) instead of raising.
"""

from typing import Iterable

import numpy as np
from scipy import stats


def _as_array(values: Iterable[float]) -> np.ndarray:
    array = np.asarray(list(values), dtype=float)
    return array[np.isfinite(array)]


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean, 0.0 for fewer than two values."""
    array = _as_array(values)
    if array.size < 2:
        return 0.0
    return float(np.mean(array))


def population_std_dev(values: Iterable[float]) -> float:
    """Population standard deviation (divides by n)."""
    array = _as_array(values)
    if array.size < 2:
        return 0.0
    return float(np.std(array, ddof=0))


def skewness(values: Iterable[float]) -> float:
    """Third standardized moment, ``mean(((x - mu) / sigma) ** 3)``."""
    array = _as_array(values)
    if array.size < 2 or np.std(array) == 0:
        return 0.0
    return float(stats.skew(array, bias=True))


def kurtosis(values: Iterable[float]) -> float:
    """Excess kurtosis: fourth standardized moment minus 3."""
    array = _as_array(values)
    if array.size < 2 or np.std(array) == 0:
        return 0.0
    return float(stats.kurtosis(array, fisher=True, bias=True))


def median(values: Iterable[float]) -> float:
    array = _as_array(values)
    if array.size == 0:
        return 0.0
    return float(np.median(array))
