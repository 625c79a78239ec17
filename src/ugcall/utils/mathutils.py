"""
Numerical helpers for log10-space probability arithmetic.
"""

import math
import sys

import numpy as np
from scipy.special import logsumexp
from scipy.stats import binom

__all__ = [
    "VALUE_NOT_CALCULATED",
    "binomial_probability",
    "log10_sum_log10",
    "max_element_index",
    "normalize_from_log10",
    "phred_scale_error_rate",
]

# Marks posterior entries that were never computed. Lower than any finite log10 probability.
VALUE_NOT_CALCULATED = -sys.float_info.max

_LN10 = math.log(10.0)


def phred_scale_error_rate(error_rate: float) -> float:
    """-10 * log10(error_rate); +inf when the rate is zero."""
    if error_rate <= 0.0:
        return math.inf
    return -10.0 * math.log10(error_rate)


def max_element_index(values: np.ndarray) -> int:
    """Index of the maximum value; the first one wins ties."""
    return int(np.argmax(values))


def normalize_from_log10(log10_values: np.ndarray) -> np.ndarray:
    """Convert log10 values into linear probabilities summing to 1."""
    values = np.asarray(log10_values, dtype=float)
    linear = np.power(10.0, values - values.max())
    return linear / linear.sum()


def log10_sum_log10(log10_values: np.ndarray, start: int = 0) -> float:
    """
    log10 of the sum of 10^x over ``log10_values[start:]``.

    Entries equal to :data:`VALUE_NOT_CALCULATED` are ignored; an empty
    selection yields -inf.
    """
    values = np.asarray(log10_values[start:], dtype=float)
    values = values[values != VALUE_NOT_CALCULATED]
    if values.size == 0:
        return -math.inf
    return float(logsumexp(values * _LN10) / _LN10)


def binomial_probability(k: int, n: int, p: float) -> float:
    """P(X = k) for X ~ Binomial(n, p)."""
    return float(binom.pmf(k, n, p))
