"""
Utility modules for ugcall.

Provides logging, timing and log10-space math helpers.
"""

from .logging import setup_logging, timed
from .mathutils import (
    VALUE_NOT_CALCULATED,
    binomial_probability,
    log10_sum_log10,
    max_element_index,
    normalize_from_log10,
    phred_scale_error_rate,
)

__all__ = [
    "VALUE_NOT_CALCULATED",
    "binomial_probability",
    "log10_sum_log10",
    "max_element_index",
    "normalize_from_log10",
    "phred_scale_error_rate",
    "setup_logging",
    "timed",
]
