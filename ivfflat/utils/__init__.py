"""
Utility functions for ivfflat.
"""

from .validation import (
    validate_dimension,
    validate_vector,
    validate_vectors,
    validate_ids,
    is_power_of_two,
)
from .batching import iter_slices, parallel_map
from .logging import setup_logger, get_logger, LogContext, log_duration

__all__ = [
    "validate_dimension",
    "validate_vector",
    "validate_vectors",
    "validate_ids",
    "is_power_of_two",
    "iter_slices",
    "parallel_map",
    "setup_logger",
    "get_logger",
    "LogContext",
    "log_duration",
]
