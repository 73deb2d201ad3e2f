"""
Core definitions shared by every ivfflat module.
"""

from .exceptions import (
    IVFFlatError,
    ValidationError,
    DimensionMismatchError,
    DuplicateIdError,
    InvalidKError,
    InvalidNprobeError,
    OutOfRangeError,
    EmptyIndexError,
    IndexNotTrainedError,
    SearchCancelledError,
    StorageError,
    FormatMismatchError,
    CorruptedDataError,
)

__all__ = [
    "IVFFlatError",
    "ValidationError",
    "DimensionMismatchError",
    "DuplicateIdError",
    "InvalidKError",
    "InvalidNprobeError",
    "OutOfRangeError",
    "EmptyIndexError",
    "IndexNotTrainedError",
    "SearchCancelledError",
    "StorageError",
    "FormatMismatchError",
    "CorruptedDataError",
]
