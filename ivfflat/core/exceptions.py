"""
Custom exceptions for ivfflat.
"""


class IVFFlatError(Exception):
    """Base exception for ivfflat."""
    pass


class ValidationError(IVFFlatError):
    """Input validation error."""
    pass


class DimensionMismatchError(ValidationError):
    """Vector length doesn't match the index dimension."""
    pass


class DuplicateIdError(ValidationError):
    """Record id is already stored in the index."""
    pass


class InvalidKError(ValidationError):
    """Requested number of neighbors is not positive."""
    pass


class InvalidNprobeError(ValidationError):
    """Number of probed clusters is not positive or exceeds the cluster count."""
    pass


class OutOfRangeError(IVFFlatError, IndexError):
    """Offset or cluster id outside the valid range."""
    pass


class EmptyIndexError(IVFFlatError):
    """Search was run on an index holding zero records."""
    pass


class IndexNotTrainedError(IVFFlatError):
    """Index requires training before use."""
    pass


class SearchCancelledError(IVFFlatError):
    """Search was abandoned by the caller before completion."""
    pass


class StorageError(IVFFlatError):
    """Error related to storage operations."""
    pass


class FormatMismatchError(StorageError):
    """Persisted layout is incompatible with the running configuration."""
    pass


class CorruptedDataError(StorageError):
    """Persisted file is truncated or fails its checksum."""
    pass
