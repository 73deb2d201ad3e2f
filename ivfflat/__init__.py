"""
ivfflat - IVF-Flat approximate nearest neighbor search over interleaved lists.

Example:
    >>> from ivfflat import IVFFlatIndex
    >>> import numpy as np
    >>> 
    >>> index = IVFFlatIndex(dimension=8, cluster_count=10, n_probe=10)
    >>> index.build(np.random.randn(1000, 8).astype(np.float32))
    >>> 
    >>> ids, distances = index.search(np.random.randn(8), k=5)
"""

from .core import (
    # Exceptions
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

from .layout import GroupedLayout, choose_veclen

from .index import (
    IVFFlatIndex,
    IndexState,
    InvertedList,
    Builder,
    BuildParams,
    FlatQuantizer,
    Searcher,
    SearchResult,
    SearchPhase,
    CancellationToken,
    brute_force_search,
)

from .distance import (
    get_metric,
    register_metric,
    list_metrics,
    DistanceMetric,
)

from .storage import save_index, load_index

__version__ = "0.1.0"

__all__ = [
    # Exceptions
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
    # Layout
    "GroupedLayout",
    "choose_veclen",
    # Index
    "IVFFlatIndex",
    "IndexState",
    "InvertedList",
    "Builder",
    "BuildParams",
    "FlatQuantizer",
    "Searcher",
    "SearchResult",
    "SearchPhase",
    "CancellationToken",
    "brute_force_search",
    # Distance
    "get_metric",
    "register_metric",
    "list_metrics",
    "DistanceMetric",
    # Persistence
    "save_index",
    "load_index",
]
