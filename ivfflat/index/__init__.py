"""
IVF-Flat index components.

Components:
    - InvertedList: one cluster's interleaved record storage
    - IndexState: centroids plus one inverted list per cluster
    - Builder: cluster assignment and list population
    - Searcher: probe/scan/merge top-k queries
    - IVFFlatIndex: the index facade tying them together

Example:
    >>> from ivfflat.index import IVFFlatIndex
    >>> 
    >>> index = IVFFlatIndex(dimension=128, cluster_count=100, n_probe=10)
    >>> index.build(vectors)
    >>> ids, distances = index.search(query, k=10)
"""

from .base import (
    INVALID_ID,
    IndexStats,
    SearchPhase,
    SearchResult,
)

from .inverted_list import InvertedList, ListSnapshot
from .quantizer import BuildParams, FlatQuantizer, KMeans, Quantizer, train_quantizer
from .state import IndexState
from .builder import Builder, build, extend
from .searcher import (
    CancellationToken,
    Searcher,
    TopKAccumulator,
    brute_force_search,
)
from .ivf_flat import IVFFlatIndex

__all__ = [
    # Base
    "INVALID_ID",
    "IndexStats",
    "SearchPhase",
    "SearchResult",
    # Storage of one cluster
    "InvertedList",
    "ListSnapshot",
    # Quantizer
    "BuildParams",
    "FlatQuantizer",
    "KMeans",
    "Quantizer",
    "train_quantizer",
    # Build
    "IndexState",
    "Builder",
    "build",
    "extend",
    # Search
    "CancellationToken",
    "Searcher",
    "TopKAccumulator",
    "brute_force_search",
    # Facade
    "IVFFlatIndex",
]
