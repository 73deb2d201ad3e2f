"""
Builder: populate an index state from batches of vectors.

``build`` trains (or accepts) a quantizer and fills fresh lists;
``extend`` assigns new vectors to the existing clusters and appends them
without moving any stored record. Centroids are fixed at the last
(re)build: ``extend`` never re-clusters or rebalances.
"""

from __future__ import annotations

import time
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import DimensionMismatchError, ValidationError
from ..distance import get_metric
from ..layout import GroupedLayout, choose_veclen
from ..utils.batching import iter_slices
from ..utils.logging import get_logger
from ..utils.validation import validate_ids, validate_vectors
from .quantizer import BuildParams, FlatQuantizer, train_quantizer
from .state import IndexState


logger = get_logger(__name__)


class Builder:
    """
    Assigns vectors to clusters and appends them to inverted lists.
    
    Example:
        >>> builder = Builder(metric="euclidean")
        >>> state = builder.build(vectors, ids, BuildParams(cluster_count=10))
        >>> builder.extend(state, more_vectors, more_ids)
    """
    
    def __init__(
        self,
        metric: str = "euclidean",
        group_size: int = 32,
        veclen: Optional[int] = None,
        dtype=np.float32,
        add_batch_size: int = 65536,
    ):
        self.metric = get_metric(metric).name
        self.group_size = group_size
        self.veclen = veclen
        self.dtype = np.dtype(dtype)
        self.add_batch_size = add_batch_size
    
    def layout_for(self, dimension: int) -> GroupedLayout:
        """Layout used for lists of the given dimension."""
        veclen = self.veclen or choose_veclen(dimension, self.dtype)
        layout = GroupedLayout(self.group_size, veclen)
        layout.validate(dimension)
        return layout
    
    def build(
        self,
        vectors: NDArray,
        ids: Optional[NDArray] = None,
        params: Optional[BuildParams] = None,
        quantizer=None,
    ) -> IndexState:
        """
        Build a new index state.
        
        Args:
            vectors: Build set (n, dimension)
            ids: Record ids (defaults to 0..n-1)
            params: Training parameters, used when no quantizer is given
            quantizer: Pre-trained quantizer (``assign``, ``centroid`` and
                ``n_clusters``)
            
        Returns:
            Populated IndexState
        """
        vectors = np.asarray(vectors, dtype=self.dtype)
        if vectors.ndim != 2:
            raise ValidationError(f"Vectors must be 2D, got {vectors.ndim}D")
        
        dimension = vectors.shape[1]
        layout = self.layout_for(dimension)
        
        if quantizer is None:
            if len(vectors) == 0:
                raise ValidationError("Cannot build an index from zero vectors without a quantizer")
            quantizer = train_quantizer(vectors, params or BuildParams(), self.metric)
        
        quantizer_dimension = len(quantizer.centroid(0))
        if quantizer_dimension != dimension:
            raise DimensionMismatchError(
                f"Vector dimension {dimension} != quantizer dimension {quantizer_dimension}"
            )
        
        state = IndexState.from_quantizer(quantizer, self.metric, layout, self.dtype)
        self.extend(state, vectors, ids, quantizer=quantizer)
        return state
    
    def extend(
        self,
        state: IndexState,
        vectors: NDArray,
        ids: Optional[NDArray] = None,
        quantizer=None,
    ) -> int:
        """
        Assign and append vectors to an existing state.
        
        Args:
            state: Index state to grow
            vectors: New records (n, dimension)
            ids: Record ids (defaults to max stored id + 1, +2, ...)
            quantizer: Quantizer to assign with (defaults to one built
                from the state's centroids)
            
        Returns:
            Number of records added
            
        Raises:
            DimensionMismatchError: If a vector's length differs from the
                state's dimension
        """
        vectors = validate_vectors(vectors, state.dimension, state.dtype)
        n = len(vectors)
        
        if ids is None:
            first = state.next_id()
            ids = np.arange(first, first + n, dtype=np.int64)
        ids = validate_ids(ids, n, state.existing_ids())
        
        if n == 0:
            return 0
        
        if quantizer is None:
            quantizer = FlatQuantizer(state.centroids, state.metric)
        
        start = time.time()
        assignments = np.empty(n, dtype=np.int64)
        if hasattr(quantizer, "assign_batch"):
            for lo, hi in iter_slices(n, self.add_batch_size):
                assignments[lo:hi] = quantizer.assign_batch(vectors[lo:hi])
        else:
            for i in range(n):
                assignments[i] = quantizer.assign(vectors[i])
        
        state.add_to_lists(assignments, vectors, ids)
        
        logger.info(
            f"Added {n} vectors to {len(np.unique(assignments))} lists "
            f"in {time.time() - start:.3f}s (ntotal={state.ntotal})"
        )
        return n


def build(
    vectors: NDArray,
    ids: Optional[NDArray] = None,
    params: Optional[BuildParams] = None,
    metric: str = "euclidean",
    quantizer=None,
    group_size: int = 32,
    veclen: Optional[int] = None,
) -> IndexState:
    """
    Convenience function to build an index state.
    
    Example:
        >>> state = build(vectors, params=BuildParams(cluster_count=10, training_ratio=2))
    """
    builder = Builder(metric=metric, group_size=group_size, veclen=veclen)
    return builder.build(vectors, ids, params=params, quantizer=quantizer)


def extend(
    state: IndexState,
    vectors: NDArray,
    ids: Optional[NDArray] = None,
    quantizer=None,
) -> int:
    """Convenience function to extend an existing index state."""
    builder = Builder(
        metric=state.metric,
        group_size=state.layout.group_size,
        veclen=state.layout.veclen,
        dtype=state.dtype,
    )
    return builder.extend(state, vectors, ids, quantizer=quantizer)
