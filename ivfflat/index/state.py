"""
Index state: centroids plus one inverted list per cluster.

The state is mutated only through :meth:`IndexState.add_to_lists` (used
by the builder) and :meth:`IndexState.clear`; searches only read it.
Every successful mutation bumps :attr:`IndexState.generation`, which
callers can use as a versioning barrier between writers and in-flight
searches.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    DuplicateIdError,
    OutOfRangeError,
    ValidationError,
)
from ..distance import get_metric
from ..layout import GroupedLayout, choose_veclen
from ..utils.logging import get_logger
from ..utils.validation import validate_dimension
from .base import IndexStats
from .inverted_list import InvertedList


logger = get_logger(__name__)


class IndexState:
    """
    Centroids and inverted lists of an IVF-Flat index.
    
    Example:
        >>> state = IndexState(dimension=8, centroids=np.zeros((4, 8)))
        >>> state.n_lists
        4
    """
    
    def __init__(
        self,
        dimension: int,
        centroids: NDArray,
        metric: str = "euclidean",
        layout: Optional[GroupedLayout] = None,
        dtype=np.float32,
    ):
        self.dimension = validate_dimension(dimension)
        self.metric = get_metric(metric).name
        self.dtype = np.dtype(dtype)
        self.layout = layout or GroupedLayout(veclen=choose_veclen(self.dimension, self.dtype))
        self.layout.validate(self.dimension)
        
        centroids = np.array(centroids, dtype=np.float32, copy=True)
        if centroids.ndim != 2 or centroids.shape[1] != self.dimension:
            raise ValidationError(
                f"Centroids must have shape (n, {self.dimension}), got {centroids.shape}"
            )
        if len(centroids) == 0:
            raise ValidationError("At least one centroid is required")
        centroids.setflags(write=False)
        self._centroids = centroids
        
        self._lists: List[InvertedList] = [
            InvertedList(c, self.dimension, self.layout, self.dtype)
            for c in range(len(centroids))
        ]
        
        # Stable id -> (cluster id, offset)
        self._id_map: Dict[int, Tuple[int, int]] = {}
        
        self.generation = 0
        self._lock = threading.RLock()
    
    @classmethod
    def from_quantizer(
        cls,
        quantizer,
        metric: str = "euclidean",
        layout: Optional[GroupedLayout] = None,
        dtype=np.float32,
    ) -> "IndexState":
        """
        Create an empty state holding a trained quantizer's centroids.
        
        Besides ``assign`` and ``centroid``, the quantizer must expose
        ``n_clusters``.
        
        Raises:
            ValidationError: If the quantizer has no ``n_clusters``
        """
        n_clusters = getattr(quantizer, "n_clusters", None)
        if n_clusters is None:
            raise ValidationError(
                f"Quantizer {type(quantizer).__name__} must expose n_clusters "
                f"alongside assign() and centroid()"
            )
        centroids = np.stack([quantizer.centroid(c) for c in range(n_clusters)])
        return cls(centroids.shape[1], centroids, metric=metric, layout=layout, dtype=dtype)
    
    @classmethod
    def from_lists(
        cls,
        centroids: NDArray,
        lists: List[InvertedList],
        metric: str = "euclidean",
        layout: Optional[GroupedLayout] = None,
        dtype=np.float32,
    ) -> "IndexState":
        """
        Assemble a state from restored lists, one per centroid in id order.
    
        Raises:
            ValidationError: If the lists don't line up with the centroids
        """
        centroids = np.asarray(centroids)
        state = cls(centroids.shape[1], centroids, metric=metric, layout=layout, dtype=dtype)
    
        if len(lists) != state.n_lists:
            raise ValidationError(f"Got {len(lists)} lists for {state.n_lists} centroids")
        for c, lst in enumerate(lists):
            if lst.cluster_id != c or lst.dimension != state.dimension or lst.layout != state.layout:
                raise ValidationError(f"List {lst.cluster_id} doesn't match cluster {c}")
    
        state._lists = list(lists)
        state._rebuild_id_map()
        return state
    
    # =========================================================================
    # PROPERTIES
    # =========================================================================
    
    @property
    def n_lists(self) -> int:
        return len(self._lists)
    
    @property
    def ntotal(self) -> int:
        return sum(lst.size for lst in self._lists)
    
    @property
    def is_empty(self) -> bool:
        return self.ntotal == 0
    
    @property
    def centroids(self) -> NDArray:
        """Read-only centroid matrix."""
        return self._centroids
    
    @property
    def lists(self) -> List[InvertedList]:
        return list(self._lists)
    
    def get_list(self, cluster_id: int) -> InvertedList:
        self._check_cluster(cluster_id)
        return self._lists[cluster_id]
    
    def centroid(self, cluster_id: int) -> NDArray:
        self._check_cluster(cluster_id)
        return self._centroids[cluster_id].copy()
    
    def list_sizes(self) -> NDArray:
        return np.array([lst.size for lst in self._lists], dtype=np.int64)
    
    def _check_cluster(self, cluster_id: int) -> None:
        if cluster_id < 0 or cluster_id >= len(self._lists):
            raise OutOfRangeError(
                f"Cluster id {cluster_id} out of range [0, {len(self._lists)})"
            )
    
    # =========================================================================
    # MUTATION
    # =========================================================================
    
    def add_to_lists(
        self,
        assignments: NDArray,
        vectors: NDArray,
        ids: NDArray,
    ) -> None:
        """
        Append records to their assigned lists, all or nothing.
        
        Within a cluster, records keep batch order, so earlier records get
        lower offsets. If any append fails, lists touched by this call are
        truncated back to their previous size before re-raising.
        
        Args:
            assignments: Cluster id per record
            vectors: Records (n, dimension)
            ids: Record ids (n,)
        """
        assignments = np.asarray(assignments, dtype=np.int64)
        ids = np.asarray(ids, dtype=np.int64)
        
        if not (len(assignments) == len(vectors) == len(ids)):
            raise ValidationError("assignments, vectors and ids must have equal length")
        if len(ids) == 0:
            return
        if assignments.min() < 0 or assignments.max() >= self.n_lists:
            raise OutOfRangeError(
                f"Assignment outside [0, {self.n_lists}): "
                f"[{assignments.min()}, {assignments.max()}]"
            )
        
        with self._lock:
            for id in ids.tolist():
                if id in self._id_map:
                    raise DuplicateIdError(f"ID {id} already exists in index")
            
            previous_sizes: Dict[int, int] = {}
            placed: List[Tuple[NDArray, int, NDArray]] = []
            
            try:
                for cluster_id in np.unique(assignments).tolist():
                    mask = assignments == cluster_id
                    lst = self._lists[cluster_id]
                    previous_sizes[cluster_id] = lst.size
                    offsets = lst.append_batch(vectors[mask], ids[mask])
                    placed.append((ids[mask], cluster_id, offsets))
            except BaseException:
                for cluster_id, size in previous_sizes.items():
                    self._lists[cluster_id].truncate(size)
                logger.error(f"Rolled back append to {len(previous_sizes)} lists")
                raise
            
            for cluster_ids, cluster_id, offsets in placed:
                for id, offset in zip(cluster_ids.tolist(), offsets.tolist()):
                    self._id_map[id] = (cluster_id, offset)
            
            self.generation += 1
    
    def clear(self) -> int:
        """Remove all records (keeps centroids)."""
        with self._lock:
            count = self.ntotal
            for lst in self._lists:
                lst.clear()
            self._id_map.clear()
            self.generation += 1
            return count
    
    # =========================================================================
    # LOOKUP
    # =========================================================================
    
    def contains(self, id: int) -> bool:
        return int(id) in self._id_map
    
    def existing_ids(self) -> set:
        return set(self._id_map)
    
    def next_id(self) -> int:
        """First id above every stored id (0 when empty)."""
        id_map = self._id_map
        return max(id_map) + 1 if id_map else 0
    
    def locate(self, id: int) -> Tuple[int, int]:
        """
        Return ``(cluster_id, offset)`` of a record.
        
        Raises:
            KeyError: If the id is not stored
        """
        try:
            return self._id_map[int(id)]
        except KeyError:
            raise KeyError(f"ID {id} not found in index") from None
    
    def reconstruct(self, id: int) -> NDArray:
        """Unpack the stored vector of a record id."""
        cluster_id, offset = self.locate(id)
        record, _ = self._lists[cluster_id].read(offset)
        return record
    
    def iter_records(self) -> Iterator[Tuple[int, NDArray, int]]:
        """Iterate over ``(cluster_id, vector, id)`` in cluster, offset order."""
        for lst in self._lists:
            for record, id in lst:
                yield lst.cluster_id, record, id
    
    def _rebuild_id_map(self) -> None:
        """Recompute the id map from list contents (used after loading)."""
        id_map: Dict[int, Tuple[int, int]] = {}
        for lst in self._lists:
            for offset, id in enumerate(lst.ids.tolist()):
                if id in id_map:
                    raise DuplicateIdError(f"ID {id} stored twice")
                id_map[id] = (lst.cluster_id, offset)
        self._id_map = id_map
    
    # =========================================================================
    # STATISTICS
    # =========================================================================
    
    def stats(self) -> IndexStats:
        """Get index statistics."""
        sizes = self.list_sizes()
        
        return IndexStats(
            dimension=self.dimension,
            metric=self.metric,
            dtype=self.dtype.name,
            vector_count=int(sizes.sum()),
            memory_bytes=self._centroids.nbytes + sum(lst.memory_bytes for lst in self._lists),
            n_clusters=self.n_lists,
            group_size=self.layout.group_size,
            veclen=self.layout.veclen,
            cluster_sizes=sizes,
            generation=self.generation,
        )
    
    def cluster_info(self) -> Dict[str, Any]:
        """
        Get detailed cluster information.
        
        Returns:
            Dictionary with per-cluster sizes and capacities, largest first
        """
        clusters = [
            {"cluster_id": lst.cluster_id, "size": lst.size, "capacity": lst.capacity}
            for lst in self._lists
        ]
        clusters.sort(key=lambda c: c["size"], reverse=True)
        
        sizes = self.list_sizes()
        
        return {
            "n_clusters": self.n_lists,
            "total_vectors": int(sizes.sum()),
            "clusters": clusters,
            "imbalance_ratio": float(sizes.max() / (sizes.mean() + 1e-8)),
        }
    
    def __repr__(self) -> str:
        return (
            f"IndexState(dimension={self.dimension}, metric='{self.metric}', "
            f"n_lists={self.n_lists}, ntotal={self.ntotal})"
        )
