"""
IVF-Flat Index.

IVF-Flat partitions the vector space with k-means, stores every vector
uncompressed in the inverted list of its nearest centroid, and at query
time scans only the ``n_probe`` lists whose centroids are closest to the
query.

Lists keep their records in an interleaved layout: records are packed in
groups of ``group_size`` and, inside a group, ``veclen`` consecutive
components of one record sit next to the same slice of the other records.
A scan can then evaluate one dimension slice for a whole group at once.

Key Features:
    - Exact distances on the probed lists (no compression)
    - Tunable accuracy vs speed tradeoff (n_probe)
    - Incremental additions after training (clusters stay fixed)
    - Deterministic results: ties are broken by ascending id
    - Binary save/load that restores lists without re-packing

Example:
    >>> index = IVFFlatIndex(dimension=128, cluster_count=256, n_probe=16)
    >>> index.build(vectors)
    >>> ids, distances = index.search(query, k=10)
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    DimensionMismatchError,
    IndexNotTrainedError,
    InvalidNprobeError,
)
from ..distance import get_metric
from ..layout import GroupedLayout
from ..storage import load_index, save_index
from ..utils.logging import get_logger, log_duration, setup_logger
from .base import SearchResult
from .builder import Builder
from .quantizer import BuildParams, FlatQuantizer, train_quantizer
from .searcher import CancellationToken, Searcher
from .state import IndexState


logger = get_logger(__name__)


class IVFFlatIndex:
    """
    Inverted file index over uncompressed, interleaved vectors.
    
    Searches run without taking the index lock and read each list through
    a published snapshot; ``train``, ``build``, ``add`` and ``reset`` are
    serialized against each other.
    
    Example:
        >>> index = IVFFlatIndex(dimension=8, cluster_count=10)
        >>> index.build(vectors, ids)
        >>> index.set_n_probe(10)
        >>> ids, distances = index.search(query, k=5)
    """
    
    def __init__(
        self,
        dimension: int,
        metric: str = "euclidean",
        cluster_count: int = 100,
        n_probe: int = 10,
        group_size: int = 32,
        veclen: Optional[int] = None,
        training_ratio: int = 2,
        seed: Optional[int] = None,
        num_threads: int = 1,
        dtype=np.float32,
        n_iter: int = 20,
        n_redo: int = 1,
        min_points_per_centroid: int = 39,
        max_points_per_centroid: int = 256,
        add_batch_size: int = 65536,
        k: int = 10,
        allow_partial: bool = False,
    ):
        """
        Initialize IVF-Flat index.
        
        Args:
            dimension: Vector dimension
            metric: Distance metric name or alias
            cluster_count: Number of clusters (inverted lists)
            n_probe: Default number of clusters scanned per query
            group_size: Records per interleaved group (power of two)
            veclen: Components stored contiguously per record inside a
                group (None picks one from the element type)
            training_ratio: K-means trains on 1/training_ratio of the build set
            seed: Random seed for training
            num_threads: Threads used for list scans and batch queries
            dtype: Element type of stored vectors
            k: Default number of results per query
            allow_partial: Default for returning best-effort results from
                cancelled searches
        """
        if n_probe < 1:
            raise InvalidNprobeError(f"n_probe must be >= 1, got {n_probe}")
        
        self._metric = get_metric(metric).name
        self._n_probe = n_probe
        self.num_threads = max(1, num_threads)
        self.default_k = k
        self.allow_partial = allow_partial
        
        self.params = BuildParams(
            cluster_count=cluster_count,
            training_ratio=training_ratio,
            n_iter=n_iter,
            n_redo=n_redo,
            min_points_per_centroid=min_points_per_centroid,
            max_points_per_centroid=max_points_per_centroid,
            seed=seed,
        )
        
        self._builder = Builder(
            metric=self._metric,
            group_size=group_size,
            veclen=veclen,
            dtype=dtype,
            add_batch_size=add_batch_size,
        )
        self._layout = self._builder.layout_for(dimension)
        self._dimension = dimension
        
        self._state: Optional[IndexState] = None
        self._quantizer: Optional[FlatQuantizer] = None
        self._searcher: Optional[Searcher] = None
        
        self._lock = threading.RLock()
    
    @classmethod
    def from_settings(cls, settings) -> "IVFFlatIndex":
        """Create an index from a :class:`config.Settings` object."""
        setup_logger(level=settings.log_level)
        return cls(
            dimension=settings.dimension,
            metric=settings.metric,
            cluster_count=settings.build.cluster_count,
            n_probe=settings.search.n_probe,
            group_size=settings.layout.group_size,
            veclen=settings.layout.veclen,
            training_ratio=settings.build.training_ratio,
            seed=settings.build.seed,
            num_threads=settings.search.num_threads,
            dtype=settings.dtype,
            n_iter=settings.build.n_iter,
            n_redo=settings.build.n_redo,
            min_points_per_centroid=settings.build.min_points_per_centroid,
            max_points_per_centroid=settings.build.max_points_per_centroid,
            add_batch_size=settings.build.add_batch_size,
            k=settings.search.k,
            allow_partial=settings.search.allow_partial,
        )
    
    # =========================================================================
    # PROPERTIES
    # =========================================================================
    
    @property
    def dimension(self) -> int:
        return self._dimension
    
    @property
    def metric(self) -> str:
        return self._metric
    
    @property
    def layout(self):
        return self._layout
    
    @property
    def ntotal(self) -> int:
        state = self._state
        return state.ntotal if state is not None else 0
    
    @property
    def n_clusters(self) -> int:
        state = self._state
        return state.n_lists if state is not None else 0
    
    @property
    def n_probe(self) -> int:
        return self._n_probe
    
    @property
    def state(self) -> Optional[IndexState]:
        return self._state
    
    @property
    def centroids(self) -> Optional[NDArray]:
        state = self._state
        return state.centroids if state is not None else None
    
    def is_trained(self) -> bool:
        return self._state is not None
    
    def set_n_probe(self, n_probe: int) -> None:
        """
        Set number of clusters to search.
        
        Args:
            n_probe: Number of clusters (1 to cluster count once trained)
        """
        if n_probe < 1:
            raise InvalidNprobeError(f"n_probe must be >= 1, got {n_probe}")
        if self._state is not None and n_probe > self._state.n_lists:
            raise InvalidNprobeError(
                f"n_probe {n_probe} exceeds cluster count {self._state.n_lists}"
            )
        
        self._n_probe = n_probe
        if self._searcher is not None:
            self._searcher.n_probe = n_probe
    
    def _require_trained(self) -> IndexState:
        state = self._state
        if state is None:
            raise IndexNotTrainedError("Index must be trained first")
        return state
    
    def _check_build_vectors(self, vectors: NDArray) -> NDArray:
        vectors = np.asarray(vectors, dtype=self._builder.dtype)
        if vectors.ndim == 2 and vectors.shape[1] != self._dimension:
            raise DimensionMismatchError(
                f"Vector dimension {vectors.shape[1]} != index dimension {self._dimension}"
            )
        return vectors
    
    def _install(self, state: IndexState) -> None:
        self._state = state
        self._quantizer = FlatQuantizer(state.centroids, state.metric)
        self._searcher = Searcher(state, self._n_probe, self.num_threads)
        if self._n_probe > state.n_lists:
            logger.warning(
                f"n_probe {self._n_probe} exceeds cluster count {state.n_lists}, "
                f"using {state.n_lists}"
            )
            self._n_probe = self._searcher.n_probe = state.n_lists
    
    # =========================================================================
    # TRAINING AND BUILD
    # =========================================================================
    
    def train(self, vectors: NDArray) -> None:
        """
        Train cluster centroids; the index holds no records afterwards.
        
        Args:
            vectors: Training vectors (n, dimension)
        """
        vectors = self._check_build_vectors(vectors)
        with self._lock:
            quantizer = train_quantizer(vectors, self.params, self._metric)
            self._install(
                IndexState.from_quantizer(quantizer, self._metric, self._layout, self._builder.dtype)
            )
    
    def build(
        self,
        vectors: NDArray,
        ids: Optional[NDArray] = None,
        quantizer=None,
    ) -> None:
        """
        Train (unless a quantizer is given) and populate the index.
        
        Args:
            vectors: Build set (n, dimension)
            ids: Record ids (defaults to 0..n-1)
            quantizer: Pre-trained quantizer to use instead of k-means
                (``assign``, ``centroid`` and ``n_clusters``)
        """
        vectors = self._check_build_vectors(vectors)
        
        with self._lock, log_duration(logger, f"Built index from {len(vectors)} vectors"):
            state = self._builder.build(vectors, ids, self.params, quantizer)
            self._install(state)
    
    def add(self, vectors: NDArray, ids: Optional[NDArray] = None) -> int:
        """
        Add vectors to the trained index.
        
        Args:
            vectors: Vectors (n, dimension) or a single vector
            ids: Record ids (defaults to max stored id + 1, +2, ...)
            
        Returns:
            Number of vectors added
        """
        with self._lock:
            state = self._require_trained()
            return self._builder.extend(state, vectors, ids, quantizer=self._quantizer)
    
    # =========================================================================
    # SEARCH OPERATIONS
    # =========================================================================
    
    def search_result(
        self,
        query: NDArray,
        k: Optional[int] = None,
        n_probe: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
        allow_partial: Optional[bool] = None,
        raise_on_empty: bool = False,
    ) -> SearchResult:
        """Search and return the full :class:`SearchResult`."""
        self._require_trained()
        return self._searcher.search(
            query,
            k=self.default_k if k is None else k,
            n_probe=n_probe,
            cancel=cancel,
            allow_partial=self.allow_partial if allow_partial is None else allow_partial,
            raise_on_empty=raise_on_empty,
        )
    
    def search(
        self,
        query: NDArray,
        k: Optional[int] = None,
        n_probe: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
        allow_partial: Optional[bool] = None,
    ) -> Tuple[NDArray, NDArray]:
        """
        Search for the k nearest neighbors of one query.
        
        Args:
            query: Query vector
            k: Number of results (defaults to the index default)
            n_probe: Override number of clusters to search
            
        Returns:
            Tuple of (ids, distances), both of length k
        """
        result = self.search_result(
            query, k=k, n_probe=n_probe, cancel=cancel, allow_partial=allow_partial
        )
        return result.ids, result.distances
    
    def search_batch(
        self,
        queries: NDArray,
        k: Optional[int] = None,
        n_probe: Optional[int] = None,
    ) -> Tuple[NDArray, NDArray]:
        """
        Search for multiple queries.
        
        Returns:
            Tuple of (ids, distances) arrays of shape (n_queries, k);
            unused slots hold id -1
        """
        self._require_trained()
        k = self.default_k if k is None else k
        results = self._searcher.search_batch(queries, k=k, n_probe=n_probe)
        
        if not results:
            return (
                np.empty((0, k), dtype=np.int64),
                np.empty((0, k), dtype=np.float32),
            )
        
        ids = np.stack([r.ids for r in results])
        distances = np.stack([r.distances for r in results])
        return ids, distances
    
    # =========================================================================
    # RECORD ACCESS
    # =========================================================================
    
    def reconstruct(self, id: int) -> NDArray:
        """
        Return the stored vector of a record id.
        
        Raises:
            KeyError: If the id is not in the index
        """
        return self._require_trained().reconstruct(id)
    
    def contains(self, id: int) -> bool:
        state = self._state
        return state is not None and state.contains(id)
    
    def assign_cluster(self, vector: NDArray) -> int:
        """Get the cluster assignment for a vector."""
        self._require_trained()
        return self._quantizer.assign(np.asarray(vector, dtype=np.float32))
    
    def get_centroid(self, cluster_id: int) -> NDArray:
        return self._require_trained().centroid(cluster_id)
    
    def get_cluster_info(self) -> Dict[str, Any]:
        return self._require_trained().cluster_info()
    
    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    
    def clear(self) -> int:
        """Remove all records but keep the trained centroids."""
        with self._lock:
            state = self._state
            return state.clear() if state is not None else 0
    
    def reset(self) -> None:
        """Reset index to untrained state."""
        with self._lock:
            self._state = None
            self._quantizer = None
            self._searcher = None
    
    def stats(self) -> Dict[str, Any]:
        """Get index statistics."""
        state = self._state
        if state is None:
            return {
                "index_type": "ivf_flat",
                "dimension": self._dimension,
                "metric": self._metric,
                "vector_count": 0,
                "is_trained": False,
                "n_probe": self._n_probe,
            }
        
        stats = state.stats().to_dict()
        stats["n_probe"] = self._n_probe
        return stats
    
    # =========================================================================
    # PERSISTENCE
    # =========================================================================
    
    def _params_dict(self) -> Dict[str, Any]:
        return {
            "cluster_count": self.params.cluster_count,
            "training_ratio": self.params.training_ratio,
            "n_iter": self.params.n_iter,
            "n_redo": self.params.n_redo,
            "min_points_per_centroid": self.params.min_points_per_centroid,
            "max_points_per_centroid": self.params.max_points_per_centroid,
            "seed": self.params.seed,
            "n_probe": self._n_probe,
            "num_threads": self.num_threads,
            "k": self.default_k,
            "allow_partial": self.allow_partial,
        }
    
    def save(self, path: Union[str, Path]) -> int:
        """
        Save the index to a file.
        
        Returns:
            Number of bytes written
        """
        with self._lock:
            state = self._require_trained()
            return save_index(state, path, self._params_dict())
    
    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        num_threads: Optional[int] = None,
        expected_layout: Optional[GroupedLayout] = None,
        expected_dimension: Optional[int] = None,
        settings=None,
    ) -> "IVFFlatIndex":
        """
        Load an index saved with :meth:`save`.
        
        Args:
            path: Saved index file
            num_threads: Override the saved thread count
            expected_layout: Layout the caller runs with
            expected_dimension: Dimension the caller runs with
            settings: :class:`config.Settings` to check the file against;
                its dimension and layout fill in whichever expectation is
                not given explicitly
            
        Raises:
            FormatMismatchError: If the file's layout or dimension disagrees
                with the expected ones
        """
        if settings is not None:
            if expected_dimension is None:
                expected_dimension = settings.dimension
            if expected_layout is None:
                expected_layout = Builder(
                    group_size=settings.layout.group_size,
                    veclen=settings.layout.veclen,
                    dtype=settings.dtype,
                ).layout_for(settings.dimension)
        
        state, params = load_index(
            path,
            expected_layout=expected_layout,
            expected_dimension=expected_dimension,
        )
        
        index = cls(
            dimension=state.dimension,
            metric=state.metric,
            cluster_count=params.get("cluster_count", state.n_lists),
            n_probe=params.get("n_probe", 10),
            group_size=state.layout.group_size,
            veclen=state.layout.veclen,
            training_ratio=params.get("training_ratio", 2),
            seed=params.get("seed"),
            num_threads=num_threads or params.get("num_threads", 1),
            dtype=state.dtype,
            n_iter=params.get("n_iter", 20),
            n_redo=params.get("n_redo", 1),
            min_points_per_centroid=params.get("min_points_per_centroid", 39),
            max_points_per_centroid=params.get("max_points_per_centroid", 256),
            k=params.get("k", 10),
            allow_partial=params.get("allow_partial", False),
        )
        index._install(state)
        return index
    
    # =========================================================================
    # MAGIC METHODS
    # =========================================================================
    
    def __len__(self) -> int:
        return self.ntotal
    
    def __contains__(self, id: int) -> bool:
        return self.contains(id)
    
    def __repr__(self) -> str:
        return (
            f"IVFFlatIndex(dimension={self._dimension}, metric='{self._metric}', "
            f"n_clusters={self.n_clusters}, n_probe={self._n_probe}, "
            f"size={self.ntotal})"
        )
