"""
Searcher: probe, scan and merge for top-k queries.

A query moves through ``IDLE -> PROBE_SELECT -> SCAN_LISTS -> MERGE ->
DONE``:

1. PROBE_SELECT ranks every centroid by the metric and keeps the best
   ``n_probe`` (ties go to the lower cluster id).
2. SCAN_LISTS evaluates the metric on every record of the probed lists,
   chunk-wise on the interleaved block when the metric has a kernel for
   it, otherwise on unpacked records. Lists may be scanned concurrently.
3. MERGE reads the bounded top-k accumulator, which orders candidates by
   ``(key, id)``; the final result is therefore identical whatever order
   the lists finished in.

The state is only read. Each list is read through one snapshot, so a
concurrent append is either fully visible or not visible at all.
"""

from __future__ import annotations

import threading
from typing import Callable, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    EmptyIndexError,
    InvalidKError,
    InvalidNprobeError,
    SearchCancelledError,
)
from ..distance import DistanceCalculator
from ..layout import grouped_view, unpack_all
from ..utils.batching import parallel_map
from ..utils.logging import get_logger
from ..utils.validation import validate_vector, validate_vectors
from .base import INVALID_ID, SearchPhase, SearchResult
from .state import IndexState


logger = get_logger(__name__)

PhaseCallback = Callable[[SearchPhase], None]


class CancellationToken:
    """
    Flag a caller sets to abandon a running search.
    
    The searcher checks it at phase boundaries and between lists.
    """
    
    def __init__(self):
        self._event = threading.Event()
    
    def cancel(self) -> None:
        self._event.set()
    
    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class TopKAccumulator:
    """
    Thread-safe bounded top-k structure.
    
    Candidates are ranked by ``(key, id)`` where ``key`` is the metric
    value, negated for similarity metrics, so smaller always wins and equal
    values fall back to ascending id.
    """
    
    def __init__(self, k: int, is_similarity: bool = False):
        self.k = k
        self.is_similarity = is_similarity
        self._keys = np.empty(0, dtype=np.float64)
        self._ids = np.empty(0, dtype=np.int64)
        self._lock = threading.Lock()
    
    def _to_keys(self, values: NDArray) -> NDArray:
        # Rank on the float32 values that are returned, so equal reported
        # distances always come out by ascending id
        values = np.asarray(values, dtype=np.float32).astype(np.float64)
        return -values if self.is_similarity else values
    
    def push(self, values: NDArray, ids: NDArray) -> None:
        """Offer a batch of ``(value, id)`` candidates."""
        keys = self._to_keys(values)
        ids = np.asarray(ids, dtype=np.int64)
        
        if len(keys) > self.k:
            # Keep every candidate tied with the k-th key so the id
            # tie-break can still see it
            kth = np.partition(keys, self.k - 1)[self.k - 1]
            mask = keys <= kth
            keys, ids = keys[mask], ids[mask]
        
        with self._lock:
            keys = np.concatenate([self._keys, keys])
            ids = np.concatenate([self._ids, ids])
            order = np.lexsort((ids, keys))[: self.k]
            self._keys, self._ids = keys[order], ids[order]
    
    def __len__(self) -> int:
        return len(self._ids)
    
    def result(self) -> Tuple[NDArray, NDArray]:
        """
        Return ``(ids, values)`` of length k, best first.
        
        Missing entries are padded with ``INVALID_ID`` and the metric's
        worst value.
        """
        with self._lock:
            keys, ids = self._keys.copy(), self._ids.copy()
        
        n = len(ids)
        out_ids = np.full(self.k, INVALID_ID, dtype=np.int64)
        out_keys = np.full(self.k, np.inf, dtype=np.float64)
        out_ids[:n] = ids
        out_keys[:n] = keys
        
        values = -out_keys if self.is_similarity else out_keys
        return out_ids, values.astype(np.float32)


def _check_k(k) -> int:
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k <= 0:
        raise InvalidKError(f"k must be a positive integer, got {k!r}")
    return int(k)


class Searcher:
    """
    Top-k query engine over an :class:`IndexState`.
    
    Example:
        >>> searcher = Searcher(state, n_probe=10)
        >>> result = searcher.search(query, k=5)
        >>> result.ids, result.distances
    """
    
    def __init__(self, state: IndexState, n_probe: int = 10, num_threads: int = 1):
        self.state = state
        self.n_probe = n_probe
        self.num_threads = max(1, num_threads)
        self._calc = DistanceCalculator(state.metric)
    
    @property
    def is_similarity(self) -> bool:
        return self._calc.is_similarity
    
    def _check_n_probe(self, n_probe: Optional[int]) -> int:
        n_probe = self.n_probe if n_probe is None else n_probe
        if isinstance(n_probe, bool) or not isinstance(n_probe, (int, np.integer)):
            raise InvalidNprobeError(f"n_probe must be an integer, got {n_probe!r}")
        if n_probe <= 0 or n_probe > self.state.n_lists:
            raise InvalidNprobeError(
                f"n_probe must be in [1, {self.state.n_lists}], got {n_probe}"
            )
        return int(n_probe)
    
    # =========================================================================
    # PHASES
    # =========================================================================
    
    def select_probes(self, query: NDArray, n_probe: int) -> NDArray:
        """
        Return the ``n_probe`` best cluster ids for ``query``, best first.
        
        Equal centroid distances are ordered by ascending cluster id.
        """
        values = self._calc.batch_distances(query, self.state.centroids)
        keys = self._calc.info.sort_keys(values)
        return np.argsort(keys, kind="stable")[:n_probe]
    
    def scan_list(self, cluster_id: int, query: NDArray, accumulator: TopKAccumulator) -> int:
        """
        Score every record of one list and offer them to ``accumulator``.
        
        Returns:
            Number of records scanned
        """
        lst = self.state.get_list(int(cluster_id))
        snap = lst.snapshot()
        if snap.size == 0:
            return 0
        
        layout = self.state.layout
        n_groups = layout.n_groups(snap.size)
        view = grouped_view(snap.data, self.state.dimension, layout.veclen, layout.group_size)
        
        values = self._calc.interleaved_distances(query, view[:n_groups])
        if values is None:
            records = unpack_all(
                snap.data, snap.size, self.state.dimension,
                layout.veclen, layout.group_size,
            )
            values = self._calc.batch_distances(query, records)
        else:
            values = values.reshape(-1)[: snap.size]
        
        accumulator.push(values, snap.ids[: snap.size])
        return snap.size
    
    # =========================================================================
    # SEARCH
    # =========================================================================
    
    def search(
        self,
        query: NDArray,
        k: int = 10,
        n_probe: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
        allow_partial: bool = False,
        raise_on_empty: bool = False,
        phase_callback: Optional[PhaseCallback] = None,
        num_threads: Optional[int] = None,
    ) -> SearchResult:
        """
        Search for the k nearest neighbors of ``query``.
        
        Args:
            query: Query vector
            k: Number of results (result length is always k)
            n_probe: Clusters to scan (defaults to the searcher's n_probe)
            cancel: Token checked between phases and lists
            allow_partial: Return best-effort output instead of raising
                when cancelled
            raise_on_empty: Raise EmptyIndexError instead of returning an
                all-sentinel result on an empty index
            phase_callback: Called with each phase as it starts
            num_threads: Threads used to scan lists (defaults to the
                searcher's setting)
            
        Returns:
            SearchResult sorted best first, ties by ascending id
            
        Raises:
            InvalidKError: If k <= 0
            InvalidNprobeError: If n_probe <= 0 or exceeds the cluster count
            DimensionMismatchError: If the query has the wrong length
            SearchCancelledError: If cancelled and ``allow_partial`` is False
        """
        k = _check_k(k)
        n_probe = self._check_n_probe(n_probe)
        query = validate_vector(query, self.state.dimension, self.state.dtype)
        num_threads = self.num_threads if num_threads is None else max(1, num_threads)
        
        accumulator = TopKAccumulator(k, self.is_similarity)
        scanned = [0]
        
        def enter(phase: SearchPhase) -> None:
            if phase_callback is not None:
                phase_callback(phase)
        
        def abandon(phase: SearchPhase) -> SearchResult:
            logger.debug(f"Search cancelled before {phase.value}")
            if not allow_partial:
                raise SearchCancelledError(f"Search cancelled before {phase.value}")
            ids, values = accumulator.result()
            return SearchResult(ids, values, n_probe, scanned[0], partial=True)
        
        enter(SearchPhase.IDLE)
        
        if self.state.is_empty:
            if raise_on_empty:
                raise EmptyIndexError("Search on an index holding zero records")
            logger.debug("Search on empty index, returning sentinel result")
            ids, values = accumulator.result()
            enter(SearchPhase.DONE)
            return SearchResult(ids, values, n_probe, 0)
        
        if cancel is not None and cancel.cancelled:
            return abandon(SearchPhase.PROBE_SELECT)
        enter(SearchPhase.PROBE_SELECT)
        probes = self.select_probes(query, n_probe)
        
        if cancel is not None and cancel.cancelled:
            return abandon(SearchPhase.SCAN_LISTS)
        enter(SearchPhase.SCAN_LISTS)
        
        def scan(cluster_id: int) -> int:
            if cancel is not None and cancel.cancelled:
                return 0
            return self.scan_list(cluster_id, query, accumulator)
        
        counts = parallel_map(scan, probes.tolist(), max_workers=num_threads)
        scanned[0] = int(sum(counts))
        
        if cancel is not None and cancel.cancelled:
            return abandon(SearchPhase.MERGE)
        enter(SearchPhase.MERGE)
        ids, values = accumulator.result()
        
        enter(SearchPhase.DONE)
        return SearchResult(ids, values, n_probe, scanned[0])
    
    def search_batch(
        self,
        queries: NDArray,
        k: int = 10,
        n_probe: Optional[int] = None,
    ) -> List[SearchResult]:
        """
        Search several independent queries.
        
        Queries are spread over ``num_threads`` workers; each query scans
        its lists on the worker that owns it.
        """
        queries = validate_vectors(queries, self.state.dimension, self.state.dtype)
        k = _check_k(k)
        n_probe = self._check_n_probe(n_probe)
        
        return parallel_map(
            lambda q: self.search(q, k=k, n_probe=n_probe, num_threads=1),
            list(queries),
            max_workers=self.num_threads,
        )


def brute_force_search(
    vectors: NDArray,
    ids: NDArray,
    query: NDArray,
    k: int,
    metric: str = "euclidean",
) -> SearchResult:
    """
    Exact top-k over a flat matrix, with the same ordering and padding
    rules as :meth:`Searcher.search`.
    """
    k = _check_k(k)
    calc = DistanceCalculator(metric)
    vectors = np.asarray(vectors)
    
    accumulator = TopKAccumulator(k, calc.is_similarity)
    if len(vectors) > 0:
        accumulator.push(calc.batch_distances(np.asarray(query), vectors), ids)
    
    out_ids, values = accumulator.result()
    return SearchResult(out_ids, values, 0, len(vectors))
