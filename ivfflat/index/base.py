"""
Shared result and statistics types for the IVF-Flat index.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Tuple

import numpy as np
from numpy.typing import NDArray


# Id used to pad results when fewer than k candidates exist
INVALID_ID = -1


class SearchPhase(str, Enum):
    """Phases a single query moves through."""
    IDLE = "idle"
    PROBE_SELECT = "probe_select"
    SCAN_LISTS = "scan_lists"
    MERGE = "merge"
    DONE = "done"


@dataclass
class IndexStats:
    """Snapshot of an index's size and shape."""
    
    dimension: int
    metric: str
    dtype: str
    vector_count: int
    memory_bytes: int
    n_clusters: int
    group_size: int
    veclen: int
    cluster_sizes: NDArray
    generation: int = 0
    index_type: str = "ivf_flat"
    
    @property
    def empty_clusters(self) -> int:
        return int(np.count_nonzero(self.cluster_sizes == 0))
    
    @property
    def padding_ratio(self) -> float:
        """Share of slots in the occupied groups that hold no record."""
        if self.vector_count == 0:
            return 0.0
        allocated = int(np.sum(-(-self.cluster_sizes // self.group_size)) * self.group_size)
        return 1.0 - self.vector_count / allocated
    
    def to_dict(self) -> Dict[str, Any]:
        sizes = self.cluster_sizes
        return {
            "index_type": self.index_type,
            "dimension": self.dimension,
            "metric": self.metric,
            "dtype": self.dtype,
            "vector_count": self.vector_count,
            "memory_bytes": self.memory_bytes,
            "memory_mb": round(self.memory_bytes / (1024 * 1024), 2),
            "is_trained": True,
            "n_clusters": self.n_clusters,
            "group_size": self.group_size,
            "veclen": self.veclen,
            "cluster_sizes": {
                "min": int(sizes.min()),
                "max": int(sizes.max()),
                "mean": float(sizes.mean()),
                "std": float(sizes.std()),
            },
            "empty_clusters": self.empty_clusters,
            "padding_ratio": round(self.padding_ratio, 4),
            "generation": self.generation,
        }


@dataclass
class SearchResult:
    """
    Result of one top-k query.
    
    Attributes:
        ids: Record ids, best first, padded with ``INVALID_ID``
        distances: Metric values aligned with ``ids``, padded with the
            metric's worst value (+inf, or -inf for similarities)
        n_probe: Number of clusters probed
        n_scanned: Number of records whose distance was computed
        partial: True when the search was cancelled and the caller
            asked for best-effort output
    """
    
    ids: NDArray
    distances: NDArray
    n_probe: int = 0
    n_scanned: int = 0
    partial: bool = False
    
    @property
    def k(self) -> int:
        return len(self.ids)
    
    @property
    def valid_count(self) -> int:
        """Number of real (non-sentinel) neighbors."""
        return int(np.count_nonzero(self.ids != INVALID_ID))
    
    def to_pairs(self) -> List[Tuple[int, float]]:
        """Return ``(id, distance)`` pairs, sentinels included."""
        return [(int(i), float(d)) for i, d in zip(self.ids, self.distances)]
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "ids": self.ids.tolist(),
            "distances": self.distances.tolist(),
            "n_probe": self.n_probe,
            "n_scanned": self.n_scanned,
            "partial": self.partial,
        }
    
    def __len__(self) -> int:
        return self.k
    
    def __repr__(self) -> str:
        return (
            f"SearchResult(k={self.k}, valid={self.valid_count}, "
            f"n_probe={self.n_probe}, partial={self.partial})"
        )
