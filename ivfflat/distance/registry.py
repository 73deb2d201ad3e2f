"""
Metric registry.

Every metric the index can use is described by a :class:`MetricInfo`:
the pairwise function, optional vectorised forms (batch, pairwise and
interleaved), and whether larger values mean "closer". Search code only
talks to metrics through :class:`DistanceCalculator`, which picks the
fastest form available and falls back to ``scipy`` for custom metrics.

Names are case-insensitive. Built-in metrics cannot be replaced.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.distance import cdist

from . import metrics as _m


Vector = NDArray[np.floating]
DistanceFunction = Callable[[Vector, Vector], float]
BatchDistanceFunction = Callable[[Vector, NDArray], NDArray]
PairwiseDistanceFunction = Callable[[NDArray, Optional[NDArray]], NDArray]
InterleavedDistanceFunction = Callable[[Vector, NDArray], NDArray]


class DistanceMetric(str, Enum):
    """Names of the built-in metrics."""
    
    EUCLIDEAN = "euclidean"
    SQEUCLIDEAN = "sqeuclidean"
    INNER_PRODUCT = "inner_product"
    COSINE = "cosine"
    
    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class MetricInfo:
    """Everything the index needs to know about one metric."""
    
    name: str
    function: DistanceFunction
    batch_function: Optional[BatchDistanceFunction] = None
    pairwise_function: Optional[PairwiseDistanceFunction] = None
    interleaved_function: Optional[InterleavedDistanceFunction] = None
    is_similarity: bool = False  # larger = closer
    description: str = ""
    aliases: Tuple[str, ...] = field(default=())
    
    @property
    def worst_value(self) -> float:
        """Value used to pad missing results."""
        return -np.inf if self.is_similarity else np.inf
    
    def sort_keys(self, values: NDArray) -> NDArray:
        """Map metric values to keys where smaller is always better."""
        values = np.asarray(values, dtype=np.float64)
        return -values if self.is_similarity else values
    
    def __repr__(self) -> str:
        return f"MetricInfo(name='{self.name}', is_similarity={self.is_similarity})"


_BUILTINS = (
    MetricInfo(
        name=DistanceMetric.EUCLIDEAN.value,
        function=_m.euclidean,
        batch_function=_m.batch_euclidean,
        pairwise_function=_m.pairwise_euclidean,
        interleaved_function=_m.interleaved_euclidean,
        description="Euclidean (L2) distance",
        aliases=("l2", "euclidean_distance"),
    ),
    MetricInfo(
        name=DistanceMetric.SQEUCLIDEAN.value,
        function=_m.sqeuclidean,
        batch_function=_m.batch_sqeuclidean,
        pairwise_function=_m.pairwise_sqeuclidean,
        interleaved_function=_m.interleaved_sqeuclidean,
        description="Squared L2 distance (same ranking as L2)",
        aliases=("l2_squared", "euclidean_squared"),
    ),
    MetricInfo(
        name=DistanceMetric.INNER_PRODUCT.value,
        function=_m.inner_product,
        batch_function=_m.batch_inner_product,
        pairwise_function=_m.pairwise_inner_product,
        interleaved_function=_m.interleaved_inner_product,
        is_similarity=True,
        description="Inner product (larger = more similar)",
        aliases=("ip", "dot"),
    ),
    MetricInfo(
        name=DistanceMetric.COSINE.value,
        function=_m.cosine_distance,
        batch_function=_m.batch_cosine,
        pairwise_function=_m.pairwise_cosine,
        interleaved_function=_m.interleaved_cosine,
        description="Cosine distance (1 - cosine similarity)",
        aliases=("cosine_distance",),
    ),
)


class MetricRegistry:
    """Thread-safe name -> :class:`MetricInfo` table."""
    
    def __init__(self):
        self._metrics: Dict[str, MetricInfo] = {}
        self._names: Dict[str, str] = {}
        self._builtin = set()
        self._lock = threading.Lock()
        
        for info in _BUILTINS:
            self.register(info)
            self._builtin.add(info.name)
    
    @staticmethod
    def _key(name) -> str:
        return str(name).strip().lower()
    
    def register(self, info: MetricInfo) -> None:
        """
        Add a metric under its name and aliases.
        
        Re-registering a custom name replaces the previous entry.
        
        Raises:
            ValueError: If the name or an alias belongs to a built-in metric
        """
        keys = [self._key(info.name)] + [self._key(a) for a in info.aliases]
        
        with self._lock:
            for key in keys:
                owner = self._names.get(key)
                if owner in self._builtin:
                    raise ValueError(f"'{key}' is reserved by built-in metric '{owner}'")
            
            self._metrics[keys[0]] = info
            for key in keys:
                self._names[key] = keys[0]
    
    def resolve(self, name) -> Optional[str]:
        """Canonical name for ``name``, or None."""
        return self._names.get(self._key(name))
    
    def get(self, name) -> MetricInfo:
        """
        Look up a metric by name or alias.
        
        Raises:
            KeyError: If the metric is unknown
        """
        canonical = self.resolve(name)
        if canonical is None:
            raise KeyError(f"Unknown metric: '{name}'. Available: {self.names()}")
        return self._metrics[canonical]
    
    def names(self) -> List[str]:
        return list(self._metrics)
    
    def __contains__(self, name) -> bool:
        return self.resolve(name) is not None


_registry = MetricRegistry()


def get_metric(name: str) -> MetricInfo:
    """
    Get metric info by name.
    
    Example:
        >>> get_metric("L2").name
        'euclidean'
    """
    return _registry.get(name)


def get_metric_fn(name: str) -> DistanceFunction:
    return _registry.get(name).function


def register_metric(
    name: str,
    function: DistanceFunction,
    is_similarity: bool = False,
    description: str = "",
    batch_function: Optional[BatchDistanceFunction] = None,
    interleaved_function: Optional[InterleavedDistanceFunction] = None,
    aliases: Optional[List[str]] = None,
) -> MetricInfo:
    """
    Register a custom metric.
    
    Only ``function`` is required. Without ``batch_function``, batch and
    pairwise evaluation go through ``scipy.spatial.distance.cdist``;
    without ``interleaved_function``, list scans unpack records first.
    
    Example:
        >>> register_metric("chebyshev", lambda a, b: float(np.max(np.abs(a - b))))
    """
    info = MetricInfo(
        name=name,
        function=function,
        batch_function=batch_function,
        interleaved_function=interleaved_function,
        is_similarity=is_similarity,
        description=description or f"Custom metric: {name}",
        aliases=tuple(aliases or ()),
    )
    _registry.register(info)
    return info


def list_metrics() -> List[str]:
    """Canonical names of all registered metrics."""
    return _registry.names()


def is_similarity(name: str) -> bool:
    return _registry.get(name).is_similarity


def metric_exists(name: str) -> bool:
    return name in _registry


class DistanceCalculator:
    """
    Evaluates one metric in the fastest form it supports.
    
    Example:
        >>> calc = DistanceCalculator("ip")
        >>> scores = calc.batch_distances(query, vectors)
    """
    
    def __init__(self, metric: str = "euclidean"):
        self.info = get_metric(metric)
        self.metric = self.info.name
    
    @property
    def is_similarity(self) -> bool:
        return self.info.is_similarity
    
    def distance(self, a: Vector, b: Vector) -> float:
        return self.info.function(a, b)
    
    def batch_distances(self, query: Vector, collection: NDArray) -> NDArray:
        """Values from ``query`` to each row of ``collection``, shape (n,)."""
        if len(collection) == 0:
            return np.empty(0, dtype=np.float64)
        if self.info.batch_function is not None:
            return self.info.batch_function(query, collection)
        return self.pairwise(np.asarray(query).reshape(1, -1), collection)[0]
    
    def pairwise(self, X: NDArray, Y: Optional[NDArray] = None) -> NDArray:
        """Values between rows of ``X`` and ``Y``, shape (n, m)."""
        if self.info.pairwise_function is not None:
            return self.info.pairwise_function(X, Y)
        
        X = np.asarray(X, dtype=np.float64)
        Y = X if Y is None else np.asarray(Y, dtype=np.float64)
        return cdist(X, Y, metric=self.info.function)
    
    def interleaved_distances(self, query: Vector, view: NDArray) -> Optional[NDArray]:
        """
        Evaluate the metric chunk-wise on a grouped view.
        
        Returns:
            (n_groups, group_size) array, or None if the metric has no
            interleaved kernel
        """
        if self.info.interleaved_function is None:
            return None
        return self.info.interleaved_function(query, view)
    
    def __repr__(self) -> str:
        return f"DistanceCalculator(metric='{self.metric}')"
