"""
Distance metrics for the IVF-Flat index.

Supported Metrics:
    - euclidean: L2 distance (smaller = more similar)
    - sqeuclidean: squared L2 distance (smaller = more similar)
    - inner_product: dot product (larger = more similar)
    - cosine: cosine distance (smaller = more similar)

Example:
    >>> from ivfflat.distance import DistanceCalculator
    >>> calc = DistanceCalculator("l2")
    >>> calc.distance(a, b)
"""

from .metrics import (
    euclidean,
    sqeuclidean,
    inner_product,
    cosine_distance,
    batch_euclidean,
    batch_sqeuclidean,
    batch_inner_product,
    batch_cosine,
    pairwise_euclidean,
    pairwise_sqeuclidean,
    pairwise_inner_product,
    pairwise_cosine,
    interleaved_euclidean,
    interleaved_sqeuclidean,
    interleaved_inner_product,
    interleaved_cosine,
)

from .registry import (
    DistanceMetric,
    MetricInfo,
    DistanceCalculator,
    get_metric,
    get_metric_fn,
    register_metric,
    list_metrics,
    is_similarity,
    metric_exists,
)

__all__ = [
    "euclidean",
    "sqeuclidean",
    "inner_product",
    "cosine_distance",
    "batch_euclidean",
    "batch_sqeuclidean",
    "batch_inner_product",
    "batch_cosine",
    "pairwise_euclidean",
    "pairwise_sqeuclidean",
    "pairwise_inner_product",
    "pairwise_cosine",
    "interleaved_euclidean",
    "interleaved_sqeuclidean",
    "interleaved_inner_product",
    "interleaved_cosine",
    "DistanceMetric",
    "MetricInfo",
    "DistanceCalculator",
    "get_metric",
    "get_metric_fn",
    "register_metric",
    "list_metrics",
    "is_similarity",
    "metric_exists",
]
