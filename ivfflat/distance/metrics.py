"""
Core distance and similarity metric implementations.

All functions are vectorised with NumPy. Three flavours exist per metric:

    - single pair:   f(a, b) -> float
    - query batch:   f(query, collection) -> (n,)
    - interleaved:   f(query, view) -> (n_groups, group_size), evaluated
                     chunk by chunk directly on a grouped list view
                     (see ``ivfflat.layout.grouped_view``) without
                     unpacking the records first.

Distance results are computed in float64.
"""

from __future__ import annotations

import numpy as np
from typing import Optional
from numpy.typing import NDArray


# Type aliases
Vector = NDArray[np.floating]
VectorBatch = NDArray[np.floating]

EPS = 1e-12


# =============================================================================
# SINGLE VECTOR DISTANCE FUNCTIONS
# =============================================================================

def sqeuclidean(a: Vector, b: Vector) -> float:
    """
    Compute squared Euclidean distance between two vectors.
    
    Example:
        >>> sqeuclidean(np.array([0.0, 0.0]), np.array([3.0, 4.0]))
        25.0
    """
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.dot(diff, diff))


def euclidean(a: Vector, b: Vector) -> float:
    """
    Compute Euclidean (L2) distance between two vectors.
    
    Example:
        >>> euclidean(np.array([0.0, 0.0]), np.array([3.0, 4.0]))
        5.0
    """
    return float(np.sqrt(sqeuclidean(a, b)))


def inner_product(a: Vector, b: Vector) -> float:
    """
    Compute inner product between two vectors (larger = more similar).
    
    Example:
        >>> inner_product(np.array([1.0, 2.0, 3.0]), np.array([4.0, 5.0, 6.0]))
        32.0
    """
    return float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))


def cosine_distance(a: Vector, b: Vector) -> float:
    """
    Compute cosine distance (1 - cosine similarity), in [0, 2].
    
    Zero vectors are treated as orthogonal to everything.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator < EPS:
        return 1.0
    return float(1.0 - np.clip(np.dot(a, b) / denominator, -1.0, 1.0))


# =============================================================================
# QUERY-TO-COLLECTION DISTANCES
# =============================================================================

def batch_sqeuclidean(query: Vector, collection: VectorBatch) -> NDArray:
    """Squared L2 from ``query`` to every row of ``collection``."""
    diff = np.asarray(collection, dtype=np.float64) - np.asarray(query, dtype=np.float64)
    return np.einsum("ij,ij->i", diff, diff)


def batch_euclidean(query: Vector, collection: VectorBatch) -> NDArray:
    """L2 from ``query`` to every row of ``collection``."""
    return np.sqrt(batch_sqeuclidean(query, collection))


def batch_inner_product(query: Vector, collection: VectorBatch) -> NDArray:
    """Inner product of ``query`` with every row of ``collection``."""
    return np.asarray(collection, dtype=np.float64) @ np.asarray(query, dtype=np.float64)


def batch_cosine(query: Vector, collection: VectorBatch) -> NDArray:
    """Cosine distance from ``query`` to every row of ``collection``."""
    collection = np.asarray(collection, dtype=np.float64)
    query = np.asarray(query, dtype=np.float64)
    
    norms = np.linalg.norm(collection, axis=1) * np.linalg.norm(query)
    dots = collection @ query
    
    similarities = np.where(norms < EPS, 0.0, dots / np.where(norms < EPS, 1.0, norms))
    return 1.0 - np.clip(similarities, -1.0, 1.0)


# =============================================================================
# PAIRWISE DISTANCES
# =============================================================================

def pairwise_sqeuclidean(X: VectorBatch, Y: Optional[VectorBatch] = None) -> NDArray:
    """
    Compute pairwise squared Euclidean distances.
    
    Uses the identity: ||a-b||^2 = ||a||^2 + ||b||^2 - 2*a·b
    
    Args:
        X: Array of shape (n, d)
        Y: Array of shape (m, d), or None to compute X vs X
        
    Returns:
        Distance matrix of shape (n, m)
    """
    X = np.asarray(X, dtype=np.float64)
    Y = X if Y is None else np.asarray(Y, dtype=np.float64)
    
    X_sqnorm = np.sum(X ** 2, axis=1, keepdims=True)
    Y_sqnorm = np.sum(Y ** 2, axis=1, keepdims=True)
    
    sq_distances = X_sqnorm + Y_sqnorm.T - 2 * (X @ Y.T)
    
    # Clamp negative values from rounding
    return np.maximum(sq_distances, 0)


def pairwise_euclidean(X: VectorBatch, Y: Optional[VectorBatch] = None) -> NDArray:
    """Compute pairwise Euclidean distances, shape (n, m)."""
    return np.sqrt(pairwise_sqeuclidean(X, Y))


def pairwise_inner_product(X: VectorBatch, Y: Optional[VectorBatch] = None) -> NDArray:
    """Compute pairwise inner products, shape (n, m)."""
    X = np.asarray(X, dtype=np.float64)
    Y = X if Y is None else np.asarray(Y, dtype=np.float64)
    return X @ Y.T


def pairwise_cosine(X: VectorBatch, Y: Optional[VectorBatch] = None) -> NDArray:
    """Compute pairwise cosine distances, shape (n, m), values in [0, 2]."""
    X = np.asarray(X, dtype=np.float64)
    Y = X if Y is None else np.asarray(Y, dtype=np.float64)
    
    X_norm = np.linalg.norm(X, axis=1, keepdims=True)
    Y_norm = np.linalg.norm(Y, axis=1, keepdims=True)
    
    X_normalized = X / np.where(X_norm < EPS, 1.0, X_norm)
    Y_normalized = Y / np.where(Y_norm < EPS, 1.0, Y_norm)
    
    return 1.0 - np.clip(X_normalized @ Y_normalized.T, -1.0, 1.0)


# =============================================================================
# INTERLEAVED (CHUNK-WISE) KERNELS
# =============================================================================

def _query_chunks(query: Vector, view: NDArray) -> NDArray:
    """Reshape ``query`` so it broadcasts against a grouped view."""
    _, n_chunks, _, veclen = view.shape
    return np.asarray(query, dtype=np.float64).reshape(1, n_chunks, 1, veclen)


def interleaved_sqeuclidean(query: Vector, view: NDArray) -> NDArray:
    """
    Squared L2 from ``query`` to every slot of a grouped view.
    
    Args:
        query: Vector of shape (d,)
        view: Grouped view (n_groups, d // veclen, group_size, veclen)
        
    Returns:
        Array of shape (n_groups, group_size)
    """
    diff = view.astype(np.float64) - _query_chunks(query, view)
    return np.einsum("gcrj,gcrj->gr", diff, diff)


def interleaved_euclidean(query: Vector, view: NDArray) -> NDArray:
    """L2 from ``query`` to every slot of a grouped view."""
    return np.sqrt(interleaved_sqeuclidean(query, view))


def interleaved_inner_product(query: Vector, view: NDArray) -> NDArray:
    """Inner product of ``query`` with every slot of a grouped view."""
    q = _query_chunks(query, view)[0, :, 0, :]
    return np.einsum("gcrj,cj->gr", view.astype(np.float64), q)


def interleaved_cosine(query: Vector, view: NDArray) -> NDArray:
    """Cosine distance from ``query`` to every slot of a grouped view."""
    data = view.astype(np.float64)
    q = _query_chunks(query, view)[0, :, 0, :]
    
    dots = np.einsum("gcrj,cj->gr", data, q)
    norms = np.sqrt(np.einsum("gcrj,gcrj->gr", data, data)) * np.linalg.norm(q)
    
    similarities = np.where(norms < EPS, 0.0, dots / np.where(norms < EPS, 1.0, norms))
    return 1.0 - np.clip(similarities, -1.0, 1.0)
