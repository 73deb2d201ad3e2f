"""
Coarse quantizer: cluster assignment and centroid lookup.

The index consumes a quantizer only through ``assign`` and ``centroid``.
:class:`FlatQuantizer` answers both from a fixed centroid matrix;
:class:`KMeans` and :func:`train_quantizer` produce one from data.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import OutOfRangeError, ValidationError
from ..distance import DistanceCalculator, pairwise_sqeuclidean
from ..utils.batching import iter_slices
from ..utils.logging import get_logger, log_duration


logger = get_logger(__name__)


class Quantizer(Protocol):
    """Contract the index expects from a coarse quantizer."""
    
    @property
    def n_clusters(self) -> int: ...
    
    def assign(self, vector: NDArray) -> int: ...
    
    def centroid(self, cluster_id: int) -> NDArray: ...


@dataclass
class BuildParams:
    """Parameters for building an index from scratch."""
    
    # Number of clusters (inverted lists)
    cluster_count: int = 100
    
    # K-means trains on 1/training_ratio of the build set
    training_ratio: int = 2
    
    # K-means parameters
    n_iter: int = 20
    n_redo: int = 1
    min_points_per_centroid: int = 39
    max_points_per_centroid: int = 256
    
    seed: Optional[int] = None
    
    def __post_init__(self):
        if self.cluster_count < 1:
            raise ValidationError(f"cluster_count must be >= 1, got {self.cluster_count}")
        if self.training_ratio < 1:
            raise ValidationError(f"training_ratio must be >= 1, got {self.training_ratio}")
        if self.n_iter < 1:
            raise ValidationError(f"n_iter must be >= 1, got {self.n_iter}")
        if self.n_redo < 1:
            raise ValidationError(f"n_redo must be >= 1, got {self.n_redo}")


class FlatQuantizer:
    """
    Exact nearest-centroid quantizer.
    
    Assignment picks the smallest distance (largest value for similarity
    metrics); equal values resolve to the lowest cluster id.
    """
    
    def __init__(self, centroids: NDArray, metric: str = "euclidean", batch_size: int = 65536):
        centroids = np.array(centroids, dtype=np.float32, copy=True)
        if centroids.ndim != 2 or len(centroids) == 0:
            raise ValidationError("Centroids must be a non-empty 2D array")
        
        centroids.setflags(write=False)
        self._centroids = centroids
        self._calc = DistanceCalculator(metric)
        self._batch_size = batch_size
    
    @property
    def n_clusters(self) -> int:
        return len(self._centroids)
    
    @property
    def dimension(self) -> int:
        return self._centroids.shape[1]
    
    @property
    def centroids(self) -> NDArray:
        """Read-only centroid matrix (n_clusters, dimension)."""
        return self._centroids
    
    @property
    def metric(self) -> str:
        return self._calc.metric
    
    def centroid(self, cluster_id: int) -> NDArray:
        if cluster_id < 0 or cluster_id >= self.n_clusters:
            raise OutOfRangeError(
                f"Cluster id {cluster_id} out of range [0, {self.n_clusters})"
            )
        return self._centroids[cluster_id].copy()
    
    def assign(self, vector: NDArray) -> int:
        keys = self._calc.info.sort_keys(self._calc.batch_distances(vector, self._centroids))
        return int(np.argmin(keys))
    
    def assign_batch(self, vectors: NDArray) -> NDArray:
        """Assign each row of ``vectors`` to a cluster id."""
        vectors = np.asarray(vectors)
        assignments = np.empty(len(vectors), dtype=np.int64)
        
        for start, end in iter_slices(len(vectors), self._batch_size):
            keys = self._calc.info.sort_keys(
                self._calc.pairwise(vectors[start:end], self._centroids)
            )
            assignments[start:end] = np.argmin(keys, axis=1)
        
        return assignments
    
    def __repr__(self) -> str:
        return f"FlatQuantizer(n_clusters={self.n_clusters}, metric='{self.metric}')"


class KMeans:
    """
    K-Means clustering implementation.
    
    Used to train IVF centroids.
    """
    
    def __init__(
        self,
        n_clusters: int,
        n_iter: int = 20,
        n_redo: int = 1,
        seed: Optional[int] = None,
    ):
        self.n_clusters = n_clusters
        self.n_iter = n_iter
        self.n_redo = n_redo
        self.seed = seed
        
        self.centroids: Optional[NDArray] = None
        self._rng = np.random.RandomState(seed)
    
    def fit(self, vectors: NDArray) -> NDArray:
        """
        Fit k-means to vectors.
        
        Args:
            vectors: Training vectors (n, d)
            
        Returns:
            Centroids (n_clusters, d)
        """
        vectors = np.asarray(vectors, dtype=np.float32)
        n_samples = len(vectors)
        
        if n_samples <= self.n_clusters:
            # Not enough samples, use all as centroids
            self.centroids = vectors.copy()
            return self.centroids
        
        best_centroids = None
        best_inertia = float('inf')
        
        for redo in range(self.n_redo):
            centroids = self._fit_once(vectors)
            
            distances = pairwise_sqeuclidean(vectors, centroids)
            inertia = float(np.min(distances, axis=1).sum())
            
            if inertia < best_inertia:
                best_inertia = inertia
                best_centroids = centroids
            
            logger.debug(f"K-Means redo {redo + 1}/{self.n_redo}: inertia={inertia:.2f}")
        
        self.centroids = best_centroids
        return self.centroids
    
    def _fit_once(self, vectors: NDArray) -> NDArray:
        """Single k-means run."""
        n_samples = len(vectors)
        centroids = self._init_centroids_pp(vectors)
        
        for iteration in range(self.n_iter):
            assignments = self._assign(vectors, centroids)
            
            counts = np.bincount(assignments, minlength=self.n_clusters)
            sums = np.zeros((self.n_clusters, vectors.shape[1]), dtype=np.float64)
            np.add.at(sums, assignments, vectors)
            
            new_centroids = np.empty_like(centroids)
            for c in range(self.n_clusters):
                if counts[c] > 0:
                    new_centroids[c] = sums[c] / counts[c]
                else:
                    # Reseed empty cluster with a random point
                    new_centroids[c] = vectors[self._rng.randint(n_samples)]
            
            diff = float(np.sum((new_centroids - centroids) ** 2))
            centroids = new_centroids
            
            if diff < 1e-6:
                logger.debug(f"K-Means converged after {iteration + 1} iterations")
                break
        
        return centroids
    
    def _init_centroids_pp(self, vectors: NDArray) -> NDArray:
        """Initialize centroids using k-means++."""
        n_samples, dimension = vectors.shape
        centroids = np.zeros((self.n_clusters, dimension), dtype=np.float32)
        
        centroids[0] = vectors[self._rng.randint(n_samples)]
        closest = pairwise_sqeuclidean(vectors, centroids[:1])[:, 0]
        
        for k in range(1, self.n_clusters):
            total = closest.sum()
            if total <= 0:
                idx = self._rng.randint(n_samples)
            else:
                idx = self._rng.choice(n_samples, p=closest / total)
            centroids[k] = vectors[idx]
            closest = np.minimum(closest, pairwise_sqeuclidean(vectors, centroids[k:k + 1])[:, 0])
        
        return centroids
    
    def _assign(self, vectors: NDArray, centroids: NDArray) -> NDArray:
        """Assign vectors to nearest centroids."""
        return np.argmin(pairwise_sqeuclidean(vectors, centroids), axis=1)
    
    def predict(self, vectors: NDArray) -> NDArray:
        """Predict cluster assignments."""
        if self.centroids is None:
            raise RuntimeError("K-Means not fitted")
        return self._assign(np.asarray(vectors, dtype=np.float32), self.centroids)


def sample_training_set(
    vectors: NDArray,
    params: BuildParams,
    rng: np.random.RandomState,
) -> NDArray:
    """
    Draw the k-means training sample.
    
    The sample holds ``len(vectors) / training_ratio`` rows, at least one
    per requested cluster where the data allows it. A warning is logged
    when the sample yields fewer points per centroid than
    ``min_points_per_centroid``.
    """
    n = len(vectors)
    trainset_size = n / params.training_ratio
    n_train = min(n, max(int(math.ceil(trainset_size)), min(n, params.cluster_count)))
    
    points_per_centroid = trainset_size / params.cluster_count
    if math.floor(points_per_centroid) < params.min_points_per_centroid:
        logger.warning(
            f"The training set size {int(trainset_size)} (data size {n}, training "
            f"ratio {params.training_ratio}) yields {int(points_per_centroid)} points "
            f"per cluster (cluster_count = {params.cluster_count}). This is smaller "
            f"than min_points_per_centroid = {params.min_points_per_centroid}."
        )
    
    max_train = params.cluster_count * params.max_points_per_centroid
    if n_train > max_train:
        logger.info(f"Subsampling training set from {n_train} to {max_train} points")
        n_train = max_train
    
    if n_train == n:
        return vectors
    
    return vectors[np.sort(rng.choice(n, size=n_train, replace=False))]


def train_quantizer(
    vectors: NDArray,
    params: BuildParams,
    metric: str = "euclidean",
) -> FlatQuantizer:
    """
    Train a flat quantizer with k-means on a sample of ``vectors``.
    
    The cluster count is capped at the number of training points.
    """
    vectors = np.asarray(vectors, dtype=np.float32)
    if len(vectors) == 0:
        raise ValidationError("Cannot train a quantizer on zero vectors")
    
    rng = np.random.RandomState(params.seed)
    training = sample_training_set(vectors, params, rng)
    n_clusters = min(params.cluster_count, len(training))
    
    logger.info(
        f"Training IVF with {n_clusters} clusters on {len(training)} vectors..."
    )
    
    kmeans = KMeans(
        n_clusters=n_clusters,
        n_iter=params.n_iter,
        n_redo=params.n_redo,
        seed=params.seed,
    )
    with log_duration(logger, "Training completed"):
        centroids = kmeans.fit(training)
    
    return FlatQuantizer(centroids, metric)
