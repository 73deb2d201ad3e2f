"""
Pytest fixtures for ivfflat tests.
"""

import pytest
import numpy as np

from ivfflat.index import Builder, BuildParams, IVFFlatIndex, IndexState
from ivfflat.layout import GroupedLayout


@pytest.fixture
def dimension() -> int:
    """Default dimension for test vectors."""
    return 8


@pytest.fixture
def layout() -> GroupedLayout:
    return GroupedLayout(group_size=32, veclen=4)


@pytest.fixture
def random_vector(dimension: int) -> np.ndarray:
    """Generate a random vector."""
    return np.random.randn(dimension).astype(np.float32)


@pytest.fixture
def random_vectors(dimension: int) -> np.ndarray:
    """Generate random vectors (1000 vectors, fixed seed)."""
    rng = np.random.RandomState(42)
    return rng.randn(1000, dimension).astype(np.float32)


@pytest.fixture
def build_params() -> BuildParams:
    return BuildParams(cluster_count=10, seed=42)


@pytest.fixture
def built_state(random_vectors: np.ndarray, build_params: BuildParams) -> IndexState:
    """Index state with 1000 records in 10 clusters."""
    return Builder(metric="euclidean").build(random_vectors, params=build_params)


@pytest.fixture
def built_index(dimension: int, random_vectors: np.ndarray) -> IVFFlatIndex:
    """Facade index with 1000 records in 10 clusters, probing all of them."""
    index = IVFFlatIndex(dimension=dimension, cluster_count=10, n_probe=10, seed=42)
    index.build(random_vectors)
    return index
