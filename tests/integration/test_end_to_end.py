"""
End-to-end tests for IVFFlatIndex.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal

from ivfflat import (
    DimensionMismatchError,
    DuplicateIdError,
    IndexNotTrainedError,
    InvalidNprobeError,
    IVFFlatIndex,
    brute_force_search,
)


class TestExactWithFullProbe:
    """Probing every cluster must reproduce exhaustive search."""
    
    def test_matches_brute_force(self, built_index, random_vectors):
        rng = np.random.RandomState(7)
        queries = rng.randn(25, 8).astype(np.float32)
        ids = np.arange(1000)
        
        for q in queries:
            got_ids, got_distances = built_index.search(q, k=5)
            expected = brute_force_search(random_vectors, ids, q, k=5)
            
            assert_array_equal(got_ids, expected.ids)
            assert_allclose(got_distances, expected.distances, rtol=1e-5)
    
    def test_batch_matches_brute_force(self, built_index, random_vectors):
        queries = random_vectors[:30] + 0.05
        
        batch_ids, batch_distances = built_index.search_batch(queries, k=5)
        
        assert batch_ids.shape == (30, 5)
        assert batch_distances.shape == (30, 5)
        for i, q in enumerate(queries):
            expected = brute_force_search(random_vectors, np.arange(1000), q, k=5)
            assert_array_equal(batch_ids[i], expected.ids)
    
    @pytest.mark.parametrize("metric", ["sqeuclidean", "inner_product", "cosine"])
    def test_other_metrics(self, random_vectors, metric):
        index = IVFFlatIndex(dimension=8, metric=metric, cluster_count=10, n_probe=10, seed=1)
        index.build(random_vectors)
        query = random_vectors[11] * 0.5 + 0.1
        
        got_ids, _ = index.search(query, k=5)
        expected = brute_force_search(random_vectors, np.arange(1000), query, 5, metric)
        
        assert_array_equal(got_ids, expected.ids)


class TestPartialProbe:
    
    def test_self_query_finds_itself(self, built_index, random_vectors):
        built_index.set_n_probe(2)
        
        for i in (0, 100, 500, 999):
            ids, distances = built_index.search(random_vectors[i], k=1)
            # A stored vector lives in one of its nearest clusters
            assert ids[0] == i
            assert distances[0] == pytest.approx(0.0, abs=1e-6)
    
    def test_recall_grows_with_n_probe(self, built_index, random_vectors):
        rng = np.random.RandomState(3)
        queries = rng.randn(50, 8).astype(np.float32)
        truth = [
            set(brute_force_search(random_vectors, np.arange(1000), q, 10).ids.tolist())
            for q in queries
        ]
        
        recalls = []
        for n_probe in (1, 3, 10):
            hits = 0
            for q, expected in zip(queries, truth):
                ids, _ = built_index.search(q, k=10, n_probe=n_probe)
                hits += len(expected & set(ids.tolist()))
            recalls.append(hits / (10 * len(queries)))
        
        assert recalls[0] <= recalls[1] <= recalls[2]
        assert recalls[2] == 1.0
    
    def test_results_always_length_k(self, built_index):
        ids, distances = built_index.search(np.zeros(8), k=2000, n_probe=1)
        
        assert len(ids) == 2000
        assert np.count_nonzero(ids == -1) >= 1000
        assert np.all(np.isposinf(distances[ids == -1]))
        assert np.all(np.isfinite(distances[ids != -1]))


class TestTieDeterminism:
    
    def test_identical_vectors_ordered_by_id(self):
        index = IVFFlatIndex(dimension=4, cluster_count=2, n_probe=2, seed=0)
        base = np.array([[1, 0, 0, 0], [-1, 0, 0, 0]], dtype=np.float32)
        index.train(np.repeat(base, 50, axis=0))
        
        ids = np.array([50, 7, 31, 2, 19, 44])
        vectors = np.tile(base[0], (6, 1))
        index.add(vectors, ids)
        
        got_ids, got_distances = index.search(base[0], k=4)
        
        assert_array_equal(got_ids, [2, 7, 19, 31])
        assert_array_equal(got_distances, [0, 0, 0, 0])
    
    def test_repeated_searches_identical(self, built_index, random_vector):
        first = built_index.search(random_vector, k=20, n_probe=4)
        
        for _ in range(5):
            again = built_index.search(random_vector, k=20, n_probe=4)
            assert_array_equal(again[0], first[0])
            assert_array_equal(again[1], first[1])


class TestLifecycle:
    
    def test_untrained(self):
        index = IVFFlatIndex(dimension=8, cluster_count=10)
        
        assert not index.is_trained()
        assert len(index) == 0
        with pytest.raises(IndexNotTrainedError):
            index.add(np.zeros((1, 8)))
        with pytest.raises(IndexNotTrainedError):
            index.search(np.zeros(8), k=1)
    
    def test_trained_but_empty(self, random_vectors):
        index = IVFFlatIndex(dimension=8, cluster_count=10, seed=0)
        index.train(random_vectors)
        
        ids, distances = index.search(np.zeros(8), k=3)
        
        assert index.is_trained()
        assert_array_equal(ids, [-1, -1, -1])
        assert np.all(np.isposinf(distances))
    
    def test_add_continues_ids(self, built_index):
        added = built_index.add(np.random.randn(10, 8))
        
        assert added == 10
        assert len(built_index) == 1010
        assert 1009 in built_index
    
    def test_add_after_explicit_ids(self, random_vectors):
        index = IVFFlatIndex(dimension=8, cluster_count=2, n_probe=2, seed=0)
        index.build(random_vectors[:40], ids=np.arange(1, 41))
        
        added = index.add(random_vectors[:1] + 1)
        
        assert added == 1
        assert 41 in index
    
    def test_add_is_searchable(self, built_index):
        vector = np.full(8, 25.0, dtype=np.float32)
        
        built_index.add(vector, [77777])
        ids, _ = built_index.search(vector, k=1)
        
        assert ids[0] == 77777
        assert_array_equal(built_index.reconstruct(77777), vector)
    
    def test_duplicate_add(self, built_index):
        with pytest.raises(DuplicateIdError):
            built_index.add(np.zeros((1, 8)), [3])
    
    def test_dimension_errors(self, built_index):
        with pytest.raises(DimensionMismatchError):
            built_index.add(np.zeros((1, 4)))
        with pytest.raises(DimensionMismatchError):
            built_index.search(np.zeros(4), k=1)
        with pytest.raises(DimensionMismatchError):
            IVFFlatIndex(dimension=4, cluster_count=2).build(np.zeros((10, 8)))
    
    def test_set_n_probe_bounds(self, built_index):
        with pytest.raises(InvalidNprobeError):
            built_index.set_n_probe(0)
        with pytest.raises(InvalidNprobeError):
            built_index.set_n_probe(11)
        
        built_index.set_n_probe(3)
        assert built_index.n_probe == 3
    
    def test_reconstruct_missing(self, built_index):
        with pytest.raises(KeyError):
            built_index.reconstruct(5000)
    
    def test_stats(self, built_index):
        stats = built_index.stats()
        
        assert stats["vector_count"] == 1000
        assert stats["n_clusters"] == 10
        assert stats["n_probe"] == 10
        assert stats["is_trained"]
    
    def test_clear_and_reset(self, built_index):
        assert built_index.clear() == 1000
        assert len(built_index) == 0
        assert built_index.is_trained()
        
        built_index.reset()
        assert not built_index.is_trained()
        assert built_index.stats()["is_trained"] is False
    
    def test_n_probe_clamped_when_fewer_clusters(self):
        index = IVFFlatIndex(dimension=8, cluster_count=20, n_probe=10, training_ratio=1)
        
        index.build(np.random.randn(4, 8))
        
        assert index.n_clusters == 4
        assert index.n_probe == 4
