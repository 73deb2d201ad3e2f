"""
Unit tests for Builder and IndexState population.
"""

import pytest
import numpy as np
from numpy.testing import assert_array_equal

from ivfflat.core.exceptions import (
    DimensionMismatchError,
    DuplicateIdError,
    OutOfRangeError,
    ValidationError,
)
from ivfflat.index import Builder, BuildParams, FlatQuantizer, IndexState, build, extend


@pytest.fixture
def quantizer(dimension):
    rng = np.random.RandomState(1)
    return FlatQuantizer(rng.randn(6, dimension).astype(np.float32))


class NearestOfTwo:
    """Quantizer with only ``assign`` and ``centroid``."""
    
    def __init__(self, dimension):
        self._centroids = np.stack([np.zeros(dimension), np.ones(dimension)]).astype(np.float32)
    
    def assign(self, vector):
        return int(np.asarray(vector).mean() > 0.5)
    
    def centroid(self, cluster_id):
        return self._centroids[cluster_id]


class TestBuild:
    
    def test_build_places_every_record(self, built_state, random_vectors):
        assert built_state.ntotal == 1000
        assert built_state.n_lists == 10
        assert built_state.list_sizes().sum() == 1000
        
        quantizer = FlatQuantizer(built_state.centroids)
        for id in (0, 17, 500, 999):
            cluster_id, offset = built_state.locate(id)
            assert cluster_id == quantizer.assign(random_vectors[id])
            assert_array_equal(built_state.reconstruct(id), random_vectors[id])
    
    def test_default_ids(self, built_state):
        assert sorted(built_state.existing_ids()) == list(range(1000))
    
    def test_explicit_ids(self, random_vectors, quantizer):
        ids = np.arange(1000) * 3 + 5
        
        state = Builder().build(random_vectors, ids, quantizer=quantizer)
        
        assert state.ntotal == 1000
        assert state.contains(5)
        assert state.contains(8)
        assert not state.contains(6)
        assert_array_equal(state.reconstruct(8), random_vectors[1])
    
    def test_with_quantizer(self, random_vectors, quantizer):
        state = Builder().build(random_vectors, quantizer=quantizer)
        
        assert state.n_lists == 6
        assert_array_equal(state.centroids, quantizer.centroids)
    
    def test_quantizer_dimension_mismatch(self, random_vectors):
        quantizer = FlatQuantizer(np.zeros((4, 16)))
        
        with pytest.raises(DimensionMismatchError):
            Builder().build(random_vectors, quantizer=quantizer)
    
    def test_quantizer_without_n_clusters(self, dimension):
        with pytest.raises(ValidationError, match="n_clusters"):
            Builder().build(np.zeros((3, dimension)), quantizer=NearestOfTwo(dimension))
    
    def test_minimal_quantizer_with_n_clusters(self, dimension):
        quantizer = NearestOfTwo(dimension)
        quantizer.n_clusters = 2
        vectors = np.stack([np.zeros(dimension), np.ones(dimension), np.zeros(dimension)])
        
        state = Builder().build(vectors, quantizer=quantizer)
        
        assert_array_equal(state.list_sizes(), [2, 1])
        assert state.locate(1) == (1, 0)
    
    def test_empty_build_without_quantizer(self, dimension):
        with pytest.raises(ValidationError):
            Builder().build(np.zeros((0, dimension)))
    
    def test_batch_order_only_changes_offsets(self, random_vectors, quantizer):
        perm = np.random.RandomState(3).permutation(len(random_vectors))
        
        a = Builder().build(random_vectors, quantizer=quantizer)
        b = Builder().build(random_vectors[perm], perm, quantizer=quantizer)
        
        for c in range(quantizer.n_clusters):
            assert set(a.get_list(c).ids.tolist()) == set(b.get_list(c).ids.tolist())
    
    def test_first_come_lower_offset(self, dimension, quantizer):
        vectors = np.tile(quantizer.centroid(2), (3, 1))
        
        state = Builder().build(vectors, [30, 10, 20], quantizer=quantizer)
        
        assert state.locate(30) == (2, 0)
        assert state.locate(10) == (2, 1)
        assert state.locate(20) == (2, 2)
    
    def test_explicit_veclen(self, random_vectors, quantizer):
        state = Builder(veclen=2, group_size=16).build(random_vectors, quantizer=quantizer)
        
        assert state.layout.veclen == 2
        assert state.layout.group_size == 16
        assert_array_equal(state.reconstruct(10), random_vectors[10])
    
    def test_module_function(self, random_vectors):
        state = build(random_vectors[:200], params=BuildParams(cluster_count=4, seed=0))
        
        assert state.ntotal == 200
        assert state.n_lists == 4


class TestExtend:
    
    def test_extend_default_ids_continue(self, built_state, dimension):
        added = extend(built_state, np.random.randn(5, dimension))
        
        assert added == 5
        assert built_state.ntotal == 1005
        for id in range(1000, 1005):
            assert built_state.contains(id)
    
    def test_extend_keeps_existing_offsets(self, built_state, dimension):
        before = {id: built_state.locate(id) for id in range(0, 1000, 50)}
        
        extend(built_state, np.random.randn(300, dimension))
        
        for id, location in before.items():
            assert built_state.locate(id) == location
    
    def test_extend_keeps_centroids(self, built_state, dimension):
        centroids = built_state.centroids.copy()
        
        extend(built_state, np.random.randn(100, dimension) * 50)
        
        assert_array_equal(built_state.centroids, centroids)
    
    def test_extend_dimension_mismatch(self, built_state):
        generation = built_state.generation
        
        with pytest.raises(DimensionMismatchError):
            extend(built_state, np.random.randn(3, 5))
        
        assert built_state.ntotal == 1000
        assert built_state.generation == generation
    
    def test_extend_duplicate_id(self, built_state, dimension):
        with pytest.raises(DuplicateIdError):
            extend(built_state, np.random.randn(2, dimension), [1000, 5])
        
        assert built_state.ntotal == 1000
        assert not built_state.contains(1000)
    
    def test_duplicate_within_batch(self, built_state, dimension):
        with pytest.raises(DuplicateIdError):
            extend(built_state, np.random.randn(2, dimension), [2000, 2000])
    
    def test_negative_id(self, built_state, dimension):
        with pytest.raises(ValidationError):
            extend(built_state, np.random.randn(1, dimension), [-1])
    
    def test_single_vector(self, built_state, dimension):
        assert extend(built_state, np.random.randn(dimension)) == 1
        assert built_state.ntotal == 1001
    
    def test_generation_bumped(self, built_state, dimension):
        generation = built_state.generation
        
        extend(built_state, np.random.randn(1, dimension))
        
        assert built_state.generation == generation + 1
    
    def test_default_ids_follow_largest_explicit_id(self, random_vectors, quantizer):
        state = Builder().build(random_vectors[:10], np.arange(1, 11), quantizer=quantizer)
        
        extend(state, random_vectors[10:13])
        
        assert state.ntotal == 13
        for id in (11, 12, 13):
            assert state.contains(id)
    
    def test_default_ids_skip_sparse_ids(self, random_vectors, quantizer):
        state = Builder().build(random_vectors[:2], [0, 500], quantizer=quantizer)
        
        extend(state, random_vectors[2:3])
        
        assert state.contains(501)
    
    def test_next_id(self, dimension, quantizer):
        state = IndexState.from_quantizer(quantizer)
        
        assert state.next_id() == 0
        extend(state, np.zeros((1, dimension)), [41])
        assert state.next_id() == 42
    
    def test_empty_extend(self, built_state, dimension):
        assert extend(built_state, np.zeros((0, dimension))) == 0


class TestRollback:
    
    def test_failed_append_rolls_back_all_lists(self, dimension, quantizer, monkeypatch):
        state = IndexState.from_quantizer(quantizer)
        vectors = np.stack([quantizer.centroid(c) for c in (0, 0, 1, 5)])
        
        def fail(records, ids):
            raise MemoryError("no room")
        
        monkeypatch.setattr(state.get_list(5), "append_batch", fail)
        
        with pytest.raises(MemoryError):
            state.add_to_lists(np.array([0, 0, 1, 5]), vectors, np.arange(4))
        
        assert state.ntotal == 0
        assert state.get_list(0).size == 0
        assert state.get_list(1).size == 0
        assert state.generation == 0
        assert not state.contains(0)
    
    def test_assignment_out_of_range(self, dimension, quantizer):
        state = IndexState.from_quantizer(quantizer)
        
        with pytest.raises(OutOfRangeError):
            state.add_to_lists(np.array([0, 6]), np.zeros((2, dimension)), np.arange(2))
        
        assert state.ntotal == 0


class TestIndexState:
    
    def test_stats(self, built_state):
        stats = built_state.stats().to_dict()
        
        assert stats["index_type"] == "ivf_flat"
        assert stats["vector_count"] == 1000
        assert stats["n_clusters"] == 10
        assert stats["group_size"] == 32
        assert stats["veclen"] == 4
    
    def test_stats_padding(self, dimension, layout):
        state = IndexState(dimension, np.eye(2, dimension), layout=layout)
        state.add_to_lists(np.zeros(40, dtype=np.int64), np.zeros((40, dimension)), np.arange(40))
        stats = state.stats()
        
        assert stats.empty_clusters == 1
        # 40 records occupy two groups of 32
        assert stats.padding_ratio == pytest.approx(1 - 40 / 64)
        assert stats.generation == 1
    
    def test_cluster_info(self, built_state):
        info = built_state.cluster_info()
        
        assert info["total_vectors"] == 1000
        sizes = [c["size"] for c in info["clusters"]]
        assert sizes == sorted(sizes, reverse=True)
    
    def test_locate_missing(self, built_state):
        with pytest.raises(KeyError):
            built_state.locate(12345)
    
    def test_get_list_out_of_range(self, built_state):
        with pytest.raises(OutOfRangeError):
            built_state.get_list(10)
    
    def test_clear_keeps_centroids(self, built_state):
        assert built_state.clear() == 1000
        
        assert built_state.ntotal == 0
        assert built_state.n_lists == 10
        assert not built_state.contains(0)
    
    def test_iter_records(self, built_state):
        records = list(built_state.iter_records())
        
        assert len(records) == 1000
        assert sorted(id for _, _, id in records) == list(range(1000))
