"""
Unit tests for record packing.
"""

import pytest
import numpy as np
from numpy.testing import assert_array_equal

from ivfflat.layout import (
    GroupedLayout,
    grouped_view,
    pack,
    pack_batch,
    unpack,
    unpack_all,
)


def _block(layout: GroupedLayout, n_records: int, dim: int, dtype=np.float32) -> np.ndarray:
    return np.zeros(layout.block_elements(n_records, dim), dtype=dtype)


class TestPackUnpack:
    
    def test_round_trip(self, layout):
        dim = 8
        records = np.random.randn(40, dim).astype(np.float32)
        block = _block(layout, 40, dim)
        
        for offset, record in enumerate(records):
            pack(record, block, dim, layout.veclen, offset, layout.group_size)
        
        for offset, record in enumerate(records):
            out = np.empty(dim, dtype=np.float32)
            unpack(block, out, dim, layout.veclen, offset, layout.group_size)
            assert_array_equal(out, record)
    
    def test_pack_touches_only_own_slots(self, layout):
        dim = 8
        block = _block(layout, 64, dim)
        
        pack(np.ones(dim, dtype=np.float32), block, dim, layout.veclen, 37, layout.group_size)
        
        written = np.flatnonzero(block)
        assert_array_equal(written, np.sort(layout.record_addresses(37, dim)))
    
    def test_interleaving_of_first_chunk(self, layout):
        dim = 8
        block = _block(layout, 2, dim)
        a = np.arange(dim, dtype=np.float32) + 1
        b = -a
        
        pack(a, block, dim, 4, 0, 32)
        pack(b, block, dim, 4, 1, 32)
        
        # First chunks of consecutive records are adjacent
        assert_array_equal(block[0:4], a[0:4])
        assert_array_equal(block[4:8], b[0:4])
        # Second chunks start after the group's first-chunk row
        assert_array_equal(block[128:132], a[4:8])
        assert_array_equal(block[132:136], b[4:8])
    
    def test_unpack_returns_buffer(self, layout):
        dim = 8
        block = _block(layout, 1, dim)
        out = np.empty(dim, dtype=np.float32)
        
        assert unpack(block, out, dim, 4, 0, 32) is out
    
    def test_float16_records(self):
        layout = GroupedLayout(16, 8)
        dim = 16
        records = np.random.randn(20, dim).astype(np.float16)
        block = _block(layout, 20, dim, np.float16)
        
        pack_batch(records, block, dim, 8, 0, 16)
        
        assert_array_equal(unpack_all(block, 20, dim, 8, 16), records)


class TestPackBatch:
    
    @pytest.mark.parametrize("start,count", [
        (0, 1),
        (0, 64),
        (5, 40),
        (31, 70),
        (32, 33),
    ])
    def test_matches_single_packs(self, layout, start, count):
        dim = 8
        records = np.random.randn(count, dim).astype(np.float32)
        
        expected = _block(layout, start + count, dim)
        for i, record in enumerate(records):
            pack(record, expected, dim, layout.veclen, start + i, layout.group_size)
        
        actual = _block(layout, start + count, dim)
        pack_batch(records, actual, dim, layout.veclen, start, layout.group_size)
        
        assert_array_equal(actual, expected)
    
    def test_empty_batch_is_noop(self, layout):
        block = _block(layout, 32, 8)
        
        pack_batch(np.empty((0, 8), dtype=np.float32), block, 8, 4, 0, 32)
        
        assert not block.any()


class TestViews:
    
    def test_grouped_view_indexing(self, layout):
        dim = 8
        records = np.random.randn(64, dim).astype(np.float32)
        block = _block(layout, 64, dim)
        pack_batch(records, block, dim, layout.veclen, 0, layout.group_size)
        
        view = grouped_view(block, dim, layout.veclen, layout.group_size)
        
        assert view.shape == (2, 2, 32, 4)
        assert np.shares_memory(view, block)
        for g, c, r, j in [(0, 0, 0, 0), (0, 1, 5, 3), (1, 0, 31, 2), (1, 1, 17, 1)]:
            assert view[g, c, r, j] == records[g * 32 + r, c * 4 + j]
    
    def test_unpack_all_partial_group(self, layout):
        dim = 8
        records = np.random.randn(45, dim).astype(np.float32)
        block = _block(layout, 45, dim)
        pack_batch(records, block, dim, layout.veclen, 0, layout.group_size)
        
        assert_array_equal(unpack_all(block, 45, dim, 4, 32), records)
        assert_array_equal(unpack_all(block, 10, dim, 4, 32), records[:10])
    
    def test_unpack_all_empty(self, layout):
        out = unpack_all(np.zeros(0, dtype=np.float32), 0, 8, 4, 32)
        
        assert out.shape == (0, 8)
